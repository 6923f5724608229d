"""
ZIP export of a completed run
"""

import base64
import binascii
import io
import json
import zipfile

from .errors import ValidationError
from .log import get_logger
from .materializer import materialize
from .models import CloneRun, OutputMode, RunStatus

logger = get_logger("replica.export")


def _asset_bytes(content: str) -> bytes:
    if content.startswith("data:") and ";base64," in content:
        return base64.b64decode(content.split(";base64,", 1)[1])
    return content.encode("utf-8")


def build_archive(run: CloneRun) -> bytes:
    """
    Build a ZIP with index.html (stylesheets and scripts pointing at
    ./assets/...), the asset files and metadata.json.

    Raises:
        ValidationError: the run has not completed
    """
    if run.status != RunStatus.COMPLETED or not run.source_html:
        raise ValidationError("Clone is not completed yet")

    html = materialize(run.source_html, run.assets, mode=OutputMode.LOCAL_PATHS)

    buffer = io.BytesIO()
    written = set()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("index.html", html)

        for asset in run.assets:
            path = asset.local_path.replace("./", "", 1)
            if path in written:
                logger.warning(f"Skipping duplicate archive path {path} ({asset.original_url})")
                continue
            try:
                archive.writestr(path, _asset_bytes(asset.content))
            except (binascii.Error, ValueError) as e:
                logger.warning(f"Failed to add asset to ZIP: {asset.local_path}: {e}")
                continue
            written.add(path)

        metadata = {
            "id": run.id,
            "url": run.url,
            "strategy": run.strategy.value if run.strategy else None,
            "created_at": run.created_at.isoformat(),
            "completed_at": run.completed_at.isoformat() if run.completed_at else None,
            "score": run.score,
            "metadata": run.metadata.model_dump(mode="json"),
            "analysis": run.analysis,
        }
        archive.writestr("metadata.json", json.dumps(metadata, indent=2, default=str))

    logger.info(f"Exported run {run.id} with {len(written)} assets")
    return buffer.getvalue()
