import io
import json
import zipfile

import pytest

from replica.errors import ValidationError
from replica.export import build_archive
from replica.models import AcquisitionStrategy, Asset, AssetType, CloneRun, RunStatus

SOURCE = """<html><head><link rel="stylesheet" href="/main.css"></head>
<body><img src="/logo.png"></body></html>"""


def completed_run():
    return CloneRun(
        url="https://example.com/",
        status=RunStatus.COMPLETED,
        progress=100,
        strategy=AcquisitionStrategy.STATIC,
        source_html=SOURCE,
        html=SOURCE,
        score=88,
        assets=[
            Asset(type=AssetType.STYLESHEET, original_url="https://example.com/main.css", source_ref="/main.css",
                  local_path="./assets/css/main.css", content="body { margin: 0 }"),
            Asset(type=AssetType.IMAGE, original_url="https://example.com/logo.png", source_ref="/logo.png",
                  local_path="./assets/images/logo.png", content="data:image/png;base64,TE9HTw=="),
            Asset(type=AssetType.IMAGE, original_url="https://cdn.test/logo.png",
                  local_path="./assets/images/logo.png", content="data:image/png;base64,T1RIRVI="),
        ],
    )


def read(archive: bytes) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(archive))


def test_archive_contents():
    archive = read(build_archive(completed_run()))

    assert sorted(archive.namelist()) == ["assets/css/main.css", "assets/images/logo.png", "index.html", "metadata.json"]
    index = archive.read("index.html").decode()
    assert 'href="./assets/css/main.css"' in index
    assert "data:image/png;base64,TE9HTw==" in index
    assert archive.read("assets/css/main.css") == b"body { margin: 0 }"


def test_duplicate_paths_keep_first_asset():
    archive = read(build_archive(completed_run()))
    assert archive.read("assets/images/logo.png") == b"LOGO"


def test_metadata_json():
    run = completed_run()
    metadata = json.loads(read(build_archive(run)).read("metadata.json"))

    assert metadata["id"] == run.id
    assert metadata["url"] == "https://example.com/"
    assert metadata["strategy"] == "static"
    assert metadata["score"] == 88
    assert metadata["metadata"]["title"] == "Untitled Website"


def test_incomplete_run_cannot_be_exported():
    run = completed_run()
    run.status = RunStatus.CLONING
    with pytest.raises(ValidationError):
        build_archive(run)
