"""
Asset extraction and concurrent download.

Each asset class is downloaded with one asyncio.gather call; every task has
its own timeout and a failing task only drops its own asset.
"""

import asyncio
import base64
import mimetypes
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from . import config
from .errors import PartialAssetFailure
from .events import RunEventEmitter
from .models import INLINE_MARKER, Asset, AssetType, Dimensions

CSS_URL = re.compile(r"""url\(\s*['"]?([^'")]+?)['"]?\s*\)""")
FONT_FACE = re.compile(r"@font-face\s*\{([^}]*)\}", re.IGNORECASE)

FOLDERS = {
    AssetType.STYLESHEET: "css",
    AssetType.SCRIPT: "js",
    AssetType.IMAGE: "images",
    AssetType.FONT: "fonts",
}


@dataclass
class Reference:
    url: str
    source_ref: Optional[str] = None  # as written in the markup, when different from url
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass
class ParsedDocument:
    base_url: str
    stylesheets: List[Reference] = field(default_factory=list)
    inline_styles: List[str] = field(default_factory=list)
    scripts: List[Reference] = field(default_factory=list)
    inline_scripts: List[str] = field(default_factory=list)
    images: List[Reference] = field(default_factory=list)
    background_images: List[Reference] = field(default_factory=list)
    fonts: List[Reference] = field(default_factory=list)


@dataclass
class AssetCaps:
    stylesheets: int = config.MAX_STYLESHEETS
    scripts: int = config.MAX_SCRIPTS
    images: int = config.MAX_IMAGES
    background_images: int = config.MAX_BACKGROUND_IMAGES
    fonts: int = config.MAX_FONTS


def resolve_url(ref: Optional[str], base_url: str) -> Optional[str]:
    """Absolute http(s) URL for ref, or None for empty and data: references"""
    if not ref:
        return None
    ref = ref.strip()
    if not ref or ref.startswith("data:"):
        return None
    if ref.startswith("//"):
        url = "https:" + ref
    else:
        url = urljoin(base_url, ref)
    if urlparse(url).scheme not in ("http", "https"):
        return None
    return url


def _reference(ref: Optional[str], base_url: str, **dims) -> Optional[Reference]:
    url = resolve_url(ref, base_url)
    if url is None:
        return None
    ref = ref.strip()
    return Reference(url=url, source_ref=ref if ref != url else None, **dims)


def _positive_int(value) -> Optional[int]:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _rel(tag) -> List[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [r.lower() for r in rel]


def extract_references(html: str, base_url: str) -> ParsedDocument:
    """Collect stylesheet, script, image and font references from a document"""
    soup = BeautifulSoup(html, "html.parser")
    parsed = ParsedDocument(base_url=base_url)

    for link in soup.find_all("link", href=True):
        rel = _rel(link)
        if "stylesheet" in rel:
            target = parsed.stylesheets
        elif any("font" in r for r in rel) or ("preload" in rel and link.get("as") == "font"):
            target = parsed.fonts
        else:
            continue
        ref = _reference(link["href"], base_url)
        if ref:
            target.append(ref)

    for style in soup.find_all("style"):
        css = style.string or style.get_text()
        if not css or not css.strip():
            continue
        parsed.inline_styles.append(css)
        for face in FONT_FACE.findall(css):
            for raw in CSS_URL.findall(face):
                ref = _reference(raw, base_url)
                if ref:
                    parsed.fonts.append(ref)

    for script in soup.find_all("script"):
        if script.get("src"):
            ref = _reference(script["src"], base_url)
            if ref:
                parsed.scripts.append(ref)
        elif script.string and script.string.strip():
            parsed.inline_scripts.append(script.string)

    for img in soup.find_all("img", src=True):
        ref = _reference(
            img["src"], base_url,
            width=_positive_int(img.get("width")),
            height=_positive_int(img.get("height")),
        )
        if ref:
            parsed.images.append(ref)

    for element in soup.find_all(style=True):
        style = element.get("style") or ""
        if "background" not in style:
            continue
        for raw in CSS_URL.findall(style):
            ref = _reference(raw, base_url)
            if ref:
                parsed.background_images.append(ref)

    return parsed


def local_path(url: str, asset_type: AssetType) -> str:
    """./assets/<folder>/<sanitized last path segment>"""
    filename = urlparse(url).path.split("/")[-1] or "file"
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", filename)
    return f"./assets/{FOLDERS[asset_type]}/{sanitized}"


def file_extension(url: str) -> str:
    filename = urlparse(url).path.split("/")[-1]
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def guess_mime_type(url: str, content_type: Optional[str] = None) -> str:
    if content_type:
        mime = content_type.split(";")[0].strip()
        if mime:
            return mime
    return mimetypes.guess_type(urlparse(url).path)[0] or "application/octet-stream"


class AssetPipeline:
    """
    Downloads referenced assets.

    References are deduplicated by absolute URL across classes (first
    reference wins) before the per-class caps are applied.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 caps: Optional[AssetCaps] = None,
                 text_timeout: float = config.TEXT_ASSET_TIMEOUT,
                 binary_timeout: float = config.BINARY_ASSET_TIMEOUT):
        self.client = client or httpx.AsyncClient(follow_redirects=True)
        self.caps = caps or AssetCaps()
        self.text_timeout = text_timeout
        self.binary_timeout = binary_timeout
        self.headers = {"User-Agent": config.USER_AGENT}

    async def run(self, parsed: ParsedDocument, events: RunEventEmitter) -> List[Asset]:
        seen: Set[str] = set()

        def pick(references: List[Reference], cap: int) -> List[Reference]:
            picked = []
            for ref in references:
                if len(picked) >= cap:
                    break
                if ref.url in seen:
                    continue
                seen.add(ref.url)
                picked.append(ref)
            return picked

        stylesheets = pick(parsed.stylesheets, self.caps.stylesheets)
        scripts = pick(parsed.scripts, self.caps.scripts)
        images = pick(parsed.images, self.caps.images) + pick(parsed.background_images, self.caps.background_images)
        fonts = pick(parsed.fonts, self.caps.fonts)

        assets: List[Asset] = []

        events.info("assets", f"Downloading {len(stylesheets)} stylesheets")
        assets += await self._batch(stylesheets, AssetType.STYLESHEET, self._download_text, self.text_timeout, events)
        assets += self._inline(parsed.inline_styles, AssetType.STYLESHEET, "style", "css")

        events.info("assets", f"Downloading {len(scripts)} scripts")
        assets += await self._batch(scripts, AssetType.SCRIPT, self._download_text, self.text_timeout, events)
        assets += self._inline(parsed.inline_scripts, AssetType.SCRIPT, "script", "js")

        events.info("assets", f"Downloading {len(images)} images")
        assets += await self._batch(images, AssetType.IMAGE, self._download_binary, self.binary_timeout, events)

        events.info("assets", f"Downloading {len(fonts)} fonts")
        assets += await self._batch(fonts, AssetType.FONT, self._download_binary, self.binary_timeout, events)

        attempted = len(stylesheets) + len(scripts) + len(images) + len(fonts)
        downloaded = sum(1 for asset in assets if not asset.is_synthetic)
        events.success("assets", f"Downloaded {downloaded} of {attempted} assets")
        return assets

    async def _batch(self, references: List[Reference], asset_type: AssetType,
                     download: Callable[[Reference, AssetType], Awaitable[Asset]],
                     timeout: float, events: RunEventEmitter) -> List[Asset]:
        if not references:
            return []
        results = await asyncio.gather(
            *(self._guarded(download(ref, asset_type), ref, timeout, events) for ref in references)
        )
        return [asset for asset in results if asset is not None]

    async def _guarded(self, task: Awaitable[Asset], ref: Reference, timeout: float,
                       events: RunEventEmitter) -> Optional[Asset]:
        try:
            return await asyncio.wait_for(task, timeout)
        except asyncio.TimeoutError:
            failure = PartialAssetFailure(ref.url, f"timed out after {timeout:g}s")
        except PartialAssetFailure as e:
            failure = e
        except Exception as e:
            failure = PartialAssetFailure(ref.url, str(e) or e.__class__.__name__)
        events.warning("assets", f"Failed to download {failure.url}", reason=failure.reason)
        return None

    async def _get(self, url: str) -> httpx.Response:
        response = await self.client.get(url, headers=self.headers)
        if not response.is_success:
            raise PartialAssetFailure(url, f"HTTP {response.status_code}")
        return response

    async def _download_text(self, ref: Reference, asset_type: AssetType) -> Asset:
        response = await self._get(ref.url)
        default_format = "css" if asset_type == AssetType.STYLESHEET else "js"
        return Asset(
            type=asset_type,
            original_url=ref.url,
            source_ref=ref.source_ref,
            local_path=local_path(ref.url, asset_type),
            size=len(response.content),
            content=response.text,
            format=file_extension(ref.url) or default_format,
            mime_type=guess_mime_type(ref.url, response.headers.get("content-type")),
        )

    async def _download_binary(self, ref: Reference, asset_type: AssetType) -> Asset:
        response = await self._get(ref.url)
        mime_type = guess_mime_type(ref.url, response.headers.get("content-type"))
        encoded = base64.b64encode(response.content).decode("ascii")

        dimensions = None
        if asset_type == AssetType.IMAGE and ref.width and ref.height:
            dimensions = Dimensions(width=ref.width, height=ref.height)

        return Asset(
            type=asset_type,
            original_url=ref.url,
            source_ref=ref.source_ref,
            local_path=local_path(ref.url, asset_type),
            size=len(response.content),
            content=f"data:{mime_type};base64,{encoded}",
            format=file_extension(ref.url),
            mime_type=mime_type,
            dimensions=dimensions,
        )

    @staticmethod
    def _inline(contents: List[str], asset_type: AssetType, kind: str, extension: str) -> List[Asset]:
        return [
            Asset(
                type=asset_type,
                original_url=f"{INLINE_MARKER}{kind}-{i}",
                local_path=f"./assets/{FOLDERS[asset_type]}/inline-{i}.{extension}",
                size=len(content.encode("utf-8")),
                content=content,
                format=extension,
            )
            for i, content in enumerate(contents)
        ]

    async def close(self):
        if not self.client.is_closed:
            await self.client.aclose()
