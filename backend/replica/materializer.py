"""
Rewrites an acquired document into self-contained form.

Pass 1 pins rendered image sizes as inline styles, pass 2 embeds (or
relocates) downloaded assets. Both passes work on the markup text so that
everything they do not touch stays byte-identical, and running them again
over their own output changes nothing.
"""

import html as html_lib
import re
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Asset, AssetType, ImageLayout, OutputMode

MAX_DIMENSION = 5000

IMG_TAG = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
LINK_TAG = re.compile(r"<link\b[^>]*>", re.IGNORECASE)
SCRIPT_ELEMENT = re.compile(r"<script\b([^>]*)>(.*?)</script\s*>", re.IGNORECASE | re.DOTALL)
ATTRIBUTE = re.compile(r"""([^\s=/>"']+)(?:\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>"']+)))?""")
STYLE_ATTRIBUTE = re.compile(r"""(\sstyle\s*=\s*)(?:"([^"]*)"|'([^']*)'|([^\s>"']+))""", re.IGNORECASE)

# Attributes that only make sense on a tag pointing at a remote resource
DROPPED_LINK_ATTRS = {"rel", "href", "integrity", "crossorigin", "type", "as", "referrerpolicy"}
DROPPED_SCRIPT_ATTRS = {"src", "integrity", "crossorigin", "async", "defer", "referrerpolicy"}


def _attributes(tag: str) -> List[Tuple[str, Optional[str]]]:
    body = re.sub(r"^<\w+|/?>$", "", tag)
    attributes = []
    for match in ATTRIBUTE.finditer(body):
        name = match.group(1).lower()
        value = next((g for g in match.group(2, 3, 4) if g is not None), None)
        attributes.append((name, value))
    return attributes


def _attribute(tag: str, name: str) -> Optional[str]:
    for key, value in _attributes(tag):
        if key == name:
            return html_lib.unescape(value) if value is not None else ""
    return None


def _render_attributes(attributes: List[Tuple[str, Optional[str]]]) -> str:
    parts = []
    for name, value in attributes:
        parts.append(name if value is None else f'{name}="{html_lib.escape(html_lib.unescape(value))}"')
    return "".join(f" {part}" for part in parts)


def _format_px(value: float) -> str:
    return f"{value:g}px"


def _layout_map(layout) -> Dict[str, Tuple[float, float]]:
    if not layout:
        return {}
    if isinstance(layout, dict):
        return dict(layout)
    sizes: Dict[str, Tuple[float, float]] = {}
    for item in layout:
        if isinstance(item, ImageLayout):
            sizes.setdefault(item.src, (item.width, item.height))
    return sizes


def preserve_dimensions(html: str, layout=None) -> str:
    """
    Append the rendered width/height to the inline style of every <img>
    whose src exactly matches a layout entry.

    Args:
        html: Document text
        layout: Iterable of ImageLayout, or a {src: (width, height)} dict

    Sizes outside (0, 5000) are ignored. Existing styles are extended, not
    replaced. The input is returned unchanged when nothing matches.
    """
    sizes = _layout_map(layout)
    if not sizes:
        return html

    def rewrite(match):
        tag = match.group(0)
        src = _attribute(tag, "src")
        if src is None or src not in sizes:
            return tag

        width, height = sizes[src]
        if not (0 < width < MAX_DIMENSION and 0 < height < MAX_DIMENSION):
            return tag

        declaration = f"width: {_format_px(width)}; height: {_format_px(height)};"
        style = _attribute(tag, "style")
        if style is not None and declaration in style:
            return tag

        return _append_style(tag, declaration)

    return IMG_TAG.sub(rewrite, html)


def _append_style(tag: str, declaration: str) -> str:
    """Add declaration to the tag's style attribute; every other byte of the tag is kept."""
    match = STYLE_ATTRIBUTE.search(tag)
    if match is None:
        end = len(tag) - (2 if tag.endswith("/>") else 1)
        head = tag[:end].rstrip()
        return f'{head} style="{declaration}"{tag[len(head):]}'

    existing = next(g for g in match.group(2, 3, 4) if g is not None).rstrip()
    if existing and not existing.endswith(";"):
        existing += ";"
    combined = f"{existing} {declaration}".strip()
    quote = "'" if match.group(3) is not None else '"'
    return f"{tag[:match.start()]}{match.group(1)}{quote}{combined}{quote}{tag[match.end():]}"


def _references(asset: Asset) -> List[str]:
    refs = [asset.original_url]
    if asset.source_ref and asset.source_ref != asset.original_url:
        refs.append(asset.source_ref)
    return refs


def _escape_closing(content: str, tag: str) -> str:
    return re.sub(rf"</({tag})", r"<\\/\1", content, flags=re.IGNORECASE)


def _embed_stylesheets(html: str, stylesheets: Dict[str, Asset], mode: OutputMode) -> str:
    def rewrite(match):
        tag = match.group(0)
        rel = (_attribute(tag, "rel") or "").lower().split()
        href = _attribute(tag, "href")
        if "stylesheet" not in rel or href is None:
            return tag
        asset = stylesheets.get(href)
        if asset is None:
            return tag

        if mode == OutputMode.LOCAL_PATHS:
            attributes = [(k, asset.local_path if k == "href" else v) for k, v in _attributes(tag)]
            return f"<link{_render_attributes(attributes)}>"

        kept = [(k, v) for k, v in _attributes(tag) if k not in DROPPED_LINK_ATTRS]
        original = html_lib.escape(asset.original_url)
        css = _escape_closing(asset.content, "style")
        return f'<style data-original-href="{original}"{_render_attributes(kept)}>{css}</style>'

    return LINK_TAG.sub(rewrite, html)


def _embed_scripts(html: str, scripts: Dict[str, Asset], mode: OutputMode) -> str:
    def rewrite(match):
        opening = f"<script{match.group(1)}>"
        src = _attribute(opening, "src")
        asset = scripts.get(src) if src is not None else None
        if asset is None:
            return match.group(0)

        if mode == OutputMode.LOCAL_PATHS:
            attributes = [(k, asset.local_path if k == "src" else v) for k, v in _attributes(opening)]
            return f"<script{_render_attributes(attributes)}>{match.group(2)}</script>"

        kept = [(k, v) for k, v in _attributes(opening) if k not in DROPPED_SCRIPT_ATTRS]
        original = html_lib.escape(asset.original_url)
        js = _escape_closing(asset.content, "script")
        return f'<script data-original-src="{original}"{_render_attributes(kept)}>{js}</script>'

    return SCRIPT_ELEMENT.sub(rewrite, html)


def _embed_binary(html: str, asset: Asset) -> str:
    if not asset.content.startswith("data:"):
        return html
    html = html.replace(asset.original_url, asset.content)
    if asset.source_ref and asset.source_ref != asset.original_url:
        ref = asset.source_ref
        for before, after in (('"', '"'), ("'", "'"), ("(", ")")):
            html = html.replace(f"{before}{ref}{after}", f"{before}{asset.content}{after}")
    return html


def embed_assets(html: str, assets: Iterable[Asset], mode: OutputMode = OutputMode.EMBED) -> str:
    """
    Replace references to downloaded assets.

    Stylesheets and scripts are matched by tag and inlined (embed mode) or
    pointed at their local path (local-paths mode). Images and fonts become
    data URIs in both modes. Synthetic inline-* assets are skipped.
    """
    stylesheets: Dict[str, Asset] = {}
    scripts: Dict[str, Asset] = {}
    binaries: List[Asset] = []

    for asset in assets:
        if asset.is_synthetic:
            continue
        if asset.type == AssetType.STYLESHEET:
            for ref in _references(asset):
                stylesheets.setdefault(ref, asset)
        elif asset.type == AssetType.SCRIPT:
            for ref in _references(asset):
                scripts.setdefault(ref, asset)
        else:
            binaries.append(asset)

    if stylesheets:
        html = _embed_stylesheets(html, stylesheets, mode)
    if scripts:
        html = _embed_scripts(html, scripts, mode)
    for asset in binaries:
        html = _embed_binary(html, asset)
    return html


def materialize(html: str, assets: Iterable[Asset], layout=None,
                mode: OutputMode = OutputMode.EMBED) -> str:
    return embed_assets(preserve_dimensions(html, layout), assets, mode)
