"""
WordPress REST API client: detection, structured acquisition and block parsing.

Instead of reverse-engineering rendered markup, structured acquisition reads
posts and pages through /wp-json/wp/v2 and parses the native block comments
stored in their bodies:

    <!-- wp:heading {"level":2} -->
    <h2>My Title</h2>
    <!-- /wp:heading -->
"""

import html as html_lib
import json
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
import pydantic

from . import config
from .detection import PAGE_BUILDER_RULES, first_match, page_builder_version
from .errors import StructuredContentError
from .log import get_logger
from .models import Block, PageBuilderInfo, StructuredContent, StructuredItem, WordPressDetection

logger = get_logger("replica.wordpress")

DETECTION_THRESHOLD = 50
PER_PAGE_LIMIT = 100  # REST API maximum

GENERATOR_VERSION = re.compile(r'generator"\s+content="WordPress\s+([\d.]+)', re.IGNORECASE)


def _has(*needles):
    return lambda html: any(n in html for n in needles)


def _body_classes(html: str) -> bool:
    has_body_class = any(c in html for c in ('class="home', 'class="page', 'class="post-type-'))
    return has_body_class and ("wp-" in html or "wordpress" in html)


# (points, indicator, predicate) evaluated against homepage markup when the API is unavailable
MARKER_INDICATORS = [
    (30, "meta generator tag", _has('generator" content="WordPress')),
    (25, "wp-content directory", _has("wp-content")),
    (25, "wp-includes directory", _has("wp-includes")),
    (15, "WordPress CSS classes/IDs", _has('class="wp-', "wp-block-", 'id="wp-')),
    (15, "WordPress JavaScript", _has("var wp_", "window.wp", "wpApiSettings")),
    (10, "WordPress body classes", _body_classes),
    (10, "WordPress identifiers", _has("wp-json", "wp_", "/xmlrpc.php")),
    (10, "WordPress emoji script", _has("wp-emoji", "wpemoji")),
]

BLOCK_DELIMITER = re.compile(
    r"<!--\s+(?P<closer>/)?wp:(?P<namespace>[a-z][a-z0-9_-]*/)?(?P<name>[a-z][a-z0-9_-]*)"
    r"\s+(?P<attrs>\{.*?\}\s+)?(?P<void>/)?-->",
    re.DOTALL,
)


def site_root(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def score_markup(html: str) -> Tuple[int, List[str], Optional[str]]:
    """
    Score homepage markup for WordPress indicators.

    Returns:
        (confidence capped at 100, indicators found, version from the generator tag)
    """
    confidence = 0
    indicators = []
    for points, indicator, predicate in MARKER_INDICATORS:
        if predicate(html):
            confidence += points
            indicators.append(indicator)

    match = GENERATOR_VERSION.search(html)
    return min(confidence, 100), indicators, match.group(1) if match else None


def _parse_attributes(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        attributes = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse block attributes: {raw.strip()[:200]}")
        return {}
    return attributes if isinstance(attributes, dict) else {}


def parse_blocks(content: str, max_depth: int = config.MAX_BLOCK_DEPTH) -> List[Block]:
    """
    Parse block comment delimiters into a tree of Blocks.

    Self-closing blocks (<!-- wp:spacer /-->) have no inner HTML. Blocks left
    open at the end of the content extend to the end. Blocks nested deeper
    than max_depth are dropped.
    """
    if not content or not isinstance(content, str):
        return []

    root: List[Block] = []
    stack: List[Tuple[Block, int]] = []

    for match in BLOCK_DELIMITER.finditer(content):
        namespace = (match.group("namespace") or "core/").rstrip("/")
        name = match.group("name")

        if match.group("closer"):
            opener = None
            for index in range(len(stack) - 1, -1, -1):
                block = stack[index][0]
                if block.name == name and block.namespace == namespace:
                    opener = index
                    break
            if opener is None:
                continue
            # close the matching opener and anything left open inside it
            while len(stack) > opener:
                block, start = stack.pop()
                block.inner_html = content[start:match.start()].strip()
            continue

        block = Block(namespace=namespace, name=name, attributes=_parse_attributes(match.group("attrs")))
        if len(stack) < max_depth:
            siblings = stack[-1][0].inner_blocks if stack else root
            siblings.append(block)
        if not match.group("void"):
            stack.append((block, match.end()))

    while stack:
        block, start = stack.pop()
        block.inner_html = content[start:].strip()

    return root


def count_blocks(blocks: List[Block]) -> int:
    return sum(1 + count_blocks(block.inner_blocks) for block in blocks)


def compose_document(content: StructuredContent) -> str:
    """Build a standalone HTML document from structured items (pages first, then posts)"""
    site = content.site_info or {}
    name = html_lib.escape(str(site.get("name") or "Untitled Website"))
    description = html_lib.escape(str(site.get("description") or ""))

    parts = [
        "<!DOCTYPE html>",
        "<html>",
        "<head>",
        '<meta charset="utf-8">',
        '<meta name="viewport" content="width=device-width, initial-scale=1">',
        f"<title>{name}</title>",
    ]
    if description:
        parts.append(f'<meta name="description" content="{description}">')
    parts += ["</head>", "<body>", f"<header><h1>{name}</h1></header>", "<main>"]

    for item in content.pages + content.posts:
        item_id = f' data-id="{item.id}"' if item.id is not None else ""
        parts.append(f'<article class="replica-{item.kind}"{item_id}>')
        parts.append(f"<h2>{item.title}</h2>")
        parts.append(item.content_html)
        parts.append("</article>")

    parts += ["</main>", "</body>", "</html>"]
    return "\n".join(parts)


def _total_pages(response: httpx.Response, kind: str) -> int:
    value = response.headers.get("x-wp-totalpages") or "1"
    try:
        return int(value)
    except ValueError as e:
        raise StructuredContentError(f"Invalid X-WP-TotalPages header while fetching {kind}: {value!r}") from e


class WordPressClient:
    """Structured content client for sites exposing the WordPress REST API"""

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 probe_timeout: float = config.PROBE_TIMEOUT,
                 request_timeout: float = config.STRUCTURED_TIMEOUT):
        self.client = client or httpx.AsyncClient(follow_redirects=True)
        self.probe_timeout = probe_timeout
        self.request_timeout = request_timeout
        self.headers = {"User-Agent": config.USER_AGENT}

    async def detect(self, url: str) -> WordPressDetection:
        """
        Detect WordPress at url.

        The REST discovery endpoint is probed first (confidence 100, api_url
        set). When it is unavailable the homepage markup is scored instead; a
        positive result then has is_detected=True but no api_url.
        """
        logger.info(f"Detecting WordPress at {url}")
        result = WordPressDetection()
        site = site_root(url)
        api_url = f"{site}/wp-json/"

        try:
            response = await self.client.get(api_url, timeout=self.probe_timeout, headers=self.headers)
            data = response.json() if response.status_code == 200 else None
            if isinstance(data, dict) and "wp/v2" in (data.get("namespaces") or []):
                result.is_detected = True
                result.api_url = api_url
                result.confidence = 100
                result.site_name = data.get("name")
                result.indicators.append("REST API discovery endpoint")
                result.page_builder = await self.detect_page_builder(site)
                logger.info(f"WordPress detected via REST API: {result.site_name}")
                return result
            result.errors.append(f"REST API: HTTP {response.status_code}")
        except (httpx.HTTPError, ValueError) as e:
            result.errors.append(f"REST API: {e or 'not accessible'}")

        logger.info("REST API not accessible - trying HTML detection")
        try:
            response = await self.client.get(url, timeout=self.probe_timeout, headers=self.headers)
            html = response.text
        except httpx.HTTPError as e:
            result.errors.append(f"HTML Detection: {e or 'fetch failed'}")
            logger.warning(f"HTML detection failed: {e}")
            return result

        confidence, indicators, version = score_markup(html)
        result.indicators.extend(indicators)
        if confidence >= DETECTION_THRESHOLD:
            result.is_detected = True
            result.confidence = confidence
            result.version = version
            builder = first_match(PAGE_BUILDER_RULES, html)
            if builder:
                result.page_builder = PageBuilderInfo(
                    name=builder, is_active=True, version=page_builder_version(html, builder)
                )
            logger.warning(
                f"WordPress detected via HTML analysis ({confidence}% confidence) "
                f"but the REST API is disabled: {', '.join(indicators)}"
            )
        else:
            logger.info(f"Not enough WordPress indicators ({confidence}% confidence)")
        return result

    async def detect_page_builder(self, site_url: str) -> PageBuilderInfo:
        try:
            response = await self.client.get(site_url, timeout=self.probe_timeout, headers=self.headers)
        except httpx.HTTPError as e:
            logger.warning(f"Could not detect page builder: {e}")
            return PageBuilderInfo()

        html = response.text
        builder = first_match(PAGE_BUILDER_RULES, html)
        if not builder:
            return PageBuilderInfo()
        logger.info(f"Page builder detected: {builder}")
        return PageBuilderInfo(name=builder, is_active=True, version=page_builder_version(html, builder))

    async def acquire(self, api_url: str, max_posts: int = config.MAX_POSTS,
                      max_pages: int = config.MAX_PAGES,
                      page_builder: Optional[PageBuilderInfo] = None,
                      detect_page_builder: bool = True) -> StructuredContent:
        """
        Fetch posts and pages through the REST API and parse their blocks.

        A page_builder already found by detect() is reused; otherwise the
        homepage is fetched once more when detect_page_builder is set.

        Raises:
            StructuredContentError: any request failed or returned a malformed payload
        """
        logger.info("Starting WordPress clone via REST API")
        try:
            site_info = await self._get_json(api_url)
        except (httpx.HTTPError, ValueError) as e:
            raise StructuredContentError(f"Could not read site info from {api_url}: {e}") from e
        if not isinstance(site_info, dict):
            raise StructuredContentError(f"Unexpected site info payload from {api_url}")

        if page_builder is None and detect_page_builder:
            page_builder = await self.detect_page_builder(site_info.get("url") or site_root(api_url))

        raw_posts = await self.fetch_items(api_url, "posts", max_posts)
        raw_pages = await self.fetch_items(api_url, "pages", max_pages)
        try:
            posts = [self._to_item(raw, "post") for raw in raw_posts]
            pages = [self._to_item(raw, "page") for raw in raw_pages]
        except (ValueError, AttributeError, TypeError, pydantic.ValidationError) as e:
            raise StructuredContentError(f"Malformed item in REST API response: {e}") from e
        blocks_count = sum(count_blocks(item.blocks) for item in posts + pages)

        logger.info(
            f"WordPress clone complete: {len(posts)} posts, {len(pages)} pages, {blocks_count} blocks"
        )
        return StructuredContent(
            posts=posts,
            pages=pages,
            blocks_count=blocks_count,
            page_builder=page_builder,
            site_info={k: site_info.get(k) for k in ("name", "description", "url", "home")},
        )

    async def fetch_items(self, api_url: str, kind: str, limit: int) -> List[Dict[str, Any]]:
        """
        Page through wp/v2/{kind}. Starts with context=edit (raw block markup)
        and falls back to the public listing when that needs authentication.
        """
        if limit <= 0:
            return []

        per_page = min(PER_PAGE_LIMIT, limit)
        context = "edit"
        items: List[Dict[str, Any]] = []
        page = 1

        while len(items) < limit:
            params = {"per_page": per_page, "page": page}
            if context:
                params["context"] = context
            try:
                response = await self.client.get(
                    f"{api_url}wp/v2/{kind}", params=params,
                    timeout=self.request_timeout, headers=self.headers,
                )
            except httpx.HTTPError as e:
                raise StructuredContentError(f"Error fetching {kind}: {e}") from e

            if response.status_code == 401 and context:
                logger.warning(f"Could not fetch {kind}: authentication required (trying public endpoint)")
                context = None
                items = []
                page = 1
                continue
            if response.status_code == 400 and page > 1:
                # past the last page
                break
            if not response.is_success:
                raise StructuredContentError(f"Error fetching {kind}: HTTP {response.status_code}")

            try:
                batch = response.json()
            except ValueError as e:
                raise StructuredContentError(f"Invalid JSON while fetching {kind}") from e
            if not isinstance(batch, list) or not batch:
                break

            items.extend(batch)
            total_pages = _total_pages(response, kind)
            page += 1
            if page > total_pages:
                break

        logger.info(f"Fetched {min(len(items), limit)} {kind}")
        return items[:limit]

    async def _get_json(self, url: str) -> Any:
        response = await self.client.get(url, timeout=self.probe_timeout, headers=self.headers)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _to_item(raw: Dict[str, Any], kind: str) -> StructuredItem:
        def rendered(field):
            value = raw.get(field) or {}
            return value if isinstance(value, str) else (value.get("rendered") or "")

        content = raw.get("content") or {}
        if isinstance(content, str):
            raw_body, rendered_body = content, content
        else:
            raw_body = content.get("raw") or content.get("rendered") or ""
            rendered_body = content.get("rendered") or raw_body

        return StructuredItem(
            id=raw.get("id"),
            kind=kind,
            title=rendered("title"),
            link=raw.get("link"),
            content_html=rendered_body,
            blocks=parse_blocks(raw_body),
        )

    async def close(self):
        if not self.client.is_closed:
            await self.client.aclose()
