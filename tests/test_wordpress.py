import httpx
import pytest

from conftest import mock_client, run
from replica.errors import StructuredContentError
from replica.models import StructuredContent, StructuredItem
from replica.wordpress import (
    WordPressClient,
    compose_document,
    count_blocks,
    parse_blocks,
    score_markup,
    site_root,
)

DISCOVERY = {"name": "Demo Blog", "description": "Just another site", "url": "https://blog.test",
             "namespaces": ["oembed/1.0", "wp/v2"]}

WP_HOMEPAGE = """
<html><head>
<meta name="generator" content="WordPress 6.4.2">
<link rel="stylesheet" href="/wp-content/themes/demo/style.css">
<script src="/wp-includes/js/wp-emoji-release.min.js"></script>
</head><body class="home"><div class="wp-block-group">Hello</div></body></html>
"""


def post(post_id, title="Post", raw="<!-- wp:paragraph --><p>Hi</p><!-- /wp:paragraph -->"):
    return {
        "id": post_id,
        "link": f"https://blog.test/?p={post_id}",
        "title": {"rendered": f"{title} {post_id}"},
        "content": {"rendered": f"<p>{title} {post_id}</p>", "raw": raw},
    }


def test_site_root():
    assert site_root("https://blog.test/2024/01/hello/?x=1") == "https://blog.test"


def test_parse_nested_and_self_closing_blocks():
    content = (
        '<!-- wp:group {"layout":{"type":"constrained"}} -->'
        '<div class="wp-block-group">'
        '<!-- wp:heading {"level":2} --><h2>Title</h2><!-- /wp:heading -->'
        '<!-- wp:spacer /-->'
        '</div>'
        '<!-- /wp:group -->'
        '<!-- wp:acme/card {"id":7} --><div>card</div><!-- /wp:acme/card -->'
    )
    blocks = parse_blocks(content)

    assert [b.name for b in blocks] == ["group", "card"]
    group, card = blocks
    assert group.attributes == {"layout": {"type": "constrained"}}
    assert [b.name for b in group.inner_blocks] == ["heading", "spacer"]
    heading, spacer = group.inner_blocks
    assert heading.attributes == {"level": 2}
    assert heading.inner_html == "<h2>Title</h2>"
    assert spacer.inner_html == ""
    assert card.namespace == "acme"
    assert card.attributes == {"id": 7}
    assert count_blocks(blocks) == 4


def test_invalid_block_attributes_become_empty():
    blocks = parse_blocks("<!-- wp:image {not json} --><img><!-- /wp:image -->")
    assert blocks[0].name == "image"
    assert blocks[0].attributes == {}


def test_block_depth_is_limited():
    content = "".join(f"<!-- wp:group{i} -->" for i in range(12)) + \
        "".join(f"<!-- /wp:group{i} -->" for i in reversed(range(12)))
    blocks = parse_blocks(content, max_depth=10)

    depth = 0
    level = blocks
    while level:
        depth += 1
        level = level[0].inner_blocks
    assert depth == 10


def test_plain_content_has_no_blocks():
    assert parse_blocks("<p>No blocks here</p>") == []
    assert parse_blocks("") == []


def test_score_markup():
    confidence, indicators, version = score_markup(WP_HOMEPAGE)
    assert confidence >= 50
    assert version == "6.4.2"
    assert "meta generator tag" in indicators
    assert score_markup("<html><body>plain</body></html>")[0] == 0


def test_detect_via_rest_api():
    def handler(request):
        if request.url.path == "/wp-json/":
            return httpx.Response(200, json=DISCOVERY)
        return httpx.Response(200, text='<div class="elementor-element">x</div>')

    detection = run(WordPressClient(mock_client(handler)).detect("https://blog.test/about/"))

    assert detection.is_detected
    assert detection.api_url == "https://blog.test/wp-json/"
    assert detection.confidence == 100
    assert detection.site_name == "Demo Blog"
    assert detection.page_builder.name == "elementor"


def test_detect_via_markup_when_api_is_disabled():
    def handler(request):
        if request.url.path == "/wp-json/":
            return httpx.Response(404, text="not found")
        return httpx.Response(200, text=WP_HOMEPAGE)

    detection = run(WordPressClient(mock_client(handler)).detect("https://blog.test/"))

    assert detection.is_detected
    assert detection.api_url is None
    assert detection.version == "6.4.2"
    assert detection.errors


def test_detect_non_wordpress_site():
    def handler(request):
        if request.url.path == "/wp-json/":
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, text="<html><body>static site</body></html>")

    detection = run(WordPressClient(mock_client(handler)).detect("https://static.test/"))
    assert not detection.is_detected


def test_acquire_paginates_and_falls_back_on_401():
    requests = []

    def handler(request):
        requests.append(request)
        path = request.url.path
        params = request.url.params
        if path == "/wp-json/":
            return httpx.Response(200, json=DISCOVERY)
        if path == "/wp-json/wp/v2/posts":
            if params.get("context") == "edit":
                return httpx.Response(401, json={"code": "rest_forbidden_context"})
            page = int(params["page"])
            items = [post(i) for i in range(1 + (page - 1) * 10, 1 + page * 10)]
            return httpx.Response(200, json=items, headers={"X-WP-TotalPages": "3"})
        if path == "/wp-json/wp/v2/pages":
            return httpx.Response(200, json=[post(100, "Page"), post(101, "Page")],
                                  headers={"X-WP-TotalPages": "1"})
        return httpx.Response(200, text="<html><body>home</body></html>")

    client = WordPressClient(mock_client(handler))
    content = run(client.acquire("https://blog.test/wp-json/", max_posts=25, max_pages=50))

    assert len(content.posts) == 25
    assert len(content.pages) == 2
    assert content.posts[0].title == "Post 1"
    assert content.posts[0].blocks[0].name == "paragraph"
    assert content.blocks_count == 27
    assert content.site_info["name"] == "Demo Blog"
    post_requests = [r for r in requests if r.url.path.endswith("/posts")]
    assert post_requests[0].url.params["context"] == "edit"
    assert "context" not in post_requests[1].url.params


def test_acquire_raises_on_server_error():
    def handler(request):
        if request.url.path == "/wp-json/":
            return httpx.Response(200, json=DISCOVERY)
        if request.url.path.startswith("/wp-json/wp/v2/"):
            return httpx.Response(500, text="boom")
        return httpx.Response(200, text="<html></html>")

    with pytest.raises(StructuredContentError):
        run(WordPressClient(mock_client(handler)).acquire("https://blog.test/wp-json/"))


def test_compose_document_includes_pages_then_posts():
    content = StructuredContent(
        posts=[StructuredItem(id=1, kind="post", title="First post", content_html="<p>post body</p>")],
        pages=[StructuredItem(id=2, kind="page", title="About", content_html="<p>about body</p>")],
        site_info={"name": "Demo & Co", "description": "Tagline"},
    )
    html = compose_document(content)

    assert "<title>Demo &amp; Co</title>" in html
    assert '<meta name="description" content="Tagline">' in html
    assert html.index("about body") < html.index("post body")
    assert 'class="replica-page" data-id="2"' in html


def rest_site(posts_response, homepage_hits=None):
    def handler(request):
        path = request.url.path
        if path == "/wp-json/":
            return httpx.Response(200, json=DISCOVERY)
        if path == "/wp-json/wp/v2/posts":
            return posts_response()
        if path == "/wp-json/wp/v2/pages":
            return httpx.Response(200, json=[], headers={"X-WP-TotalPages": "1"})
        if homepage_hits is not None:
            homepage_hits.append(request)
        return httpx.Response(200, text='<div class="elementor-element">x</div>')

    return handler


MALFORMED_POSTS = {
    "total_pages_header": lambda: httpx.Response(200, json=[post(1)], headers={"X-WP-TotalPages": "n/a"}),
    "item_not_an_object": lambda: httpx.Response(200, json=["not a post"], headers={"X-WP-TotalPages": "1"}),
    "id_not_an_integer": lambda: httpx.Response(200, json=[dict(post(1), id="abc")], headers={"X-WP-TotalPages": "1"}),
    "content_not_a_string": lambda: httpx.Response(
        200, json=[dict(post(1), content={"raw": 42})], headers={"X-WP-TotalPages": "1"}
    ),
}


@pytest.mark.parametrize("payload", sorted(MALFORMED_POSTS))
def test_malformed_payloads_raise_structured_error(payload):
    client = WordPressClient(mock_client(rest_site(MALFORMED_POSTS[payload])))

    with pytest.raises(StructuredContentError):
        run(client.acquire("https://blog.test/wp-json/"))


def test_detected_page_builder_is_reused():
    homepage_hits = []
    ok = lambda: httpx.Response(200, json=[post(1)], headers={"X-WP-TotalPages": "1"})
    client = WordPressClient(mock_client(rest_site(ok, homepage_hits)))

    detection = run(client.detect("https://blog.test/"))
    content = run(client.acquire(detection.api_url, page_builder=detection.page_builder))

    assert len(homepage_hits) == 1
    assert content.page_builder.name == "elementor"


def test_acquire_detects_page_builder_when_not_given():
    homepage_hits = []
    ok = lambda: httpx.Response(200, json=[post(1)], headers={"X-WP-TotalPages": "1"})
    content = run(WordPressClient(mock_client(rest_site(ok, homepage_hits))).acquire("https://blog.test/wp-json/"))

    assert len(homepage_hits) == 1
    assert content.page_builder.name == "elementor"
