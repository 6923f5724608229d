import httpx

from conftest import mock_client, no_sleep, run
from replica.analyzers import (
    AnalysisContext,
    ComponentAnalyzer,
    PerformanceAnalyzer,
    SecurityAnalyzer,
    SeoAnalyzer,
    TechnologyAnalyzer,
    is_enabled,
)
from replica.models import Asset, AssetType, CloneOptions, Metadata

PAGE = """<html lang="en"><head><title>Example landing page</title>
<meta name="description" content="Landing">
<script src="https://cdn.jsdelivr.net/npm/lodash/lodash.min.js"></script>
</head><body>
<header><nav><a href="/" target="_blank">Home</a></nav></header>
<main><h1>Welcome</h1>
<div class="card">One</div><div class="card wide">Two</div>
<form action="http://example.com/submit"><button onclick="go()">Go</button></form>
<img src="http://example.com/a.png" alt="">
</main></body></html>"""


def context(url="https://example.com/", html=PAGE, assets=None):
    return AnalysisContext(url=url, html=html, source_html=html, metadata=Metadata(), assets=assets or [])


def test_enabled_flags():
    options = CloneOptions(seo_analysis=True)
    assert is_enabled(ComponentAnalyzer(), options)
    assert is_enabled(SeoAnalyzer(), options)
    assert not is_enabled(SecurityAnalyzer(), options)


def test_components():
    result = run(ComponentAnalyzer().analyze(context()))

    assert result["semantic_structure"] == {"header": 1, "nav": 1, "main": 1}
    assert result["components"]["cards"] == 2
    assert result["components"]["buttons"] == 1
    assert result["components"]["forms"] == 1
    assert result["page_builder"] is None


def test_seo_issues():
    result = run(SeoAnalyzer().analyze(context()))

    assert result["h1_count"] == 1
    assert result["images_without_alt"] == 1
    assert result["issues"] == ["1 images without alt text"]
    assert result["score"] == 85


def test_security_findings():
    result = run(SecurityAnalyzer().analyze(context()))
    messages = [issue["message"] for issue in result["issues"]]

    assert result["https"]
    assert "1 mixed-content references" in messages
    assert "1 third-party scripts without integrity" in messages
    assert "1 forms submit over HTTP" in messages
    assert "1 target=_blank links without noopener" in messages
    assert result["inline_event_handlers"] == 1
    assert result["score"] == 100 - 15 - 5 - 30 - 5


def test_technologies():
    result = run(TechnologyAnalyzer().analyze(context()))
    assert result["technologies"]["library"] == ["Lodash"]
    assert result["technologies"]["cdn"] == ["jsDelivr"]
    assert result["count"] == 2


def test_performance_estimate_without_audit():
    assets = [
        Asset(type=AssetType.SCRIPT, original_url="https://example.com/a.js", local_path="./assets/js/a.js", size=10),
        Asset(type=AssetType.IMAGE, original_url="https://example.com/b.png", local_path="./assets/images/b.png",
              size=20),
        Asset(type=AssetType.STYLESHEET, original_url="inline-style-0", local_path="./assets/css/inline-0.css",
              size=5),
    ]
    analyzer = PerformanceAnalyzer(client=mock_client(lambda request: httpx.Response(500)), audit_url=None)
    result = run(analyzer.analyze(context(assets=assets)))

    assert result["source"] == "estimate"
    assert result["requests"] == {"script": 1, "image": 1}
    assert result["asset_bytes"] == 35
    assert result["score"] == 100 - 2 - 5


def test_performance_audit_is_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 2:
            return httpx.Response(503)
        return httpx.Response(200, json={"performanceScore": 73})

    analyzer = PerformanceAnalyzer(client=mock_client(handler), audit_url="https://audit.test/run",
                                   max_attempts=3, sleep=no_sleep)
    result = run(analyzer.analyze(context()))

    assert len(calls) == 2
    assert result["score"] == 73
    assert result["source"] == "audit"
