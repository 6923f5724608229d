import httpx
import pytest

from conftest import (
    STATIC_HTML,
    FakeCapture,
    FakeFetcher,
    FakeWordPress,
    api_detection,
    mock_client,
    no_sleep,
    run,
    structured_content,
)
from replica.analyzers import PerformanceAnalyzer, SeoAnalyzer
from replica.assets import AssetPipeline
from replica.errors import AcquisitionError, RateLimitError, StageError, ValidationError
from replica.models import AcquisitionStrategy, CloneOptions, ImageLayout, RunStatus, WordPressDetection
from replica.pipeline import ClonePipeline
from replica.ratelimit import RateLimiter
from replica.repository import InMemoryRunRepository
from replica.strategy import STRUCTURED_API_UNAVAILABLE, StrategySelector

PAGE_WITH_ASSETS = """<html><head><title>Assets</title>
<link rel="stylesheet" href="/style.css">
</head><body><img src="/logo.png" width="10" height="10"><img src="/missing.png"></body></html>"""


def asset_handler(request):
    if request.url.path == "/style.css":
        return httpx.Response(200, text="body{}", headers={"content-type": "text/css"})
    if request.url.path == "/logo.png":
        return httpx.Response(200, content=b"png", headers={"content-type": "image/png"})
    return httpx.Response(404)


def make_pipeline(fetcher=None, wordpress=None, capture=None, analyzers=None, rate_limiter=None):
    selector = StrategySelector(fetcher or FakeFetcher(), wordpress or FakeWordPress(), capture, sleep=no_sleep)
    return ClonePipeline(
        selector=selector,
        assets=AssetPipeline(mock_client(asset_handler)),
        repository=InMemoryRunRepository(),
        analyzers=analyzers or [],
        rate_limiter=rate_limiter,
    )


class FailingAnalyzer:
    name = "broken"
    option = None

    async def analyze(self, context):
        raise RuntimeError("analyzer exploded")


def test_document_without_references_completes_unchanged():
    pipeline = make_pipeline()
    progress = []

    result = run(pipeline.clone("example.com", on_progress=lambda p, s: progress.append(p)))

    assert result.status == RunStatus.COMPLETED
    assert result.progress == 100
    assert result.metadata.asset_count == 0
    assert result.html == STATIC_HTML
    assert result.metadata.title == "Static"
    assert result.strategy == AcquisitionStrategy.STATIC
    assert progress == sorted(progress)
    assert progress[-1] == 100


def test_structured_counts_reach_metadata():
    wordpress = FakeWordPress(api_detection(), structured_content(posts=12, pages=3))
    result = run(make_pipeline(wordpress=wordpress).clone("https://blog.test/"))

    info = result.metadata.wordpress
    assert result.strategy == AcquisitionStrategy.STRUCTURED
    assert info.posts_cloned == 12
    assert info.pages_cloned == 3
    assert result.metadata.page_count == 15
    assert result.metadata.page_builder == "gutenberg"


def test_marker_without_api_falls_back_without_raising():
    wordpress = FakeWordPress(WordPressDetection(is_detected=True, confidence=65))
    result = run(make_pipeline(wordpress=wordpress).clone("https://blog.test/"))

    assert result.status == RunStatus.COMPLETED
    assert result.metadata.wordpress.is_detected
    assert result.metadata.wordpress.posts_cloned == 0
    assert result.metadata.wordpress.pages_cloned == 0
    assert STRUCTURED_API_UNAVAILABLE in result.metadata.degraded


def test_assets_are_downloaded_and_embedded():
    pipeline = make_pipeline(fetcher=FakeFetcher(PAGE_WITH_ASSETS))
    result = run(pipeline.clone("https://example.com/"))

    assert result.metadata.asset_count == 2
    assert '<style data-original-href="https://example.com/style.css">body{}</style>' in result.html
    assert "data:image/png;base64," in result.html
    assert 'src="/missing.png"' in result.html
    assert result.status == RunStatus.COMPLETED


def test_include_assets_false_skips_downloads():
    pipeline = make_pipeline(fetcher=FakeFetcher(PAGE_WITH_ASSETS))
    result = run(pipeline.clone("https://example.com/", CloneOptions(include_assets=False)))

    assert result.assets == []
    assert result.html == PAGE_WITH_ASSETS
    assert result.status == RunStatus.COMPLETED


def test_oversized_layout_is_not_pinned():
    html = '<html><body><img src="/wide.png"><img src="/ok.png"></body></html>'
    capture = FakeCapture(html=html, layout=[
        ImageLayout(src="/wide.png", width=6000, height=300),
        ImageLayout(src="/ok.png", width=300, height=200),
    ])
    options = CloneOptions(use_browser_automation=True, include_assets=False)
    result = run(make_pipeline(capture=capture).clone("https://example.com/", options))

    assert "6000px" not in result.html
    assert 'style="width: 300px; height: 200px;"' in result.html


def test_acquisition_failure_marks_run_as_error():
    fetcher = FakeFetcher(error=AcquisitionError("All 5 retrieval endpoints failed", attempts=5))
    pipeline = make_pipeline(fetcher=fetcher)

    with pytest.raises(AcquisitionError) as info:
        run(pipeline.clone("https://example.com/"))

    failed = info.value.run
    assert failed.status == RunStatus.ERROR
    assert failed.current_step == "Error: All 5 retrieval endpoints failed"
    stored = pipeline.repository.get(failed.id)
    assert stored.status == RunStatus.ERROR
    assert stored.progress == failed.progress


def test_unknown_errors_are_wrapped_in_stage_error():
    pipeline = make_pipeline(fetcher=FakeFetcher(error=RuntimeError("socket closed")))

    with pytest.raises(StageError) as info:
        run(pipeline.clone("https://example.com/"))

    assert info.value.stage == "acquire"
    assert isinstance(info.value.cause, RuntimeError)
    assert info.value.run.status == RunStatus.ERROR


def test_analyzer_failure_does_not_stop_the_run():
    analyzers = [FailingAnalyzer(), SeoAnalyzer(), PerformanceAnalyzer(client=mock_client(asset_handler), audit_url=None)]
    options = CloneOptions(seo_analysis=True, performance_analysis=True)
    result = run(make_pipeline(analyzers=analyzers).clone("https://example.com/", options))

    assert result.status == RunStatus.COMPLETED
    assert "broken" not in result.analysis
    assert "seo" in result.analysis
    assert result.score == result.analysis["performance"]["score"]
    assert any("analyzer exploded" in entry.message for entry in result.logs)


def test_disabled_analyzers_do_not_run():
    result = run(make_pipeline(analyzers=[SeoAnalyzer()]).clone("https://example.com/"))
    assert result.analysis == {}


def test_invalid_input_creates_no_run():
    pipeline = make_pipeline()

    with pytest.raises(ValidationError):
        pipeline.prepare("ftp://example.com/file")
    with pytest.raises(ValidationError):
        pipeline.prepare("https://example.com/", CloneOptions(capture_responsive=True, capture_navigation=True))

    assert pipeline.repository.list() == []


def test_rate_limit_applies_before_run_creation():
    pipeline = make_pipeline(rate_limiter=RateLimiter(max_requests=1, window=3600))
    pipeline.prepare("https://example.com/")

    with pytest.raises(RateLimitError) as info:
        pipeline.prepare("https://example.com/")
    assert info.value.retry_after > 0
    assert len(pipeline.repository.list()) == 1


def test_repository_receives_snapshots():
    pipeline = make_pipeline()
    result = run(pipeline.clone("https://example.com/"))

    stored = pipeline.repository.get(result.id)
    assert stored is not result
    assert stored.status == RunStatus.COMPLETED
    stored.logs.clear()
    assert pipeline.repository.get(result.id).logs
