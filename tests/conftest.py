import asyncio

import httpx
import pytest

from replica.events import RunEventEmitter
from replica.models import (
    CaptureMode,
    CaptureResult,
    CloneRun,
    PageBuilderInfo,
    StructuredContent,
    StructuredItem,
    WordPressDetection,
)

STATIC_HTML = "<html><head><title>Static</title></head><body>static</body></html>"


def run(coro):
    return asyncio.run(coro)


def mock_client(handler):
    """AsyncClient whose requests are answered by handler(request)"""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


async def no_sleep(delay):
    return None


class FakeFetcher:
    def __init__(self, html=STATIC_HTML, error=None):
        self.html = html
        self.error = error
        self.calls = 0

    async def fetch_document(self, url):
        self.calls += 1
        if self.error:
            raise self.error
        return self.html


class FakeWordPress:
    def __init__(self, detection=None, content=None, error=None):
        self.detection = detection or WordPressDetection()
        self.content = content
        self.error = error
        self.detect_calls = 0
        self.acquire_calls = 0
        self.page_builders = []

    async def detect(self, url):
        self.detect_calls += 1
        return self.detection

    async def acquire(self, api_url, max_posts=50, max_pages=50, page_builder=None):
        self.acquire_calls += 1
        self.page_builders.append(page_builder)
        if self.error:
            raise self.error
        return self.content


class FakeCapture:
    def __init__(self, failures=0, html="<html><body>rendered</body></html>", layout=None):
        self.failures = failures
        self.html = html
        self.layout = layout or []
        self.modes = []

    async def capture(self, url, mode=CaptureMode.STANDARD):
        self.modes.append(mode)
        if len(self.modes) <= self.failures:
            raise RuntimeError("browser crashed")
        return CaptureResult(html=self.html, layout=self.layout)


def structured_content(posts=12, pages=3):
    return StructuredContent(
        posts=[StructuredItem(id=i, kind="post", title=f"Post {i}") for i in range(posts)],
        pages=[StructuredItem(id=100 + i, kind="page", title=f"Page {i}") for i in range(pages)],
        page_builder=PageBuilderInfo(name="gutenberg", is_active=True),
        site_info={"name": "Demo"},
    )


def api_detection():
    return WordPressDetection(is_detected=True, api_url="https://blog.test/wp-json/", confidence=100,
                              site_name="Demo")


@pytest.fixture
def clone_run():
    return CloneRun(url="https://example.com/")


@pytest.fixture
def events(clone_run):
    return RunEventEmitter(clone_run)
