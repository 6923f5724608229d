"""
Chooses how a page is acquired: structured API, rendered capture or static fetch
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from . import config
from .browser import RenderedCaptureService
from .errors import StructuredContentError
from .events import RunEventEmitter
from .fetcher import ProxyFailoverFetcher
from .log import get_logger
from .models import (
    AcquisitionStrategy,
    CaptureResult,
    CloneOptions,
    StructuredContent,
    StructuredContentInfo,
    WordPressDetection,
)
from .retry import retry_with_backoff
from .wordpress import WordPressClient, compose_document

logger = get_logger("replica.strategy")

STRUCTURED_API_UNAVAILABLE = "structured-api-unavailable"
STRUCTURED_ACQUISITION_FAILED = "structured-acquisition-failed"
RENDERED_CAPTURE_FAILED = "rendered-capture-failed"


@dataclass
class Acquisition:
    """The acquired document and everything learned while choosing how to get it"""
    html: str
    strategy: AcquisitionStrategy
    detection: Optional[WordPressDetection] = None
    structured: Optional[StructuredContent] = None
    capture: Optional[CaptureResult] = None
    degraded: List[str] = field(default_factory=list)

    def structured_info(self) -> Optional[StructuredContentInfo]:
        if self.detection is None or not self.detection.is_detected:
            return None

        builder = self.detection.page_builder
        if self.structured and self.structured.page_builder:
            builder = self.structured.page_builder

        info = StructuredContentInfo(
            is_detected=True,
            api_available=bool(self.detection.api_url),
            version=self.detection.version,
            site_name=self.detection.site_name,
            page_builder=builder.name if builder and builder.is_active else None,
            confidence=self.detection.confidence,
        )
        if self.structured:
            info.posts_cloned = len(self.structured.posts)
            info.pages_cloned = len(self.structured.pages)
            info.blocks_count = self.structured.blocks_count
        return info


class StrategySelector:
    """
    Decision procedure, evaluated once per run:

    1. Probe for the WordPress REST API (markup heuristic when it is absent).
    2. API reachable: structured acquisition, falling back on any failure.
    3. Marker present, API unavailable: flag the run as degraded and fall back.
    4. Rendered capture when requested (retried with backoff), else the
       static relay fetcher. A capture that keeps failing falls back to the
       static fetcher.

    options.strategy forces a strategy; forcing static or rendered skips the probe.
    """

    def __init__(self, fetcher: ProxyFailoverFetcher, wordpress: WordPressClient,
                 capture: Optional[RenderedCaptureService] = None,
                 capture_attempts: int = config.CAPTURE_ATTEMPTS,
                 retry_base_delay: float = config.RETRY_BASE_DELAY,
                 max_posts: int = config.MAX_POSTS,
                 max_pages: int = config.MAX_PAGES,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.fetcher = fetcher
        self.wordpress = wordpress
        self.capture = capture
        self.capture_attempts = capture_attempts
        self.retry_base_delay = retry_base_delay
        self.max_posts = max_posts
        self.max_pages = max_pages
        self.sleep = sleep

    async def acquire(self, url: str, options: CloneOptions, events: RunEventEmitter) -> Acquisition:
        forced = options.strategy
        degraded: List[str] = []
        detection = None

        if forced in (None, AcquisitionStrategy.STRUCTURED):
            events.info("wordpress", "Checking for WordPress REST API")
            detection = await self.wordpress.detect(url)

            if detection.is_detected and detection.api_url:
                events.success(
                    "wordpress", f"WordPress detected: {detection.site_name or 'unnamed site'}",
                    confidence=detection.confidence,
                )
                structured = await self._structured(detection, events)
                if structured is not None:
                    return Acquisition(
                        html=compose_document(structured),
                        strategy=AcquisitionStrategy.STRUCTURED,
                        detection=detection,
                        structured=structured,
                    )
                degraded.append(STRUCTURED_ACQUISITION_FAILED)
            elif detection.is_detected:
                degraded.append(STRUCTURED_API_UNAVAILABLE)
                events.warning(
                    "wordpress",
                    f"WordPress detected ({detection.confidence}% confidence) but the REST API is unavailable",
                    indicators=detection.indicators,
                )
            elif forced == AcquisitionStrategy.STRUCTURED:
                events.warning("wordpress", "Structured acquisition requested but no WordPress site was found")

        capture = None
        use_rendered = forced == AcquisitionStrategy.RENDERED or (
            forced is None and options.wants_rendered_capture()
        )
        if use_rendered:
            capture = await self._rendered(url, options, events)
            if capture is not None:
                return Acquisition(
                    html=capture.html,
                    strategy=AcquisitionStrategy.RENDERED,
                    detection=detection,
                    capture=capture,
                    degraded=degraded,
                )
            degraded.append(RENDERED_CAPTURE_FAILED)

        events.info("fetch", "Fetching website HTML via relay endpoints")
        html = await self.fetcher.fetch_document(url)
        events.success("fetch", f"Fetched {len(html)} characters")
        return Acquisition(
            html=html,
            strategy=AcquisitionStrategy.STATIC,
            detection=detection,
            degraded=degraded,
        )

    async def _structured(self, detection: WordPressDetection,
                          events: RunEventEmitter) -> Optional[StructuredContent]:
        events.info("wordpress", "Cloning via WordPress REST API")
        try:
            structured = await self.wordpress.acquire(
                detection.api_url, max_posts=self.max_posts, max_pages=self.max_pages,
                page_builder=detection.page_builder,
            )
        except StructuredContentError as e:
            events.warning("wordpress", f"Structured acquisition failed, falling back: {e}")
            return None

        events.success(
            "wordpress",
            f"Cloned {len(structured.posts)} posts and {len(structured.pages)} pages",
            blocks=structured.blocks_count,
        )
        return structured

    async def _rendered(self, url: str, options: CloneOptions,
                        events: RunEventEmitter) -> Optional[CaptureResult]:
        if self.capture is None:
            events.warning("capture", "Rendered capture requested but no capture service is configured")
            return None

        mode = options.capture_mode()
        events.info("capture", f"Capturing rendered page ({mode.value})")
        try:
            capture = await retry_with_backoff(
                lambda: self.capture.capture(url, mode),
                max_attempts=self.capture_attempts,
                base_delay=self.retry_base_delay,
                sleep=self.sleep,
                description="Rendered capture",
                log=logger,
            )
        except Exception as e:
            events.warning("capture", f"Rendered capture failed, falling back to static fetch: {e}")
            return None

        events.success("capture", f"Captured {len(capture.html)} characters of rendered HTML")
        return capture
