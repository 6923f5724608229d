"""
Rendered capture using Playwright, locally or through a Browserbase session
"""

import asyncio
import base64
from typing import Any, Dict, Optional, Protocol

from browserbase import Browserbase
from playwright.async_api import async_playwright

from . import config
from .log import get_logger
from .models import CaptureMode, CaptureResources, CaptureResult, ImageLayout

logger = get_logger("replica.browser")

VIEWPORT = {"width": 1920, "height": 1080}

RESPONSIVE_VIEWPORTS = {
    "mobile": {"width": 375, "height": 812},
    "tablet": {"width": 768, "height": 1024},
    "desktop": VIEWPORT,
}

SCROLL_TO_BOTTOM = """
async () => {
    await new Promise((resolve) => {
        let total = 0;
        const timer = setInterval(() => {
            window.scrollBy(0, 100);
            total += 100;
            if (total >= document.body.scrollHeight) {
                clearInterval(timer);
                resolve();
            }
        }, 100);
    });
    window.scrollTo(0, 0);
}
"""

COLLECT_STYLES = """
() => {
    let css = '';
    document.querySelectorAll('style').forEach((s) => { css += s.textContent + '\\n'; });
    document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {
        try {
            Array.from(link.sheet ? link.sheet.cssRules : []).forEach((r) => { css += r.cssText + '\\n'; });
        } catch (e) {}
    });
    return css;
}
"""

COLLECT_SCRIPTS = "() => Array.from(document.querySelectorAll('script[src]')).map((s) => s.src)"

COLLECT_IMAGE_LAYOUT = """
() => Array.from(document.images).map((img) => {
    const rect = img.getBoundingClientRect();
    return { src: img.getAttribute('src') || '', width: rect.width, height: rect.height };
}).filter((i) => i.src)
"""

COLLECT_INTERACTIVE = """
() => Array.from(document.querySelectorAll('a, button, input, select, textarea, [onclick], [role="button"]'))
    .slice(0, 200)
    .map((el) => ({ tag: el.tagName.toLowerCase(), text: (el.innerText || el.value || '').trim().slice(0, 80) }))
"""

COLLECT_ANIMATIONS = """
() => {
    const found = new Set();
    document.querySelectorAll('*').forEach((el) => {
        const style = getComputedStyle(el);
        if (style.animationName && style.animationName !== 'none') found.add('animation:' + style.animationName);
        if (style.transitionProperty && style.transitionDuration !== '0s') found.add('transition:' + style.transitionProperty);
    });
    return Array.from(found);
}
"""

COLLECT_STYLE_SUMMARY = """
() => {
    const colors = new Set(), fonts = new Set();
    document.querySelectorAll('body *').forEach((el) => {
        const style = getComputedStyle(el);
        colors.add(style.color);
        colors.add(style.backgroundColor);
        fonts.add(style.fontFamily);
    });
    return { colors: Array.from(colors).slice(0, 50), fonts: Array.from(fonts).slice(0, 20) };
}
"""

COLLECT_NAVIGATION = """
() => Array.from(document.querySelectorAll('nav a, header a'))
    .map((a) => ({ text: a.innerText.trim(), href: a.href }))
    .filter((l) => l.href)
"""

MODE_SCRIPTS = {
    CaptureMode.INTERACTIVE: COLLECT_INTERACTIVE,
    CaptureMode.ANIMATIONS: COLLECT_ANIMATIONS,
    CaptureMode.STYLE_ANALYSIS: COLLECT_STYLE_SUMMARY,
    CaptureMode.NAVIGATION: COLLECT_NAVIGATION,
}


class RenderedCaptureService(Protocol):
    async def capture(self, url: str, mode: CaptureMode = CaptureMode.STANDARD) -> CaptureResult:
        ...


class PlaywrightCaptureService:
    """
    Captures the DOM after script execution.

    Uses a remote Browserbase session when BROWSERBASE_API_KEY is set,
    otherwise launches headless Chromium locally.
    """

    def __init__(self, api_key: Optional[str] = config.BROWSERBASE_API_KEY,
                 project_id: Optional[str] = config.BROWSERBASE_PROJECT_ID,
                 timeout_ms: int = config.CAPTURE_TIMEOUT_MS,
                 screenshot: bool = True):
        self.api_key = api_key
        self.project_id = project_id
        self.timeout_ms = timeout_ms
        self.screenshot = screenshot

    async def capture(self, url: str, mode: CaptureMode = CaptureMode.STANDARD) -> CaptureResult:
        """
        Navigate to url and collect the rendered document.

        Args:
            url: The URL of the website to capture
            mode: Extra data to collect alongside the document

        Returns:
            CaptureResult with html, collected CSS, script URLs, requested
            resources, a base64 JPEG screenshot and image layout
        """
        logger.info(f"Starting rendered capture for {url} (mode: {mode.value})")

        async with async_playwright() as p:
            if self.api_key:
                bb = Browserbase(api_key=self.api_key)
                session = bb.sessions.create(project_id=self.project_id)
                logger.info(f"Created Browserbase session with ID: {session.id}")
                browser = await p.chromium.connect_over_cdp(session.connect_url)
                context = browser.contexts[0]
                page = context.pages[0] if context.pages else await context.new_page()
                await page.set_viewport_size(VIEWPORT)
            else:
                browser = await p.chromium.launch(
                    headless=True,
                    args=["--disable-dev-shm-usage", "--disable-setuid-sandbox", "--no-sandbox"],
                )
                context = await browser.new_context(viewport=VIEWPORT, user_agent=config.USER_AGENT)
                page = await context.new_page()

            try:
                return await self._collect(page, url, mode)
            finally:
                await browser.close()
                logger.debug("Browser session closed")

    async def _collect(self, page, url: str, mode: CaptureMode) -> CaptureResult:
        resources = CaptureResources()

        def track(request):
            kind = request.resource_type
            if kind == "image":
                resources.images.append(request.url)
            elif kind == "font":
                resources.fonts.append(request.url)
            elif kind == "stylesheet":
                resources.stylesheets.append(request.url)

        page.on("request", track)

        await page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
        # lazy-loaded content
        await asyncio.sleep(2)
        await page.evaluate(SCROLL_TO_BOTTOM)

        html = await page.content()
        styles = await page.evaluate(COLLECT_STYLES)
        scripts = await page.evaluate(COLLECT_SCRIPTS)
        layout = [ImageLayout(**item) for item in await page.evaluate(COLLECT_IMAGE_LAYOUT)]

        screenshot = None
        if self.screenshot:
            data = await page.screenshot(full_page=True, type="jpeg", quality=80)
            if isinstance(data, bytes):
                screenshot = base64.b64encode(data).decode("ascii")

        mode_data = await self._mode_data(page, mode)

        logger.info(
            f"Page captured: {len(html)} chars HTML, {len(styles)} chars CSS, "
            f"{len(resources.images)} images, {len(resources.fonts)} fonts"
        )
        return CaptureResult(
            html=html,
            styles=styles,
            scripts=scripts,
            resources=resources,
            screenshot=screenshot,
            layout=layout,
            mode_data=mode_data,
        )

    async def _mode_data(self, page, mode: CaptureMode) -> Optional[Dict[str, Any]]:
        if mode == CaptureMode.STANDARD:
            return None

        if mode == CaptureMode.RESPONSIVE:
            sizes = {}
            for name, viewport in RESPONSIVE_VIEWPORTS.items():
                await page.set_viewport_size(viewport)
                sizes[name] = await page.evaluate(
                    "() => ({ width: document.documentElement.scrollWidth, "
                    "height: document.documentElement.scrollHeight })"
                )
            await page.set_viewport_size(VIEWPORT)
            return {"viewports": sizes}

        return {mode.value: await page.evaluate(MODE_SCRIPTS[mode])}
