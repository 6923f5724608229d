"""
Post-materialization analyzers.

Each analyzer declares the CloneOptions flag that enables it (None means it
always runs) and returns a plain dict that is stored under run.analysis[name].
"""

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from . import config
from .detection import TECHNOLOGY_RULES, all_matches, detect_page_builder, page_builder_version
from .log import get_logger
from .models import Asset, AssetType, CloneOptions, Metadata
from .retry import retry_with_backoff

logger = get_logger("replica.analyzers")


@dataclass
class AnalysisContext:
    url: str
    html: str
    source_html: str
    metadata: Metadata
    assets: List[Asset] = field(default_factory=list)
    options: CloneOptions = field(default_factory=CloneOptions)
    _soup: Optional[BeautifulSoup] = None

    @property
    def soup(self) -> BeautifulSoup:
        """Parsed source document, shared by every analyzer"""
        if self._soup is None:
            self._soup = BeautifulSoup(self.source_html, "html.parser")
        return self._soup


class Analyzer(Protocol):
    name: str
    option: Optional[str]

    async def analyze(self, context: AnalysisContext) -> Dict[str, Any]:
        ...


def is_enabled(analyzer: Analyzer, options: CloneOptions) -> bool:
    return analyzer.option is None or bool(getattr(options, analyzer.option, False))


class ComponentAnalyzer:
    """Page builder attribution plus a summary of the document structure"""
    name = "components"
    option = None

    async def analyze(self, context: AnalysisContext) -> Dict[str, Any]:
        soup = context.soup
        builder = detect_page_builder(context.source_html, soup)

        element_counts = Counter(element.name for element in soup.find_all())
        semantic = {
            tag: len(soup.find_all(tag))
            for tag in ("header", "nav", "main", "article", "section", "aside", "footer")
            if soup.find(tag)
        }

        buttons = soup.find_all("button") + soup.find_all(
            "input", attrs={"type": ["button", "submit", "reset"]}
        )
        cards = soup.find_all(
            ["div", "section", "article"],
            class_=lambda c: c and any(term in c for term in ("card", "panel", "tile")),
        )

        return {
            "page_builder": builder,
            "page_builder_version": page_builder_version(context.source_html, builder),
            "element_counts": dict(element_counts.most_common(20)),
            "semantic_structure": semantic,
            "components": {
                "buttons": len(buttons),
                "forms": len(soup.find_all("form")),
                "cards": len(cards),
                "navigation": len(soup.find_all("nav")),
                "images": len(soup.find_all("img")),
            },
        }


class PerformanceAnalyzer:
    """
    Size and request budget of the replica. When an audit endpoint is
    configured, its score replaces the local estimate.
    """
    name = "performance"
    option = "performance_analysis"

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 audit_url: Optional[str] = config.AUDIT_URL,
                 max_attempts: int = config.AUDIT_ATTEMPTS,
                 base_delay: float = config.RETRY_BASE_DELAY,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.client = client or httpx.AsyncClient()
        self.audit_url = audit_url
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep

    async def analyze(self, context: AnalysisContext) -> Dict[str, Any]:
        by_type = Counter(asset.type.value for asset in context.assets if not asset.is_synthetic)
        asset_bytes = sum(asset.size for asset in context.assets)
        document_bytes = len(context.html.encode("utf-8"))

        score = 100
        score -= min(40, document_bytes // (512 * 1024) * 10)
        score -= min(30, sum(by_type.values()))
        score -= min(20, 5 * by_type.get(AssetType.SCRIPT.value, 0))
        result = {
            "document_bytes": document_bytes,
            "asset_bytes": asset_bytes,
            "requests": dict(by_type),
            "source": "estimate",
            "score": max(0, score),
        }

        if self.audit_url:
            audit = await retry_with_backoff(
                lambda: self._audit(context.url),
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                retry_on=(httpx.HTTPError,),
                sleep=self.sleep,
                description="Performance audit",
                log=logger,
            )
            result["audit"] = audit
            if isinstance(audit.get("performanceScore"), (int, float)):
                result["score"] = int(audit["performanceScore"])
                result["source"] = "audit"
        return result

    async def _audit(self, url: str) -> Dict[str, Any]:
        response = await self.client.post(self.audit_url, json={"url": url}, timeout=60)
        response.raise_for_status()
        return response.json()


class SeoAnalyzer:
    name = "seo"
    option = "seo_analysis"

    async def analyze(self, context: AnalysisContext) -> Dict[str, Any]:
        soup = context.soup
        issues = []

        title = soup.title.string.strip() if soup.title and soup.title.string else ""
        if not title:
            issues.append("Missing <title>")
        elif not 10 <= len(title) <= 60:
            issues.append(f"Title length {len(title)} outside 10-60 characters")

        description = soup.find("meta", attrs={"name": "description"})
        if description is None or not description.get("content"):
            issues.append("Missing meta description")

        h1_count = len(soup.find_all("h1"))
        if h1_count != 1:
            issues.append(f"Expected one <h1>, found {h1_count}")

        images = soup.find_all("img")
        missing_alt = [img for img in images if not img.get("alt")]
        if missing_alt:
            issues.append(f"{len(missing_alt)} images without alt text")

        html_tag = soup.find("html")
        if html_tag is None or not html_tag.get("lang"):
            issues.append("Missing lang attribute on <html>")

        canonical = soup.find("link", rel="canonical")
        open_graph = [m.get("property") for m in soup.find_all("meta", property=lambda p: p and p.startswith("og:"))]

        return {
            "title": title,
            "h1_count": h1_count,
            "images_without_alt": len(missing_alt),
            "canonical": canonical.get("href") if canonical else None,
            "open_graph": open_graph,
            "issues": issues,
            "score": max(0, 100 - 15 * len(issues)),
        }


class SecurityAnalyzer:
    name = "security"
    option = "security_scan"

    async def analyze(self, context: AnalysisContext) -> Dict[str, Any]:
        soup = context.soup
        issues = []
        https = urlparse(context.url).scheme == "https"

        if not https:
            issues.append({"severity": "high", "message": "Site is not served over HTTPS"})

        if https:
            insecure = [
                tag.get("src") or tag.get("href")
                for tag in soup.find_all(["script", "link", "img", "iframe"])
                if (tag.get("src") or tag.get("href") or "").startswith("http://")
            ]
            if insecure:
                issues.append({"severity": "medium", "message": f"{len(insecure)} mixed-content references"})

        host = urlparse(context.url).hostname
        unpinned = [
            script["src"] for script in soup.find_all("script", src=True)
            if urlparse(script["src"]).hostname not in (None, host) and not script.get("integrity")
        ]
        if unpinned:
            issues.append({"severity": "low", "message": f"{len(unpinned)} third-party scripts without integrity"})

        insecure_forms = [
            form for form in soup.find_all("form")
            if (form.get("action") or "").startswith("http://")
        ]
        if insecure_forms:
            issues.append({"severity": "high", "message": f"{len(insecure_forms)} forms submit over HTTP"})

        blank_targets = [
            a for a in soup.find_all("a", target="_blank")
            if "noopener" not in (a.get("rel") or [])
        ]
        if blank_targets:
            issues.append({"severity": "low", "message": f"{len(blank_targets)} target=_blank links without noopener"})

        inline_handlers = sum(
            1 for element in soup.find_all(True)
            if any(attr.startswith("on") for attr in element.attrs)
        )

        penalty = {"high": 30, "medium": 15, "low": 5}
        return {
            "https": https,
            "inline_event_handlers": inline_handlers,
            "issues": issues,
            "score": max(0, 100 - sum(penalty[issue["severity"]] for issue in issues)),
        }


class TechnologyAnalyzer:
    name = "technologies"
    option = "technology_detection"

    async def analyze(self, context: AnalysisContext) -> Dict[str, Any]:
        found = {
            category: matches
            for category, rules in TECHNOLOGY_RULES.items()
            for matches in [all_matches(rules, context.source_html, context.soup)]
            if matches
        }
        return {"technologies": found, "count": sum(len(labels) for labels in found.values())}


def default_analyzers(client: Optional[httpx.AsyncClient] = None) -> List[Analyzer]:
    return [
        ComponentAnalyzer(),
        PerformanceAnalyzer(client=client),
        SeoAnalyzer(),
        SecurityAnalyzer(),
        TechnologyAnalyzer(),
    ]
