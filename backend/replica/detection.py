"""
Rule tables for framework / page-builder detection and document metadata extraction.

Detection is an ordered list of (predicate, label) pairs. Rules are evaluated
top to bottom and the first match wins, so the order of each table is its
priority.
"""

import re
from typing import Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup

from .models import Metadata

Predicate = Callable[[str, BeautifulSoup], bool]
Rule = Tuple[Predicate, str]


def _contains(*needles: str) -> Predicate:
    return lambda html, soup: any(n in html for n in needles)


def _script_src_contains(needle: str) -> Predicate:
    return lambda html, soup: soup.find("script", src=lambda s: s and needle in s.lower()) is not None


def _any(*predicates: Predicate) -> Predicate:
    return lambda html, soup: any(p(html, soup) for p in predicates)


# Next.js must precede React (Next pages also carry React markers)
FRAMEWORK_RULES: List[Rule] = [
    (_contains("__NEXT_DATA__", "_next/static"), "Next.js"),
    (_contains("data-reactroot", "data-reactid", "react"), "React"),
    (_contains("__NUXT__", "_nuxt/"), "Nuxt.js"),
    (_contains("v-cloak", "v-if", "v-for"), "Vue"),
    (_contains("ng-version", "ng-app", "ngApp"), "Angular"),
    (_script_src_contains("jquery"), "jQuery"),
    (_any(_contains("svelte-"), _script_src_contains("svelte")), "Svelte"),
]
DEFAULT_FRAMEWORK = "Vanilla"

# Specific builders first, core block editor last
PAGE_BUILDER_RULES: List[Rule] = [
    (_contains("elementor", "data-elementor-type", "elementor-element"), "elementor"),
    (_contains("et_pb_", "et-db", "Divi"), "divi"),
    (_contains("fl-builder", "fl-module", "fl-node"), "beaver"),
    (_contains("brxe-", "bricks-"), "bricks"),
    (_contains("ct-section", "oxygen-"), "oxygen"),
    (_contains("vc_row", "vc_", "wpb_"), "wpbakery"),
    (_contains("wp-block-", "<!-- wp:"), "gutenberg"),
]


def _generator(needle: str) -> Predicate:
    return lambda html, soup: soup.find(
        "meta", attrs={"name": "generator", "content": lambda c: c and needle in c}
    ) is not None


# Every match is reported; categories keep the output grouped
TECHNOLOGY_RULES: Dict[str, List[Rule]] = {
    "framework": [
        (_contains("__NEXT_DATA__", "_next/static"), "Next.js"),
        (_contains("__NUXT__", "_nuxt/"), "Nuxt.js"),
        (_contains("data-reactroot", "data-reactid"), "React"),
        (_contains("data-v-", "v-cloak"), "Vue.js"),
        (_contains("ng-version"), "Angular"),
        (_contains("svelte-"), "Svelte"),
        (_contains("___gatsby"), "Gatsby"),
        (_contains("ember-view"), "Ember.js"),
    ],
    "library": [
        (_script_src_contains("jquery"), "jQuery"),
        (_script_src_contains("lodash"), "Lodash"),
        (_script_src_contains("axios"), "Axios"),
        (_script_src_contains("moment"), "Moment.js"),
        (_script_src_contains("three"), "Three.js"),
        (_any(_script_src_contains("chart.js"), _script_src_contains("chartjs")), "Chart.js"),
        (_script_src_contains("d3."), "D3.js"),
    ],
    "cms": [
        (_any(_contains("wp-content", "wp-includes"), _generator("WordPress")), "WordPress"),
        (_any(_contains("drupal-settings-json", "/sites/default/files"), _generator("Drupal")), "Drupal"),
        (_generator("Joomla"), "Joomla"),
        (_contains("cdn.shopify.com"), "Shopify"),
        (_contains("wixstatic.com"), "Wix"),
        (_contains("static1.squarespace.com", "sqsp."), "Squarespace"),
        (_generator("Webflow"), "Webflow"),
    ],
    "analytics": [
        (_contains("google-analytics.com", "gtag("), "Google Analytics"),
        (_contains("googletagmanager.com", "GTM-"), "Google Tag Manager"),
        (_contains("connect.facebook.net", "fbq("), "Facebook Pixel"),
        (_contains("hotjar.com"), "Hotjar"),
        (_contains("mixpanel.com"), "Mixpanel"),
    ],
    "cdn": [
        (_contains("cdnjs.cloudflare.com"), "Cloudflare"),
        (_contains("cdn.jsdelivr.net"), "jsDelivr"),
        (_contains("unpkg.com"), "unpkg"),
        (_contains("fonts.googleapis.com", "fonts.gstatic.com"), "Google Fonts"),
    ],
    "build": [
        (_contains("webpackJsonp", "webpackChunk"), "Webpack"),
        (_contains("/@vite/", "vite/"), "Vite"),
    ],
    "css": [
        (_contains("bootstrap.min.css", "bootstrap.css"), "Bootstrap"),
        (_contains("tailwind"), "Tailwind CSS"),
        (_contains("bulma"), "Bulma"),
    ],
}

ELEMENTOR_VERSION = re.compile(r"elementor[^\d]*?(\d+\.\d+\.\d+)", re.IGNORECASE)


def first_match(rules: List[Rule], html: str, soup: Optional[BeautifulSoup] = None) -> Optional[str]:
    if soup is None:
        soup = BeautifulSoup(html, "html.parser")
    for predicate, label in rules:
        if predicate(html, soup):
            return label
    return None


def all_matches(rules: List[Rule], html: str, soup: Optional[BeautifulSoup] = None) -> List[str]:
    if soup is None:
        soup = BeautifulSoup(html, "html.parser")
    return [label for predicate, label in rules if predicate(html, soup)]


def detect_framework(html: str, soup: Optional[BeautifulSoup] = None) -> str:
    return first_match(FRAMEWORK_RULES, html, soup) or DEFAULT_FRAMEWORK


def detect_page_builder(html: str, soup: Optional[BeautifulSoup] = None) -> Optional[str]:
    return first_match(PAGE_BUILDER_RULES, html, soup)


def page_builder_version(html: str, builder: Optional[str]) -> Optional[str]:
    if builder != "elementor":
        return None
    match = ELEMENTOR_VERSION.search(html)
    return match.group(1) if match else None


def is_responsive(soup: BeautifulSoup) -> bool:
    if soup.find("meta", attrs={"name": "viewport"}):
        return True
    return any("@media" in (style.string or "") for style in soup.find_all("style"))


def _favicon(soup: BeautifulSoup) -> Optional[str]:
    for link in soup.find_all("link", href=True):
        rel = [r.lower() for r in (link.get("rel") or [])]
        if "icon" in rel:
            return link["href"]
    return None


def extract_metadata(html: str, soup: Optional[BeautifulSoup] = None) -> Metadata:
    """Title, description, favicon, framework and responsiveness of a document"""
    if soup is None:
        soup = BeautifulSoup(html, "html.parser")

    title = soup.title.string.strip() if soup.title and soup.title.string else ""
    description_tag = soup.find("meta", attrs={"name": "description"})

    return Metadata(
        title=title or "Untitled Website",
        description=description_tag.get("content") if description_tag else None,
        favicon=_favicon(soup),
        framework=detect_framework(html, soup),
        responsive=is_responsive(soup),
        page_count=1,
    )
