"""
URL validation applied before a run is created
"""

import ipaddress
import re
from urllib.parse import urlparse

from .errors import ValidationError

MAX_URL_LENGTH = 2048

PRIVATE_HOST_PATTERNS = [
    re.compile(r"^localhost$", re.IGNORECASE),
    re.compile(r"\.localhost$", re.IGNORECASE),
    re.compile(r"^0\.0\.0\.0$"),
]


def _is_private_host(hostname: str) -> bool:
    if any(p.search(hostname) for p in PRIVATE_HOST_PATTERNS):
        return True
    try:
        address = ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local or address.is_reserved


def validate_url(url: str) -> str:
    """
    Normalize and validate a target URL.

    Adds https:// when no scheme is given, then rejects anything that is not
    a public http(s) URL.

    Returns:
        The sanitized URL
    """
    if not url or not url.strip():
        raise ValidationError("URL cannot be empty")

    url = url.strip()
    if len(url) > MAX_URL_LENGTH:
        raise ValidationError(f"URL too long (max {MAX_URL_LENGTH} characters)")

    if "://" not in url:
        url = "https://" + url

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError("Only HTTP and HTTPS protocols are allowed")
    if not parsed.netloc or not parsed.hostname:
        raise ValidationError(f"Invalid URL format: {url}")
    if _is_private_host(parsed.hostname):
        raise ValidationError("Private/internal IP addresses are not allowed")

    if not parsed.path:
        url = parsed._replace(path="/").geturl()
    return url
