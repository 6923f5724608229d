"""
Document retrieval through an ordered list of relay endpoints
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence
from urllib.parse import quote

import httpx

from . import config
from .errors import AcquisitionError
from .log import get_logger

logger = get_logger("replica.fetcher")


@dataclass(frozen=True)
class RelayEndpoint:
    name: str
    template: Optional[str] = None  # None means a direct request

    def build(self, url: str) -> str:
        if self.template is None:
            return url
        return self.template.format(url=quote(url, safe=""))


DIRECT = RelayEndpoint("Direct (no proxy)")


def _describe(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


def default_endpoints() -> List[RelayEndpoint]:
    return [RelayEndpoint(name, template) for name, template in config.RELAY_ENDPOINTS] + [DIRECT]


class ProxyFailoverFetcher:
    """
    Fetches raw HTML, trying each endpoint in order until one returns a
    successful, non-trivial response.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None,
                 endpoints: Optional[Sequence[RelayEndpoint]] = None,
                 timeout: float = config.FETCH_TIMEOUT,
                 min_size: int = config.MIN_DOCUMENT_SIZE):
        self.client = client or httpx.AsyncClient(follow_redirects=True)
        self.endpoints = list(endpoints) if endpoints is not None else default_endpoints()
        self.timeout = timeout
        self.min_size = min_size

    async def fetch_document(self, url: str) -> str:
        """
        Fetch the document at url.

        Args:
            url: Absolute URL of the page

        Returns:
            The response text of the first endpoint that succeeds

        Raises:
            AcquisitionError: every endpoint failed
        """
        if not self.endpoints:
            raise AcquisitionError("No retrieval endpoints configured", attempts=0)

        last_error = None
        total = len(self.endpoints)

        for index, endpoint in enumerate(self.endpoints, start=1):
            logger.debug(f"Attempting endpoint {index}/{total} ({endpoint.name}) for {url}")
            try:
                html = await self._attempt(endpoint, url)
            except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
                last_error = f"{endpoint.name}: {_describe(e)}"
                logger.warning(f"Endpoint {endpoint.name} failed: {_describe(e)}")
                continue

            logger.info(f"Fetched {len(html)} characters from {url} via {endpoint.name}")
            return html

        message = f"All {total} retrieval endpoints failed. Last error: {last_error or 'Unknown'}"
        logger.error(f"Failed to fetch {url} after trying all endpoints")
        raise AcquisitionError(message, attempts=total, last_error=last_error)

    async def _attempt(self, endpoint: RelayEndpoint, url: str) -> str:
        response = await self.client.get(
            endpoint.build(url),
            headers={"User-Agent": config.USER_AGENT},
            timeout=self.timeout,
        )
        if not response.is_success:
            raise ValueError(f"HTTP {response.status_code}")

        html = response.text
        if not html or len(html) < self.min_size:
            raise ValueError(f"Response too small ({len(html or '')} characters), likely a stub page")
        return html

    async def close(self):
        if not self.client.is_closed:
            await self.client.aclose()
