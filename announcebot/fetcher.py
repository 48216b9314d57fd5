"""HTTP client for downloading the calendar feed."""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from .exceptions import FeedUnavailableError

logger = logging.getLogger(__name__)

USER_AGENT = "announcebot/1.0"


class FeedFetcher:
    """Async HTTP client for downloading one iCalendar feed.

    A single GET per run; no retries and no timeout beyond httpx's default.
    Re-invocation by the external scheduler is the only retry mechanism.
    """

    def __init__(self, url: str, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize the fetcher.

        Args:
            url: Feed URL (http or https)
            client: Optional client to use instead of creating one. A supplied
                client is not closed by the fetcher.
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise FeedUnavailableError(f"Unsupported feed URL: {url!r}")

        self.url = url
        self.client = client
        self._owns_client = client is None

    async def __aenter__(self) -> FeedFetcher:
        if self.client is None or self.client.is_closed:
            self.client = httpx.AsyncClient(
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT, "Accept": "text/calendar, */*"},
            )
            self._owns_client = True
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        if self.client is not None and self._owns_client and not self.client.is_closed:
            await self.client.aclose()
            logger.debug("Closed feed HTTP client")
        if self._owns_client:
            self.client = None

    async def fetch(self) -> str:
        """Download the feed and return its text.

        Raises:
            FeedUnavailableError: on any transport error or non-2xx status.
        """
        if self.client is None:
            raise FeedUnavailableError("HTTP client not initialized")

        logger.debug("Fetching calendar feed from %s", _redact_url(self.url))
        try:
            response = await self.client.get(self.url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FeedUnavailableError(
                f"Calendar feed returned HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise FeedUnavailableError(f"Calendar feed unavailable: {exc}") from exc

        text = response.text
        logger.info("Fetched calendar feed (%d bytes)", len(response.content))
        return text


async def fetch_feed(url: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Fetch ``url`` once and return the body text."""
    async with FeedFetcher(url, client=client) as fetcher:
        return await fetcher.fetch()


def _redact_url(url: str) -> str:
    """Return ``url`` with the query string removed for logging."""
    parsed = urlparse(url)
    return parsed._replace(query="", fragment="").geturl()
