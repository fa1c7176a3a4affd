"""Page downloads for the web connector."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "ContentGuardian/1.0"


@dataclass(slots=True)
class FetchedPage:
    url: str
    html: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PageFetcher:
    """One httpx client per crawl; failed downloads come back as `error`, never raise."""

    def __init__(
        self,
        *,
        timeout_seconds: float,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            timeout=timeout_seconds,
            headers={"User-Agent": user_agent},
            transport=transport,
            follow_redirects=True,
        )

    def get(self, url: str) -> FetchedPage:
        try:
            response = self._client.get(url)
        except httpx.TimeoutException:
            logger.warning("Timeout fetching %s", url)
            return FetchedPage(url=url, error="timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error fetching %s: %s", url, exc)
            return FetchedPage(url=url, error=str(exc) or exc.__class__.__name__)
        if not response.is_success:
            return FetchedPage(url=url, error=f"HTTP {response.status_code}")
        return FetchedPage(url=url, html=response.text)

    def __enter__(self) -> PageFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self._client.close()
