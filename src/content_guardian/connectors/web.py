"""Web page connector."""

from __future__ import annotations

import logging

import httpx

from content_guardian.config import ConnectorSettings
from content_guardian.errors import ConnectorConfigError
from content_guardian.http.fetcher import PageFetcher
from content_guardian.http.html_extractor import extract_main_text, extract_page_metadata
from content_guardian.pipeline.models import FetchedItem, Source

logger = logging.getLogger(__name__)


class WebConnector:
    """Fetch each start URL of a web source as one item keyed by its URL."""

    def __init__(
        self,
        settings: ConnectorSettings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.settings = settings or ConnectorSettings()
        self._transport = transport

    def fetch(self, source: Source) -> list[FetchedItem]:
        if not source.start_urls:
            raise ConnectorConfigError(
                f"Source '{source.display_name}' has no start URLs configured",
            )

        items: list[FetchedItem] = []
        with PageFetcher(
            timeout_seconds=self.settings.request_timeout_seconds,
            user_agent=self.settings.user_agent,
            transport=self._transport,
        ) as fetcher:
            for url in source.start_urls:
                page = fetcher.get(url)
                if not page.ok:
                    logger.warning(
                        "Skipping %s for source %s: %s",
                        url,
                        source.source_id,
                        page.error,
                    )
                    continue
                extraction = extract_main_text(
                    page.html,
                    url=url,
                    max_chars=self.settings.max_text_chars,
                )
                metadata = extract_page_metadata(page.html, url=url)
                items.append(
                    FetchedItem(
                        external_id=url,
                        url=url,
                        title=metadata.title,
                        main_text=extraction.text or None,
                        description=metadata.description,
                    ),
                )
        logger.info(
            "Fetched %d of %d pages for source %s",
            len(items),
            len(source.start_urls),
            source.source_id,
        )
        return items
