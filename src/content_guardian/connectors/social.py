"""Social channel connectors."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from youtube_transcript_api import YouTubeTranscriptApi

from content_guardian.config import ConnectorSettings
from content_guardian.errors import ConnectorConfigError
from content_guardian.pipeline.models import Channel, FetchedItem, Source

logger = logging.getLogger(__name__)

_YT_VIDEO_ID_RE = re.compile(
    r"(?:youtube\.com/watch\?.*v=|youtu\.be/|youtube\.com/embed/|youtube\.com/shorts/)"
    r"([a-zA-Z0-9_-]{11})",
)
PREFERRED_LANGUAGES = ("en", "it", "es", "de", "fr")

TranscriptFetcher = Callable[[str], tuple[str, str] | None]


class PlaceholderConnector:
    """Channel without an integration yet: logs and returns no items."""

    def __init__(self, channel: Channel) -> None:
        self.channel = channel

    def fetch(self, source: Source) -> list[FetchedItem]:
        logger.info(
            "%s connector: fetch not implemented for source '%s'",
            self.channel.value,
            source.display_name,
        )
        return []


def extract_video_id(url: str) -> str | None:
    match = _YT_VIDEO_ID_RE.search(url)
    return match.group(1) if match else None


class YouTubeConnector:
    """Fetch transcripts of the video URLs configured as start URLs."""

    def __init__(
        self,
        settings: ConnectorSettings | None = None,
        *,
        transcript_fetcher: TranscriptFetcher | None = None,
    ) -> None:
        self.settings = settings or ConnectorSettings()
        self._fetch_transcript = transcript_fetcher or _fetch_transcript

    def fetch(self, source: Source) -> list[FetchedItem]:
        if not source.start_urls:
            raise ConnectorConfigError(
                f"Source '{source.display_name}' has no video URLs configured",
            )
        items: list[FetchedItem] = []
        for url in source.start_urls:
            video_id = extract_video_id(url)
            if video_id is None:
                logger.warning("Not a YouTube video URL, skipping: %s", url)
                continue
            try:
                fetched = self._fetch_transcript(video_id)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Transcript fetch failed for %s: %s", video_id, exc)
                continue
            if fetched is None:
                logger.warning("No transcript available for %s", video_id)
                continue
            text, _language = fetched
            max_chars = self.settings.max_text_chars
            if max_chars > 0 and len(text) > max_chars:
                text = text[:max_chars].rstrip()
            items.append(FetchedItem(external_id=video_id, url=url, transcript=text))
        return items


def _fetch_transcript(video_id: str) -> tuple[str, str] | None:
    """Preferred languages first, then the first transcript that can be fetched."""

    api = YouTubeTranscriptApi()
    try:
        fetched = api.fetch(video_id, languages=list(PREFERRED_LANGUAGES))
        return " ".join(snippet.text for snippet in fetched), fetched.language_code
    except Exception:  # noqa: BLE001
        logger.debug("Preferred-language transcript failed for %s, trying fallback", video_id)

    for transcript in api.list(video_id):
        try:
            fetched = transcript.fetch()
        except Exception:  # noqa: BLE001
            logger.debug("Transcript variant %s failed for %s", transcript.language_code, video_id)
            continue
        return " ".join(snippet.text for snippet in fetched), transcript.language_code
    return None
