from __future__ import annotations

import allure
import httpx
import pytest

from content_guardian.config import ConnectorSettings
from content_guardian.connectors import (
    PlaceholderConnector,
    WebConnector,
    YouTubeConnector,
    get_connector_for_source,
)
from content_guardian.connectors.social import extract_video_id
from content_guardian.errors import ConnectorConfigError
from content_guardian.http.fetcher import PageFetcher
from content_guardian.http.html_extractor import PageMetadata, extract_page_metadata
from content_guardian.pipeline.models import Channel, Source

pytestmark = [
    allure.epic("Ingestion Pipeline"),
    allure.feature("Source Connectors"),
]

OFFER_PAGE = """<!doctype html>
<html>
  <head>
    <title>Premium Savings &amp; Offers</title>
    <meta property="og:title" content="Premium Savings &amp; Offers">
    <meta name="description" content="Earn more with our savings plan">
    <style>body { color: red; }</style>
  </head>
  <body>
    <script>trackVisitor();</script>
    <h1>Savings plan</h1>
    <p>Open an account today and earn interest on every deposit you make.</p>
  </body>
</html>
"""


def _source(channel: Channel, *urls: str) -> Source:
    return Source(
        source_id="source-1",
        display_name="Brand",
        channel=channel,
        source_type="WEB_OWNED",
        country_code="IT",
        start_urls=list(urls),
    )


def _site(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/offer":
        return httpx.Response(200, text=OFFER_PAGE, headers={"content-type": "text/html"})
    return httpx.Response(404, text="not found")


@allure.story("Web")
def test_web_connector_extracts_page_fields_and_skips_failures() -> None:
    connector = WebConnector(transport=httpx.MockTransport(_site))
    source = _source(Channel.WEB, "https://brand.test/offer", "https://brand.test/missing")

    (item,) = connector.fetch(source)

    assert item.external_id == "https://brand.test/offer"
    assert item.url == "https://brand.test/offer"
    assert item.title == "Premium Savings & Offers"
    assert item.description == "Earn more with our savings plan"
    assert item.main_text is not None
    assert "earn interest on every deposit" in item.main_text
    assert "trackVisitor" not in item.main_text


@allure.story("Web")
def test_page_metadata_reads_head_tags() -> None:
    metadata = extract_page_metadata(OFFER_PAGE, url="https://brand.test/offer")

    assert metadata.title == "Premium Savings & Offers"
    assert metadata.description == "Earn more with our savings plan"
    assert extract_page_metadata("   ") == PageMetadata()


@allure.story("Web")
def test_web_connector_sends_configured_user_agent() -> None:
    agents: list[str] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        agents.append(request.headers["User-Agent"])
        return httpx.Response(200, text=OFFER_PAGE)

    connector = WebConnector(
        ConnectorSettings(user_agent="GuardianBot/2.0"),
        transport=httpx.MockTransport(_handler),
    )

    connector.fetch(_source(Channel.WEB, "https://brand.test/offer"))

    assert agents == ["GuardianBot/2.0"]


@allure.story("Web")
def test_web_connector_omits_unreachable_pages() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    connector = WebConnector(transport=httpx.MockTransport(_handler))

    assert connector.fetch(_source(Channel.WEB, "https://brand.test/offer")) == []


@allure.story("Web")
def test_page_fetcher_reports_failures_as_errors() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/slow":
            raise httpx.ReadTimeout("read timed out", request=request)
        return _site(request)

    with PageFetcher(timeout_seconds=5, transport=httpx.MockTransport(_handler)) as fetcher:
        page = fetcher.get("https://brand.test/offer")
        missing = fetcher.get("https://brand.test/missing")
        slow = fetcher.get("https://brand.test/slow")

    assert page.ok
    assert "Savings plan" in page.html
    assert (missing.ok, missing.error, missing.html) == (False, "HTTP 404", "")
    assert slow.error == "timeout"


@allure.story("Web")
def test_web_source_without_urls_is_a_configuration_error() -> None:
    with pytest.raises(ConnectorConfigError):
        WebConnector().fetch(_source(Channel.WEB))


@allure.story("YouTube")
@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://www.youtube.com/watch?v=dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://youtu.be/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/shorts/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/embed/dQw4w9WgXcQ", "dQw4w9WgXcQ"),
        ("https://www.youtube.com/@brand", None),
    ],
)
def test_extract_video_id(url: str, expected: str | None) -> None:
    assert extract_video_id(url) == expected


@allure.story("YouTube")
def test_youtube_connector_returns_transcripts() -> None:
    requested: list[str] = []

    def _transcripts(video_id: str) -> tuple[str, str] | None:
        requested.append(video_id)
        if video_id == "aaaaaaaaaaa":
            return "guaranteed returns for everyone", "en"
        if video_id == "bbbbbbbbbbb":
            return None
        raise RuntimeError("transcripts disabled")

    connector = YouTubeConnector(transcript_fetcher=_transcripts)
    source = _source(
        Channel.YOUTUBE,
        "https://youtu.be/aaaaaaaaaaa",
        "https://youtu.be/bbbbbbbbbbb",
        "https://youtu.be/ccccccccccc",
        "https://www.youtube.com/@brand",
    )

    (item,) = connector.fetch(source)

    assert requested == ["aaaaaaaaaaa", "bbbbbbbbbbb", "ccccccccccc"]
    assert item.external_id == "aaaaaaaaaaa"
    assert item.url == "https://youtu.be/aaaaaaaaaaa"
    assert item.transcript == "guaranteed returns for everyone"


@allure.story("YouTube")
def test_youtube_transcript_is_truncated() -> None:
    connector = YouTubeConnector(
        ConnectorSettings(max_text_chars=10),
        transcript_fetcher=lambda _video_id: ("a transcript longer than ten", "en"),
    )

    (item,) = connector.fetch(_source(Channel.YOUTUBE, "https://youtu.be/aaaaaaaaaaa"))

    assert item.transcript == "a transcri"


@allure.story("YouTube")
def test_youtube_source_without_urls_is_a_configuration_error() -> None:
    with pytest.raises(ConnectorConfigError):
        YouTubeConnector(transcript_fetcher=lambda _video_id: None).fetch(
            _source(Channel.YOUTUBE),
        )


@allure.story("Dispatch")
@pytest.mark.parametrize(
    ("channel", "connector_type"),
    [
        (Channel.WEB, WebConnector),
        (Channel.YOUTUBE, YouTubeConnector),
        (Channel.FACEBOOK, PlaceholderConnector),
        (Channel.INSTAGRAM, PlaceholderConnector),
        (Channel.LINKEDIN, PlaceholderConnector),
    ],
)
def test_connector_is_chosen_by_channel(channel: Channel, connector_type: type) -> None:
    assert isinstance(get_connector_for_source(_source(channel)), connector_type)


@allure.story("Dispatch")
def test_placeholder_connector_returns_no_items() -> None:
    connector = get_connector_for_source(_source(Channel.INSTAGRAM, "https://instagram.com/x"))

    assert connector.fetch(_source(Channel.INSTAGRAM)) == []
