"""Source connectors dispatched by channel."""

from __future__ import annotations

from content_guardian.config import ConnectorSettings
from content_guardian.connectors.base import Connector
from content_guardian.connectors.social import PlaceholderConnector, YouTubeConnector
from content_guardian.connectors.web import WebConnector
from content_guardian.errors import ConnectorConfigError
from content_guardian.pipeline.models import Channel, Source


def get_connector_for_source(
    source: Source,
    settings: ConnectorSettings | None = None,
) -> Connector:
    """Pick the connector implementation for the source channel."""

    channel = source.channel
    if channel is Channel.WEB:
        return WebConnector(settings)
    if channel is Channel.YOUTUBE:
        return YouTubeConnector(settings)
    if channel in {Channel.FACEBOOK, Channel.INSTAGRAM, Channel.LINKEDIN}:
        return PlaceholderConnector(channel)
    raise ConnectorConfigError(f"No connector available for channel '{channel}'")


__all__ = [
    "Connector",
    "PlaceholderConnector",
    "WebConnector",
    "YouTubeConnector",
    "get_connector_for_source",
]
