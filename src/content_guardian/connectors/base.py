"""Common connector contract."""

from __future__ import annotations

from typing import Protocol

from content_guardian.pipeline.models import FetchedItem, Source


class Connector(Protocol):
    """Fetches raw items for one source.

    Implementations apply a bounded timeout per network call, log and omit
    individual items that fail, and raise `ConnectorConfigError` only for
    configuration-level problems.
    """

    def fetch(self, source: Source) -> list[FetchedItem]:
        raise NotImplementedError
