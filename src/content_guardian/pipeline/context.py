"""Run-scoped context shared by pipeline steps."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from content_guardian.pipeline.models import (
    AnalysisOutput,
    FetchedItem,
    NormalizedItem,
    Source,
    StoredRevision,
)

if TYPE_CHECKING:
    from content_guardian.analysis.client import ComplianceAnalyzer
    from content_guardian.connectors.base import Connector
    from content_guardian.pipeline.repository import PipelineRepository


@dataclass(slots=True)
class PipelineContext:
    """In-memory accumulator of one run; each step persists its own side effects."""

    repository: PipelineRepository
    source: Source
    run_id: str
    connector_factory: Callable[[Source], Connector]
    analyzer_factory: Callable[[], ComplianceAnalyzer]
    fetched_items: list[FetchedItem] = field(default_factory=list)
    normalized_items: list[NormalizedItem] = field(default_factory=list)
    stored_revisions: list[StoredRevision] = field(default_factory=list)
    changed_revisions: list[StoredRevision] = field(default_factory=list)
    analysis_results: list[AnalysisOutput] = field(default_factory=list)
    tickets_created: int = 0
