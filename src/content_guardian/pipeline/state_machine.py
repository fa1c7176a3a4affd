"""Per-run pipeline state machine with per-step retry and cooperative cancellation."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Sequence

from content_guardian.analysis.client import ComplianceAnalyzer, build_analyzer
from content_guardian.config import AnalysisSettings, ConnectorSettings, PipelineSettings
from content_guardian.connectors import get_connector_for_source
from content_guardian.connectors.base import Connector
from content_guardian.errors import RunNotFoundError, SourceNotFoundError
from content_guardian.pipeline.context import PipelineContext
from content_guardian.pipeline.models import (
    TERMINAL_RUN_STATUSES,
    PipelineRunResult,
    RunStatus,
    Source,
    StepRecord,
    StepStatus,
)
from content_guardian.pipeline.repository import PipelineRepository
from content_guardian.pipeline.steps import PIPELINE_STEPS, PipelineStep
from content_guardian.storage.common import utc_now

logger = logging.getLogger(__name__)


class PipelineStateMachine:
    """Drive the ordered step list of one ingestion run.

    Each step gets up to `max_step_attempts` attempts with exponential backoff
    and jitter between them. Cancellation is observed only between steps. The
    first step that exhausts its attempts fails the run and skips the rest.
    Every step record change is persisted as it happens.
    """

    def __init__(  # noqa: PLR0913
        self,
        repository: PipelineRepository,
        *,
        settings: PipelineSettings | None = None,
        connector_settings: ConnectorSettings | None = None,
        analysis_settings: AnalysisSettings | None = None,
        connector_factory: Callable[[Source], Connector] | None = None,
        analyzer_factory: Callable[[], ComplianceAnalyzer] | None = None,
        steps: Sequence[PipelineStep] = PIPELINE_STEPS,
        sleep: Callable[[float], None] = time.sleep,
        random_source: random.Random | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings or PipelineSettings()
        connector_settings = connector_settings or ConnectorSettings()
        analysis_settings = analysis_settings or AnalysisSettings()
        self._connector_factory = connector_factory or (
            lambda source: get_connector_for_source(source, connector_settings)
        )
        self._analyzer_factory = analyzer_factory or (lambda: build_analyzer(analysis_settings))
        self._steps = tuple(steps)
        self._sleep = sleep
        self._random = random_source or random.Random()  # noqa: S311

    def execute(self, *, source_id: str, run_id: str) -> PipelineRunResult:
        source = self.repository.get_source(source_id)
        if source is None or source.is_deleted:
            raise SourceNotFoundError(f"Source not found: {source_id}")
        run = self.repository.require_run(run_id)
        if run.source_id != source_id:
            raise RunNotFoundError(f"Run {run_id} does not belong to source {source_id}")
        if run.status in TERMINAL_RUN_STATUSES:
            logger.info("Run %s is already %s, nothing to execute", run_id, run.status.value)
            return PipelineRunResult(
                run_id=run_id,
                status=run.status,
                steps=run.steps,
                last_error=run.last_error,
            )

        records = [StepRecord(name=step.name) for step in self._steps]
        self.repository.save_steps(run_id=run_id, steps=records)
        ctx = PipelineContext(
            repository=self.repository,
            source=source,
            run_id=run_id,
            connector_factory=self._connector_factory,
            analyzer_factory=self._analyzer_factory,
        )

        for index, step in enumerate(self._steps):
            if index > 0 and self.repository.is_cancel_requested(run_id):
                return self._cancel(run_id=run_id, records=records, from_index=index)

            error = self._run_step(ctx=ctx, step=step, index=index, records=records)
            if error is not None:
                return self._fail(run_id=run_id, records=records, index=index, error=error)

        final = self.repository.require_run(run_id)
        return PipelineRunResult(
            run_id=run_id,
            status=final.status,
            steps=records,
            last_error=final.last_error,
        )

    def backoff_seconds(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (zero-based)."""

        exponential = self.settings.retry_base_seconds * (2**attempt)
        jitter = self._random.random() * exponential * self.settings.retry_jitter_ratio
        return exponential + jitter

    def _run_step(
        self,
        *,
        ctx: PipelineContext,
        step: PipelineStep,
        index: int,
        records: list[StepRecord],
    ) -> str | None:
        """Attempt one step; return the last error when every attempt failed."""

        record = records[index]
        max_attempts = self.settings.max_step_attempts
        last_error: str | None = None
        for attempt in range(max_attempts):
            record.status = StepStatus.RUNNING
            record.attempts = attempt + 1
            record.started_at = utc_now()
            self.repository.update_step(run_id=ctx.run_id, index=index, record=record)
            try:
                step.execute(ctx)
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc) or exc.__class__.__name__
                record.last_error = last_error
                self.repository.update_step(run_id=ctx.run_id, index=index, record=record)
                logger.warning(
                    "Run %s step %s attempt %d/%d failed: %s",
                    ctx.run_id,
                    step.name.value,
                    attempt + 1,
                    max_attempts,
                    last_error,
                )
                if attempt < max_attempts - 1:
                    self._sleep(self.backoff_seconds(attempt))
                continue

            record.status = StepStatus.SUCCEEDED
            record.completed_at = utc_now()
            self.repository.update_step(run_id=ctx.run_id, index=index, record=record)
            return None
        return last_error

    def _fail(
        self,
        *,
        run_id: str,
        records: list[StepRecord],
        index: int,
        error: str,
    ) -> PipelineRunResult:
        failed = records[index]
        failed.status = StepStatus.FAILED
        failed.last_error = error
        failed.completed_at = utc_now()
        for record in records[index + 1 :]:
            record.status = StepStatus.SKIPPED
        self.repository.finish_run_terminal(
            run_id=run_id,
            status=RunStatus.FAILED,
            steps=records,
            last_error=error,
        )
        logger.error("Run %s failed at step %s: %s", run_id, failed.name.value, error)
        return PipelineRunResult(
            run_id=run_id,
            status=RunStatus.FAILED,
            steps=records,
            last_error=error,
        )

    def _cancel(
        self,
        *,
        run_id: str,
        records: list[StepRecord],
        from_index: int,
    ) -> PipelineRunResult:
        for record in records[from_index:]:
            record.status = StepStatus.SKIPPED
        self.repository.finish_run_terminal(
            run_id=run_id,
            status=RunStatus.CANCELED,
            steps=records,
        )
        logger.info("Run %s canceled before step %s", run_id, records[from_index].name.value)
        return PipelineRunResult(run_id=run_id, status=RunStatus.CANCELED, steps=records)
