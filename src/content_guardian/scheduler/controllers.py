"""Controllers for scheduler and maintenance CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from content_guardian.config import Settings
from content_guardian.pipeline.repository import PipelineRepository
from content_guardian.scheduler.jobs import (
    EscalationResult,
    IngestionScanResult,
    RetentionResult,
    run_escalation_sweep,
    run_retention_purge,
)
from content_guardian.scheduler.locks import (
    ESCALATION_SCAN_LOCK,
    RETENTION_PURGE_LOCK,
    SchedulerLockManager,
)
from content_guardian.scheduler.loop import JobReport, SchedulerLoop, SchedulerTickResult
from content_guardian.storage.common import utc_now


@dataclass(slots=True)
class SchedulerRunCommand:
    """CLI input for the scheduler loop."""

    db_path: Path | None
    once: bool
    max_ticks: int | None = None


class SchedulerCliController:
    """Coordinates scheduler loop and one-off maintenance jobs."""

    def run(self, command: SchedulerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _repository(settings) as repository:
            loop = SchedulerLoop(
                repository,
                _lock_manager(settings, repository),
                interval_seconds=settings.scheduler.interval_seconds,
            )
            if command.once:
                return render_tick(loop.tick())
            ticks = loop.run_forever(max_ticks=command.max_ticks)
        return [f"Scheduler stopped after {ticks} ticks."]

    def escalate(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with _repository(settings) as repository:
            locks = _lock_manager(settings, repository)
            with locks.hold(ESCALATION_SCAN_LOCK) as acquired:
                if not acquired:
                    return [f"Skipped: lock {ESCALATION_SCAN_LOCK} is held by another instance."]
                result = run_escalation_sweep(repository, now=utc_now())
        return [_describe_result(result)]

    def purge(self, db_path: Path | None) -> list[str]:
        settings = Settings.from_env(db_path=db_path)
        with _repository(settings) as repository:
            locks = _lock_manager(settings, repository)
            with locks.hold(RETENTION_PURGE_LOCK) as acquired:
                if not acquired:
                    return [f"Skipped: lock {RETENTION_PURGE_LOCK} is held by another instance."]
                result = run_retention_purge(repository, now=utc_now())
        return [_describe_result(result)]


def render_tick(tick: SchedulerTickResult) -> list[str]:
    lines = [f"Scheduler tick at {tick.started_at.isoformat()}"]
    lines.extend(_render_report(report) for report in tick.reports)
    return lines


def _render_report(report: JobReport) -> str:
    line = f"  {report.lock_name}: {report.outcome.value}"
    if report.error:
        return f"{line} error={report.error}"
    if report.result is not None:
        return f"{line} {_describe_result(report.result)}"
    return line


def _describe_result(result: object) -> str:
    if isinstance(result, IngestionScanResult):
        return f"Ingestion scan: queued={result.queued}"
    if isinstance(result, EscalationResult):
        return (
            f"Escalation sweep: escalated={result.escalated} "
            f"newly_overdue={result.newly_overdue}"
        )
    if isinstance(result, RetentionResult):
        if result.throttled:
            return "Retention purge: skipped (last run less than 24h ago)"
        return (
            f"Retention purge: days={result.retention_days} "
            f"audit_events_deleted={result.counts.audit_events_deleted} "
            f"ingestion_runs_deleted={result.counts.ingestion_runs_deleted}"
        )
    return str(result)


def _lock_manager(settings: Settings, repository: PipelineRepository) -> SchedulerLockManager:
    return SchedulerLockManager(
        repository.engine,
        holder_id=settings.scheduler.instance_id,
        ttl_seconds=settings.scheduler.lock_ttl_seconds,
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[PipelineRepository]:
    repository = PipelineRepository(settings.db_path)
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()
