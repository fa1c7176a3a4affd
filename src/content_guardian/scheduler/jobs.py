"""Recurring maintenance jobs run by the scheduler loop."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from content_guardian.pipeline.repository import (
    RETENTION_RUN_EVENT,
    EscalationChange,
    PipelineRepository,
    PurgeCounts,
)

logger = logging.getLogger(__name__)

RETENTION_THROTTLE = timedelta(hours=24)


@dataclass(slots=True)
class IngestionScanResult:
    queued_run_ids: list[str]

    @property
    def queued(self) -> int:
        return len(self.queued_run_ids)


@dataclass(slots=True)
class EscalationResult:
    changes: list[EscalationChange]
    newly_overdue: int

    @property
    def escalated(self) -> int:
        return len(self.changes)


@dataclass(slots=True)
class RetentionResult:
    throttled: bool
    retention_days: int
    counts: PurgeCounts


def run_periodic_ingestion(repository: PipelineRepository, *, now: datetime) -> IngestionScanResult:
    """Create and enqueue a run for every source whose crawl is due."""

    queued: list[str] = []
    for source in repository.list_due_sources(now=now):
        run, _ = repository.trigger_run(source_id=source.source_id, trigger="scheduled")
        frequency = source.crawl_frequency_minutes or 60
        repository.update_source_schedule(
            source_id=source.source_id,
            last_run_at=now,
            next_run_at=now + timedelta(minutes=frequency),
        )
        queued.append(run.run_id)
        logger.info("Queued scheduled run %s for source %s", run.run_id, source.source_id)
    return IngestionScanResult(queued_run_ids=queued)


def run_escalation_sweep(repository: PipelineRepository, *, now: datetime) -> EscalationResult:
    """Escalate stale open tickets by one tier, then flag overdue ones."""

    settings = repository.get_compliance_settings()
    cutoff = now - timedelta(hours=settings.escalation_after_hours)
    changes = repository.escalate_stale_tickets(cutoff=cutoff, now=now)
    newly_overdue = repository.flag_overdue_tickets(now=now)
    if changes or newly_overdue:
        logger.info(
            "Escalation sweep: %d escalated, %d newly overdue",
            len(changes),
            newly_overdue,
        )
    return EscalationResult(changes=changes, newly_overdue=newly_overdue)


def run_retention_purge(repository: PipelineRepository, *, now: datetime) -> RetentionResult:
    """Purge audit events and finished runs past the retention window, at most once a day."""

    settings = repository.get_compliance_settings()
    last_marker = repository.latest_audit_event(RETENTION_RUN_EVENT)
    if last_marker is not None and now - last_marker.created_at < RETENTION_THROTTLE:
        logger.debug("Retention purge skipped, last run at %s", last_marker.created_at)
        return RetentionResult(
            throttled=True,
            retention_days=settings.retention_days,
            counts=PurgeCounts(audit_events_deleted=0, ingestion_runs_deleted=0),
        )

    cutoff = now - timedelta(days=settings.retention_days)
    counts = repository.purge_before(cutoff=cutoff)
    repository.add_audit_event(
        event_type=RETENTION_RUN_EVENT,
        entity_type="SYSTEM_SETTINGS",
        entity_id="default",
        message=(
            f"Retention purge: {counts.audit_events_deleted} audit events, "
            f"{counts.ingestion_runs_deleted} ingestion runs deleted "
            f"(cutoff: {settings.retention_days} days)"
        ),
        payload={
            "retentionDays": settings.retention_days,
            "auditEventsDeleted": counts.audit_events_deleted,
            "ingestionRunsDeleted": counts.ingestion_runs_deleted,
            "cutoffDate": cutoff.isoformat(),
        },
    )
    logger.info(
        "Retention purge deleted %d audit events and %d ingestion runs",
        counts.audit_events_deleted,
        counts.ingestion_runs_deleted,
    )
    return RetentionResult(throttled=False, retention_days=settings.retention_days, counts=counts)
