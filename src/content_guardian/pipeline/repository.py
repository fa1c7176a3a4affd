"""SQLite repository for sources, ingestion runs, revisions, analysis, and tickets."""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, delete, select

from content_guardian.errors import RunNotFoundError, SourceNotFoundError
from content_guardian.pipeline.models import (
    TERMINAL_RUN_STATUSES,
    AnalysisOutput,
    AnalysisRecord,
    AuditEventView,
    Channel,
    ComplianceRule,
    ComplianceRuleCreate,
    ComplianceSettings,
    ComplianceStatus,
    EscalationLevel,
    Evidence,
    FetchStatus,
    IngestionRunView,
    JobStatus,
    NormalizedItem,
    PipelineJobView,
    RevisionText,
    RiskLevel,
    RunCounters,
    RunStatus,
    Severity,
    Source,
    SourceCreate,
    StepRecord,
    StepStatus,
    StoredRevision,
    TicketCreate,
    TicketStatus,
    TicketView,
    Violation,
)
from content_guardian.storage.alembic_runner import upgrade_head
from content_guardian.storage.common import (
    build_sqlite_engine,
    dump_json,
    load_json_dict,
    load_json_list,
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from content_guardian.storage.sqlmodel_models import (
    DEFAULT_SETTINGS_ID,
    AnalysisResultRow,
    AuditEventRow,
    ComplianceRuleRow,
    ContentItemRow,
    ContentRevisionRow,
    IngestionItemRow,
    IngestionRunRow,
    PipelineJobRow,
    SourceRow,
    SystemSettingsRow,
    TicketEventRow,
    TicketRow,
)

logger = logging.getLogger(__name__)

OPEN_TICKET_STATUSES = (TicketStatus.OPEN.value, TicketStatus.IN_PROGRESS.value)
RETENTION_RUN_EVENT = "RETENTION_RUN"


@dataclass(slots=True)
class EscalationChange:
    ticket_id: str
    from_level: EscalationLevel
    to_level: EscalationLevel


@dataclass(slots=True)
class PurgeCounts:
    audit_events_deleted: int
    ingestion_runs_deleted: int


class PipelineRepository:
    """Persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    # Sources

    def add_source(self, payload: SourceCreate) -> Source:
        now = to_db_datetime(utc_now())
        row = SourceRow(
            source_id=payload.source_id or uuid4().hex,
            display_name=payload.display_name,
            channel=payload.channel.value,
            source_type=payload.source_type,
            country_code=payload.country_code.upper(),
            start_urls_json=dump_json(list(payload.start_urls)),
            crawl_frequency_minutes=payload.crawl_frequency_minutes,
            is_enabled=payload.is_enabled,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_source(row)

    def get_source(self, source_id: str) -> Source | None:
        with Session(self.engine) as session:
            row = session.get(SourceRow, source_id)
            return _to_source(row) if row is not None else None

    def list_sources(self, *, include_deleted: bool = False) -> list[Source]:
        with Session(self.engine) as session:
            query = select(SourceRow)
            if not include_deleted:
                query = query.where(col(SourceRow.is_deleted).is_(False))
            rows = session.exec(query.order_by(col(SourceRow.created_at).asc())).all()
            return [_to_source(row) for row in rows]

    def list_due_sources(self, *, now: datetime) -> list[Source]:
        """Enabled sources with a crawl frequency that are due or have never been scheduled."""

        now_db = to_db_datetime(now)
        with Session(self.engine) as session:
            rows = session.exec(
                select(SourceRow)
                .where(
                    col(SourceRow.is_enabled).is_(True),
                    col(SourceRow.is_deleted).is_(False),
                    col(SourceRow.crawl_frequency_minutes).is_not(None),
                    (col(SourceRow.next_run_at) <= now_db)
                    | (
                        col(SourceRow.next_run_at).is_(None) & col(SourceRow.last_run_at).is_(None)
                    ),
                )
                .order_by(col(SourceRow.created_at).asc()),
            ).all()
            return [_to_source(row) for row in rows]

    def update_source_schedule(
        self,
        *,
        source_id: str,
        last_run_at: datetime,
        next_run_at: datetime | None,
    ) -> None:
        with Session(self.engine) as session:
            session.exec(
                sa_update(SourceRow)
                .where(col(SourceRow.source_id) == source_id)
                .values(
                    last_run_at=to_db_datetime(last_run_at),
                    next_run_at=to_db_datetime(next_run_at) if next_run_at else None,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()

    # Rules

    def add_rule(self, payload: ComplianceRuleCreate) -> ComplianceRule:
        now = to_db_datetime(utc_now())
        row = ComplianceRuleRow(
            rule_id=payload.rule_id or uuid4().hex,
            version_id=uuid4().hex,
            name=payload.name,
            rule_type=payload.rule_type,
            severity=payload.severity.value,
            payload_json=dump_json(payload.payload),
            channels_json=dump_json(sorted({value.upper() for value in payload.channels})),
            countries_json=dump_json(sorted({value.upper() for value in payload.countries})),
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_rule(row)

    def list_rules(self, *, active_only: bool = False) -> list[ComplianceRule]:
        with Session(self.engine) as session:
            query = select(ComplianceRuleRow)
            if active_only:
                query = query.where(col(ComplianceRuleRow.is_active).is_(True))
            rows = session.exec(query.order_by(col(ComplianceRuleRow.created_at).asc())).all()
            return [_to_rule(row) for row in rows]

    def list_applicable_rules(self, *, channel: str, country_code: str) -> list[ComplianceRule]:
        """Active rules listing both the channel and the country."""

        return [
            rule
            for rule in self.list_rules(active_only=True)
            if channel in rule.channels and country_code.upper() in rule.countries
        ]

    # Compliance settings

    def get_compliance_settings(self) -> ComplianceSettings:
        """Read the settings row; defaults apply when it does not exist."""

        with Session(self.engine) as session:
            row = session.get(SystemSettingsRow, DEFAULT_SETTINGS_ID)
            if row is None:
                return ComplianceSettings()
            return ComplianceSettings(
                due_hours_high=row.due_hours_high,
                due_hours_medium=row.due_hours_medium,
                due_days_low=row.due_days_low,
                escalation_after_hours=row.escalation_after_hours,
                retention_days=row.retention_days,
                uncertain_default_risk_level=RiskLevel(row.uncertain_default_risk_level),
                pii_redaction_enabled_default=row.pii_redaction_enabled_default,
                default_crawl_frequency_minutes=row.default_crawl_frequency_minutes,
            )

    def save_compliance_settings(self, settings: ComplianceSettings) -> ComplianceSettings:
        with Session(self.engine) as session:
            row = session.get(SystemSettingsRow, DEFAULT_SETTINGS_ID)
            if row is None:
                row = SystemSettingsRow(
                    id=DEFAULT_SETTINGS_ID,
                    updated_at=to_db_datetime(utc_now()),
                )
            row.due_hours_high = settings.due_hours_high
            row.due_hours_medium = settings.due_hours_medium
            row.due_days_low = settings.due_days_low
            row.escalation_after_hours = settings.escalation_after_hours
            row.retention_days = settings.retention_days
            row.uncertain_default_risk_level = settings.uncertain_default_risk_level.value
            row.pii_redaction_enabled_default = settings.pii_redaction_enabled_default
            row.default_crawl_frequency_minutes = settings.default_crawl_frequency_minutes
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            session.commit()
        return self.get_compliance_settings()

    # Runs

    def create_run(self, *, source_id: str, trigger: str = "manual") -> IngestionRunView:
        """Create a RUNNING run record for an existing, non-deleted source."""

        source = self.get_source(source_id)
        if source is None or source.is_deleted:
            raise SourceNotFoundError(f"Source not found: {source_id}")
        now = to_db_datetime(utc_now())
        row = IngestionRunRow(
            run_id=uuid4().hex,
            source_id=source_id,
            status=RunStatus.RUNNING.value,
            trigger=trigger,
            steps_json="[]",
            cancel_requested=False,
            created_at=now,
            started_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_run_view(row)

    def enqueue_run(self, *, source_id: str, run_id: str) -> PipelineJobView:
        """Hand a created run off to the job queue as `{source_id, run_id}`."""

        now = to_db_datetime(utc_now())
        row = PipelineJobRow(
            job_id=uuid4().hex,
            run_id=run_id,
            source_id=source_id,
            status=JobStatus.QUEUED.value,
            attempt=0,
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def trigger_run(
        self,
        *,
        source_id: str,
        trigger: str = "manual",
    ) -> tuple[IngestionRunView, PipelineJobView]:
        run = self.create_run(source_id=source_id, trigger=trigger)
        job = self.enqueue_run(source_id=source_id, run_id=run.run_id)
        return run, job

    def get_run(self, run_id: str) -> IngestionRunView | None:
        with Session(self.engine) as session:
            row = session.get(IngestionRunRow, run_id)
            return _to_run_view(row) if row is not None else None

    def require_run(self, run_id: str) -> IngestionRunView:
        run = self.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Ingestion run not found: {run_id}")
        return run

    def list_runs(self, *, source_id: str | None = None, limit: int = 20) -> list[IngestionRunView]:
        with Session(self.engine) as session:
            query = select(IngestionRunRow)
            if source_id is not None:
                query = query.where(IngestionRunRow.source_id == source_id)
            rows = session.exec(
                query.order_by(col(IngestionRunRow.created_at).desc()).limit(limit),
            ).all()
            return [_to_run_view(row) for row in rows]

    def request_cancel(self, run_id: str) -> bool:
        """Set the cancellation flag; terminal runs are left untouched."""

        self.require_run(run_id)
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(IngestionRunRow)
                .where(
                    col(IngestionRunRow.run_id) == run_id,
                    col(IngestionRunRow.status) == RunStatus.RUNNING.value,
                )
                .values(cancel_requested=True, updated_at=to_db_datetime(utc_now())),
            )
            session.commit()
            return result.rowcount == 1

    def is_cancel_requested(self, run_id: str) -> bool:
        with Session(self.engine) as session:
            value = session.exec(
                select(IngestionRunRow.cancel_requested).where(
                    IngestionRunRow.run_id == run_id,
                ),
            ).one_or_none()
            return bool(value)

    def save_steps(self, *, run_id: str, steps: list[StepRecord]) -> None:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            session.exec(
                sa_update(IngestionRunRow)
                .where(col(IngestionRunRow.run_id) == run_id)
                .values(
                    steps_json=dump_json([step.to_dict() for step in steps]),
                    updated_at=now,
                ),
            )
            _touch_running_job(session, run_id=run_id, now=now)
            session.commit()

    def update_step(self, *, run_id: str, index: int, record: StepRecord) -> None:
        """Replace one step record of the run's ordered array in place."""

        with Session(self.engine) as session:
            row = session.get(IngestionRunRow, run_id)
            if row is None:
                raise RunNotFoundError(f"Ingestion run not found: {run_id}")
            steps = load_json_list(row.steps_json)
            if not 0 <= index < len(steps):
                raise IndexError(f"Step index {index} out of range for run {run_id}")
            steps[index] = record.to_dict()
            row.steps_json = dump_json(steps)
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            _touch_running_job(session, run_id=run_id, now=row.updated_at)
            session.commit()

    def update_run_counters(self, *, run_id: str, **counters: int) -> None:
        allowed = {item.name for item in fields(RunCounters)}
        unknown = set(counters) - allowed
        if unknown:
            raise ValueError(f"Unknown run counters: {sorted(unknown)}")
        if not counters:
            return
        with Session(self.engine) as session:
            session.exec(
                sa_update(IngestionRunRow)
                .where(col(IngestionRunRow.run_id) == run_id)
                .values(updated_at=to_db_datetime(utc_now()), **counters),
            )
            session.commit()

    def finish_run_terminal(
        self,
        *,
        run_id: str,
        status: RunStatus,
        steps: list[StepRecord],
        last_error: str | None = None,
    ) -> bool:
        """Move a RUNNING run to FAILED or CANCELED together with its final step array."""

        if status not in {RunStatus.FAILED, RunStatus.CANCELED}:
            raise ValueError(f"Unsupported terminal status: {status}")
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(IngestionRunRow)
                .where(
                    col(IngestionRunRow.run_id) == run_id,
                    col(IngestionRunRow.status) == RunStatus.RUNNING.value,
                )
                .values(
                    status=status.value,
                    steps_json=dump_json([step.to_dict() for step in steps]),
                    last_error=last_error,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def complete_run(
        self,
        *,
        run_id: str,
        source: Source,
        fetched: int,
        changed: int,
        tickets_created: int,
    ) -> RunStatus:
        """Finish bookkeeping of a successful run in one transaction."""

        completed_at = utc_now()
        completed_db = to_db_datetime(completed_at)
        next_run_at = (
            completed_at + timedelta(minutes=source.crawl_frequency_minutes)
            if source.crawl_frequency_minutes
            else None
        )
        with Session(self.engine) as session:
            failed_items = int(
                session.exec(
                    select(func.count())
                    .select_from(IngestionItemRow)
                    .where(
                        col(IngestionItemRow.run_id) == run_id,
                        col(IngestionItemRow.fetch_status) != FetchStatus.OK.value,
                    ),
                ).one(),
            )
            result = session.exec(
                sa_update(IngestionRunRow)
                .where(
                    col(IngestionRunRow.run_id) == run_id,
                    col(IngestionRunRow.status) == RunStatus.RUNNING.value,
                )
                .values(
                    status=RunStatus.SUCCEEDED.value,
                    completed_at=completed_db,
                    items_failed=failed_items,
                    tickets_created=tickets_created,
                    updated_at=completed_db,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                current = session.get(IngestionRunRow, run_id)
                if current is None:
                    raise RunNotFoundError(f"Ingestion run not found: {run_id}")
                return RunStatus(current.status)
            session.exec(
                sa_update(SourceRow)
                .where(col(SourceRow.source_id) == source.source_id)
                .values(
                    last_run_at=completed_db,
                    next_run_at=to_db_datetime(next_run_at) if next_run_at else None,
                    updated_at=completed_db,
                ),
            )
            self._add_audit(
                session=session,
                event_type="INGESTION_RUN_COMPLETED",
                entity_type="INGESTION_RUN",
                entity_id=run_id,
                channel=source.channel.value,
                country_code=source.country_code,
                message=(
                    f"Ingestion run {RunStatus.SUCCEEDED.value}. Fetched: {fetched}, "
                    f"Changed: {changed}, Tickets: {tickets_created}"
                ),
                payload={"items_failed": failed_items},
            )
            session.commit()
            return RunStatus.SUCCEEDED

    def mark_run_failed(self, *, run_id: str, error: str) -> bool:
        """Fail a RUNNING run from outside the state machine, closing open step records."""

        run = self.get_run(run_id)
        if run is None or run.status is not RunStatus.RUNNING:
            return False
        steps = list(run.steps)
        failed_marked = False
        for step in steps:
            if step.status in {StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.SKIPPED}:
                continue
            if not failed_marked:
                step.status = StepStatus.FAILED
                step.last_error = error
                step.completed_at = utc_now()
                failed_marked = True
            else:
                step.status = StepStatus.SKIPPED
        return self.finish_run_terminal(
            run_id=run_id,
            status=RunStatus.FAILED,
            steps=steps,
            last_error=error,
        )

    # Pipeline jobs

    def claim_next_job(self, *, worker_id: str) -> PipelineJobView | None:
        """Atomically claim the oldest queued job."""

        while True:
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(PipelineJobRow)
                    .where(PipelineJobRow.status == JobStatus.QUEUED.value)
                    .order_by(col(PipelineJobRow.created_at).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(PipelineJobRow)
                    .where(
                        col(PipelineJobRow.job_id) == candidate.job_id,
                        col(PipelineJobRow.status) == JobStatus.QUEUED.value,
                    )
                    .values(
                        status=JobStatus.RUNNING.value,
                        attempt=candidate.attempt + 1,
                        worker_id=worker_id,
                        claimed_at=now,
                        finished_at=None,
                        error_summary=None,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(
                    select(PipelineJobRow)
                    .where(PipelineJobRow.job_id == candidate.job_id)
                    .execution_options(populate_existing=True),
                ).one()
                view = _to_job_view(claimed)
                session.commit()
                logger.debug("Worker %s claimed job %s", worker_id, view.job_id)
                return view

    def finish_job(
        self,
        *,
        job_id: str,
        status: JobStatus,
        error_summary: str | None = None,
    ) -> bool:
        if status not in {JobStatus.SUCCEEDED, JobStatus.FAILED}:
            raise ValueError(f"Unsupported job status: {status}")
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(PipelineJobRow)
                .where(
                    col(PipelineJobRow.job_id) == job_id,
                    col(PipelineJobRow.status) == JobStatus.RUNNING.value,
                )
                .values(
                    status=status.value,
                    error_summary=error_summary,
                    finished_at=now,
                    updated_at=now,
                ),
            )
            session.commit()
            return result.rowcount == 1

    def heartbeat_job(self, *, run_id: str) -> bool:
        """Mark the RUNNING job of a run as still alive."""

        with Session(self.engine) as session:
            touched = _touch_running_job(session, run_id=run_id, now=to_db_datetime(utc_now()))
            session.commit()
            return touched

    def requeue_stale_jobs(self, *, stale_after: timedelta) -> int:
        """Return jobs whose worker has sent no heartbeat for `stale_after`.

        Claiming and every step transition refresh the job heartbeat (`updated_at`).
        """

        cutoff = to_db_datetime(utc_now() - stale_after)
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(PipelineJobRow)
                .where(
                    col(PipelineJobRow.status) == JobStatus.RUNNING.value,
                    col(PipelineJobRow.updated_at) < cutoff,
                )
                .values(
                    status=JobStatus.QUEUED.value,
                    worker_id=None,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            session.commit()
            return int(result.rowcount or 0)

    def list_jobs(self, *, status: JobStatus | None = None) -> list[PipelineJobView]:
        with Session(self.engine) as session:
            query = select(PipelineJobRow)
            if status is not None:
                query = query.where(PipelineJobRow.status == status.value)
            rows = session.exec(query.order_by(col(PipelineJobRow.created_at).asc())).all()
            return [_to_job_view(row) for row in rows]

    # Ingestion items and content

    def record_ingestion_item(
        self,
        *,
        run_id: str,
        source: Source,
        external_id: str,
        url: str | None,
        fetch_status: FetchStatus = FetchStatus.OK,
        error: str | None = None,
    ) -> bool:
        """Record one fetched item of the run; repeated calls for the same item are no-ops."""

        with Session(self.engine) as session:
            existing = session.exec(
                select(IngestionItemRow.id).where(
                    IngestionItemRow.run_id == run_id,
                    IngestionItemRow.external_id == external_id,
                ),
            ).one_or_none()
            if existing is not None:
                return False
            session.add(
                IngestionItemRow(
                    run_id=run_id,
                    source_id=source.source_id,
                    external_id=external_id,
                    url=url,
                    fetch_status=fetch_status.value,
                    error=error,
                    created_at=to_db_datetime(utc_now()),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def store_revision(self, *, source: Source, normalized: NormalizedItem) -> StoredRevision:
        """Upsert the content item and append a revision only when the text hash changed."""

        item = normalized.item
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            content = session.exec(
                select(ContentItemRow).where(
                    ContentItemRow.source_id == source.source_id,
                    ContentItemRow.external_id == item.external_id,
                ),
            ).one_or_none()
            is_new = content is None
            if content is None:
                content = ContentItemRow(
                    content_id=uuid4().hex,
                    source_id=source.source_id,
                    channel=source.channel.value,
                    country_code=source.country_code,
                    content_type="WEB_PAGE" if source.channel is Channel.WEB else "SOCIAL_POST",
                    external_id=item.external_id,
                    url=normalized.canonical_url or item.url,
                    author_handle=item.author_handle,
                    published_at=to_db_datetime(item.published_at) if item.published_at else None,
                    last_seen_at=now,
                    created_at=now,
                )
            else:
                content.last_seen_at = now
            session.add(content)
            session.flush()

            latest = session.exec(
                select(ContentRevisionRow)
                .where(ContentRevisionRow.content_id == content.content_id)
                .order_by(col(ContentRevisionRow.revision_number).desc())
                .limit(1),
            ).one_or_none()

            revision_created = (
                latest is None or latest.normalized_text_hash != normalized.normalized_text_hash
            )
            previous_hash = latest.normalized_text_hash if latest is not None else None
            if latest is not None and not revision_created:
                revision = latest
                previous_hash = None
            else:
                revision = ContentRevisionRow(
                    revision_id=uuid4().hex,
                    content_id=content.content_id,
                    revision_number=(latest.revision_number if latest is not None else 0) + 1,
                    normalized_text_hash=normalized.normalized_text_hash,
                    content_key=normalized.content_key,
                    title=item.title,
                    main_text=item.main_text,
                    caption=item.caption,
                    description=item.description,
                    tags_json=dump_json(list(item.tags)),
                    comment_text=item.comment_text,
                    ocr_text=item.ocr_text,
                    transcript=item.transcript,
                    created_at=now,
                )
                session.add(revision)
                session.flush()
                content.current_revision_id = revision.revision_id
                session.add(content)

            analysis_pending = (
                session.exec(
                    select(AnalysisResultRow.analysis_id).where(
                        AnalysisResultRow.revision_id == revision.revision_id,
                    ),
                ).one_or_none()
                is None
            )
            stored = StoredRevision(
                content_id=content.content_id,
                revision_id=revision.revision_id,
                revision_number=revision.revision_number,
                normalized_text_hash=revision.normalized_text_hash,
                is_new=is_new,
                revision_created=revision_created,
                previous_hash=previous_hash,
                url=content.url,
                analysis_pending=analysis_pending,
            )
            session.commit()
            return stored

    def count_revisions(self, *, content_id: str) -> int:
        with Session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(ContentRevisionRow)
                    .where(col(ContentRevisionRow.content_id) == content_id),
                ).one(),
            )

    def get_revision_text(self, revision_id: str) -> RevisionText | None:
        with Session(self.engine) as session:
            row = session.get(ContentRevisionRow, revision_id)
            if row is None:
                return None
            return RevisionText(
                revision_id=row.revision_id,
                content_id=row.content_id,
                title=row.title,
                main_text=row.main_text,
                caption=row.caption,
                description=row.description,
                comment_text=row.comment_text,
                ocr_text=row.ocr_text,
                transcript=row.transcript,
            )

    # Analysis

    def get_analysis(self, revision_id: str) -> tuple[str, AnalysisOutput] | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AnalysisResultRow).where(AnalysisResultRow.revision_id == revision_id),
            ).one_or_none()
            if row is None:
                return None
            return row.analysis_id, _to_analysis_output(row)

    def save_analysis(self, record: AnalysisRecord) -> str:
        """Insert the analysis of a revision; an existing one for the revision wins."""

        output = record.output
        row = AnalysisResultRow(
            analysis_id=uuid4().hex,
            revision_id=output.revision_id,
            content_id=output.content_id,
            channel=record.channel,
            country_code=record.country_code,
            compliance_status=output.compliance_status.value,
            uncertain_reason=output.uncertain_reason,
            language_detected=output.language_detected,
            language_confidence=output.language_confidence,
            applicable_rule_version_ids_json=dump_json(record.applicable_rule_version_ids),
            violations_json=dump_json([violation.to_dict() for violation in output.violations]),
            llm_provider=record.llm_provider,
            llm_model=record.llm_model,
            pii_redaction_enabled=record.pii_redaction_enabled,
            analysis_started_at=(
                to_db_datetime(record.analysis_started_at) if record.analysis_started_at else None
            ),
            analysis_completed_at=(
                to_db_datetime(record.analysis_completed_at)
                if record.analysis_completed_at
                else None
            ),
            analysis_latency_ms=record.analysis_latency_ms,
            created_at=to_db_datetime(utc_now()),
        )
        with Session(self.engine) as session:
            session.add(row)
            try:
                session.commit()
                return row.analysis_id
            except IntegrityError:
                session.rollback()
        existing = self.get_analysis(output.revision_id)
        if existing is None:
            raise RuntimeError(f"Analysis insert failed for revision {output.revision_id}")
        return existing[0]

    # Tickets

    def get_ticket_by_key(self, ticket_key: str) -> TicketView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(TicketRow).where(TicketRow.ticket_key == ticket_key),
            ).one_or_none()
            return _to_ticket_view(row) if row is not None else None

    def get_ticket(self, ticket_id: str) -> TicketView | None:
        with Session(self.engine) as session:
            row = session.get(TicketRow, ticket_id)
            return _to_ticket_view(row) if row is not None else None

    def list_tickets(self, *, status: TicketStatus | None = None) -> list[TicketView]:
        with Session(self.engine) as session:
            query = select(TicketRow)
            if status is not None:
                query = query.where(TicketRow.status == status.value)
            rows = session.exec(query.order_by(col(TicketRow.created_at).asc())).all()
            return [_to_ticket_view(row) for row in rows]

    def create_ticket(self, payload: TicketCreate) -> TicketView | None:
        """Create a ticket with its CREATED event; None when the key already exists."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            existing = session.exec(
                select(TicketRow.ticket_id).where(TicketRow.ticket_key == payload.ticket_key),
            ).one_or_none()
            if existing is not None:
                return None
            row = TicketRow(
                ticket_id=uuid4().hex,
                ticket_key=payload.ticket_key,
                revision_id=payload.revision_id,
                content_id=payload.content_id,
                analysis_id=payload.analysis_id,
                source_id=payload.source_id,
                channel=payload.channel,
                country_code=payload.country_code,
                status=TicketStatus.OPEN.value,
                risk_level=payload.risk_level.value,
                escalation_level=EscalationLevel.LOCAL.value,
                title=payload.title,
                summary=payload.summary,
                due_at=to_db_datetime(payload.due_at),
                is_overdue=False,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            self._add_ticket_event(
                session=session,
                ticket_id=row.ticket_id,
                event_type="CREATED",
                details=payload.details,
            )
            self._add_audit(
                session=session,
                event_type="TICKET_CREATED",
                entity_type="TICKET",
                entity_id=row.ticket_id,
                channel=payload.channel,
                country_code=payload.country_code,
                message=(
                    f"Ticket created for {payload.details.get('compliance_status', 'flagged')} "
                    f"content (risk: {payload.risk_level.value})"
                ),
                payload=None,
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return None
            session.refresh(row)
            return _to_ticket_view(row)

    def set_ticket_status(self, *, ticket_id: str, status: TicketStatus) -> bool:
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(TicketRow, ticket_id)
            if row is None:
                return False
            previous = row.status
            row.status = status.value
            row.updated_at = now
            session.add(row)
            self._add_ticket_event(
                session=session,
                ticket_id=ticket_id,
                event_type="STATUS_CHANGED",
                details={"from": previous, "to": status.value},
            )
            session.commit()
            return True

    def escalate_stale_tickets(self, *, cutoff: datetime, now: datetime) -> list[EscalationChange]:
        """Bump open tickets untouched since `cutoff` by exactly one escalation tier."""

        cutoff_db = to_db_datetime(cutoff)
        now_db = to_db_datetime(now)
        changes: list[EscalationChange] = []
        with Session(self.engine) as session:
            candidates = session.exec(
                select(TicketRow).where(
                    col(TicketRow.status).in_(OPEN_TICKET_STATUSES),
                    col(TicketRow.updated_at) < cutoff_db,
                    col(TicketRow.escalation_level) != EscalationLevel.GLOBAL.value,
                ),
            ).all()
            for ticket in candidates:
                current = EscalationLevel(ticket.escalation_level)
                target = current.next_tier()
                result = session.exec(
                    sa_update(TicketRow)
                    .where(
                        col(TicketRow.ticket_id) == ticket.ticket_id,
                        col(TicketRow.escalation_level) == current.value,
                    )
                    .values(escalation_level=target.value, updated_at=now_db),
                )
                if result.rowcount != 1:
                    continue
                self._add_ticket_event(
                    session=session,
                    ticket_id=ticket.ticket_id,
                    event_type="ESCALATED",
                    details={"from": current.value, "to": target.value},
                )
                self._add_audit(
                    session=session,
                    event_type="ESCALATION_TRIGGERED",
                    entity_type="TICKET",
                    entity_id=ticket.ticket_id,
                    channel=ticket.channel,
                    country_code=ticket.country_code,
                    message=f"Ticket escalated from {current.value} to {target.value}",
                    payload=None,
                )
                changes.append(
                    EscalationChange(
                        ticket_id=ticket.ticket_id,
                        from_level=current,
                        to_level=target,
                    ),
                )
            session.commit()
        return changes

    def flag_overdue_tickets(self, *, now: datetime) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TicketRow)
                .where(
                    col(TicketRow.status).in_(OPEN_TICKET_STATUSES),
                    col(TicketRow.due_at) < to_db_datetime(now),
                    col(TicketRow.is_overdue).is_(False),
                )
                .values(is_overdue=True),
            )
            session.commit()
            return int(result.rowcount or 0)

    def list_ticket_events(self, ticket_id: str) -> list[tuple[str, dict[str, Any]]]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(TicketEventRow)
                .where(TicketEventRow.ticket_id == ticket_id)
                .order_by(col(TicketEventRow.id).asc()),
            ).all()
            return [(row.event_type, load_json_dict(row.details_json)) for row in rows]

    # Audit trail and retention

    def add_audit_event(  # noqa: PLR0913
        self,
        *,
        event_type: str,
        entity_type: str,
        entity_id: str | None,
        message: str,
        channel: str | None = None,
        country_code: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        with Session(self.engine) as session:
            self._add_audit(
                session=session,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                channel=channel,
                country_code=country_code,
                message=message,
                payload=payload,
            )
            session.commit()

    def latest_audit_event(self, event_type: str) -> AuditEventView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AuditEventRow)
                .where(AuditEventRow.event_type == event_type)
                .order_by(col(AuditEventRow.created_at).desc(), col(AuditEventRow.id).desc())
                .limit(1),
            ).one_or_none()
            return _to_audit_view(row) if row is not None else None

    def list_audit_events(self, *, event_type: str | None = None) -> list[AuditEventView]:
        with Session(self.engine) as session:
            query = select(AuditEventRow)
            if event_type is not None:
                query = query.where(AuditEventRow.event_type == event_type)
            rows = session.exec(query.order_by(col(AuditEventRow.id).asc())).all()
            return [_to_audit_view(row) for row in rows]

    def purge_before(self, *, cutoff: datetime) -> PurgeCounts:
        """Delete audit events and terminal runs older than `cutoff`."""

        cutoff_db = to_db_datetime(cutoff)
        terminal = [status.value for status in TERMINAL_RUN_STATUSES]
        with Session(self.engine) as session:
            audit_result = session.exec(
                delete(AuditEventRow).where(
                    col(AuditEventRow.created_at) < cutoff_db,
                    col(AuditEventRow.event_type) != RETENTION_RUN_EVENT,
                ),
            )
            old_run_ids = session.exec(
                select(IngestionRunRow.run_id).where(
                    col(IngestionRunRow.status).in_(terminal),
                    col(IngestionRunRow.completed_at) < cutoff_db,
                ),
            ).all()
            runs_deleted = 0
            if old_run_ids:
                session.exec(
                    delete(IngestionItemRow).where(col(IngestionItemRow.run_id).in_(old_run_ids)),
                )
                session.exec(
                    delete(PipelineJobRow).where(col(PipelineJobRow.run_id).in_(old_run_ids)),
                )
                run_result = session.exec(
                    delete(IngestionRunRow).where(col(IngestionRunRow.run_id).in_(old_run_ids)),
                )
                runs_deleted = int(run_result.rowcount or 0)
            session.commit()
            return PurgeCounts(
                audit_events_deleted=int(audit_result.rowcount or 0),
                ingestion_runs_deleted=runs_deleted,
            )

    def _add_ticket_event(
        self,
        *,
        session: Session,
        ticket_id: str,
        event_type: str,
        details: dict[str, Any],
    ) -> None:
        session.add(
            TicketEventRow(
                ticket_id=ticket_id,
                event_type=event_type,
                details_json=dump_json(details) if details else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )

    def _add_audit(  # noqa: PLR0913
        self,
        *,
        session: Session,
        event_type: str,
        entity_type: str,
        entity_id: str | None,
        channel: str | None,
        country_code: str | None,
        message: str,
        payload: dict[str, Any] | None,
    ) -> None:
        session.add(
            AuditEventRow(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_type="SYSTEM",
                channel=channel,
                country_code=country_code,
                message=message,
                payload_json=dump_json(payload) if payload else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _to_source(row: SourceRow) -> Source:
    return Source(
        source_id=row.source_id,
        display_name=row.display_name,
        channel=Channel(row.channel),
        source_type=row.source_type,
        country_code=row.country_code,
        start_urls=[str(url) for url in load_json_list(row.start_urls_json)],
        crawl_frequency_minutes=row.crawl_frequency_minutes,
        is_enabled=row.is_enabled,
        is_deleted=row.is_deleted,
        last_run_at=optional_utc(row.last_run_at),
        next_run_at=optional_utc(row.next_run_at),
    )


def _to_rule(row: ComplianceRuleRow) -> ComplianceRule:
    return ComplianceRule(
        rule_id=row.rule_id,
        version_id=row.version_id,
        name=row.name,
        rule_type=row.rule_type,
        severity=Severity(row.severity),
        payload=load_json_dict(row.payload_json),
        channels=[str(value) for value in load_json_list(row.channels_json)],
        countries=[str(value) for value in load_json_list(row.countries_json)],
        is_active=row.is_active,
    )


def _to_run_view(row: IngestionRunRow) -> IngestionRunView:
    return IngestionRunView(
        run_id=row.run_id,
        source_id=row.source_id,
        status=RunStatus(row.status),
        trigger=row.trigger,
        steps=[StepRecord.from_dict(item) for item in load_json_list(row.steps_json)],
        cancel_requested=row.cancel_requested,
        counters=RunCounters(
            items_fetched=row.items_fetched,
            items_changed=row.items_changed,
            items_failed=row.items_failed,
            analysis_queued=row.analysis_queued,
            analysis_completed=row.analysis_completed,
            tickets_created=row.tickets_created,
        ),
        last_error=row.last_error,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _touch_running_job(session: Session, *, run_id: str, now: datetime) -> bool:
    result = session.exec(
        sa_update(PipelineJobRow)
        .where(
            col(PipelineJobRow.run_id) == run_id,
            col(PipelineJobRow.status) == JobStatus.RUNNING.value,
        )
        .values(updated_at=now),
    )
    return result.rowcount == 1


def _to_job_view(row: PipelineJobRow) -> PipelineJobView:
    return PipelineJobView(
        job_id=row.job_id,
        run_id=row.run_id,
        source_id=row.source_id,
        status=JobStatus(row.status),
        attempt=row.attempt,
        worker_id=row.worker_id,
        error_summary=row.error_summary,
        created_at=to_utc_aware_datetime(row.created_at),
        claimed_at=optional_utc(row.claimed_at),
        finished_at=optional_utc(row.finished_at),
    )


def _to_analysis_output(row: AnalysisResultRow) -> AnalysisOutput:
    violations: list[Violation] = []
    for item in load_json_list(row.violations_json):
        violations.append(
            Violation(
                rule_version_id=str(item.get("ruleVersionId", "")),
                rule_id=str(item.get("ruleId", "")),
                severity=Severity(item.get("severitySnapshot", Severity.MEDIUM.value)),
                explanation=str(item.get("explanation", "")),
                evidence=[
                    Evidence(
                        field=str(evidence.get("field", "")),
                        snippet=str(evidence.get("snippet", "")),
                        start_offset=evidence.get("startOffset"),
                        end_offset=evidence.get("endOffset"),
                    )
                    for evidence in item.get("evidence") or []
                ],
                fix_suggestion=item.get("fixSuggestion"),
            ),
        )
    return AnalysisOutput(
        revision_id=row.revision_id,
        content_id=row.content_id,
        compliance_status=ComplianceStatus(row.compliance_status),
        violations=violations,
        language_detected=row.language_detected,
        language_confidence=row.language_confidence,
        uncertain_reason=row.uncertain_reason,
    )


def _to_ticket_view(row: TicketRow) -> TicketView:
    return TicketView(
        ticket_id=row.ticket_id,
        ticket_key=row.ticket_key,
        revision_id=row.revision_id,
        content_id=row.content_id,
        source_id=row.source_id,
        status=TicketStatus(row.status),
        risk_level=RiskLevel(row.risk_level),
        escalation_level=EscalationLevel(row.escalation_level),
        title=row.title,
        summary=row.summary,
        due_at=to_utc_aware_datetime(row.due_at),
        is_overdue=row.is_overdue,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_audit_view(row: AuditEventRow) -> AuditEventView:
    return AuditEventView(
        event_type=row.event_type,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        message=row.message,
        payload=load_json_dict(row.payload_json),
        created_at=to_utc_aware_datetime(row.created_at),
    )
