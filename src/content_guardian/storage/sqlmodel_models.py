"""SQLModel ORM tables for pipeline, ticketing, and scheduler storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

DEFAULT_SETTINGS_ID = "default"


class SourceRow(SQLModel, table=True):
    __tablename__ = "sources"  # type: ignore[bad-override]

    source_id: str = Field(primary_key=True)
    display_name: str
    channel: str = Field(index=True)
    source_type: str
    country_code: str = Field(index=True)
    start_urls_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    crawl_frequency_minutes: int | None = None
    is_enabled: bool = True
    is_deleted: bool = False
    last_run_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    next_run_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ComplianceRuleRow(SQLModel, table=True):
    __tablename__ = "compliance_rules"  # type: ignore[bad-override]

    rule_id: str = Field(primary_key=True)
    version_id: str = Field(index=True)
    name: str
    rule_type: str
    severity: str
    payload_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    channels_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    countries_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class IngestionRunRow(SQLModel, table=True):
    __tablename__ = "ingestion_runs"  # type: ignore[bad-override]

    run_id: str = Field(primary_key=True)
    source_id: str = Field(foreign_key="sources.source_id", index=True)
    status: str = Field(index=True)
    trigger: str = "manual"
    steps_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    cancel_requested: bool = False
    items_fetched: int = 0
    items_changed: int = 0
    items_failed: int = 0
    analysis_queued: int = 0
    analysis_completed: int = 0
    tickets_created: int = 0
    last_error: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), index=True),
    )
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class IngestionItemRow(SQLModel, table=True):
    __tablename__ = "ingestion_items"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("run_id", "external_id", name="uq_ingestion_items_run_external"),
    )

    id: int | None = Field(default=None, primary_key=True)
    run_id: str = Field(
        sa_column=Column(
            ForeignKey("ingestion_runs.run_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    source_id: str = Field(index=True)
    external_id: str
    url: str | None = None
    fetch_status: str = "OK"
    error: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ContentItemRow(SQLModel, table=True):
    __tablename__ = "content_items"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("source_id", "external_id", name="uq_content_items_source_external"),
    )

    content_id: str = Field(primary_key=True)
    source_id: str = Field(foreign_key="sources.source_id", index=True)
    channel: str
    country_code: str
    content_type: str
    external_id: str
    url: str | None = None
    author_handle: str | None = None
    published_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    current_revision_id: str | None = None
    last_seen_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ContentRevisionRow(SQLModel, table=True):
    __tablename__ = "content_revisions"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "content_id",
            "revision_number",
            name="uq_content_revisions_content_number",
        ),
    )

    revision_id: str = Field(primary_key=True)
    content_id: str = Field(foreign_key="content_items.content_id", index=True)
    revision_number: int
    normalized_text_hash: str = Field(index=True)
    content_key: str
    title: str | None = Field(default=None, sa_column=Column(Text))
    main_text: str | None = Field(default=None, sa_column=Column(Text))
    caption: str | None = Field(default=None, sa_column=Column(Text))
    description: str | None = Field(default=None, sa_column=Column(Text))
    tags_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    comment_text: str | None = Field(default=None, sa_column=Column(Text))
    ocr_text: str | None = Field(default=None, sa_column=Column(Text))
    transcript: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AnalysisResultRow(SQLModel, table=True):
    __tablename__ = "analysis_results"  # type: ignore[bad-override]

    analysis_id: str = Field(primary_key=True)
    revision_id: str = Field(foreign_key="content_revisions.revision_id", unique=True)
    content_id: str = Field(index=True)
    channel: str
    country_code: str
    compliance_status: str = Field(index=True)
    uncertain_reason: str | None = None
    language_detected: str | None = None
    language_confidence: float | None = None
    applicable_rule_version_ids_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False),
    )
    violations_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    llm_provider: str | None = None
    llm_model: str | None = None
    pii_redaction_enabled: bool | None = None
    analysis_started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    analysis_completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    analysis_latency_ms: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketRow(SQLModel, table=True):
    __tablename__ = "tickets"  # type: ignore[bad-override]

    ticket_id: str = Field(primary_key=True)
    ticket_key: str = Field(unique=True)
    revision_id: str = Field(index=True)
    content_id: str = Field(index=True)
    analysis_id: str | None = None
    source_id: str = Field(index=True)
    channel: str
    country_code: str
    status: str = Field(index=True)
    risk_level: str
    escalation_level: str
    title: str
    summary: str = Field(default="", sa_column=Column(Text, nullable=False))
    due_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    is_overdue: bool = Field(default=False, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketEventRow(SQLModel, table=True):
    __tablename__ = "ticket_events"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: str = Field(foreign_key="tickets.ticket_id", index=True)
    event_type: str
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditEventRow(SQLModel, table=True):
    __tablename__ = "audit_events"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    event_type: str = Field(index=True)
    entity_type: str
    entity_id: str | None = None
    actor_type: str = "SYSTEM"
    channel: str | None = None
    country_code: str | None = None
    message: str = Field(default="", sa_column=Column(Text, nullable=False))
    payload_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class SystemSettingsRow(SQLModel, table=True):
    __tablename__ = "system_settings"  # type: ignore[bad-override]

    id: str = Field(default=DEFAULT_SETTINGS_ID, primary_key=True)
    due_hours_high: int = 24
    due_hours_medium: int = 72
    due_days_low: int = 7
    escalation_after_hours: int = 48
    retention_days: int = 180
    uncertain_default_risk_level: str = "UNCERTAIN_MEDIUM"
    pii_redaction_enabled_default: bool = True
    default_crawl_frequency_minutes: int = 60
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SchedulerLockRow(SQLModel, table=True):
    __tablename__ = "scheduler_locks"  # type: ignore[bad-override]

    lock_name: str = Field(primary_key=True)
    holder_id: str
    acquired_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class PipelineJobRow(SQLModel, table=True):
    __tablename__ = "pipeline_jobs"  # type: ignore[bad-override]

    job_id: str = Field(primary_key=True)
    run_id: str = Field(
        sa_column=Column(
            ForeignKey("ingestion_runs.run_id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )
    source_id: str = Field(index=True)
    status: str = Field(index=True)
    attempt: int = 0
    worker_id: str | None = None
    error_summary: str | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
