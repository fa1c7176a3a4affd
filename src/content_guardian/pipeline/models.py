"""Domain models for ingestion runs, content revisions, analysis, and tickets."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Channel(str, Enum):
    WEB = "WEB"
    FACEBOOK = "FACEBOOK"
    INSTAGRAM = "INSTAGRAM"
    LINKEDIN = "LINKEDIN"
    YOUTUBE = "YOUTUBE"


class RunStatus(str, Enum):
    """Run lifecycle; every state except RUNNING is terminal."""

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.SUCCEEDED, RunStatus.FAILED, RunStatus.CANCELED})


class StepStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class StepName(str, Enum):
    """Pipeline steps in execution order."""

    RUN_START = "RUN_START"
    FETCH_ITEMS = "FETCH_ITEMS"
    NORMALIZE_HASH = "NORMALIZE_HASH"
    STORE_REVISION = "STORE_REVISION"
    DIFF = "DIFF"
    ANALYZE_LLM = "ANALYZE_LLM"
    UPSERT_TICKET = "UPSERT_TICKET"
    RUN_FINISH = "RUN_FINISH"


class ComplianceStatus(str, Enum):
    COMPLIANT = "COMPLIANT"
    NON_COMPLIANT = "NON_COMPLIANT"
    UNCERTAIN = "UNCERTAIN"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    UNCERTAIN_MEDIUM = "UNCERTAIN_MEDIUM"


class TicketStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class EscalationLevel(str, Enum):
    """Escalation tiers, ordered from lowest to highest."""

    LOCAL = "LOCAL"
    REGIONAL = "REGIONAL"
    GLOBAL = "GLOBAL"

    def next_tier(self) -> EscalationLevel:
        order = list(EscalationLevel)
        index = order.index(self)
        return order[min(index + 1, len(order) - 1)]


class JobStatus(str, Enum):
    """Pipeline job queue states."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FetchStatus(str, Enum):
    OK = "OK"
    FAILED = "FAILED"


@dataclass(slots=True)
class Source:
    """Configured origin of content; read-only during a run."""

    source_id: str
    display_name: str
    channel: Channel
    source_type: str
    country_code: str
    start_urls: list[str] = field(default_factory=list)
    crawl_frequency_minutes: int | None = None
    is_enabled: bool = True
    is_deleted: bool = False
    last_run_at: datetime | None = None
    next_run_at: datetime | None = None


@dataclass(slots=True)
class SourceCreate:
    display_name: str
    channel: Channel
    country_code: str
    source_type: str = "WEB_OWNED"
    start_urls: list[str] = field(default_factory=list)
    crawl_frequency_minutes: int | None = None
    is_enabled: bool = True
    source_id: str | None = None


@dataclass(slots=True)
class ComplianceRule:
    """Active rule version snapshot handed to the analysis collaborator."""

    rule_id: str
    version_id: str
    name: str
    rule_type: str
    severity: Severity
    payload: dict[str, Any] = field(default_factory=dict)
    channels: list[str] = field(default_factory=list)
    countries: list[str] = field(default_factory=list)
    is_active: bool = True


@dataclass(slots=True)
class ComplianceRuleCreate:
    name: str
    rule_type: str
    severity: Severity
    channels: list[str]
    countries: list[str]
    payload: dict[str, Any] = field(default_factory=dict)
    rule_id: str | None = None


@dataclass(slots=True)
class ComplianceSettings:
    """Settings re-read from the system settings row on every invocation."""

    due_hours_high: int = 24
    due_hours_medium: int = 72
    due_days_low: int = 7
    escalation_after_hours: int = 48
    retention_days: int = 180
    uncertain_default_risk_level: RiskLevel = RiskLevel.UNCERTAIN_MEDIUM
    pii_redaction_enabled_default: bool = True
    default_crawl_frequency_minutes: int = 60


@dataclass(slots=True)
class StepRecord:
    """Per-step execution record embedded in the run."""

    name: StepName
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "lastError": self.last_error,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> StepRecord:
        started_at = payload.get("startedAt")
        completed_at = payload.get("completedAt")
        return cls(
            name=StepName(payload["name"]),
            status=StepStatus(payload["status"]),
            attempts=int(payload.get("attempts") or 0),
            last_error=payload.get("lastError"),
            started_at=datetime.fromisoformat(started_at) if started_at else None,
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        )


@dataclass(slots=True)
class RunCounters:
    items_fetched: int = 0
    items_changed: int = 0
    items_failed: int = 0
    analysis_queued: int = 0
    analysis_completed: int = 0
    tickets_created: int = 0


@dataclass(slots=True)
class IngestionRunView:
    """Readable run view for CLI, worker, and the state machine."""

    run_id: str
    source_id: str
    status: RunStatus
    trigger: str
    steps: list[StepRecord]
    cancel_requested: bool
    counters: RunCounters
    last_error: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class PipelineJobView:
    job_id: str
    run_id: str
    source_id: str
    status: JobStatus
    attempt: int
    worker_id: str | None
    error_summary: str | None
    created_at: datetime
    claimed_at: datetime | None
    finished_at: datetime | None


@dataclass(slots=True)
class FetchedItem:
    """Raw unit returned by a connector."""

    external_id: str
    url: str | None = None
    title: str | None = None
    main_text: str | None = None
    caption: str | None = None
    description: str | None = None
    tags: list[str] = field(default_factory=list)
    comment_text: str | None = None
    ocr_text: str | None = None
    transcript: str | None = None
    author_handle: str | None = None
    published_at: datetime | None = None

    def text_fields(self) -> list[str | None]:
        return [
            self.title,
            self.main_text,
            self.caption,
            self.description,
            self.comment_text,
            self.ocr_text,
            self.transcript,
        ]


@dataclass(slots=True)
class NormalizedItem:
    item: FetchedItem
    normalized_text_hash: str
    content_key: str
    canonical_url: str | None = None


@dataclass(slots=True)
class StoredRevision:
    """Outcome of storing one normalized item."""

    content_id: str
    revision_id: str
    revision_number: int
    normalized_text_hash: str
    is_new: bool
    revision_created: bool
    previous_hash: str | None = None
    url: str | None = None
    analysis_pending: bool = False
    is_changed: bool = False


@dataclass(slots=True)
class RevisionText:
    """Text fields of a stored revision, as submitted for analysis."""

    revision_id: str
    content_id: str
    title: str | None = None
    main_text: str | None = None
    caption: str | None = None
    description: str | None = None
    comment_text: str | None = None
    ocr_text: str | None = None
    transcript: str | None = None


@dataclass(slots=True)
class Evidence:
    field: str
    snippet: str
    start_offset: int | None = None
    end_offset: int | None = None


@dataclass(slots=True)
class Violation:
    rule_version_id: str
    rule_id: str
    severity: Severity
    explanation: str
    evidence: list[Evidence] = field(default_factory=list)
    fix_suggestion: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ruleVersionId": self.rule_version_id,
            "ruleId": self.rule_id,
            "severitySnapshot": self.severity.value,
            "evidence": [
                {
                    "field": item.field,
                    "snippet": item.snippet,
                    "startOffset": item.start_offset,
                    "endOffset": item.end_offset,
                }
                for item in self.evidence
            ],
            "explanation": self.explanation,
            "fixSuggestion": self.fix_suggestion,
        }


@dataclass(slots=True)
class AnalysisOutput:
    """Parsed compliance verdict for one revision."""

    revision_id: str
    content_id: str
    compliance_status: ComplianceStatus
    violations: list[Violation] = field(default_factory=list)
    language_detected: str | None = None
    language_confidence: float | None = None
    uncertain_reason: str | None = None


@dataclass(slots=True)
class AnalysisRecord:
    """Persisted analysis metadata alongside the verdict."""

    output: AnalysisOutput
    channel: str
    country_code: str
    applicable_rule_version_ids: list[str] = field(default_factory=list)
    llm_provider: str | None = None
    llm_model: str | None = None
    pii_redaction_enabled: bool | None = None
    analysis_started_at: datetime | None = None
    analysis_completed_at: datetime | None = None
    analysis_latency_ms: int | None = None


@dataclass(slots=True)
class TicketCreate:
    ticket_key: str
    revision_id: str
    content_id: str
    analysis_id: str | None
    source_id: str
    channel: str
    country_code: str
    risk_level: RiskLevel
    title: str
    summary: str
    due_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TicketView:
    ticket_id: str
    ticket_key: str
    revision_id: str
    content_id: str
    source_id: str
    status: TicketStatus
    risk_level: RiskLevel
    escalation_level: EscalationLevel
    title: str
    summary: str
    due_at: datetime
    is_overdue: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class AuditEventView:
    event_type: str
    entity_type: str
    entity_id: str | None
    message: str
    payload: dict[str, Any]
    created_at: datetime


@dataclass(slots=True)
class PipelineRunResult:
    """Final state of one orchestrated run."""

    run_id: str
    status: RunStatus
    steps: list[StepRecord]
    last_error: str | None = None
