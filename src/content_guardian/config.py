"""Runtime configuration for the ingestion pipeline, worker, and scheduler."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse
from uuid import uuid4


@dataclass(slots=True)
class PipelineSettings:
    """Per-step retry policy of the pipeline state machine."""

    max_step_attempts: int = 3
    retry_base_seconds: float = 1.0
    retry_jitter_ratio: float = 0.3


@dataclass(slots=True)
class SchedulerSettings:
    """Recurring scheduler timer settings."""

    interval_seconds: float = 60.0
    lock_ttl_seconds: int = 300
    instance_id: str = ""


@dataclass(slots=True)
class WorkerSettings:
    """Pipeline job queue worker settings."""

    poll_interval_seconds: float = 2.0
    stale_job_seconds: int = 1_800
    worker_id: str = ""


@dataclass(slots=True)
class ConnectorSettings:
    """Network settings shared by source connectors."""

    request_timeout_seconds: float = 30.0
    user_agent: str = "ContentGuardian/1.0"
    max_text_chars: int = 50_000


@dataclass(slots=True)
class AnalysisSettings:
    """Settings of the LLM-backed compliance analysis collaborator."""

    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    max_tokens: int = 4_096
    timeout_seconds: float = 120.0
    provider: str = "openai"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".content_guardian.db")
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    connector: ConnectorSettings = field(default_factory=ConnectorSettings)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path
            or Path(os.getenv("CONTENT_GUARDIAN_DB_PATH", ".content_guardian.db")),
            pipeline=PipelineSettings(
                max_step_attempts=int(os.getenv("CONTENT_GUARDIAN_MAX_STEP_ATTEMPTS", "3")),
                retry_base_seconds=float(
                    os.getenv("CONTENT_GUARDIAN_RETRY_BASE_SECONDS", "1.0"),
                ),
                retry_jitter_ratio=float(
                    os.getenv("CONTENT_GUARDIAN_RETRY_JITTER_RATIO", "0.3"),
                ),
            ),
            scheduler=SchedulerSettings(
                interval_seconds=float(
                    os.getenv("CONTENT_GUARDIAN_SCHEDULER_INTERVAL_SECONDS", "60"),
                ),
                lock_ttl_seconds=int(os.getenv("CONTENT_GUARDIAN_LOCK_TTL_SECONDS", "300")),
                instance_id=os.getenv("CONTENT_GUARDIAN_INSTANCE_ID", "").strip()
                or f"scheduler-{uuid4().hex[:8]}",
            ),
            worker=WorkerSettings(
                poll_interval_seconds=float(
                    os.getenv("CONTENT_GUARDIAN_WORKER_POLL_INTERVAL_SECONDS", "2.0"),
                ),
                stale_job_seconds=int(
                    os.getenv("CONTENT_GUARDIAN_WORKER_STALE_JOB_SECONDS", "1800"),
                ),
                worker_id=os.getenv("CONTENT_GUARDIAN_WORKER_ID", "").strip()
                or f"worker-{uuid4().hex[:8]}",
            ),
            connector=ConnectorSettings(
                request_timeout_seconds=float(
                    os.getenv("CONTENT_GUARDIAN_REQUEST_TIMEOUT_SECONDS", "30.0"),
                ),
                user_agent=os.getenv("CONTENT_GUARDIAN_USER_AGENT", "ContentGuardian/1.0"),
                max_text_chars=int(os.getenv("CONTENT_GUARDIAN_MAX_TEXT_CHARS", "50000")),
            ),
            analysis=AnalysisSettings(
                api_key=os.getenv("CONTENT_GUARDIAN_LLM_API_KEY", "").strip() or None,
                base_url=os.getenv(
                    "CONTENT_GUARDIAN_LLM_BASE_URL",
                    "https://api.openai.com/v1",
                ),
                model=os.getenv("CONTENT_GUARDIAN_LLM_MODEL", "gpt-4o"),
                max_tokens=int(os.getenv("CONTENT_GUARDIAN_LLM_MAX_TOKENS", "4096")),
                timeout_seconds=float(
                    os.getenv("CONTENT_GUARDIAN_LLM_TIMEOUT_SECONDS", "120.0"),
                ),
                provider=os.getenv("CONTENT_GUARDIAN_LLM_PROVIDER", "openai"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the runtime cannot work with."""

        if self.pipeline.max_step_attempts <= 0:
            raise ValueError("CONTENT_GUARDIAN_MAX_STEP_ATTEMPTS must be > 0.")
        if self.pipeline.retry_base_seconds < 0:
            raise ValueError("CONTENT_GUARDIAN_RETRY_BASE_SECONDS must be >= 0.")
        if not 0 <= self.pipeline.retry_jitter_ratio <= 1:
            raise ValueError("CONTENT_GUARDIAN_RETRY_JITTER_RATIO must be within [0, 1].")
        if self.scheduler.interval_seconds <= 0:
            raise ValueError("CONTENT_GUARDIAN_SCHEDULER_INTERVAL_SECONDS must be > 0.")
        if self.scheduler.lock_ttl_seconds <= 0:
            raise ValueError("CONTENT_GUARDIAN_LOCK_TTL_SECONDS must be > 0.")
        if self.worker.stale_job_seconds <= 0:
            raise ValueError("CONTENT_GUARDIAN_WORKER_STALE_JOB_SECONDS must be > 0.")
        if self.connector.request_timeout_seconds <= 0:
            raise ValueError("CONTENT_GUARDIAN_REQUEST_TIMEOUT_SECONDS must be > 0.")
        _validate_base_url(self.analysis.base_url)


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid CONTENT_GUARDIAN_LLM_BASE_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
