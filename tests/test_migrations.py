from pathlib import Path

import allure
from sqlalchemy import text

from content_guardian.pipeline.models import ComplianceSettings
from content_guardian.pipeline.repository import PipelineRepository

pytestmark = [
    allure.epic("Storage"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = PipelineRepository(tmp_path / "migrations.db")
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(
            text("SELECT version_num FROM alembic_version LIMIT 1"),
        ).scalar_one_or_none()
        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table' AND name NOT IN ('alembic_version', 'sqlite_sequence')
                ORDER BY name
                """,
            ),
        ).scalars()
        table_names = list(tables)

    assert version == "20261018_0001"
    assert table_names == [
        "analysis_results",
        "audit_events",
        "compliance_rules",
        "content_items",
        "content_revisions",
        "ingestion_items",
        "ingestion_runs",
        "pipeline_jobs",
        "scheduler_locks",
        "sources",
        "system_settings",
        "ticket_events",
        "tickets",
    ]
    repository.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "twice.db"
    first = PipelineRepository(db_path)
    first.init_schema()
    first.close()

    second = PipelineRepository(db_path)
    second.init_schema()

    assert second.get_compliance_settings() == ComplianceSettings()
    second.close()
