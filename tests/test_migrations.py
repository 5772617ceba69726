from pathlib import Path

import allure
from sqlalchemy import inspect, text

from pitch_autopilot.orchestrator.repository import PipelineRepository

pytestmark = [
    allure.epic("Job Store"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = PipelineRepository(tmp_path / "migrations.db")
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
    assert version == "20261018_0002"

    tables = set(inspect(repository.engine).get_table_names())
    assert {
        "workflows",
        "pipeline_jobs",
        "ledger_entries",
        "approval_events",
        "audit_log",
    } <= tables
    repository.close()


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "twice.db"
    first = PipelineRepository(db_path)
    first.init_schema()
    first.close()

    second = PipelineRepository(db_path)
    second.init_schema()
    assert second.list_jobs() == []
    second.close()
