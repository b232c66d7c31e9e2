from pathlib import Path

import allure
from sqlalchemy import inspect, text

from image_tasks.orchestrator.repository import SQLiteTaskRepository

pytestmark = [
    allure.epic("Persistence"),
    allure.feature("Schema Migrations"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = SQLiteTaskRepository(tmp_path / "migrations.db")
    try:
        repository.init_schema()

        with repository.engine.connect() as connection:
            version = connection.execute(
                text("SELECT version_num FROM alembic_version LIMIT 1"),
            ).scalar_one()
        tables = set(inspect(repository.engine).get_table_names())
    finally:
        repository.close()

    assert version == "20261016_0001"
    assert {"image_tasks", "image_task_events", "image_jobs"} <= tables


def test_init_schema_is_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "twice.db"
    first = SQLiteTaskRepository(db_path)
    first.init_schema()
    first.close()

    second = SQLiteTaskRepository(db_path)
    try:
        second.init_schema()
        columns = {column["name"] for column in inspect(second.engine).get_columns("image_jobs")}
    finally:
        second.close()

    assert {"attempts", "max_attempts", "available_at", "claimed_at", "last_error"} <= columns
