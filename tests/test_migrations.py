from pathlib import Path

import allure
from sqlalchemy import inspect, text

from todo_arbiter.backlog.repository import BacklogRepository

pytestmark = [
    allure.epic("Backlog"),
    allure.feature("Task Store"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = BacklogRepository(tmp_path / "migrations.db")
    repository.init_schema()
    # Second run is a no-op.
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalar_one()
        journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()
    assert version == "20261018_0001"
    assert str(journal_mode).lower() == "wal"

    inspector = inspect(repository.engine)
    assert {"backlog_tasks", "backlog_task_events"} <= set(inspector.get_table_names())
    task_columns = {column["name"] for column in inspector.get_columns("backlog_tasks")}
    assert {"task_id", "status", "owner", "priority", "version", "updated_at"} <= task_columns
    index_names = {index["name"] for index in inspector.get_indexes("backlog_tasks")}
    assert "idx_backlog_tasks_queue" in index_names
    repository.close()
