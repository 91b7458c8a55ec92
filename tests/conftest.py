"""Shared test fixtures."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from todo_arbiter.backlog.models import TaskCreate, TaskView
from todo_arbiter.backlog.repository import BacklogRepository
from todo_arbiter.backlog.services import BacklogService


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 18, 9, 0, tzinfo=UTC))


@pytest.fixture()
def repository(tmp_path: Path, clock: FakeClock):
    repo = BacklogRepository(tmp_path / "backlog.db", clock=clock)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def service(repository: BacklogRepository) -> BacklogService:
    return BacklogService(repository=repository, stale_after=timedelta(seconds=60))


@pytest.fixture()
def make_task(repository: BacklogRepository):
    """Insert a pending task with test defaults."""

    def _make(
        task_id: str,
        *,
        priority: int = 2,
        project: str | None = None,
        title: str | None = None,
        description: str = "",
        parent_id: str | None = None,
    ) -> TaskView:
        return repository.put(
            TaskCreate(
                task_id=task_id,
                title=title or f"Task {task_id}",
                description=description,
                project=project,
                priority=priority,
                parent_id=parent_id,
            ),
        )

    return _make
