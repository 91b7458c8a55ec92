from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure

from todo_arbiter.backlog.metrics import build_backlog_stats, render_stats_lines
from todo_arbiter.backlog.models import TaskStatus, TaskView

pytestmark = [
    allure.epic("Backlog"),
    allure.feature("Backlog Analysis"),
]

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def _task(
    task_id: str,
    *,
    status: TaskStatus = TaskStatus.PENDING,
    owner: str | None = None,
    project: str | None = None,
    priority: int = 2,
    parent_id: str | None = None,
    updated_at: datetime = NOW,
) -> TaskView:
    return TaskView(
        task_id=task_id,
        title=f"Task {task_id}",
        description="",
        project=project,
        priority=priority,
        status=status,
        owner=owner,
        parent_id=parent_id,
        sibling_ids=(),
        failure_reason=None,
        version=0,
        created_at=NOW - timedelta(days=1),
        claimed_at=None,
        updated_at=updated_at,
    )


def test_stats_count_statuses_projects_owners_and_stale_tasks() -> None:
    tasks = [
        _task("a", project="x", priority=3),
        _task("b", project="x", status=TaskStatus.CLAIMED, owner="w1"),
        _task(
            "c",
            status=TaskStatus.IN_PROGRESS,
            owner="w1",
            updated_at=NOW - timedelta(hours=2),
        ),
        _task("d", project="y", status=TaskStatus.DONE),
    ]

    stats = build_backlog_stats(tasks, now=NOW, stale_after=timedelta(minutes=30))

    assert stats.total == 4
    assert stats.status_counts == {"pending": 1, "claimed": 1, "in_progress": 1, "done": 1}
    assert stats.project_counts == {"x": 2, "unassigned": 1, "y": 1}
    assert stats.priority_counts == {"3": 1, "2": 3}
    assert stats.owner_counts == {"w1": 2}
    assert stats.stale_task_ids == ["c"]
    assert stats.orphaned_task_ids == []
    assert stats.suggestions == ["1 active tasks look abandoned; run the liveness sweep."]


def test_stats_detect_orphans_relative_to_scanned_set() -> None:
    tasks = [
        _task("child-1", project="x", parent_id="epic"),
        _task("child-2", project="x", parent_id="child-1"),
    ]

    stats = build_backlog_stats(tasks, now=NOW, stale_after=timedelta(minutes=30))

    assert stats.orphaned_task_ids == ["child-1"]
    assert stats.suggestions == ["Found 1 orphaned sub-tasks whose parent is missing."]


def test_stats_suggest_focus_on_high_priority_backlog() -> None:
    tasks = [_task(f"hp-{index}", priority=3) for index in range(6)]

    stats = build_backlog_stats(tasks, now=NOW, stale_after=timedelta(minutes=30))

    assert stats.suggestions == [
        "6 high-priority tasks are pending; consider focusing on these.",
    ]


def test_render_stats_lines_for_empty_backlog() -> None:
    stats = build_backlog_stats([], now=NOW, stale_after=timedelta(minutes=30))

    assert render_stats_lines(stats=stats) == [
        "Backlog tasks: 0",
        "Status: none",
        "Projects: none",
        "Priorities: none",
        "Owners: none",
        "Stale active: none",
        "Orphaned: none",
    ]


def test_render_stats_lines_sorts_keys_and_appends_suggestions() -> None:
    tasks = [
        _task("b", project="y", status=TaskStatus.CLAIMED, owner="w2"),
        _task("a", project="x", parent_id="gone"),
    ]
    stats = build_backlog_stats(tasks, now=NOW, stale_after=timedelta(minutes=30))

    lines = render_stats_lines(stats=stats)

    assert lines[1] == "Status: claimed=1 pending=1"
    assert lines[2] == "Projects: x=1 y=1"
    assert lines[4] == "Owners: w2=1"
    assert lines[6] == "Orphaned: a"
    assert lines[-1] == "  suggestion: Found 1 orphaned sub-tasks whose parent is missing."
