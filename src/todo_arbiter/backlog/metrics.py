"""Backlog health analysis for the stats command."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from todo_arbiter.backlog.models import PriorityTier, TaskStatus, TaskView

HIGH_PRIORITY_PENDING_WARN = 5
UNASSIGNED_PROJECT = "unassigned"


@dataclass(slots=True)
class BacklogStats:
    """Aggregated backlog counters and follow-up suggestions."""

    total: int
    status_counts: dict[str, int]
    project_counts: dict[str, int]
    priority_counts: dict[str, int]
    owner_counts: dict[str, int]
    orphaned_task_ids: list[str] = field(default_factory=list)
    stale_task_ids: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


def build_backlog_stats(
    tasks: Iterable[TaskView],
    *,
    now: datetime,
    stale_after: timedelta,
) -> BacklogStats:
    status_counts: Counter[str] = Counter()
    project_counts: Counter[str] = Counter()
    priority_counts: Counter[str] = Counter()
    owner_counts: Counter[str] = Counter()
    known_ids: set[str] = set()
    children: list[TaskView] = []
    stale_task_ids: list[str] = []
    high_pending = 0
    total = 0

    stale_before = now - stale_after
    for task in tasks:
        total += 1
        known_ids.add(task.task_id)
        status_counts[task.status.value] += 1
        project_counts[task.project or UNASSIGNED_PROJECT] += 1
        priority_counts[str(task.priority)] += 1
        if task.owner is not None:
            owner_counts[task.owner] += 1
        if task.parent_id is not None:
            children.append(task)
        if task.is_active and task.updated_at <= stale_before:
            stale_task_ids.append(task.task_id)
        if task.status is TaskStatus.PENDING and task.priority >= PriorityTier.HIGH.value:
            high_pending += 1

    orphaned = [task.task_id for task in children if task.parent_id not in known_ids]

    suggestions: list[str] = []
    if orphaned:
        suggestions.append(f"Found {len(orphaned)} orphaned sub-tasks whose parent is missing.")
    if stale_task_ids:
        suggestions.append(
            f"{len(stale_task_ids)} active tasks look abandoned; run the liveness sweep.",
        )
    if high_pending > HIGH_PRIORITY_PENDING_WARN:
        suggestions.append(
            f"{high_pending} high-priority tasks are pending; consider focusing on these.",
        )

    return BacklogStats(
        total=total,
        status_counts=dict(status_counts),
        project_counts=dict(project_counts),
        priority_counts=dict(priority_counts),
        owner_counts=dict(owner_counts),
        orphaned_task_ids=orphaned,
        stale_task_ids=stale_task_ids,
        suggestions=suggestions,
    )


def render_stats_lines(*, stats: BacklogStats) -> list[str]:
    """Render operator-facing backlog lines for CLI output."""

    lines = [
        f"Backlog tasks: {stats.total}",
        "Status: " + (_fmt_key_value(stats.status_counts) or "none"),
        "Projects: " + (_fmt_key_value(stats.project_counts) or "none"),
        "Priorities: " + (_fmt_key_value(stats.priority_counts) or "none"),
        "Owners: " + (_fmt_key_value(stats.owner_counts) or "none"),
        "Stale active: " + (", ".join(stats.stale_task_ids) or "none"),
        "Orphaned: " + (", ".join(stats.orphaned_task_ids) or "none"),
    ]
    for suggestion in stats.suggestions:
        lines.append(f"  suggestion: {suggestion}")
    return lines


def _fmt_key_value(values: dict[str, int]) -> str:
    if not values:
        return ""
    return " ".join(f"{key}={values[key]}" for key in sorted(values))
