"""Full and compact task projections.

Both views are built from the same ``TaskView``; the compact one is a key
selection over the full one, so shared values are identical.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from todo_arbiter.backlog.models import TaskEventView, TaskNode, TaskView

COMPACT_FIELDS = ("id", "title", "status", "priority")


def full_projection(
    task: TaskView,
    *,
    events: Iterable[TaskEventView] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": task.task_id,
        "title": task.title,
        "status": task.status.value,
        "priority": task.priority,
        "description": task.description,
        "project": task.project,
        "owner": task.owner,
        "parent_id": task.parent_id,
        "sibling_ids": list(task.sibling_ids),
        "failure_reason": task.failure_reason,
        "version": task.version,
        "created_at": task.created_at.isoformat(),
        "claimed_at": task.claimed_at.isoformat() if task.claimed_at is not None else None,
        "updated_at": task.updated_at.isoformat(),
    }
    if events is not None:
        payload["history"] = [event_projection(event) for event in events]
    return payload


def compact_projection(task: TaskView) -> dict[str, Any]:
    full = full_projection(task)
    return {key: full[key] for key in COMPACT_FIELDS}


def project_tasks(tasks: Iterable[TaskView], *, compact: bool) -> list[dict[str, Any]]:
    if compact:
        return [compact_projection(task) for task in tasks]
    return [full_projection(task) for task in tasks]


def tree_projection(nodes: Iterable[TaskNode], *, compact: bool) -> list[dict[str, Any]]:
    """Nested projections with a ``children`` list on every node."""

    payload: list[dict[str, Any]] = []
    for node in nodes:
        item = compact_projection(node.task) if compact else full_projection(node.task)
        item["children"] = tree_projection(node.children, compact=compact)
        payload.append(item)
    return payload


def event_projection(event: TaskEventView) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "event": event.event_type,
        "actor": event.actor,
        "status_from": event.status_from.value if event.status_from is not None else None,
        "status_to": event.status_to.value if event.status_to is not None else None,
        "created_at": event.created_at.isoformat(),
        "details": event.details,
    }
