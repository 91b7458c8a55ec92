"""Domain models for the shared todo backlog."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    CLAIMED = "claimed"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


ACTIVE_STATUSES = frozenset({TaskStatus.CLAIMED, TaskStatus.IN_PROGRESS})
TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.FAILED})


class PriorityTier(int, Enum):
    """Named priority tiers; higher value is picked first."""

    LOW = 1
    NORMAL = 2
    HIGH = 3


def parse_priority(value: str | int) -> int:
    """Accept an integer rank or a tier name such as ``high``."""

    if isinstance(value, int):
        return value
    normalized = value.strip().lower()
    if not normalized:
        raise ValueError("Priority must not be empty.")
    try:
        return int(normalized)
    except ValueError:
        pass
    try:
        return PriorityTier[normalized.upper()].value
    except KeyError as error:
        raise ValueError(
            f"Unsupported priority: {value!r}. Use an integer or one of low/normal/high.",
        ) from error


class ClaimOutcome(str, Enum):
    """Result kinds for claim attempts."""

    SUCCESS = "success"
    ALREADY_CLAIMED = "already_claimed"
    NOT_FOUND = "not_found"
    EMPTY = "empty"


@dataclass(slots=True)
class TaskCreate:
    """Input payload for ingesting a task (create or replace)."""

    title: str
    description: str = ""
    task_id: str | None = None
    project: str | None = None
    priority: int = PriorityTier.NORMAL.value
    parent_id: str | None = None
    sibling_ids: tuple[str, ...] = ()


@dataclass(slots=True)
class TaskView:
    """Readable task view shared by every read path."""

    task_id: str
    title: str
    description: str
    project: str | None
    priority: int
    status: TaskStatus
    owner: str | None
    parent_id: str | None
    sibling_ids: tuple[str, ...]
    failure_reason: str | None
    version: int
    created_at: datetime
    claimed_at: datetime | None
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    actor: str | None
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskDetails:
    """Task with its event stream."""

    task: TaskView
    events: list[TaskEventView]


@dataclass(slots=True)
class TaskNode:
    """Task with its children, for hierarchy views."""

    task: TaskView
    children: list[TaskNode] = field(default_factory=list)


@dataclass(slots=True)
class ClaimResult:
    """Typed outcome of ``claim``/``claim_next``."""

    outcome: ClaimOutcome
    task_id: str | None = None
    task: TaskView | None = None
    current_owner: str | None = None
    current_status: TaskStatus | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is ClaimOutcome.SUCCESS
