"""Typed, recoverable backlog errors.

Storage failures are not wrapped here: SQLAlchemy errors reach the caller
unchanged and are never reported as a missing task.
"""

from __future__ import annotations

from todo_arbiter.backlog.models import TaskStatus


class BacklogError(RuntimeError):
    """Base class for expected backlog outcomes surfaced to callers."""

    kind = "backlog_error"

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class TaskNotFoundError(BacklogError):
    kind = "not_found"

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}", task_id=task_id)


class AlreadyClaimedError(BacklogError):
    kind = "already_claimed"

    def __init__(
        self,
        task_id: str,
        *,
        current_owner: str | None,
        status: TaskStatus | None = None,
    ) -> None:
        if current_owner is None and status not in (None, TaskStatus.PENDING):
            message = f"Task {task_id} is {status.value}, not pending."
        else:
            message = f"Task {task_id} is already claimed by {current_owner or 'another worker'}."
        super().__init__(message, task_id=task_id)
        self.current_owner = current_owner
        self.status = status


class OwnershipConflictError(BacklogError):
    kind = "ownership_conflict"

    def __init__(self, task_id: str, *, actor: str, current_owner: str | None) -> None:
        super().__init__(
            f"Task {task_id} is held by {current_owner or 'nobody'}, not {actor}.",
            task_id=task_id,
        )
        self.actor = actor
        self.current_owner = current_owner


class InvalidTransitionError(BacklogError):
    kind = "invalid_transition"

    def __init__(self, task_id: str, *, event: str, status: TaskStatus) -> None:
        super().__init__(
            f"Cannot {event} task {task_id} from status={status.value}.",
            task_id=task_id,
        )
        self.event = event
        self.status = status


class TaskValidationError(BacklogError, ValueError):
    kind = "validation_error"
