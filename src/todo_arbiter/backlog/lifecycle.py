"""Task lifecycle state machine.

Every transition is one guarded compare-and-set on the task row. When the guard
does not match, the current row is re-read only to explain the refusal; nothing is
written in that case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from todo_arbiter.backlog.errors import (
    InvalidTransitionError,
    OwnershipConflictError,
    TaskNotFoundError,
    TaskValidationError,
)
from todo_arbiter.backlog.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    TaskStatus,
    TaskView,
)
from todo_arbiter.backlog.repository import BacklogRepository, TaskEventWrite, TaskGuard

logger = logging.getLogger(__name__)

SWEEP_ACTOR = "liveness-sweep"


@dataclass(frozen=True, slots=True)
class Transition:
    """One row of the transition table."""

    event: str
    sources: frozenset[TaskStatus]
    target: TaskStatus
    owner_guarded: bool


TRANSITIONS: dict[str, Transition] = {
    "claim": Transition("claim", frozenset({TaskStatus.PENDING}), TaskStatus.CLAIMED, False),
    "start": Transition("start", frozenset({TaskStatus.CLAIMED}), TaskStatus.IN_PROGRESS, True),
    "complete": Transition(
        "complete",
        frozenset({TaskStatus.IN_PROGRESS}),
        TaskStatus.DONE,
        True,
    ),
    "fail": Transition("fail", frozenset({TaskStatus.IN_PROGRESS}), TaskStatus.FAILED, True),
    "release": Transition("release", ACTIVE_STATUSES, TaskStatus.PENDING, True),
    "reopen": Transition("reopen", TERMINAL_STATUSES, TaskStatus.PENDING, False),
}


class TaskLifecycle:
    """Applies the transition table to stored tasks."""

    def __init__(self, *, repository: BacklogRepository) -> None:
        self.repository = repository

    def claim(self, task_id: str, *, owner_id: str) -> TaskView | None:
        """Compare-and-set ``(pending, no owner) -> (claimed, owner_id)``.

        Returns ``None`` when the task was not pending-and-unowned at write time.
        """

        _require_actor(owner_id)
        now = self.repository.now()
        return self.repository.compare_and_set(
            task_id,
            guard=TaskGuard(
                statuses=TRANSITIONS["claim"].sources,
                owner=None,
                check_owner=True,
            ),
            values={
                "status": TaskStatus.CLAIMED,
                "owner": owner_id,
                "claimed_at": now,
            },
            event=TaskEventWrite(
                event_type="claimed",
                actor=owner_id,
                status_from=TaskStatus.PENDING,
                status_to=TaskStatus.CLAIMED,
            ),
            now=now,
        )

    def start(self, task_id: str, *, owner_id: str) -> TaskView:
        return self._apply(
            "start",
            task_id=task_id,
            actor=owner_id,
            values={},
            event_type="started",
        )

    def complete(
        self,
        task_id: str,
        *,
        owner_id: str,
        completed_by: str | None = None,
        note: str | None = None,
    ) -> TaskView:
        """Finish an in-progress task; ``completed_by``/``note`` go to the audit entry."""

        details: dict[str, object] = {}
        if completed_by:
            details["completed_by"] = completed_by
        if note:
            details["note"] = note
        return self._apply(
            "complete",
            task_id=task_id,
            actor=owner_id,
            values={"owner": None},
            event_type="completed",
            details=details,
        )

    def fail(self, task_id: str, *, owner_id: str, reason: str) -> TaskView:
        return self._apply(
            "fail",
            task_id=task_id,
            actor=owner_id,
            values={"owner": None, "failure_reason": reason or None},
            event_type="failed",
            details={"reason": reason} if reason else {},
        )

    def release(
        self,
        task_id: str,
        *,
        owner_id: str,
        stale_after: timedelta | None = None,
    ) -> TaskView:
        """Return an active task to ``pending``.

        The owner may always release. Anyone else may release only once the task
        has not been updated for ``stale_after``.
        """

        return self._apply(
            "release",
            task_id=task_id,
            actor=owner_id,
            values={"owner": None, "claimed_at": None},
            event_type="released",
            stale_after=stale_after,
        )

    def reopen(self, task_id: str, *, admin_id: str, reason: str | None = None) -> TaskView:
        """Administrative retry of a ``done``/``failed`` task."""

        return self._apply(
            "reopen",
            task_id=task_id,
            actor=admin_id,
            values={"owner": None, "claimed_at": None, "failure_reason": None},
            event_type="reopened",
            details={"reason": reason} if reason else {},
        )

    def touch(self, task_id: str, *, owner_id: str) -> TaskView:
        """Heartbeat: refresh ``updated_at`` of an active task held by ``owner_id``."""

        _require_actor(owner_id)
        current = self.repository.get(task_id)
        updated = self.repository.compare_and_set(
            task_id,
            guard=TaskGuard(statuses=ACTIVE_STATUSES, owner=owner_id, check_owner=True),
            values={},
            event=TaskEventWrite(
                event_type="heartbeat",
                actor=owner_id,
                status_from=current.status,
                status_to=current.status,
            ),
        )
        if updated is None:
            raise self._refusal("touch", task_id=task_id, actor=owner_id, sources=ACTIVE_STATUSES)
        return updated

    def reclaim(self, task: TaskView, *, stale_before: datetime) -> TaskView | None:
        """Force-release a stale task observed by the liveness sweep.

        Guarded by the observed ``version``: a completion, heartbeat or release that
        landed after the observation turns this into a no-op.
        """

        return self.repository.compare_and_set(
            task.task_id,
            guard=TaskGuard(
                statuses=ACTIVE_STATUSES,
                version=task.version,
                stale_before=stale_before,
            ),
            values={"status": TaskStatus.PENDING, "owner": None, "claimed_at": None},
            event=TaskEventWrite(
                event_type="reclaimed",
                actor=SWEEP_ACTOR,
                status_from=task.status,
                status_to=TaskStatus.PENDING,
                details={
                    "previous_owner": task.owner,
                    "last_update": task.updated_at.isoformat(),
                },
            ),
        )

    def _apply(  # noqa: PLR0913
        self,
        event: str,
        *,
        task_id: str,
        actor: str,
        values: dict[str, Any],
        event_type: str,
        details: dict[str, object] | None = None,
        stale_after: timedelta | None = None,
    ) -> TaskView:
        _require_actor(actor)
        transition = TRANSITIONS[event]
        current = self.repository.get(task_id)
        if current.status not in transition.sources:
            raise self._refusal(event, task_id=task_id, actor=actor, sources=transition.sources)

        now = self.repository.now()
        stale_before = now - stale_after if stale_after is not None else None
        updated = self.repository.compare_and_set(
            task_id,
            guard=TaskGuard(
                statuses=frozenset({current.status}),
                owner=actor,
                check_owner=transition.owner_guarded,
                stale_before=stale_before,
            ),
            values={"status": transition.target, **values},
            event=TaskEventWrite(
                event_type=event_type,
                actor=actor,
                status_from=current.status,
                status_to=transition.target,
                details={
                    **(details or {}),
                    **(
                        {"previous_owner": current.owner}
                        if current.owner is not None and current.owner != actor
                        else {}
                    ),
                },
            ),
            now=now,
        )
        if updated is None:
            raise self._refusal(event, task_id=task_id, actor=actor, sources=transition.sources)
        logger.info(
            "Task %s: %s -> %s by %s",
            task_id,
            current.status.value,
            transition.target.value,
            actor,
        )
        return updated

    def _refusal(
        self,
        event: str,
        *,
        task_id: str,
        actor: str,
        sources: frozenset[TaskStatus],
    ) -> Exception:
        current = self.repository.find(task_id)
        if current is None:
            return TaskNotFoundError(task_id)
        transition = TRANSITIONS.get(event)
        owner_guarded = transition.owner_guarded if transition is not None else True
        if owner_guarded and current.owner is not None and current.owner != actor:
            logger.debug(
                "Ownership conflict on %s %s: actor=%s owner=%s",
                event,
                task_id,
                actor,
                current.owner,
            )
            return OwnershipConflictError(task_id, actor=actor, current_owner=current.owner)
        # Also covers a row that changed and changed back between the write and this read.
        return InvalidTransitionError(task_id, event=event, status=current.status)


def _require_actor(actor: str) -> None:
    if not actor or not actor.strip():
        raise TaskValidationError("An owner/actor id is required.")
