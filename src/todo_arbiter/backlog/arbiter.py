"""Exclusive claim arbitration and stale-claim reclamation."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import timedelta

from todo_arbiter.backlog.lifecycle import TaskLifecycle
from todo_arbiter.backlog.models import ClaimOutcome, ClaimResult, TaskView
from todo_arbiter.backlog.queries import BacklogQueries
from todo_arbiter.backlog.repository import BacklogRepository

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_LIMIT = 25


class ClaimArbiter:
    """Grants claims so that at most one owner holds a task at any time."""

    def __init__(
        self,
        *,
        repository: BacklogRepository,
        lifecycle: TaskLifecycle | None = None,
        queries: BacklogQueries | None = None,
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
    ) -> None:
        if candidate_limit <= 0:
            raise ValueError("candidate_limit must be > 0")
        self.repository = repository
        self.lifecycle = lifecycle or TaskLifecycle(repository=repository)
        self.queries = queries or BacklogQueries(repository=repository)
        self.candidate_limit = candidate_limit

    def claim(self, task_id: str, *, owner_id: str) -> ClaimResult:
        """One atomic claim attempt; never retries."""

        claimed = self.lifecycle.claim(task_id, owner_id=owner_id)
        if claimed is not None:
            logger.info("Task %s claimed by %s", task_id, owner_id)
            return ClaimResult(
                outcome=ClaimOutcome.SUCCESS,
                task_id=task_id,
                task=claimed,
                current_owner=owner_id,
                current_status=claimed.status,
            )

        current = self.repository.find(task_id)
        if current is None:
            return ClaimResult(outcome=ClaimOutcome.NOT_FOUND, task_id=task_id)
        logger.debug(
            "Claim lost for %s by %s: status=%s owner=%s",
            task_id,
            owner_id,
            current.status.value,
            current.owner,
        )
        return ClaimResult(
            outcome=ClaimOutcome.ALREADY_CLAIMED,
            task_id=task_id,
            task=current,
            current_owner=current.owner,
            current_status=current.status,
        )

    def claim_next(
        self,
        *,
        owner_id: str,
        project: str | None = None,
        projects: Sequence[str] | None = None,
    ) -> ClaimResult:
        """Claim the highest-priority pending task.

        Walks the pending ordering once, trying each candidate with a single atomic
        claim. The walk is bounded by ``candidate_limit``. ``projects`` widens the
        pool to several projects; their tasks compete in one priority order.
        """

        candidates = self.queries.list_pending(
            project,
            projects=projects,
            limit=self.candidate_limit,
        )
        for candidate in candidates:
            result = self.claim(candidate.task_id, owner_id=owner_id)
            if result.succeeded:
                return result
        if candidates:
            logger.debug(
                "claim_next exhausted %d candidates for %s project=%s projects=%s",
                len(candidates),
                owner_id,
                project,
                projects,
            )
        return ClaimResult(outcome=ClaimOutcome.EMPTY)

    def reclaim_stale(self, *, stale_after: timedelta) -> list[TaskView]:
        """Return stale claimed/in-progress tasks to ``pending``.

        Tasks that changed after being observed are left alone.
        """

        if stale_after.total_seconds() <= 0:
            raise ValueError("stale_after must be > 0")
        stale_before = self.repository.now() - stale_after
        reclaimed: list[TaskView] = []
        for task in self.repository.list_stale_active(stale_before=stale_before):
            released = self.lifecycle.reclaim(task, stale_before=stale_before)
            if released is None:
                logger.debug("Skipped reclaim of %s: changed since observed", task.task_id)
                continue
            logger.warning(
                "Reclaimed stale task %s from owner=%s (last update %s)",
                task.task_id,
                task.owner,
                task.updated_at.isoformat(),
            )
            reclaimed.append(released)
        return reclaimed
