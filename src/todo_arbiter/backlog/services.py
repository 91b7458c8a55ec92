"""Use-case services exposing the backlog to workers and operators."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from todo_arbiter.backlog.arbiter import ClaimArbiter
from todo_arbiter.backlog.errors import (
    AlreadyClaimedError,
    BacklogError,
    OwnershipConflictError,
    TaskValidationError,
)
from todo_arbiter.backlog.lifecycle import TaskLifecycle
from todo_arbiter.backlog.metrics import BacklogStats, build_backlog_stats
from todo_arbiter.backlog.models import (
    TERMINAL_STATUSES,
    ClaimOutcome,
    ClaimResult,
    TaskCreate,
    TaskStatus,
    TaskView,
    parse_priority,
)
from todo_arbiter.backlog.projection import full_projection, project_tasks, tree_projection
from todo_arbiter.backlog.queries import BacklogQueries
from todo_arbiter.backlog.repository import BacklogRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OperationResponse:
    """Outcome of one write operation, reported back to the calling worker."""

    ok: bool
    operation: str
    task_id: str | None = None
    status: str | None = None
    owner: str | None = None
    error: str | None = None
    message: str | None = None
    conflict_owner: str | None = None
    task: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "ok": self.ok,
            "operation": self.operation,
            "task_id": self.task_id,
            "status": self.status,
            "owner": self.owner,
        }
        if self.error is not None:
            payload["error"] = self.error
            payload["message"] = self.message
        if self.conflict_owner is not None:
            payload["conflict_owner"] = self.conflict_owner
        if self.task is not None:
            payload["task"] = self.task
        return payload


@dataclass(slots=True)
class ImportSummary:
    """Counters for a backlog import."""

    created: int = 0
    replaced: int = 0
    reopened: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


class BacklogService:
    """Coordinates queries, claims and lifecycle transitions for one store."""

    def __init__(
        self,
        *,
        repository: BacklogRepository,
        stale_after: timedelta,
        candidate_limit: int = 25,
    ) -> None:
        self.repository = repository
        self.stale_after = stale_after
        self.queries = BacklogQueries(repository=repository)
        self.lifecycle = TaskLifecycle(repository=repository)
        self.arbiter = ClaimArbiter(
            repository=repository,
            lifecycle=self.lifecycle,
            queries=self.queries,
            candidate_limit=candidate_limit,
        )

    # ---- reads ----

    def list_pending(
        self,
        *,
        project: str | None = None,
        compact: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        tasks = self.queries.list_pending(project, limit=limit, offset=offset)
        return project_tasks(tasks, compact=compact)

    def search(  # noqa: PLR0913
        self,
        query: str,
        *,
        status: TaskStatus | None = None,
        project: str | None = None,
        compact: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        tasks = self.queries.search(
            query,
            status=status,
            project=project,
            limit=limit,
            offset=offset,
        )
        return project_tasks(tasks, compact=compact)

    def list_by_project(
        self,
        project: str,
        *,
        compact: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        tasks = self.queries.by_project(project, limit=limit, offset=offset)
        return project_tasks(tasks, compact=compact)

    def task_tree(
        self,
        *,
        status: TaskStatus | None = None,
        project: str | None = None,
        compact: bool = False,
    ) -> list[dict[str, Any]]:
        return tree_projection(self.queries.tree(status=status, project=project), compact=compact)

    def inspect(self, task_id: str) -> dict[str, Any] | None:
        """Full projection with audit history."""

        details = self.repository.get_task_details(task_id)
        if details is None:
            return None
        return full_projection(details.task, events=details.events)

    def stats(self, *, project: str | None = None) -> BacklogStats:
        return build_backlog_stats(
            self.repository.scan(project=project),
            now=self.repository.now(),
            stale_after=self.stale_after,
        )

    # ---- writes ----

    def add_task(self, payload: TaskCreate) -> OperationResponse:
        return self._run("add", payload.task_id, lambda: self.repository.put(payload))

    def claim(self, task_id: str, *, owner_id: str) -> OperationResponse:
        return self._claim_response(
            "claim",
            task_id,
            lambda: self.arbiter.claim(task_id, owner_id=owner_id),
        )

    def claim_next(
        self,
        *,
        owner_id: str,
        project: str | None = None,
        projects: Sequence[str] | None = None,
    ) -> OperationResponse:
        return self._claim_response(
            "claim_next",
            None,
            lambda: self.arbiter.claim_next(
                owner_id=owner_id,
                project=project,
                projects=projects,
            ),
        )

    def start(self, task_id: str, *, owner_id: str) -> OperationResponse:
        return self._run(
            "start",
            task_id,
            lambda: self.lifecycle.start(task_id, owner_id=owner_id),
        )

    def complete(
        self,
        task_id: str,
        *,
        owner_id: str,
        completed_by: str | None = None,
        note: str | None = None,
    ) -> OperationResponse:
        return self._run(
            "complete",
            task_id,
            lambda: self.lifecycle.complete(
                task_id,
                owner_id=owner_id,
                completed_by=completed_by,
                note=note,
            ),
        )

    def fail(self, task_id: str, *, owner_id: str, reason: str) -> OperationResponse:
        return self._run(
            "fail",
            task_id,
            lambda: self.lifecycle.fail(task_id, owner_id=owner_id, reason=reason),
        )

    def release(self, task_id: str, *, owner_id: str) -> OperationResponse:
        return self._run(
            "release",
            task_id,
            lambda: self.lifecycle.release(
                task_id,
                owner_id=owner_id,
                stale_after=self.stale_after,
            ),
        )

    def heartbeat(self, task_id: str, *, owner_id: str) -> OperationResponse:
        return self._run(
            "heartbeat",
            task_id,
            lambda: self.lifecycle.touch(task_id, owner_id=owner_id),
        )

    def reopen(
        self,
        task_id: str,
        *,
        admin_id: str,
        reason: str | None = None,
    ) -> OperationResponse:
        return self._run(
            "reopen",
            task_id,
            lambda: self.lifecycle.reopen(task_id, admin_id=admin_id, reason=reason),
        )

    def sweep(self) -> list[TaskView]:
        return self.arbiter.reclaim_stale(stale_after=self.stale_after)

    # ---- backups ----

    def export_tasks(self) -> list[dict[str, Any]]:
        """Every task as a full projection, without history."""

        return [full_projection(task) for task in self.repository.scan()]

    def import_tasks(
        self,
        records: Iterable[dict[str, Any]],
        *,
        include_closed: bool = False,
        admin_id: str = "operator",
    ) -> ImportSummary:
        """Re-ingest exported records through ``put``.

        Content is restored; lifecycle state is not. Closed tasks are skipped unless
        ``include_closed`` is set, in which case they come back as ``pending``: new
        ones are created pending, and existing done or failed ones are reopened by
        ``admin_id``.
        """

        summary = ImportSummary()
        selected: list[dict[str, Any]] = []
        for record in records:
            status = str(record.get("status") or TaskStatus.PENDING.value)
            if not include_closed and status in {item.value for item in TERMINAL_STATUSES}:
                summary.skipped += 1
                continue
            selected.append(record)

        deferred_siblings: list[TaskCreate] = []
        for record in _parents_first(selected):
            try:
                payload = _record_to_create(record)
            except (KeyError, ValueError) as error:
                summary.errors.append(f"{record.get('id', '?')}: {error}")
                continue
            current = self.repository.find(payload.task_id or "")
            siblings = payload.sibling_ids
            payload.sibling_ids = ()
            try:
                self.repository.put(payload)
            except TaskValidationError as error:
                summary.errors.append(f"{payload.task_id}: {error}")
                continue
            if current is None:
                summary.created += 1
            else:
                summary.replaced += 1
                if include_closed and current.status in TERMINAL_STATUSES:
                    try:
                        self.lifecycle.reopen(current.task_id, admin_id=admin_id, reason="import")
                    except BacklogError as error:
                        summary.errors.append(f"{current.task_id}: {error}")
                    else:
                        summary.reopened += 1
            if siblings:
                payload.sibling_ids = siblings
                deferred_siblings.append(payload)

        for payload in deferred_siblings:
            try:
                self.repository.put(payload)
            except TaskValidationError as error:
                summary.errors.append(f"{payload.task_id}: {error}")
        logger.info(
            "Imported backlog: created=%d replaced=%d reopened=%d skipped=%d errors=%d",
            summary.created,
            summary.replaced,
            summary.reopened,
            summary.skipped,
            len(summary.errors),
        )
        return summary

    def _run(
        self,
        operation: str,
        task_id: str | None,
        action: Callable[[], TaskView],
    ) -> OperationResponse:
        try:
            task = action()
        except BacklogError as error:
            return _error_response(operation, task_id, error)
        return OperationResponse(
            ok=True,
            operation=operation,
            task_id=task.task_id,
            status=task.status.value,
            owner=task.owner,
            task=full_projection(task),
        )

    def _claim_response(
        self,
        operation: str,
        task_id: str | None,
        action: Callable[[], ClaimResult],
    ) -> OperationResponse:
        try:
            result = action()
        except BacklogError as error:
            return _error_response(operation, task_id, error)
        if result.outcome is ClaimOutcome.SUCCESS and result.task is not None:
            return OperationResponse(
                ok=True,
                operation=operation,
                task_id=result.task.task_id,
                status=result.task.status.value,
                owner=result.task.owner,
                task=full_projection(result.task),
            )
        if result.outcome is ClaimOutcome.ALREADY_CLAIMED:
            error = AlreadyClaimedError(
                result.task_id or "?",
                current_owner=result.current_owner,
                status=result.current_status,
            )
            response = _error_response(operation, result.task_id, error)
            response.status = result.current_status.value if result.current_status else None
            response.owner = result.current_owner
            return response
        if result.outcome is ClaimOutcome.NOT_FOUND:
            return OperationResponse(
                ok=False,
                operation=operation,
                task_id=result.task_id,
                error=ClaimOutcome.NOT_FOUND.value,
                message=f"Task not found: {result.task_id}",
            )
        return OperationResponse(
            ok=False,
            operation=operation,
            error=ClaimOutcome.EMPTY.value,
            message="No pending tasks available to claim.",
        )


def _error_response(
    operation: str,
    task_id: str | None,
    error: BacklogError,
) -> OperationResponse:
    conflict_owner = None
    if isinstance(error, (AlreadyClaimedError, OwnershipConflictError)):
        conflict_owner = error.current_owner
    return OperationResponse(
        ok=False,
        operation=operation,
        task_id=error.task_id or task_id,
        error=error.kind,
        message=str(error),
        conflict_owner=conflict_owner,
    )


def _record_to_create(record: dict[str, Any]) -> TaskCreate:
    priority_raw = record.get("priority", 2)
    priority = priority_raw if isinstance(priority_raw, int) else str(priority_raw)
    return TaskCreate(
        task_id=str(record["id"]),
        title=str(record["title"]),
        description=str(record.get("description") or ""),
        project=record.get("project"),
        priority=parse_priority(priority),
        parent_id=record.get("parent_id"),
        sibling_ids=tuple(str(item) for item in record.get("sibling_ids") or ()),
    )


def _parents_first(records: list[dict[str, Any]]) -> list[dict[str, Any]]:
    by_id = {str(record.get("id")): record for record in records}
    ordered: list[dict[str, Any]] = []
    placed: set[str] = set()

    def _place(record_id: str, trail: set[str]) -> None:
        if record_id in placed or record_id in trail:
            return
        record = by_id[record_id]
        parent_id = record.get("parent_id")
        if parent_id is not None and str(parent_id) in by_id:
            _place(str(parent_id), trail | {record_id})
        placed.add(record_id)
        ordered.append(record)

    for record_id in by_id:
        _place(record_id, set())
    return ordered
