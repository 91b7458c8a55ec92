"""Persistent task store for the shared backlog."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import String, func, or_
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from todo_arbiter.backlog.errors import TaskNotFoundError, TaskValidationError
from todo_arbiter.backlog.models import (
    ACTIVE_STATUSES,
    TaskCreate,
    TaskDetails,
    TaskEventView,
    TaskStatus,
    TaskView,
)
from todo_arbiter.storage.alembic_runner import upgrade_head
from todo_arbiter.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from todo_arbiter.storage.sqlmodel_models import BacklogTask, BacklogTaskEvent

logger = logging.getLogger(__name__)

_SCAN_BATCH_SIZE = 200


@dataclass(frozen=True, slots=True)
class TaskGuard:
    """Expected state for one compare-and-set.

    ``check_owner`` compares ``owner`` exactly (``None`` means no owner). With
    ``stale_before`` set, a row whose ``updated_at`` is at or before that instant
    also satisfies the owner check.
    """

    statuses: frozenset[TaskStatus]
    owner: str | None = None
    check_owner: bool = False
    version: int | None = None
    stale_before: datetime | None = None


@dataclass(slots=True)
class TaskEventWrite:
    """Audit entry appended in the same transaction as a mutation."""

    event_type: str
    actor: str | None
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    details: dict[str, object] = field(default_factory=dict)


class BacklogRepository:
    """Task store facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db_path = db_path
        self.clock = clock
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        upgrade_head(self.db_path)

    def now(self) -> datetime:
        return to_utc_aware_datetime(self.clock())

    def put(self, payload: TaskCreate) -> TaskView:
        """Create or replace a task record (ingestion path).

        Replacing only touches content fields; status, owner and claim timestamps
        stay under control of the lifecycle.
        """

        title = payload.title.strip() if payload.title else ""
        if not title:
            raise TaskValidationError("title is required", task_id=payload.task_id)
        task_id = (payload.task_id or "").strip() or str(uuid4())
        project = payload.project.strip() if payload.project and payload.project.strip() else None
        sibling_ids = _dedupe(payload.sibling_ids)
        now = self.now()

        with Session(self.engine) as session:
            self._validate_links(
                session=session,
                task_id=task_id,
                parent_id=payload.parent_id,
                sibling_ids=sibling_ids,
            )
            row = session.get(BacklogTask, task_id)
            if row is None:
                row = BacklogTask(
                    task_id=task_id,
                    title=title,
                    description=payload.description or "",
                    project=project,
                    priority=int(payload.priority),
                    status=TaskStatus.PENDING.value,
                    owner=None,
                    parent_id=payload.parent_id,
                    sibling_ids_json=json.dumps(list(sibling_ids)) if sibling_ids else None,
                    version=0,
                    created_at=to_db_datetime(now),
                    claimed_at=None,
                    updated_at=to_db_datetime(now),
                )
                event_type = "created"
                status_from = None
            else:
                row.title = title
                row.description = payload.description or ""
                row.project = project
                row.priority = int(payload.priority)
                row.parent_id = payload.parent_id
                row.sibling_ids_json = json.dumps(list(sibling_ids)) if sibling_ids else None
                row.version += 1
                row.updated_at = to_db_datetime(now)
                event_type = "replaced"
                status_from = TaskStatus(row.status)
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event=TaskEventWrite(
                    event_type=event_type,
                    actor=None,
                    status_from=status_from,
                    status_to=TaskStatus(row.status),
                    details={"project": project, "priority": int(payload.priority)},
                ),
                now=now,
            )
            session.commit()
            session.refresh(row)
            logger.debug("Task %s id=%s project=%s", event_type, task_id, project)
            return _to_task_view(row)

    def find(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.get(BacklogTask, task_id)
            return _to_task_view(row) if row is not None else None

    def get(self, task_id: str) -> TaskView:
        """Return one task or raise ``TaskNotFoundError``."""

        task = self.find(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def scan(
        self,
        predicate: Callable[[TaskView], bool] | None = None,
        *,
        statuses: Iterable[TaskStatus] | None = None,
        project: str | None = None,
    ) -> Iterator[TaskView]:
        """Stream tasks in queue order, optionally filtered."""

        statement = self._filtered(
            select(BacklogTask),
            statuses=statuses,
            project=project,
        ).order_by(*_QUEUE_ORDER)
        with Session(self.engine) as session:
            rows = session.exec(statement.execution_options(yield_per=_SCAN_BATCH_SIZE))
            for row in rows:
                view = _to_task_view(row)
                if predicate is None or predicate(view):
                    yield view

    def list_tasks(
        self,
        *,
        statuses: Iterable[TaskStatus] | None = None,
        project: str | None = None,
        projects: Iterable[str] | None = None,
        text_tokens: Iterable[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TaskView]:
        """List tasks ordered by priority desc, then id asc."""

        statement = self._filtered(
            select(BacklogTask),
            statuses=statuses,
            project=project,
            projects=projects,
            text_tokens=text_tokens,
        ).order_by(*_QUEUE_ORDER)
        if offset:
            statement = statement.offset(offset)
        if limit is not None:
            statement = statement.limit(limit)
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def count_tasks(
        self,
        *,
        statuses: Iterable[TaskStatus] | None = None,
        project: str | None = None,
    ) -> int:
        statement = self._filtered(
            select(func.count()).select_from(BacklogTask),
            statuses=statuses,
            project=project,
        )
        with Session(self.engine) as session:
            return int(session.exec(statement).one())

    def list_stale_active(self, *, stale_before: datetime) -> list[TaskView]:
        """Active tasks whose last update is at or before ``stale_before``."""

        statement = (
            select(BacklogTask)
            .where(
                col(BacklogTask.status).in_([status.value for status in ACTIVE_STATUSES]),
                col(BacklogTask.updated_at) <= to_db_datetime(stale_before),
            )
            .order_by(col(BacklogTask.updated_at).asc(), col(BacklogTask.task_id).asc())
        )
        with Session(self.engine) as session:
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def compare_and_set(
        self,
        task_id: str,
        *,
        guard: TaskGuard,
        values: dict[str, Any],
        event: TaskEventWrite,
        now: datetime | None = None,
    ) -> TaskView | None:
        """Apply ``values`` only if the row still matches ``guard``.

        Runs as one ``UPDATE ... WHERE`` statement plus the audit insert in a single
        transaction. Returns the updated task, or ``None`` when no row matched.
        """

        now = to_utc_aware_datetime(now) if now is not None else self.now()
        db_values = {key: _to_db_value(value) for key, value in values.items()}
        db_values["version"] = col(BacklogTask.version) + 1
        db_values["updated_at"] = to_db_datetime(now)

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(BacklogTask)
                .where(col(BacklogTask.task_id) == task_id, *_guard_clauses(guard))
                .values(**db_values),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            self._add_event(session=session, task_id=task_id, event=event, now=now)
            session.commit()
            row = session.get(BacklogTask, task_id)
            if row is None:  # pragma: no cover - tasks are never deleted
                raise TaskNotFoundError(task_id)
            session.refresh(row)
            return _to_task_view(row)

    def add_event(self, *, task_id: str, event: TaskEventWrite) -> None:
        """Append an audit entry outside of a state change."""

        with Session(self.engine) as session:
            self._add_event(session=session, task_id=task_id, event=event, now=self.now())
            session.commit()

    def list_events(self, task_id: str) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(BacklogTaskEvent)
                .where(BacklogTaskEvent.task_id == task_id)
                .order_by(col(BacklogTaskEvent.id).asc()),
            ).all()
        return [_to_event_view(row) for row in rows]

    def get_task_details(self, task_id: str) -> TaskDetails | None:
        """Return task details with event stream."""

        task = self.find(task_id)
        if task is None:
            return None
        return TaskDetails(task=task, events=self.list_events(task_id))

    def _filtered(
        self,
        statement: Any,
        *,
        statuses: Iterable[TaskStatus] | None,
        project: str | None,
        projects: Iterable[str] | None = None,
        text_tokens: Iterable[str] = (),
    ) -> Any:
        if statuses is not None:
            statement = statement.where(
                col(BacklogTask.status).in_([TaskStatus(status).value for status in statuses]),
            )
        if project is not None:
            statement = statement.where(BacklogTask.project == project)
        if projects is not None:
            statement = statement.where(col(BacklogTask.project).in_(list(projects)))
        haystack = func.casefold(
            col(BacklogTask.title) + " " + col(BacklogTask.description),
            type_=String,
        )
        for token in text_tokens:
            statement = statement.where(haystack.contains(token.casefold(), autoescape=True))
        return statement

    def _validate_links(
        self,
        *,
        session: Session,
        task_id: str,
        parent_id: str | None,
        sibling_ids: tuple[str, ...],
    ) -> None:
        if parent_id is not None:
            if parent_id == task_id:
                raise TaskValidationError(
                    f"Task {task_id} cannot be its own parent.",
                    task_id=task_id,
                )
            seen: set[str] = set()
            cursor: str | None = parent_id
            while cursor is not None:
                if cursor == task_id:
                    raise TaskValidationError(
                        f"Parent link {task_id} -> {parent_id} would create a cycle.",
                        task_id=task_id,
                    )
                if cursor in seen:  # pragma: no cover - existing data is acyclic
                    break
                seen.add(cursor)
                ancestor = session.get(BacklogTask, cursor)
                if ancestor is None:
                    raise TaskValidationError(
                        f"Parent task does not exist: {cursor}",
                        task_id=task_id,
                    )
                cursor = ancestor.parent_id

        for sibling_id in sibling_ids:
            if sibling_id == task_id:
                raise TaskValidationError(
                    f"Task {task_id} cannot list itself as a sibling.",
                    task_id=task_id,
                )
            if session.get(BacklogTask, sibling_id) is None:
                raise TaskValidationError(
                    f"Sibling task does not exist: {sibling_id}",
                    task_id=task_id,
                )

    def _add_event(
        self,
        *,
        session: Session,
        task_id: str,
        event: TaskEventWrite,
        now: datetime,
    ) -> None:
        session.add(
            BacklogTaskEvent(
                task_id=task_id,
                event_type=event.event_type,
                actor=event.actor,
                status_from=event.status_from.value if event.status_from is not None else None,
                status_to=event.status_to.value if event.status_to is not None else None,
                details_json=json.dumps(event.details, ensure_ascii=False, sort_keys=True)
                if event.details
                else None,
                created_at=to_db_datetime(now),
            ),
        )


_QUEUE_ORDER = (col(BacklogTask.priority).desc(), col(BacklogTask.task_id).asc())


def _guard_clauses(guard: TaskGuard) -> list[Any]:
    clauses: list[Any] = [
        col(BacklogTask.status).in_([status.value for status in guard.statuses]),
    ]
    if guard.version is not None:
        clauses.append(col(BacklogTask.version) == guard.version)

    stale_clause = (
        col(BacklogTask.updated_at) <= to_db_datetime(guard.stale_before)
        if guard.stale_before is not None
        else None
    )
    if guard.check_owner:
        owner_clause = (
            col(BacklogTask.owner).is_(None)
            if guard.owner is None
            else col(BacklogTask.owner) == guard.owner
        )
        clauses.append(
            or_(owner_clause, stale_clause) if stale_clause is not None else owner_clause,
        )
    elif stale_clause is not None:
        clauses.append(stale_clause)
    return clauses


def _to_db_value(value: Any) -> Any:
    if isinstance(value, TaskStatus):
        return value.value
    if isinstance(value, datetime):
        return to_db_datetime(value)
    return value


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    deduped: list[str] = []
    seen: set[str] = set()
    for value in values:
        normalized = value.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        deduped.append(normalized)
    return tuple(deduped)


def _to_task_view(row: BacklogTask) -> TaskView:
    sibling_ids: tuple[str, ...] = ()
    if row.sibling_ids_json:
        parsed = json.loads(row.sibling_ids_json)
        if isinstance(parsed, list):
            sibling_ids = tuple(str(item) for item in parsed)
    return TaskView(
        task_id=row.task_id,
        title=row.title,
        description=row.description or "",
        project=row.project,
        priority=row.priority,
        status=TaskStatus(row.status),
        owner=row.owner,
        parent_id=row.parent_id,
        sibling_ids=sibling_ids,
        failure_reason=row.failure_reason,
        version=row.version,
        created_at=to_utc_aware_datetime(row.created_at),
        claimed_at=to_utc_aware_datetime(row.claimed_at) if row.claimed_at is not None else None,
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_event_view(row: BacklogTaskEvent) -> TaskEventView:
    details: dict[str, Any] = {}
    if row.details_json:
        parsed = json.loads(row.details_json)
        if isinstance(parsed, dict):
            details = parsed
    return TaskEventView(
        event_id=row.id or 0,
        task_id=row.task_id,
        event_type=row.event_type,
        actor=row.actor,
        status_from=TaskStatus(row.status_from) if row.status_from is not None else None,
        status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
        created_at=to_utc_aware_datetime(row.created_at),
        details=details,
    )
