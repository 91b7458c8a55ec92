"""Controllers for backlog CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

from todo_arbiter.backlog.arbiter import ClaimArbiter
from todo_arbiter.backlog.metrics import render_stats_lines
from todo_arbiter.backlog.models import TaskCreate, TaskStatus, parse_priority
from todo_arbiter.backlog.repository import BacklogRepository
from todo_arbiter.backlog.services import BacklogService, OperationResponse
from todo_arbiter.backlog.sweeper import LivenessSweeper
from todo_arbiter.config import Settings

TRANSITION_OPERATIONS = ("start", "complete", "fail", "release", "heartbeat", "reopen")


@dataclass(slots=True)
class TodoAddCommand:
    """CLI input for task ingestion."""

    db_path: Path | None
    title: str
    description: str = ""
    task_id: str | None = None
    project: str | None = None
    priority: str = "normal"
    parent_id: str | None = None
    sibling_ids: tuple[str, ...] = ()
    output_format: str = "table"


@dataclass(slots=True)
class TodoListCommand:
    """CLI input for pending and per-project listings."""

    db_path: Path | None
    project: str | None = None
    compact: bool = False
    limit: int | None = None
    offset: int = 0
    output_format: str = "table"


@dataclass(slots=True)
class TodoSearchCommand:
    """CLI input for full-text search."""

    db_path: Path | None
    query: str
    status: str | None = None
    project: str | None = None
    compact: bool = False
    limit: int | None = None
    offset: int = 0
    output_format: str = "table"


@dataclass(slots=True)
class TodoTreeCommand:
    """CLI input for the parent/child view."""

    db_path: Path | None
    status: str | None = None
    project: str | None = None
    compact: bool = False
    output_format: str = "table"


@dataclass(slots=True)
class TodoInspectCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str
    output_format: str = "table"


@dataclass(slots=True)
class TodoClaimCommand:
    """CLI input for claim / claim-next."""

    db_path: Path | None
    owner_id: str | None
    task_id: str | None = None
    projects: tuple[str, ...] = ()
    output_format: str = "table"


@dataclass(slots=True)
class TodoTransitionCommand:
    """CLI input for start/complete/fail/release/heartbeat/reopen."""

    db_path: Path | None
    operation: str
    task_id: str
    actor_id: str | None
    reason: str | None = None
    note: str | None = None
    completed_by: str | None = None
    output_format: str = "table"


@dataclass(slots=True)
class TodoSweepCommand:
    """CLI input for the liveness sweep."""

    db_path: Path | None
    loop: bool = False
    max_sweeps: int | None = None


@dataclass(slots=True)
class TodoStatsCommand:
    """CLI input for backlog analysis."""

    db_path: Path | None
    project: str | None = None


@dataclass(slots=True)
class TodoExportCommand:
    """CLI input for backlog export."""

    db_path: Path | None
    output_path: Path


@dataclass(slots=True)
class TodoImportCommand:
    """CLI input for backlog import."""

    db_path: Path | None
    input_path: Path
    include_closed: bool = False


@dataclass(slots=True)
class TodoCommandResult:
    """Rendered lines plus whether the operation succeeded."""

    lines: list[str] = field(default_factory=list)
    success: bool = True


class BacklogCliController:
    """Coordinates backlog reads, claims and transitions for the CLI."""

    def add(self, command: TodoAddCommand) -> TodoCommandResult:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            response = service.add_task(
                TaskCreate(
                    title=command.title,
                    description=command.description,
                    task_id=command.task_id,
                    project=command.project,
                    priority=parse_priority(command.priority),
                    parent_id=command.parent_id,
                    sibling_ids=command.sibling_ids,
                ),
            )
        return _render_response(response, output_format=command.output_format)

    def pending(self, command: TodoListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            tasks = service.list_pending(
                project=command.project,
                compact=command.compact,
                limit=command.limit,
                offset=command.offset,
            )
        header = f"Pending tasks{f' in {command.project}' if command.project else ''}"
        return _render_tasks(tasks, header=header, output_format=command.output_format)

    def by_project(self, command: TodoListCommand) -> list[str]:
        if not command.project:
            raise ValueError("A project is required.")
        settings = _settings(command.db_path)
        with _service(settings) as service:
            tasks = service.list_by_project(
                command.project,
                compact=command.compact,
                limit=command.limit,
                offset=command.offset,
            )
        return _render_tasks(
            tasks,
            header=f"Tasks in {command.project}",
            output_format=command.output_format,
        )

    def search(self, command: TodoSearchCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _service(settings) as service:
            tasks = service.search(
                command.query,
                status=status_filter,
                project=command.project,
                compact=command.compact,
                limit=command.limit,
                offset=command.offset,
            )
        return _render_tasks(
            tasks,
            header=f"Matches for {command.query!r}",
            output_format=command.output_format,
        )

    def tree(self, command: TodoTreeCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            nodes = service.task_tree(
                status=_parse_status(command.status),
                project=command.project,
                compact=command.compact,
            )
        if command.output_format == "json":
            return [_dump_json(nodes)]
        lines = [f"Task tree{f' in {command.project}' if command.project else ''}"]
        lines.extend(_tree_lines(nodes, depth=1))
        return lines

    def inspect(self, command: TodoInspectCommand) -> TodoCommandResult:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            payload = service.inspect(command.task_id)
        if payload is None:
            return TodoCommandResult(lines=[f"Task not found: {command.task_id}"], success=False)
        if command.output_format == "json":
            return TodoCommandResult(lines=[_dump_json(payload)])

        lines = [
            f"Task: {payload['id']}",
            f"Title: {payload['title']}",
            f"Status: {payload['status']}",
            f"Priority: {payload['priority']}",
            f"Project: {payload['project'] or '-'}",
            f"Owner: {payload['owner'] or '-'}",
            f"Parent: {payload['parent_id'] or '-'}",
            f"Siblings: {', '.join(payload['sibling_ids']) or '-'}",
            f"Failure: {payload['failure_reason'] or '-'}",
            f"Description: {payload['description'] or '-'}",
            f"Events: {len(payload['history'])}",
        ]
        for event in payload["history"]:
            lines.append(
                f"  {event['created_at']} {event['event']} "
                f"{event['status_from'] or '-'} -> {event['status_to'] or '-'} "
                f"actor={event['actor'] or '-'}",
            )
        return TodoCommandResult(lines=lines)

    def claim(self, command: TodoClaimCommand) -> TodoCommandResult:
        settings = _settings(command.db_path)
        owner_id = command.owner_id or settings.identity.owner_id
        with _service(settings) as service:
            if command.task_id is not None:
                response = service.claim(command.task_id, owner_id=owner_id)
            else:
                response = service.claim_next(
                    owner_id=owner_id,
                    projects=command.projects or None,
                )
        return _render_response(response, output_format=command.output_format)

    def transition(self, command: TodoTransitionCommand) -> TodoCommandResult:
        if command.operation not in TRANSITION_OPERATIONS:
            raise ValueError(f"Unsupported operation: {command.operation!r}")
        settings = _settings(command.db_path)
        with _service(settings) as service:
            response = _dispatch_transition(service, command=command, settings=settings)
        return _render_response(response, output_format=command.output_format)

    def sweep(self, command: TodoSweepCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            sweeper = LivenessSweeper(
                arbiter=ClaimArbiter(
                    repository=repository,
                    candidate_limit=settings.arbiter.claim_candidate_limit,
                ),
                stale_after_seconds=settings.arbiter.stale_after_seconds,
                interval_seconds=settings.arbiter.sweep_interval_seconds,
            )
            summary = (
                sweeper.run_loop(max_sweeps=command.max_sweeps)
                if command.loop
                else sweeper.run_once()
            )
        lines = [
            "Sweep summary: "
            f"sweeps={summary.sweeps} reclaimed={summary.reclaimed} overruns={summary.overruns}",
        ]
        lines.extend(f"  reclaimed {task_id}" for task_id in summary.reclaimed_task_ids)
        return lines

    def stats(self, command: TodoStatsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            stats = service.stats(project=command.project)
        return render_stats_lines(stats=stats)

    def export(self, command: TodoExportCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _service(settings) as service:
            records = service.export_tasks()
        command.output_path.parent.mkdir(parents=True, exist_ok=True)
        command.output_path.write_text(_dump_json({"tasks": records}), "utf-8")
        return [f"Exported {len(records)} tasks to {command.output_path}"]

    def import_tasks(self, command: TodoImportCommand) -> TodoCommandResult:
        raw = json.loads(command.input_path.read_text("utf-8"))
        records = raw.get("tasks", []) if isinstance(raw, dict) else raw
        if not isinstance(records, list):
            raise ValueError(f"Expected a list of tasks in {command.input_path}")
        settings = _settings(command.db_path)
        with _service(settings) as service:
            summary = service.import_tasks(
                records,
                include_closed=command.include_closed,
                admin_id=settings.identity.admin_id,
            )
        lines = [
            "Import summary: "
            f"created={summary.created} replaced={summary.replaced} "
            f"reopened={summary.reopened} skipped={summary.skipped} errors={len(summary.errors)}",
        ]
        lines.extend(f"  error {message}" for message in summary.errors)
        return TodoCommandResult(lines=lines, success=not summary.errors)


def _dispatch_transition(
    service: BacklogService,
    *,
    command: TodoTransitionCommand,
    settings: Settings,
) -> OperationResponse:
    if command.operation == "reopen":
        return service.reopen(
            command.task_id,
            admin_id=command.actor_id or settings.identity.admin_id,
            reason=command.reason,
        )
    owner_id = command.actor_id or settings.identity.owner_id
    if command.operation == "start":
        return service.start(command.task_id, owner_id=owner_id)
    if command.operation == "complete":
        return service.complete(
            command.task_id,
            owner_id=owner_id,
            completed_by=command.completed_by,
            note=command.note,
        )
    if command.operation == "fail":
        return service.fail(command.task_id, owner_id=owner_id, reason=command.reason or "")
    if command.operation == "release":
        return service.release(command.task_id, owner_id=owner_id)
    return service.heartbeat(command.task_id, owner_id=owner_id)


def _render_tasks(
    tasks: list[dict[str, Any]],
    *,
    header: str,
    output_format: str,
) -> list[str]:
    if output_format == "json":
        return [_dump_json(tasks)]
    lines = [f"{header}: {len(tasks)}"]
    for task in tasks:
        line = f"  {task['id']} status={task['status']} priority={task['priority']}"
        if "project" in task:
            line += f" project={task['project'] or '-'} owner={task['owner'] or '-'}"
        lines.append(f"{line} title={task['title']}")
    return lines


def _tree_lines(nodes: list[dict[str, Any]], *, depth: int) -> list[str]:
    lines: list[str] = []
    for node in nodes:
        lines.append(
            f"{'  ' * depth}{node['id']} status={node['status']} "
            f"priority={node['priority']} title={node['title']}",
        )
        lines.extend(_tree_lines(node["children"], depth=depth + 1))
    return lines


def _render_response(response: OperationResponse, *, output_format: str) -> TodoCommandResult:
    if output_format == "json":
        return TodoCommandResult(lines=[_dump_json(response.to_dict())], success=response.ok)
    if response.ok:
        title = response.task["title"] if response.task else ""
        lines = [
            f"{response.operation}: task_id={response.task_id} status={response.status} "
            f"owner={response.owner or '-'}",
        ]
        if title:
            lines.append(f"Task: {title}")
        return TodoCommandResult(lines=lines)

    lines = [f"{response.operation} refused ({response.error}): {response.message}"]
    if response.conflict_owner is not None:
        lines.append(f"Held by: {response.conflict_owner}")
    return TodoCommandResult(lines=lines, success=False)


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


def _dump_json(payload: object) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _repository(settings: Settings) -> Iterator[BacklogRepository]:
    repository = BacklogRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()


@contextmanager
def _service(settings: Settings) -> Iterator[BacklogService]:
    with _repository(settings) as repository:
        yield BacklogService(
            repository=repository,
            stale_after=timedelta(seconds=settings.arbiter.stale_after_seconds),
            candidate_limit=settings.arbiter.claim_candidate_limit,
        )
