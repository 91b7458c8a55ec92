"""CLI entrypoint for todo-arbiter."""

import logging
from pathlib import Path

import rich_click as click

from todo_arbiter import __version__
from todo_arbiter.backlog.controllers import (
    BacklogCliController,
    TodoAddCommand,
    TodoClaimCommand,
    TodoCommandResult,
    TodoExportCommand,
    TodoImportCommand,
    TodoInspectCommand,
    TodoListCommand,
    TodoSearchCommand,
    TodoStatsCommand,
    TodoSweepCommand,
    TodoTransitionCommand,
    TodoTreeCommand,
)
from todo_arbiter.config import Settings

click.rich_click.USE_MARKDOWN = True
BACKLOG_CONTROLLER = BacklogCliController()

_STATUS_CHOICE = click.Choice(
    ["pending", "claimed", "in_progress", "done", "failed"],
    case_sensitive=False,
)


def _db_path_option(func):
    return click.option(
        "--db-path",
        type=click.Path(path_type=Path),
        default=None,
        help="SQLite DB path.",
    )(func)


def _format_option(func):
    return click.option(
        "--format",
        "output_format",
        type=click.Choice(["table", "json"], case_sensitive=False),
        default="table",
        show_default=True,
        help="Output format.",
    )(func)


def _owner_option(func):
    return click.option(
        "--owner",
        "owner_id",
        default=None,
        help="Worker/session id. Defaults to TODO_ARBITER_OWNER_ID.",
    )(func)


def _listing_options(func):
    func = click.option(
        "--compact/--full",
        default=False,
        show_default=True,
        help="Compact payloads carry only id, title, status and priority.",
    )(func)
    func = click.option(
        "--limit",
        type=click.IntRange(min=1),
        default=None,
        help="Page size.",
    )(func)
    return click.option(
        "--offset",
        type=click.IntRange(min=0),
        default=0,
        show_default=True,
        help="Number of tasks to skip.",
    )(func)


@click.group()
@click.version_option(version=__version__, prog_name="todo-arbiter")
def todo_arbiter() -> None:
    """Shared todo backlog with exclusive claims."""

    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@todo_arbiter.group()
def todos() -> None:
    """Backlog commands."""


@todos.command("add")
@_db_path_option
@click.option("--title", required=True, help="Task title.")
@click.option("--description", default="", help="Task description.")
@click.option("--id", "task_id", default=None, help="Explicit task id (replaces if it exists).")
@click.option("--project", default=None, help="Project key.")
@click.option(
    "--priority",
    default="normal",
    show_default=True,
    help="Integer rank or low/normal/high. Higher is claimed first.",
)
@click.option("--parent", "parent_id", default=None, help="Existing parent task id.")
@click.option(
    "--sibling",
    "sibling_ids",
    multiple=True,
    help="Existing sibling task id. Can be repeated.",
)
@_format_option
def todos_add(  # noqa: PLR0913
    db_path: Path | None,
    title: str,
    description: str,
    task_id: str | None,
    project: str | None,
    priority: str,
    parent_id: str | None,
    sibling_ids: tuple[str, ...],
    output_format: str,
) -> None:
    """Add or replace a task."""

    _emit_result(
        BACKLOG_CONTROLLER.add(
            TodoAddCommand(
                db_path=db_path,
                title=title,
                description=description,
                task_id=task_id,
                project=project,
                priority=priority,
                parent_id=parent_id,
                sibling_ids=sibling_ids,
                output_format=output_format,
            ),
        ),
    )


@todos.command("pending")
@_db_path_option
@click.option("--project", default=None, help="Only tasks of this project.")
@_listing_options
@_format_option
def todos_pending(  # noqa: PLR0913
    db_path: Path | None,
    project: str | None,
    compact: bool,
    limit: int | None,
    offset: int,
    output_format: str,
) -> None:
    """List pending tasks, highest priority first."""

    _emit_lines(
        BACKLOG_CONTROLLER.pending(
            TodoListCommand(
                db_path=db_path,
                project=project,
                compact=compact,
                limit=limit,
                offset=offset,
                output_format=output_format,
            ),
        ),
    )


@todos.command("project")
@_db_path_option
@click.argument("project")
@_listing_options
@_format_option
def todos_project(  # noqa: PLR0913
    db_path: Path | None,
    project: str,
    compact: bool,
    limit: int | None,
    offset: int,
    output_format: str,
) -> None:
    """List every task of one project."""

    _emit_lines(
        BACKLOG_CONTROLLER.by_project(
            TodoListCommand(
                db_path=db_path,
                project=project,
                compact=compact,
                limit=limit,
                offset=offset,
                output_format=output_format,
            ),
        ),
    )


@todos.command("search")
@_db_path_option
@click.argument("query", default="")
@click.option("--status", type=_STATUS_CHOICE, default=None, help="Status filter.")
@click.option("--project", default=None, help="Project filter.")
@_listing_options
@_format_option
def todos_search(  # noqa: PLR0913
    db_path: Path | None,
    query: str,
    status: str | None,
    project: str | None,
    compact: bool,
    limit: int | None,
    offset: int,
    output_format: str,
) -> None:
    """Search titles and descriptions (case-insensitive)."""

    _emit_lines(
        BACKLOG_CONTROLLER.search(
            TodoSearchCommand(
                db_path=db_path,
                query=query,
                status=status,
                project=project,
                compact=compact,
                limit=limit,
                offset=offset,
                output_format=output_format,
            ),
        ),
    )


@todos.command("tree")
@_db_path_option
@click.option("--status", type=_STATUS_CHOICE, default=None, help="Status filter.")
@click.option("--project", default=None, help="Project filter.")
@click.option(
    "--compact/--full",
    default=False,
    show_default=True,
    help="Compact payloads carry only id, title, status and priority.",
)
@_format_option
def todos_tree(
    db_path: Path | None,
    status: str | None,
    project: str | None,
    compact: bool,
    output_format: str,
) -> None:
    """Show tasks as a parent/child hierarchy."""

    _emit_lines(
        BACKLOG_CONTROLLER.tree(
            TodoTreeCommand(
                db_path=db_path,
                status=status,
                project=project,
                compact=compact,
                output_format=output_format,
            ),
        ),
    )


@todos.command("inspect")
@_db_path_option
@click.argument("task_id")
@_format_option
def todos_inspect(db_path: Path | None, task_id: str, output_format: str) -> None:
    """Show one task with its audit history."""

    _emit_result(
        BACKLOG_CONTROLLER.inspect(
            TodoInspectCommand(db_path=db_path, task_id=task_id, output_format=output_format),
        ),
    )


@todos.command("claim")
@_db_path_option
@click.argument("task_id")
@_owner_option
@_format_option
def todos_claim(
    db_path: Path | None,
    task_id: str,
    owner_id: str | None,
    output_format: str,
) -> None:
    """Claim one specific pending task."""

    _emit_result(
        BACKLOG_CONTROLLER.claim(
            TodoClaimCommand(
                db_path=db_path,
                owner_id=owner_id,
                task_id=task_id,
                output_format=output_format,
            ),
        ),
    )


@todos.command("claim-next")
@_db_path_option
@click.option(
    "--project",
    "projects",
    multiple=True,
    help="Only claim from this project. Repeat to pool several projects.",
)
@_owner_option
@_format_option
def todos_claim_next(
    db_path: Path | None,
    projects: tuple[str, ...],
    owner_id: str | None,
    output_format: str,
) -> None:
    """Claim the highest-priority pending task."""

    _emit_result(
        BACKLOG_CONTROLLER.claim(
            TodoClaimCommand(
                db_path=db_path,
                owner_id=owner_id,
                projects=projects,
                output_format=output_format,
            ),
        ),
    )


def _transition_command(operation: str, help_text: str) -> None:
    @todos.command(operation, help=help_text)
    @_db_path_option
    @click.argument("task_id")
    @_owner_option
    @_format_option
    def _command(
        db_path: Path | None,
        task_id: str,
        owner_id: str | None,
        output_format: str,
    ) -> None:
        _emit_result(
            BACKLOG_CONTROLLER.transition(
                TodoTransitionCommand(
                    db_path=db_path,
                    operation=operation,
                    task_id=task_id,
                    actor_id=owner_id,
                    output_format=output_format,
                ),
            ),
        )


_transition_command("start", "Move a claimed task to in_progress.")
_transition_command("release", "Give a claimed/in-progress task back to the backlog.")
_transition_command("heartbeat", "Refresh the liveness timestamp of a held task.")


@todos.command("complete")
@_db_path_option
@click.argument("task_id")
@_owner_option
@click.option("--completed-by", default=None, help="Who did the work, recorded in history.")
@click.option("--note", default=None, help="Free-form completion note.")
@_format_option
def todos_complete(  # noqa: PLR0913
    db_path: Path | None,
    task_id: str,
    owner_id: str | None,
    completed_by: str | None,
    note: str | None,
    output_format: str,
) -> None:
    """Mark an in-progress task as done."""

    _emit_result(
        BACKLOG_CONTROLLER.transition(
            TodoTransitionCommand(
                db_path=db_path,
                operation="complete",
                task_id=task_id,
                actor_id=owner_id,
                completed_by=completed_by,
                note=note,
                output_format=output_format,
            ),
        ),
    )


@todos.command("fail")
@_db_path_option
@click.argument("task_id")
@_owner_option
@click.option("--reason", required=True, help="Why the task failed.")
@_format_option
def todos_fail(
    db_path: Path | None,
    task_id: str,
    owner_id: str | None,
    reason: str,
    output_format: str,
) -> None:
    """Mark an in-progress task as failed."""

    _emit_result(
        BACKLOG_CONTROLLER.transition(
            TodoTransitionCommand(
                db_path=db_path,
                operation="fail",
                task_id=task_id,
                actor_id=owner_id,
                reason=reason,
                output_format=output_format,
            ),
        ),
    )


@todos.command("reopen")
@_db_path_option
@click.argument("task_id")
@click.option(
    "--admin",
    "admin_id",
    default=None,
    help="Operator id. Defaults to TODO_ARBITER_ADMIN_ID.",
)
@click.option("--reason", default=None, help="Why the task is reopened.")
@_format_option
def todos_reopen(
    db_path: Path | None,
    task_id: str,
    admin_id: str | None,
    reason: str | None,
    output_format: str,
) -> None:
    """Send a done/failed task back to pending (operator retry)."""

    _emit_result(
        BACKLOG_CONTROLLER.transition(
            TodoTransitionCommand(
                db_path=db_path,
                operation="reopen",
                task_id=task_id,
                actor_id=admin_id,
                reason=reason,
                output_format=output_format,
            ),
        ),
    )


@todos.command("sweep")
@_db_path_option
@click.option(
    "--loop/--once",
    default=False,
    show_default=True,
    help="Keep sweeping every TODO_ARBITER_SWEEP_INTERVAL_SECONDS.",
)
@click.option(
    "--max-sweeps",
    type=click.IntRange(min=1),
    default=None,
    help="Stop the loop after this many sweeps.",
)
def todos_sweep(db_path: Path | None, loop: bool, max_sweeps: int | None) -> None:
    """Release claims that have gone stale."""

    _emit_lines(
        BACKLOG_CONTROLLER.sweep(
            TodoSweepCommand(db_path=db_path, loop=loop, max_sweeps=max_sweeps),
        ),
    )


@todos.command("stats")
@_db_path_option
@click.option("--project", default=None, help="Only analyze this project.")
def todos_stats(db_path: Path | None, project: str | None) -> None:
    """Show backlog counts, stale claims and orphaned sub-tasks."""

    _emit_lines(BACKLOG_CONTROLLER.stats(TodoStatsCommand(db_path=db_path, project=project)))


@todos.command("export")
@_db_path_option
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    required=True,
    help="Destination JSON file.",
)
def todos_export(db_path: Path | None, output_path: Path) -> None:
    """Write every task to a JSON backup."""

    _emit_lines(
        BACKLOG_CONTROLLER.export(TodoExportCommand(db_path=db_path, output_path=output_path)),
    )


@todos.command("import")
@_db_path_option
@click.option(
    "--input",
    "input_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    required=True,
    help="JSON backup produced by export.",
)
@click.option(
    "--include-closed/--skip-closed",
    default=False,
    show_default=True,
    help="Re-ingest done/failed tasks as pending, reopening existing ones.",
)
def todos_import(db_path: Path | None, input_path: Path, include_closed: bool) -> None:
    """Re-ingest tasks from a JSON backup."""

    _emit_result(
        BACKLOG_CONTROLLER.import_tasks(
            TodoImportCommand(
                db_path=db_path,
                input_path=input_path,
                include_closed=include_closed,
            ),
        ),
    )


def _emit_result(result: TodoCommandResult) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Operation refused.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    todo_arbiter()
