from __future__ import annotations

from datetime import timedelta

import allure
import pytest

from todo_arbiter.backlog.errors import TaskNotFoundError, TaskValidationError
from todo_arbiter.backlog.models import TaskCreate, TaskStatus
from todo_arbiter.backlog.repository import BacklogRepository, TaskEventWrite, TaskGuard

pytestmark = [
    allure.epic("Backlog"),
    allure.feature("Task Store"),
]


def test_put_creates_pending_task_with_created_event(repository: BacklogRepository) -> None:
    task = repository.put(
        TaskCreate(
            task_id="t-1",
            title="  Write release notes ",
            description="Cover the CLI changes",
            project="docs",
            priority=3,
        ),
    )

    assert task.task_id == "t-1"
    assert task.title == "Write release notes"
    assert task.status is TaskStatus.PENDING
    assert task.owner is None
    assert task.claimed_at is None
    assert task.version == 0
    assert task.created_at == task.updated_at == repository.now()

    events = repository.list_events("t-1")
    assert [event.event_type for event in events] == ["created"]
    assert events[0].status_to is TaskStatus.PENDING
    assert events[0].details == {"priority": 3, "project": "docs"}


def test_put_without_id_generates_one(repository: BacklogRepository) -> None:
    first = repository.put(TaskCreate(title="first"))
    second = repository.put(TaskCreate(title="second"))

    assert first.task_id
    assert first.task_id != second.task_id


def test_put_replace_keeps_lifecycle_fields(repository: BacklogRepository, clock) -> None:
    repository.put(TaskCreate(task_id="t-1", title="Old title", priority=1))
    repository.compare_and_set(
        "t-1",
        guard=TaskGuard(statuses=frozenset({TaskStatus.PENDING}), owner=None, check_owner=True),
        values={"status": TaskStatus.CLAIMED, "owner": "w1", "claimed_at": repository.now()},
        event=TaskEventWrite(
            event_type="claimed",
            actor="w1",
            status_from=TaskStatus.PENDING,
            status_to=TaskStatus.CLAIMED,
        ),
    )
    clock.advance(seconds=5)

    replaced = repository.put(TaskCreate(task_id="t-1", title="New title", priority=3))

    assert replaced.title == "New title"
    assert replaced.priority == 3
    assert replaced.status is TaskStatus.CLAIMED
    assert replaced.owner == "w1"
    assert replaced.version == 2
    assert replaced.updated_at == repository.now()
    assert [event.event_type for event in repository.list_events("t-1")] == [
        "created",
        "claimed",
        "replaced",
    ]


def test_put_rejects_blank_title(repository: BacklogRepository) -> None:
    with pytest.raises(TaskValidationError, match="title is required"):
        repository.put(TaskCreate(task_id="t-1", title="   "))

    assert repository.find("t-1") is None


def test_put_rejects_unknown_parent(repository: BacklogRepository) -> None:
    with pytest.raises(TaskValidationError, match="Parent task does not exist: missing"):
        repository.put(TaskCreate(task_id="child", title="child", parent_id="missing"))


def test_put_rejects_self_parent_and_cycles(repository: BacklogRepository, make_task) -> None:
    make_task("a")
    make_task("b", parent_id="a")
    make_task("c", parent_id="b")

    with pytest.raises(TaskValidationError, match="own parent"):
        repository.put(TaskCreate(task_id="a", title="a", parent_id="a"))
    with pytest.raises(TaskValidationError, match="would create a cycle"):
        repository.put(TaskCreate(task_id="a", title="a", parent_id="c"))

    assert repository.get("a").parent_id is None


def test_put_validates_and_dedupes_sibling_ids(repository: BacklogRepository, make_task) -> None:
    make_task("a")
    make_task("b")

    with pytest.raises(TaskValidationError, match="Sibling task does not exist: ghost"):
        repository.put(TaskCreate(task_id="c", title="c", sibling_ids=("a", "ghost")))
    with pytest.raises(TaskValidationError, match="itself as a sibling"):
        repository.put(TaskCreate(task_id="a", title="a", sibling_ids=("a",)))

    task = repository.put(TaskCreate(task_id="c", title="c", sibling_ids=("a", " b", "a")))
    assert task.sibling_ids == ("a", "b")


def test_get_raises_not_found(repository: BacklogRepository) -> None:
    with pytest.raises(TaskNotFoundError) as error:
        repository.get("nope")

    assert error.value.kind == "not_found"
    assert error.value.task_id == "nope"


def test_scan_streams_in_queue_order_with_predicate(
    repository: BacklogRepository,
    make_task,
) -> None:
    make_task("low", priority=1, project="x")
    make_task("high", priority=9, project="y")
    make_task("mid", priority=5, project="x")

    assert [task.task_id for task in repository.scan()] == ["high", "mid", "low"]
    assert [task.task_id for task in repository.scan(project="x")] == ["mid", "low"]
    assert [task.task_id for task in repository.scan(lambda task: task.priority < 9)] == [
        "mid",
        "low",
    ]


def test_compare_and_set_refuses_when_guard_does_not_match(
    repository: BacklogRepository,
    make_task,
) -> None:
    make_task("t-1")

    result = repository.compare_and_set(
        "t-1",
        guard=TaskGuard(statuses=frozenset({TaskStatus.CLAIMED})),
        values={"status": TaskStatus.IN_PROGRESS},
        event=TaskEventWrite(
            event_type="started",
            actor="w1",
            status_from=TaskStatus.CLAIMED,
            status_to=TaskStatus.IN_PROGRESS,
        ),
    )

    assert result is None
    task = repository.get("t-1")
    assert task.status is TaskStatus.PENDING
    assert task.version == 0
    assert [event.event_type for event in repository.list_events("t-1")] == ["created"]


def test_compare_and_set_respects_version_and_staleness(
    repository: BacklogRepository,
    make_task,
    clock,
) -> None:
    task = make_task("t-1")
    guard = TaskGuard(
        statuses=frozenset({TaskStatus.PENDING}),
        version=task.version,
        stale_before=repository.now() - timedelta(seconds=30),
    )
    event = TaskEventWrite(
        event_type="touched",
        actor="tester",
        status_from=TaskStatus.PENDING,
        status_to=TaskStatus.PENDING,
    )

    assert repository.compare_and_set("t-1", guard=guard, values={}, event=event) is None

    clock.advance(seconds=31)
    stale_guard = TaskGuard(
        statuses=frozenset({TaskStatus.PENDING}),
        version=task.version,
        stale_before=repository.now() - timedelta(seconds=30),
    )
    updated = repository.compare_and_set("t-1", guard=stale_guard, values={}, event=event)
    assert updated is not None
    assert updated.version == 1
    assert updated.updated_at == repository.now()

    # Same observed version can't be applied twice.
    assert repository.compare_and_set("t-1", guard=stale_guard, values={}, event=event) is None


def test_task_details_include_ordered_history(repository: BacklogRepository, make_task) -> None:
    make_task("t-1")
    repository.add_event(
        task_id="t-1",
        event=TaskEventWrite(
            event_type="note",
            actor="operator",
            status_from=None,
            status_to=None,
            details={"text": "checked"},
        ),
    )

    details = repository.get_task_details("t-1")

    assert details is not None
    assert details.task.task_id == "t-1"
    assert [event.event_type for event in details.events] == ["created", "note"]
    assert details.events[1].details == {"text": "checked"}
    assert repository.get_task_details("missing") is None
