from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import allure

from todo_arbiter.backlog.models import TaskCreate, TaskStatus
from todo_arbiter.backlog.repository import BacklogRepository
from todo_arbiter.backlog.services import BacklogService

pytestmark = [
    allure.epic("Backlog"),
    allure.feature("Worker Operations"),
]


def test_write_operations_report_status_and_owner(service: BacklogService, make_task) -> None:
    make_task("t-1", title="Implement search")

    claimed = service.claim("t-1", owner_id="w1")
    started = service.start("t-1", owner_id="w1")
    done = service.complete("t-1", owner_id="w1", note="shipped")

    assert claimed.ok
    assert claimed.to_dict() == {
        "ok": True,
        "operation": "claim",
        "task_id": "t-1",
        "status": "claimed",
        "owner": "w1",
        "task": claimed.task,
    }
    assert claimed.task is not None and claimed.task["title"] == "Implement search"
    assert (started.status, started.owner) == ("in_progress", "w1")
    assert (done.status, done.owner) == ("done", None)


def test_conflicts_report_current_holder(service: BacklogService, make_task) -> None:
    make_task("t-1")
    service.claim("t-1", owner_id="w1")

    lost = service.claim("t-1", owner_id="w2")
    stolen_start = service.start("t-1", owner_id="w2")

    assert not lost.ok
    assert lost.error == "already_claimed"
    assert lost.conflict_owner == "w1"
    assert lost.status == "claimed"
    assert not stolen_start.ok
    assert stolen_start.error == "ownership_conflict"
    assert stolen_start.to_dict()["conflict_owner"] == "w1"
    assert "held by w1, not w2" in (stolen_start.message or "")


def test_claim_of_closed_task_names_its_status(service: BacklogService, make_task) -> None:
    make_task("t-1")
    service.claim("t-1", owner_id="w1")
    service.start("t-1", owner_id="w1")
    service.complete("t-1", owner_id="w1")

    refused = service.claim("t-1", owner_id="w2")

    assert (refused.ok, refused.error, refused.status) == (False, "already_claimed", "done")
    assert refused.conflict_owner is None
    assert refused.message == "Task t-1 is done, not pending."


def test_not_found_invalid_and_empty_are_typed(service: BacklogService, make_task) -> None:
    make_task("t-1")

    missing = service.claim("ghost", owner_id="w1")
    invalid = service.complete("t-1", owner_id="w1")
    missing_transition = service.fail("ghost", owner_id="w1", reason="nope")
    service.claim("t-1", owner_id="w1")
    empty = service.claim_next(owner_id="w2")

    assert (missing.ok, missing.error) == (False, "not_found")
    assert invalid.error == "invalid_transition"
    assert missing_transition.error == "not_found"
    assert (empty.ok, empty.error, empty.task_id) == (False, "empty", None)


def test_add_task_validation_error_is_reported(service: BacklogService) -> None:
    response = service.add_task(TaskCreate(task_id="t-1", title=""))

    assert not response.ok
    assert response.error == "validation_error"
    assert response.task_id == "t-1"


def test_release_by_other_worker_uses_configured_staleness(
    service: BacklogService,
    make_task,
    clock,
) -> None:
    make_task("t-1")
    service.claim("t-1", owner_id="w1")

    assert service.release("t-1", owner_id="w2").error == "ownership_conflict"
    clock.advance(seconds=61)
    released = service.release("t-1", owner_id="w2")

    assert released.ok
    assert (released.status, released.owner) == ("pending", None)


def test_heartbeat_keeps_claim_out_of_sweep(service: BacklogService, make_task, clock) -> None:
    make_task("t-1")
    service.claim("t-1", owner_id="w1")
    clock.advance(seconds=50)
    assert service.heartbeat("t-1", owner_id="w1").ok
    clock.advance(seconds=50)

    assert service.sweep() == []
    clock.advance(seconds=11)
    assert [task.task_id for task in service.sweep()] == ["t-1"]


def test_listings_support_compact_mode(service: BacklogService, make_task) -> None:
    make_task("t-1", project="x", description="details")

    compact = service.list_pending(compact=True)
    full = service.list_by_project("x")
    searched = service.search("details", compact=True)

    assert compact == [{"id": "t-1", "title": "Task t-1", "status": "pending", "priority": 2}]
    assert full[0]["description"] == "details"
    assert searched == compact


def test_inspect_includes_history(service: BacklogService, make_task) -> None:
    make_task("t-1")
    service.claim("t-1", owner_id="w1")

    payload = service.inspect("t-1")

    assert payload is not None
    assert [event["event"] for event in payload["history"]] == ["created", "claimed"]
    assert service.inspect("ghost") is None


def test_reopen_requires_terminal_status(service: BacklogService, make_task) -> None:
    make_task("t-1")
    service.claim("t-1", owner_id="w1")
    service.start("t-1", owner_id="w1")

    assert service.reopen("t-1", admin_id="operator").error == "invalid_transition"
    service.fail("t-1", owner_id="w1", reason="broken")
    reopened = service.reopen("t-1", admin_id="operator", reason="retry")

    assert reopened.ok
    assert reopened.status == "pending"


def test_export_import_restores_content_into_fresh_store(
    service: BacklogService,
    make_task,
    repository: BacklogRepository,
    tmp_path: Path,
) -> None:
    make_task("parent", project="x", priority=3)
    make_task("child", project="x", parent_id="parent")
    repository.put(TaskCreate(task_id="peer", title="Peer", sibling_ids=("child",)))
    make_task("closed")
    service.claim("closed", owner_id="w1")
    service.start("closed", owner_id="w1")
    service.complete("closed", owner_id="w1")
    service.claim("child", owner_id="w1")

    exported = service.export_tasks()
    assert "history" not in exported[0]
    # Children before parents exercises the parent-first ordering.
    exported.sort(key=lambda record: record["id"])

    target_repo = BacklogRepository(tmp_path / "restored.db")
    target_repo.init_schema()
    try:
        target = BacklogService(repository=target_repo, stale_after=timedelta(seconds=60))
        summary = target.import_tasks(exported)

        assert (summary.created, summary.replaced, summary.skipped) == (3, 0, 1)
        assert summary.errors == []
        child = target_repo.get("child")
        assert child.parent_id == "parent"
        assert child.status is TaskStatus.PENDING
        assert child.owner is None
        assert target_repo.get("peer").sibling_ids == ("child",)
        assert target_repo.get("parent").priority == 3
        assert target_repo.find("closed") is None

        again = target.import_tasks(exported, include_closed=True)
        assert (again.created, again.replaced, again.skipped) == (1, 3, 0)
        assert target_repo.get("closed").status is TaskStatus.PENDING
    finally:
        target_repo.close()


def test_import_reports_bad_records(service: BacklogService) -> None:
    summary = service.import_tasks(
        [
            {"id": "ok", "title": "fine"},
            {"id": "no-title"},
            {"id": "bad-priority", "title": "x", "priority": "urgent"},
            {"id": "orphan", "title": "y", "parent_id": "missing"},
        ],
    )

    assert summary.created == 1
    assert len(summary.errors) == 3
    assert summary.errors[0].startswith("no-title:")


def test_import_include_closed_reopens_existing_closed_tasks(
    service: BacklogService,
    make_task,
    repository: BacklogRepository,
) -> None:
    make_task("shipped")
    make_task("broken")
    make_task("held")
    make_task("open")
    service.claim("shipped", owner_id="w1")
    service.start("shipped", owner_id="w1")
    service.complete("shipped", owner_id="w1")
    service.claim("broken", owner_id="w1")
    service.start("broken", owner_id="w1")
    service.fail("broken", owner_id="w1", reason="flaky")
    service.claim("held", owner_id="w2")
    exported = service.export_tasks()

    skipped = service.import_tasks(exported)
    assert (skipped.replaced, skipped.reopened, skipped.skipped) == (2, 0, 2)
    assert repository.get("shipped").status is TaskStatus.DONE

    summary = service.import_tasks(exported, include_closed=True, admin_id="restorer")

    assert (summary.created, summary.replaced, summary.reopened) == (0, 4, 2)
    assert summary.errors == []
    for task_id in ("shipped", "broken"):
        task = repository.get(task_id)
        assert task.status is TaskStatus.PENDING
        assert task.owner is None
        last = repository.list_events(task_id)[-1]
        assert (last.event_type, last.actor) == ("reopened", "restorer")
        assert last.details == {"reason": "import"}
    assert repository.get("broken").failure_reason is None
    held = repository.get("held")
    assert (held.status, held.owner) == (TaskStatus.CLAIMED, "w2")
