# tests/test_sync_engine.py

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from twodo.core.errors import StoreError
from twodo.tasks.task_models import (
    ChangeEvent,
    ChangeType,
    TaskDraft,
    TaskStatus,
    Visibility,
    format_ts,
)

from .fakes import NOW, make_record


def _ids(engine) -> list[str]:
    return [t.id for t in engine.tasks]


def _assert_completion_coupling(engine) -> None:
    for t in engine.tasks:
        assert (t.status == TaskStatus.COMPLETED) == (t.completed_at is not None), t


@pytest.mark.asyncio
async def test_fetch_all_orders_newest_first_and_filters_visibility(store, engine) -> None:
    store.rows = {
        r["id"]: r
        for r in [
            make_record("old", created_at=NOW - timedelta(days=3)),
            make_record("new", created_at=NOW - timedelta(hours=1)),
            make_record("partner-private", creator_id="partner"),
            make_record("partner-shared", creator_id="partner", visibility="shared"),
            make_record("stranger-shared", creator_id="stranger", visibility="shared"),
            make_record("private-assigned-to-me", creator_id="partner", assignee_id="me"),
            make_record("shared-assigned-to-me", creator_id="partner", assignee_id="me", visibility="shared"),
        ]
    }

    assert await engine.fetch_all() is True

    assert _ids(engine) == ["new", "partner-shared", "shared-assigned-to-me", "old"]
    assert store.calls[0] == ("fetch", "tasks", "created_at", True)


@pytest.mark.asyncio
async def test_fetch_all_fails_open(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    store.fail("fetch")

    assert await engine.fetch_all() is False
    assert engine.tasks == ()


@pytest.mark.asyncio
async def test_add_prepends_server_record(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    await engine.fetch_all()

    task = await engine.add(TaskDraft(title="X", creator_id="me", visibility=Visibility.PRIVATE))

    assert task is not None
    assert _ids(engine) == ["new-1", "a"]
    assert engine.tasks[0].title == "X"
    assert engine.tasks[0].status == TaskStatus.ACTIVE
    assert engine.tasks[0].created_at == NOW
    inserted = store.calls[-1][2]
    assert inserted["status"] == "active"
    assert "id" not in inserted


@pytest.mark.asyncio
async def test_add_returns_server_id_as_first_entry(store, engine) -> None:
    async def insert(collection, record):
        return dict(record, id="new-task", created_at=format_ts(NOW))

    store.insert = insert  # type: ignore[method-assign]
    await engine.add(TaskDraft(title="X", creator_id="u1", visibility=Visibility.PRIVATE))

    assert engine.tasks[0].id == "new-task"


@pytest.mark.asyncio
async def test_add_failure_propagates_without_mirror_change(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    await engine.fetch_all()
    store.fail("insert", StoreError("permission denied", code="42501"))

    with pytest.raises(StoreError):
        await engine.add(TaskDraft(title="X", creator_id="me"))
    assert _ids(engine) == ["a"]


@pytest.mark.asyncio
async def test_add_then_realtime_echo_is_not_duplicated(store, engine) -> None:
    task = await engine.add(TaskDraft(title="X", creator_id="me"))
    assert task is not None

    changed = engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, dict(store.rows[task.id])))

    assert changed is False
    assert _ids(engine) == [task.id]


@pytest.mark.asyncio
async def test_update_replaces_entry_with_server_copy(store, engine) -> None:
    store.rows = {"a": make_record("a", title="before")}
    await engine.fetch_all()

    async def update(collection, record_id, patch):
        row = dict(store.rows[record_id], **patch)
        row["description"] = "set by trigger"
        return row

    store.update = update  # type: ignore[method-assign]
    task = await engine.update("a", {"title": "after"})

    assert task is not None
    assert engine.tasks[0].title == "after"
    assert engine.tasks[0].description == "set by trigger"


@pytest.mark.asyncio
async def test_update_failure_leaves_mirror(store, engine) -> None:
    store.rows = {"a": make_record("a", title="before")}
    await engine.fetch_all()
    before = engine.tasks
    store.fail("update")

    with pytest.raises(StoreError):
        await engine.update("a", {"title": "after"})
    assert engine.tasks == before


@pytest.mark.asyncio
async def test_toggle_completion_marks_completed_and_reopens(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    await engine.fetch_all()

    assert await engine.toggle_completion("a") == TaskStatus.COMPLETED
    task = engine.get("a")
    assert task is not None
    assert task.status == TaskStatus.COMPLETED
    assert task.completed_at == NOW
    assert store.updates()[-1] == ("a", {"status": "completed", "completed_at": format_ts(NOW)})
    _assert_completion_coupling(engine)

    assert await engine.toggle_completion("a") == TaskStatus.ACTIVE
    task = engine.get("a")
    assert task is not None
    assert task.status == TaskStatus.ACTIVE
    assert task.completed_at is None
    assert store.updates()[-1] == ("a", {"status": "active", "completed_at": None})
    _assert_completion_coupling(engine)


@pytest.mark.asyncio
async def test_toggle_completion_of_past_due_task_completes_it(store, engine) -> None:
    store.rows = {"a": make_record("a", status="past_due", due_at=NOW - timedelta(hours=3))}
    await engine.fetch_all()

    assert await engine.toggle_completion("a") == TaskStatus.COMPLETED
    assert engine.tasks[0].status == TaskStatus.COMPLETED


@pytest.mark.asyncio
async def test_toggle_completion_unknown_id_is_noop(store, engine) -> None:
    assert await engine.toggle_completion("missing") is None
    assert store.updates() == []


@pytest.mark.asyncio
async def test_toggle_completion_is_optimistic_and_rolls_back_exactly(store, engine) -> None:
    store.rows = {
        "a": make_record("a", tags=["home"], checklist=[{"id": "c1", "text": "x", "is_completed": False}]),
        "b": make_record("b", created_at=NOW - timedelta(days=2)),
    }
    await engine.fetch_all()
    before = engine.tasks

    store.hold_updates()
    store.fail("update")
    pending = asyncio.create_task(engine.toggle_completion("a"))
    await asyncio.sleep(0)

    # Applied before the store answered.
    optimistic = engine.get("a")
    assert optimistic is not None
    assert optimistic.status == TaskStatus.COMPLETED
    _assert_completion_coupling(engine)

    store.release()
    with pytest.raises(StoreError):
        await pending

    assert engine.tasks == before


@pytest.mark.asyncio
async def test_toggle_completion_retries_without_missing_completed_at_column(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    await engine.fetch_all()
    store.missing_columns = {"completed_at"}

    assert await engine.toggle_completion("a") == TaskStatus.COMPLETED

    updates = store.updates()
    assert [patch for _, patch in updates] == [
        {"status": "completed", "completed_at": format_ts(NOW)},
        {"status": "completed"},
    ]
    assert engine.tasks[0].status == TaskStatus.COMPLETED
    _assert_completion_coupling(engine)


@pytest.mark.asyncio
async def test_toggle_completion_other_errors_are_not_retried(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    await engine.fetch_all()
    store.fail("update", StoreError("JWT expired", code="PGRST301"))

    with pytest.raises(StoreError):
        await engine.toggle_completion("a")
    assert len(store.updates()) == 1
    assert engine.tasks[0].status == TaskStatus.ACTIVE


@pytest.mark.asyncio
async def test_toggle_completion_crossing_milestone_celebrates(store, engine, bus, celebrations) -> None:
    done = [
        make_record(f"d{i}", status="completed", completed_at=NOW - timedelta(hours=i + 1))
        for i in range(4)
    ]
    store.rows = {r["id"]: r for r in [make_record("5", created_at=NOW), *done]}
    await engine.fetch_all()

    await engine.toggle_completion("5")

    task = engine.get("5")
    assert task is not None
    assert task.status == TaskStatus.COMPLETED
    assert task.completed_at == NOW
    assert celebrations == [{"count": 5}]
    assert [(s.channel, s.event, s.payload) for s in bus.sent] == [
        ("milestone_partner", "milestone_reached", {"count": 5})
    ]


@pytest.mark.asyncio
async def test_reopening_does_not_celebrate(store, engine, celebrations) -> None:
    done = [
        make_record(f"d{i}", status="completed", completed_at=NOW - timedelta(hours=i + 1))
        for i in range(5)
    ]
    store.rows = {r["id"]: r for r in done}
    await engine.fetch_all()

    await engine.toggle_completion("d0")

    assert celebrations == []


@pytest.mark.asyncio
async def test_toggle_checklist_item_routes_through_update(store, engine) -> None:
    store.rows = {
        "a": make_record(
            "a",
            checklist=[
                {"id": "c1", "text": "milk", "is_completed": False},
                {"id": "c2", "text": "eggs", "is_completed": True},
            ],
        )
    }
    await engine.fetch_all()

    task = await engine.toggle_checklist_item("a", "c1")

    assert task is not None
    assert [c.is_completed for c in task.checklist] == [True, True]
    assert store.updates()[-1][1]["checklist"][0] == {"id": "c1", "text": "milk", "is_completed": True}
    assert [c.is_completed for c in engine.tasks[0].checklist] == [True, True]


@pytest.mark.asyncio
async def test_toggle_checklist_item_unknown_is_noop(store, engine) -> None:
    store.rows = {"a": make_record("a", checklist=[{"id": "c1", "text": "milk", "is_completed": False}])}
    await engine.fetch_all()

    assert await engine.toggle_checklist_item("a", "nope") is None
    assert await engine.toggle_checklist_item("missing", "c1") is None
    assert store.updates() == []


@pytest.mark.asyncio
async def test_remove_waits_for_realtime_delete(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    await engine.fetch_all()

    await engine.remove("a")
    assert _ids(engine) == ["a"]
    assert ("delete", "tasks", "a") in store.calls

    assert engine.merge_remote_event(ChangeEvent(ChangeType.DELETE, {"id": "a"})) is True
    assert engine.tasks == ()


@pytest.mark.asyncio
async def test_remove_failure_propagates(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    await engine.fetch_all()
    store.fail("delete")

    with pytest.raises(StoreError):
        await engine.remove("a")
    assert _ids(engine) == ["a"]


def test_merge_insert_twice_yields_one_entry(engine) -> None:
    event = ChangeEvent(ChangeType.INSERT, make_record("x"))

    assert engine.merge_remote_event(event) is True
    assert engine.merge_remote_event(event) is False
    assert _ids(engine) == ["x"]


def test_merge_insert_prepends(engine) -> None:
    engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, make_record("a")))
    engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, make_record("b")))

    assert _ids(engine) == ["b", "a"]


def test_merge_update_replaces_wholesale_and_ignores_unknown(engine) -> None:
    engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, make_record("a", tags=["x"])))

    assert engine.merge_remote_event(ChangeEvent(ChangeType.UPDATE, make_record("a", title="new"))) is True
    assert engine.tasks[0].title == "new"
    assert engine.tasks[0].tags == ()

    assert engine.merge_remote_event(ChangeEvent(ChangeType.UPDATE, make_record("zzz"))) is False
    assert _ids(engine) == ["a"]


def test_merge_delete_unknown_is_noop(engine) -> None:
    engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, make_record("a")))

    assert engine.merge_remote_event(ChangeEvent(ChangeType.DELETE, {"id": "b"})) is False
    assert _ids(engine) == ["a"]


def test_merge_ignores_tasks_outside_visibility_scope(engine) -> None:
    hidden = make_record("p", creator_id="partner", visibility="private")
    assert engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, hidden)) is False
    hidden_assigned = make_record("pa", creator_id="partner", assignee_id="me", visibility="private")
    assert engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, hidden_assigned)) is False

    shared = make_record("s", creator_id="partner", visibility="shared")
    assert engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, shared)) is True

    # The partner made it private again: it leaves my mirror.
    assert engine.merge_remote_event(ChangeEvent(ChangeType.UPDATE, dict(shared, visibility="private"))) is True
    assert engine.tasks == ()


def test_merge_ignores_malformed_and_idless_events(engine) -> None:
    assert engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, {"title": "no id"})) is False
    assert engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, {"id": "x", "created_at": "garbage"})) is False
    assert engine.tasks == ()


def test_available_tags_sorted_and_deduplicated(engine) -> None:
    engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, make_record("a", tags=["work", "home"])))
    engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, make_record("b", tags=["home", "errands"])))

    assert engine.available_tags() == ["errands", "home", "work"]

    engine.merge_remote_event(ChangeEvent(ChangeType.DELETE, {"id": "a"}))
    assert engine.available_tags() == ["errands", "home"]


@pytest.mark.asyncio
async def test_dispose_drops_late_results_and_events(store, engine) -> None:
    store.rows = {"a": make_record("a")}
    await engine.fetch_all()

    engine.dispose()

    assert engine.tasks == ()
    assert engine.merge_remote_event(ChangeEvent(ChangeType.INSERT, make_record("b"))) is False
    assert await engine.add(TaskDraft(title="late", creator_id="me")) is None
    assert engine.tasks == ()
