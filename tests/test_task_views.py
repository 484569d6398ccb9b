# tests/test_task_views.py

from __future__ import annotations

from datetime import timedelta

from twodo.tasks.task_models import Task
from twodo.tasks.task_views import (
    SortBy,
    filter_by_tag,
    history,
    my_list,
    shared_list,
    sort_tasks,
    split_open_completed,
)

from .fakes import NOW, make_record


def _t(task_id: str, **kw) -> Task:
    return Task.from_record(make_record(task_id, **kw))


def _ids(tasks) -> list[str]:
    return [t.id for t in tasks]


def test_list_screens() -> None:
    tasks = [
        _t("mine"),
        _t("mine-done", status="completed", completed_at=NOW),
        _t("assigned", creator_id="partner", assignee_id="me", visibility="shared"),
        _t("shared", visibility="shared"),
        _t("partner-private", creator_id="partner"),
    ]

    assert _ids(my_list(tasks, "me")) == ["mine", "assigned"]
    assert _ids(shared_list(tasks)) == ["assigned", "shared"]
    assert _ids(history(tasks)) == ["mine-done"]

    open_, done = split_open_completed(tasks)
    assert _ids(done) == ["mine-done"]
    assert len(open_) == 4


def test_filter_by_tag() -> None:
    tasks = [_t("a", tags=["home"]), _t("b", tags=["work"]), _t("c")]

    assert _ids(filter_by_tag(tasks, "home")) == ["a"]
    assert _ids(filter_by_tag(tasks, "all")) == ["a", "b", "c"]
    assert _ids(filter_by_tag(tasks, None)) == ["a", "b", "c"]


def test_sort_puts_past_due_first_then_by_key() -> None:
    tasks = [
        _t("old-low", created_at=NOW - timedelta(days=3), priority="low", due_at=NOW + timedelta(days=1)),
        _t("new-high", created_at=NOW - timedelta(days=1), priority="high"),
        _t("mid", created_at=NOW - timedelta(days=2), priority="medium", due_at=NOW + timedelta(days=5)),
        _t("late", created_at=NOW - timedelta(days=4), status="past_due", due_at=NOW - timedelta(hours=1)),
    ]

    assert _ids(sort_tasks(tasks)) == ["late", "new-high", "mid", "old-low"]
    assert _ids(sort_tasks(tasks, SortBy.PRIORITY)) == ["late", "new-high", "mid", "old-low"]
    assert _ids(sort_tasks(tasks, "due_date")) == ["late", "old-low", "mid", "new-high"]


def test_priority_ties_fall_back_to_newest_first() -> None:
    tasks = [
        _t("older", created_at=NOW - timedelta(days=2), priority="high"),
        _t("newer", created_at=NOW - timedelta(days=1), priority="high"),
        _t("low", created_at=NOW, priority="low"),
    ]

    assert _ids(sort_tasks(tasks, SortBy.PRIORITY)) == ["newer", "older", "low"]
