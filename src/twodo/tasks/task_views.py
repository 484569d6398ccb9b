# src/twodo/tasks/task_views.py

from __future__ import annotations

"""List views over the mirror: the three screens plus tag filter and ordering."""

from collections.abc import Iterable
from enum import StrEnum

from .task_models import Task, TaskStatus, Visibility


class SortBy(StrEnum):
    CREATED = "created"
    PRIORITY = "priority"
    DUE_DATE = "due_date"


def my_list(tasks: Iterable[Task], user_id: str) -> list[Task]:
    """Open tasks that are mine: private ones I created, or anything assigned to me."""
    return [
        t
        for t in tasks
        if t.status != TaskStatus.COMPLETED
        and ((t.visibility == Visibility.PRIVATE and t.creator_id == user_id) or t.assignee_id == user_id)
    ]


def shared_list(tasks: Iterable[Task]) -> list[Task]:
    return [t for t in tasks if t.visibility == Visibility.SHARED and t.status != TaskStatus.COMPLETED]


def history(tasks: Iterable[Task]) -> list[Task]:
    return [t for t in tasks if t.status == TaskStatus.COMPLETED]


def filter_by_tag(tasks: Iterable[Task], tag: str | None) -> list[Task]:
    if not tag or tag == "all":
        return list(tasks)
    return [t for t in tasks if tag in t.tags]


def sort_tasks(tasks: Iterable[Task], by: SortBy | str = SortBy.CREATED) -> list[Task]:
    """
    Past-due tasks always come first. Within a group, order by `by`;
    ties (and the default) fall back to newest-created first.
    """
    by = SortBy(by)

    # Stable sorts, least significant key first.
    out = sorted(tasks, key=lambda t: t.created_at, reverse=True)
    if by == SortBy.PRIORITY:
        out.sort(key=lambda t: t.priority.weight, reverse=True)
    elif by == SortBy.DUE_DATE:
        out.sort(key=lambda t: (t.due_at is None, t.due_at.timestamp() if t.due_at else 0.0))
    out.sort(key=lambda t: t.status != TaskStatus.PAST_DUE)
    return out


def split_open_completed(tasks: Iterable[Task]) -> tuple[list[Task], list[Task]]:
    open_: list[Task] = []
    done: list[Task] = []
    for t in tasks:
        (done if t.status == TaskStatus.COMPLETED else open_).append(t)
    return open_, done
