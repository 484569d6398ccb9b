# src/twodo/tasks/task_models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

TASKS_COLLECTION = "tasks"


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Notes:
    - "past_due" is a refinement of "active" for display ordering, not a terminal state.
    - Only the completion toggle (and the watchdog, for past_due) changes status.
    """

    ACTIVE = "active"
    COMPLETED = "completed"
    PAST_DUE = "past_due"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.ACTIVE
        try:
            return cls(raw)
        except Exception:
            return cls.ACTIVE


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def weight(self) -> int:
        return _PRIORITY_WEIGHTS[self]

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        try:
            return cls(raw or "medium")
        except Exception:
            return cls.MEDIUM


_PRIORITY_WEIGHTS = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3}


class Visibility(StrEnum):
    PRIVATE = "private"
    SHARED = "shared"

    @classmethod
    def from_db(cls, raw: str | None) -> Visibility:
        try:
            return cls(raw or "private")
        except Exception:
            return cls.PRIVATE


class ChangeType(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# ---- timestamps ----


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_ts(raw: Any) -> datetime | None:
    """ISO-8601 string (or datetime) -> aware datetime. Naive values are taken as UTC."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    else:
        s = str(raw).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_ts(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


# ---- models ----


@dataclass(slots=True, frozen=True)
class ChecklistItem:
    id: str
    text: str
    is_completed: bool = False

    @classmethod
    def new(cls, text: str) -> ChecklistItem:
        return cls(id=uuid.uuid4().hex, text=text)

    @classmethod
    def from_record(cls, raw: dict[str, Any]) -> ChecklistItem:
        return cls(
            id=str(raw.get("id") or uuid.uuid4().hex),
            text=str(raw.get("text") or ""),
            is_completed=bool(raw.get("is_completed", False)),
        )

    def to_record(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text, "is_completed": self.is_completed}


@dataclass(slots=True, frozen=True)
class Task:
    """
    Immutable mirror entry. All mutation is a field-level patch on the store,
    locally expressed with dataclasses.replace().
    """

    id: str
    created_at: datetime
    creator_id: str
    title: str
    status: TaskStatus = TaskStatus.ACTIVE
    priority: Priority = Priority.MEDIUM
    visibility: Visibility = Visibility.PRIVATE

    assignee_id: str | None = None
    description: str | None = None
    due_at: datetime | None = None
    completed_at: datetime | None = None
    image_url: str | None = None

    tags: tuple[str, ...] = ()
    checklist: tuple[ChecklistItem, ...] = ()

    @property
    def owner_id(self) -> str:
        """Effective owner: assignee, or creator when unassigned."""
        return self.assignee_id or self.creator_id

    @property
    def is_shared(self) -> bool:
        return self.visibility == Visibility.SHARED

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED

    @classmethod
    def from_record(cls, row: dict[str, Any]) -> Task:
        created_at = parse_ts(row.get("created_at")) or utcnow()
        return cls(
            id=str(row["id"]),
            created_at=created_at,
            creator_id=str(row.get("creator_id") or ""),
            title=str(row.get("title") or ""),
            status=TaskStatus.from_db(row.get("status")),
            priority=Priority.from_db(row.get("priority")),
            visibility=Visibility.from_db(row.get("visibility")),
            assignee_id=row.get("assignee_id") or None,
            description=row.get("description"),
            due_at=parse_ts(row.get("due_at")),
            completed_at=parse_ts(row.get("completed_at")),
            image_url=row.get("image_url"),
            tags=tuple(str(t) for t in (row.get("tags") or [])),
            checklist=tuple(ChecklistItem.from_record(c) for c in (row.get("checklist") or [])),
        )

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": format_ts(self.created_at),
            "creator_id": self.creator_id,
            "assignee_id": self.assignee_id,
            "visibility": self.visibility.value,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "due_at": format_ts(self.due_at),
            "completed_at": format_ts(self.completed_at),
            "image_url": self.image_url,
            "tags": list(self.tags),
            "checklist": [c.to_record() for c in self.checklist],
        }


@dataclass(slots=True)
class TaskDraft:
    """What the UI supplies to add(): everything except id/created_at/status."""

    title: str
    creator_id: str
    visibility: Visibility = Visibility.PRIVATE
    priority: Priority = Priority.MEDIUM
    assignee_id: str | None = None
    description: str | None = None
    due_at: datetime | None = None
    image_url: str | None = None
    tags: list[str] = field(default_factory=list)
    checklist: list[ChecklistItem] = field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        return {
            "title": self.title.strip(),
            "creator_id": self.creator_id,
            "assignee_id": self.assignee_id,
            "visibility": Visibility(self.visibility).value,
            "priority": Priority(self.priority).value,
            "description": self.description,
            "due_at": format_ts(self.due_at),
            "image_url": self.image_url,
            "tags": list(dict.fromkeys(self.tags)),
            "checklist": [c.to_record() for c in self.checklist],
            "status": TaskStatus.ACTIVE.value,
        }


def patch_to_record(patch: dict[str, Any]) -> dict[str, Any]:
    """Normalize a model-level patch (enums, datetimes, tuples) into JSON-friendly values."""
    out: dict[str, Any] = {}
    for key, value in patch.items():
        if isinstance(value, datetime):
            out[key] = format_ts(value)
        elif isinstance(value, StrEnum):
            out[key] = value.value
        elif key == "checklist" and value is not None:
            out[key] = [c.to_record() if isinstance(c, ChecklistItem) else dict(c) for c in value]
        elif key == "tags" and value is not None:
            out[key] = list(value)
        else:
            out[key] = value
    return out


@dataclass(slots=True, frozen=True)
class UserProfile:
    id: str
    name: str
    email: str = ""
    partner_id: str | None = None
    partner_name: str | None = None

    @property
    def has_partner(self) -> bool:
        return bool(self.partner_id)


@dataclass(slots=True, frozen=True)
class ChangeEvent:
    """Row-change event from the realtime bus. For deletes, `record` is the old row (at least its id)."""

    type: ChangeType
    record: dict[str, Any]

    @property
    def task_id(self) -> str | None:
        raw = self.record.get("id")
        return str(raw) if raw is not None else None


@dataclass(slots=True, frozen=True)
class BroadcastMessage:
    channel: str
    event: str
    payload: dict[str, Any]


# ---- per-user broadcast channels ----

NUDGE_EVENT = "nudge"
MILESTONE_EVENT = "milestone_reached"
TASK_DUE_EVENT = "task_due"


def nudge_channel(user_id: str) -> str:
    return f"nudge_{user_id}"


def milestone_channel(user_id: str) -> str:
    return f"milestone_{user_id}"


def task_due_channel(user_id: str) -> str:
    return f"task_due_{user_id}"
