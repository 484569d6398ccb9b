# src/twodo/tasks/sync_engine.py

from __future__ import annotations

"""
Task sync engine.

Owns the in-memory mirror of the remote task collection:
- fetch_all() loads it once per session,
- add/update/remove go to the store first and only touch the mirror with what the
  store returned,
- toggle_completion() is optimistic, wrapped in a MirrorTransaction so a failed
  store call restores the exact pre-mutation mirror,
- merge_remote_event() folds realtime row changes in idempotently.

Everything runs on one event loop; the only suspension points are store awaits.
After dispose(), late store responses are dropped instead of touching the mirror.
"""

import dataclasses
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..core.errors import StoreError
from ..core.ports import RemoteStore
from .milestones import MilestoneAggregator
from .task_models import (
    TASKS_COLLECTION,
    ChangeEvent,
    ChangeType,
    Task,
    TaskDraft,
    TaskStatus,
    UserProfile,
    Visibility,
    patch_to_record,
    utcnow,
)

logger = logging.getLogger(__name__)


class MirrorTransaction:
    """
    begin (snapshot) -> apply -> commit | rollback.

    Mirror entries are immutable, so a shallow copy of the list is an exact snapshot.
    """

    __slots__ = ("_engine", "snapshot", "state")

    def __init__(self, engine: TaskSyncEngine, snapshot: tuple[Task, ...]) -> None:
        self._engine = engine
        self.snapshot = snapshot
        self.state = "open"

    def commit(self) -> None:
        self.state = "committed"

    def rollback(self) -> None:
        if self.state != "open":
            raise RuntimeError(f"transaction already {self.state}")
        self._engine._set_mirror(list(self.snapshot))
        self.state = "rolled_back"
        logger.info("Mirror rolled back to snapshot (%d tasks)", len(self.snapshot))


class TaskSyncEngine:
    def __init__(
        self,
        store: RemoteStore,
        *,
        profile: UserProfile,
        milestones: MilestoneAggregator | None = None,
        clock: Callable[[], datetime] = utcnow,
        collection: str = TASKS_COLLECTION,
    ) -> None:
        self._store = store
        self._profile = profile
        self._milestones = milestones
        self._clock = clock
        self._collection = collection
        self._tasks: list[Task] = []
        self._closed = False

    # ---- read side ----

    @property
    def tasks(self) -> tuple[Task, ...]:
        """Read-only view, newest first."""
        return tuple(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def get(self, task_id: str) -> Task | None:
        for t in self._tasks:
            if t.id == task_id:
                return t
        return None

    def available_tags(self) -> list[str]:
        return sorted({tag for t in self._tasks for tag in t.tags})

    def is_visible(self, task: Task) -> bool:
        """Private tasks belong to their creator; shared tasks to both partners."""
        me = self._profile.id
        if task.visibility == Visibility.PRIVATE:
            return task.creator_id == me
        members = {me}
        if self._profile.partner_id:
            members.add(self._profile.partner_id)
        return task.creator_id in members or task.assignee_id in members

    # ---- lifecycle ----

    def dispose(self) -> None:
        self._closed = True
        self._tasks = []
        logger.debug("Sync engine disposed user=%s", self._profile.id)

    def begin(self) -> MirrorTransaction:
        return MirrorTransaction(self, tuple(self._tasks))

    # ---- mirror helpers ----

    def _set_mirror(self, tasks: list[Task]) -> None:
        self._tasks = tasks

    def _index_of(self, task_id: str) -> int | None:
        for i, t in enumerate(self._tasks):
            if t.id == task_id:
                return i
        return None

    def _replace(self, task: Task) -> bool:
        idx = self._index_of(task.id)
        if idx is None:
            return False
        self._tasks[idx] = task
        return True

    def _prepend(self, task: Task) -> bool:
        if self._index_of(task.id) is not None:
            return False
        self._tasks.insert(0, task)
        return True

    # ---- operations ----

    async def fetch_all(self) -> bool:
        """
        Replace the mirror with the store's collection, newest first.
        Fails open: on error the mirror stays as it was (empty at session start).
        """
        try:
            rows = await self._store.fetch(self._collection, order_by="created_at", descending=True)
        except Exception:
            logger.exception("Fetch tasks failed user=%s", self._profile.id)
            return False

        if self._closed:
            return False

        tasks: list[Task] = []
        seen: set[str] = set()
        for row in rows:
            try:
                task = Task.from_record(row)
            except Exception:
                logger.warning("Skipping malformed task row: %r", row)
                continue
            if task.id in seen or not self.is_visible(task):
                continue
            seen.add(task.id)
            tasks.append(task)

        self._set_mirror(tasks)
        logger.info("Fetched tasks successfully: %d tasks for user=%s", len(tasks), self._profile.id)
        return True

    async def add(self, draft: TaskDraft) -> Task | None:
        """Insert; on success prepend the server copy. Errors propagate, mirror untouched."""
        record = await self._store.insert(self._collection, draft.to_record())
        if self._closed:
            return None
        task = Task.from_record(record)
        self._prepend(task)
        logger.info("Task added id=%s visibility=%s", task.id, task.visibility.value)
        return task

    async def update(self, task_id: str, patch: dict[str, Any]) -> Task | None:
        """Partial update; on success the server's full record replaces the mirror entry."""
        record = await self._store.update(self._collection, task_id, patch_to_record(patch))
        if self._closed:
            return None
        task = Task.from_record(record)
        self._replace(task)
        logger.debug("Task updated id=%s fields=%s", task_id, sorted(patch))
        return task

    async def toggle_completion(self, task_id: str) -> TaskStatus | None:
        """
        Optimistic completion toggle with exact rollback.

        completed -> active (completed_at cleared); active/past_due -> completed (completed_at=now).
        Returns the new status, or None when the task is not in the mirror.
        """
        task = self.get(task_id)
        if task is None:
            return None

        becoming_completed = not task.is_completed
        new_status = TaskStatus.COMPLETED if becoming_completed else TaskStatus.ACTIVE
        completed_at = self._clock() if becoming_completed else None

        tx = self.begin()
        self._replace(dataclasses.replace(task, status=new_status, completed_at=completed_at))

        try:
            await self._update_status(task_id, new_status, completed_at)
        except Exception as e:
            if not self._closed:
                tx.rollback()
            logger.error("Toggle task failed id=%s: %s", task_id, e)
            raise

        tx.commit()
        if self._closed:
            return new_status

        if becoming_completed and self._milestones is not None:
            await self._milestones.on_task_completed(tx.snapshot)
        return new_status

    async def _update_status(
        self,
        task_id: str,
        status: TaskStatus,
        completed_at: datetime | None,
    ) -> None:
        patch = {"status": status, "completed_at": completed_at}
        try:
            await self._store.update(self._collection, task_id, patch_to_record(patch))
        except StoreError as e:
            if not e.is_missing_column("completed_at"):
                raise
            # Older schemas have no completed_at column: keep the status change at least.
            logger.warning("Store lacks completed_at (code=%s); retrying with status only", e.code)
            await self._store.update(self._collection, task_id, patch_to_record({"status": status}))

    async def toggle_checklist_item(self, task_id: str, item_id: str) -> Task | None:
        task = self.get(task_id)
        if task is None or not task.checklist:
            return None
        if not any(item.id == item_id for item in task.checklist):
            return None

        checklist = [
            dataclasses.replace(item, is_completed=not item.is_completed) if item.id == item_id else item
            for item in task.checklist
        ]
        return await self.update(task_id, {"checklist": checklist})

    async def remove(self, task_id: str) -> None:
        """
        Delete on the store. The mirror entry goes away with the realtime delete
        event; nothing is removed optimistically, so nothing needs a rollback.
        """
        await self._store.delete(self._collection, task_id)
        logger.info("Task delete requested id=%s", task_id)

    def merge_remote_event(self, event: ChangeEvent) -> bool:
        """
        Idempotent merge of a realtime row change. Returns True if the mirror changed.

        insert: ignored when the id is already present (our own add() echo), else prepended
        update: wholesale replace; no-op for unknown ids
        delete: drop; no-op for unknown ids
        """
        if self._closed:
            return False

        task_id = event.task_id
        if not task_id:
            logger.debug("Ignoring change event without id: %r", event)
            return False

        if event.type == ChangeType.DELETE:
            idx = self._index_of(task_id)
            if idx is None:
                return False
            del self._tasks[idx]
            return True

        try:
            task = Task.from_record(event.record)
        except Exception:
            logger.warning("Ignoring malformed %s event: %r", event.type.value, event.record)
            return False

        if event.type == ChangeType.INSERT:
            if not self.is_visible(task):
                return False
            return self._prepend(task)

        idx = self._index_of(task_id)
        if idx is None:
            return False
        if not self.is_visible(task):
            # e.g. a shared task turned private by its creator
            del self._tasks[idx]
            return True
        self._tasks[idx] = task
        return True
