# src/twodo/tasks/watchdog.py

from __future__ import annotations

"""
Deadline watchdog.

A small polling loop that, every interval_seconds, walks a snapshot of the mirror and:
- marks overdue active tasks as past_due (and alerts once per task),
- warns the owner once when a task is due within DUE_SOON_WINDOW,
- escalates priority as the due date approaches (never downgrades).

All writes go through the sync engine's update path; the watchdog never touches
the mirror itself. One task failing does not stop the sweep.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from ..core.ports import NotificationSink, RealtimeBus
from .sync_engine import TaskSyncEngine
from .task_models import (
    TASK_DUE_EVENT,
    Priority,
    Task,
    TaskStatus,
    UserProfile,
    task_due_channel,
    utcnow,
)

logger = logging.getLogger(__name__)

DUE_SOON_WINDOW = timedelta(hours=2)
HIGH_PRIORITY_DAYS = 2
MEDIUM_PRIORITY_DAYS = 7

NOTIFY_DUE = "due"
NOTIFY_DUE_SOON = "due-soon"


def days_until(due_at: datetime, now: datetime) -> int:
    """Whole days between now and due_at, truncated toward zero (negative when overdue)."""
    return int((due_at - now) / timedelta(days=1))


def escalated_priority(task: Task, now: datetime) -> Priority | None:
    """New priority if the due date calls for a raise, else None. Never lowers priority."""
    if task.due_at is None:
        return None
    days = days_until(task.due_at, now)
    if days <= HIGH_PRIORITY_DAYS:
        return Priority.HIGH if task.priority != Priority.HIGH else None
    if days <= MEDIUM_PRIORITY_DAYS and task.priority == Priority.LOW:
        return Priority.MEDIUM
    return None


class DeadlineWatchdog:
    """
    One instance per logged-in session.

    `notified` holds (task_id, reason) keys for the lifetime of the process, so a
    task that stays overdue is announced once, not on every sweep.
    """

    def __init__(
        self,
        engine: TaskSyncEngine,
        notifier: NotificationSink,
        *,
        profile: UserProfile,
        bus: RealtimeBus | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine = engine
        self._notifier = notifier
        self._profile = profile
        self._bus = bus
        self._clock = clock
        self.notified: set[tuple[str, str]] = set()

    async def sweep(self) -> int:
        """Run one pass. Returns the number of tasks for which a patch was sent."""
        now = self._clock()
        patched = 0
        for task in self._engine.tasks:
            if task.status == TaskStatus.COMPLETED or task.due_at is None:
                continue
            try:
                if await self._check_task(task, now):
                    patched += 1
            except Exception:
                logger.exception("Watchdog failed for task id=%s", task.id)
        if patched:
            logger.info("Watchdog sweep patched %d task(s)", patched)
        return patched

    async def _check_task(self, task: Task, now: datetime) -> bool:
        if task.due_at is None:
            return False
        is_past_due = task.due_at < now
        is_due_soon = not is_past_due and task.due_at < now + DUE_SOON_WINDOW
        is_owner = task.owner_id == self._profile.id

        updates: dict[str, Any] = {}

        if is_past_due and task.status == TaskStatus.ACTIVE:
            updates["status"] = TaskStatus.PAST_DUE
            key = (task.id, NOTIFY_DUE)
            if key not in self.notified:
                self.notified.add(key)
                await self._announce_due(task, is_owner=is_owner)

        if is_due_soon and task.status == TaskStatus.ACTIVE:
            key = (task.id, NOTIFY_DUE_SOON)
            if key not in self.notified:
                self.notified.add(key)
                if is_owner:
                    await self._notify("Task due in less than 2h", body=task.title, tag=f"{task.id}-due-soon")

        new_priority = escalated_priority(task, now)
        if new_priority is not None:
            updates["priority"] = new_priority

        if not updates:
            return False

        await self._engine.update(task.id, updates)
        logger.info(
            "Watchdog task %s -> %s",
            task.id,
            ", ".join(f"{k}={getattr(v, 'value', v)}" for k, v in updates.items()),
        )
        return True

    async def _announce_due(self, task: Task, *, is_owner: bool) -> None:
        tag = f"due-{task.id}"
        if is_owner or task.is_shared:
            title = "Your task is due!" if is_owner else "Partner's task is due!"
            await self._notify(title, body=task.title, tag=tag)

        partner_id = self._profile.partner_id
        if task.is_shared and partner_id and self._bus is not None:
            payload = {"taskId": task.id, "title": task.title, "isPartnerTask": True}
            try:
                await self._bus.broadcast(task_due_channel(partner_id), TASK_DUE_EVENT, payload)
            except Exception:
                logger.exception("task_due broadcast failed task=%s partner=%s", task.id, partner_id)

    async def _notify(self, title: str, *, body: str, tag: str) -> None:
        try:
            await self._notifier.show(title, body=body, tag=tag)
        except Exception:
            logger.exception("Notification failed tag=%s", tag)


async def run_deadline_watchdog(
    watchdog: DeadlineWatchdog,
    *,
    interval_seconds: float = 60.0,
) -> None:
    """
    Periodic sweep. The first sweep runs after one interval.

    To stop the watchdog, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))

    while True:
        await asyncio.sleep(sleep_s)
        try:
            await watchdog.sweep()
        except Exception:
            logger.exception("Watchdog sweep failed")
