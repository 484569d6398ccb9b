# src/twodo/core/session.py

from __future__ import annotations

"""
Per-login task session (composition of the core services).

Lifecycle:
    session = TaskSession(...)      # on login
    await session.start()           # subscribe -> fetch -> pump + watchdog
    ...UI calls add_task / toggle_task_completion / ...
    await session.stop()            # on logout: cancel timers, close subscriptions

Transport callbacks never touch the mirror directly: they only enqueue
ChangeEvent / BroadcastMessage items, and a single consumer task feeds them to
the sync engine and the notifier on the session's loop.
"""

import asyncio
import contextlib
import logging
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any, Union

from ..tasks.milestones import SUNDAY, MilestoneAggregator
from ..tasks.sync_engine import TaskSyncEngine
from ..tasks.task_models import (
    MILESTONE_EVENT,
    NUDGE_EVENT,
    TASK_DUE_EVENT,
    TASKS_COLLECTION,
    BroadcastMessage,
    ChangeEvent,
    ChangeType,
    Task,
    TaskDraft,
    TaskStatus,
    UserProfile,
    milestone_channel,
    nudge_channel,
    task_due_channel,
    utcnow,
)
from ..tasks.watchdog import DeadlineWatchdog, run_deadline_watchdog
from .ports import NotificationSink, RealtimeBus, RemoteStore, Subscription
from .signals import CELEBRATE_MILESTONE, LocalSignals

logger = logging.getLogger(__name__)

InboundItem = Union[ChangeEvent, BroadcastMessage]


class TaskSession:
    def __init__(
        self,
        *,
        profile: UserProfile,
        store: RemoteStore,
        bus: RealtimeBus,
        notifier: NotificationSink,
        signals: LocalSignals,
        watchdog_interval_seconds: float = 60.0,
        week_start_day: int = SUNDAY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.profile = profile
        self.signals = signals
        self._bus = bus
        self._notifier = notifier
        self._watchdog_interval = float(watchdog_interval_seconds)

        self.milestones = MilestoneAggregator(
            profile=profile,
            signals=signals,
            bus=bus,
            week_start_day=week_start_day,
            clock=clock,
        )
        self.engine = TaskSyncEngine(store, profile=profile, milestones=self.milestones, clock=clock)
        self.watchdog = DeadlineWatchdog(self.engine, notifier, profile=profile, bus=bus, clock=clock)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._loop_thread_id: int | None = None
        self._queue: asyncio.Queue[InboundItem] | None = None
        self._subscriptions: list[Subscription] = []
        self._pump_task: asyncio.Task[None] | None = None
        self._watchdog_task: asyncio.Task[None] | None = None
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    # ---- lifecycle ----

    async def start(self) -> None:
        if self._active:
            return
        self._loop = asyncio.get_running_loop()
        self._loop_thread_id = threading.get_ident()
        self._queue = asyncio.Queue()
        self._active = True

        me = self.profile.id
        logger.info("Starting task session user=%s partner=%s", me, self.profile.partner_id or "-")

        # Subscribe before fetching: events that race the fetch wait in the queue
        # and merge idempotently afterwards.
        try:
            self._subscriptions.append(await self._bus.subscribe_changes(TASKS_COLLECTION, self._enqueue))
            for channel, event in (
                (nudge_channel(me), NUDGE_EVENT),
                (milestone_channel(me), MILESTONE_EVENT),
                (task_due_channel(me), TASK_DUE_EVENT),
            ):
                self._subscriptions.append(await self._bus.subscribe_broadcast(channel, event, self._enqueue))
        except Exception:
            logger.exception("Realtime subscription failed; continuing without live updates")

        await self.engine.fetch_all()

        self._pump_task = asyncio.create_task(self._pump(), name=f"twodo-pump-{me}")
        if self._watchdog_interval > 0:
            self._watchdog_task = asyncio.create_task(
                run_deadline_watchdog(self.watchdog, interval_seconds=self._watchdog_interval),
                name=f"twodo-watchdog-{me}",
            )

    async def stop(self) -> None:
        if not self._active:
            return
        self._active = False

        for task in (self._watchdog_task, self._pump_task):
            if task is None:
                continue
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._watchdog_task = None
        self._pump_task = None

        for sub in self._subscriptions:
            try:
                sub.close()
            except Exception:
                logger.debug("Subscription close failed.", exc_info=True)
        self._subscriptions.clear()

        self.engine.dispose()
        logger.info("Task session stopped user=%s", self.profile.id)

    async def drain(self) -> None:
        """Wait until every queued inbound item has been handled."""
        if self._queue is None:
            return
        await asyncio.sleep(0)
        await self._queue.join()

    # ---- inbound messages ----

    def _enqueue(self, item: InboundItem) -> None:
        """Bus callback; may run on a transport thread."""
        loop, queue = self._loop, self._queue
        if not self._active or loop is None or queue is None:
            return
        if threading.get_ident() == self._loop_thread_id:
            queue.put_nowait(item)
            return
        try:
            loop.call_soon_threadsafe(queue.put_nowait, item)
        except RuntimeError:
            logger.debug("Session loop closed; dropping inbound %r", item)

    async def _pump(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            item = await queue.get()
            try:
                if self._active:
                    await self._dispatch(item)
            except Exception:
                logger.exception("Failed to handle inbound item %r", item)
            finally:
                queue.task_done()

    async def _dispatch(self, item: InboundItem) -> None:
        if isinstance(item, ChangeEvent):
            changed = self.engine.merge_remote_event(item)
            if changed and item.type == ChangeType.INSERT:
                await self._maybe_announce_assignment(item)
            return

        payload = item.payload or {}
        if item.event == NUDGE_EVENT:
            title = str(payload.get("title") or "")
            await self._notify(
                "NUDGE",
                body=f'Your partner is asking about "{title}"!',
                tag=f"nudge-{title}",
            )
        elif item.event == MILESTONE_EVENT:
            count = payload.get("count")
            logger.info("Partner milestone received count=%s", count)
            self.signals.emit(CELEBRATE_MILESTONE, {"count": count})
        elif item.event == TASK_DUE_EVENT:
            is_partner = bool(payload.get("isPartnerTask", payload.get("isPartner", False)))
            await self._notify(
                f"{'PARTNER ' if is_partner else ''}TASK DUE",
                body=str(payload.get("title") or ""),
                tag=f"due-{payload.get('taskId')}",
            )
        else:
            logger.debug("Ignoring broadcast %s/%s", item.channel, item.event)

    async def _maybe_announce_assignment(self, event: ChangeEvent) -> None:
        task = self.engine.get(event.task_id or "")
        me = self.profile.id
        if task is None or task.assignee_id != me or task.creator_id == me:
            return
        await self._notify(
            "NEW TASK ASSIGNED",
            body=f'Partner assigned a new task to you: "{task.title}"',
            tag=f"new-task-{task.id}",
        )

    async def _notify(self, title: str, *, body: str, tag: str) -> None:
        try:
            await self._notifier.show(title, body=body, tag=tag)
        except Exception:
            logger.exception("Notification failed tag=%s", tag)

    # ---- UI-facing operations ----

    @property
    def tasks(self) -> tuple[Task, ...]:
        return self.engine.tasks

    def available_tags(self) -> list[str]:
        return self.engine.available_tags()

    async def add_task(self, draft: TaskDraft) -> Task | None:
        return await self.engine.add(draft)

    async def update_task(self, task_id: str, patch: dict[str, Any]) -> Task | None:
        return await self.engine.update(task_id, patch)

    async def toggle_task_completion(self, task_id: str) -> TaskStatus | None:
        return await self.engine.toggle_completion(task_id)

    async def toggle_checklist_item(self, task_id: str, item_id: str) -> Task | None:
        return await self.engine.toggle_checklist_item(task_id, item_id)

    async def delete_task(self, task_id: str) -> None:
        await self.engine.remove(task_id)

    async def nudge_partner(self, task_id: str) -> bool:
        """Ask the partner about a task. No-op (False) without a partner or an unknown task."""
        task = self.engine.get(task_id)
        partner_id = self.profile.partner_id
        if task is None or not partner_id:
            return False
        payload = {"title": task.title, "nudgerName": self.profile.name}
        await self._bus.broadcast(nudge_channel(partner_id), NUDGE_EVENT, payload)
        logger.info("Nudged partner=%s about task=%s", partner_id, task_id)
        return True
