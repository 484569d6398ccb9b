# src/twodo/tasks/milestones.py

from __future__ import annotations

"""
Weekly milestones.

Every time the number of tasks completed since the start of the (client-local)
week reaches a multiple of MILESTONE_STEP, both partners get a celebration:
- locally via the `celebrate_milestone` signal,
- remotely via the partner's milestone broadcast channel.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, time, timedelta

from ..core.ports import RealtimeBus
from ..core.signals import CELEBRATE_MILESTONE, LocalSignals
from .task_models import MILESTONE_EVENT, Task, TaskStatus, UserProfile, milestone_channel, utcnow

logger = logging.getLogger(__name__)

MILESTONE_STEP = 5
SUNDAY = 6


def week_start(now: datetime, start_weekday: int = SUNDAY) -> datetime:
    """Most recent local midnight falling on `start_weekday` (Monday=0 .. Sunday=6)."""
    today = now.astimezone().date()
    start = today - timedelta(days=(today.weekday() - start_weekday) % 7)
    # Offset of that midnight, not of `now`: a DST switch may fall inside the week.
    return datetime.combine(start, time()).astimezone()


def weekly_completed_count(baseline: Iterable[Task], since: datetime) -> int:
    return sum(
        1
        for t in baseline
        if t.status == TaskStatus.COMPLETED and t.completed_at is not None and t.completed_at >= since
    )


def is_milestone(count: int) -> bool:
    return count > 0 and count % MILESTONE_STEP == 0


class MilestoneAggregator:
    """Invoked synchronously from the completion-toggle path, after the store confirmed."""

    def __init__(
        self,
        *,
        profile: UserProfile,
        signals: LocalSignals,
        bus: RealtimeBus | None = None,
        week_start_day: int = SUNDAY,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._profile = profile
        self._signals = signals
        self._bus = bus
        self._week_start_day = week_start_day
        self._clock = clock

    def weekly_count(self, baseline: Iterable[Task]) -> int:
        """Completed this week in `baseline`, plus the task that was just completed."""
        since = week_start(self._clock(), self._week_start_day)
        return weekly_completed_count(baseline, since) + 1

    async def on_task_completed(self, baseline: Iterable[Task]) -> int | None:
        """
        `baseline` is the mirror as it was *before* the optimistic completion.
        Returns the celebrated count, or None when no milestone was crossed.
        """
        count = self.weekly_count(baseline)
        if not is_milestone(count):
            logger.debug("Weekly completed count=%d (no milestone)", count)
            return None

        payload = {"count": count}
        logger.info("Weekly milestone reached count=%d user=%s", count, self._profile.id)

        partner_id = self._profile.partner_id
        if partner_id and self._bus is not None:
            try:
                await self._bus.broadcast(milestone_channel(partner_id), MILESTONE_EVENT, payload)
            except Exception:
                logger.exception("Milestone broadcast to partner failed partner=%s", partner_id)

        self._signals.emit(CELEBRATE_MILESTONE, payload)
        return count
