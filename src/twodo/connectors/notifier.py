# src/twodo/connectors/notifier.py

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from datetime import datetime

from ..core.ports import NotificationSink

logger = logging.getLogger(__name__)

COLLAPSE_WINDOW_SECONDS = 60.0


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


class ConsoleNotifier:
    """
    Fallback sink: prints alerts to the terminal.

    An alert whose tag was shown less than `collapse_seconds` ago is dropped,
    like platform notifications replacing one another by tag. Later alerts
    with the same tag (a second nudge about one task) print again.
    """

    def __init__(
        self,
        printer: Callable[[str], None] = print,
        *,
        collapse_seconds: float = COLLAPSE_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._printer = printer
        self._collapse_s = float(collapse_seconds)
        self._clock = clock
        self._last_shown: dict[str, float] = {}

    def _collapsed(self, tag: str) -> bool:
        now = self._clock()
        # Only tags inside the window are kept, so the map stays small.
        self._last_shown = {t: ts for t, ts in self._last_shown.items() if now - ts < self._collapse_s}
        if tag in self._last_shown:
            return True
        self._last_shown[tag] = now
        return False

    async def show(self, title: str, *, body: str, tag: str) -> None:
        if tag and self._collapsed(tag):
            logger.debug("Notification collapsed tag=%s", tag)
            return
        logger.info("Notification: %s | %s (tag=%s)", title, body, tag)
        try:
            self._printer(f"[{_ts_local()}] [NOTIFY] {title}: {body}")
        except Exception:
            logger.debug("Console print failed.", exc_info=True)


class FanoutNotifier:
    """Deliver every alert to several sinks; one failing sink does not affect the others."""

    def __init__(self, sinks: Sequence[NotificationSink]) -> None:
        self._sinks = list(sinks)

    async def show(self, title: str, *, body: str, tag: str) -> None:
        for sink in self._sinks:
            try:
                await sink.show(title, body=body, tag=tag)
            except Exception:
                logger.exception("Notification sink %s failed tag=%s", type(sink).__name__, tag)
