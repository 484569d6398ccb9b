# src/twodo/core/signals.py

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

CELEBRATE_MILESTONE = "celebrate_milestone"

SignalHandler = Callable[[dict[str, Any]], None]


class LocalSignals:
    """
    In-process named signals between the core and the presentation layer.

    Handlers run synchronously in emit order; a failing handler is logged and
    does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[SignalHandler]] = defaultdict(list)

    def connect(self, name: str, handler: SignalHandler) -> None:
        self._handlers[name].append(handler)

    def disconnect(self, name: str, handler: SignalHandler) -> None:
        handlers = self._handlers.get(name) or []
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, name: str, payload: dict[str, Any]) -> int:
        delivered = 0
        for handler in list(self._handlers.get(name) or []):
            try:
                handler(dict(payload))
                delivered += 1
            except Exception:
                logger.exception("Signal handler failed signal=%s", name)
        logger.debug("Signal %s emitted to %d handler(s) payload=%s", name, delivered, payload)
        return delivered
