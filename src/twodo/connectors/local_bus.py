# src/twodo/connectors/local_bus.py

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from ..core.ports import BroadcastCallback, ChangeCallback
from ..tasks.task_models import BroadcastMessage, ChangeEvent

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _LocalSubscription:
    _unsubscribe: Callable[[], None]
    closed: bool = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._unsubscribe()


class LocalRealtimeBus:
    """
    In-process realtime bus for the local backend (and for demos without a server).

    Delivery is synchronous: publish/broadcast call every current subscriber
    before returning. A failing subscriber is logged and skipped.
    """

    def __init__(self) -> None:
        self._change_subs: dict[str, list[ChangeCallback]] = {}
        self._broadcast_subs: dict[tuple[str, str], list[BroadcastCallback]] = {}

    # ---- subscriptions ----

    async def subscribe_changes(self, collection: str, callback: ChangeCallback) -> _LocalSubscription:
        subs = self._change_subs.setdefault(collection, [])
        subs.append(callback)
        logger.debug("Subscribed to changes collection=%s (total=%d)", collection, len(subs))
        return _LocalSubscription(lambda: self._discard(subs, callback))

    async def subscribe_broadcast(
        self,
        channel: str,
        event: str,
        callback: BroadcastCallback,
    ) -> _LocalSubscription:
        subs = self._broadcast_subs.setdefault((channel, event), [])
        subs.append(callback)
        logger.debug("Subscribed to broadcast channel=%s event=%s", channel, event)
        return _LocalSubscription(lambda: self._discard(subs, callback))

    @staticmethod
    def _discard(subs: list[Any], callback: Any) -> None:
        if callback in subs:
            subs.remove(callback)

    # ---- publishing ----

    def publish_change(self, collection: str, event: ChangeEvent) -> int:
        delivered = 0
        for cb in list(self._change_subs.get(collection) or []):
            try:
                cb(event)
                delivered += 1
            except Exception:
                logger.exception("Change subscriber failed collection=%s", collection)
        return delivered

    async def broadcast(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        message = BroadcastMessage(channel=channel, event=event, payload=dict(payload))
        subs = list(self._broadcast_subs.get((channel, event)) or [])
        if not subs:
            logger.debug("Broadcast %s/%s has no local subscribers", channel, event)
        for cb in subs:
            try:
                cb(message)
            except Exception:
                logger.exception("Broadcast subscriber failed channel=%s event=%s", channel, event)
