# src/twodo/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the backend (local SQLite / Supabase), the realtime transport and the
notification channel swappable and makes testing easier.
"""

from typing import Any, Awaitable, Callable, Protocol

from ..tasks.task_models import BroadcastMessage, ChangeEvent

Record = dict[str, Any]
# Raw row as the store returns it: {"id": "...", "status": "...", ...}

ChangeCallback = Callable[[ChangeEvent], None]
BroadcastCallback = Callable[[BroadcastMessage], None]


class RemoteStore(Protocol):
    """
    Durable task collection; source of truth on conflict.

    Adapters raise core.errors.StoreError on failure.
    """

    async def fetch(
            self,
            collection: str,
            *,
            filters: dict[str, Any] | None = None,
            order_by: str | None = None,
            descending: bool = False,
    ) -> list[Record]: ...

    async def insert(self, collection: str, record: Record) -> Record: ...

    async def update(self, collection: str, record_id: str, patch: Record) -> Record: ...

    async def delete(self, collection: str, record_id: str) -> None: ...


class Subscription(Protocol):
    def close(self) -> None: ...


class RealtimeBus(Protocol):
    """
    Connector-side port for asynchronous events.

    Callbacks may be invoked from a transport thread; consumers must hand
    them over to their own loop (see core.session).
    """

    async def subscribe_changes(self, collection: str, callback: ChangeCallback) -> Subscription: ...

    async def subscribe_broadcast(
            self,
            channel: str,
            event: str,
            callback: BroadcastCallback,
    ) -> Subscription: ...

    async def broadcast(self, channel: str, event: str, payload: dict[str, Any]) -> None: ...


class NotificationSink(Protocol):
    """
    Best-effort user-visible alerts.

    `tag` is a dedupe key: platforms collapse alerts with the same tag.
    """

    def show(self, title: str, *, body: str, tag: str) -> Awaitable[None]: ...
