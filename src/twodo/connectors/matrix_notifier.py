# src/twodo/connectors/matrix_notifier.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from .matrix_client import create_matrix_client

logger = logging.getLogger(__name__)


def render_alert(title: str, body: str) -> str:
    title = (title or "").strip()
    body = (body or "").strip()
    if title and body:
        return f"{title}\n{body}"
    return title or body


async def _send_text(client, *, room_id: str, text: str) -> None:
    await client.room_send(
        room_id=room_id,
        message_type="m.room.message",
        content={"msgtype": "m.text", "body": text},
        ignore_unverified_devices=True,
    )


class MatrixNotifier:
    """
    NotificationSink posting alerts as text messages into one Matrix room.

    The client is created on first use. Send failures are logged and dropped;
    an alert is never retried.
    """

    def __init__(
        self,
        settings,
        *,
        client_factory: Callable[[Any], Awaitable[Any]] = create_matrix_client,
    ) -> None:
        self._settings = settings
        self._room_id = (getattr(settings, "matrix_room_id", "") or "").strip()
        self._client_factory = client_factory
        self._client: Any = None
        self._client_failed = False
        self._lock = asyncio.Lock()

    async def _get_client(self) -> Any:
        async with self._lock:
            if self._client is None and not self._client_failed:
                self._client = await self._client_factory(self._settings)
                if self._client is None:
                    # Do not retry a broken login on every alert.
                    self._client_failed = True
            return self._client

    async def show(self, title: str, *, body: str, tag: str) -> None:
        if not self._room_id:
            logger.debug("Matrix room is not configured; alert tag=%s skipped", tag)
            return

        text = render_alert(title, body)
        if not text:
            return

        try:
            client = await self._get_client()
            if client is None:
                return
            await _send_text(client, room_id=self._room_id, text=text)
            logger.info("Alert sent to Matrix room %s (tag=%s).", self._room_id, tag)
        except Exception:
            logger.exception("Failed to send alert tag=%s to room %s.", tag, self._room_id)

    async def aclose(self) -> None:
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.close()
        except Exception:
            logger.debug("Matrix client close failed.", exc_info=True)
