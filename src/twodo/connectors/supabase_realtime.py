# src/twodo/connectors/supabase_realtime.py

"""
Supabase Realtime bus.

Receiving: one websocket (Phoenix channel protocol) on a daemon thread, one
topic per subscribed channel, heartbeat every few seconds, automatic rejoin of
all topics when the socket reconnects.

Sending broadcasts: the REST endpoint /realtime/v1/api/broadcast, so a send
never waits on the socket.

Callbacks run on the websocket thread; consumers must hop to their own loop.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
from websocket import WebSocketApp

from ..core.errors import StoreError
from ..core.ports import BroadcastCallback, ChangeCallback
from ..tasks.task_models import BroadcastMessage, ChangeEvent, ChangeType
from .supabase_store import error_from_response

logger = logging.getLogger(__name__)

_CHANGE_TYPES = {
    "INSERT": ChangeType.INSERT,
    "UPDATE": ChangeType.UPDATE,
    "DELETE": ChangeType.DELETE,
}


def parse_change_payload(data: dict[str, Any]) -> ChangeEvent | None:
    """`postgres_changes` payload.data -> ChangeEvent (delete events carry the old row)."""
    change_type = _CHANGE_TYPES.get(str(data.get("type") or data.get("eventType") or "").upper())
    if change_type is None:
        return None
    if change_type == ChangeType.DELETE:
        record = data.get("old_record") or data.get("old") or {}
    else:
        record = data.get("record") or data.get("new") or {}
    if not isinstance(record, dict) or "id" not in record:
        return None
    return ChangeEvent(type=change_type, record=record)


@dataclass
class _Topic:
    channel: str
    change_subs: list[tuple[str, ChangeCallback]] = field(default_factory=list)
    broadcast_subs: dict[str, list[BroadcastCallback]] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"realtime:{self.channel}"

    @property
    def empty(self) -> bool:
        return not self.change_subs and not any(self.broadcast_subs.values())

    def join_config(self) -> dict[str, Any]:
        return {
            "broadcast": {"ack": False, "self": False},
            "presence": {"key": ""},
            "postgres_changes": [
                {"event": "*", "schema": "public", "table": table} for table, _ in self.change_subs
            ],
            "private": False,
        }


@dataclass(slots=True)
class _RealtimeSubscription:
    _close: Callable[[], None]
    closed: bool = False

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._close()


class SupabaseRealtimeBus:
    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        headers_provider: Callable[[], dict[str, str]],
        heartbeat_seconds: float = 30.0,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        autostart: bool = True,
    ) -> None:
        base = url.rstrip("/")
        ws_base = base.replace("https://", "wss://").replace("http://", "ws://")
        self._ws_url = f"{ws_base}/realtime/v1/websocket?apikey={anon_key}&vsn=1.0.0"
        self._headers_provider = headers_provider
        self._heartbeat_s = max(1.0, float(heartbeat_seconds))
        self._autostart = autostart
        self._http = httpx.AsyncClient(base_url=base, timeout=timeout, transport=transport)

        self._lock = threading.Lock()
        self._refs = itertools.count(1)
        self._topics: dict[str, _Topic] = {}

        self._ws: WebSocketApp | None = None
        self._ws_thread: threading.Thread | None = None
        self._hb_thread: threading.Thread | None = None
        self._connected = threading.Event()
        self._stopping = threading.Event()

    # ---- socket lifecycle ----

    def start(self) -> None:
        if self._ws is not None:
            return
        headers = [f"{k}: {v}" for k, v in self._headers_provider().items()]
        self._ws = WebSocketApp(
            self._ws_url,
            header=headers,
            on_open=self._on_open,
            on_message=lambda _ws, raw: self.handle_frame(raw),
            on_error=self._on_error,
            on_close=self._on_close,
        )
        self._ws_thread = threading.Thread(
            target=self._ws.run_forever,
            kwargs={"reconnect": 5},
            name="twodo-realtime",
            daemon=True,
        )
        self._ws_thread.start()
        self._hb_thread = threading.Thread(target=self._heartbeat_loop, name="twodo-realtime-hb", daemon=True)
        self._hb_thread.start()
        logger.info("Realtime socket starting url=%s", self._ws_url.split("?")[0])

    async def aclose(self) -> None:
        self._stopping.set()
        if self._ws is not None:
            try:
                self._ws.close()
            except Exception:
                logger.debug("Realtime socket close failed.", exc_info=True)
        await self._http.aclose()

    def _on_open(self, _ws: Any) -> None:
        self._connected.set()
        with self._lock:
            topics = list(self._topics.values())
        for topic in topics:
            self._send_join(topic)
        logger.info("Realtime socket open; joined %d topic(s)", len(topics))

    def _on_error(self, _ws: Any, error: Any) -> None:
        logger.warning("Realtime socket error: %s", error)

    def _on_close(self, _ws: Any, status: Any = None, reason: Any = None) -> None:
        self._connected.clear()
        if not self._stopping.is_set():
            logger.warning("Realtime socket closed (status=%s reason=%s); reconnecting", status, reason)

    def _heartbeat_loop(self) -> None:
        while not self._stopping.wait(self._heartbeat_s):
            if self._connected.is_set():
                self._send({"topic": "phoenix", "event": "heartbeat", "payload": {}})

    def _send(self, frame: dict[str, Any]) -> bool:
        ws = self._ws
        if ws is None or not self._connected.is_set():
            return False
        frame = dict(frame, ref=str(next(self._refs)))
        try:
            ws.send(json.dumps(frame))
            return True
        except Exception:
            logger.warning("Realtime send failed topic=%s event=%s", frame.get("topic"), frame.get("event"))
            return False

    def _send_join(self, topic: _Topic) -> None:
        token = self._headers_provider().get("Authorization", "").removeprefix("Bearer ").strip()
        payload = {"config": topic.join_config(), "access_token": token or None}
        self._send({"topic": topic.name, "event": "phx_join", "payload": payload})

    # ---- inbound frames ----

    def handle_frame(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug("Ignoring non-JSON realtime frame")
            return
        if not isinstance(msg, dict):
            return

        topic_name = str(msg.get("topic") or "")
        event = msg.get("event")
        payload = msg.get("payload") or {}

        with self._lock:
            topic = self._topics.get(topic_name.removeprefix("realtime:"))
            change_subs = list(topic.change_subs) if topic else []
            broadcast_subs = dict((k, list(v)) for k, v in topic.broadcast_subs.items()) if topic else {}

        if event == "postgres_changes":
            change = parse_change_payload(payload.get("data") or {})
            if change is None:
                return
            table = (payload.get("data") or {}).get("table")
            for sub_table, cb in change_subs:
                if table and sub_table != table:
                    continue
                self._deliver(cb, change)
        elif event == "broadcast":
            name = str(payload.get("event") or "")
            inner = payload.get("payload") or {}
            message = BroadcastMessage(channel=topic_name.removeprefix("realtime:"), event=name, payload=inner)
            for cb in broadcast_subs.get(name, []):
                self._deliver(cb, message)
        elif event == "phx_reply":
            if payload.get("status") != "ok":
                logger.warning("Realtime reply topic=%s: %s", topic_name, payload.get("response"))
        elif event in ("phx_error", "phx_close"):
            logger.warning("Realtime %s on topic=%s", event, topic_name)

    @staticmethod
    def _deliver(cb: Callable[[Any], None], item: Any) -> None:
        try:
            cb(item)
        except Exception:
            logger.exception("Realtime subscriber failed")

    # ---- RealtimeBus port ----

    def _topic(self, channel: str) -> _Topic:
        topic = self._topics.get(channel)
        if topic is None:
            topic = self._topics[channel] = _Topic(channel=channel)
        return topic

    def _release(self, topic: _Topic) -> None:
        with self._lock:
            if not topic.empty:
                return
            self._topics.pop(topic.channel, None)
        self._send({"topic": topic.name, "event": "phx_leave", "payload": {}})

    async def subscribe_changes(self, collection: str, callback: ChangeCallback) -> _RealtimeSubscription:
        entry = (collection, callback)
        with self._lock:
            topic = self._topic(f"{collection}_changes")
            topic.change_subs.append(entry)
        if self._autostart:
            self.start()
        self._send_join(topic)

        def _close() -> None:
            with self._lock:
                if entry in topic.change_subs:
                    topic.change_subs.remove(entry)
            self._release(topic)

        return _RealtimeSubscription(_close)

    async def subscribe_broadcast(
        self,
        channel: str,
        event: str,
        callback: BroadcastCallback,
    ) -> _RealtimeSubscription:
        with self._lock:
            topic = self._topic(channel)
            topic.broadcast_subs.setdefault(event, []).append(callback)
        if self._autostart:
            self.start()
        self._send_join(topic)

        def _close() -> None:
            with self._lock:
                subs = topic.broadcast_subs.get(event) or []
                if callback in subs:
                    subs.remove(callback)
            self._release(topic)

        return _RealtimeSubscription(_close)

    async def broadcast(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        body = {"messages": [{"topic": channel, "event": event, "payload": payload}]}
        try:
            resp = await self._http.post(
                "/realtime/v1/api/broadcast",
                json=body,
                headers=self._headers_provider(),
            )
        except httpx.HTTPError as e:
            raise StoreError(str(e) or type(e).__name__, code="network") from e
        if resp.is_error:
            raise error_from_response(resp)
        logger.debug("Broadcast sent channel=%s event=%s", channel, event)
