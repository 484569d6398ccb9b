# tests/test_supabase_realtime.py

from __future__ import annotations

import json

import httpx
import pytest

from twodo.connectors.supabase_realtime import SupabaseRealtimeBus, parse_change_payload
from twodo.core.errors import StoreError
from twodo.tasks.task_models import BroadcastMessage, ChangeEvent, ChangeType

from .fakes import make_record

URL = "https://proj.supabase.co"


def _headers() -> dict[str, str]:
    return {"apikey": "anon", "Authorization": "Bearer jwt"}


def _bus(handler=None) -> SupabaseRealtimeBus:
    transport = httpx.MockTransport(handler or (lambda r: httpx.Response(202)))
    return SupabaseRealtimeBus(URL, "anon", headers_provider=_headers, transport=transport, autostart=False)


def _frame(topic: str, event: str, payload: dict) -> str:
    return json.dumps({"topic": topic, "event": event, "payload": payload, "ref": None})


def test_parse_change_payload() -> None:
    insert = parse_change_payload({"type": "INSERT", "table": "tasks", "record": make_record("a")})
    assert insert == ChangeEvent(ChangeType.INSERT, make_record("a"))

    delete = parse_change_payload({"type": "DELETE", "record": None, "old_record": {"id": "a"}})
    assert delete == ChangeEvent(ChangeType.DELETE, {"id": "a"})

    assert parse_change_payload({"type": "TRUNCATE"}) is None
    assert parse_change_payload({"type": "UPDATE", "record": {"title": "no id"}}) is None


@pytest.mark.asyncio
async def test_postgres_changes_frames_reach_change_subscribers() -> None:
    bus = _bus()
    seen: list[ChangeEvent] = []
    sub = await bus.subscribe_changes("tasks", seen.append)

    bus.handle_frame(
        _frame(
            "realtime:tasks_changes",
            "postgres_changes",
            {"data": {"type": "UPDATE", "table": "tasks", "record": make_record("a", title="new")}},
        )
    )
    bus.handle_frame(_frame("realtime:tasks_changes", "phx_reply", {"status": "ok", "response": {}}))
    bus.handle_frame("not json")

    assert [(e.type, e.record["title"]) for e in seen] == [(ChangeType.UPDATE, "new")]

    sub.close()
    bus.handle_frame(
        _frame(
            "realtime:tasks_changes",
            "postgres_changes",
            {"data": {"type": "DELETE", "table": "tasks", "old_record": {"id": "a"}}},
        )
    )
    assert len(seen) == 1
    await bus.aclose()


@pytest.mark.asyncio
async def test_broadcast_frames_are_routed_by_channel_and_event() -> None:
    bus = _bus()
    nudges: list[BroadcastMessage] = []
    milestones: list[BroadcastMessage] = []
    await bus.subscribe_broadcast("nudge_me", "nudge", nudges.append)
    await bus.subscribe_broadcast("milestone_me", "milestone_reached", milestones.append)

    bus.handle_frame(
        _frame("realtime:nudge_me", "broadcast", {"event": "nudge", "payload": {"title": "Fix sink"}})
    )
    bus.handle_frame(
        _frame("realtime:milestone_me", "broadcast", {"event": "milestone_reached", "payload": {"count": 5}})
    )
    bus.handle_frame(_frame("realtime:nudge_other", "broadcast", {"event": "nudge", "payload": {}}))

    assert nudges == [BroadcastMessage("nudge_me", "nudge", {"title": "Fix sink"})]
    assert milestones == [BroadcastMessage("milestone_me", "milestone_reached", {"count": 5})]
    await bus.aclose()


@pytest.mark.asyncio
async def test_failing_subscriber_does_not_break_routing() -> None:
    bus = _bus()
    seen: list[BroadcastMessage] = []

    def boom(_msg: BroadcastMessage) -> None:
        raise RuntimeError("subscriber down")

    await bus.subscribe_broadcast("nudge_me", "nudge", boom)
    await bus.subscribe_broadcast("nudge_me", "nudge", seen.append)

    bus.handle_frame(_frame("realtime:nudge_me", "broadcast", {"event": "nudge", "payload": {"title": "x"}}))

    assert len(seen) == 1
    await bus.aclose()


@pytest.mark.asyncio
async def test_broadcast_posts_to_rest_endpoint() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202)

    bus = _bus(handler)
    await bus.broadcast("nudge_partner", "nudge", {"title": "Fix sink", "nudgerName": "Me"})

    req = requests[0]
    assert req.method == "POST"
    assert req.url.path == "/realtime/v1/api/broadcast"
    assert req.headers["authorization"] == "Bearer jwt"
    assert json.loads(req.content) == {
        "messages": [
            {"topic": "nudge_partner", "event": "nudge", "payload": {"title": "Fix sink", "nudgerName": "Me"}}
        ]
    }
    await bus.aclose()


@pytest.mark.asyncio
async def test_broadcast_error_raises_store_error() -> None:
    bus = _bus(lambda r: httpx.Response(401, json={"message": "invalid JWT", "code": "401"}))

    with pytest.raises(StoreError) as ei:
        await bus.broadcast("nudge_partner", "nudge", {})
    assert ei.value.message == "invalid JWT"
    await bus.aclose()
