# Thread sync test suite: dedupe by id, reconciliation paging, and send failure handling.
from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest

from vendra.thread_sync import ThreadPoller, ThreadStore


def msg(message_id: int, created_at: str, content: str = "x", **extra) -> dict:
    return {"id": message_id, "created_at": created_at, "content": content, **extra}


def test_store_dedupes_and_orders():
    store = ThreadStore()
    assert store.add(msg(2, "2026-10-19T10:00:02")) is True
    assert store.add(msg(1, "2026-10-19T10:00:01")) is True
    # Same id again refreshes fields without duplicating
    assert store.add(msg(2, "2026-10-19T10:00:02", read_at="2026-10-19T10:05:00")) is False

    assert [m["id"] for m in store.messages] == [1, 2]
    assert store.messages[1]["read_at"] == "2026-10-19T10:05:00"
    assert store.last_id == 2
    assert len(store) == 2

    added = store.merge([msg(3, "2026-10-19T10:00:03"), msg(1, "2026-10-19T10:00:01")])
    assert [m["id"] for m in added] == [3]


class FakeServer:
    """Serves a fixed thread through GET /api/v1/messages, honouring since_id and limit."""

    def __init__(self, messages: List[dict]) -> None:
        self.messages = messages
        self.requests: List[httpx.Request] = []
        self.fail_sends = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET" and request.url.path == "/api/v1/messages":
            since_id = int(request.url.params.get("since_id", 0))
            limit = int(request.url.params["limit"])
            page = [m for m in self.messages if m["id"] > since_id][:limit]
            return httpx.Response(200, json=page)
        if request.method == "POST" and request.url.path == "/api/v1/messages":
            if self.fail_sends:
                return httpx.Response(403, json={"detail": {"error": "blocked"}})
            body = json.loads(request.content)
            created = msg(len(self.messages) + 1, "2026-10-19T11:00:00", body["content"])
            self.messages.append(created)
            return httpx.Response(201, json=created)
        if request.method == "POST" and request.url.path == "/api/v1/messages/read":
            return httpx.Response(500)
        return httpx.Response(404)


def make_client(server: FakeServer) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(server), base_url="http://vendra.test")


def test_poll_pages_until_short_page():
    server = FakeServer([msg(i, f"2026-10-19T10:00:{i:02d}") for i in range(1, 6)])

    async def scenario():
        async with make_client(server) as client:
            poller = ThreadPoller(client, with_user_id=7, page_size=2)
            first = await poller.poll_once()
            second = await poller.poll_once()
            return poller, first, second

    poller, first, second = asyncio.run(scenario())
    assert [m["id"] for m in first] == [1, 2, 3, 4, 5]
    assert second == []
    assert poller.synced_id == 5
    since_ids = [r.url.params.get("since_id") for r in server.requests]
    assert since_ids == [None, "2", "4", "5"]


def test_socket_events_do_not_move_cursor():
    server = FakeServer([msg(1, "2026-10-19T10:00:01"), msg(2, "2026-10-19T10:00:02")])

    async def scenario():
        async with make_client(server) as client:
            poller = ThreadPoller(client, with_user_id=7)
            # Event for message 2 arrives before message 1 was seen anywhere
            assert poller.on_event({"type": "message", **msg(2, "2026-10-19T10:00:02")}) is True
            assert poller.on_event({"type": "case_status", "conversation_id": 1}) is False
            assert poller.synced_id is None
            added = await poller.poll_once()
            return poller, added

    poller, added = asyncio.run(scenario())
    # Reconciliation recovers message 1; message 2 is not duplicated
    assert [m["id"] for m in added] == [1]
    assert [m["id"] for m in poller.store.messages] == [1, 2]
    assert poller.synced_id == 2


def test_send_failure_leaves_store_untouched_and_mark_read_is_best_effort():
    server = FakeServer([])

    async def scenario():
        async with make_client(server) as client:
            poller = ThreadPoller(client, with_user_id=7)
            sent = await poller.send("hola")
            server.fail_sends = True
            with pytest.raises(httpx.HTTPStatusError):
                await poller.send("bloqueado")
            updated = await poller.mark_read()
            return poller, sent, updated

    poller, sent, updated = asyncio.run(scenario())
    assert [m["content"] for m in poller.store.messages] == ["hola"]
    assert sent["id"] in poller.store
    assert updated == 0


def test_run_stops_when_event_is_set():
    server = FakeServer([msg(1, "2026-10-19T10:00:01")])

    async def scenario():
        async with make_client(server) as client:
            poller = ThreadPoller(client, with_user_id=7, interval=0.01)
            stop = asyncio.Event()
            task = asyncio.create_task(poller.run(stop))
            await asyncio.sleep(0.05)
            stop.set()
            await asyncio.wait_for(task, timeout=1)
            return poller

    poller = asyncio.run(scenario())
    assert [m["id"] for m in poller.store.messages] == [1]
