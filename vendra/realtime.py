from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from typing import Dict, Optional, Set
from uuid import uuid4

import redis
from fastapi import WebSocket
from starlette.websockets import WebSocketState

from .redis_client import is_redis_enabled, publish, pubsub_client

logger = logging.getLogger("vendra.chat")

CHANNEL_PREFIX = "chat:conversation:"
# Tags events published by this process so the subscriber does not re-deliver them locally
PROCESS_ID = uuid4().hex


class TokenBucket:
    """
    Simple token bucket limiter.
    - rate: tokens per second (refill)
    - capacity: max burst tokens
    consume(1) returns True if allowed, False if throttled.
    """
    def __init__(self, rate: float, capacity: int) -> None:
        self.rate = rate
        self.capacity = capacity
        self.tokens = float(capacity)
        self.ts = time.monotonic()

    def consume(self, amount: float = 1.0) -> bool:
        now = time.monotonic()
        delta = now - self.ts
        self.ts = now
        self.tokens = min(self.capacity, self.tokens + delta * self.rate)
        if self.tokens >= amount:
            self.tokens -= amount
            return True
        return False


class ConnectionManager:
    """
    Tracks open sockets per conversation and a rate limiter per socket.
    """
    def __init__(self) -> None:
        self.rooms: Dict[int, Set[WebSocket]] = {}
        self.limiters: Dict[WebSocket, TokenBucket] = {}
        self._lock = asyncio.Lock()

    async def connect(self, conversation_id: int, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self.rooms.setdefault(conversation_id, set()).add(websocket)
            self.limiters[websocket] = TokenBucket(rate=1.0, capacity=5)

    async def disconnect(self, conversation_id: int, websocket: WebSocket) -> None:
        async with self._lock:
            if conversation_id in self.rooms:
                self.rooms[conversation_id].discard(websocket)
                if not self.rooms[conversation_id]:
                    del self.rooms[conversation_id]
            self.limiters.pop(websocket, None)

    def get_limiter(self, websocket: WebSocket) -> Optional[TokenBucket]:
        return self.limiters.get(websocket)

    def room_size(self, conversation_id: int) -> int:
        return len(self.rooms.get(conversation_id, ()))

    async def broadcast(self, conversation_id: int, payload: str) -> None:
        recipients = list(self.rooms.get(conversation_id, set()))
        dead = []
        for ws in recipients:
            if ws.application_state != WebSocketState.CONNECTED:
                dead.append(ws)
                continue
            try:
                await ws.send_text(payload)
            except (RuntimeError, OSError) as exc:
                logger.debug("chat.ws.send_failed", extra={"conversation_id": conversation_id, "error": str(exc)})
                dead.append(ws)
        for ws in dead:
            await self.disconnect(conversation_id, ws)


manager = ConnectionManager()


async def deliver(conversation_id: int, event: dict) -> None:
    """Push an event to local sockets of the thread and fan it out to other processes."""
    out_text = json.dumps(event)
    await manager.broadcast(conversation_id, out_text)
    publish(f"{CHANNEL_PREFIX}{conversation_id}", json.dumps({"origin": PROCESS_ID, "event": event}))


def _route(message: dict, loop: asyncio.AbstractEventLoop) -> None:
    data = message.get("data")
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        envelope = json.loads(data)
        event = envelope["event"]
        conversation_id = int(event["conversation_id"])
    except (TypeError, ValueError, KeyError) as exc:
        logger.warning("redis.subscriber.bad_payload", extra={"error": str(exc)})
        return
    if envelope.get("origin") == PROCESS_ID:
        return
    asyncio.run_coroutine_threadsafe(manager.broadcast(conversation_id, json.dumps(event)), loop)


def start_redis_subscriber(loop: asyncio.AbstractEventLoop) -> Optional[threading.Thread]:
    """
    Start a daemon thread that subscribes to chat:conversation:* and relays events
    published by other processes to this process's sockets. No-op without Redis.
    """
    if not is_redis_enabled():
        logger.info("redis.subscriber.disabled")
        return None

    def _run() -> None:
        backoff = 0.5
        max_backoff = 5.0
        while True:
            try:
                pubsub = pubsub_client().pubsub()
                pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
                logger.info("redis.subscriber.started")
                backoff = 0.5
                for message in pubsub.listen():
                    if message and message.get("type") == "pmessage":
                        _route(message, loop)
            except redis.RedisError as exc:
                logger.warning("redis.subscriber.reconnecting", extra={"error": str(exc), "backoff": backoff})
                time.sleep(backoff)
                backoff = min(max_backoff, backoff * 2)

    t = threading.Thread(target=_run, name="redis-chat-subscriber", daemon=True)
    t.start()
    return t
