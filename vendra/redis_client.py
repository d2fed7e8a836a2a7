# Redis helpers: opt-in, fail-open access to a shared connection, a best-effort
# distributed lock, and a publish helper for cross-process chat fan-out.
# Controlled by REDIS_ENABLED and REDIS_URL so callers never depend on Redis being up.
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator, Optional
from uuid import uuid4

import redis

_logger = logging.getLogger("vendra.redis")

# Compare-and-delete so a lock is only released by the holder that set it
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


# Basic truthy parser for env flags (1, true, yes, on)
def _truthy(val: Optional[str]) -> bool:
    if val is None:
        return False
    return val.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def is_redis_enabled() -> bool:
    return _truthy(os.getenv("REDIS_ENABLED", "false"))


# Cached client instance (if connected) and a one-shot initialization guard.
_client: Optional[redis.Redis] = None
_initialized = False


def get_redis() -> Optional[redis.Redis]:
    """
    Return a Redis client if enabled and reachable; otherwise return None.

    The first call connects and pings. A failed attempt is remembered for the
    lifetime of the process so later calls return None without retrying.
    """
    global _client, _initialized
    if not is_redis_enabled():
        return None
    if _client is not None:
        return _client
    if _initialized:
        return None

    url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    try:
        client = redis.Redis.from_url(
            url,
            socket_timeout=0.25,
            socket_connect_timeout=0.25,
            retry_on_timeout=False,
            health_check_interval=0,
        )
        client.ping()
        _client = client
        _logger.info("Connected to Redis at %s", url)
    except redis.RedisError as exc:
        _logger.warning("Redis unavailable (fail-open): %s", exc)
        _client = None
    _initialized = True
    return _client


def pubsub_client() -> redis.Redis:
    """Dedicated connection for blocking Pub/Sub reads (no socket timeout, unlike get_redis)."""
    return redis.Redis.from_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"), health_check_interval=30)


def publish(channel: str, payload: str) -> bool:
    """Publish to a Pub/Sub channel; returns False when Redis is off or the publish fails."""
    r = get_redis()
    if r is None:
        return False
    try:
        r.publish(channel, payload)
        return True
    except redis.RedisError as exc:
        _logger.warning("redis.publish.failed", extra={"channel": channel, "error": str(exc)})
        return False


@contextmanager
def redis_try_lock(key: str, ttl_ms: int = 5000) -> Iterator[bool]:
    """
    Best-effort distributed lock implemented with SET NX PX.

    Yields True when the lock is acquired or Redis is unavailable (fail-open),
    False when another process holds it:

        with redis_try_lock(f"lock:seller_application:user:{uid}") as locked:
            if not locked:
                raise HTTPException(429, "please retry")
            ...
    """
    r = get_redis()
    if r is None:
        yield True
        return

    token = uuid4().hex
    acquired = False
    try:
        acquired = bool(r.set(key, token, nx=True, px=ttl_ms))
    except redis.RedisError as exc:
        _logger.warning("redis_try_lock error (key=%s): %s", key, exc)
        yield True
        return

    try:
        yield acquired
    finally:
        if acquired:
            try:
                r.eval(_RELEASE_SCRIPT, 1, key, token)
            except redis.RedisError as exc:
                # The lock expires by TTL
                _logger.debug("redis_try_lock release error (key=%s): %s", key, exc)
