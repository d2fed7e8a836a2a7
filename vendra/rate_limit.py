# Redis-backed fixed-window rate limiter.
# - Counters keyed by client IP and scope: rl:v1:ip:{ip}:{scope}, TTL-based window.
# - Fail-open if Redis is unavailable, so the API remains usable in dev or outages.
import logging
import os
from typing import Callable, Dict, Literal, Optional

import redis
from fastapi import HTTPException, Request, status

from .redis_client import get_redis, is_redis_enabled

logger = logging.getLogger("vendra.rate_limit")

# login/signup protect credentials, message/report throttle abuse, write covers the rest
Scope = Literal["login", "signup", "write", "message", "report"]

# (env var, default cap per window)
_SCOPE_LIMITS: Dict[str, tuple] = {
    "login": ("RATE_LIMIT_LOGIN_PER_WINDOW", 10),
    "signup": ("RATE_LIMIT_SIGNUP_PER_WINDOW", 5),
    "write": ("RATE_LIMIT_WRITE_PER_WINDOW", 30),
    "message": ("RATE_LIMIT_MESSAGE_PER_WINDOW", 60),
    "report": ("RATE_LIMIT_REPORT_PER_WINDOW", 5),
}


def _to_int(val: Optional[str], default: int) -> int:
    try:
        return int(val) if val is not None else default
    except ValueError:
        return default


def _window_seconds() -> int:
    return _to_int(os.getenv("RATE_LIMIT_WINDOW_SECONDS"), 60)


def _limit_for_scope(scope: Scope) -> int:
    env_name, default = _SCOPE_LIMITS.get(scope, _SCOPE_LIMITS["write"])
    return _to_int(os.getenv(env_name), default)


def _client_ip(request: Request) -> str:
    # Remote address only; X-Forwarded-For is not trusted here
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limit(scope: Scope) -> Callable[[Request], None]:
    """
    Fixed-window rate limiting dependency.

    The first hit in a window sets the key TTL; later hits share that expiry.
    Exceeding the cap raises 429 with a retry_after hint. With Redis disabled
    or failing, requests pass through.
    """
    window = _window_seconds()
    limit = _limit_for_scope(scope)

    def _dependency(request: Request) -> None:
        if not is_redis_enabled():
            return

        r = get_redis()
        if r is None:
            return

        ip = _client_ip(request)
        key = f"rl:v1:ip:{ip}:{scope}"
        try:
            current = r.incr(key, amount=1)
            if current == 1:
                r.expire(key, window)
            if current > limit:
                ttl = r.ttl(key)
                retry_after = ttl if isinstance(ttl, int) and ttl > 0 else window
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail={
                        "error": "rate_limited",
                        "scope": scope,
                        "limit": limit,
                        "window_seconds": window,
                        "retry_after": retry_after,
                    },
                )
        except redis.RedisError as exc:
            logger.warning("Rate limit fail-open (scope=%s, ip=%s): %s", scope, ip, exc)

    return _dependency
