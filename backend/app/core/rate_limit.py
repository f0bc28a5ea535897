from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.redis_client import get_redis

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    key: str
    limit: int
    window_seconds: int


def _client_ip(request: Request) -> str:
    if bool(settings.trust_proxy_headers):
        xri = str(request.headers.get("x-real-ip") or "").strip()
        if xri:
            return xri
        xff = request.headers.get("x-forwarded-for")
        if xff:
            ip = xff.split(",")[0].strip()
            if ip:
                return ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _subject(request: Request) -> str:
    # Authenticated routes are limited per user, everything else per client address.
    uid = str(getattr(request.state, "user_id", "") or "").strip()
    return f"u:{uid}" if uid else f"ip:{_client_ip(request)}"


def rate_limit(*, key_prefix: str, limit: int, window_seconds: int = 60):
    """Fixed-window limiter backed by redis INCR/EXPIRE.

    When redis is unreachable the request is allowed through.
    """

    async def _dep(request: Request) -> RateLimit:
        key = f"rl:{key_prefix}:{_subject(request)}"
        rl = RateLimit(key=key, limit=int(limit), window_seconds=int(window_seconds))

        r = get_redis()
        try:
            current = r.incr(key)
            if current == 1:
                r.expire(key, int(window_seconds))
        except RedisError:
            log.warning("rate limiter unavailable key=%s", key)
            return rl

        if int(current) > int(limit):
            ttl = r.ttl(key)
            retry_after = int(ttl) if ttl and ttl > 0 else int(window_seconds)
            raise HTTPException(
                status_code=429,
                detail="rate limit exceeded",
                headers={"Retry-After": str(retry_after)},
            )
        return rl

    return Depends(_dep)
