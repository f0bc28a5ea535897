from __future__ import annotations

import redis

from app.core.config import settings


def get_redis() -> redis.Redis:
    """Text-mode client for locks and rate-limit counters."""
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)
