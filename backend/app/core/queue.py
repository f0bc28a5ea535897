from __future__ import annotations

import redis
from rq import Queue

from app.core.config import settings


def get_queue(name: str | None = None, *, connection: redis.Redis | None = None) -> Queue:
    # rq stores pickled payloads, so it needs a connection without decode_responses
    conn = connection or redis.Redis.from_url(settings.redis_url)
    eff = str(name or "").strip() or str(settings.rq_queue_default)
    return Queue(name=eff, connection=conn)
