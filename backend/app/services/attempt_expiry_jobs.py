from __future__ import annotations

import logging
from typing import Any

from app.core.config import settings
from app.core.queue import get_queue
from app.core.redis_client import get_redis
from app.db.session import Database
from app.services.attempts import AttemptService

log = logging.getLogger(__name__)

SWEEP_LOCK_KEY = "locks:attempt_expiry_sweep"


def sweep_interval_seconds() -> int:
    return max(60, int(settings.attempt_expiry_sweep_interval_minutes) * 60)


def expire_overdue_attempts_job(*, database_url: str | None = None) -> dict[str, Any]:
    """Mark every in-progress attempt past its deadline as expired.

    Safe to run repeatedly; the update only touches rows still in progress.
    """
    database = Database.from_url(database_url or settings.database_url)
    try:
        db = database.session()
        try:
            expired = AttemptService(db).expire_overdue()
        finally:
            db.close()
    finally:
        database.dispose()

    log.info("attempt expiry sweep done expired=%s", expired)
    return {"ok": True, "expired": expired}


def enqueue_expiry_sweep() -> dict[str, Any]:
    """Enqueue one sweep unless another scheduler already did within the interval."""
    r = get_redis()
    lock_ttl = max(60, sweep_interval_seconds() - 5)
    if not r.set(SWEEP_LOCK_KEY, "1", nx=True, ex=int(lock_ttl)):
        return {"ok": True, "enqueued": False, "reason": "locked"}

    job = get_queue().enqueue(
        expire_overdue_attempts_job,
        job_timeout=60 * 10,
        result_ttl=60 * 60,
        failure_ttl=60 * 60,
    )
    log.info("attempt expiry sweep enqueued job_id=%s", job.id)
    return {"ok": True, "enqueued": True, "job_id": str(job.id)}
