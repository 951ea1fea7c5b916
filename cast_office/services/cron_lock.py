"""Named job locks so overlapping cron triggers never run the same job twice.

A lock row is taken with a single INSERT ... ON CONFLICT DO NOTHING on
``job_name``; whoever gets the row back owns the lock. The row carries a
per-acquire token in ``locked_by`` and release only deletes the row holding
that token, so a run that outlived its TTL cannot free a newer run's lock.
"""
from __future__ import annotations

import logging
import os
import socket
import uuid
from datetime import timedelta
from typing import Callable, Optional, TypeVar

from cast_office.config import CRON_LOCK_TTL_SECONDS
from cast_office.supabase_client import SupabaseDB
from cast_office.utils import utc_now


logger = logging.getLogger("cast-office")

T = TypeVar("T")


def _new_token() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex}"


def acquire_cron_lock(
    db: SupabaseDB,
    job_name: str,
    ttl_seconds: int = CRON_LOCK_TTL_SECONDS,
) -> Optional[str]:
    """Returns the owner token, or None when another run holds the lock."""
    now = utc_now()
    # an expired row only blocks the insert below
    db.delete_where("cron_locks", [("job_name", "=", job_name), ("expires_at", "<", now)])

    token = _new_token()
    row = db.insert_if_absent(
        "cron_locks",
        {
            "job_name": job_name,
            "locked_at": now,
            "expires_at": now + timedelta(seconds=ttl_seconds),
            "locked_by": token,
        },
        on_conflict="job_name",
    )
    if row is None:
        logger.info("Cron lock held: job=%s", job_name)
        return None
    return token


def release_cron_lock(db: SupabaseDB, job_name: str, token: str) -> bool:
    released = db.delete_where("cron_locks", [("job_name", "=", job_name), ("locked_by", "=", token)])
    if not released:
        logger.warning("Cron lock for %s was no longer ours at release", job_name)
    return bool(released)


def with_cron_lock(
    db: SupabaseDB,
    job_name: str,
    fn: Callable[[], T],
    ttl_seconds: int = CRON_LOCK_TTL_SECONDS,
) -> Optional[T]:
    """Run ``fn`` under the lock. Returns None when another run holds it."""
    token = acquire_cron_lock(db, job_name, ttl_seconds)
    if token is None:
        return None
    try:
        return fn()
    finally:
        try:
            release_cron_lock(db, job_name, token)
        except Exception:
            logger.exception("Failed to release cron lock: %s", job_name)
