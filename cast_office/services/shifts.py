"""
Shift scheduling: confirmed shifts, cast shift requests and per-cell locks.

A cell is one (cast, date) in a store. ``locked`` cells reject edits,
``confirmed`` cells only mark the shift as agreed with the cast.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Optional

from cast_office.supabase_client import SupabaseDB
from cast_office.utils import date_to_ymd, format_shift_time, half_month_period


logger = logging.getLogger("cast-office")

LOCK_LOCKED = "locked"
LOCK_CONFIRMED = "confirmed"
LOCK_TYPES = (LOCK_LOCKED, LOCK_CONFIRMED)

REQUEST_PENDING = "pending"
REQUEST_APPROVED = "approved"
REQUEST_REJECTED = "rejected"

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$")


def _validate_time(value: Optional[str], label: str) -> str:
    if not value or not _TIME_PATTERN.match(value):
        raise ValueError(f"Invalid {label}: must be HH:MM")
    return value[:5]


def period_dates(year: int, month: int, first_half: bool) -> tuple[str, str]:
    start, end = half_month_period(year, month, first_half)
    return date_to_ymd(start), date_to_ymd(end)


# ---------------------------------------------------------------------------
# Locks
# ---------------------------------------------------------------------------

def get_shift_lock(db: SupabaseDB, store_id: int, cast_id: int, date: str):
    return (
        db.query("shift_locks")
        .filter(("store_id", "=", store_id), ("cast_id", "=", cast_id), ("date", "=", date))
        .first()
    )


def list_shift_locks(db: SupabaseDB, store_id: int, date_from: str, date_to: str) -> list[dict]:
    rows = (
        db.query("shift_locks")
        .filter(("store_id", "=", store_id), ("date", ">=", date_from), ("date", "<=", date_to))
        .all()
    )
    return [row.to_dict() for row in rows]


def toggle_shift_lock(db: SupabaseDB, store_id: int, cast_id: int, date: str, lock_type: str) -> Optional[str]:
    """Same type again clears the cell, another type replaces it. Returns the new lock type."""
    if lock_type not in LOCK_TYPES:
        raise ValueError(f"Invalid lock_type: {lock_type}")
    existing = get_shift_lock(db, store_id, cast_id, date)
    if existing is not None and existing.get("lock_type") == lock_type:
        db.delete_where("shift_locks", [
            ("store_id", "=", store_id), ("cast_id", "=", cast_id), ("date", "=", date),
        ])
        return None
    db.upsert(
        "shift_locks",
        {"store_id": store_id, "cast_id": cast_id, "date": date, "lock_type": lock_type},
        on_conflict="cast_id,date,store_id",
    )
    return lock_type


def _ensure_editable(db: SupabaseDB, store_id: int, cast_id: int, date: str) -> None:
    lock = get_shift_lock(db, store_id, cast_id, date)
    if lock is not None and lock.get("lock_type") == LOCK_LOCKED:
        raise ValueError("このシフトはロックされています")


# ---------------------------------------------------------------------------
# Shifts
# ---------------------------------------------------------------------------

def list_shifts(db: SupabaseDB, store_id: int, date_from: str, date_to: str) -> list[dict]:
    rows = (
        db.query("shifts")
        .filter(("store_id", "=", store_id), ("date", ">=", date_from), ("date", "<=", date_to))
        .order_by("date ASC", "start_time ASC")
        .all()
    )
    shifts = []
    for row in rows:
        record = row.to_dict()
        record["display_time"] = format_shift_time(record.get("start_time"), record.get("end_time"))
        shifts.append(record)
    return shifts


def upsert_shift(db: SupabaseDB, store_id: int, cast_id: int, date: str, start_time: str, end_time: str) -> dict:
    """Create or move a shift. The matching request is approved and the cell confirmed."""
    start_time = _validate_time(start_time, "start_time")
    end_time = _validate_time(end_time, "end_time")
    cast = db.get("casts", "id", cast_id)
    if cast is None or cast.get("store_id") != store_id:
        raise LookupError("Cast not found")
    _ensure_editable(db, store_id, cast_id, date)

    existing = (
        db.query("shifts")
        .filter(("store_id", "=", store_id), ("cast_id", "=", cast_id), ("date", "=", date))
        .first()
    )
    if existing is not None:
        existing.start_time = start_time
        existing.end_time = end_time
        db.update(existing)
        shift = existing.to_dict()
    else:
        shift = db.insert("shifts", {
            "store_id": store_id,
            "cast_id": cast_id,
            "date": date,
            "start_time": start_time,
            "end_time": end_time,
        }).to_dict()

    db.update_where(
        "shift_requests",
        {"status": REQUEST_APPROVED},
        [("store_id", "=", store_id), ("cast_id", "=", cast_id), ("date", "=", date), ("status", "=", REQUEST_PENDING)],
    )
    if get_shift_lock(db, store_id, cast_id, date) is None:
        db.upsert(
            "shift_locks",
            {"store_id": store_id, "cast_id": cast_id, "date": date, "lock_type": LOCK_CONFIRMED},
            on_conflict="cast_id,date,store_id",
        )
    return shift


def delete_shift(db: SupabaseDB, store_id: int, shift_id: int) -> None:
    shift = db.get("shifts", "id", shift_id)
    if shift is None or shift.get("store_id") != store_id:
        raise LookupError("Shift not found")
    _ensure_editable(db, store_id, shift.cast_id, str(shift.date))
    db.delete_row("shifts", "id", shift.id)
    db.update_where(
        "shift_requests",
        {"status": REQUEST_PENDING},
        [
            ("store_id", "=", store_id),
            ("cast_id", "=", shift.cast_id),
            ("date", "=", shift.date),
            ("status", "=", REQUEST_APPROVED),
        ],
    )


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

def list_shift_requests(
    db: SupabaseDB, store_id: int, date_from: str, date_to: str, status: Optional[str] = None,
) -> list[dict]:
    q = db.query("shift_requests").filter(
        ("store_id", "=", store_id), ("date", ">=", date_from), ("date", "<=", date_to),
    )
    if status:
        q = q.filter(("status", "=", status))
    return [row.to_dict() for row in q.order_by("date ASC").all()]


def create_shift_request(db: SupabaseDB, store_id: int, cast_id: int, date: str, start_time: str, end_time: str) -> dict:
    start_time = _validate_time(start_time, "start_time")
    end_time = _validate_time(end_time, "end_time")
    return db.insert("shift_requests", {
        "store_id": store_id,
        "cast_id": cast_id,
        "date": date,
        "start_time": start_time,
        "end_time": end_time,
        "status": REQUEST_PENDING,
    }).to_dict()


def _get_request(db: SupabaseDB, store_id: int, request_id: int):
    row = db.get("shift_requests", "id", request_id)
    if row is None or row.get("store_id") != store_id:
        raise LookupError("Shift request not found")
    return row


def approve_shift_request(db: SupabaseDB, store_id: int, request_id: int) -> dict[str, Any]:
    request = _get_request(db, store_id, request_id)
    shift = upsert_shift(db, store_id, request.cast_id, str(request.date), request.start_time, request.end_time)
    request.status = REQUEST_APPROVED
    db.update(request)
    logger.info("Shift request approved: store=%s request=%s", store_id, request_id)
    return {"request": request.to_dict(), "shift": shift}


def reject_shift_request(db: SupabaseDB, store_id: int, request_id: int) -> dict:
    request = _get_request(db, store_id, request_id)
    request.status = REQUEST_REJECTED
    db.update(request)
    return request.to_dict()
