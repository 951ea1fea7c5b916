"""Attendance records, one per (store, cast_name, date)."""
from __future__ import annotations

from typing import Any, Optional

from cast_office.supabase_client import SupabaseDB
from cast_office.utils import calculate_work_hours, ensure_utc_datetime, month_date_range, validate_year_month


ATTENDANCE_FIELDS = (
    "check_in_datetime",
    "check_out_datetime",
    "status_id",
    "late_minutes",
    "break_minutes",
    "daily_payment",
    "costume_id",
)


def list_attendance(
    db: SupabaseDB,
    store_id: int,
    date: Optional[str] = None,
    year_month: Optional[str] = None,
) -> list[dict]:
    q = db.query("attendance").filter(("store_id", "=", store_id))
    if date:
        q = q.filter(("date", "=", date))
    elif year_month:
        start, end = month_date_range(*validate_year_month(year_month))
        q = q.filter(("date", ">=", start), ("date", "<=", end))
    else:
        raise ValueError("date or year_month is required")

    rows = []
    for row in q.order_by("date ASC", "cast_name ASC").all():
        record = row.to_dict()
        record["work_hours"] = calculate_work_hours(record.get("check_in_datetime"), record.get("check_out_datetime"))
        rows.append(record)
    return rows


def _normalize(values: dict[str, Any]) -> dict[str, Any]:
    for key in ("check_in_datetime", "check_out_datetime"):
        if values.get(key):
            values[key] = ensure_utc_datetime(values[key])
        elif key in values:
            values[key] = None
    for key in ("late_minutes", "break_minutes", "daily_payment"):
        if key in values:
            amount = int(values[key] or 0)
            if amount < 0:
                raise ValueError(f"{key} must not be negative")
            values[key] = amount
    return values


def upsert_attendance(db: SupabaseDB, store_id: int, cast_name: str, date: str, data: dict) -> dict:
    cast_name = (cast_name or "").strip()
    if not cast_name:
        raise ValueError("cast_name is required")
    cast = db.query("casts").filter(("store_id", "=", store_id), ("name", "=", cast_name)).first()
    if cast is None:
        raise LookupError("Cast not found")

    values = _normalize({k: data[k] for k in ATTENDANCE_FIELDS if k in data})
    existing = (
        db.query("attendance")
        .filter(("store_id", "=", store_id), ("cast_name", "=", cast_name), ("date", "=", date))
        .first()
    )
    if existing is None:
        values.update({"store_id": store_id, "cast_name": cast_name, "date": date})
        return db.insert("attendance", values).to_dict()
    for key, value in values.items():
        setattr(existing, key, value)
    db.update(existing)
    return existing.to_dict()


def delete_attendance(db: SupabaseDB, store_id: int, attendance_id: int) -> None:
    row = db.get("attendance", "id", attendance_id)
    if row is None or row.get("store_id") != store_id:
        raise LookupError("Attendance not found")
    db.delete_row("attendance", "id", row.id)


def list_attendance_statuses(db: SupabaseDB, store_id: int) -> list[dict]:
    rows = (
        db.query("attendance_statuses")
        .filter(("store_id", "=", store_id), ("is_active", "=", True))
        .order_by("order_index ASC")
        .all()
    )
    return [row.to_dict() for row in rows]
