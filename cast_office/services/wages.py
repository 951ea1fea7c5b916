"""
Hourly wage masters and the daily wage status promotion/demotion job.

Wage statuses form a ladder ordered by ``priority`` (higher is better paid).
Each status can carry attendance conditions; the daily job moves a cast one
rung up or down when every condition of that direction holds.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from cast_office.services.catalog import _apply, _get_owned, _pick
from cast_office.supabase_client import SupabaseDB
from cast_office.utils import month_date_range, to_jst_datetime, utc_now


logger = logging.getLogger("cast-office")

WAGE_SETTINGS_DEFAULTS: dict[str, Any] = {
    "default_hourly_wage": 0,
    "min_hours_for_full_day": 5.0,
    "min_days_for_back": 5,
    "wage_only_max_days": 4,
    "first_month_exempt": True,
}
WAGE_STATUS_FIELDS = ("name", "hourly_wage", "priority", "is_default")
CONDITION_FIELDS = ("condition_type", "operator", "value", "condition_direction")
COSTUME_FIELDS = ("name", "wage_adjustment", "display_order")
SPECIAL_DAY_FIELDS = ("date", "name", "wage_adjustment")

CONDITION_TYPES = ("monthly_attendance_days", "cumulative_attendance_days")
CONDITION_OPERATORS = (">=", ">", "=", "<=", "<")
DIRECTION_PROMOTION = "promotion"
DIRECTION_DEMOTION = "demotion"

PROMOTION_REASON = "自動昇格: 条件を満たしました"
DEMOTION_REASON = "自動降格: 条件を満たしませんでした"


def _jst_today(now: Optional[datetime] = None) -> date:
    return to_jst_datetime(now or utc_now()).date()


def _non_negative_int(values: dict, key: str, label: str) -> None:
    if key not in values:
        return
    try:
        amount = int(values[key] or 0)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{label}は数値で入力してください") from exc
    if amount < 0:
        raise ValueError(f"{label}は0以上で入力してください")
    values[key] = amount


def _required_name(values: dict, message: str) -> None:
    values["name"] = (values.get("name") or "").strip()
    if not values["name"]:
        raise ValueError(message)


# ---------------------------------------------------------------------------
# Store wage settings
# ---------------------------------------------------------------------------

def get_wage_settings(db: SupabaseDB, store_id: int) -> dict[str, Any]:
    row = db.query("store_wage_settings").filter(("store_id", "=", store_id)).first()
    settings = dict(WAGE_SETTINGS_DEFAULTS, store_id=store_id)
    if row is not None:
        settings.update({k: v for k, v in row.to_dict().items() if v is not None})
    return settings


def upsert_wage_settings(db: SupabaseDB, store_id: int, data: dict) -> dict[str, Any]:
    values = _pick(data, tuple(WAGE_SETTINGS_DEFAULTS))
    _non_negative_int(values, "default_hourly_wage", "基本時給")
    _non_negative_int(values, "min_days_for_back", "バック対象の最低出勤日数")
    _non_negative_int(values, "wage_only_max_days", "時給のみの上限日数")
    if "min_hours_for_full_day" in values:
        hours = float(values["min_hours_for_full_day"] or 0)
        if not 0 <= hours <= 24:
            raise ValueError("1日出勤とみなす時間は0〜24で入力してください")
        values["min_hours_for_full_day"] = hours
    if "first_month_exempt" in values:
        values["first_month_exempt"] = bool(values["first_month_exempt"])

    current = get_wage_settings(db, store_id)
    merged = {key: current[key] for key in WAGE_SETTINGS_DEFAULTS}
    merged.update(values)
    merged["store_id"] = store_id
    db.upsert("store_wage_settings", merged, on_conflict="store_id")
    return get_wage_settings(db, store_id)


# ---------------------------------------------------------------------------
# Wage statuses and their conditions
# ---------------------------------------------------------------------------

def list_wage_statuses(db: SupabaseDB, store_id: int) -> list[dict]:
    """Active statuses, highest priority first, each with its ``conditions``."""
    statuses = [
        row.to_dict()
        for row in db.query("wage_statuses")
        .filter(("store_id", "=", store_id), ("is_active", "=", True))
        .order_by("priority DESC")
        .all()
    ]
    if not statuses:
        return []
    conditions = (
        db.query("wage_status_conditions")
        .filter(("status_id", "IN", [s["id"] for s in statuses]))
        .order_by("id ASC")
        .all()
    )
    for status in statuses:
        status["conditions"] = [c.to_dict() for c in conditions if c.status_id == status["id"]]
    return statuses


def _clear_other_defaults(db: SupabaseDB, store_id: int, keep_id: Any) -> None:
    db.update_where(
        "wage_statuses",
        {"is_default": False},
        [("store_id", "=", store_id), ("is_default", "=", True), ("id", "!=", keep_id)],
    )


def _validate_status(values: dict) -> dict:
    if "name" in values:
        _required_name(values, "ステータス名を入力してください")
    _non_negative_int(values, "hourly_wage", "時給")
    if "priority" in values:
        values["priority"] = int(values["priority"] or 0)
    if "is_default" in values:
        values["is_default"] = bool(values["is_default"])
    return values


def create_wage_status(db: SupabaseDB, store_id: int, data: dict) -> dict:
    values = _validate_status(_pick(data, WAGE_STATUS_FIELDS))
    if "name" not in values:
        raise ValueError("ステータス名を入力してください")
    values.setdefault("hourly_wage", 0)
    values.setdefault("priority", 0)
    values.setdefault("is_default", False)
    values.update({"store_id": store_id, "is_active": True})
    row = db.insert("wage_statuses", values)
    if values["is_default"]:
        _clear_other_defaults(db, store_id, row.id)
    return row.to_dict()


def update_wage_status(db: SupabaseDB, store_id: int, status_id: int, data: dict) -> dict:
    row = _get_owned(db, "wage_statuses", status_id, store_id, "Wage status")
    values = _validate_status(_pick(data, WAGE_STATUS_FIELDS))
    result = _apply(db, row, values)
    if values.get("is_default"):
        _clear_other_defaults(db, store_id, row.id)
    return result


def delete_wage_status(db: SupabaseDB, store_id: int, status_id: int) -> None:
    row = _get_owned(db, "wage_statuses", status_id, store_id, "Wage status")
    _apply(db, row, {"is_active": False})


def create_status_condition(db: SupabaseDB, store_id: int, status_id: int, data: dict) -> dict:
    _get_owned(db, "wage_statuses", status_id, store_id, "Wage status")
    values = _pick(data, CONDITION_FIELDS)
    if values.get("condition_type") not in CONDITION_TYPES:
        raise ValueError("condition_type must be monthly_attendance_days or cumulative_attendance_days")
    if values.get("operator") not in CONDITION_OPERATORS:
        raise ValueError("operator must be one of >=, >, =, <=, <")
    if values.get("condition_direction") not in (DIRECTION_PROMOTION, DIRECTION_DEMOTION):
        raise ValueError("condition_direction must be promotion or demotion")
    values.setdefault("value", 0)
    _non_negative_int(values, "value", "条件の日数")
    values["status_id"] = status_id
    return db.insert("wage_status_conditions", values).to_dict()


def delete_status_condition(db: SupabaseDB, store_id: int, condition_id: int) -> None:
    row = db.get("wage_status_conditions", "id", condition_id)
    if row is None:
        raise LookupError("Condition not found")
    _get_owned(db, "wage_statuses", row.status_id, store_id, "Condition")
    db.delete_row("wage_status_conditions", "id", row.id)


# ---------------------------------------------------------------------------
# Costumes / special wage days
# ---------------------------------------------------------------------------

def list_costumes(db: SupabaseDB, store_id: int) -> list[dict]:
    rows = (
        db.query("costumes")
        .filter(("store_id", "=", store_id), ("is_active", "=", True))
        .order_by("display_order ASC")
        .all()
    )
    return [row.to_dict() for row in rows]


def create_costume(db: SupabaseDB, store_id: int, data: dict) -> dict:
    values = _pick(data, COSTUME_FIELDS)
    _required_name(values, "衣装名を入力してください")
    values["wage_adjustment"] = int(values.get("wage_adjustment") or 0)
    if values.get("display_order") is None:
        values["display_order"] = len(list_costumes(db, store_id))
    values.update({"store_id": store_id, "is_active": True})
    return db.insert("costumes", values).to_dict()


def update_costume(db: SupabaseDB, store_id: int, costume_id: int, data: dict) -> dict:
    row = _get_owned(db, "costumes", costume_id, store_id, "Costume")
    values = _pick(data, COSTUME_FIELDS)
    if "name" in values:
        _required_name(values, "衣装名を入力してください")
    if "wage_adjustment" in values:
        values["wage_adjustment"] = int(values["wage_adjustment"] or 0)
    return _apply(db, row, values)


def delete_costume(db: SupabaseDB, store_id: int, costume_id: int) -> None:
    row = _get_owned(db, "costumes", costume_id, store_id, "Costume")
    _apply(db, row, {"is_active": False})


def list_special_days(db: SupabaseDB, store_id: int, year_month: Optional[str] = None) -> list[dict]:
    q = db.query("special_wage_days").filter(("store_id", "=", store_id), ("is_active", "=", True))
    if year_month:
        start, end = month_date_range(int(year_month[:4]), int(year_month[5:7]))
        q = q.filter(("date", ">=", start), ("date", "<=", end))
    return [row.to_dict() for row in q.order_by("date ASC").all()]


def _checked_date(value: Any) -> str:
    try:
        return datetime.strptime(str(value or ""), "%Y-%m-%d").strftime("%Y-%m-%d")
    except ValueError as exc:
        raise ValueError("日付はYYYY-MM-DD形式で入力してください") from exc


def create_special_day(db: SupabaseDB, store_id: int, data: dict) -> dict:
    values = _pick(data, SPECIAL_DAY_FIELDS)
    if not values.get("date"):
        raise ValueError("日付と名前を入力してください")
    _required_name(values, "日付と名前を入力してください")
    values["date"] = _checked_date(values["date"])
    values["wage_adjustment"] = int(values.get("wage_adjustment") or 0)
    values.update({"store_id": store_id, "is_active": True})
    return db.insert("special_wage_days", values).to_dict()


def update_special_day(db: SupabaseDB, store_id: int, day_id: int, data: dict) -> dict:
    row = _get_owned(db, "special_wage_days", day_id, store_id, "Special day")
    values = _pick(data, SPECIAL_DAY_FIELDS)
    if "name" in values:
        _required_name(values, "日付と名前を入力してください")
    if "date" in values:
        values["date"] = _checked_date(values["date"])
    if "wage_adjustment" in values:
        values["wage_adjustment"] = int(values["wage_adjustment"] or 0)
    return _apply(db, row, values)


def delete_special_day(db: SupabaseDB, store_id: int, day_id: int) -> None:
    row = _get_owned(db, "special_wage_days", day_id, store_id, "Special day")
    _apply(db, row, {"is_active": False})


# ---------------------------------------------------------------------------
# Automatic promotion / demotion
# ---------------------------------------------------------------------------

def evaluate_condition(actual: int, operator: str, expected: int) -> bool:
    if operator == ">=":
        return actual >= expected
    if operator == ">":
        return actual > expected
    if operator == "=":
        return actual == expected
    if operator == "<=":
        return actual <= expected
    if operator == "<":
        return actual < expected
    return False


def conditions_met(conditions: list[dict], monthly_days: int, cumulative_days: int) -> bool:
    """Every condition must hold. An empty list never triggers a move."""
    if not conditions:
        return False
    for condition in conditions:
        actual = cumulative_days if condition.get("condition_type") == "cumulative_attendance_days" else monthly_days
        if not evaluate_condition(actual, condition.get("operator"), condition.get("value") or 0):
            return False
    return True


def _status_progress(db: SupabaseDB, store_id: int, cast_id: int, today: date):
    progress = (
        db.query("cast_status_progress")
        .filter(("cast_id", "=", cast_id), ("store_id", "=", store_id))
        .first()
    )
    if progress is not None:
        return progress
    default = (
        db.query("wage_statuses")
        .filter(("store_id", "=", store_id), ("is_default", "=", True), ("is_active", "=", True))
        .first()
    )
    return db.insert("cast_status_progress", {
        "cast_id": cast_id,
        "store_id": store_id,
        "current_status_id": default.id if default else None,
        "cumulative_attendance_days": 0,
        "status_start_date": today,
    })


def _status_locked(db: SupabaseDB, store_id: int, cast_id: int) -> bool:
    setting = (
        db.query("compensation_settings")
        .filter(("cast_id", "=", cast_id), ("store_id", "=", store_id), ("is_active", "=", True))
        .order_by("target_year DESC", "target_month DESC")
        .first()
    )
    return bool(setting and setting.get("status_locked"))


def _attendance_days(db: SupabaseDB, store_id: int, cast_name: str, start: date, end: Optional[date] = None) -> int:
    q = db.query("attendance").filter(
        ("store_id", "=", store_id),
        ("cast_name", "=", cast_name),
        ("date", ">=", start),
        ("status_id", "IS NOT NULL", None),
    )
    if end is not None:
        q = q.filter(("date", "<=", end))
    return q.count()


def _neighbour_status(db: SupabaseDB, store_id: int, current_status_id: int, upward: bool):
    current = db.get("wage_statuses", "id", current_status_id)
    priority = (current.get("priority") if current else None) or 0
    q = db.query("wage_statuses").filter(("store_id", "=", store_id), ("is_active", "=", True))
    if upward:
        q = q.filter(("priority", ">", priority)).order_by("priority ASC")
    else:
        q = q.filter(("priority", "<", priority)).order_by("priority DESC")
    return q.first()


def _move_status(db: SupabaseDB, cast_id: int, store_id: int, progress, new_status, reason: str, today: date) -> None:
    previous_status_id = progress.current_status_id
    progress.current_status_id = new_status.id
    progress.cumulative_attendance_days = 0
    progress.status_start_date = today
    progress.last_updated_at = utc_now()
    db.update(progress)
    db.insert("cast_status_history", {
        "cast_id": cast_id,
        "store_id": store_id,
        "previous_status_id": previous_status_id,
        "new_status_id": new_status.id,
        "reason": reason,
        "trigger_type": "auto",
    })
    db.update_where(
        "compensation_settings",
        {"status_id": new_status.id},
        [("cast_id", "=", cast_id), ("store_id", "=", store_id), ("is_active", "=", True)],
    )


def update_cast_wage_status(db: SupabaseDB, store_id: int, cast: dict, today: date) -> Optional[str]:
    """Returns "promoted", "demoted" or None for one cast."""
    progress = _status_progress(db, store_id, cast["id"], today)
    if _status_locked(db, store_id, cast["id"]):
        return None

    month_start, month_end = month_date_range(today.year, today.month)
    monthly_days = _attendance_days(db, store_id, cast["name"], month_start, month_end)
    start = datetime.strptime(str(progress.status_start_date)[:10], "%Y-%m-%d").date()
    cumulative_days = _attendance_days(db, store_id, cast["name"], start)

    progress.cumulative_attendance_days = cumulative_days
    progress.last_updated_at = utc_now()
    db.update(progress)

    if not progress.current_status_id:
        return None
    conditions = [
        row.to_dict()
        for row in db.query("wage_status_conditions").filter(("status_id", "=", progress.current_status_id)).all()
    ]

    demotion = [c for c in conditions if c.get("condition_direction") == DIRECTION_DEMOTION]
    if conditions_met(demotion, monthly_days, cumulative_days):
        lower = _neighbour_status(db, store_id, progress.current_status_id, upward=False)
        if lower is not None:
            _move_status(db, cast["id"], store_id, progress, lower, DEMOTION_REASON, today)
            return "demoted"
        # demotion conditions held, so promotion is not considered
        return None

    promotion = [c for c in conditions if c.get("condition_direction") == DIRECTION_PROMOTION]
    if conditions_met(promotion, monthly_days, cumulative_days):
        higher = _neighbour_status(db, store_id, progress.current_status_id, upward=True)
        if higher is not None:
            _move_status(db, cast["id"], store_id, progress, higher, PROMOTION_REASON, today)
            return "promoted"
    return None


def update_wage_statuses(db: SupabaseDB, now: Optional[datetime] = None) -> dict[str, Any]:
    """Daily job over every active cast of every active store."""
    today = _jst_today(now)
    results: dict[str, Any] = {"processed": 0, "promoted": 0, "demoted": 0, "errors": []}

    for store in db.query("stores").filter(("is_active", "=", True)).order_by("id ASC").all():
        casts = (
            db.query("casts")
            .filter(("store_id", "=", store.id), ("is_active", "=", True))
            .order_by("id ASC")
            .all()
        )
        for cast in casts:
            try:
                moved = update_cast_wage_status(db, store.id, cast.to_dict(), today)
            except Exception as exc:
                logger.exception("Wage status update failed: store=%s cast=%s", store.id, cast.id)
                results["errors"].append(f"Cast {cast.name}: {exc}")
                continue
            results["processed"] += 1
            if moved:
                results[moved] += 1

    logger.info(
        "Wage statuses processed=%s promoted=%s demoted=%s errors=%s",
        results["processed"], results["promoted"], results["demoted"], len(results["errors"]),
    )
    results["timestamp"] = utc_now().isoformat()
    return results
