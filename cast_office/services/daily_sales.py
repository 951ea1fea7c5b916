"""
Daily sales recalculation: orders + BASE orders + attendance for one business
day become cast_daily_items and one cast_daily_stats row per cast.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any, Optional

from cast_office.services.compensation import group_settings_by_cast
from cast_office.services.sales_calculation import (
    BASE_CATEGORY,
    aggregate_cast_daily_items,
    apply_back_rates,
    build_base_items,
)
from cast_office.services.settings import business_day_cutoff_hour, load_sales_settings, load_tax_settings
from cast_office.supabase_client import SupabaseDB
from cast_office.utils import (
    calculate_work_hours,
    current_business_day,
    month_date_range,
    round_half_up,
    utc_now,
    validate_year_month,
)


logger = logging.getLogger("cast-office")


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def _empty_sales() -> dict[str, float]:
    return {
        "self_sales_item_based": 0,
        "help_sales_item_based": 0,
        "self_sales_receipt_based": 0,
        "help_sales_receipt_based": 0,
        "product_back": 0,
    }


def summarize_daily_items(items: list[dict], settings: dict) -> dict[int, dict[str, float]]:
    """Per-cast sales and product back for one day.

    Self sales go to cast_id, help sales and help back go to help_cast_id.
    BASE rows only count as sales when the store includes BASE in that method.
    """
    include_item = bool(settings.get("include_base_in_item_sales"))
    include_receipt = bool(settings.get("include_base_in_receipt_sales"))
    totals: dict[int, dict[str, float]] = {}

    for item in items:
        owner = totals.setdefault(item["cast_id"], _empty_sales())
        if item.get("category") == BASE_CATEGORY:
            if include_item:
                owner["self_sales_item_based"] += item.get("self_sales_item_based") or 0
            if include_receipt:
                owner["self_sales_receipt_based"] += item.get("self_sales_receipt_based") or 0
            continue

        owner["self_sales_item_based"] += item.get("self_sales_item_based") or 0
        owner["self_sales_receipt_based"] += item.get("self_sales_receipt_based") or 0
        owner["product_back"] += item.get("self_back_amount") or 0

        help_cast_id = item.get("help_cast_id")
        if help_cast_id:
            helper = totals.setdefault(help_cast_id, _empty_sales())
            help_sales = item.get("help_sales") or 0
            helper["help_sales_item_based"] += help_sales if item.get("needs_cast", True) else 0
            helper["help_sales_receipt_based"] += help_sales
            helper["product_back"] += item.get("help_back_amount") or 0

    return totals


def daily_wage(
    attendance: Optional[dict],
    comp_setting: Optional[dict],
    wage_by_status: dict[int, float],
    special_day_bonus: float,
    costume_bonus_by_id: dict[int, float],
) -> dict[str, Any]:
    """Hourly wage breakdown for one attendance record (all zero without attendance)."""
    attendance = attendance or {}
    work_hours = calculate_work_hours(attendance.get("check_in_datetime"), attendance.get("check_out_datetime"))
    costume_id = attendance.get("costume_id") or None
    wage_status_id = (comp_setting or {}).get("status_id") or None

    base_hourly_wage = 0
    if comp_setting and comp_setting.get("hourly_wage_override"):
        base_hourly_wage = comp_setting["hourly_wage_override"]
    elif wage_status_id:
        base_hourly_wage = wage_by_status.get(wage_status_id) or 0

    costume_bonus = costume_bonus_by_id.get(costume_id, 0) if costume_id else 0
    total_hourly_wage = base_hourly_wage + special_day_bonus + costume_bonus
    return {
        "work_hours": work_hours,
        "base_hourly_wage": base_hourly_wage,
        "special_day_bonus": special_day_bonus,
        "costume_bonus": costume_bonus,
        "total_hourly_wage": total_hourly_wage,
        "wage_amount": round_half_up(total_hourly_wage * work_hours),
        "costume_id": costume_id,
        "wage_status_id": wage_status_id,
    }


def count_nominations(orders: list[dict], casts_by_name: dict[str, dict]) -> dict[int, int]:
    counts: dict[int, int] = {}
    for order in orders:
        staff_name = order.get("staff_name")
        if not staff_name or not order.get("guest_count"):
            continue
        cast = casts_by_name.get(staff_name)
        if cast is not None:
            counts[cast["id"]] = counts.get(cast["id"], 0) + order["guest_count"]
    return counts


def build_daily_stats(
    store_id: int,
    business_date: str,
    sales_by_cast: dict[int, dict[str, float]],
    casts_by_id: dict[int, dict],
    attendance_by_name: dict[str, dict],
    comp_by_cast: dict[int, dict],
    wage_by_status: dict[int, float],
    special_day_bonus: float,
    costume_bonus_by_id: dict[int, float],
    nomination_counts: dict[int, int],
    finalized_cast_ids: set[int],
) -> list[dict]:
    """cast_daily_stats rows for every cast that sold something or worked."""
    cast_ids = list(sales_by_cast)
    for name, attendance in attendance_by_name.items():
        if not (attendance.get("check_in_datetime") and attendance.get("check_out_datetime")):
            continue
        cast = next((c for c in casts_by_id.values() if c["name"] == name), None)
        if cast is not None and cast["id"] not in sales_by_cast:
            cast_ids.append(cast["id"])

    now = utc_now().isoformat()
    rows = []
    for cast_id in cast_ids:
        if cast_id in finalized_cast_ids:
            continue
        cast = casts_by_id.get(cast_id)
        if cast is None:
            continue
        sales = sales_by_cast.get(cast_id) or _empty_sales()
        wage = daily_wage(
            attendance_by_name.get(cast["name"]),
            comp_by_cast.get(cast_id),
            wage_by_status,
            special_day_bonus,
            costume_bonus_by_id,
        )
        product_back = round_half_up(sales["product_back"])
        rows.append({
            "cast_id": cast_id,
            "store_id": store_id,
            "date": business_date,
            "self_sales_item_based": sales["self_sales_item_based"],
            "help_sales_item_based": sales["help_sales_item_based"],
            "total_sales_item_based": sales["self_sales_item_based"] + sales["help_sales_item_based"],
            "product_back_item_based": product_back,
            "self_sales_receipt_based": sales["self_sales_receipt_based"],
            "help_sales_receipt_based": sales["help_sales_receipt_based"],
            "total_sales_receipt_based": sales["self_sales_receipt_based"] + sales["help_sales_receipt_based"],
            "product_back_receipt_based": product_back,
            **wage,
            "nomination_count": nomination_counts.get(cast_id, 0),
            "is_finalized": False,
            "updated_at": now,
        })
    return rows


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------

def _next_date(value: str) -> str:
    return (datetime.strptime(value, "%Y-%m-%d") + timedelta(days=1)).strftime("%Y-%m-%d")


def recalculate_for_date(db: SupabaseDB, store_id: int, business_date: str) -> dict[str, int]:
    """Rebuild cast_daily_items and cast_daily_stats for one store and business date."""
    settings = load_sales_settings(db, store_id)
    tax_rate = load_tax_settings(db, store_id)["tax_rate"] / 100

    orders = [
        row.to_dict()
        for row in db.query("orders")
        .select("*, order_items(*)")
        .filter(
            ("store_id", "=", store_id),
            ("order_date", ">=", f"{business_date}T00:00:00Z"),
            ("order_date", "<", f"{_next_date(business_date)}T00:00:00Z"),
            ("deleted_at", "IS NULL", None),
        )
        .all()
    ]
    base_orders = [
        row.to_dict()
        for row in db.query("base_orders")
        .filter(
            ("store_id", "=", store_id),
            ("business_date", "=", business_date),
            ("cast_id", "IS NOT NULL", None),
            ("actual_price", "IS NOT NULL", None),
        )
        .all()
    ]

    casts = [row.to_dict() for row in db.query("casts").filter(("store_id", "=", store_id)).all()]
    casts_by_name = {c["name"]: c for c in casts}
    casts_by_id = {c["id"]: c for c in casts}

    products = db.query("products").filter(("store_id", "=", store_id)).all()
    needs_cast = {p.name: p.get("needs_cast") is not False for p in products}

    back_rates = [
        row.to_dict()
        for row in db.query("cast_back_rates").filter(("store_id", "=", store_id), ("is_active", "=", True)).all()
    ]
    attendance_by_name = {
        row.cast_name: row.to_dict()
        for row in db.query("attendance").filter(("store_id", "=", store_id), ("date", "=", business_date)).all()
    }

    year, month = int(business_date[:4]), int(business_date[5:7])
    comp_rows = db.query("compensation_settings").filter(("store_id", "=", store_id), ("is_active", "=", True)).all()
    comp_by_cast = group_settings_by_cast([row.to_dict() for row in comp_rows], year, month)

    wage_by_status = {
        row.id: row.get("hourly_wage") or 0
        for row in db.query("wage_statuses").filter(("store_id", "=", store_id), ("is_active", "=", True)).all()
    }
    special_day = (
        db.query("special_wage_days")
        .filter(("store_id", "=", store_id), ("date", "=", business_date), ("is_active", "=", True))
        .first()
    )
    special_day_bonus = (special_day.get("wage_adjustment") or 0) if special_day else 0
    costume_bonus_by_id = {
        row.id: row.get("wage_adjustment") or 0
        for row in db.query("costumes").filter(("store_id", "=", store_id), ("is_active", "=", True)).all()
    }

    existing = db.query("cast_daily_stats").filter(("store_id", "=", store_id), ("date", "=", business_date)).all()
    finalized_cast_ids = {row.cast_id for row in existing if row.get("is_finalized")}

    items = aggregate_cast_daily_items(orders, casts_by_name, store_id, business_date, settings, tax_rate, needs_cast)
    items.extend(build_base_items(base_orders, store_id, business_date))
    apply_back_rates(items, back_rates, comp_by_cast)

    stats = build_daily_stats(
        store_id,
        business_date,
        summarize_daily_items(items, settings),
        casts_by_id,
        attendance_by_name,
        comp_by_cast,
        wage_by_status,
        special_day_bonus,
        costume_bonus_by_id,
        count_nominations(orders, casts_by_name),
        finalized_cast_ids,
    )
    if stats:
        db.upsert("cast_daily_stats", stats, on_conflict="cast_id,store_id,date")

    items_to_save = [item for item in items if item["cast_id"] not in finalized_cast_ids]
    if items_to_save:
        cast_ids = sorted({item["cast_id"] for item in items_to_save})
        db.delete_where("cast_daily_items", [
            ("store_id", "=", store_id),
            ("date", "=", business_date),
            ("cast_id", "IN", cast_ids),
        ])
        db.insert_many("cast_daily_items", items_to_save)

    unprocessed_ids = [o["id"] for o in base_orders if not o.get("is_processed")]
    if unprocessed_ids:
        db.update_where("base_orders", {"is_processed": True}, [("id", "IN", unprocessed_ids)])

    logger.info(
        "Daily sales recalculated: store=%s date=%s casts=%s items=%s",
        store_id, business_date, len(stats), len(items),
    )
    return {"casts_processed": len(stats), "items_processed": len(items)}


def recalculate_current_business_day(db: SupabaseDB, now: Optional[datetime] = None) -> dict[str, Any]:
    """Every active store's current business day, then any date with unprocessed BASE orders."""
    results: list[dict] = []
    done: set[tuple[int, str]] = set()

    def _run(store_id: int, business_date: str) -> None:
        done.add((store_id, business_date))
        try:
            result = recalculate_for_date(db, store_id, business_date)
            results.append({"store_id": store_id, "date": business_date, "success": True, **result})
        except Exception as exc:
            logger.exception("Daily sales recalculation failed: store=%s date=%s", store_id, business_date)
            results.append({"store_id": store_id, "date": business_date, "success": False, "error": str(exc)})

    for store in db.query("stores").filter(("is_active", "=", True)).order_by("id ASC").all():
        cutoff = business_day_cutoff_hour(db, store.id)
        _run(store.id, current_business_day(cutoff, now))

    pending = (
        db.query("base_orders")
        .filter(("is_processed", "=", False), ("cast_id", "IS NOT NULL", None))
        .all()
    )
    for row in pending:
        key = (row.store_id, str(row.business_date))
        if row.get("business_date") and key not in done:
            _run(*key)

    return {
        "processed": sum(1 for r in results if r["success"]),
        "errors": sum(1 for r in results if not r["success"]),
        "results": results,
    }


def finalize_daily_stats(
    db: SupabaseDB,
    store_id: int,
    year_month: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    unfinalize: bool = False,
) -> dict[str, Any]:
    if year_month:
        start, end = month_date_range(*validate_year_month(year_month))
        start_date, end_date = start.isoformat(), end.isoformat()
    elif date_from and date_to:
        start_date, end_date = date_from, date_to
    else:
        raise ValueError("year_month or date_from/date_to is required")

    updated = db.update_where(
        "cast_daily_stats",
        {
            "is_finalized": not unfinalize,
            "finalized_at": None if unfinalize else utc_now(),
        },
        [("store_id", "=", store_id), ("date", ">=", start_date), ("date", "<=", end_date)],
    )
    return {
        "action": "unfinalized" if unfinalize else "finalized",
        "period": {"from": start_date, "to": end_date},
        "records_updated": updated,
    }


def load_daily_stats(db: SupabaseDB, store_id: int, start: date, end: date, cast_id: Optional[int] = None) -> list[dict]:
    q = db.query("cast_daily_stats").filter(
        ("store_id", "=", store_id), ("date", ">=", start), ("date", "<=", end),
    )
    if cast_id is not None:
        q = q.filter(("cast_id", "=", cast_id))
    return [row.to_dict() for row in q.order_by("date ASC").all()]
