"""
Monthly payslips.

A payslip joins one cast's daily stats (hours, wage, sales), the product back
recorded on cast_daily_items, BASE orders, attendance and the deduction rules
into the stored ``payslips`` row plus its ``payslip_items``.
"""
from __future__ import annotations

import csv
import io
import logging
from typing import Any, Optional

from cast_office.services.compensation import (
    DEDUCTION_DAILY_PAYMENT,
    DEDUCTION_PERCENTAGE,
    calculate_deductions,
    select_compensation,
    select_compensation_setting,
)
from cast_office.services.sales_calculation import BASE_CATEGORY, SALES_TYPE_HELP, SALES_TYPE_SELF
from cast_office.services.settings import load_sales_settings
from cast_office.supabase_client import SupabaseDB
from cast_office.utils import iter_dates, month_date_range, round_half_up, utc_now, validate_year_month


logger = logging.getLogger("cast-office")

PAYSLIP_STATUS_DRAFT = "draft"
PAYSLIP_STATUS_FINALIZED = "finalized"

SUMMARY_CSV_COLUMNS = [
    ("cast_name", "キャスト名"),
    ("work_days", "出勤日数"),
    ("total_hours", "勤務時間"),
    ("hourly_income", "時給収入"),
    ("sales_back", "売上バック"),
    ("product_back", "商品バック"),
    ("fixed_amount", "固定額"),
    ("gross_total", "総支給額"),
    ("daily_payment", "日払い"),
    ("withholding_tax", "源泉徴収"),
    ("other_deductions", "その他控除"),
    ("total_deduction", "控除合計"),
    ("net_payment", "差引支給額"),
]


# ---------------------------------------------------------------------------
# Product back
# ---------------------------------------------------------------------------

def find_base_back_rate(back_rates: list[dict], product_name: Optional[str]) -> Optional[dict]:
    """BASE rate for a product: exact product under BASE, else the BASE category default."""
    for rate in back_rates:
        if rate.get("category") == BASE_CATEGORY and rate.get("product_name") == product_name:
            return rate
    for rate in back_rates:
        if rate.get("category") == BASE_CATEGORY and rate.get("product_name") is None:
            return rate
    return None


def base_order_back(order: dict, rate: dict) -> dict[str, Any]:
    quantity = order.get("quantity") or 0
    subtotal = (order.get("actual_price") or 0) * quantity
    ratio = rate.get("self_back_ratio")
    if ratio is None:
        ratio = rate.get("back_ratio") or 0
    if rate.get("back_type") == "fixed":
        back_amount = (rate.get("back_fixed_amount") or 0) * quantity
    else:
        back_amount = int(subtotal * ratio // 100)
    return {
        "product_name": order.get("product_name"),
        "category": BASE_CATEGORY,
        "sales_type": SALES_TYPE_SELF,
        "quantity": quantity,
        "subtotal": subtotal,
        "back_ratio": ratio,
        "back_amount": back_amount,
        "is_base": True,
    }


def product_back_entries(cast_id: int, daily_items: list[dict]) -> list[dict]:
    """The cast's share of each non-BASE daily item: self rows and rows it helped on."""
    entries = []
    for item in daily_items:
        if item.get("category") == BASE_CATEGORY:
            continue
        if item.get("cast_id") == cast_id:
            sales = item.get("self_sales") or 0
            back = item.get("self_back_amount") or 0
            if sales or back:
                entries.append({
                    "date": str(item.get("date")),
                    "product_name": item.get("product_name"),
                    "category": item.get("category"),
                    "sales_type": SALES_TYPE_SELF,
                    "quantity": item.get("quantity") or 0,
                    "subtotal": sales,
                    "back_ratio": item.get("self_back_rate") or 0,
                    "back_amount": back,
                    "is_base": False,
                })
        if item.get("help_cast_id") == cast_id:
            sales = item.get("help_sales") or 0
            back = item.get("help_back_amount") or 0
            if sales or back:
                entries.append({
                    "date": str(item.get("date")),
                    "product_name": item.get("product_name"),
                    "category": item.get("category"),
                    "sales_type": SALES_TYPE_HELP,
                    "quantity": item.get("quantity") or 0,
                    "subtotal": sales,
                    "back_ratio": item.get("help_back_rate") or 0,
                    "back_amount": back,
                    "is_base": False,
                })
    return entries


def group_product_back(entries: list[dict]) -> list[dict]:
    grouped: dict[str, dict] = {}
    for entry in entries:
        key = f"{entry.get('category') or ''}:{entry['product_name']}:{entry['sales_type']}"
        existing = grouped.get(key)
        if existing is None:
            grouped[key] = {
                "product_name": entry["product_name"],
                "category": entry.get("category"),
                "sales_type": entry["sales_type"],
                "quantity": entry["quantity"],
                "subtotal": entry["subtotal"],
                "back_ratio": entry["back_ratio"],
                "back_amount": entry["back_amount"],
            }
            continue
        existing["quantity"] += entry["quantity"]
        existing["subtotal"] += entry["subtotal"]
        existing["back_amount"] += entry["back_amount"]
    return list(grouped.values())


# ---------------------------------------------------------------------------
# Payslip
# ---------------------------------------------------------------------------

def build_payslip(
    cast_id: int,
    store_id: int,
    year_month: str,
    daily_stats: list[dict],
    daily_items: list[dict],
    base_orders: list[dict],
    back_rates: list[dict],
    attendance: list[dict],
    deduction_types: list[dict],
    late_rules: list[dict],
    comp_setting: Optional[dict],
    sales_settings: dict,
) -> dict[str, Any]:
    """Compute one cast's payslip for a month from already loaded rows."""
    year, month = validate_year_month(year_month)
    method = sales_settings.get("published_aggregation") or "item_based"
    method_key = "item" if method == "item_based" else "receipt"
    base_already_counted = bool(sales_settings.get(f"include_base_in_{method_key}_sales"))

    sales_by_date: dict[str, float] = {}
    back_by_date: dict[str, float] = {}
    for stat in daily_stats:
        day = str(stat["date"])
        sales_by_date[day] = sales_by_date.get(day, 0) + (stat.get(f"total_sales_{method}") or 0)

    entries = product_back_entries(cast_id, daily_items)
    for order in base_orders:
        if not order.get("business_date"):
            continue
        rate = find_base_back_rate(back_rates, order.get("product_name"))
        if rate is None:
            continue
        entry = base_order_back(order, rate)
        entry["date"] = str(order["business_date"])
        entries.append(entry)
        if not base_already_counted:
            sales_by_date[entry["date"]] = sales_by_date.get(entry["date"], 0) + entry["subtotal"]

    for entry in entries:
        back_by_date[entry["date"]] = back_by_date.get(entry["date"], 0) + entry["back_amount"]

    total_sales = sum(sales_by_date.values())
    total_product_back = sum(back_by_date.values())
    total_hours = sum(s.get("work_hours") or 0 for s in daily_stats)
    total_wage = sum(s.get("wage_amount") or 0 for s in daily_stats)

    compensation = select_compensation(comp_setting, total_wage, total_sales, total_product_back)
    gross_total = compensation["gross"]
    deductions = calculate_deductions(
        gross_total,
        attendance,
        deduction_types,
        late_rules,
        (comp_setting or {}).get("enabled_deduction_ids"),
    )
    total_deduction = sum(d["amount"] for d in deductions)

    stats_by_date = {str(s["date"]): s for s in daily_stats}
    attendance_by_date = {str(a["date"]): a for a in attendance}
    start, end = month_date_range(year, month)
    daily_details = []
    for day in iter_dates(start, end):
        stat = stats_by_date.get(day) or {}
        hours = stat.get("work_hours") or 0
        if hours <= 0:
            continue
        wage_amount = stat.get("wage_amount") or 0
        daily_details.append({
            "date": day,
            "hours": hours,
            "hourly_wage": round_half_up(wage_amount / hours),
            "hourly_income": wage_amount,
            "sales": sales_by_date.get(day, 0),
            "back": back_by_date.get(day, 0),
            "daily_payment": (attendance_by_date.get(day) or {}).get("daily_payment") or 0,
        })

    use_wage = compensation["use_wage"]
    items = [
        {
            "cast_id": cast_id,
            "store_id": store_id,
            "date": entry["date"],
            "year_month": year_month,
            "product_name": entry["product_name"],
            "category": entry.get("category"),
            "quantity": entry["quantity"],
            "subtotal": entry["subtotal"],
            "back_ratio": entry["back_ratio"],
            "back_amount": entry["back_amount"],
            "sales_type": entry["sales_type"],
            "is_base": entry["is_base"],
        }
        for entry in entries
    ]

    return {
        "cast_id": cast_id,
        "store_id": store_id,
        "year_month": year_month,
        "work_days": len(daily_details),
        "total_hours": round_half_up(total_hours * 100) / 100,
        "average_hourly_wage": round_half_up(total_wage / total_hours) if use_wage and total_hours > 0 else 0,
        "hourly_income": total_wage if use_wage else 0,
        "sales_back": compensation["sales_back"],
        "product_back": total_product_back,
        "fixed_amount": compensation["fixed_amount"],
        "compensation_type": compensation["type_name"],
        "total_sales": total_sales,
        "gross_total": gross_total,
        "total_deduction": total_deduction,
        "net_payment": gross_total - total_deduction,
        "daily_details": daily_details,
        "product_back_details": group_product_back(entries),
        "deduction_details": deductions,
        "items": items,
    }


def _rows(query) -> list[dict]:
    return [row.to_dict() for row in query.all()]


def calculate_payslip_for_cast(db: SupabaseDB, store_id: int, cast: dict, year_month: str) -> Optional[dict]:
    """Recompute and store a draft payslip. Finalized payslips are left alone (returns None)."""
    year, month = validate_year_month(year_month)
    start, end = month_date_range(year, month)
    cast_id = cast["id"]

    existing = (
        db.query("payslips")
        .filter(("cast_id", "=", cast_id), ("store_id", "=", store_id), ("year_month", "=", year_month))
        .first()
    )
    if existing is not None and existing.get("status") == PAYSLIP_STATUS_FINALIZED:
        return None

    daily_stats = _rows(
        db.query("cast_daily_stats").filter(
            ("cast_id", "=", cast_id), ("store_id", "=", store_id), ("date", ">=", start), ("date", "<=", end),
        )
    )
    daily_items = _rows(
        db.query("cast_daily_items")
        .filter(("store_id", "=", store_id), ("date", ">=", start), ("date", "<=", end))
        .filter_or([("cast_id", "=", cast_id), ("help_cast_id", "=", cast_id)])
    )
    base_orders = _rows(
        db.query("base_orders").filter(
            ("store_id", "=", store_id), ("cast_id", "=", cast_id),
            ("business_date", ">=", start), ("business_date", "<=", end),
        )
    )
    back_rates = _rows(
        db.query("cast_back_rates").filter(
            ("store_id", "=", store_id), ("cast_id", "=", cast_id), ("is_active", "=", True),
        )
    )
    attendance = _rows(
        db.query("attendance").filter(
            ("store_id", "=", store_id), ("cast_name", "=", cast["name"]), ("date", ">=", start), ("date", "<=", end),
        )
    )
    deduction_types = _rows(
        db.query("deduction_types").filter(("store_id", "=", store_id), ("is_active", "=", True))
    )
    late_type_ids = [d["id"] for d in deduction_types if d.get("type") == "penalty_late"]
    late_rules = (
        _rows(db.query("late_penalty_rules").filter(("deduction_type_id", "IN", late_type_ids)))
        if late_type_ids else []
    )
    comp_setting = select_compensation_setting(
        _rows(
            db.query("compensation_settings").filter(
                ("store_id", "=", store_id), ("cast_id", "=", cast_id), ("is_active", "=", True),
            )
        ),
        year,
        month,
    )

    payslip = build_payslip(
        cast_id, store_id, year_month, daily_stats, daily_items, base_orders, back_rates,
        attendance, deduction_types, late_rules, comp_setting, load_sales_settings(db, store_id),
    )

    db.delete_where("payslip_items", [
        ("cast_id", "=", cast_id), ("store_id", "=", store_id), ("year_month", "=", year_month),
    ])
    db.insert_many("payslip_items", payslip["items"])

    record = {k: v for k, v in payslip.items() if k not in ("items", "compensation_type", "total_sales")}
    record["status"] = PAYSLIP_STATUS_DRAFT
    db.upsert("payslips", record, on_conflict="cast_id,store_id,year_month")
    return payslip


def recalculate_payslips(db: SupabaseDB, store_id: Optional[int], year_month: str) -> dict[str, Any]:
    """Recalculate every active cast of one store (or of all stores)."""
    validate_year_month(year_month)
    if store_id is not None:
        store_ids = [store_id]
    else:
        store_ids = [s.id for s in db.query("stores").order_by("id ASC").all()]

    processed = 0
    errors = 0
    for sid in store_ids:
        casts = db.query("casts").filter(("store_id", "=", sid), ("is_active", "=", True)).all()
        for cast in casts:
            try:
                calculate_payslip_for_cast(db, sid, cast.to_dict(), year_month)
                processed += 1
            except Exception:
                errors += 1
                logger.exception("Payslip calculation failed: store=%s cast=%s month=%s", sid, cast.id, year_month)

    logger.info("Payslips recalculated: month=%s processed=%s errors=%s", year_month, processed, errors)
    return {"processed": processed, "errors": errors, "timestamp": utc_now().isoformat()}


def _get_payslip(db: SupabaseDB, store_id: int, cast_id: int, year_month: str):
    row = (
        db.query("payslips")
        .filter(("cast_id", "=", cast_id), ("store_id", "=", store_id), ("year_month", "=", year_month))
        .first()
    )
    if row is None:
        raise LookupError("Payslip not found")
    return row


def finalize_payslip(db: SupabaseDB, store_id: int, cast_id: int, year_month: str) -> dict:
    row = _get_payslip(db, store_id, cast_id, year_month)
    row.status = PAYSLIP_STATUS_FINALIZED
    row.finalized_at = utc_now()
    db.update(row)
    return row.to_dict()


def unfinalize_payslip(db: SupabaseDB, store_id: int, cast_id: int, year_month: str) -> dict:
    row = _get_payslip(db, store_id, cast_id, year_month)
    row.status = PAYSLIP_STATUS_DRAFT
    row.finalized_at = None
    db.update(row)
    return row.to_dict()


def get_payslip(db: SupabaseDB, store_id: int, cast_id: int, year_month: str) -> Optional[dict]:
    try:
        return _get_payslip(db, store_id, cast_id, year_month).to_dict()
    except LookupError:
        return None


# ---------------------------------------------------------------------------
# Summary list
# ---------------------------------------------------------------------------

def split_deductions(deduction_details: list[dict]) -> dict[str, int]:
    daily_payment = 0
    withholding_tax = 0
    other = 0
    for d in deduction_details or []:
        amount = d.get("amount") or 0
        if d.get("type") == DEDUCTION_DAILY_PAYMENT:
            daily_payment += amount
        elif d.get("type") == DEDUCTION_PERCENTAGE:
            withholding_tax += amount
        else:
            other += amount
    return {"daily_payment": daily_payment, "withholding_tax": withholding_tax, "other_deductions": other}


def list_payslip_summaries(db: SupabaseDB, store_id: int, year_month: str) -> list[dict]:
    validate_year_month(year_month)
    casts = db.query("casts").filter(("store_id", "=", store_id), ("is_active", "=", True)).order_by("name ASC").all()
    payslips = {
        row.cast_id: row.to_dict()
        for row in db.query("payslips").filter(("store_id", "=", store_id), ("year_month", "=", year_month)).all()
    }

    summaries = []
    for cast in casts:
        payslip = payslips.get(cast.id) or {}
        summary = {
            "cast_id": cast.id,
            "cast_name": cast.name,
            "status": payslip.get("status"),
            "work_days": payslip.get("work_days") or 0,
            "total_hours": payslip.get("total_hours") or 0,
            "hourly_income": payslip.get("hourly_income") or 0,
            "sales_back": payslip.get("sales_back") or 0,
            "product_back": payslip.get("product_back") or 0,
            "fixed_amount": payslip.get("fixed_amount") or 0,
            "gross_total": payslip.get("gross_total") or 0,
            "total_deduction": payslip.get("total_deduction") or 0,
            "net_payment": payslip.get("net_payment") or 0,
        }
        summary.update(split_deductions(payslip.get("deduction_details") or []))
        summaries.append(summary)
    return summaries


def payslip_summaries_csv(summaries: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow([label for _, label in SUMMARY_CSV_COLUMNS])
    for summary in summaries:
        writer.writerow([summary.get(key, "") for key, _ in SUMMARY_CSV_COLUMNS])
    return "\ufeff" + buf.getvalue()
