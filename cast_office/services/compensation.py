"""
Compensation rules: which monthly setting applies to a cast, which
compensation type wins, sales back, late penalties and deductions.
"""
from __future__ import annotations

import math
from typing import Any, Optional

from cast_office.utils import round_half_up


DEDUCTION_DAILY_PAYMENT = "daily_payment"
DEDUCTION_PENALTY_LATE = "penalty_late"
DEDUCTION_PENALTY_STATUS = "penalty_status"
DEDUCTION_FIXED = "fixed"
DEDUCTION_PERCENTAGE = "percentage"
DEDUCTION_TYPES = (
    DEDUCTION_DAILY_PAYMENT,
    DEDUCTION_PENALTY_LATE,
    DEDUCTION_PENALTY_STATUS,
    DEDUCTION_FIXED,
    DEDUCTION_PERCENTAGE,
)
LATE_CALCULATION_TYPES = ("fixed", "cumulative", "tiered")
DAILY_PAYMENT_LABEL = "日払い"
LATE_PENALTY_LABEL = "遅刻罰金"


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _period_key(setting: dict) -> tuple[int, int]:
    return int(setting.get("target_year") or 0), int(setting.get("target_month") or 0)


def select_compensation_setting(settings: list[dict], year: int, month: int) -> Optional[dict]:
    """Exact month > latest earlier month > undated default > latest dated > anything."""
    if not settings:
        return None
    for setting in settings:
        if setting.get("target_year") == year and setting.get("target_month") == month:
            return setting

    dated = [s for s in settings if s.get("target_year") is not None and s.get("target_month") is not None]
    earlier = [s for s in dated if _period_key(s) <= (year, month)]
    if earlier:
        return max(earlier, key=_period_key)

    for setting in settings:
        if setting.get("target_year") is None and setting.get("target_month") is None:
            return setting

    if dated:
        return max(dated, key=_period_key)
    return settings[0]


def group_settings_by_cast(rows: list[dict], year: int, month: int) -> dict[int, dict]:
    by_cast: dict[int, list[dict]] = {}
    for row in rows:
        by_cast.setdefault(row["cast_id"], []).append(row)
    resolved = {}
    for cast_id, candidates in by_cast.items():
        selected = select_compensation_setting(candidates, year, month)
        if selected is not None:
            resolved[cast_id] = selected
    return resolved


def active_compensation_types(setting: Optional[dict]) -> list[dict]:
    if not setting:
        return []
    return [t for t in (setting.get("compensation_types") or []) if t.get("is_enabled") is not False]


def compute_sales_back(comp_type: dict, total_sales: float) -> int:
    if comp_type.get("use_sliding_rate") and comp_type.get("sliding_rates"):
        for tier in comp_type["sliding_rates"]:
            tier_min = _number(tier.get("min"))
            tier_max = _number(tier.get("max"))
            if total_sales >= tier_min and (tier_max == 0 or total_sales <= tier_max):
                return round_half_up(total_sales * _number(tier.get("rate")) / 100)
        return 0
    return round_half_up(total_sales * _number(comp_type.get("commission_rate")) / 100)


def compensation_breakdown(
    comp_type: Optional[dict],
    wage_amount: float,
    total_sales: float,
    product_back: float,
) -> dict[str, Any]:
    """Gross pay under one compensation type. Wage only counts when the type has an hourly rate."""
    if comp_type is None:
        return {
            "type_id": None,
            "type_name": None,
            "use_wage": False,
            "sales_back": 0,
            "fixed_amount": 0,
            "gross": product_back,
        }
    fixed_amount = int(_number(comp_type.get("fixed_amount")))
    sales_back = compute_sales_back(comp_type, total_sales)
    use_wage = _number(comp_type.get("hourly_rate")) > 0
    gross = (wage_amount if use_wage else 0) + sales_back + product_back + fixed_amount
    return {
        "type_id": comp_type.get("id"),
        "type_name": comp_type.get("name"),
        "use_wage": use_wage,
        "sales_back": sales_back,
        "fixed_amount": fixed_amount,
        "gross": gross,
    }


def select_compensation(
    setting: Optional[dict],
    wage_amount: float,
    total_sales: float,
    product_back: float,
) -> dict[str, Any]:
    types = active_compensation_types(setting)
    if setting and setting.get("payment_selection_method") == "specific" and setting.get("selected_compensation_type_id"):
        chosen = next((t for t in types if t.get("id") == setting["selected_compensation_type_id"]), None)
        return compensation_breakdown(chosen, wage_amount, total_sales, product_back)

    best: Optional[dict] = None
    for comp_type in types:
        candidate = compensation_breakdown(comp_type, wage_amount, total_sales, product_back)
        if best is None or candidate["gross"] > best["gross"]:
            best = candidate
    return best or compensation_breakdown(None, wage_amount, total_sales, product_back)


def calculate_late_penalty(late_minutes: float, rule: dict) -> int:
    if not late_minutes or late_minutes <= 0:
        return 0
    calculation_type = rule.get("calculation_type")
    if calculation_type == "fixed":
        return int(_number(rule.get("fixed_amount")))
    if calculation_type == "cumulative":
        interval = _number(rule.get("interval_minutes"))
        if interval <= 0:
            return 0
        penalty = math.ceil(late_minutes / interval) * _number(rule.get("amount_per_interval"))
        max_amount = _number(rule.get("max_amount"))
        if max_amount > 0:
            penalty = min(penalty, max_amount)
        return int(penalty)
    if calculation_type == "tiered":
        amount = 0
        for tier in sorted(rule.get("tiers") or [], key=lambda t: _number(t.get("minutes"))):
            if late_minutes >= _number(tier.get("minutes")):
                amount = int(_number(tier.get("amount")))
        return amount
    return 0


def _is_enabled(deduction_id: Any, enabled_ids: list) -> bool:
    return not enabled_ids or deduction_id in enabled_ids


def calculate_deductions(
    gross: float,
    attendance: list[dict],
    deduction_types: list[dict],
    late_rules: list[dict],
    enabled_ids: Optional[list] = None,
) -> list[dict]:
    enabled_ids = list(enabled_ids or [])
    deductions: list[dict] = []

    paid_days = [a for a in attendance if _number(a.get("daily_payment")) > 0]
    total_daily_payment = sum(int(_number(a.get("daily_payment"))) for a in paid_days)
    if total_daily_payment > 0:
        deductions.append({
            "name": DAILY_PAYMENT_LABEL,
            "type": DEDUCTION_DAILY_PAYMENT,
            "count": len(paid_days),
            "amount": total_daily_payment,
        })

    late_type = next(
        (d for d in deduction_types if d.get("type") == DEDUCTION_PENALTY_LATE and _is_enabled(d.get("id"), enabled_ids)),
        None,
    )
    if late_type is not None:
        rule = next((r for r in late_rules if r.get("deduction_type_id") == late_type.get("id")), None)
        if rule is not None:
            late_days = [a for a in attendance if _number(a.get("late_minutes")) > 0]
            total_penalty = sum(calculate_late_penalty(_number(a.get("late_minutes")), rule) for a in late_days)
            if total_penalty > 0:
                deductions.append({
                    "name": late_type.get("name") or LATE_PENALTY_LABEL,
                    "type": DEDUCTION_PENALTY_LATE,
                    "count": len(late_days),
                    "amount": total_penalty,
                })

    for d in deduction_types:
        if d.get("type") != DEDUCTION_PENALTY_STATUS or not d.get("attendance_status_id"):
            continue
        if not _is_enabled(d.get("id"), enabled_ids):
            continue
        status_id = str(d["attendance_status_id"])
        count = sum(1 for a in attendance if a.get("status_id") is not None and str(a["status_id"]) == status_id)
        if count > 0:
            deductions.append({
                "name": d.get("name"),
                "type": DEDUCTION_PENALTY_STATUS,
                "count": count,
                "amount": int(_number(d.get("penalty_amount")) * count),
            })

    for d in deduction_types:
        if d.get("type") != DEDUCTION_FIXED or not _is_enabled(d.get("id"), enabled_ids):
            continue
        amount = int(_number(d.get("default_amount")))
        if amount > 0:
            deductions.append({"name": d.get("name"), "type": DEDUCTION_FIXED, "amount": amount})

    for d in deduction_types:
        if d.get("type") != DEDUCTION_PERCENTAGE or not d.get("percentage"):
            continue
        if not _is_enabled(d.get("id"), enabled_ids):
            continue
        percentage = _number(d.get("percentage"))
        amount = round_half_up(gross * percentage / 100)
        if amount > 0:
            deductions.append({
                "name": d.get("name"),
                "type": DEDUCTION_PERCENTAGE,
                "percentage": percentage,
                "amount": amount,
            })

    return deductions
