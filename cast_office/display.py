"""Display/label helper functions for UI rendering."""
from __future__ import annotations

from typing import Optional


def display_role(role: Optional[str]) -> str:
    mapping = {
        "super_admin": "全店舗管理者",
        "store_admin": "店舗管理者",
    }
    return mapping.get(role or "", role or "-")


def display_payslip_status(status_value: Optional[str]) -> str:
    if not status_value:
        return "未計算"
    mapping = {
        "draft": "下書き",
        "finalized": "確定済み",
    }
    return mapping.get(status_value, status_value)


def payslip_status_pill_class(status_value: Optional[str]) -> str:
    mapping = {
        "draft": "status-draft",
        "finalized": "status-finalized",
    }
    return mapping.get(status_value or "", "status-none")


def display_sales_type(sales_type: Optional[str]) -> str:
    mapping = {
        "self": "指名",
        "help": "ヘルプ",
    }
    return mapping.get(sales_type or "", sales_type or "-")


def display_deduction_type(deduction_type: str) -> str:
    mapping = {
        "daily_payment": "日払い",
        "penalty_late": "遅刻罰金",
        "penalty_status": "ステータス罰金",
        "fixed": "固定控除",
        "percentage": "源泉徴収",
    }
    return mapping.get(deduction_type, deduction_type)


def display_hours(hours: object) -> str:
    try:
        value = float(hours or 0)
    except (TypeError, ValueError):
        value = 0.0
    return f"{value:.2f}h"
