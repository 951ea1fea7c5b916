"""Store settings: system_settings key/values and the per-store sales_settings row."""
from __future__ import annotations

from typing import Any, Optional

from cast_office.config import (
    DEFAULT_BUSINESS_DAY_CUTOFF_HOUR,
    DEFAULT_SERVICE_FEE_RATE,
    DEFAULT_TAX_RATE,
)
from cast_office.supabase_client import SupabaseDB


BUSINESS_DAY_START_HOUR_KEY = "business_day_start_hour"
TAX_RATE_KEY = "tax_rate"
SERVICE_FEE_RATE_KEY = "service_fee_rate"


def get_system_setting(db: SupabaseDB, store_id: int, setting_key: str, default_value: str) -> str:
    row = (
        db.query("system_settings")
        .filter(("store_id", "=", store_id), ("setting_key", "=", setting_key))
        .first()
    )
    if row is None or row.setting_value in (None, ""):
        return default_value
    return str(row.setting_value)


def upsert_system_setting(db: SupabaseDB, store_id: int, setting_key: str, setting_value: str):
    row = (
        db.query("system_settings")
        .filter(("store_id", "=", store_id), ("setting_key", "=", setting_key))
        .first()
    )
    normalized_value = str(setting_value).strip()
    if row is None:
        return db.insert("system_settings", {
            "store_id": store_id,
            "setting_key": setting_key,
            "setting_value": normalized_value,
        })
    row.setting_value = normalized_value
    db.update(row)
    return row


def list_system_settings(db: SupabaseDB, store_id: int) -> dict[str, str]:
    rows = db.query("system_settings").filter(("store_id", "=", store_id)).all()
    return {row.setting_key: row.setting_value for row in rows}


def _to_float(raw: Any, default: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value


def load_tax_settings(db: SupabaseDB, store_id: int) -> dict[str, float]:
    settings = list_system_settings(db, store_id)
    return {
        "tax_rate": _to_float(settings.get(TAX_RATE_KEY), DEFAULT_TAX_RATE),
        "service_fee_rate": _to_float(settings.get(SERVICE_FEE_RATE_KEY), DEFAULT_SERVICE_FEE_RATE),
    }


def business_day_cutoff_hour(db: SupabaseDB, store_id: int) -> int:
    raw = get_system_setting(db, store_id, BUSINESS_DAY_START_HOUR_KEY, str(DEFAULT_BUSINESS_DAY_CUTOFF_HOUR))
    try:
        hour = int(raw)
    except ValueError:
        return DEFAULT_BUSINESS_DAY_CUTOFF_HOUR
    if 0 <= hour <= 23:
        return hour
    return DEFAULT_BUSINESS_DAY_CUTOFF_HOUR


def default_sales_settings(store_id: Optional[int] = None) -> dict[str, Any]:
    defaults: dict[str, Any] = {
        "store_id": store_id,
        "published_aggregation": "item_based",
        "non_help_staff_names": [],
        "multi_nomination_ratios": [50, 50],
        "include_base_in_item_sales": False,
        "include_base_in_receipt_sales": False,
        # legacy fields used by the per-cast summary
        "rounding_method": "floor_100",
        "rounding_timing": "total",
        "help_ratio": 50,
        "use_tax_excluded": True,
    }
    for prefix in ("item", "receipt"):
        defaults.update({
            f"{prefix}_use_tax_excluded": True,
            f"{prefix}_exclude_consumption_tax": True,
            f"{prefix}_exclude_service_charge": False,
            f"{prefix}_help_distribution_method": "equal_all",
            f"{prefix}_help_sales_inclusion": "both",
            f"{prefix}_help_ratio": 50,
            f"{prefix}_rounding_method": "floor_100",
            f"{prefix}_rounding_position": 100,
            f"{prefix}_rounding_timing": "per_item",
        })
    return defaults


def load_sales_settings(db: SupabaseDB, store_id: int) -> dict[str, Any]:
    """Store row merged over defaults; columns left NULL keep the default."""
    settings = default_sales_settings(store_id)
    row = db.query("sales_settings").filter(("store_id", "=", store_id)).first()
    if row is not None:
        settings.update({k: v for k, v in row.to_dict().items() if v is not None})
    return settings


def upsert_sales_settings(db: SupabaseDB, store_id: int, values: dict[str, Any]) -> dict[str, Any]:
    allowed = set(default_sales_settings(store_id))
    payload = {k: v for k, v in values.items() if k in allowed}
    payload["store_id"] = store_id
    db.upsert("sales_settings", payload, on_conflict="store_id")
    return load_sales_settings(db, store_id)
