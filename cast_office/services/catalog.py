"""
Master data for a store: casts, product categories, products, deduction
rules, stores, compensation settings and cast back rates.

Domain errors are ValueError (bad input) and LookupError (missing row);
the routes turn them into 400 / 404.
"""
from __future__ import annotations

import csv
import io
import uuid
from typing import Any, Optional

from cast_office.r2 import CAST_PHOTO_PREFIX, object_key, r2_delete, r2_upload
from cast_office.services.compensation import DEDUCTION_TYPES, LATE_CALCULATION_TYPES
from cast_office.supabase_client import SupabaseDB


CAST_FIELDS = (
    "name", "employee_name", "status", "hire_date", "resignation_date", "birthday",
    "twitter", "instagram", "show_in_pos", "is_active", "display_order",
)
PRODUCT_FIELDS = ("name", "price", "category_id", "display_order", "is_active", "needs_cast")
CATEGORY_FIELDS = ("name", "display_order", "show_oshi_first")
DEDUCTION_FIELDS = (
    "name", "type", "percentage", "default_amount", "attendance_status_id", "penalty_amount",
    "is_active", "display_order",
)
LATE_RULE_FIELDS = ("calculation_type", "fixed_amount", "interval_minutes", "amount_per_interval", "max_amount", "tiers")
STORE_FIELDS = ("name", "is_active")
COMPENSATION_FIELDS = (
    "status_id", "status_locked", "hourly_wage_override", "min_days_rule_enabled", "first_month_exempt_override",
    "enabled_deduction_ids", "compensation_types",
    "payment_selection_method", "selected_compensation_type_id", "help_back_calculation_method",
    "is_active",
)
BACK_RATE_FIELDS = (
    "category", "product_name", "back_type", "back_ratio", "back_fixed_amount",
    "self_back_ratio", "help_back_ratio", "is_active",
)

CATEGORY_CSV_HEADER = ["カテゴリー名", "表示順", "推しファースト"]
PRODUCT_CSV_HEADER = ["商品名", "価格", "カテゴリー", "表示順", "有効", "指名必須"]
CSV_BOM = "\ufeff"

ALLOWED_PHOTO_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp", "image/gif": ".gif"}


def _pick(data: dict, fields: tuple[str, ...]) -> dict[str, Any]:
    return {k: data[k] for k in fields if k in data}


def _get_owned(db: SupabaseDB, table: str, row_id: Any, store_id: int, label: str):
    row = db.get(table, "id", row_id)
    if row is None or row.get("store_id") != store_id:
        raise LookupError(f"{label} not found")
    return row


def _apply(db: SupabaseDB, row, values: dict) -> dict:
    for key, value in values.items():
        setattr(row, key, value)
    db.update(row)
    return row.to_dict()


def _write_csv(header: list[str], rows: list[list[Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(header)
    writer.writerows(rows)
    return CSV_BOM + buf.getvalue()


def _read_csv(text: str) -> list[list[str]]:
    text = text.lstrip(CSV_BOM)
    rows = [[cell.strip() for cell in row] for row in csv.reader(io.StringIO(text))]
    return [row for row in rows if any(row)]


# ---------------------------------------------------------------------------
# Casts
# ---------------------------------------------------------------------------

def list_casts(db: SupabaseDB, store_id: int, include_inactive: bool = False) -> list[dict]:
    q = db.query("casts").filter(("store_id", "=", store_id))
    if not include_inactive:
        q = q.filter(("is_active", "=", True))
    return [row.to_dict() for row in q.order_by("display_order ASC", "name ASC").all()]


def _ensure_unique_cast_name(db: SupabaseDB, store_id: int, name: str, exclude_id: Any = None) -> None:
    existing = db.query("casts").filter(("store_id", "=", store_id), ("name", "=", name)).first()
    if existing is not None and existing.id != exclude_id:
        raise ValueError(f"「{name}」は既に登録されています")


def create_cast(db: SupabaseDB, store_id: int, data: dict) -> dict:
    values = _pick(data, CAST_FIELDS)
    name = (values.get("name") or "").strip()
    if not name:
        raise ValueError("キャスト名を入力してください")
    _ensure_unique_cast_name(db, store_id, name)
    values.update({"name": name, "store_id": store_id})
    values.setdefault("is_active", True)
    values.setdefault("show_in_pos", True)
    return db.insert("casts", values).to_dict()


def update_cast(db: SupabaseDB, store_id: int, cast_id: int, data: dict) -> dict:
    row = _get_owned(db, "casts", cast_id, store_id, "Cast")
    values = _pick(data, CAST_FIELDS)
    if "name" in values:
        values["name"] = (values["name"] or "").strip()
        if not values["name"]:
            raise ValueError("キャスト名を入力してください")
        _ensure_unique_cast_name(db, store_id, values["name"], exclude_id=row.id)
    return _apply(db, row, values)


def deactivate_cast(db: SupabaseDB, store_id: int, cast_id: int) -> dict:
    row = _get_owned(db, "casts", cast_id, store_id, "Cast")
    return _apply(db, row, {"is_active": False, "show_in_pos": False})


def delete_cast(db: SupabaseDB, store_id: int, cast_id: int) -> None:
    row = _get_owned(db, "casts", cast_id, store_id, "Cast")
    if row.get("photo_path"):
        r2_delete([row.photo_path])
    db.delete_row("casts", "id", row.id)


def upload_cast_photo(
    db: SupabaseDB, store_id: int, cast_id: int, data: bytes, content_type: Optional[str],
) -> dict:
    row = _get_owned(db, "casts", cast_id, store_id, "Cast")
    suffix = ALLOWED_PHOTO_TYPES.get(content_type or "")
    if suffix is None:
        raise ValueError("画像ファイルを選択してください")
    if not data:
        raise ValueError("ファイルが空です")

    key = object_key(CAST_PHOTO_PREFIX, f"{store_id}/{cast_id}_{uuid.uuid4().hex[:8]}{suffix}")
    r2_upload(key, data, content_type)
    old_path = row.get("photo_path")
    result = _apply(db, row, {"photo_path": key})
    if old_path and old_path != key:
        r2_delete([old_path])
    return result


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def list_categories(db: SupabaseDB, store_id: int) -> list[dict]:
    rows = db.query("product_categories").filter(("store_id", "=", store_id)).order_by("display_order ASC").all()
    return [row.to_dict() for row in rows]


def _ensure_unique_category(db: SupabaseDB, store_id: int, name: str, exclude_id: Any = None) -> None:
    existing = db.query("product_categories").filter(("store_id", "=", store_id), ("name", "=", name)).first()
    if existing is not None and existing.id != exclude_id:
        raise ValueError(f"「{name}」は既に登録されています")


def create_category(db: SupabaseDB, store_id: int, data: dict) -> dict:
    values = _pick(data, CATEGORY_FIELDS)
    name = (values.get("name") or "").strip()
    if not name:
        raise ValueError("カテゴリー名を入力してください")
    _ensure_unique_category(db, store_id, name)
    if "display_order" not in values:
        values["display_order"] = len(list_categories(db, store_id))
    values.update({"name": name, "store_id": store_id})
    values.setdefault("show_oshi_first", False)
    return db.insert("product_categories", values).to_dict()


def update_category(db: SupabaseDB, store_id: int, category_id: int, data: dict) -> dict:
    row = _get_owned(db, "product_categories", category_id, store_id, "Category")
    values = _pick(data, CATEGORY_FIELDS)
    if "name" in values:
        values["name"] = (values["name"] or "").strip()
        if not values["name"]:
            raise ValueError("カテゴリー名を入力してください")
        _ensure_unique_category(db, store_id, values["name"], exclude_id=row.id)
    return _apply(db, row, values)


def delete_category(db: SupabaseDB, store_id: int, category_id: int) -> None:
    row = _get_owned(db, "product_categories", category_id, store_id, "Category")
    db.delete_row("product_categories", "id", row.id)


def categories_to_csv(categories: list[dict]) -> str:
    return _write_csv(CATEGORY_CSV_HEADER, [
        [c["name"], c.get("display_order") or 0, "ON" if c.get("show_oshi_first") else "OFF"]
        for c in categories
    ])


def parse_categories_csv(text: str) -> tuple[list[dict], list[str]]:
    """Validate every data row. Line numbers count the header as line 1."""
    rows = _read_csv(text)
    if len(rows) < 2:
        return [], ["CSVファイルにデータがありません"]

    parsed: list[dict] = []
    errors: list[str] = []
    for i, cells in enumerate(rows[1:]):
        line = i + 2
        if len(cells) < 3:
            errors.append(f"{line}行目: 列数が不足しています（3列必要）")
            continue
        name, order_raw, oshi_raw = cells[:3]
        if not name:
            errors.append(f"{line}行目: カテゴリー名が空です")
            continue
        try:
            display_order = int(order_raw)
        except ValueError:
            display_order = -1
        if display_order < 0:
            errors.append(f"{line}行目: 表示順「{order_raw}」が不正です")
            continue
        if oshi_raw not in ("ON", "OFF"):
            errors.append(f"{line}行目: 推しファースト「{oshi_raw}」が不正です（「ON」または「OFF」を指定してください）")
            continue
        parsed.append({"name": name, "display_order": display_order, "show_oshi_first": oshi_raw == "ON"})
    return parsed, errors


def import_categories_csv(db: SupabaseDB, store_id: int, text: str) -> dict[str, Any]:
    """Replace the store's categories with the file's rows. Nothing changes if any row is invalid."""
    parsed, errors = parse_categories_csv(text)
    if errors:
        return {"success": False, "imported": 0, "errors": errors}
    db.delete_where("product_categories", [("store_id", "=", store_id)])
    db.insert_many("product_categories", [dict(row, store_id=store_id) for row in parsed])
    return {"success": True, "imported": len(parsed), "errors": []}


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def list_products(db: SupabaseDB, store_id: int, category_id: Optional[int] = None) -> list[dict]:
    q = db.query("products").filter(("store_id", "=", store_id))
    if category_id is not None:
        q = q.filter(("category_id", "=", category_id))
    return [row.to_dict() for row in q.order_by("display_order ASC").all()]


def _validate_product(values: dict) -> None:
    if "name" in values:
        values["name"] = (values["name"] or "").strip()
        if not values["name"]:
            raise ValueError("商品名を入力してください")
    if "price" in values:
        try:
            values["price"] = int(values["price"])
        except (TypeError, ValueError) as exc:
            raise ValueError("価格が不正です") from exc
        if values["price"] < 0:
            raise ValueError("価格が不正です")


def create_product(db: SupabaseDB, store_id: int, data: dict) -> dict:
    values = _pick(data, PRODUCT_FIELDS)
    if not values.get("name"):
        raise ValueError("商品名を入力してください")
    _validate_product(values)
    if values.get("category_id") is not None:
        _get_owned(db, "product_categories", values["category_id"], store_id, "Category")
    values["store_id"] = store_id
    values.setdefault("price", 0)
    values.setdefault("display_order", 0)
    values.setdefault("is_active", True)
    values.setdefault("needs_cast", True)
    return db.insert("products", values).to_dict()


def update_product(db: SupabaseDB, store_id: int, product_id: int, data: dict) -> dict:
    row = _get_owned(db, "products", product_id, store_id, "Product")
    values = _pick(data, PRODUCT_FIELDS)
    _validate_product(values)
    if values.get("category_id") is not None:
        _get_owned(db, "product_categories", values["category_id"], store_id, "Category")
    return _apply(db, row, values)


def delete_product(db: SupabaseDB, store_id: int, product_id: int) -> None:
    row = _get_owned(db, "products", product_id, store_id, "Product")
    db.delete_row("products", "id", row.id)


def products_to_csv(products: list[dict], categories: list[dict]) -> str:
    category_names = {c["id"]: c["name"] for c in categories}
    return _write_csv(PRODUCT_CSV_HEADER, [
        [
            p["name"],
            p.get("price") or 0,
            category_names.get(p.get("category_id"), ""),
            p.get("display_order") or 0,
            "有効" if p.get("is_active") else "無効",
            "必須" if p.get("needs_cast") else "不要",
        ]
        for p in products
    ])


def import_products_csv(db: SupabaseDB, store_id: int, text: str) -> dict[str, int]:
    """Insert one product per row. Rows with an unknown category are counted as errors."""
    rows = _read_csv(text)
    category_ids = {c["name"]: c["id"] for c in list_categories(db, store_id)}
    success = 0
    errors = 0
    for cells in rows[1:]:
        if len(cells) < 6:
            continue
        name, price_raw, category_name, order_raw, active_raw, needs_cast_raw = cells[:6]
        category_id = category_ids.get(category_name)
        if category_id is None or not name:
            errors += 1
            continue
        try:
            price = int(price_raw)
            display_order = int(order_raw or 0)
        except ValueError:
            errors += 1
            continue
        db.insert("products", {
            "store_id": store_id,
            "name": name,
            "price": price,
            "category_id": category_id,
            "display_order": display_order,
            "is_active": active_raw == "有効",
            "needs_cast": needs_cast_raw == "必須",
        })
        success += 1
    return {"success": success, "errors": errors}


# ---------------------------------------------------------------------------
# Deduction types / late penalty rules
# ---------------------------------------------------------------------------

def list_deduction_types(db: SupabaseDB, store_id: int) -> list[dict]:
    rows = db.query("deduction_types").filter(("store_id", "=", store_id)).order_by("id ASC").all()
    return [row.to_dict() for row in rows]


def _validate_deduction(values: dict) -> None:
    if "type" in values and values["type"] not in DEDUCTION_TYPES:
        raise ValueError(f"Invalid deduction type: {values['type']}")
    if "name" in values and not (values["name"] or "").strip():
        raise ValueError("控除名を入力してください")
    percentage = values.get("percentage")
    if percentage is not None and not 0 <= float(percentage) <= 100:
        raise ValueError("Invalid percentage: must be between 0 and 100")


def create_deduction_type(db: SupabaseDB, store_id: int, data: dict) -> dict:
    values = _pick(data, DEDUCTION_FIELDS)
    if not values.get("name") or not values.get("type"):
        raise ValueError("name and type are required")
    _validate_deduction(values)
    values["store_id"] = store_id
    values.setdefault("is_active", True)
    return db.insert("deduction_types", values).to_dict()


def update_deduction_type(db: SupabaseDB, store_id: int, deduction_id: int, data: dict) -> dict:
    row = _get_owned(db, "deduction_types", deduction_id, store_id, "Deduction type")
    values = _pick(data, DEDUCTION_FIELDS)
    _validate_deduction(values)
    return _apply(db, row, values)


def delete_deduction_type(db: SupabaseDB, store_id: int, deduction_id: int) -> None:
    row = _get_owned(db, "deduction_types", deduction_id, store_id, "Deduction type")
    db.delete_where("late_penalty_rules", [("deduction_type_id", "=", row.id)])
    db.delete_row("deduction_types", "id", row.id)


def get_late_penalty_rule(db: SupabaseDB, store_id: int, deduction_id: int) -> Optional[dict]:
    _get_owned(db, "deduction_types", deduction_id, store_id, "Deduction type")
    row = db.query("late_penalty_rules").filter(("deduction_type_id", "=", deduction_id)).first()
    return row.to_dict() if row else None


def upsert_late_penalty_rule(db: SupabaseDB, store_id: int, deduction_id: int, data: dict) -> dict:
    deduction = _get_owned(db, "deduction_types", deduction_id, store_id, "Deduction type")
    if deduction.get("type") != "penalty_late":
        raise ValueError("Late penalty rules belong to penalty_late deductions")
    values = _pick(data, LATE_RULE_FIELDS)
    if values.get("calculation_type") not in LATE_CALCULATION_TYPES:
        raise ValueError(f"Invalid calculation_type: {values.get('calculation_type')}")
    if values["calculation_type"] == "cumulative" and not values.get("interval_minutes"):
        raise ValueError("interval_minutes is required for cumulative rules")
    values["deduction_type_id"] = deduction_id
    return db.upsert("late_penalty_rules", values, on_conflict="deduction_type_id")[0].to_dict()


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

def list_stores(db: SupabaseDB, active_only: bool = False) -> list[dict]:
    q = db.query("stores")
    if active_only:
        q = q.filter(("is_active", "=", True))
    return [row.to_dict() for row in q.order_by("id ASC").all()]


def create_store(db: SupabaseDB, data: dict) -> dict:
    values = _pick(data, STORE_FIELDS)
    values["name"] = (values.get("name") or "").strip()
    if not values["name"]:
        raise ValueError("店舗名を入力してください")
    values.setdefault("is_active", True)
    return db.insert("stores", values).to_dict()


def update_store(db: SupabaseDB, store_id: int, data: dict) -> dict:
    row = db.get("stores", "id", store_id)
    if row is None:
        raise LookupError("Store not found")
    values = _pick(data, STORE_FIELDS)
    if "name" in values and not (values["name"] or "").strip():
        raise ValueError("店舗名を入力してください")
    return _apply(db, row, values)


# ---------------------------------------------------------------------------
# Compensation settings / back rates
# ---------------------------------------------------------------------------

def get_compensation_setting(
    db: SupabaseDB, store_id: int, cast_id: int, year: Optional[int], month: Optional[int],
) -> Optional[dict]:
    q = db.query("compensation_settings").filter(("store_id", "=", store_id), ("cast_id", "=", cast_id))
    if year is None or month is None:
        q = q.filter(("target_year", "IS NULL", None), ("target_month", "IS NULL", None))
    else:
        q = q.filter(("target_year", "=", year), ("target_month", "=", month))
    row = q.first()
    return row.to_dict() if row else None


def upsert_compensation_setting(
    db: SupabaseDB, store_id: int, cast_id: int, year: Optional[int], month: Optional[int], data: dict,
) -> dict:
    _get_owned(db, "casts", cast_id, store_id, "Cast")
    values = _pick(data, COMPENSATION_FIELDS)
    if values.get("payment_selection_method") not in (None, "highest", "specific"):
        raise ValueError("payment_selection_method must be highest or specific")
    if month is not None and not 1 <= month <= 12:
        raise ValueError("Invalid month")

    existing = get_compensation_setting(db, store_id, cast_id, year, month)
    if existing is not None:
        row = db.get("compensation_settings", "id", existing["id"])
        return _apply(db, row, values)

    values.update({"store_id": store_id, "cast_id": cast_id, "target_year": year, "target_month": month})
    values.setdefault("is_active", True)
    values.setdefault("payment_selection_method", "highest")
    return db.insert("compensation_settings", values).to_dict()


def list_back_rates(db: SupabaseDB, store_id: int, cast_id: Optional[int] = None) -> list[dict]:
    q = db.query("cast_back_rates").filter(("store_id", "=", store_id))
    if cast_id is not None:
        q = q.filter(("cast_id", "=", cast_id))
    return [row.to_dict() for row in q.order_by("cast_id ASC", "category ASC").all()]


def upsert_back_rates(db: SupabaseDB, store_id: int, cast_id: int, rates: list[dict]) -> int:
    """Replace-or-add a cast's back rates, matched on (category, product_name)."""
    _get_owned(db, "casts", cast_id, store_id, "Cast")
    existing = {
        (row.get("category"), row.get("product_name")): row
        for row in db.query("cast_back_rates").filter(("store_id", "=", store_id), ("cast_id", "=", cast_id)).all()
    }
    saved = 0
    for rate in rates:
        values = _pick(rate, BACK_RATE_FIELDS)
        if values.get("back_type", "ratio") not in ("ratio", "fixed"):
            raise ValueError("back_type must be ratio or fixed")
        key = (values.get("category"), values.get("product_name"))
        row = existing.get(key)
        if row is not None:
            _apply(db, row, values)
        else:
            values.update({"store_id": store_id, "cast_id": cast_id})
            values.setdefault("back_type", "ratio")
            values.setdefault("is_active", True)
            db.insert("cast_back_rates", values)
        saved += 1
    return saved
