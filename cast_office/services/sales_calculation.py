"""
Sales attribution and product-back ("back") calculation.

Orders come in as plain dicts (``staff_name`` holds the comma-separated
nominated casts, each ``order_items`` entry carries ``cast_name`` as a list of
cast names). Everything here is pure; loading and saving live in daily_sales.
"""
from __future__ import annotations

import math
from typing import Any, Optional

from cast_office.utils import round_half_up


SALES_TYPE_SELF = "self"
SALES_TYPE_HELP = "help"
BASE_CATEGORY = "BASE"


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------

def round_to_position(amount: float, method: Optional[str], position: int) -> float:
    method = method or "none"
    if position <= 0:
        return amount
    if method.startswith("floor"):
        return math.floor(amount / position) * position
    if method.startswith("ceil"):
        return math.ceil(amount / position) * position
    if method == "round":
        return round_half_up(amount / position) * position
    return amount


def exclude_tax(amount: float, tax_percent: int) -> int:
    return math.floor(amount * 100 / (100 + tax_percent))


def _item_cast_names(item: dict) -> list[str]:
    raw = item.get("cast_name") or []
    if isinstance(raw, str):
        return [name.strip() for name in raw.split(",") if name.strip()]
    return [name for name in raw if name]


# ---------------------------------------------------------------------------
# Daily item aggregation
# ---------------------------------------------------------------------------

class AggregationPolicy:
    """The published aggregation method's settings, resolved once per run."""

    def __init__(self, settings: dict, tax_rate: float = 0.1) -> None:
        self.method = settings.get("published_aggregation") or "item_based"
        self.is_item_based = self.method == "item_based"
        prefix = "item" if self.is_item_based else "receipt"

        def pick(name: str, default: Any) -> Any:
            value = settings.get(f"{prefix}_{name}")
            return default if value is None else value

        exclude = settings.get(f"{prefix}_exclude_consumption_tax")
        if exclude is None:
            exclude = settings.get("use_tax_excluded", False)
        self.exclude_tax = bool(exclude)
        self.help_distribution = pick("help_distribution_method", "all_to_nomination")
        self.give_help_sales = pick("help_sales_inclusion", None) == "both"
        self.help_ratio = pick("help_ratio", 50)
        self.rounding_method = pick("rounding_method", "floor_100")
        self.rounding_position = pick("rounding_position", 100)
        self.tax_percent = round_half_up(tax_rate * 100)
        self.non_help_names = set(settings.get("non_help_staff_names") or [])

    def adjust(self, amount: float) -> float:
        if self.exclude_tax:
            amount = exclude_tax(amount, self.tax_percent)
        return round_to_position(amount, self.rounding_method, self.rounding_position)


def _split_help_item_based(policy: AggregationPolicy, per_item: int, n_nominations: int) -> tuple[int, int]:
    method = policy.help_distribution
    if method == "equal":
        self_share = per_item // 2
        return self_share, (per_item - self_share) if policy.give_help_sales else 0
    if method == "ratio":
        help_amount = math.floor(per_item * policy.help_ratio / 100)
        return per_item - help_amount, help_amount if policy.give_help_sales else 0
    if method == "equal_per_person":
        share = per_item // (n_nominations + 1)
        return share, share if policy.give_help_sales else 0
    return per_item, 0


def _split_help_receipt_based(
    policy: AggregationPolicy, item_amount: int, n_nominations: int, n_help: int,
) -> tuple[int, int]:
    base = item_amount // n_nominations
    method = policy.help_distribution
    if method == "equal":
        self_share = base // 2
        return self_share, ((base - self_share) // n_help) if policy.give_help_sales else 0
    if method == "ratio":
        help_total = math.floor(base * policy.help_ratio / 100)
        return base - help_total, (help_total // n_help) if policy.give_help_sales else 0
    if method == "equal_per_person":
        per_person = item_amount // (n_nominations + n_help)
        return per_person, per_person if policy.give_help_sales else 0
    return base, 0


class _DailyItemCollector:
    def __init__(self, store_id: int, date: str, needs_cast: dict[str, bool]) -> None:
        self.store_id = store_id
        self.date = date
        self.needs_cast = needs_cast
        self.items: dict[tuple, dict] = {}
        self.free_keys: set[tuple] = set()

    def add(
        self,
        order: dict,
        item: dict,
        cast_id: int,
        help_cast_id: Optional[int],
        self_sales: int,
        help_sales: int,
        subtotal: float,
        free: bool = False,
    ) -> None:
        key = (order.get("id"), cast_id, help_cast_id, item.get("product_name"), item.get("category") or "", free)
        quantity = item.get("quantity") or 0
        existing = self.items.get(key)
        if existing is not None:
            existing["quantity"] += quantity
            existing["self_sales"] += self_sales
            existing["help_sales"] += help_sales
            existing["subtotal"] += subtotal
            return
        if free:
            self.free_keys.add(key)
        self.items[key] = {
            "cast_id": cast_id,
            "help_cast_id": help_cast_id,
            "store_id": self.store_id,
            "date": self.date,
            "order_id": order.get("id"),
            "table_number": order.get("table_number"),
            "guest_name": order.get("guest_name"),
            "category": item.get("category"),
            "product_name": item.get("product_name"),
            "quantity": quantity,
            "self_sales": self_sales,
            "help_sales": help_sales,
            "needs_cast": self.needs_cast.get(item.get("product_name"), True),
            "subtotal": subtotal,
            "self_back_rate": 0,
            "self_back_amount": 0,
            "help_back_rate": 0,
            "help_back_amount": 0,
            "is_self": help_cast_id is None,
            "self_sales_item_based": 0,
            "self_sales_receipt_based": 0,
        }

    def finish(self) -> list[dict]:
        rows = []
        for key, row in self.items.items():
            if key in self.free_keys:
                # free table: product back only, no sales credit
                row["self_sales_item_based"] = 0
                row["self_sales_receipt_based"] = 0
            else:
                row["self_sales_item_based"] = row["self_sales"] if row["needs_cast"] else 0
                row["self_sales_receipt_based"] = row["self_sales"] if row["self_sales"] > 0 else row["subtotal"]
            rows.append(row)
        return rows


def aggregate_cast_daily_items(
    orders: list[dict],
    casts_by_name: dict[str, dict],
    store_id: int,
    date: str,
    settings: dict,
    tax_rate: float = 0.1,
    product_needs_cast: Optional[dict[str, bool]] = None,
) -> list[dict]:
    """Break one business day's orders into per-cast, per-product sales rows."""
    policy = AggregationPolicy(settings, tax_rate)
    collector = _DailyItemCollector(store_id, date, product_needs_cast or {})

    for order in orders:
        staff_names = [n.strip() for n in (order.get("staff_name") or "").split(",") if n.strip()]
        nominations = [n for n in staff_names if n not in policy.non_help_names]
        if nominations and not any(name in casts_by_name for name in nominations):
            continue

        for item in order.get("order_items") or []:
            casts_on_item = [c for c in _item_cast_names(item) if c not in policy.non_help_names]
            item_amount = policy.adjust((item.get("unit_price") or 0) * (item.get("quantity") or 0))
            adjusted_subtotal = policy.adjust(item.get("subtotal") or 0)

            if not nominations:
                _aggregate_free_item(collector, order, item, casts_on_item, casts_by_name, item_amount, adjusted_subtotal)
                continue

            self_casts = [c for c in casts_on_item if c in nominations]
            help_casts = [c for c in casts_on_item if c not in nominations]
            if policy.is_item_based:
                _aggregate_item_based(
                    collector, policy, order, item, nominations, self_casts, help_casts,
                    casts_by_name, item_amount, adjusted_subtotal,
                )
            else:
                _aggregate_receipt_based(
                    collector, policy, order, item, nominations, self_casts, help_casts,
                    casts_by_name, item_amount, adjusted_subtotal,
                )

    return collector.finish()


def _aggregate_free_item(collector, order, item, casts_on_item, casts_by_name, item_amount, adjusted_subtotal):
    if not casts_on_item:
        return
    per_cast = math.floor(item_amount / len(casts_on_item))
    for cast_name in casts_on_item:
        cast = casts_by_name.get(cast_name)
        if cast is None:
            continue
        collector.add(order, item, cast["id"], None, per_cast, 0, adjusted_subtotal, free=True)


def _aggregate_item_based(
    collector, policy, order, item, nominations, self_casts, help_casts,
    casts_by_name, item_amount, adjusted_subtotal,
):
    no_cast = not self_casts and not help_casts
    for nomination in nominations:
        nomination_cast = casts_by_name.get(nomination)
        if nomination_cast is None:
            continue
        if no_cast:
            collector.add(order, item, nomination_cast["id"], None, 0, 0, adjusted_subtotal)
            continue

        if nomination in self_casts:
            per_cast = math.floor(item_amount / len(self_casts))
            collector.add(order, item, nomination_cast["id"], None, per_cast, 0, adjusted_subtotal)

        for help_name in help_casts:
            help_cast = casts_by_name.get(help_name)
            if help_cast is None:
                continue
            per_item = math.floor(item_amount / len(help_casts))
            self_share, help_share = _split_help_item_based(policy, per_item, len(nominations))
            collector.add(
                order, item, nomination_cast["id"], help_cast["id"],
                self_share, help_share, adjusted_subtotal,
            )


def _aggregate_receipt_based(
    collector, policy, order, item, nominations, self_casts, help_casts,
    casts_by_name, item_amount, adjusted_subtotal,
):
    no_cast = not self_casts and not help_casts
    self_only = bool(self_casts) and not help_casts
    mixed = bool(self_casts) and bool(help_casts)

    for nomination in nominations:
        nomination_cast = casts_by_name.get(nomination)
        if nomination_cast is None:
            continue
        per_nomination = math.floor(item_amount / len(nominations))

        if no_cast or self_only:
            collector.add(order, item, nomination_cast["id"], None, per_nomination, 0, adjusted_subtotal)
            continue

        self_share, help_share = _split_help_receipt_based(
            policy, int(item_amount), len(nominations), len(help_casts),
        )
        for help_name in help_casts:
            help_cast = casts_by_name.get(help_name)
            if help_cast is None:
                continue
            collector.add(
                order, item, nomination_cast["id"], help_cast["id"],
                self_share, help_share, adjusted_subtotal,
            )

        if mixed and nomination in self_casts:
            self_amount = math.floor(item_amount / (len(self_casts) + len(help_casts)))
            collector.add(order, item, nomination_cast["id"], None, self_amount, 0, adjusted_subtotal)


def build_base_items(base_orders: list[dict], store_id: int, date: str) -> list[dict]:
    """BASE (online shop) orders become self rows under the BASE category."""
    grouped: dict[tuple, dict] = {}
    for order in base_orders:
        if not order.get("cast_id") or not order.get("product_name"):
            continue
        quantity = order.get("quantity") or 0
        amount = (order.get("actual_price") or 0) * quantity
        key = (order["cast_id"], order["product_name"])
        existing = grouped.get(key)
        if existing is not None:
            existing["quantity"] += quantity
            for field in ("self_sales", "subtotal", "self_sales_item_based", "self_sales_receipt_based"):
                existing[field] += amount
            continue
        grouped[key] = {
            "cast_id": order["cast_id"],
            "help_cast_id": None,
            "store_id": store_id,
            "date": date,
            "order_id": None,
            "table_number": None,
            "guest_name": None,
            "category": BASE_CATEGORY,
            "product_name": order["product_name"],
            "quantity": quantity,
            "self_sales": amount,
            "help_sales": 0,
            "needs_cast": True,
            "subtotal": amount,
            "self_back_rate": 0,
            "self_back_amount": 0,
            "help_back_rate": 0,
            "help_back_amount": 0,
            "is_self": True,
            "self_sales_item_based": amount,
            "self_sales_receipt_based": amount,
        }
    return list(grouped.values())


# ---------------------------------------------------------------------------
# Back amounts
# ---------------------------------------------------------------------------

def help_back_calculation_method(setting: Optional[dict]) -> str:
    if not setting:
        return "sales_based"
    types = setting.get("compensation_types") or []
    selected_id = setting.get("selected_compensation_type_id")
    if selected_id:
        selected = next((t for t in types if t.get("id") == selected_id), None)
        if selected and selected.get("help_back_calculation_method"):
            return selected["help_back_calculation_method"]
    # only the first enabled type is consulted
    enabled = next((t for t in types if t.get("is_enabled")), None)
    if enabled and enabled.get("help_back_calculation_method"):
        return enabled["help_back_calculation_method"]
    return setting.get("help_back_calculation_method") or "sales_based"


def apply_back_rates(
    items: list[dict],
    back_rates: list[dict],
    compensation_by_cast: dict[int, dict],
) -> list[dict]:
    """Fill self/help back rate and amount in place from product-specific rates."""
    rate_map = {
        (r["cast_id"], r["product_name"]): r
        for r in back_rates
        if r.get("product_name")
    }
    for item in items:
        self_rate = rate_map.get((item["cast_id"], item["product_name"]))
        if self_rate is not None:
            item["self_back_rate"] = self_rate.get("self_back_ratio") or 0
            item["self_back_amount"] = math.floor(item["self_sales"] * item["self_back_rate"] / 100)

        help_cast_id = item.get("help_cast_id")
        if not help_cast_id:
            continue
        help_rate = rate_map.get((help_cast_id, item["product_name"]))
        if help_rate is None:
            continue
        item["help_back_rate"] = help_rate.get("help_back_ratio") or 0
        method = help_back_calculation_method(compensation_by_cast.get(help_cast_id))
        if method == "full_amount":
            base = item.get("subtotal") or 0
        elif method == "distributed_amount":
            base = item.get("self_sales") or 0
        else:
            base = item.get("help_sales") or 0
        item["help_back_amount"] = math.floor(base * item["help_back_rate"] / 100)
    return items
