import unittest

from cast_office.services.sales_calculation import (
    BASE_CATEGORY,
    apply_back_rates,
    aggregate_cast_daily_items,
    build_base_items,
    exclude_tax,
    help_back_calculation_method,
    round_to_position,
)


CASTS_BY_NAME = {
    "Aoi": {"id": 1, "name": "Aoi"},
    "Rin": {"id": 2, "name": "Rin"},
    "Mio": {"id": 3, "name": "Mio"},
}


def _settings(**overrides):
    settings = {
        "published_aggregation": "item_based",
        "item_exclude_consumption_tax": False,
        "item_rounding_method": "none",
        "item_rounding_position": 100,
        "item_help_distribution_method": "equal",
        "item_help_sales_inclusion": "both",
        "receipt_exclude_consumption_tax": False,
        "receipt_rounding_method": "none",
        "receipt_rounding_position": 100,
        "receipt_help_distribution_method": "equal",
        "receipt_help_sales_inclusion": "both",
        "non_help_staff_names": [],
    }
    settings.update(overrides)
    return settings


def _order(staff_name, *items, order_id=100):
    return {"id": order_id, "staff_name": staff_name, "table_number": "5", "order_items": list(items)}


def _item(product, price, qty, casts, category="drink"):
    return {
        "product_name": product,
        "category": category,
        "unit_price": price,
        "quantity": qty,
        "subtotal": price * qty,
        "cast_name": casts,
    }


class RoundingTest(unittest.TestCase):
    def test_round_to_position(self):
        self.assertEqual(round_to_position(1234, "floor", 100), 1200)
        self.assertEqual(round_to_position(1234, "ceil", 100), 1300)
        self.assertEqual(round_to_position(1250, "round", 100), 1300)
        self.assertEqual(round_to_position(1234, "none", 100), 1234)
        self.assertEqual(round_to_position(1234, "floor", 0), 1234)

    def test_exclude_tax(self):
        self.assertEqual(exclude_tax(1100, 10), 1000)
        self.assertEqual(exclude_tax(1000, 10), 909)


class ItemBasedAggregationTest(unittest.TestCase):
    def test_self_item_goes_to_nomination(self):
        orders = [_order("Aoi", _item("Beer", 1000, 2, ["Aoi"]))]
        items = aggregate_cast_daily_items(orders, CASTS_BY_NAME, 1, "2026-03-01", _settings())
        self.assertEqual(len(items), 1)
        row = items[0]
        self.assertEqual(row["cast_id"], 1)
        self.assertIsNone(row["help_cast_id"])
        self.assertEqual(row["self_sales"], 2000)
        self.assertEqual(row["self_sales_item_based"], 2000)
        self.assertTrue(row["is_self"])

    def test_help_item_is_split_equally(self):
        orders = [_order("Aoi", _item("Beer", 1000, 2, ["Rin"]))]
        items = aggregate_cast_daily_items(orders, CASTS_BY_NAME, 1, "2026-03-01", _settings())
        row = items[0]
        self.assertEqual((row["cast_id"], row["help_cast_id"]), (1, 2))
        self.assertEqual(row["self_sales"], 1000)
        self.assertEqual(row["help_sales"], 1000)

    def test_help_sales_withheld_unless_included(self):
        orders = [_order("Aoi", _item("Beer", 1000, 2, ["Rin"]))]
        settings = _settings(item_help_sales_inclusion="self_only")
        row = aggregate_cast_daily_items(orders, CASTS_BY_NAME, 1, "2026-03-01", settings)[0]
        self.assertEqual(row["self_sales"], 1000)
        self.assertEqual(row["help_sales"], 0)

    def test_product_without_cast_requirement_has_no_item_based_sales(self):
        orders = [_order("Aoi", _item("Set", 5000, 1, ["Aoi"]))]
        items = aggregate_cast_daily_items(
            orders, CASTS_BY_NAME, 1, "2026-03-01", _settings(), product_needs_cast={"Set": False},
        )
        self.assertEqual(items[0]["self_sales_item_based"], 0)
        self.assertEqual(items[0]["self_sales_receipt_based"], 5000)

    def test_tax_exclusion_and_rounding(self):
        orders = [_order("Aoi", _item("Beer", 1100, 1, ["Aoi"]))]
        settings = _settings(item_exclude_consumption_tax=True, item_rounding_method="floor")
        row = aggregate_cast_daily_items(orders, CASTS_BY_NAME, 1, "2026-03-01", settings, tax_rate=0.1)[0]
        self.assertEqual(row["self_sales"], 1000)

    def test_free_table_splits_product_back_only(self):
        orders = [_order("", _item("Beer", 1000, 2, ["Aoi", "Rin"]))]
        items = aggregate_cast_daily_items(orders, CASTS_BY_NAME, 1, "2026-03-01", _settings())
        self.assertEqual(sorted(i["cast_id"] for i in items), [1, 2])
        for row in items:
            self.assertEqual(row["self_sales"], 1000)
            self.assertEqual(row["self_sales_item_based"], 0)
            self.assertEqual(row["self_sales_receipt_based"], 0)

    def test_unknown_nomination_is_skipped(self):
        orders = [_order("Stranger", _item("Beer", 1000, 1, ["Aoi"]))]
        self.assertEqual(aggregate_cast_daily_items(orders, CASTS_BY_NAME, 1, "2026-03-01", _settings()), [])


class ReceiptBasedAggregationTest(unittest.TestCase):
    def test_item_without_cast_credits_nomination(self):
        orders = [_order("Aoi", _item("Set", 6000, 1, []))]
        settings = _settings(published_aggregation="receipt_based")
        row = aggregate_cast_daily_items(orders, CASTS_BY_NAME, 1, "2026-03-01", settings)[0]
        self.assertEqual(row["cast_id"], 1)
        self.assertEqual(row["self_sales"], 6000)
        self.assertEqual(row["self_sales_receipt_based"], 6000)

    def test_mixed_item_adds_help_and_self_rows(self):
        orders = [_order("Aoi", _item("Champagne", 30000, 1, ["Aoi", "Rin"]))]
        settings = _settings(published_aggregation="receipt_based")
        items = aggregate_cast_daily_items(orders, CASTS_BY_NAME, 1, "2026-03-01", settings)
        help_row = next(i for i in items if i["help_cast_id"] == 2)
        self_row = next(i for i in items if i["help_cast_id"] is None)
        self.assertEqual(help_row["self_sales"], 15000)
        self.assertEqual(help_row["help_sales"], 15000)
        self.assertEqual(self_row["self_sales"], 15000)


class BaseItemsTest(unittest.TestCase):
    def test_groups_by_cast_and_product(self):
        base_orders = [
            {"cast_id": 1, "product_name": "Cheki", "actual_price": 1000, "quantity": 2},
            {"cast_id": 1, "product_name": "Cheki", "actual_price": 1000, "quantity": 1},
            {"cast_id": None, "product_name": "Cheki", "actual_price": 1000, "quantity": 1},
        ]
        items = build_base_items(base_orders, 1, "2026-03-01")
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["category"], BASE_CATEGORY)
        self.assertEqual(items[0]["quantity"], 3)
        self.assertEqual(items[0]["self_sales_item_based"], 3000)


class ApplyBackRatesTest(unittest.TestCase):
    def _items(self):
        return [{
            "cast_id": 1,
            "help_cast_id": 2,
            "product_name": "Beer",
            "self_sales": 1000,
            "help_sales": 500,
            "subtotal": 2000,
            "self_back_rate": 0,
            "self_back_amount": 0,
            "help_back_rate": 0,
            "help_back_amount": 0,
        }]

    RATES = [
        {"cast_id": 1, "product_name": "Beer", "self_back_ratio": 10},
        {"cast_id": 2, "product_name": "Beer", "help_back_ratio": 20},
    ]

    def test_sales_based_help_back(self):
        item = apply_back_rates(self._items(), self.RATES, {})[0]
        self.assertEqual(item["self_back_amount"], 100)
        self.assertEqual(item["help_back_amount"], 100)

    def test_full_amount_help_back(self):
        comp = {2: {"help_back_calculation_method": "full_amount"}}
        item = apply_back_rates(self._items(), self.RATES, comp)[0]
        self.assertEqual(item["help_back_amount"], 400)

    def test_distributed_amount_help_back(self):
        comp = {2: {"help_back_calculation_method": "distributed_amount"}}
        item = apply_back_rates(self._items(), self.RATES, comp)[0]
        self.assertEqual(item["help_back_amount"], 200)

    def test_method_from_selected_compensation_type(self):
        setting = {
            "selected_compensation_type_id": "b",
            "compensation_types": [
                {"id": "a", "is_enabled": True, "help_back_calculation_method": "full_amount"},
                {"id": "b", "is_enabled": True, "help_back_calculation_method": "distributed_amount"},
            ],
        }
        self.assertEqual(help_back_calculation_method(setting), "distributed_amount")
        self.assertEqual(help_back_calculation_method(None), "sales_based")

    def test_selected_type_without_method_falls_to_first_enabled(self):
        setting = {
            "selected_compensation_type_id": "a",
            "compensation_types": [
                {"id": "a", "is_enabled": False},
                {"id": "b", "is_enabled": True, "help_back_calculation_method": "full_amount"},
            ],
            "help_back_calculation_method": "distributed_amount",
        }
        self.assertEqual(help_back_calculation_method(setting), "full_amount")

    def test_only_first_enabled_type_is_consulted(self):
        setting = {
            "compensation_types": [
                {"id": "a", "is_enabled": True},
                {"id": "b", "is_enabled": True, "help_back_calculation_method": "full_amount"},
            ],
            "help_back_calculation_method": "distributed_amount",
        }
        self.assertEqual(help_back_calculation_method(setting), "distributed_amount")

    def test_top_level_then_default(self):
        self.assertEqual(
            help_back_calculation_method({"help_back_calculation_method": "full_amount"}), "full_amount",
        )
        self.assertEqual(help_back_calculation_method({"compensation_types": []}), "sales_based")


if __name__ == "__main__":
    unittest.main()
