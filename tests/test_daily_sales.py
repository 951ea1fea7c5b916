import unittest

from fakes import FakeDB

from cast_office.services.daily_sales import (
    build_daily_stats,
    daily_wage,
    finalize_daily_stats,
    recalculate_for_date,
    summarize_daily_items,
)
from cast_office.services.sales_calculation import BASE_CATEGORY


BUSINESS_DATE = "2026-03-01"


def _seed(**extra_tables):
    tables = {
        "stores": [{"id": 1, "name": "本店", "is_active": True}],
        "sales_settings": [{
            "store_id": 1,
            "published_aggregation": "item_based",
            "item_exclude_consumption_tax": False,
            "item_rounding_method": "none",
            "item_help_distribution_method": "equal",
            "item_help_sales_inclusion": "both",
        }],
        "casts": [
            {"id": 1, "store_id": 1, "name": "Aoi", "is_active": True},
            {"id": 2, "store_id": 1, "name": "Rin", "is_active": True},
            {"id": 3, "store_id": 1, "name": "Mio", "is_active": True},
        ],
        "orders": [{
            "id": 10,
            "store_id": 1,
            "order_date": "2026-03-01T13:00:00Z",
            "deleted_at": None,
            "staff_name": "Aoi",
            "guest_count": 2,
            "table_number": "3",
        }],
        "order_items": [
            {"order_id": 10, "product_name": "Beer", "category": "drink", "unit_price": 1000,
             "quantity": 2, "subtotal": 2000, "cast_name": ["Aoi"]},
            {"order_id": 10, "product_name": "Beer", "category": "drink", "unit_price": 1000,
             "quantity": 1, "subtotal": 1000, "cast_name": ["Rin"]},
        ],
        "products": [{"id": 1, "store_id": 1, "name": "Beer", "needs_cast": True}],
        "cast_back_rates": [
            {"store_id": 1, "cast_id": 1, "category": "drink", "product_name": "Beer",
             "self_back_ratio": 10, "is_active": True},
            {"store_id": 1, "cast_id": 2, "category": "drink", "product_name": "Beer",
             "help_back_ratio": 20, "is_active": True},
        ],
        "attendance": [
            {"store_id": 1, "date": BUSINESS_DATE, "cast_name": "Aoi",
             "check_in_datetime": "2026-03-01T10:00:00+00:00", "check_out_datetime": "2026-03-01T14:00:00+00:00"},
            {"store_id": 1, "date": BUSINESS_DATE, "cast_name": "Mio",
             "check_in_datetime": "2026-03-01T10:00:00+00:00", "check_out_datetime": "2026-03-01T13:30:00+00:00"},
        ],
        "compensation_settings": [
            {"store_id": 1, "cast_id": 1, "is_active": True, "status_id": 5,
             "target_year": None, "target_month": None},
        ],
        "wage_statuses": [{"id": 5, "store_id": 1, "hourly_wage": 2000, "is_active": True}],
        "base_orders": [
            {"store_id": 1, "business_date": BUSINESS_DATE, "cast_id": 1, "product_name": "Cheki",
             "actual_price": 1000, "quantity": 1, "is_processed": False},
        ],
    }
    tables.update(extra_tables)
    return FakeDB(tables)


class SummarizeDailyItemsTest(unittest.TestCase):
    ITEMS = [
        {"cast_id": 1, "help_cast_id": None, "category": "drink", "self_sales_item_based": 2000,
         "self_sales_receipt_based": 2000, "self_back_amount": 200},
        {"cast_id": 1, "help_cast_id": 2, "category": "drink", "self_sales_item_based": 500,
         "self_sales_receipt_based": 500, "self_back_amount": 50, "help_sales": 500,
         "help_back_amount": 100, "needs_cast": True},
        {"cast_id": 1, "help_cast_id": None, "category": BASE_CATEGORY, "self_sales_item_based": 3000,
         "self_sales_receipt_based": 3000, "self_back_amount": 0},
    ]

    def test_help_sales_and_back_go_to_helper(self):
        totals = summarize_daily_items(self.ITEMS, {})
        self.assertEqual(totals[1]["self_sales_item_based"], 2500)
        self.assertEqual(totals[1]["product_back"], 250)
        self.assertEqual(totals[2]["help_sales_item_based"], 500)
        self.assertEqual(totals[2]["help_sales_receipt_based"], 500)
        self.assertEqual(totals[2]["product_back"], 100)

    def test_base_rows_count_only_when_included(self):
        totals = summarize_daily_items(self.ITEMS, {"include_base_in_item_sales": True})
        self.assertEqual(totals[1]["self_sales_item_based"], 5500)
        self.assertEqual(totals[1]["self_sales_receipt_based"], 2500)
        self.assertEqual(totals[1]["product_back"], 250)


class DailyWageTest(unittest.TestCase):
    ATTENDANCE = {
        "check_in_datetime": "2026-03-01T10:00:00+00:00",
        "check_out_datetime": "2026-03-01T15:00:00+00:00",
        "costume_id": 4,
    }

    def test_status_wage_with_bonuses(self):
        wage = daily_wage(self.ATTENDANCE, {"status_id": 5}, {5: 2000}, 500, {4: 300})
        self.assertEqual(wage["work_hours"], 5.0)
        self.assertEqual(wage["total_hourly_wage"], 2800)
        self.assertEqual(wage["wage_amount"], 14000)

    def test_override_beats_status(self):
        wage = daily_wage(self.ATTENDANCE, {"status_id": 5, "hourly_wage_override": 3000}, {5: 2000}, 0, {})
        self.assertEqual(wage["base_hourly_wage"], 3000)

    def test_no_attendance(self):
        wage = daily_wage(None, None, {}, 0, {})
        self.assertEqual(wage["work_hours"], 0.0)
        self.assertEqual(wage["wage_amount"], 0)


class BuildDailyStatsTest(unittest.TestCase):
    CASTS = {1: {"id": 1, "name": "Aoi"}, 2: {"id": 2, "name": "Rin"}}

    def _build(self, sales, attendance, finalized=frozenset()):
        return build_daily_stats(1, BUSINESS_DATE, sales, self.CASTS, attendance, {}, {}, 0, {}, {}, set(finalized))

    def test_worked_cast_without_sales_gets_wage_only_row(self):
        attendance = {"Rin": {"check_in_datetime": "2026-03-01T10:00:00Z", "check_out_datetime": "2026-03-01T12:00:00Z"}}
        rows = self._build({}, attendance)
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["cast_id"], 2)
        self.assertEqual(rows[0]["total_sales_item_based"], 0)
        self.assertEqual(rows[0]["work_hours"], 2.0)

    def test_checked_in_only_is_skipped(self):
        attendance = {"Rin": {"check_in_datetime": "2026-03-01T10:00:00Z"}}
        self.assertEqual(self._build({}, attendance), [])

    def test_finalized_cast_is_skipped(self):
        sales = {1: {"self_sales_item_based": 100, "help_sales_item_based": 0, "self_sales_receipt_based": 100,
                     "help_sales_receipt_based": 0, "product_back": 0}}
        self.assertEqual(self._build(sales, {}, finalized={1}), [])


class RecalculateForDateTest(unittest.TestCase):
    def test_recalculate_builds_items_and_stats(self):
        db = _seed()
        result = recalculate_for_date(db, 1, BUSINESS_DATE)

        self.assertEqual(result, {"casts_processed": 3, "items_processed": 3})
        stats = {row["cast_id"]: row for row in db.rows("cast_daily_stats")}
        self.assertEqual(stats[1]["total_sales_item_based"], 2500)
        self.assertEqual(stats[1]["product_back_item_based"], 250)
        self.assertEqual(stats[1]["wage_amount"], 8000)
        self.assertEqual(stats[1]["nomination_count"], 2)
        self.assertEqual(stats[2]["help_sales_item_based"], 500)
        self.assertEqual(stats[2]["product_back_item_based"], 100)
        self.assertEqual(stats[3]["total_sales_item_based"], 0)
        self.assertEqual(stats[3]["work_hours"], 3.5)

        items = db.rows("cast_daily_items")
        self.assertEqual(len(items), 3)
        self.assertEqual(sum(1 for i in items if i["category"] == BASE_CATEGORY), 1)
        self.assertTrue(all(o["is_processed"] for o in db.rows("base_orders")))

    def test_recalculate_twice_replaces_items(self):
        db = _seed()
        recalculate_for_date(db, 1, BUSINESS_DATE)
        recalculate_for_date(db, 1, BUSINESS_DATE)
        self.assertEqual(len(db.rows("cast_daily_items")), 3)
        self.assertEqual(len(db.rows("cast_daily_stats")), 3)

    def test_finalized_stats_are_not_touched(self):
        db = _seed(cast_daily_stats=[{
            "cast_id": 1, "store_id": 1, "date": BUSINESS_DATE, "is_finalized": True, "total_sales_item_based": 999,
        }])
        recalculate_for_date(db, 1, BUSINESS_DATE)
        stats = {row["cast_id"]: row for row in db.rows("cast_daily_stats")}
        self.assertEqual(stats[1]["total_sales_item_based"], 999)
        self.assertEqual(stats[2]["help_sales_item_based"], 500)
        self.assertEqual(db.rows("cast_daily_items"), [])

    def test_orders_outside_the_day_are_ignored(self):
        db = _seed()
        db.tables["orders"][0]["order_date"] = "2026-03-02T01:00:00Z"
        result = recalculate_for_date(db, 1, BUSINESS_DATE)
        self.assertEqual(result["items_processed"], 1)


class FinalizeDailyStatsTest(unittest.TestCase):
    def _db(self):
        return FakeDB({"cast_daily_stats": [
            {"cast_id": 1, "store_id": 1, "date": "2026-03-01", "is_finalized": False},
            {"cast_id": 1, "store_id": 1, "date": "2026-03-31", "is_finalized": False},
            {"cast_id": 1, "store_id": 1, "date": "2026-04-01", "is_finalized": False},
        ]})

    def test_finalize_month(self):
        db = self._db()
        result = finalize_daily_stats(db, 1, year_month="2026-03")
        self.assertEqual(result["records_updated"], 2)
        self.assertEqual(result["period"], {"from": "2026-03-01", "to": "2026-03-31"})
        self.assertEqual([r["is_finalized"] for r in db.rows("cast_daily_stats")], [True, True, False])

    def test_unfinalize_range(self):
        db = self._db()
        finalize_daily_stats(db, 1, year_month="2026-03")
        result = finalize_daily_stats(db, 1, date_from="2026-03-01", date_to="2026-03-01", unfinalize=True)
        self.assertEqual(result["action"], "unfinalized")
        self.assertFalse(db.rows("cast_daily_stats")[0]["is_finalized"])
        self.assertIsNone(db.rows("cast_daily_stats")[0]["finalized_at"])

    def test_period_is_required(self):
        with self.assertRaises(ValueError):
            finalize_daily_stats(self._db(), 1)


if __name__ == "__main__":
    unittest.main()
