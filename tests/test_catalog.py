import unittest
from unittest.mock import patch

from fakes import FakeDB

from cast_office.services.catalog import (
    categories_to_csv,
    create_cast,
    create_category,
    create_product,
    create_deduction_type,
    deactivate_cast,
    delete_deduction_type,
    import_categories_csv,
    import_products_csv,
    list_casts,
    parse_categories_csv,
    products_to_csv,
    update_cast,
    upload_cast_photo,
    upsert_back_rates,
    upsert_compensation_setting,
    upsert_late_penalty_rule,
)


def _db():
    return FakeDB({
        "casts": [{"id": 1, "store_id": 1, "name": "Aoi", "is_active": True, "display_order": 1}],
        "product_categories": [
            {"id": 1, "store_id": 1, "name": "ドリンク", "display_order": 0, "show_oshi_first": False},
            {"id": 2, "store_id": 1, "name": "フード", "display_order": 1, "show_oshi_first": True},
        ],
    })


class CastTest(unittest.TestCase):
    def test_create_trims_and_rejects_duplicates(self):
        db = _db()
        cast = create_cast(db, 1, {"name": "  Rin ", "twitter": "@rin"})
        self.assertEqual(cast["name"], "Rin")
        self.assertTrue(cast["is_active"])
        with self.assertRaises(ValueError):
            create_cast(db, 1, {"name": "Aoi"})
        # the same name is fine in another store
        create_cast(db, 2, {"name": "Aoi"})

    def test_update_other_store_is_not_found(self):
        with self.assertRaises(LookupError):
            update_cast(_db(), 2, 1, {"name": "X"})

    def test_deactivate_hides_from_list(self):
        db = _db()
        deactivate_cast(db, 1, 1)
        self.assertEqual(list_casts(db, 1), [])
        self.assertEqual(len(list_casts(db, 1, include_inactive=True)), 1)

    def test_photo_upload(self):
        db = _db()
        with patch("cast_office.services.catalog.r2_upload") as upload, \
                patch("cast_office.services.catalog.r2_delete"):
            cast = upload_cast_photo(db, 1, 1, b"jpeg", "image/jpeg")
        self.assertTrue(cast["photo_path"].startswith("cast-photos/1/1_"))
        self.assertTrue(cast["photo_path"].endswith(".jpg"))
        upload.assert_called_once()

        with self.assertRaises(ValueError):
            upload_cast_photo(db, 1, 1, b"pdf", "application/pdf")


class CategoryCsvTest(unittest.TestCase):
    def test_new_category_goes_last(self):
        category = create_category(_db(), 1, {"name": "ボトル"})
        self.assertEqual(category["display_order"], 2)
        self.assertFalse(category["show_oshi_first"])

    def test_export(self):
        text = categories_to_csv([{"name": "ドリンク", "display_order": 0, "show_oshi_first": True}])
        self.assertTrue(text.startswith("\ufeffカテゴリー名,表示順,推しファースト"))
        self.assertIn("ドリンク,0,ON", text)

    def test_parse_reports_line_numbers(self):
        text = "カテゴリー名,表示順,推しファースト\nドリンク,0,ON\n,1,OFF\nフード,-1,OFF\nセット,2,YES\nボトル\n"
        parsed, errors = parse_categories_csv(text)
        self.assertEqual(parsed, [{"name": "ドリンク", "display_order": 0, "show_oshi_first": True}])
        self.assertEqual(len(errors), 4)
        self.assertTrue(errors[0].startswith("3行目"))
        self.assertTrue(errors[3].startswith("6行目"))

    def test_header_only(self):
        self.assertEqual(parse_categories_csv("カテゴリー名,表示順,推しファースト\n")[1], ["CSVファイルにデータがありません"])

    def test_import_replaces_all_when_valid(self):
        db = _db()
        result = import_categories_csv(db, 1, "\ufeffカテゴリー名,表示順,推しファースト\nボトル,0,OFF\n")
        self.assertEqual(result, {"success": True, "imported": 1, "errors": []})
        self.assertEqual([c["name"] for c in db.rows("product_categories")], ["ボトル"])

    def test_import_changes_nothing_on_error(self):
        db = _db()
        result = import_categories_csv(db, 1, "カテゴリー名,表示順,推しファースト\nボトル,x,OFF\n")
        self.assertFalse(result["success"])
        self.assertEqual(len(db.rows("product_categories")), 2)


class ProductTest(unittest.TestCase):
    def test_create_validates_price_and_category(self):
        db = _db()
        product = create_product(db, 1, {"name": "ビール", "price": "1000", "category_id": 1})
        self.assertEqual(product["price"], 1000)
        self.assertTrue(product["needs_cast"])
        with self.assertRaises(ValueError):
            create_product(db, 1, {"name": "ビール", "price": -1})
        with self.assertRaises(LookupError):
            create_product(db, 1, {"name": "ビール", "category_id": 99})

    def test_csv_export_and_import(self):
        db = _db()
        create_product(db, 1, {"name": "ビール", "price": 1000, "category_id": 1, "needs_cast": False})
        text = products_to_csv(db.rows("products"), db.rows("product_categories"))
        self.assertIn("ビール,1000,ドリンク,0,有効,不要", text)

        result = import_products_csv(db, 1, text + "謎,500,存在しない,0,有効,必須\n焼酎,abc,ドリンク,0,有効,必須\n")
        self.assertEqual(result, {"success": 1, "errors": 2})
        imported = db.rows("products")[-1]
        self.assertEqual(imported["category_id"], 1)
        self.assertFalse(imported["needs_cast"])


class DeductionTest(unittest.TestCase):
    def test_type_and_percentage_are_validated(self):
        db = FakeDB()
        with self.assertRaises(ValueError):
            create_deduction_type(db, 1, {"name": "x", "type": "bonus"})
        with self.assertRaises(ValueError):
            create_deduction_type(db, 1, {"name": "x", "type": "percentage", "percentage": 120})

    def test_late_rule_upsert_and_cascade(self):
        db = FakeDB()
        late = create_deduction_type(db, 1, {"name": "遅刻", "type": "penalty_late"})
        upsert_late_penalty_rule(db, 1, late["id"], {"calculation_type": "fixed", "fixed_amount": 500})
        rule = upsert_late_penalty_rule(db, 1, late["id"], {"calculation_type": "tiered",
                                                             "tiers": [{"minutes": 10, "amount": 1000}]})
        self.assertEqual(rule["calculation_type"], "tiered")
        self.assertEqual(len(db.rows("late_penalty_rules")), 1)

        with self.assertRaises(ValueError):
            upsert_late_penalty_rule(db, 1, late["id"], {"calculation_type": "cumulative"})

        delete_deduction_type(db, 1, late["id"])
        self.assertEqual(db.rows("late_penalty_rules"), [])

    def test_rule_needs_late_deduction(self):
        db = FakeDB()
        fixed = create_deduction_type(db, 1, {"name": "寮費", "type": "fixed", "default_amount": 10000})
        with self.assertRaises(ValueError):
            upsert_late_penalty_rule(db, 1, fixed["id"], {"calculation_type": "fixed"})


class CompensationAndBackRateTest(unittest.TestCase):
    def test_monthly_setting_is_upserted(self):
        db = _db()
        upsert_compensation_setting(db, 1, 1, 2026, 3, {"status_id": 5})
        updated = upsert_compensation_setting(db, 1, 1, 2026, 3, {"hourly_wage_override": 3000})
        self.assertEqual(updated["status_id"], 5)
        self.assertEqual(updated["hourly_wage_override"], 3000)
        self.assertEqual(len(db.rows("compensation_settings")), 1)

        upsert_compensation_setting(db, 1, 1, None, None, {"status_id": 1})
        self.assertEqual(len(db.rows("compensation_settings")), 2)

    def test_invalid_selection_method(self):
        with self.assertRaises(ValueError):
            upsert_compensation_setting(_db(), 1, 1, 2026, 3, {"payment_selection_method": "lowest"})

    def test_back_rates_match_on_category_and_product(self):
        db = _db()
        upsert_back_rates(db, 1, 1, [
            {"category": "ドリンク", "product_name": "ビール", "self_back_ratio": 10},
            {"category": "ドリンク", "product_name": None, "back_ratio": 5},
        ])
        upsert_back_rates(db, 1, 1, [{"category": "ドリンク", "product_name": "ビール", "self_back_ratio": 20}])
        rates = db.rows("cast_back_rates")
        self.assertEqual(len(rates), 2)
        self.assertEqual(rates[0]["self_back_ratio"], 20)
        with self.assertRaises(ValueError):
            upsert_back_rates(db, 1, 1, [{"category": "x", "back_type": "percent"}])


if __name__ == "__main__":
    unittest.main()
