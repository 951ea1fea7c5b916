import unittest

from fakes import FakeDB

from cast_office.services.attendance import delete_attendance, list_attendance, upsert_attendance
from cast_office.services.shifts import (
    LOCK_CONFIRMED,
    LOCK_LOCKED,
    REQUEST_APPROVED,
    REQUEST_PENDING,
    REQUEST_REJECTED,
    approve_shift_request,
    create_shift_request,
    delete_shift,
    list_shift_locks,
    list_shifts,
    period_dates,
    reject_shift_request,
    toggle_shift_lock,
    upsert_shift,
)


def _db():
    return FakeDB({"casts": [
        {"id": 1, "store_id": 1, "name": "Aoi"},
        {"id": 2, "store_id": 2, "name": "Rin"},
    ]})


class ShiftTest(unittest.TestCase):
    def test_period(self):
        self.assertEqual(period_dates(2026, 2, True), ("2026-02-01", "2026-02-15"))
        self.assertEqual(period_dates(2026, 2, False), ("2026-02-16", "2026-02-28"))

    def test_upsert_confirms_cell_and_approves_request(self):
        db = _db()
        create_shift_request(db, 1, 1, "2026-03-05", "20:00", "01:00")
        shift = upsert_shift(db, 1, 1, "2026-03-05", "20:00:00", "02:00")

        self.assertEqual(shift["start_time"], "20:00")
        self.assertEqual(db.rows("shift_requests")[0]["status"], REQUEST_APPROVED)
        self.assertEqual(db.rows("shift_locks")[0]["lock_type"], LOCK_CONFIRMED)

        upsert_shift(db, 1, 1, "2026-03-05", "21:00", "02:00")
        shifts = list_shifts(db, 1, "2026-03-01", "2026-03-15")
        self.assertEqual(len(shifts), 1)
        self.assertEqual(shifts[0]["display_time"], "21:00〜26:00")

    def test_invalid_time_and_foreign_cast(self):
        db = _db()
        with self.assertRaises(ValueError):
            upsert_shift(db, 1, 1, "2026-03-05", "25:00", "02:00")
        with self.assertRaises(LookupError):
            upsert_shift(db, 1, 2, "2026-03-05", "20:00", "02:00")

    def test_locked_cell_rejects_edits(self):
        db = _db()
        shift = upsert_shift(db, 1, 1, "2026-03-05", "20:00", "02:00")
        self.assertEqual(toggle_shift_lock(db, 1, 1, "2026-03-05", LOCK_LOCKED), LOCK_LOCKED)
        with self.assertRaises(ValueError):
            upsert_shift(db, 1, 1, "2026-03-05", "21:00", "02:00")
        with self.assertRaises(ValueError):
            delete_shift(db, 1, shift["id"])

        self.assertIsNone(toggle_shift_lock(db, 1, 1, "2026-03-05", LOCK_LOCKED))
        self.assertEqual(list_shift_locks(db, 1, "2026-03-01", "2026-03-31"), [])
        delete_shift(db, 1, shift["id"])
        self.assertEqual(db.rows("shifts"), [])

    def test_toggle_rejects_unknown_type(self):
        with self.assertRaises(ValueError):
            toggle_shift_lock(_db(), 1, 1, "2026-03-05", "frozen")

    def test_delete_returns_request_to_pending(self):
        db = _db()
        request = create_shift_request(db, 1, 1, "2026-03-05", "20:00", "01:00")
        result = approve_shift_request(db, 1, request["id"])
        self.assertEqual(result["shift"]["end_time"], "01:00")

        delete_shift(db, 1, result["shift"]["id"])
        self.assertEqual(db.rows("shift_requests")[0]["status"], REQUEST_PENDING)

    def test_reject(self):
        db = _db()
        request = create_shift_request(db, 1, 1, "2026-03-05", "20:00", "01:00")
        self.assertEqual(reject_shift_request(db, 1, request["id"])["status"], REQUEST_REJECTED)
        with self.assertRaises(LookupError):
            reject_shift_request(db, 2, request["id"])


class AttendanceTest(unittest.TestCase):
    def test_upsert_one_record_per_cast_and_day(self):
        db = _db()
        upsert_attendance(db, 1, "Aoi", "2026-03-05", {
            "check_in_datetime": "2026-03-05T20:00:00+09:00", "daily_payment": "5000",
        })
        upsert_attendance(db, 1, " Aoi ", "2026-03-05", {"check_out_datetime": "2026-03-06T01:30:00+09:00"})

        rows = list_attendance(db, 1, date="2026-03-05")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["daily_payment"], 5000)
        self.assertEqual(rows[0]["work_hours"], 5.5)

    def test_validation(self):
        db = _db()
        with self.assertRaises(LookupError):
            upsert_attendance(db, 1, "Rin", "2026-03-05", {})
        with self.assertRaises(ValueError):
            upsert_attendance(db, 1, "Aoi", "2026-03-05", {"late_minutes": -5})
        with self.assertRaises(ValueError):
            list_attendance(db, 1)

    def test_month_listing_and_delete(self):
        db = _db()
        record = upsert_attendance(db, 1, "Aoi", "2026-03-31", {})
        upsert_attendance(db, 1, "Aoi", "2026-04-01", {})
        self.assertEqual(len(list_attendance(db, 1, year_month="2026-03")), 1)
        with self.assertRaises(LookupError):
            delete_attendance(db, 2, record["id"])
        delete_attendance(db, 1, record["id"])
        self.assertEqual(len(db.rows("attendance")), 1)


if __name__ == "__main__":
    unittest.main()
