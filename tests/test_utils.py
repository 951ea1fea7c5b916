import unittest
from datetime import date, datetime, timezone

from cast_office.config import JST
from cast_office.utils import (
    calculate_business_day,
    calculate_work_hours,
    current_year_month,
    format_shift_time,
    format_yen,
    half_month_period,
    iter_dates,
    round_half_up,
    validate_year_month,
)


class BusinessDayTest(unittest.TestCase):
    def test_before_cutoff_is_previous_day(self):
        checkout = datetime(2026, 3, 2, 3, 30, tzinfo=JST)
        self.assertEqual(calculate_business_day(checkout), "2026-03-01")

    def test_after_cutoff_is_same_day(self):
        checkout = datetime(2026, 3, 2, 6, 0, tzinfo=JST)
        self.assertEqual(calculate_business_day(checkout), "2026-03-02")

    def test_custom_cutoff_and_utc_string(self):
        # 2026-03-01 19:00 UTC = 2026-03-02 04:00 JST
        self.assertEqual(calculate_business_day("2026-03-01T19:00:00Z", cutoff_hour=5), "2026-03-01")
        self.assertEqual(calculate_business_day("2026-03-01T19:00:00Z", cutoff_hour=4), "2026-03-02")


class WorkHoursTest(unittest.TestCase):
    def test_hours_rounded_to_two_places(self):
        self.assertEqual(calculate_work_hours("2026-03-01T10:00:00Z", "2026-03-01T14:20:00Z"), 4.33)

    def test_checkout_before_checkin_wraps_a_day(self):
        start = datetime(2026, 3, 1, 23, 0, tzinfo=timezone.utc)
        end = datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc)
        self.assertEqual(calculate_work_hours(start, end), 4.0)

    def test_missing_times(self):
        self.assertEqual(calculate_work_hours(None, "2026-03-01T14:00:00Z"), 0.0)


class FormattingTest(unittest.TestCase):
    def test_shift_time_after_midnight(self):
        self.assertEqual(format_shift_time("19:00", "03:30"), "19:00〜27:30")
        self.assertEqual(format_shift_time("20:00:00", "23:00:00", "-"), "20:00-23:00")
        self.assertEqual(format_shift_time("", "03:00"), "")

    def test_yen(self):
        self.assertEqual(format_yen(1234567), "¥ 1,234,567")
        self.assertEqual(format_yen(None), "¥ 0")

    def test_round_half_up(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(2.4), 2)


class YearMonthTest(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(validate_year_month("2026-03"), (2026, 3))

    def test_invalid_format(self):
        for value in ("2026-3", "2026-13", "202603", None):
            with self.assertRaises(ValueError):
                validate_year_month(value)

    def test_year_out_of_range(self):
        with self.assertRaises(ValueError):
            validate_year_month("1999-12")

    def test_current_month_in_jst(self):
        now = datetime(2026, 3, 31, 16, 0, tzinfo=timezone.utc)
        self.assertEqual(current_year_month(now), "2026-04")

    def test_half_month_and_dates(self):
        self.assertEqual(half_month_period(2026, 2, False), (date(2026, 2, 16), date(2026, 2, 28)))
        self.assertEqual(iter_dates(date(2026, 2, 27), date(2026, 3, 1)), ["2026-02-27", "2026-02-28", "2026-03-01"])
        self.assertEqual(iter_dates(date(2026, 3, 2), date(2026, 3, 1)), [])


if __name__ == "__main__":
    unittest.main()
