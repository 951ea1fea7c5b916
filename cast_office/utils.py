"""Date, time and money helpers with no HTTP framework dependency."""
from __future__ import annotations

import calendar
import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from cast_office.config import DEFAULT_BUSINESS_DAY_CUTOFF_HOUR, JST


YEAR_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def format_yen(value: object) -> str:
    try:
        amount = int(float(value or 0))
    except (TypeError, ValueError):
        amount = 0
    return f"¥ {amount:,}"


def round_half_up(value: float) -> int:
    """Half-up rounding for money; round() would round .5 to even."""
    return int(math.floor(value + 0.5))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc_datetime(dt) -> datetime:
    # Supabase REST API returns TIMESTAMPTZ columns as ISO 8601 strings
    if isinstance(dt, str):
        dt = datetime.fromisoformat(dt.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_jst_datetime(dt) -> datetime:
    return ensure_utc_datetime(dt).astimezone(JST)


def parse_date_value(value: str) -> date:
    from fastapi import HTTPException

    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Invalid date.") from exc


def date_to_ymd(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def iter_dates(start_date: date, end_date: date) -> list[str]:
    if end_date < start_date:
        return []
    cursor = start_date
    values: list[str] = []
    while cursor <= end_date:
        values.append(date_to_ymd(cursor))
        cursor += timedelta(days=1)
    return values


def validate_year_month(value: str) -> tuple[int, int]:
    """Parse YYYY-MM. Raises ValueError with a user-facing message."""
    if not isinstance(value, str) or not YEAR_MONTH_PATTERN.match(value):
        raise ValueError("Invalid year_month format: must be YYYY-MM")
    year, month = (int(part) for part in value.split("-"))
    if year < 2000 or year > 2100:
        raise ValueError("Invalid year: must be between 2000 and 2100")
    return year, month


def month_date_range(year: int, month: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def current_year_month(now: Optional[datetime] = None) -> str:
    local_now = to_jst_datetime(now or utc_now())
    return local_now.strftime("%Y-%m")


def half_month_period(year: int, month: int, first_half: bool) -> tuple[date, date]:
    start, end = month_date_range(year, month)
    if first_half:
        return start, date(year, month, 15)
    return date(year, month, 16), end


# ---------------------------------------------------------------------------
# Business day
# ---------------------------------------------------------------------------

def calculate_business_day(checkout, cutoff_hour: int = DEFAULT_BUSINESS_DAY_CUTOFF_HOUR) -> str:
    """Checkouts before the cutoff hour (JST) belong to the previous business day."""
    local = to_jst_datetime(checkout)
    if local.hour < cutoff_hour:
        local -= timedelta(days=1)
    return local.strftime("%Y-%m-%d")


def current_business_day(cutoff_hour: int = DEFAULT_BUSINESS_DAY_CUTOFF_HOUR, now: Optional[datetime] = None) -> str:
    return calculate_business_day(now or utc_now(), cutoff_hour)


def calculate_work_hours(clock_in, clock_out) -> float:
    if not clock_in or not clock_out:
        return 0.0
    start = ensure_utc_datetime(clock_in)
    end = ensure_utc_datetime(clock_out)
    if end <= start:
        end += timedelta(hours=24)
    hours = (end - start).total_seconds() / 3600
    return max(0.0, math.floor(hours * 100 + 0.5) / 100)


def format_shift_time(start_time: str, end_time: str, separator: str = "〜") -> str:
    """19:00 / 03:00 -> 19:00〜27:00 (hours 0-5 shown as 24-29)."""
    if not start_time or not end_time:
        return ""

    def _fmt(value: str) -> str:
        hours, minutes = (int(part) for part in value[:5].split(":"))
        if 0 <= hours <= 5:
            hours += 24
        return f"{hours}:{minutes:02d}"

    return f"{_fmt(start_time)}{separator}{_fmt(end_time)}"
