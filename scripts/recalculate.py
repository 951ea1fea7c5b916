import argparse
import json
import logging

from cast_office.database import open_db
from cast_office.services.daily_sales import recalculate_current_business_day, recalculate_for_date
from cast_office.services.payslip import recalculate_payslips
from cast_office.utils import current_year_month, iter_dates, parse_date_value


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recalculate cast daily sales or payslips.")
    sub = parser.add_subparsers(dest="command", required=True)

    sales = sub.add_parser("sales", help="Rebuild cast daily stats")
    sales.add_argument("--store-id", type=int, help="Store (omit for today's business day of every store)")
    sales.add_argument("--date", help="Business date YYYY-MM-DD")
    sales.add_argument("--until", help="Last business date of a range, inclusive")

    payslips = sub.add_parser("payslips", help="Recalculate draft payslips")
    payslips.add_argument("--store-id", type=int, help="Store (omit for all stores)")
    payslips.add_argument("--year-month", default=None, help="YYYY-MM (default: current JST month)")
    return parser.parse_args()


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    args = parse_args()
    db = open_db()
    try:
        if args.command == "payslips":
            result = recalculate_payslips(db, args.store_id, args.year_month or current_year_month())
        elif args.store_id is None or args.date is None:
            result = recalculate_current_business_day(db)
        else:
            start = parse_date_value(args.date)
            end = parse_date_value(args.until) if args.until else start
            result = {day: recalculate_for_date(db, args.store_id, day) for day in iter_dates(start, end)}
        print(json.dumps(result, ensure_ascii=False, indent=2, default=str))
    finally:
        db.close()


if __name__ == "__main__":
    main()
