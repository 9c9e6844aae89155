"""Seed federal and regional public holidays for one or more years."""
import argparse

from worktime.core.config import settings
from worktime.core.logging import setup_logging
from worktime.database import SessionLocal, init_db
from worktime.services.holidays import seed_holidays


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("years", nargs="+", type=int)
    parser.add_argument("--region", default=settings.default_holiday_region)
    args = parser.parse_args()

    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        for year in args.years:
            inserted = seed_holidays(db, year, args.region)
            print(f"{year}: {inserted} holiday(s) added")
    finally:
        db.close()


if __name__ == "__main__":
    main()
