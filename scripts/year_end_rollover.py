"""
Year-end rollover.

    python scripts/year_end_rollover.py 2025 --preview
    python scripts/year_end_rollover.py 2025 --actor 1
"""
import argparse
import json
import sys

from worktime.core.logging import setup_logging
from worktime.database import SessionLocal, init_db
from worktime.services.overtime_service import OvertimeService


def main() -> int:
    parser = argparse.ArgumentParser(description="Carry overtime and vacation balances into a new year")
    parser.add_argument("year", type=int, help="Year to roll into")
    parser.add_argument("--preview", action="store_true", help="Show what would happen, write nothing")
    parser.add_argument("--actor", type=int, default=None, help="Acting user id (required unless --preview)")
    args = parser.parse_args()

    if not args.preview and args.actor is None:
        parser.error("--actor is required to execute a rollover")

    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        service = OvertimeService(db)
        if args.preview:
            print(json.dumps(service.preview_year_end(args.year), indent=2, default=str))
            return 0
        report = service.perform_year_end_rollover(args.year, args.actor)
        print(json.dumps(report.to_dict(), indent=2, default=str))
        return 1 if report.failures else 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
