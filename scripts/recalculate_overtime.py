"""
Rebuild ledger postings and balance snapshots.

    python scripts/recalculate_overtime.py --employee 12 --actor 1
    python scripts/recalculate_overtime.py --all --actor 1
"""
import argparse
import json
import sys

from worktime.core.exceptions import AppException
from worktime.core.logging import setup_logging
from worktime.database import SessionLocal, init_db
from worktime.services.overtime_service import OvertimeService


def main() -> int:
    parser = argparse.ArgumentParser(description="Recalculate overtime balances")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--employee", type=int, help="Employee id")
    target.add_argument("--all", action="store_true", help="All active employees")
    parser.add_argument("--actor", type=int, default=None, help="Acting user id (audit trail)")
    args = parser.parse_args()

    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        service = OvertimeService(db)
        if args.all:
            report = service.recalculate_all(args.actor)
            print(json.dumps(report.to_dict(), indent=2))
            return 1 if report.failures else 0
        try:
            result = service.force_recalculate(args.employee, args.actor)
        except AppException as e:
            print(f"Error [{e.error_code}]: {e.message}", file=sys.stderr)
            return 1
        print(json.dumps(result, indent=2))
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
