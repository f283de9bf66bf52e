"""
Daily accrual job, meant for cron in the evening:

    python scripts/run_accruals.py                  # whatever is due today
    python scripts/run_accruals.py monthly 2030-02  # force one month's credit
    python scripts/run_accruals.py year-end 2030    # force a year-end close
"""
import sys

from intranet.core.exceptions import ValidationError
from intranet.core.logging import setup_logging
from intranet.database import SessionLocal, init_db
from intranet.services.accrual import LeaveAccrual


def main(argv):
    setup_logging()
    init_db()
    db = SessionLocal()
    try:
        accrual = LeaveAccrual(db)
        if not argv:
            results = accrual.run_due()
        elif argv[0] == "monthly" and len(argv) == 2:
            year, month = (int(part) for part in argv[1].split("-"))
            results = [accrual.credit_monthly(year, month)]
        elif argv[0] == "year-end" and len(argv) == 2:
            results = [accrual.year_end_adjustment(int(argv[1]))]
        else:
            print(__doc__)
            return 2
    except ValidationError as e:
        print(f"Nothing done: {e.message}")
        return 1
    finally:
        db.close()

    if not results:
        print("No accrual due today.")
    for result in results:
        print(f"{result.kind.value} {result.period}: {result.affected} balances updated, {result.skipped} skipped")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
