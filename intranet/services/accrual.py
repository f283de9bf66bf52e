"""
Scheduled balance accrual.

Monthly: on the last working day of a month every active employee, manager
and HR user is credited casual and sick leave for the month that follows.
Year end: casual carries forward up to a cap, unused sick leave lapses and
LOP is reset to the yearly allowance.

Each job claims its (kind, period) row in `leave_accrual_runs` inside the same
transaction as the balance changes, so a period is processed at most once.
"""
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError

from intranet.core.config import settings
from intranet.core.exceptions import ValidationError
from intranet.models.leave_accrual import LeaveAccrualRun
from intranet.models.leave_balance import LeaveBalance
from intranet.models.user import User, UserRole
from intranet.services.balance import BalanceLedger
from intranet.services.base import BaseService
from intranet.services.calendar import last_working_day_of_month

ACCRUING_ROLES = (UserRole.EMPLOYEE, UserRole.MANAGER, UserRole.HR)


class AccrualKind(str, Enum):
    MONTHLY = "monthly"
    YEAR_END = "year_end"


@dataclass
class AccrualResult:
    kind: AccrualKind
    period: str
    affected: int
    skipped: int = 0


def next_month(year: int, month: int):
    return (year + 1, 1) if month == 12 else (year, month + 1)


class LeaveAccrual(BaseService):

    def __init__(self, db, ledger: Optional[BalanceLedger] = None):
        super().__init__(db)
        self.ledger = ledger or BalanceLedger(db)

    def _accruing_users(self) -> List[User]:
        return (
            self.db.query(User)
            .filter(User.is_active.is_(True), User.role.in_(ACCRUING_ROLES))
            .order_by(User.id)
            .all()
        )

    def has_run(self, kind: AccrualKind, period: str) -> bool:
        return (
            self.db.query(LeaveAccrualRun)
            .filter(LeaveAccrualRun.kind == kind.value, LeaveAccrualRun.period == period)
            .first()
            is not None
        )

    def _claim(self, kind: AccrualKind, period: str, triggered_by: Optional[int]) -> LeaveAccrualRun:
        run = LeaveAccrualRun(kind=kind.value, period=period, triggered_by=triggered_by)
        self.db.add(run)
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            self.log_warning("Accrual already processed", kind=kind.value, period=period)
            raise ValidationError(f"{kind.value.replace('_', ' ').capitalize()} accrual for {period} has already run")
        return run

    def credit_monthly(self, year: int, month: int, triggered_by: Optional[int] = None) -> AccrualResult:
        """Credit every accruing user for `year`-`month`. Balances at the ceiling are skipped."""
        period = f"{year:04d}-{month:02d}"
        casual = settings.leave.monthly_casual_credit
        sick = settings.leave.monthly_sick_credit
        ceiling = settings.leave.balance_ceiling

        users = self._accruing_users()
        for user in users:
            self.ledger.get_or_init_balance(user)

        credited = skipped = 0
        with self.transaction("credit_monthly_leaves", kind=AccrualKind.MONTHLY.value, period=period):
            run = self._claim(AccrualKind.MONTHLY, period, triggered_by)
            for user in users:
                result = self.db.execute(
                    update(LeaveBalance)
                    .where(
                        LeaveBalance.employee_id == user.id,
                        LeaveBalance.casual_balance + casual <= ceiling,
                        LeaveBalance.sick_balance + sick <= ceiling,
                    )
                    .values({
                        LeaveBalance.casual_balance: LeaveBalance.casual_balance + casual,
                        LeaveBalance.sick_balance: LeaveBalance.sick_balance + sick,
                        LeaveBalance.updated_by: triggered_by,
                    })
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount:
                    credited += 1
                else:
                    skipped += 1
                    self.log_warning(
                        "Monthly credit skipped: balance ceiling reached",
                        employee_id=user.id,
                        period=period,
                        ceiling=str(ceiling),
                    )
            run.employees_affected = credited

        self.log_info("Monthly leave credit completed", period=period, credited=credited, skipped=skipped)
        return AccrualResult(AccrualKind.MONTHLY, period, credited, skipped)

    def year_end_adjustment(self, year: int, triggered_by: Optional[int] = None) -> AccrualResult:
        """Close out `year`: cap casual, lapse sick, reset LOP."""
        period = f"{year:04d}"
        carry_max = settings.leave.casual_carry_forward_max
        lop_reset = settings.leave.default_lop_balance

        users = self._accruing_users()
        for user in users:
            self.ledger.get_or_init_balance(user)

        ids = [u.id for u in users]
        with self.transaction("year_end_leave_adjustment", kind=AccrualKind.YEAR_END.value, period=period):
            run = self._claim(AccrualKind.YEAR_END, period, triggered_by)
            adjusted = 0
            if ids:
                adjusted = self.db.execute(
                    update(LeaveBalance)
                    .where(LeaveBalance.employee_id.in_(ids))
                    .values({
                        LeaveBalance.casual_balance: case(
                            (LeaveBalance.casual_balance > carry_max, carry_max),
                            else_=LeaveBalance.casual_balance,
                        ),
                        LeaveBalance.sick_balance: 0,
                        LeaveBalance.lop_balance: lop_reset,
                        LeaveBalance.updated_by: triggered_by,
                    })
                    .execution_options(synchronize_session=False)
                ).rowcount
            run.employees_affected = adjusted

        self.log_info("Year-end leave adjustment completed", period=period, adjusted=adjusted)
        return AccrualResult(AccrualKind.YEAR_END, period, adjusted)

    def run_due(self, today: Optional[date] = None, triggered_by: Optional[int] = None) -> List[AccrualResult]:
        """
        Daily entry point. On the last working day of a month the next month is
        credited; on the last working day of December the year is closed out
        after that credit. Periods that already ran are skipped.
        """
        today = today or date.today()
        if today != last_working_day_of_month(today.year, today.month):
            return []

        results = []
        year, month = next_month(today.year, today.month)
        if not self.has_run(AccrualKind.MONTHLY, f"{year:04d}-{month:02d}"):
            results.append(self.credit_monthly(year, month, triggered_by))
        if today.month == 12 and not self.has_run(AccrualKind.YEAR_END, f"{today.year:04d}"):
            results.append(self.year_end_adjustment(today.year, triggered_by))
        return results
