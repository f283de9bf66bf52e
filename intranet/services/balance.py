"""
Per-employee leave balance ledger.

Every mutation is a single `UPDATE ... SET col = col +/- :amount` so concurrent
approvals never lose each other's arithmetic. Debits carry their own
sufficiency guard in the WHERE clause; zero affected rows means the balance
moved underneath the caller and the debit is refused.
"""
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError

from intranet.core.config import settings
from intranet.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from intranet.models.leave_balance import LeaveBalance
from intranet.models.leave_request import DayStatus, LeaveDay, LeaveRequest, LeaveType
from intranet.models.user import User, UserRole
from intranet.services.base import BaseService

ZERO = Decimal("0")

BALANCE_COLUMNS = {
    LeaveType.CASUAL: LeaveBalance.casual_balance,
    LeaveType.SICK: LeaveBalance.sick_balance,
    LeaveType.LOP: LeaveBalance.lop_balance,
}


def balance_snapshot(balance: LeaveBalance) -> Dict[str, Decimal]:
    return {
        LeaveType.CASUAL.value: Decimal(balance.casual_balance or 0),
        LeaveType.SICK.value: Decimal(balance.sick_balance or 0),
        LeaveType.LOP.value: Decimal(balance.lop_balance or 0),
    }


class BalanceLedger(BaseService):

    def get_or_init_balance(self, employee: User) -> LeaveBalance:
        """
        Returns the employee's balance row, inserting the configured defaults
        on first access. Super admins are outside the leave system and get a
        transient all-zero row that is never persisted.
        """
        if employee.role == UserRole.SUPER_ADMIN:
            return LeaveBalance(
                employee_id=employee.id,
                casual_balance=ZERO,
                sick_balance=ZERO,
                lop_balance=ZERO,
            )

        balance = self._find(employee.id)
        if balance is not None:
            return balance

        defaults = settings.leave
        balance = LeaveBalance(
            employee_id=employee.id,
            casual_balance=defaults.default_casual_balance,
            sick_balance=defaults.default_sick_balance,
            lop_balance=defaults.default_lop_balance,
        )
        self.db.add(balance)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost the insert race to a concurrent first read
            self.db.rollback()
            return self._find(employee.id)
        self.db.refresh(balance)
        self.log_info("Initialized leave balance", employee_id=employee.id)
        return balance

    def _find(self, employee_id: int) -> Optional[LeaveBalance]:
        return self.db.query(LeaveBalance).filter(LeaveBalance.employee_id == employee_id).first()

    def ensure_sufficient(
        self,
        balance: LeaveBalance,
        leave_type,
        required: Decimal,
        returning: Decimal = ZERO,
    ) -> None:
        """
        Pre-validation before any write. `returning` is what an edit gives back
        to the same column before the new charge is taken.
        """
        leave_type = LeaveType(leave_type)
        if not leave_type.is_balance_tracked:
            return

        available = balance_snapshot(balance)[leave_type.value] + returning
        if available < required:
            raise ValidationError(
                f"Insufficient {leave_type.value} leave balance. Available: {available}, Required: {required}",
                details={"available": str(available), "required": str(required)},
            )

        if leave_type == LeaveType.LOP:
            casual = balance_snapshot(balance)[LeaveType.CASUAL.value]
            if casual > ZERO:
                raise ValidationError(
                    f"LOP can only be applied once casual leave is exhausted. Casual balance available: {casual}",
                    details={"casual_balance": str(casual)},
                )

    def debit(self, employee_id: int, leave_type, amount: Decimal, updated_by: Optional[int] = None) -> None:
        """
        Decrement the matching column inside the caller's transaction.
        The sufficiency rules are re-checked by the statement itself.
        """
        leave_type = LeaveType(leave_type)
        if not leave_type.is_balance_tracked or amount <= ZERO:
            return

        column = BALANCE_COLUMNS[leave_type]
        stmt = (
            update(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id, column >= amount)
            .values({column: column - amount, LeaveBalance.updated_by: updated_by})
            .execution_options(synchronize_session="fetch")
        )
        if leave_type == LeaveType.LOP:
            stmt = stmt.where(LeaveBalance.casual_balance <= ZERO)

        result = self.db.execute(stmt)
        if result.rowcount == 0:
            current = self._find(employee_id)
            available = ZERO if current is None else balance_snapshot(current)[leave_type.value]
            self.log_warning(
                "Guarded debit refused",
                employee_id=employee_id,
                leave_type=leave_type.value,
                amount=str(amount),
            )
            if leave_type == LeaveType.LOP and current is not None and current.casual_balance > ZERO:
                raise ValidationError(
                    f"LOP can only be applied once casual leave is exhausted. Casual balance available: {current.casual_balance}"
                )
            raise ValidationError(
                f"Insufficient {leave_type.value} leave balance. Available: {available}, Required: {amount}"
            )

    def credit(self, employee_id: int, leave_type, amount: Decimal, updated_by: Optional[int] = None) -> None:
        """Refund into the matching column. LOP never climbs above its cap."""
        leave_type = LeaveType(leave_type)
        if not leave_type.is_balance_tracked or amount <= ZERO:
            return

        column = BALANCE_COLUMNS[leave_type]
        new_value = column + amount
        if leave_type == LeaveType.LOP:
            cap = settings.leave.lop_balance_max
            new_value = case((column + amount > cap, cap), else_=column + amount)

        self.db.execute(
            update(LeaveBalance)
            .where(LeaveBalance.employee_id == employee_id)
            .values({column: new_value, LeaveBalance.updated_by: updated_by})
            .execution_options(synchronize_session="fetch")
        )

    def convert_lop_to_casual(self, request_id: int, actor: User) -> LeaveRequest:
        """
        Re-tag an LOP request as casual: casual is debited and LOP refunded by
        the request's non-rejected day total, in one transaction.
        """
        if actor.role not in (UserRole.HR, UserRole.SUPER_ADMIN):
            self.log_warning("LOP conversion denied", actor_id=actor.id, leave_request_id=request_id)
            raise AuthorizationError("Only HR or Super Admin can convert LOP leave to casual")

        leave = self.db.get(LeaveRequest, request_id)
        if leave is None:
            raise NotFoundError("Leave request not found")
        if leave.employee_id == actor.id:
            raise AuthorizationError("You cannot convert your own leave request")
        if leave.leave_type != LeaveType.LOP.value:
            raise ValidationError("Only LOP leave requests can be converted to casual leave")
        if not (leave.doctor_note or "").strip():
            raise ValidationError(
                "No proof attached. Conversion from LOP to casual requires a supporting document."
            )

        active_days = [d for d in leave.days if d.day_status != DayStatus.REJECTED.value]
        amount = sum((d.charge for d in active_days), ZERO)
        if amount <= ZERO:
            raise ValidationError("No active leave days to convert")

        cap = settings.leave.lop_balance_max
        with self.transaction("convert_lop_to_casual", leave_request_id=request_id, actor_id=actor.id):
            result = self.db.execute(
                update(LeaveBalance)
                .where(
                    LeaveBalance.employee_id == leave.employee_id,
                    LeaveBalance.casual_balance >= amount,
                )
                .values({
                    LeaveBalance.casual_balance: LeaveBalance.casual_balance - amount,
                    LeaveBalance.lop_balance: case(
                        (LeaveBalance.lop_balance + amount > cap, cap),
                        else_=LeaveBalance.lop_balance + amount,
                    ),
                    LeaveBalance.updated_by: actor.id,
                })
                .execution_options(synchronize_session="fetch")
            )
            if result.rowcount == 0:
                current = self._find(leave.employee_id)
                available = ZERO if current is None else Decimal(current.casual_balance)
                raise ValidationError(
                    f"Insufficient casual leave balance. Available: {available}, Required: {amount}"
                )

            leave.leave_type = LeaveType.CASUAL.value
            leave.last_updated_by = actor.id
            leave.last_updated_by_role = actor.role.value
            self.db.query(LeaveDay).filter(LeaveDay.leave_request_id == leave.id).update(
                {LeaveDay.leave_type: LeaveType.CASUAL.value}, synchronize_session="fetch"
            )

        self.db.refresh(leave)
        self.log_info(
            "Converted LOP leave to casual",
            leave_request_id=leave.id,
            employee_id=leave.employee_id,
            amount=str(amount),
            actor_id=actor.id,
        )
        return leave
