"""
Multi-tier leave approval.

Each approver role is a small policy object; the same policy answers
"may this actor touch this employee's leave" in Python (pre-check) and in SQL
(the EXISTS guard on the header update and the pending-list filter), so the
two can never disagree.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import ClassVar, Dict, Iterable, List, Optional, Sequence, Type

from fastapi import BackgroundTasks
from sqlalchemy import select, true, update
from sqlalchemy.orm import Session

from intranet.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from intranet.models.leave_request import DayStatus, LeaveDay, LeaveRequest, LeaveStatus
from intranet.models.user import User, UserRole
from intranet.services.balance import BalanceLedger
from intranet.services.base import BaseService
from intranet.services.leave_notifications import send_status_email_in_new_session
from intranet.services.notification import NotificationService


def roll_up(day_statuses: Iterable) -> LeaveStatus:
    """Aggregate request status from its day statuses."""
    statuses = [DayStatus(s) for s in day_statuses]
    if not statuses:
        return LeaveStatus.PENDING
    if all(s == DayStatus.APPROVED for s in statuses):
        return LeaveStatus.APPROVED
    if all(s == DayStatus.REJECTED for s in statuses):
        return LeaveStatus.REJECTED
    if any(s == DayStatus.APPROVED for s in statuses):
        return LeaveStatus.PARTIALLY_APPROVED
    return LeaveStatus.PENDING


@dataclass(frozen=True)
class Approver:
    user: User

    role: ClassVar[UserRole]
    field_prefix: ClassVar[str]
    label: ClassVar[str]

    def can_act_on(self, employee: User) -> bool:
        raise NotImplementedError

    def escalates_to(self) -> Optional[UserRole]:
        raise NotImplementedError

    def scope_clause(self):
        """SQL predicate over `users` selecting employees this approver may act on."""
        raise NotImplementedError

    @property
    def locked_by_super_admin(self) -> bool:
        return True


class ManagerApprover(Approver):
    role = UserRole.MANAGER
    field_prefix = "manager"
    label = "Manager"

    def can_act_on(self, employee: User) -> bool:
        return employee.reporting_manager_id == self.user.id

    def escalates_to(self) -> Optional[UserRole]:
        return UserRole.HR

    def scope_clause(self):
        return User.reporting_manager_id == self.user.id


class HrApprover(Approver):
    role = UserRole.HR
    field_prefix = "hr"
    label = "HR"

    def can_act_on(self, employee: User) -> bool:
        return employee.role in (UserRole.EMPLOYEE, UserRole.MANAGER)

    def escalates_to(self) -> Optional[UserRole]:
        return UserRole.SUPER_ADMIN

    def scope_clause(self):
        return User.role.in_([UserRole.EMPLOYEE, UserRole.MANAGER])


class SuperAdminApprover(Approver):
    role = UserRole.SUPER_ADMIN
    field_prefix = "super_admin"
    label = "Super Admin"

    def can_act_on(self, employee: User) -> bool:
        return True

    def escalates_to(self) -> Optional[UserRole]:
        return None

    def scope_clause(self):
        return true()

    @property
    def locked_by_super_admin(self) -> bool:
        return False


APPROVER_POLICY: Dict[UserRole, Type[Approver]] = {
    UserRole.MANAGER: ManagerApprover,
    UserRole.HR: HrApprover,
    UserRole.SUPER_ADMIN: SuperAdminApprover,
}


def approver_for(user: User) -> Approver:
    policy = APPROVER_POLICY.get(user.role)
    if policy is None:
        raise AuthorizationError("Only managers, HR or Super Admin can act on leave requests")
    return policy(user)


def actionable_clause(approver: Approver):
    """WHERE fragment over leave_requests: in scope, not own, not locked."""
    clauses = [
        LeaveRequest.employee_id != approver.user.id,
        select(User.id)
        .where(User.id == LeaveRequest.employee_id, approver.scope_clause())
        .correlate(LeaveRequest)
        .exists(),
    ]
    if approver.locked_by_super_admin:
        clauses.append(LeaveRequest.super_admin_approval_status.is_(None))
    return clauses


class ApprovalWorkflow(BaseService):
    """
    approve/reject a whole request, a single day or a selection of days.

    Each action runs in one transaction: guarded header update, day updates,
    status roll-up from the stored days, refund. Notifications and emails
    follow the commit and never fail the action.
    """

    def __init__(
        self,
        db: Session,
        ledger: Optional[BalanceLedger] = None,
        notifier=None,
        scheduler=None,
        background_tasks: Optional[BackgroundTasks] = None,
    ):
        super().__init__(db)
        self.ledger = ledger or BalanceLedger(db)
        self.notifier = notifier
        self.scheduler = scheduler
        self.background_tasks = background_tasks

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def approve_request(self, request_id: int, actor: User, comment: Optional[str] = None) -> LeaveRequest:
        approver, leave = self._authorize(request_id, actor)
        if leave.current_status == LeaveStatus.APPROVED.value:
            raise ValidationError("Leave request is already approved")

        pending = [d for d in leave.days if d.day_status == DayStatus.PENDING.value]
        if not pending:
            raise ValidationError("No pending leave days to approve")

        self._apply_transition(leave, approver, {DayStatus.APPROVED: pending}, comment, "approve_leave_request")
        self._after_approval(leave, approver)
        return leave

    def reject_request(self, request_id: int, actor: User, comment: Optional[str]) -> LeaveRequest:
        comment = self._require_comment(comment)
        approver, leave = self._authorize(request_id, actor)

        pending = [d for d in leave.days if d.day_status == DayStatus.PENDING.value]
        if not pending:
            raise ValidationError("No pending leave days to reject")

        refund = self._apply_transition(leave, approver, {DayStatus.REJECTED: pending}, comment, "reject_leave_request")
        self._after_rejection(leave, approver, refund)
        return leave

    def approve_day(self, request_id: int, day_id: int, actor: User, comment: Optional[str] = None) -> LeaveRequest:
        approver, leave = self._authorize(request_id, actor)
        day = self._find_day(leave, day_id)

        if day.day_status == DayStatus.APPROVED.value:
            return leave
        if day.day_status == DayStatus.REJECTED.value:
            raise ValidationError("Cannot approve a leave day that has already been rejected")

        self._apply_transition(leave, approver, {DayStatus.APPROVED: [day]}, comment, "approve_leave_day")
        self._after_approval(leave, approver, days=[day])
        return leave

    def reject_day(self, request_id: int, day_id: int, actor: User, comment: Optional[str]) -> LeaveRequest:
        comment = self._require_comment(comment)
        approver, leave = self._authorize(request_id, actor)
        day = self._find_day(leave, day_id)

        if day.day_status == DayStatus.REJECTED.value:
            return leave
        if day.day_status == DayStatus.APPROVED.value:
            raise ValidationError("Cannot reject a leave day that has already been approved")

        refund = self._apply_transition(leave, approver, {DayStatus.REJECTED: [day]}, comment, "reject_leave_day")
        self._after_rejection(leave, approver, refund, days=[day])
        return leave

    def approve_days(
        self, request_id: int, day_ids: Sequence[int], actor: User, comment: Optional[str] = None
    ) -> LeaveRequest:
        """
        Approve the selected days and close out the rest of the request:
        every other pending day is rejected and refunded.
        """
        approver, leave = self._authorize(request_id, actor)
        if leave.current_status == LeaveStatus.APPROVED.value:
            raise ValidationError("Leave request is already approved")
        selected = self._find_days(leave, day_ids)
        if any(d.day_status == DayStatus.REJECTED.value for d in selected):
            raise ValidationError("Cannot approve a leave day that has already been rejected")

        chosen = {d.id for d in selected}
        to_approve = [d for d in selected if d.day_status == DayStatus.PENDING.value]
        to_reject = [
            d for d in leave.days if d.day_status == DayStatus.PENDING.value and d.id not in chosen
        ]
        if not to_approve and not to_reject:
            return leave

        refund = self._apply_transition(
            leave,
            approver,
            {DayStatus.APPROVED: to_approve, DayStatus.REJECTED: to_reject},
            comment,
            "approve_leave_days",
        )
        self._after_approval(leave, approver, days=to_approve, refund=refund)
        return leave

    def reject_days(
        self, request_id: int, day_ids: Sequence[int], actor: User, comment: Optional[str]
    ) -> LeaveRequest:
        comment = self._require_comment(comment)
        approver, leave = self._authorize(request_id, actor)
        selected = self._find_days(leave, day_ids)
        if any(d.day_status == DayStatus.APPROVED.value for d in selected):
            raise ValidationError("Cannot reject a leave day that has already been approved")

        to_reject = [d for d in selected if d.day_status == DayStatus.PENDING.value]
        if not to_reject:
            return leave

        refund = self._apply_transition(leave, approver, {DayStatus.REJECTED: to_reject}, comment, "reject_leave_days")
        self._after_rejection(leave, approver, refund, days=to_reject)
        return leave

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    @staticmethod
    def _require_comment(comment: Optional[str]) -> str:
        if not comment or not comment.strip():
            raise ValidationError("A comment is required when rejecting leave")
        return comment.strip()

    def _authorize(self, request_id: int, actor: User):
        approver = approver_for(actor)
        leave = self.db.get(LeaveRequest, request_id)
        if leave is None:
            raise NotFoundError("Leave request not found")

        if leave.employee_id == actor.id:
            self.log_warning("Self-approval attempt blocked", actor_id=actor.id, leave_request_id=request_id)
            raise AuthorizationError("You cannot approve or reject your own leave request")
        if not approver.can_act_on(leave.employee):
            self.log_warning(
                "Approval denied: employee outside approver scope",
                actor_id=actor.id,
                actor_role=actor.role.value,
                leave_request_id=request_id,
            )
            raise AuthorizationError("You are not authorized to act on this leave request")
        if approver.locked_by_super_admin and leave.super_admin_approval_status is not None:
            raise AuthorizationError("This leave request has already been processed by Super Admin")
        return approver, leave

    @staticmethod
    def _find_day(leave: LeaveRequest, day_id: int) -> LeaveDay:
        for day in leave.days:
            if day.id == day_id:
                return day
        raise NotFoundError("Leave day not found")

    def _find_days(self, leave: LeaveRequest, day_ids: Sequence[int]) -> List[LeaveDay]:
        if not day_ids:
            raise ValidationError("No leave days selected")
        return [self._find_day(leave, day_id) for day_id in sorted(set(day_ids))]

    def _apply_transition(
        self,
        leave: LeaveRequest,
        approver: Approver,
        changes: Dict[DayStatus, List[LeaveDay]],
        comment: Optional[str],
        action: str,
    ) -> Decimal:
        """
        Move the given pending days to their target status. Returns the amount
        refunded, which only ever covers days this call moved to rejected.
        """
        rejected = changes.get(DayStatus.REJECTED, [])
        refund = sum((d.charge for d in rejected), Decimal("0"))
        actor = approver.user
        prefix = approver.field_prefix
        this_request = LeaveRequest.id == leave.id

        with self.transaction(action, leave_request_id=leave.id, actor_id=actor.id, employee_id=leave.employee_id):
            result = self.db.execute(
                update(LeaveRequest)
                .where(this_request, *actionable_clause(approver))
                .values({
                    f"{prefix}_approval_date": datetime.now(timezone.utc),
                    f"{prefix}_approval_comment": comment,
                    f"{prefix}_approved_by": actor.id,
                    "last_updated_by": actor.id,
                    "last_updated_by_role": actor.role.value,
                })
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.log_warning(
                    "Guarded leave update affected no rows",
                    leave_request_id=leave.id,
                    actor_id=actor.id,
                    actor_role=actor.role.value,
                )
                raise AuthorizationError("Not authorized to act on this leave request")

            for target, days in changes.items():
                if not days:
                    continue
                day_ids = sorted(d.id for d in days)
                moved = self.db.execute(
                    update(LeaveDay)
                    .where(
                        LeaveDay.id.in_(day_ids),
                        LeaveDay.leave_request_id == leave.id,
                        LeaveDay.day_status == DayStatus.PENDING.value,
                    )
                    .values(day_status=target.value)
                    .execution_options(synchronize_session=False)
                ).rowcount
                if moved != len(day_ids):
                    self.log_warning(
                        "Leave days changed since they were read",
                        leave_request_id=leave.id,
                        actor_id=actor.id,
                        expected=len(day_ids),
                        moved=moved,
                    )
                    raise ValidationError("This leave request was updated by someone else. Reload it and try again.")

            stored = self.db.execute(
                select(LeaveDay.day_status).where(LeaveDay.leave_request_id == leave.id)
            ).scalars().all()
            new_status = roll_up(stored)
            # Role sub-field mirrors what this approver's action left the request at
            self.db.execute(
                update(LeaveRequest)
                .where(this_request)
                .values({f"{prefix}_approval_status": new_status.value, "current_status": new_status.value})
                .execution_options(synchronize_session=False)
            )
            if refund > 0:
                self.ledger.credit(leave.employee_id, leave.leave_type, refund, updated_by=actor.id)

        self.db.refresh(leave)
        self.log_info(
            f"Leave {action.replace('_', ' ')} by {approver.label}",
            leave_request_id=leave.id,
            actor_id=actor.id,
            days=sum(len(days) for days in changes.values()),
            refund=str(refund),
            status=leave.current_status,
        )
        return refund

    @staticmethod
    def _describe(leave: LeaveRequest, days: Optional[List[LeaveDay]]) -> str:
        if days:
            dates = ", ".join(d.leave_date.isoformat() for d in days)
            return f"Your {leave.leave_type} leave for {dates}"
        return (
            f"Your {leave.leave_type} leave from {leave.start_date.isoformat()} to "
            f"{leave.end_date.isoformat()}"
        )

    def _after_approval(
        self,
        leave: LeaveRequest,
        approver: Approver,
        days: Optional[List[LeaveDay]] = None,
        refund: Decimal = Decimal("0"),
    ) -> None:
        message = f"{self._describe(leave, days)} was approved by {approver.label}."
        if refund > 0:
            message += f" The remaining days were rejected and {refund} day(s) returned to your balance."
        NotificationService.safe_notify(
            self.db, leave.employee_id, "Leave Approved", message, "success", link=f"/leave/requests/{leave.id}"
        )
        if self.scheduler is not None:
            self.scheduler.schedule(leave.id)

    def _after_rejection(
        self,
        leave: LeaveRequest,
        approver: Approver,
        refund: Decimal,
        days: Optional[List[LeaveDay]] = None,
    ) -> None:
        message = f"{self._describe(leave, days)} was rejected by {approver.label}."
        if refund > 0:
            message += f" {refund} day(s) returned to your balance."
        NotificationService.safe_notify(
            self.db, leave.employee_id, "Leave Rejected", message, "error", link=f"/leave/requests/{leave.id}"
        )
        if self.scheduler is not None:
            self.scheduler.cancel(leave.id)
        if self.background_tasks is not None:
            self.background_tasks.add_task(send_status_email_in_new_session, leave.id)
        elif self.notifier is not None:
            self.notifier.send_status_email(leave.id)
