"""
Leave email routing.

Application emails go up the applicant's chain:
  employee -> reporting manager (L1) and the manager's manager (L2, normally HR)
  manager  -> their reporting manager (HR)
  hr       -> every active super admin
Super admins are dropped from the application path unless they are the
applicant's direct next approver.

Status emails go to the applicant, with the chain below the deciding approver
on CC (HR decision -> manager; super admin decision -> manager and HR).
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from intranet.core.config import settings
from intranet.models.leave_request import DayStatus, LeaveRequest
from intranet.models.user import User, UserRole
from intranet.services.base import BaseService
from intranet.services.email import EmailSender, email_sender
from intranet.services.email_scheduler import DeferredEmailScheduler
from intranet.services.email_templates import render_application_email, render_status_email

logger = logging.getLogger(__name__)

# Highest authority first
APPROVER_PRIORITY = (
    (UserRole.SUPER_ADMIN, "super_admin", "Super Admin"),
    (UserRole.HR, "hr", "HR"),
    (UserRole.MANAGER, "manager", "Manager"),
)


def _first_super_admin(db: Session) -> Optional[User]:
    return (
        db.query(User)
        .filter(User.role == UserRole.SUPER_ADMIN, User.is_active.is_(True))
        .order_by(User.id)
        .first()
    )


def _unique_active(users: List[Optional[User]], exclude_id: int) -> List[User]:
    seen = set()
    result = []
    for user in users:
        if user is None or not user.is_active or user.id == exclude_id or user.id in seen:
            continue
        seen.add(user.id)
        result.append(user)
    return result


class LeaveNotifier(BaseService):
    def __init__(self, db: Session, sender: Optional[EmailSender] = None):
        super().__init__(db)
        self.sender = sender or email_sender

    # ------------------------------------------------------------------
    # Recipient resolution
    # ------------------------------------------------------------------
    def next_approver(self, applicant: User) -> Optional[User]:
        """L1: reporting manager, or the first super admin for unattached staff."""
        if applicant.reporting_manager is not None:
            return applicant.reporting_manager
        return _first_super_admin(self.db)

    def application_recipients(self, applicant: User) -> List[User]:
        l1 = self.next_approver(applicant)

        if applicant.role == UserRole.HR:
            candidates = (
                self.db.query(User)
                .filter(User.role == UserRole.SUPER_ADMIN, User.is_active.is_(True))
                .order_by(User.id)
                .all()
            )
            return _unique_active(candidates, applicant.id)

        if applicant.role == UserRole.MANAGER:
            candidates = [l1]
        else:
            l2 = l1.reporting_manager if l1 is not None else None
            candidates = [l1, l2]

        recipients = _unique_active(candidates, applicant.id)
        return [
            u for u in recipients
            if u.role != UserRole.SUPER_ADMIN or (l1 is not None and u.id == l1.id)
        ]

    def deciding_approver(self, leave: LeaveRequest) -> Tuple[Optional[User], Optional[str], Optional[UserRole]]:
        """(user, label, role) of the highest authority that has acted."""
        for role, prefix, label in APPROVER_PRIORITY:
            approver_id = getattr(leave, f"{prefix}_approved_by")
            if approver_id:
                return self.db.get(User, approver_id), label, role
        return None, None, None

    @staticmethod
    def rejection_reason(leave: LeaveRequest) -> Optional[str]:
        if not any(d.day_status == DayStatus.REJECTED.value for d in leave.days):
            return None
        for _, prefix, _ in APPROVER_PRIORITY:
            comment = getattr(leave, f"{prefix}_approval_comment")
            if comment:
                return comment
        return None

    def status_cc(self, leave: LeaveRequest, approver_role: Optional[UserRole]) -> List[User]:
        employee = leave.employee
        manager = employee.reporting_manager
        if approver_role == UserRole.HR:
            candidates = [manager]
        elif approver_role == UserRole.SUPER_ADMIN:
            hr = self.db.get(User, leave.hr_approved_by) if leave.hr_approved_by else None
            if hr is None and manager is not None and manager.reporting_manager is not None:
                if manager.reporting_manager.role == UserRole.HR:
                    hr = manager.reporting_manager
            candidates = [manager, hr]
        else:
            candidates = []
        recipients = _unique_active(candidates, employee.id)
        return [u for u in recipients if u.role != UserRole.SUPER_ADMIN]

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------
    @staticmethod
    def base_context(leave: LeaveRequest) -> Dict:
        employee = leave.employee
        window = None
        if leave.time_for_permission_start and leave.time_for_permission_end:
            window = (
                f"{leave.time_for_permission_start.strftime('%H:%M')} - "
                f"{leave.time_for_permission_end.strftime('%H:%M')}"
            )
        return {
            "app_name": settings.app_name,
            "portal_url": settings.email.portal_url,
            "request_id": leave.id,
            "employee_name": employee.full_name,
            "employee_emp_id": employee.emp_id,
            "leave_type": leave.leave_type,
            "start_date": leave.start_date.isoformat(),
            "start_type": leave.start_type,
            "end_date": leave.end_date.isoformat(),
            "end_type": leave.end_type,
            "no_of_days": str(leave.no_of_days),
            "reason": leave.reason,
            "permission_window": window,
        }

    # ------------------------------------------------------------------
    # Sends
    # ------------------------------------------------------------------
    def send_application_email(self, leave: LeaveRequest, today: Optional[date] = None) -> bool:
        try:
            today = today or date.today()
            recipients = self.application_recipients(leave.employee)
            if not recipients:
                self.log_warning("No approver to notify for leave application", leave_request_id=leave.id)
                return False

            context = self.base_context(leave)
            context["urgent"] = leave.start_date == today
            context["recipient_name"] = recipients[0].full_name
            subject, html, text = render_application_email(context)
            return self.sender.send(
                to=[recipients[0].email],
                cc=[u.email for u in recipients[1:]],
                subject=subject,
                html=html,
                text=text,
            )
        except Exception as e:
            self.log_warning("Leave application email failed", exc_info=True, leave_request_id=leave.id, error=str(e))
            return False

    def send_status_email(self, request_id: int) -> bool:
        """Re-reads the request so the email reflects its state at send time."""
        try:
            leave = self.db.get(LeaveRequest, request_id)
            if leave is None:
                self.log_warning("Status email skipped: request no longer exists", leave_request_id=request_id)
                return False
            self.db.refresh(leave)

            approver, label, role = self.deciding_approver(leave)
            approved = sum((d.charge for d in leave.days if d.day_status == DayStatus.APPROVED.value), Decimal("0"))
            rejected = sum((d.charge for d in leave.days if d.day_status == DayStatus.REJECTED.value), Decimal("0"))

            context = self.base_context(leave)
            context.update({
                "status": leave.current_status,
                "approver_name": approver.full_name if approver else None,
                "approver_role": label,
                "approved_days": str(approved),
                "rejected_days": str(rejected),
                "rejection_reason": self.rejection_reason(leave),
                "comment": getattr(leave, f"{role.value}_approval_comment") if role else None,
            })
            subject, html, text = render_status_email(context)
            return self.sender.send(
                to=[leave.employee.email],
                cc=[u.email for u in self.status_cc(leave, role)],
                subject=subject,
                html=html,
                text=text,
            )
        except Exception as e:
            self.log_warning("Leave status email failed", exc_info=True, leave_request_id=request_id, error=str(e))
            return False


def send_status_email_in_new_session(request_id: int) -> bool:
    """Timer and background-task entry point: the request-scoped session is gone by now."""
    from intranet.database import SessionLocal

    db = SessionLocal()
    try:
        return LeaveNotifier(db).send_status_email(request_id)
    finally:
        db.close()


def send_application_email_in_new_session(request_id: int, today: Optional[date] = None) -> bool:
    from intranet.database import SessionLocal

    db = SessionLocal()
    try:
        leave = db.get(LeaveRequest, request_id)
        if leave is None:
            logger.warning("Application email skipped: request no longer exists", extra={"leave_request_id": request_id})
            return False
        return LeaveNotifier(db).send_application_email(leave, today)
    finally:
        db.close()


status_email_scheduler = DeferredEmailScheduler(send_status_email_in_new_session)
