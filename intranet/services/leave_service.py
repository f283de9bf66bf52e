"""
Leave request lifecycle: apply, edit, delete and the read models behind the
leave pages. Approval actions live in `approval.py`.

Every write validates first, then runs a single transaction; notifications
are sent only after the commit.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from intranet.core.config import settings
from intranet.core.exceptions import NotFoundError, ValidationError
from intranet.core.schemas import paginate
from intranet.models.holiday import Holiday
from intranet.models.leave_request import DayStatus, LeaveDay, LeaveRequest, LeaveStatus, LeaveType
from intranet.models.leave_rule import LeaveRule
from intranet.models.user import User, UserRole
from intranet.schemas.leave import LeaveApplyRequest
from intranet.services.approval import APPROVER_POLICY, actionable_clause, approver_for
from intranet.services.balance import BalanceLedger, balance_snapshot
from intranet.services.base import BaseService
from intranet.services.calendar import (
    calculate_leave_days,
    format_rule,
    group_by_month,
    holidays_for_range,
    non_working_reason,
    required_notice_days,
)
from intranet.services.leave_notifications import send_application_email_in_new_session
from intranet.services.notification import NotificationService

ZERO = Decimal("0")

ROLE_LABELS = {"manager": "Manager", "hr": "HR", "super_admin": "Super Admin"}


def active_charge(leave: LeaveRequest) -> Decimal:
    """What the request currently holds against the balance."""
    return sum((d.charge for d in leave.days if d.day_status != DayStatus.REJECTED.value), ZERO)


def has_pending_day():
    return (
        select(LeaveDay.id)
        .where(LeaveDay.leave_request_id == LeaveRequest.id, LeaveDay.day_status == DayStatus.PENDING.value)
        .correlate(LeaveRequest)
        .exists()
    )


class LeaveService(BaseService):
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
    # Validation
    # ------------------------------------------------------------------
    def _validate(
        self,
        employee: User,
        data: LeaveApplyRequest,
        today: date,
        existing: Optional[LeaveRequest] = None,
    ):
        """Every rule an application must pass. Returns (total, chargeable days)."""
        if employee.role == UserRole.SUPER_ADMIN:
            raise ValidationError("Super Admins do not apply for leaves and are excluded from the leave system.")
        if data.end_date < data.start_date:
            raise ValidationError("End date must be greater than or equal to start date")

        leave_type = LeaveType(data.leave_type)
        holidays = holidays_for_range(self.db, data.start_date, data.end_date)

        if leave_type != LeaveType.LOP:
            for label, day in (("start", data.start_date), ("end", data.end_date)):
                reason = non_working_reason(day, holidays)
                if reason:
                    raise ValidationError(f"Cannot select {reason} as {label} date. Please select a working day.")

        self._validate_window(leave_type, data, today)

        total, days = calculate_leave_days(
            data.start_date, data.end_date, data.start_type, data.end_type, leave_type, holidays.keys()
        )
        if total <= ZERO:
            raise ValidationError("The selected dates do not contain any working day")

        if leave_type in (LeaveType.CASUAL, LeaveType.LOP):
            rules = self.db.query(LeaveRule).filter(LeaveRule.is_active.is_(True)).all()
            notice = required_notice_days(rules, total)
            days_until_start = (data.start_date - today).days
            if days_until_start < notice:
                raise ValidationError(
                    f"{leave_type.value.upper()} leave of {total} day(s) must be applied at least {notice} days in advance."
                )

        self._validate_overlap(employee, [d.date for d in days], existing)
        self._validate_monthly_cap(employee, leave_type, days, existing)

        balance = self.ledger.get_or_init_balance(employee)
        returning = ZERO
        if existing is not None and existing.leave_type == leave_type.value:
            returning = active_charge(existing)
        self.ledger.ensure_sufficient(balance, leave_type, total, returning)
        return total, days

    def _validate_window(self, leave_type: LeaveType, data: LeaveApplyRequest, today: date) -> None:
        if leave_type == LeaveType.SICK:
            earliest = today - timedelta(days=settings.leave.sick_past_days_allowed)
            latest = today + timedelta(days=settings.leave.sick_future_days_allowed)
            for day in (data.start_date, data.end_date):
                if day < earliest:
                    raise ValidationError(
                        f"Cannot apply sick leave for dates more than {settings.leave.sick_past_days_allowed} days in the past."
                    )
                if day > latest:
                    raise ValidationError(
                        "For future dates, sick leave can only be applied for tomorrow."
                    )
            return

        if data.start_date < today:
            raise ValidationError("Cannot apply for past dates.")

        if leave_type == LeaveType.PERMISSION:
            start, end = data.time_for_permission_start, data.time_for_permission_end
            if start is None or end is None:
                raise ValidationError("Start and end timings are required for permission requests")
            if end <= start:
                raise ValidationError("Permission end time must be after start time")
            if data.start_date == today and start < datetime.now().time():
                raise ValidationError("Permission start time has already passed")
        elif leave_type == LeaveType.CASUAL and data.start_date <= today:
            raise ValidationError("Cannot apply for past dates or today.")

    def _active_days_query(self, employee: User, existing: Optional[LeaveRequest]):
        query = (
            self.db.query(LeaveDay)
            .join(LeaveRequest, LeaveDay.leave_request_id == LeaveRequest.id)
            .filter(
                LeaveDay.employee_id == employee.id,
                LeaveDay.day_status != DayStatus.REJECTED.value,
                LeaveRequest.current_status != LeaveStatus.REJECTED.value,
            )
        )
        if existing is not None:
            query = query.filter(LeaveDay.leave_request_id != existing.id)
        return query

    def _validate_overlap(self, employee: User, dates: List[date], existing: Optional[LeaveRequest]) -> None:
        clash = (
            self._active_days_query(employee, existing)
            .filter(LeaveDay.leave_date.in_(dates))
            .order_by(LeaveDay.leave_date)
            .first()
        )
        if clash is not None:
            raise ValidationError(
                f"Leave already exists for {clash.leave_date.isoformat()} ({clash.day_status})."
            )

    def _validate_monthly_cap(self, employee: User, leave_type: LeaveType, days, existing) -> None:
        caps = {
            LeaveType.CASUAL: settings.leave.max_casual_per_month,
            LeaveType.LOP: settings.leave.max_lop_per_month,
        }
        cap = caps.get(leave_type)
        if not cap or cap <= ZERO:
            return

        for (year, month), requested in group_by_month(days).items():
            month_start = date(year, month, 1)
            month_end = (month_start + timedelta(days=32)).replace(day=1) - timedelta(days=1)
            already = sum(
                (
                    d.charge
                    for d in self._active_days_query(employee, existing).filter(
                        LeaveDay.leave_type == leave_type.value,
                        LeaveDay.leave_date.between(month_start, month_end),
                    )
                ),
                ZERO,
            )
            if already + requested > cap:
                raise ValidationError(
                    f"{leave_type.value.upper()} leave request exceeds monthly limit of {cap} days. "
                    f"You have already used/requested {already} days in {month:02d}/{str(year)[-2:]}, "
                    f"and this request adds {requested} days."
                )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def apply(self, employee: User, data: LeaveApplyRequest, today: Optional[date] = None) -> LeaveRequest:
        today = today or date.today()
        total, days = self._validate(employee, data, today)
        leave_type = LeaveType(data.leave_type)

        leave = LeaveRequest(
            employee_id=employee.id,
            leave_type=leave_type.value,
            start_date=data.start_date,
            start_type=data.start_type.value,
            end_date=data.end_date,
            end_type=data.end_type.value,
            reason=data.reason,
            no_of_days=total,
            time_for_permission_start=data.time_for_permission_start,
            time_for_permission_end=data.time_for_permission_end,
            doctor_note=data.doctor_note,
            current_status=LeaveStatus.PENDING.value,
            applied_date=today,
            last_updated_by=employee.id,
            last_updated_by_role=employee.role.value,
        )
        leave.days = [self._new_day(employee, leave_type, d) for d in days]

        with self.transaction("apply_leave", employee_id=employee.id, leave_data=data.model_dump(mode="json")):
            self.db.add(leave)
            self.db.flush()
            self.ledger.debit(employee.id, leave_type, total, updated_by=employee.id)

        self.db.refresh(leave)
        self.log_info(
            "Leave applied",
            leave_request_id=leave.id,
            employee_id=employee.id,
            leave_type=leave.leave_type,
            no_of_days=str(total),
        )
        self._announce(leave, today, "New Leave Request")
        return leave

    def edit(self, request_id: int, employee: User, data: LeaveApplyRequest, today: Optional[date] = None) -> LeaveRequest:
        today = today or date.today()
        leave = self.db.get(LeaveRequest, request_id)
        if leave is None or leave.employee_id != employee.id:
            raise NotFoundError("Leave request not found")
        if leave.current_status != LeaveStatus.PENDING.value or any(
            d.day_status != DayStatus.PENDING.value for d in leave.days
        ):
            raise ValidationError("Only pending leave requests can be edited")

        total, days = self._validate(employee, data, today, existing=leave)
        new_type = LeaveType(data.leave_type)
        old_type = leave.leave_type
        old_charge = active_charge(leave)

        with self.transaction("edit_leave", leave_request_id=leave.id, employee_id=employee.id, leave_data=data.model_dump(mode="json")):
            leave.days.clear()
            self.db.flush()
            self.ledger.credit(employee.id, old_type, old_charge, updated_by=employee.id)
            self.ledger.debit(employee.id, new_type, total, updated_by=employee.id)

            leave.leave_type = new_type.value
            leave.start_date = data.start_date
            leave.start_type = data.start_type.value
            leave.end_date = data.end_date
            leave.end_type = data.end_type.value
            leave.reason = data.reason
            leave.no_of_days = total
            leave.time_for_permission_start = data.time_for_permission_start
            leave.time_for_permission_end = data.time_for_permission_end
            leave.doctor_note = data.doctor_note
            leave.current_status = LeaveStatus.PENDING.value
            for prefix in ROLE_LABELS:
                setattr(leave, f"{prefix}_approval_status", None)
                setattr(leave, f"{prefix}_approval_date", None)
                setattr(leave, f"{prefix}_approval_comment", None)
                setattr(leave, f"{prefix}_approved_by", None)
            leave.last_updated_by = employee.id
            leave.last_updated_by_role = employee.role.value
            leave.days.extend(self._new_day(employee, new_type, d) for d in days)

        self.db.refresh(leave)
        self.log_info("Leave edited", leave_request_id=leave.id, employee_id=employee.id, no_of_days=str(total))
        self._announce(leave, today, "Leave Request Updated")
        return leave

    def delete(self, request_id: int, actor: User) -> None:
        leave = self.db.get(LeaveRequest, request_id)
        is_owner = leave is not None and leave.employee_id == actor.id
        if leave is None or not (is_owner or actor.role in (UserRole.HR, UserRole.SUPER_ADMIN)):
            raise NotFoundError("Leave request not found")
        if leave.current_status != LeaveStatus.PENDING.value:
            raise ValidationError("Only pending leave requests can be deleted")

        employee_id = leave.employee_id
        leave_type = leave.leave_type
        refund = active_charge(leave)
        summary = f"{leave_type} leave from {leave.start_date.isoformat()} to {leave.end_date.isoformat()}"

        with self.transaction("delete_leave", leave_request_id=request_id, actor_id=actor.id):
            self.db.delete(leave)
            self.db.flush()
            self.ledger.credit(employee_id, leave_type, refund, updated_by=actor.id)

        if self.scheduler is not None:
            self.scheduler.cancel(request_id)
        self.log_info("Leave deleted", leave_request_id=request_id, actor_id=actor.id, refund=str(refund))
        if not is_owner:
            NotificationService.safe_notify(
                self.db, employee_id, "Leave Request Deleted",
                f"Your {summary} was deleted by {ROLE_LABELS.get(actor.role.value, actor.role.value)}.",
                "warning",
            )

    @staticmethod
    def _new_day(employee: User, leave_type: LeaveType, chargeable) -> LeaveDay:
        return LeaveDay(
            employee_id=employee.id,
            leave_date=chargeable.date,
            day_type=chargeable.day_type.value,
            day_status=DayStatus.PENDING.value,
            leave_type=leave_type.value,
        )

    def _announce(self, leave: LeaveRequest, today: date, title: str) -> None:
        if self.notifier is None:
            return
        try:
            recipients = self.notifier.application_recipients(leave.employee)
        except Exception as e:
            self.log_warning("Could not resolve approvers", exc_info=True, leave_request_id=leave.id, error=str(e))
            return
        for recipient in recipients:
            NotificationService.safe_notify(
                self.db,
                recipient.id,
                title,
                f"{leave.employee.full_name} applied for {leave.no_of_days} day(s) of {leave.leave_type} leave "
                f"from {leave.start_date.isoformat()} to {leave.end_date.isoformat()}.",
                "info",
                link=f"/leave/requests/{leave.id}",
            )
        if self.background_tasks is not None:
            self.background_tasks.add_task(send_application_email_in_new_session, leave.id, today)
        else:
            self.notifier.send_application_email(leave, today)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def summarize(self, leave: LeaveRequest, include_days: bool = True) -> Dict[str, Any]:
        buckets = {s.value: ZERO for s in DayStatus}
        for day in leave.days:
            buckets[day.day_status] = buckets.get(day.day_status, ZERO) + day.charge

        # Latest decision wins for the approver shown to the employee
        approver_name = approver_role = None
        latest = None
        for prefix, label in ROLE_LABELS.items():
            acted_at = getattr(leave, f"{prefix}_approval_date")
            approver_id = getattr(leave, f"{prefix}_approved_by")
            if acted_at is not None and approver_id and (latest is None or acted_at >= latest):
                approver = self.db.get(User, approver_id)
                latest = acted_at
                approver_name = approver.full_name if approver else None
                approver_role = label

        rejection_reason = None
        if buckets[DayStatus.REJECTED.value] > ZERO:
            for prefix in ("super_admin", "hr", "manager"):
                comment = getattr(leave, f"{prefix}_approval_comment")
                if comment:
                    rejection_reason = comment
                    break

        employee = leave.employee
        return {
            "id": leave.id,
            "employee_id": leave.employee_id,
            "employee_name": employee.full_name if employee else None,
            "employee_emp_id": employee.emp_id if employee else None,
            "leave_type": leave.leave_type,
            "start_date": leave.start_date,
            "start_type": leave.start_type,
            "end_date": leave.end_date,
            "end_type": leave.end_type,
            "reason": leave.reason,
            "no_of_days": float(leave.no_of_days),
            "time_for_permission_start": leave.time_for_permission_start,
            "time_for_permission_end": leave.time_for_permission_end,
            "doctor_note": leave.doctor_note,
            "current_status": leave.current_status,
            "applied_date": leave.applied_date,
            "approved_days": float(buckets[DayStatus.APPROVED.value]),
            "rejected_days": float(buckets[DayStatus.REJECTED.value]),
            "pending_days": float(buckets[DayStatus.PENDING.value]),
            "approver_name": approver_name,
            "approver_role": approver_role,
            "rejection_reason": rejection_reason,
            "days": [
                {
                    "id": d.id,
                    "leave_date": d.leave_date,
                    "day_type": d.day_type,
                    "day_status": d.day_status,
                    "leave_type": d.leave_type,
                }
                for d in leave.days
            ] if include_days else [],
        }

    def list_mine(self, employee: User, page: int = 1, limit: int = 10, status: Optional[str] = None) -> Dict[str, Any]:
        query = self.db.query(LeaveRequest).filter(LeaveRequest.employee_id == employee.id)
        if status:
            query = query.filter(LeaveRequest.current_status == LeaveStatus(status).value)
        total = query.count()
        rows = (
            query.order_by(LeaveRequest.applied_date.desc(), LeaveRequest.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {"requests": [self.summarize(r) for r in rows], "pagination": paginate(page, limit, total)}

    def get_by_id(self, request_id: int, viewer: User) -> LeaveRequest:
        """Visible to the owner and to approvers allowed to act on it."""
        leave = self.db.get(LeaveRequest, request_id)
        if leave is None:
            raise NotFoundError("Leave request not found")
        if leave.employee_id == viewer.id:
            return leave
        policy = APPROVER_POLICY.get(viewer.role)
        if policy is not None and policy(viewer).can_act_on(leave.employee):
            return leave
        raise NotFoundError("Leave request not found")

    def list_pending(
        self,
        actor: User,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        leave_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        approver = approver_for(actor)
        query = (
            self.db.query(LeaveRequest)
            .join(User, User.id == LeaveRequest.employee_id)
            .filter(has_pending_day(), *actionable_clause(approver))
        )
        if search:
            pattern = f"%{search.strip()}%"
            full_name = User.first_name + " " + func.coalesce(User.last_name, "")
            query = query.filter(
                or_(User.emp_id.ilike(pattern), User.first_name.ilike(pattern), User.last_name.ilike(pattern), full_name.ilike(pattern))
            )
        if leave_type:
            query = query.filter(LeaveRequest.leave_type == LeaveType(leave_type).value)

        total = query.count()
        rows = (
            query.order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {"requests": [self.summarize(r) for r in rows], "pagination": paginate(page, limit, total)}

    def list_decided(
        self,
        actor: User,
        page: int = 1,
        limit: int = 10,
        leave_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Approver history: requests in the actor's scope where every day has been
        decided, most recently applied first. A super admin decision does not
        hide a request here.
        """
        approver = approver_for(actor)
        in_scope = (
            select(User.id)
            .where(User.id == LeaveRequest.employee_id, approver.scope_clause())
            .correlate(LeaveRequest)
            .exists()
        )
        query = self.db.query(LeaveRequest).filter(
            LeaveRequest.employee_id != actor.id,
            LeaveRequest.current_status != LeaveStatus.PENDING.value,
            ~has_pending_day(),
            in_scope,
        )
        if leave_type:
            query = query.filter(LeaveRequest.leave_type == LeaveType(leave_type).value)

        total = query.count()
        rows = (
            query.order_by(LeaveRequest.applied_date.desc(), LeaveRequest.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {"requests": [self.summarize(r) for r in rows], "pagination": paginate(page, limit, total)}

    def get_balances(self, employee: User) -> Dict[str, Decimal]:
        return balance_snapshot(self.ledger.get_or_init_balance(employee))

    def get_holidays(self, year: Optional[int] = None) -> List[Holiday]:
        """Holidays of `year` (default: current) and the following year."""
        year = year or date.today().year
        return (
            self.db.query(Holiday)
            .filter(
                Holiday.is_active.is_(True),
                Holiday.holiday_date >= date(year, 1, 1),
                Holiday.holiday_date <= date(year + 1, 12, 31),
            )
            .order_by(Holiday.holiday_date)
            .all()
        )

    def get_rules(self) -> List[Dict[str, str]]:
        rules = (
            self.db.query(LeaveRule)
            .filter(LeaveRule.is_active.is_(True))
            .order_by(LeaveRule.leave_required_min)
            .all()
        )
        return [format_rule(rule) for rule in rules]
