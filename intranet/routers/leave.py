from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from intranet.database import get_db
from intranet.models.leave_request import LeaveStatus, LeaveType
from intranet.models.user import User
from intranet.routers.auth_deps import get_current_user, require_approver, require_hr_or_admin
from intranet.schemas.leave import (
    HolidayResponse,
    LeaveActionRequest,
    LeaveApplyRequest,
    LeaveDaysActionRequest,
    LeaveBalanceResponse,
    LeaveRequestPage,
    LeaveRequestResponse,
    LeaveRuleResponse,
)
from intranet.services.approval import ApprovalWorkflow
from intranet.services.balance import BalanceLedger
from intranet.services.leave_notifications import LeaveNotifier, status_email_scheduler
from intranet.services.leave_service import LeaveService

router = APIRouter(prefix="/leave", tags=["leave"])


def get_leave_service(background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> LeaveService:
    return LeaveService(
        db, notifier=LeaveNotifier(db), scheduler=status_email_scheduler, background_tasks=background_tasks
    )


def get_approval_workflow(background_tasks: BackgroundTasks, db: Session = Depends(get_db)) -> ApprovalWorkflow:
    return ApprovalWorkflow(
        db, notifier=LeaveNotifier(db), scheduler=status_email_scheduler, background_tasks=background_tasks
    )


# --- Reference data ---

@router.get("/balances", response_model=LeaveBalanceResponse)
def get_balances(
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(get_current_user)
):
    return service.get_balances(current_user)

@router.get("/holidays", response_model=List[HolidayResponse])
def get_holidays(
    year: Optional[int] = Query(default=None, ge=1900, le=9999),
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(get_current_user)
):
    return service.get_holidays(year)

@router.get("/rules", response_model=List[LeaveRuleResponse])
def get_rules(
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(get_current_user)
):
    return service.get_rules()


# --- Employee self-service ---

@router.post("/apply", response_model=LeaveRequestResponse, status_code=201)
def apply_leave(
    payload: LeaveApplyRequest,
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(get_current_user)
):
    leave = service.apply(current_user, payload)
    return service.summarize(leave)

@router.get("/my-requests", response_model=LeaveRequestPage)
def my_requests(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[LeaveStatus] = None,
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(get_current_user)
):
    return service.list_mine(current_user, page, limit, status.value if status else None)

@router.get("/request/{request_id}", response_model=LeaveRequestResponse)
def get_request(
    request_id: int,
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(get_current_user)
):
    return service.summarize(service.get_by_id(request_id, current_user))

@router.put("/request/{request_id}", response_model=LeaveRequestResponse)
def edit_request(
    request_id: int,
    payload: LeaveApplyRequest,
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(get_current_user)
):
    leave = service.edit(request_id, current_user, payload)
    return service.summarize(leave)

@router.delete("/request/{request_id}")
def delete_request(
    request_id: int,
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(get_current_user)
):
    service.delete(request_id, current_user)
    return {"success": True, "message": "Leave request deleted"}

@router.post("/request/{request_id}/convert-lop-to-casual", response_model=LeaveRequestResponse)
def convert_lop_to_casual(
    request_id: int,
    db: Session = Depends(get_db),
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_hr_or_admin())
):
    leave = BalanceLedger(db).convert_lop_to_casual(request_id, current_user)
    return service.summarize(leave)


# --- Approvals ---

@router.get("/pending", response_model=LeaveRequestPage)
def pending_requests(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=100),
    leave_type: Optional[LeaveType] = None,
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_approver())
):
    return service.list_pending(
        current_user, page, limit, search, leave_type.value if leave_type else None
    )

@router.get("/approved", response_model=LeaveRequestPage)
def decided_requests(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    leave_type: Optional[LeaveType] = None,
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_approver())
):
    return service.list_decided(current_user, page, limit, leave_type.value if leave_type else None)

@router.post("/{request_id}/approve", response_model=LeaveRequestResponse)
def approve_request(
    request_id: int,
    payload: Optional[LeaveActionRequest] = None,
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_approver())
):
    comment = payload.comment if payload else None
    leave = workflow.approve_request(request_id, current_user, comment)
    return service.summarize(leave)

@router.post("/{request_id}/reject", response_model=LeaveRequestResponse)
def reject_request(
    request_id: int,
    payload: LeaveActionRequest,
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_approver())
):
    leave = workflow.reject_request(request_id, current_user, payload.comment)
    return service.summarize(leave)

@router.post("/{request_id}/day/{day_id}/approve", response_model=LeaveRequestResponse)
def approve_day(
    request_id: int,
    day_id: int,
    payload: Optional[LeaveActionRequest] = None,
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_approver())
):
    comment = payload.comment if payload else None
    leave = workflow.approve_day(request_id, day_id, current_user, comment)
    return service.summarize(leave)

@router.post("/{request_id}/day/{day_id}/reject", response_model=LeaveRequestResponse)
def reject_day(
    request_id: int,
    day_id: int,
    payload: LeaveActionRequest,
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_approver())
):
    leave = workflow.reject_day(request_id, day_id, current_user, payload.comment)
    return service.summarize(leave)

@router.post("/{request_id}/days/approve", response_model=LeaveRequestResponse)
def approve_days(
    request_id: int,
    payload: LeaveDaysActionRequest,
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_approver())
):
    leave = workflow.approve_days(request_id, payload.day_ids, current_user, payload.comment)
    return service.summarize(leave)

@router.post("/{request_id}/days/reject", response_model=LeaveRequestResponse)
def reject_days(
    request_id: int,
    payload: LeaveDaysActionRequest,
    workflow: ApprovalWorkflow = Depends(get_approval_workflow),
    service: LeaveService = Depends(get_leave_service),
    current_user: User = Depends(require_approver())
):
    leave = workflow.reject_days(request_id, payload.day_ids, current_user, payload.comment)
    return service.summarize(leave)
