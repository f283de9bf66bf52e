from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import date, time
from typing import List, Optional

from intranet.core.schemas import Pagination
from intranet.models.leave_request import DayPortion, LeaveType

class LeaveApplyRequest(BaseModel):
    leave_type: LeaveType
    start_date: date
    start_type: DayPortion = DayPortion.FULL
    end_date: date
    end_type: DayPortion = DayPortion.FULL
    reason: str = Field(..., min_length=1, max_length=2000)
    time_for_permission_start: Optional[time] = None
    time_for_permission_end: Optional[time] = None
    doctor_note: Optional[str] = None

    @model_validator(mode="after")
    def strip_reason(self):
        self.reason = self.reason.strip()
        if not self.reason:
            raise ValueError("reason must not be blank")
        return self

class LeaveActionRequest(BaseModel):
    comment: Optional[str] = Field(default=None, max_length=2000)

class LeaveDaysActionRequest(BaseModel):
    day_ids: List[int] = Field(..., min_length=1)
    comment: Optional[str] = Field(default=None, max_length=2000)

class LeaveDayResponse(BaseModel):
    id: int
    leave_date: date
    day_type: str
    day_status: str
    leave_type: str

    model_config = ConfigDict(from_attributes=True)

class LeaveRequestResponse(BaseModel):
    id: int
    employee_id: int
    employee_name: Optional[str] = None
    employee_emp_id: Optional[str] = None
    leave_type: str
    start_date: date
    start_type: str
    end_date: date
    end_type: str
    reason: str
    no_of_days: float
    time_for_permission_start: Optional[time] = None
    time_for_permission_end: Optional[time] = None
    doctor_note: Optional[str] = None
    current_status: str
    applied_date: date
    approved_days: float = 0
    rejected_days: float = 0
    pending_days: float = 0
    approver_name: Optional[str] = None
    approver_role: Optional[str] = None
    rejection_reason: Optional[str] = None
    days: List[LeaveDayResponse] = []


class LeaveRequestPage(BaseModel):
    requests: List[LeaveRequestResponse]
    pagination: Pagination

class LeaveBalanceResponse(BaseModel):
    casual: float
    sick: float
    lop: float

class HolidayResponse(BaseModel):
    id: int
    holiday_date: date
    holiday_name: str

    model_config = ConfigDict(from_attributes=True)

class LeaveRuleResponse(BaseModel):
    leave_required: str
    prior_information: str
