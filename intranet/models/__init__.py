# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import user, leave_request, leave_balance, leave_accrual, holiday, leave_rule, notification

# Explicit class exports for cleaner imports
from .user import User, UserRole
from .leave_request import LeaveRequest, LeaveDay, LeaveType, LeaveStatus, DayStatus, DayPortion, DayType
from .leave_balance import LeaveBalance
from .leave_accrual import LeaveAccrualRun
from .holiday import Holiday
from .leave_rule import LeaveRule
from .notification import Notification

__all__ = [
    "User",
    "UserRole",
    "LeaveRequest",
    "LeaveDay",
    "LeaveType",
    "LeaveStatus",
    "DayStatus",
    "DayPortion",
    "DayType",
    "LeaveBalance",
    "LeaveAccrualRun",
    "Holiday",
    "LeaveRule",
    "Notification",
]
