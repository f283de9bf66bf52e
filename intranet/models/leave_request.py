from decimal import Decimal
from sqlalchemy import Column, Integer, String, Date, Time, Numeric, ForeignKey, DateTime, Text, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from intranet.database import Base
import enum


class LeaveType(str, enum.Enum):
    CASUAL = "casual"
    SICK = "sick"
    LOP = "lop"  # loss of pay
    PERMISSION = "permission"  # a few hours, never charged against a balance

    @property
    def is_balance_tracked(self) -> bool:
        return self is not LeaveType.PERMISSION


class DayPortion(str, enum.Enum):
    FULL = "full"
    HALF = "half"
    FIRST_HALF = "first_half"
    SECOND_HALF = "second_half"

    @property
    def is_half(self) -> bool:
        return self is not DayPortion.FULL


class DayType(str, enum.Enum):
    FULL = "full"
    HALF = "half"


class LeaveStatus(str, enum.Enum):
    PENDING = "pending"
    PARTIALLY_APPROVED = "partially_approved"
    APPROVED = "approved"
    REJECTED = "rejected"


class DayStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # Enum values stored as strings for SQLite/PostgreSQL parity
    leave_type = Column(String(20), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    start_type = Column(String(20), nullable=False, default=DayPortion.FULL.value)
    end_date = Column(Date, nullable=False)
    end_type = Column(String(20), nullable=False, default=DayPortion.FULL.value)
    reason = Column(Text, nullable=False)
    no_of_days = Column(Numeric(4, 1), nullable=False)
    time_for_permission_start = Column(Time, nullable=True)
    time_for_permission_end = Column(Time, nullable=True)
    doctor_note = Column(Text, nullable=True)
    current_status = Column(String(30), nullable=False, default=LeaveStatus.PENDING.value, index=True)
    applied_date = Column(Date, nullable=False)

    manager_approval_status = Column(String(20), nullable=True)
    manager_approval_date = Column(DateTime(timezone=True), nullable=True)
    manager_approval_comment = Column(Text, nullable=True)
    manager_approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    hr_approval_status = Column(String(20), nullable=True)
    hr_approval_date = Column(DateTime(timezone=True), nullable=True)
    hr_approval_comment = Column(Text, nullable=True)
    hr_approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    super_admin_approval_status = Column(String(20), nullable=True)
    super_admin_approval_date = Column(DateTime(timezone=True), nullable=True)
    super_admin_approval_comment = Column(Text, nullable=True)
    super_admin_approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    last_updated_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    last_updated_by_role = Column(String(20), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    employee = relationship("User", foreign_keys=[employee_id], back_populates="leave_requests")
    days = relationship(
        "LeaveDay",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="LeaveDay.leave_date",
    )

    def __repr__(self):
        return f"<LeaveRequest {self.id} {self.leave_type} {self.start_date}..{self.end_date} ({self.current_status})>"


class LeaveDay(Base):
    __tablename__ = "leave_days"

    id = Column(Integer, primary_key=True, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    leave_date = Column(Date, nullable=False)
    day_type = Column(String(10), nullable=False, default=DayType.FULL.value)
    day_status = Column(String(20), nullable=False, default=DayStatus.PENDING.value)
    leave_type = Column(String(20), nullable=False)

    request = relationship("LeaveRequest", back_populates="days")

    __table_args__ = (
        Index("ix_leave_days_employee_date", "employee_id", "leave_date"),
    )

    @property
    def charge(self):
        return Decimal("0.5") if self.day_type == DayType.HALF.value else Decimal("1")
