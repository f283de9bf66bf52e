"""
User Model with hierarchical RBAC.
Every employee reports to one manager; approvals climb that chain.
"""
from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from intranet.database import Base


class UserRole(str, enum.Enum):
    """
    User roles, least to most privileged.

    - EMPLOYEE: Self-service access
    - MANAGER: Approves leave for direct reports
    - HR: Approves leave for employees and managers
    - SUPER_ADMIN: Unrestricted approvals; cannot apply for leave
    """
    EMPLOYEE = "employee"
    MANAGER = "manager"
    HR = "hr"
    SUPER_ADMIN = "super_admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    emp_id = Column(String(32), unique=True, index=True, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=True)

    role = Column(Enum(UserRole), default=UserRole.EMPLOYEE, nullable=False)

    reporting_manager_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    reporting_manager = relationship("User", remote_side=[id], backref="direct_reports")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")

    # Leave Workflow
    leave_requests = relationship("LeaveRequest", foreign_keys="[LeaveRequest.employee_id]", back_populates="employee", cascade="all, delete-orphan")
    leave_balance = relationship("LeaveBalance", foreign_keys="[LeaveBalance.employee_id]", back_populates="employee", uselist=False, cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.emp_id} {self.email} ({self.role.value})>"

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_hr(self) -> bool:
        return self.role == UserRole.HR

    @property
    def is_super_admin(self) -> bool:
        return self.role == UserRole.SUPER_ADMIN

    @property
    def can_approve(self) -> bool:
        """Check if user can act on other people's leave requests."""
        return self.role in [UserRole.MANAGER, UserRole.HR, UserRole.SUPER_ADMIN]
