from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from intranet.database import Base


class LeaveAccrualRun(Base):
    """
    One row per completed accrual job. `period` is "YYYY-MM" for monthly
    credits and "YYYY" for year-end adjustments.
    """
    __tablename__ = "leave_accrual_runs"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(20), nullable=False)
    period = Column(String(7), nullable=False)
    employees_affected = Column(Integer, nullable=False, default=0)
    triggered_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    ran_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("kind", "period", name="uq_leave_accrual_runs_kind_period"),
    )

    def __repr__(self):
        return f"<LeaveAccrualRun {self.kind} {self.period} ({self.employees_affected})>"
