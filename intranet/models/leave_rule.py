from sqlalchemy import Column, Integer, Numeric, Boolean, DateTime
from sqlalchemy.sql import func
from intranet.database import Base

class LeaveRule(Base):
    """
    Advance-notice band: a request of `leave_required_min`..`leave_required_max`
    days must be filed `prior_information_days` ahead. A null max is open-ended.
    """
    __tablename__ = "leave_rules"

    id = Column(Integer, primary_key=True, index=True)
    leave_required_min = Column(Numeric(4, 1), nullable=False)
    leave_required_max = Column(Numeric(4, 1), nullable=True)
    prior_information_days = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
