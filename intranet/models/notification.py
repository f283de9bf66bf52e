from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from intranet.database import Base

# Severity shown in the inbox; leave workflows use info/success/warning/error
NOTIFICATION_TYPES = ("info", "success", "warning", "error")


class Notification(Base):
    """In-app inbox entry. Leave actions link back to `/leave/requests/{id}`."""
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), default="info", nullable=False)
    link = Column(String(255), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    user = relationship("User", back_populates="notifications")

    __table_args__ = (
        # Unread badge and inbox listing both filter on these two
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )

    def __repr__(self):
        return f"<Notification {self.id} user={self.user_id} {self.type} read={self.is_read}>"
