import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from intranet.core.exceptions import NotFoundError
from intranet.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    @staticmethod
    def create_notification(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        link: str = None
    ) -> Notification:
        """
        Internal utility for creating notifications.
        """
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            link=link
        )
        db.add(notification)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(notification)
        return notification

    @staticmethod
    def notify_user(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        link: str = None
    ):
        """
        Standardized notification trigger.
        """
        return NotificationService.create_notification(db, user_id, title, message, type, link)

    @staticmethod
    def safe_notify(
        db: Session,
        user_id: int,
        title: str,
        message: str,
        type: str = "info",
        link: str = None
    ) -> Optional[Notification]:
        """
        Best-effort variant used by workflows: a failed insert is logged and
        swallowed so it never undoes the leave action that triggered it.
        """
        try:
            return NotificationService.notify_user(db, user_id, title, message, type, link)
        except Exception as e:
            logger.warning(f"Notification failed for user {user_id}: {e}", exc_info=True)
            return None

    @staticmethod
    def list_for_user(
        db: Session,
        user_id: int,
        unread_only: bool = False,
        page: int = 1,
        limit: int = 20
    ) -> Tuple[List[Notification], int, int]:
        """Returns (items, total, unread_count) newest first."""
        query = db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        total = query.count()
        items = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        unread = db.query(Notification).filter(
            Notification.user_id == user_id, Notification.is_read.is_(False)
        ).count()
        return items, total, unread

    @staticmethod
    def _owned(db: Session, notification_id: int, user_id: int) -> Notification:
        notification = db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()
        if not notification:
            raise NotFoundError("Notification not found")
        return notification

    @staticmethod
    def mark_read(db: Session, notification_id: int, user_id: int) -> Notification:
        notification = NotificationService._owned(db, notification_id, user_id)
        notification.is_read = True
        db.commit()
        db.refresh(notification)
        return notification

    @staticmethod
    def mark_all_read(db: Session, user_id: int) -> int:
        updated = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.is_read.is_(False)
        ).update({Notification.is_read: True}, synchronize_session=False)
        db.commit()
        return updated

    @staticmethod
    def delete(db: Session, notification_id: int, user_id: int) -> None:
        notification = NotificationService._owned(db, notification_id, user_id)
        db.delete(notification)
        db.commit()
