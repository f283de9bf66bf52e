from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from intranet.database import get_db
from intranet.models.user import User
from intranet.routers.auth_deps import get_current_user
from intranet.schemas.notification import NotificationPage, NotificationResponse
from intranet.core.schemas import paginate
from intranet.services.notification import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])

@router.get("/", response_model=NotificationPage)
def get_notifications(
    unread_only: bool = False,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    items, total, unread = NotificationService.list_for_user(db, current_user.id, unread_only, page, limit)
    return {
        "notifications": items,
        "unread_count": unread,
        "pagination": paginate(page, limit, total),
    }

@router.patch("/{notification_id}/read", response_model=NotificationResponse)
def mark_notification_as_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return NotificationService.mark_read(db, notification_id, current_user.id)

@router.post("/mark-all-read")
def mark_all_notifications_as_read(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    updated = NotificationService.mark_all_read(db, current_user.id)
    return {"message": "All notifications marked as read", "updated": updated}

@router.delete("/{notification_id}")
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    NotificationService.delete(db, notification_id, current_user.id)
    return {"message": "Notification deleted"}
