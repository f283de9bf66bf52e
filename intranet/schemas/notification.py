from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import List, Optional

from intranet.core.schemas import Pagination

class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: Optional[str] = None
    link: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

class NotificationPage(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int
    pagination: Pagination
