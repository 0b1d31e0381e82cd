# src/schemas/notification.py
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel

from src.models.notification import NotificationType, RecipientType


class CreateNotificationPayload(BaseModel):
    """То, что уходит в очередь notification-queue (шаблон уже отрендерен)."""
    recipient_id: str
    recipient_type: RecipientType
    type: NotificationType
    title: str
    message: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None

    class Config:
        frozen = True


class NotificationOut(BaseModel):
    id: str
    recipient_id: str
    recipient_type: RecipientType
    type: NotificationType
    title: str
    message: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    actor_id: Optional[str] = None
    actor_name: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationPaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int
    hasMore: bool


class NotificationListOut(BaseModel):
    notifications: List[NotificationOut]
    pagination: NotificationPaginationOut


class NotificationListResponse(BaseModel):
    success: bool = True
    data: NotificationListOut


class NotificationPreferenceOut(BaseModel):
    user_id: str
    merchant_registered: bool
    profile_submitted_for_verification: bool
    purchase_made: bool
    redemption_made: bool
    profile_verified: bool
    profile_rejected: bool
    gift_card_purchased: bool
    gift_card_redeemed: bool
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationPreferenceUpdate(BaseModel):
    merchant_registered: Optional[bool] = None
    profile_submitted_for_verification: Optional[bool] = None
    purchase_made: Optional[bool] = None
    redemption_made: Optional[bool] = None
    profile_verified: Optional[bool] = None
    profile_rejected: Optional[bool] = None
    gift_card_purchased: Optional[bool] = None
    gift_card_redeemed: Optional[bool] = None

    class Config:
        extra = "forbid"


class NotificationPreferenceResponse(BaseModel):
    success: bool = True
    data: NotificationPreferenceOut
