# src/services/notifications.py
# -----------------------------------------------------------------------------
# Уведомления админам и мерчантам
# -----------------------------------------------------------------------------
# Запись: NotificationService рендерит шаблон и ставит задачу CREATE_NOTIFICATION
# в notification-queue. Настройки получателя проверяет воркер, не продьюсер.
# Чтение: список/счётчик/прочтение/удаление - всегда в рамках получателя.

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from src.models.notification import Notification, NotificationType, RecipientType
from src.models.user import User, UserRole
from src.queues.job_queue import EnqueueResult, JobQueue, safe_enqueue
from src.schemas.notification import CreateNotificationPayload, NotificationOut
from src.services.notification_types import render_notification

log = logging.getLogger(__name__)

# виды задач в notification-queue (поле "type" в data)
CREATE_NOTIFICATION = "CREATE_NOTIFICATION"
CLEANUP_OLD_NOTIFICATIONS = "CLEANUP_OLD_NOTIFICATIONS"
CREATE_JOB_NAME = "create-notification"

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 50


async def queue_notification(queue: JobQueue, payload: CreateNotificationPayload) -> EnqueueResult:
    return await safe_enqueue(
        queue,
        CREATE_JOB_NAME,
        {"type": CREATE_NOTIFICATION, "data": payload.model_dump(mode="json")},
    )


# =========================
# Запись
# =========================

class NotificationService:
    def __init__(self, queue: JobQueue, session_factory: Callable[[], Session]) -> None:
        self.queue = queue
        self._session_factory = session_factory

    async def create_notification(
        self,
        recipient_id: str,
        recipient_type: RecipientType | str,
        type: NotificationType | str,
        title: str,
        message: str,
        *,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> EnqueueResult:
        try:
            payload = CreateNotificationPayload(
                recipient_id=recipient_id,
                recipient_type=recipient_type,
                type=type,
                title=title,
                message=message,
                resource_type=resource_type,
                resource_id=resource_id,
                actor_id=actor_id,
                actor_name=actor_name,
            )
        except Exception as exc:
            log.exception("Invalid notification payload for %s", recipient_id)
            return EnqueueResult(queued=False, error=str(exc))
        return await queue_notification(self.queue, payload)

    def _first_active_admin_id(self) -> Optional[str]:
        with self._session_factory() as db:
            return db.execute(
                select(User.id)
                .where(User.role == UserRole.ADMIN, User.is_active.is_(True))
                .order_by(User.created_at.asc())
                .limit(1)
            ).scalar_one_or_none()

    async def notify_admin(
        self,
        type: NotificationType,
        data: Mapping[str, Any],
        *,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> EnqueueResult:
        """Уведомление первому активному админу. Нет админа - warning и queued=False."""
        try:
            admin_id = await asyncio.to_thread(self._first_active_admin_id)
        except Exception as exc:
            log.exception("Could not look up admin recipient for %s", type.value)
            return EnqueueResult(queued=False, error=str(exc))
        if admin_id is None:
            log.warning("No active admin found to send %s notification", type.value)
            return EnqueueResult(queued=False, error="no active admin")

        title, message = render_notification(type, data)
        return await self.create_notification(
            admin_id,
            RecipientType.ADMIN,
            type,
            title,
            message,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            actor_name=actor_name,
        )

    async def notify_merchant(
        self,
        merchant_user_id: str,
        type: NotificationType,
        data: Mapping[str, Any],
        *,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
    ) -> EnqueueResult:
        title, message = render_notification(type, data)
        return await self.create_notification(
            merchant_user_id,
            RecipientType.MERCHANT,
            type,
            title,
            message,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            actor_name=actor_name,
        )

    # ---------- доменные события ----------
    async def on_merchant_registered(self, merchant_user_id: str, merchant_name: str) -> EnqueueResult:
        return await self.notify_admin(
            NotificationType.MERCHANT_REGISTERED,
            {"merchantName": merchant_name},
            resource_type="MerchantProfile",
            resource_id=merchant_user_id,
            actor_id=merchant_user_id,
            actor_name=merchant_name,
        )

    async def on_profile_submitted_for_verification(
        self, merchant_user_id: str, merchant_name: str, profile_id: str
    ) -> EnqueueResult:
        return await self.notify_admin(
            NotificationType.PROFILE_SUBMITTED_FOR_VERIFICATION,
            {"merchantName": merchant_name},
            resource_type="MerchantProfile",
            resource_id=profile_id,
            actor_id=merchant_user_id,
            actor_name=merchant_name,
        )

    async def on_purchase_made(
        self,
        purchase_id: str,
        gift_card_title: str,
        amount: Any,
        customer_name: str,
        merchant_id: Optional[str] = None,
    ) -> EnqueueResult:
        return await self.notify_admin(
            NotificationType.PURCHASE_MADE,
            {"giftCardTitle": gift_card_title, "amount": amount, "customerName": customer_name},
            resource_type="PurchasedGiftCard",
            resource_id=purchase_id,
            actor_name=customer_name,
        )

    async def on_redemption_made(
        self, redemption_id: str, amount: Any, gift_card_title: str, redeemed_by_name: str
    ) -> EnqueueResult:
        return await self.notify_admin(
            NotificationType.REDEMPTION_MADE,
            {"amount": amount, "giftCardTitle": gift_card_title},
            resource_type="Redemption",
            resource_id=redemption_id,
            actor_name=redeemed_by_name,
        )

    async def on_profile_verified(self, merchant_user_id: str) -> EnqueueResult:
        return await self.notify_merchant(
            merchant_user_id,
            NotificationType.PROFILE_VERIFIED,
            {},
            resource_type="MerchantProfile",
            resource_id=merchant_user_id,
        )

    async def on_profile_rejected(self, merchant_user_id: str, reason: str) -> EnqueueResult:
        return await self.notify_merchant(
            merchant_user_id,
            NotificationType.PROFILE_REJECTED,
            {"reason": reason},
            resource_type="MerchantProfile",
            resource_id=merchant_user_id,
        )

    async def on_gift_card_purchased(
        self,
        merchant_user_id: str,
        purchase_id: str,
        gift_card_title: str,
        customer_name: str,
        amount: Any,
    ) -> EnqueueResult:
        return await self.notify_merchant(
            merchant_user_id,
            NotificationType.GIFT_CARD_PURCHASED,
            {"giftCardTitle": gift_card_title, "customerName": customer_name, "amount": amount},
            resource_type="PurchasedGiftCard",
            resource_id=purchase_id,
            actor_name=customer_name,
        )

    async def on_gift_card_redeemed(
        self,
        merchant_user_id: str,
        redemption_id: str,
        gift_card_title: str,
        amount: Any,
        redeemed_by_name: str,
    ) -> EnqueueResult:
        return await self.notify_merchant(
            merchant_user_id,
            NotificationType.GIFT_CARD_REDEEMED,
            {"giftCardTitle": gift_card_title, "amount": amount},
            resource_type="Redemption",
            resource_id=redemption_id,
            actor_name=redeemed_by_name,
        )


# =========================
# Чтение
# =========================

def get_notifications(
    db: Session,
    user_id: str,
    recipient_type: RecipientType,
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_LIMIT,
    unread_only: bool = False,
) -> Dict[str, Any]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_LIMIT)
    offset = (page - 1) * limit

    conditions = [Notification.recipient_id == user_id, Notification.recipient_type == recipient_type]
    if unread_only:
        conditions.append(Notification.is_read.is_(False))

    total = int(db.execute(select(func.count(Notification.id)).where(*conditions)).scalar_one())
    rows = db.execute(
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    return {
        "notifications": [NotificationOut.model_validate(r) for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit),
            "hasMore": offset + len(rows) < total,
        },
    }


def get_unread_count(db: Session, user_id: str, recipient_type: RecipientType) -> int:
    return int(
        db.execute(
            select(func.count(Notification.id)).where(
                Notification.recipient_id == user_id,
                Notification.recipient_type == recipient_type,
                Notification.is_read.is_(False),
            )
        ).scalar_one()
    )


def admin_unread_count(db: Session) -> int:
    """Непрочитанные для всей админской аудитории (комната admin:notifications)."""
    return int(
        db.execute(
            select(func.count(Notification.id)).where(
                Notification.recipient_type == RecipientType.ADMIN,
                Notification.is_read.is_(False),
            )
        ).scalar_one()
    )


def mark_as_read(db: Session, notification_id: str, user_id: str) -> int:
    """Возвращает число изменённых строк (0 - не найдено или чужое)."""
    result = db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.recipient_id == user_id)
        .values(is_read=True, read_at=datetime.now())
    )
    db.commit()
    return int(result.rowcount or 0)


def mark_all_as_read(db: Session, user_id: str, recipient_type: RecipientType) -> int:
    result = db.execute(
        update(Notification)
        .where(
            Notification.recipient_id == user_id,
            Notification.recipient_type == recipient_type,
            Notification.is_read.is_(False),
        )
        .values(is_read=True, read_at=datetime.now())
    )
    db.commit()
    return int(result.rowcount or 0)


def delete_notification(db: Session, notification_id: str, user_id: str) -> int:
    result = db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.recipient_id == user_id)
    )
    db.commit()
    return int(result.rowcount or 0)
