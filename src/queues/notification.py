# src/queues/notification.py
# Обработчик очереди notification-queue.
#   CREATE_NOTIFICATION       - гейт настроек → строка Notification → пуш + счётчик непрочитанных
#   CLEANUP_OLD_NOTIFICATIONS - ежедневная очистка (повторяющаяся задача, 02:00)

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from src.jobs.notification_cleanup import DEFAULT_RETENTION_DAYS, cleanup_old_notifications_once
from src.models.notification import Notification, RecipientType
from src.queues.job_queue import Job, JobQueue
from src.realtime.hub import RealtimeHub
from src.schemas.notification import CreateNotificationPayload, NotificationOut
from src.services.notification_preferences import is_notification_enabled
from src.services.notifications import (
    CLEANUP_OLD_NOTIFICATIONS,
    CREATE_NOTIFICATION,
    admin_unread_count,
    get_unread_count,
)

log = logging.getLogger(__name__)

NOTIFICATION_QUEUE = "notification-queue"
CLEANUP_JOB_NAME = "cleanup-old-notifications"


class NotificationProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        hub: RealtimeHub,
        *,
        retention_days: int = DEFAULT_RETENTION_DAYS,
    ) -> None:
        self._session_factory = session_factory
        self._hub = hub
        self._retention_days = retention_days

    async def __call__(self, job: Job) -> Optional[Dict[str, Any]]:
        kind = job.data.get("type")
        if kind == CREATE_NOTIFICATION:
            payload = CreateNotificationPayload.model_validate(job.data.get("data") or {})
            return await self.create(payload)
        if kind == CLEANUP_OLD_NOTIFICATIONS:
            return await asyncio.to_thread(self._cleanup)
        log.warning("Unknown notification job type: %s", kind)
        return None

    # ---------- создание ----------
    def _persist(self, payload: CreateNotificationPayload) -> Optional[Tuple[Dict[str, Any], int]]:
        with self._session_factory() as db:
            if not is_notification_enabled(db, payload.recipient_id, payload.type):
                return None

            row = Notification(
                recipient_id=payload.recipient_id,
                recipient_type=payload.recipient_type,
                type=payload.type,
                title=payload.title,
                message=payload.message,
                resource_type=payload.resource_type,
                resource_id=payload.resource_id,
                actor_id=payload.actor_id,
                actor_name=payload.actor_name,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            item = NotificationOut.model_validate(row).model_dump(mode="json")

            if payload.recipient_type == RecipientType.ADMIN:
                unread = admin_unread_count(db)
            else:
                unread = get_unread_count(db, payload.recipient_id, RecipientType.MERCHANT)
            return item, unread

    async def create(self, payload: CreateNotificationPayload) -> Dict[str, Any]:
        stored = await asyncio.to_thread(self._persist, payload)
        if stored is None:
            log.debug(
                "Notification %s skipped for user %s: disabled in preferences",
                payload.type.value,
                payload.recipient_id,
            )
            return {"skipped": True}

        item, unread = stored
        if payload.recipient_type == RecipientType.ADMIN:
            await self._hub.emit_admin_notification(item, unread)
        else:
            await self._hub.emit_merchant_notification(payload.recipient_id, item, unread)
        return {"success": True, "notificationId": item["id"]}

    # ---------- очистка ----------
    def _cleanup(self) -> Dict[str, Any]:
        with self._session_factory() as db:
            return cleanup_old_notifications_once(db, retention_days=self._retention_days)


async def schedule_notification_cleanup(queue: JobQueue, *, hour: int = 2, minute: int = 0) -> str:
    """
    Регистрирует ежедневную очистку. Идемпотентно: старые расписания с тем же
    именем снимаются, поэтому перезапуски не плодят дубликаты.
    """
    for repeatable in await queue.get_repeatable_jobs():
        if repeatable.name == CLEANUP_JOB_NAME:
            await queue.remove_repeatable_by_key(repeatable.key)

    key = await queue.add_repeatable(
        CLEANUP_JOB_NAME,
        {"type": CLEANUP_OLD_NOTIFICATIONS, "data": {}},
        hour=hour,
        minute=minute,
    )
    log.info("Notification cleanup job scheduled (daily at %02d:%02d)", hour, minute)
    return key
