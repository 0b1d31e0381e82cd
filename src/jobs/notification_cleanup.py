# src/jobs/notification_cleanup.py
# ОЧИСТКА СТАРЫХ УВЕДОМЛЕНИЙ (РАЗ В СУТКИ)
# -----------------------------------------------------------------------------
# Что делает этот модуль:
#   • Удаляет уведомления старше окна хранения (по умолчанию 30 дней),
#     независимо от статуса прочтения.
#
# Как запускается:
#   Повторяющаяся задача "cleanup-old-notifications" в очереди notification-queue
#   (см. src/queues/notification.py → schedule_notification_cleanup), раз в сутки в 02:00
#   по времени сервера. Воркер вызывает cleanup_old_notifications_once().
#
#   Одноразовый прогон вручную:
#       >>> from src.db import SessionLocal
#       >>> from src.jobs.notification_cleanup import cleanup_old_notifications_once
#       >>> with SessionLocal() as db:
#       ...     cleanup_old_notifications_once(db)

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.orm import Session

from src.models.notification import Notification

log = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


def retention_cutoff(now: datetime, retention_days: int = DEFAULT_RETENTION_DAYS) -> datetime:
    """Граница хранения: всё, что создано раньше, удаляем."""
    return now - timedelta(days=retention_days)


def cleanup_old_notifications_once(
    db: Session,
    *,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: Optional[datetime] = None,
) -> dict:
    """
    Одноразовый прогон:
      - удаляет уведомления с created_at < now - retention_days,
      - коммитит,
      - возвращает сводку.
    """
    cutoff = retention_cutoff(now or datetime.now(), retention_days)
    result = db.execute(delete(Notification).where(Notification.created_at < cutoff))
    db.commit()

    summary = {"success": True, "deletedCount": int(result.rowcount or 0)}
    log.info("Cleaned up %s notifications older than %s days", summary["deletedCount"], retention_days)
    return summary
