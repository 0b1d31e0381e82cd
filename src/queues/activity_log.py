# src/queues/activity_log.py
# Обработчик очереди activity-logs: событие → строка ActivityLog → пуш в
# admin:activity-logs (new-item + count-update с количеством за сегодня).
# Пуш идёт только после коммита; упавшая запись в БД → ретрай, пуша нет.

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Tuple

from sqlalchemy.orm import Session

from src.models.activity_log import ActivityLog
from src.queues.job_queue import Job
from src.realtime.hub import RealtimeHub
from src.schemas.activity_log import ActivityLogEvent, ActivityLogOut
from src.services.activity_log import count_today

log = logging.getLogger(__name__)

ACTIVITY_LOG_QUEUE = "activity-logs"


class ActivityLogProcessor:
    def __init__(self, session_factory: Callable[[], Session], hub: RealtimeHub) -> None:
        self._session_factory = session_factory
        self._hub = hub

    def _persist(self, event: ActivityLogEvent) -> Tuple[Dict[str, Any], int]:
        with self._session_factory() as db:
            row = ActivityLog(
                actor_id=event.actor_id,
                actor_type=event.actor_type,
                action=event.action,
                category=event.category,
                description=event.description,
                resource_type=event.resource_type,
                resource_id=event.resource_id,
                meta=event.metadata,
                severity=event.severity,
                merchant_id=event.merchant_id,
                ip_address=event.ip_address,
                user_agent=event.user_agent,
                created_at=event.created_at,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            item = ActivityLogOut.model_validate(row).model_dump(mode="json")
            return item, count_today(db)

    async def __call__(self, job: Job) -> Dict[str, Any]:
        event = ActivityLogEvent.model_validate(job.data)
        item, today = await asyncio.to_thread(self._persist, event)
        await self._hub.emit_activity_log(item, today_count=today)
        log.debug("Activity log %s stored (%s/%s)", item["id"], event.category.value, event.action)
        return {"success": True, "logId": item["id"]}
