# src/services/activity_log.py
# -----------------------------------------------------------------------------
# Аудит-лог: запись (через очередь, fire-and-forget) и чтение (для админки).
# -----------------------------------------------------------------------------
# Запись: домен вызывает ActivityLogService.log_activity(...). Событие получает
# created_at в момент вызова и уходит в очередь activity-logs; строку в БД пишет
# только воркер. Ошибка постановки логируется и НИКОГДА не пробрасывается.
#
# Чтение: функции ниже работают с Session напрямую; ошибки пробрасываются
# вызывающему (дашборду нужно знать, что чтение упало).

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.models.activity_log import ActivityCategory, ActivityLog, ActivitySeverity, ActorType
from src.queues.job_queue import EnqueueResult, JobQueue, safe_enqueue
from src.schemas.activity_log import ActivityLogEvent, ActivityLogFilters, ActivityLogOut

log = logging.getLogger(__name__)

LOG_JOB_NAME = "log"

RECENT_ERRORS_LIMIT = 10
TIMELINE_LIMIT = 100


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request: Any) -> "RequestContext":
        """
        IP: первый хоп X-Forwarded-For (за прокси), иначе адрес клиента.
        Принимает starlette Request/WebSocket; None → пустой контекст.
        """
        if request is None:
            return cls()
        headers = getattr(request, "headers", None) or {}
        forwarded = headers.get("x-forwarded-for")
        ip = forwarded.split(",")[0].strip() if forwarded else None
        if not ip:
            client = getattr(request, "client", None)
            ip = getattr(client, "host", None)
        return cls(ip_address=ip or None, user_agent=headers.get("user-agent") or None)


def _today_start(now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _escape_like(term: str) -> str:
    """Поиск - обычная подстрока: % и _ в запросе не шаблоны."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# =========================
# Запись
# =========================

class ActivityLogService:
    def __init__(self, queue: JobQueue) -> None:
        self.queue = queue
        self._pending: Set[asyncio.Task] = set()

    def build_event(
        self,
        actor_type: ActorType | str,
        action: str,
        category: ActivityCategory | str,
        description: str,
        *,
        actor_id: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        severity: ActivitySeverity | str = ActivitySeverity.INFO,
        merchant_id: Optional[str] = None,
        request: Any = None,
        context: Optional[RequestContext] = None,
    ) -> ActivityLogEvent:
        ctx = context or RequestContext.from_request(request)
        return ActivityLogEvent(
            actor_id=actor_id,
            actor_type=actor_type,
            action=action,
            category=category,
            description=description,
            resource_type=resource_type,
            resource_id=resource_id,
            metadata=metadata,
            severity=severity or ActivitySeverity.INFO,
            merchant_id=merchant_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            created_at=datetime.now(),
        )

    async def enqueue(self, event: ActivityLogEvent) -> EnqueueResult:
        try:
            data = event.model_dump(mode="json")
        except Exception as exc:
            log.exception("Failed to serialize activity log event")
            return EnqueueResult(queued=False, error=str(exc))
        return await safe_enqueue(self.queue, LOG_JOB_NAME, data)

    async def log_activity(self, actor_type, action, category, description, **kwargs) -> EnqueueResult:
        """
        Поставить событие в очередь. Ждём только запись в Redis, не БД.
        Никогда не бросает: результат можно игнорировать.
        """
        try:
            event = self.build_event(actor_type, action, category, description, **kwargs)
        except Exception as exc:
            log.exception("Failed to build activity log event (%s/%s)", category, action)
            return EnqueueResult(queued=False, error=str(exc))
        return await self.enqueue(event)

    def log_activity_nowait(self, actor_type, action, category, description, **kwargs) -> Optional[asyncio.Task]:
        """
        То же, но без ожидания: задача на текущем event loop. Событие (и created_at)
        фиксируется синхронно, до возврата.
        """
        try:
            event = self.build_event(actor_type, action, category, description, **kwargs)
            loop = asyncio.get_running_loop()
        except Exception:
            log.exception("Failed to schedule activity log event (%s/%s)", category, action)
            return None
        task = loop.create_task(self.enqueue(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task


# =========================
# Чтение
# =========================

def get_activity_logs(db: Session, filters: ActivityLogFilters) -> dict:
    """
    Список с фильтрами и offset-пагинацией, всегда newest-first.
    Даты включительно: start_date <= created_at <= end_date.
    """
    conditions = []
    if filters.category is not None:
        conditions.append(ActivityLog.category == filters.category)
    if filters.severity is not None:
        conditions.append(ActivityLog.severity == filters.severity)
    if filters.merchant_id:
        conditions.append(ActivityLog.merchant_id == filters.merchant_id)
    if filters.actor_id:
        conditions.append(ActivityLog.actor_id == filters.actor_id)
    if filters.resource_type:
        conditions.append(ActivityLog.resource_type == filters.resource_type)
    if filters.resource_id:
        conditions.append(ActivityLog.resource_id == filters.resource_id)
    if filters.start_date is not None:
        conditions.append(ActivityLog.created_at >= filters.start_date)
    if filters.end_date is not None:
        conditions.append(ActivityLog.created_at <= filters.end_date)
    if filters.search:
        conditions.append(ActivityLog.description.ilike(f"%{_escape_like(filters.search)}%", escape="\\"))

    total = db.execute(select(func.count(ActivityLog.id)).where(*conditions)).scalar_one()

    rows = db.execute(
        select(ActivityLog)
        .where(*conditions)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
    ).scalars().all()

    return {
        "logs": [ActivityLogOut.model_validate(r) for r in rows],
        "pagination": {
            "page": filters.page,
            "limit": filters.limit,
            "total": int(total),
            "totalPages": math.ceil(total / filters.limit),
        },
    }


def count_today(db: Session, merchant_id: Optional[str] = None, now: Optional[datetime] = None) -> int:
    conditions = [ActivityLog.created_at >= _today_start(now)]
    if merchant_id:
        conditions.append(ActivityLog.merchant_id == merchant_id)
    return int(db.execute(select(func.count(ActivityLog.id)).where(*conditions)).scalar_one())


def get_activity_stats(db: Session, merchant_id: Optional[str] = None, now: Optional[datetime] = None) -> dict:
    """
    Сводка за «сегодня» (с полуночи по времени сервера):
    количество, разбивка по категориям и важности, последние ошибки (ERROR/CRITICAL).
    """
    today = _today_start(now)
    base = [ActivityLog.created_at >= today]
    if merchant_id:
        base.append(ActivityLog.merchant_id == merchant_id)

    today_count = db.execute(select(func.count(ActivityLog.id)).where(*base)).scalar_one()

    by_category = db.execute(
        select(ActivityLog.category, func.count(ActivityLog.id)).where(*base).group_by(ActivityLog.category)
    ).all()
    by_severity = db.execute(
        select(ActivityLog.severity, func.count(ActivityLog.id)).where(*base).group_by(ActivityLog.severity)
    ).all()

    recent_errors = db.execute(
        select(ActivityLog)
        .where(
            *base,
            ActivityLog.severity.in_([ActivitySeverity.ERROR, ActivitySeverity.CRITICAL]),
        )
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(RECENT_ERRORS_LIMIT)
    ).scalars().all()

    return {
        "today": int(today_count),
        "byCategory": {cat.value: int(cnt) for cat, cnt in by_category},
        "bySeverity": {sev.value: int(cnt) for sev, cnt in by_severity},
        "recentErrors": [ActivityLogOut.model_validate(r) for r in recent_errors],
    }


def get_resource_timeline(
    db: Session,
    resource_type: str,
    resource_id: str,
    limit: int = TIMELINE_LIMIT,
) -> dict:
    """История одной сущности (например, одной подарочной карты), newest-first."""
    rows = db.execute(
        select(ActivityLog)
        .where(ActivityLog.resource_type == resource_type, ActivityLog.resource_id == resource_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(limit)
    ).scalars().all()
    return {"logs": [ActivityLogOut.model_validate(r) for r in rows]}
