# src/runtime.py
# -----------------------------------------------------------------------------
# Pipeline: всё, что живёт на протяжении процесса (Redis, очереди, воркеры,
# WebSocket-хаб, сервисы-продьюсеры). Собирается один раз при старте приложения
# и кладётся в app.state.pipeline; никаких модульных синглтонов.
# -----------------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Callable, Dict

import redis.asyncio as aioredis
from fastapi import Request
from sqlalchemy.orm import Session

from src.config import Settings
from src.queues.activity_log import ACTIVITY_LOG_QUEUE, ActivityLogProcessor
from src.queues.job_queue import JobOptions, JobQueue
from src.queues.notification import NOTIFICATION_QUEUE, NotificationProcessor, schedule_notification_cleanup
from src.queues.worker import Worker
from src.realtime.hub import RealtimeHub
from src.services.activity_log import ActivityLogService
from src.services.activity_logger import ActivityLogger
from src.services.notifications import NotificationService

log = logging.getLogger(__name__)


class Pipeline:
    def __init__(self, settings: Settings, redis, session_factory: Callable[[], Session]) -> None:
        self.settings = settings
        self.redis = redis
        self.session_factory = session_factory
        self.hub = RealtimeHub()

        options = JobOptions.from_settings(settings.queue)
        self.activity_queue = JobQueue(
            ACTIVITY_LOG_QUEUE, redis, prefix=settings.queue_prefix, default_options=options
        )
        self.notification_queue = JobQueue(
            NOTIFICATION_QUEUE, redis, prefix=settings.queue_prefix, default_options=options
        )

        worker_kwargs = dict(
            concurrency=settings.queue.concurrency,
            poll_interval=settings.queue.poll_interval,
            log_completed=not settings.is_production,
        )
        self.activity_worker = Worker(
            self.activity_queue,
            ActivityLogProcessor(session_factory, self.hub),
            **worker_kwargs,
        )
        self.notification_worker = Worker(
            self.notification_queue,
            NotificationProcessor(
                session_factory,
                self.hub,
                retention_days=settings.notification_retention_days,
            ),
            **worker_kwargs,
        )

        self.activity_log = ActivityLogService(self.activity_queue)
        self.activity_logger = ActivityLogger(self.activity_log)
        self.notifications = NotificationService(self.notification_queue, session_factory)

    @classmethod
    def from_settings(cls, settings: Settings, session_factory: Callable[[], Session]) -> "Pipeline":
        client = aioredis.from_url(settings.redis_url, decode_responses=True)
        return cls(settings, client, session_factory)

    @property
    def queues(self) -> Dict[str, JobQueue]:
        return {q.name: q for q in (self.activity_queue, self.notification_queue)}

    @property
    def workers(self):
        return (self.activity_worker, self.notification_worker)

    async def start(self) -> None:
        for worker in self.workers:
            worker.start()
        try:
            await schedule_notification_cleanup(
                self.notification_queue,
                hour=self.settings.cleanup_hour,
                minute=self.settings.cleanup_minute,
            )
        except Exception:
            # без расписания очистки приложение работает; воркеры уже запущены
            log.exception("Failed to schedule notification cleanup")
        log.info("Pipeline started (env=%s)", self.settings.app_env)

    async def close(self) -> None:
        for worker in self.workers:
            await worker.close()
        await self.redis.aclose()
        log.info("Pipeline closed")

    async def ping_redis(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception as exc:
            log.warning("Redis ping failed: %s", exc)
            return False


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline
