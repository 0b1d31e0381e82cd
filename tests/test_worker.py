import asyncio
from datetime import datetime

import pytest
from sqlalchemy import func, select

from src.db import SessionLocal
from src.models.activity_log import ActivityCategory, ActivityLog, ActorType
from src.queues.activity_log import ActivityLogProcessor
from src.queues.job_queue import JobOptions
from src.queues.worker import Worker
from src.schemas.activity_log import ActivityLogEvent


def _event(**overrides) -> dict:
    data = dict(
        actor_type=ActorType.system,
        action="payment_failed",
        category=ActivityCategory.PURCHASE,
        description="Payment failed: card declined",
        created_at=datetime(2026, 10, 19, 9, 30, 0, 123456),
    )
    data.update(overrides)
    return ActivityLogEvent(**data).model_dump(mode="json")


class FlakySessions:
    """Первые `failures` сессий падают при создании, дальше - обычный SessionLocal."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError("database unavailable")
        return SessionLocal()


def _count_logs() -> int:
    with SessionLocal() as db:
        return db.execute(select(func.count(ActivityLog.id))).scalar_one()


@pytest.mark.asyncio
async def test_two_failures_then_success_writes_exactly_one_row(make_queue, hub, clock):
    queue = make_queue("activity-logs", default_options=JobOptions(attempts=3, backoff_delay_ms=1000))
    sessions = FlakySessions(failures=2)
    worker = Worker(queue, ActivityLogProcessor(sessions, hub))

    job = await queue.add("log", _event())

    assert await worker.process_next() is True
    assert _count_logs() == 0
    clock.advance(1)
    assert await worker.process_next() is True
    assert _count_logs() == 0
    clock.advance(2)
    assert await worker.process_next() is True

    assert _count_logs() == 1
    stored = await queue.get_job(job.id)
    assert stored.status == "completed"
    assert stored.attempts_made == 2
    assert stored.return_value["success"] is True


@pytest.mark.asyncio
async def test_final_failure_does_not_block_later_jobs(make_queue, hub, caplog):
    queue = make_queue("activity-logs", default_options=JobOptions(attempts=1))
    worker = Worker(queue, ActivityLogProcessor(SessionLocal, hub))

    broken = await queue.add("log", {"action": "missing required fields"})
    good = await queue.add("log", _event())

    await worker.process_next()
    await worker.process_next()

    assert (await queue.get_job(broken.id)).status == "failed"
    assert (await queue.get_job(good.id)).status == "completed"
    assert _count_logs() == 1
    assert f"activity-logs job {broken.id} failed" in caplog.text


@pytest.mark.asyncio
async def test_worker_loop_drains_queue_and_closes(make_queue, hub):
    queue = make_queue("activity-logs")
    worker = Worker(queue, ActivityLogProcessor(SessionLocal, hub), concurrency=1, poll_interval=0.01)
    for n in range(5):
        await queue.add("log", _event(description=f"event {n}"))

    worker.start()
    assert worker.running
    for _ in range(200):
        if (await queue.get_job_counts())["completed"] == 5:
            break
        await asyncio.sleep(0.01)
    await worker.close()

    assert not worker.running
    assert _count_logs() == 5


def test_worker_rejects_zero_concurrency(make_queue, hub):
    with pytest.raises(ValueError):
        Worker(make_queue(), ActivityLogProcessor(SessionLocal, hub), concurrency=0)
