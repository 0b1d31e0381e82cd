from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from src.db import SessionLocal
from src.models.activity_log import ActivityCategory, ActivityLog, ActivitySeverity, ActorType
from src.queues.activity_log import ActivityLogProcessor
from src.queues.worker import Worker
from src.realtime.hub import ADMIN_ACTIVITY_ROOM, COUNT_UPDATE, NEW_ITEM
from src.schemas.activity_log import ActivityLogFilters
from src.services.activity_log import (
    ActivityLogService,
    RequestContext,
    get_activity_logs,
    get_activity_stats,
    get_resource_timeline,
)
from src.services.activity_logger import ActivityLogger


def _add_log(db, created_at, **kw):
    row = ActivityLog(
        actor_type=kw.pop("actor_type", ActorType.system),
        action=kw.pop("action", "test"),
        category=kw.pop("category", ActivityCategory.SYSTEM),
        description=kw.pop("description", "test event"),
        severity=kw.pop("severity", ActivitySeverity.INFO),
        created_at=created_at,
        **kw,
    )
    db.add(row)
    return row


# ---------- запись ----------

@pytest.mark.asyncio
async def test_created_at_is_taken_from_enqueue_time(make_queue, hub):
    queue = make_queue("activity-logs")
    service = ActivityLogService(queue)

    before = datetime.now()
    result = await service.log_activity(
        ActorType.admin, "verified", ActivityCategory.MERCHANT, "Merchant verified: Cafe",
        actor_id="admin-1", resource_type="merchant_profile", resource_id="mp-1",
    )
    assert result.queued is True

    job = await queue.get_job(result.job_id)
    enqueued_at = datetime.fromisoformat(job.data["created_at"])
    assert enqueued_at >= before

    # воркер разбирает задачу «позже»
    await Worker(queue, ActivityLogProcessor(SessionLocal, hub)).process_next()

    with SessionLocal() as db:
        row = db.execute(select(ActivityLog)).scalar_one()
    assert row.created_at == enqueued_at
    assert row.category == ActivityCategory.MERCHANT
    assert row.resource_id == "mp-1"


@pytest.mark.asyncio
async def test_delayed_job_keeps_original_timestamp(make_queue, hub):
    queue = make_queue("activity-logs")
    service = ActivityLogService(queue)
    event = service.build_event(ActorType.system, "error", ActivityCategory.SYSTEM, "System error: boom")
    data = event.model_dump(mode="json")
    data["created_at"] = "2026-10-18T23:59:59.500000"
    await queue.add("log", data)

    await Worker(queue, ActivityLogProcessor(SessionLocal, hub)).process_next()

    with SessionLocal() as db:
        row = db.execute(select(ActivityLog)).scalar_one()
    assert row.created_at == datetime(2026, 10, 18, 23, 59, 59, 500000)


@pytest.mark.asyncio
async def test_enqueue_failure_is_swallowed(caplog):
    queue = MagicMock()
    queue.name = "activity-logs"
    queue.add = AsyncMock(side_effect=ConnectionError("redis is down"))
    logger = ActivityLogger(ActivityLogService(queue))

    result = await logger.login("user-1", "MERCHANT")

    assert result.queued is False
    assert "redis is down" in result.error
    assert "Failed to queue log job" in caplog.text


@pytest.mark.asyncio
async def test_invalid_event_is_swallowed(make_queue):
    service = ActivityLogService(make_queue())
    result = await service.log_activity("robot", "x", ActivityCategory.SYSTEM, "bad actor type")
    assert result.queued is False
    assert (await service.queue.get_job_counts())["wait"] == 0


@pytest.mark.asyncio
async def test_nowait_schedules_enqueue(make_queue):
    service = ActivityLogService(make_queue())
    task = service.log_activity_nowait(ActorType.system, "error", ActivityCategory.SYSTEM, "System error: x")
    result = await task
    assert result.queued is True
    assert (await service.queue.get_job_counts())["wait"] == 1


def test_request_context_prefers_first_forwarded_hop():
    request = SimpleNamespace(
        headers={"x-forwarded-for": "203.0.113.7, 10.0.0.2", "user-agent": "pytest"},
        client=SimpleNamespace(host="10.0.0.2"),
    )
    ctx = RequestContext.from_request(request)
    assert ctx.ip_address == "203.0.113.7"
    assert ctx.user_agent == "pytest"

    direct = RequestContext.from_request(SimpleNamespace(headers={}, client=SimpleNamespace(host="127.0.0.1")))
    assert direct.ip_address == "127.0.0.1"
    assert direct.user_agent is None


@pytest.mark.asyncio
async def test_verification_failed_masks_qr_code(make_queue):
    queue = make_queue()
    logger = ActivityLogger(ActivityLogService(queue))

    result = await logger.verification_failed("QR-1234567890", "expired")
    job = await queue.get_job(result.job_id)

    assert job.data["metadata"]["qrCodePartial"] == "QR-12345..."
    assert job.data["actor_type"] == "system"
    assert job.data["severity"] == "WARNING"


@pytest.mark.asyncio
async def test_stored_event_is_pushed_to_admin_room(make_queue, hub, make_ws):
    admin_ws = make_ws()
    await hub.add_subscriber(websocket=admin_ws, user_id="admin-1", role="ADMIN")
    queue = make_queue("activity-logs")
    await ActivityLogService(queue).log_activity(
        ActorType.user, "login", ActivityCategory.AUTH, "User logged in", actor_id="u-1"
    )

    await Worker(queue, ActivityLogProcessor(SessionLocal, hub)).process_next()

    events = [(m["event"], m["room"]) for m in admin_ws.sent]
    assert events == [(NEW_ITEM, ADMIN_ACTIVITY_ROOM), (COUNT_UPDATE, ADMIN_ACTIVITY_ROOM)]
    assert admin_ws.sent[0]["data"]["action"] == "login"
    assert admin_ws.sent[1]["data"] == {"count": 1}


# ---------- чтение ----------

def test_pagination_is_newest_first(db):
    base = datetime(2026, 10, 1, 12, 0)
    for i in range(25):
        _add_log(db, base + timedelta(minutes=i), description=f"event {i}")
    db.commit()

    pages = [get_activity_logs(db, ActivityLogFilters(page=p, limit=10)) for p in (1, 2, 3)]

    assert [len(p["logs"]) for p in pages] == [10, 10, 5]
    assert pages[0]["pagination"] == {"page": 1, "limit": 10, "total": 25, "totalPages": 3}
    assert pages[0]["logs"][0].description == "event 24"
    assert pages[2]["logs"][-1].description == "event 0"


def test_filters_limit_bounds():
    with pytest.raises(ValidationError):
        ActivityLogFilters(limit=101)
    with pytest.raises(ValidationError):
        ActivityLogFilters(page=0)


def test_category_and_inclusive_date_range(db):
    start = datetime(2026, 10, 10, 0, 0)
    end = datetime(2026, 10, 12, 0, 0)
    _add_log(db, start, category=ActivityCategory.PURCHASE, description="on start")
    _add_log(db, end, category=ActivityCategory.PURCHASE, description="on end")
    _add_log(db, start + timedelta(days=1), category=ActivityCategory.AUTH, description="other category")
    _add_log(db, start - timedelta(seconds=1), category=ActivityCategory.PURCHASE, description="too early")
    _add_log(db, end + timedelta(seconds=1), category=ActivityCategory.PURCHASE, description="too late")
    db.commit()

    result = get_activity_logs(
        db,
        ActivityLogFilters(category=ActivityCategory.PURCHASE, start_date=start, end_date=end),
    )

    assert [log.description for log in result["logs"]] == ["on end", "on start"]
    assert result["pagination"]["total"] == 2


def test_search_is_case_insensitive(db):
    now = datetime(2026, 10, 1, 12, 0)
    _add_log(db, now, description="Gift card purchased: Coffee")
    _add_log(db, now, description="User logged in")
    db.commit()

    result = get_activity_logs(db, ActivityLogFilters(search="coffee"))
    assert [log.description for log in result["logs"]] == ["Gift card purchased: Coffee"]


@pytest.mark.parametrize(
    "term, expected",
    [
        ("_", ["card_redeemed"]),
        ("50%", ["Discount 50% applied"]),
        ("\\", ["path C:\\tmp"]),
    ],
)
def test_search_treats_wildcards_literally(db, term, expected):
    now = datetime(2026, 10, 1, 12, 0)
    for description in ("Discount 50% applied", "User logged in", "card_redeemed", "path C:\\tmp", "Discount 500 off"):
        _add_log(db, now, description=description)
    db.commit()

    result = get_activity_logs(db, ActivityLogFilters(search=term))
    assert [log.description for log in result["logs"]] == expected


def test_stats_cover_today_only(db):
    now = datetime.now()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)

    _add_log(db, today - timedelta(hours=1), severity=ActivitySeverity.ERROR, description="yesterday")
    for i in range(12):
        _add_log(
            db,
            today + timedelta(seconds=i),
            category=ActivityCategory.PURCHASE,
            severity=ActivitySeverity.ERROR if i % 2 else ActivitySeverity.CRITICAL,
            description=f"error {i}",
        )
    _add_log(db, today + timedelta(seconds=20), category=ActivityCategory.AUTH, description="login")
    db.commit()

    stats = get_activity_stats(db, now=today + timedelta(minutes=1))

    assert stats["today"] == 13
    assert stats["byCategory"] == {"PURCHASE": 12, "AUTH": 1}
    assert stats["bySeverity"] == {"ERROR": 6, "CRITICAL": 6, "INFO": 1}
    assert len(stats["recentErrors"]) == 10
    assert stats["recentErrors"][0].description == "error 11"
    assert all(e.description != "yesterday" for e in stats["recentErrors"])


def test_stats_by_merchant(db):
    today = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)
    _add_log(db, today, merchant_id="m-1")
    _add_log(db, today, merchant_id="m-2")
    db.commit()

    assert get_activity_stats(db, merchant_id="m-1")["today"] == 1


def test_timeline_is_capped_at_100(db):
    base = datetime(2026, 10, 1, 12, 0)
    for i in range(120):
        _add_log(db, base + timedelta(seconds=i), resource_type="gift_card", resource_id="gc-1")
    _add_log(db, base, resource_type="gift_card", resource_id="gc-2")
    db.commit()

    timeline = get_resource_timeline(db, "gift_card", "gc-1")

    assert len(timeline["logs"]) == 100
    assert timeline["logs"][0].created_at == base + timedelta(seconds=119)
    assert all(log.resource_id == "gc-1" for log in timeline["logs"])
