from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from src.db import SessionLocal
from src.jobs.notification_cleanup import cleanup_old_notifications_once
from src.models.notification import Notification, NotificationType, RecipientType
from src.models.notification_preference import NotificationPreference
from src.models.user import User, UserRole
from src.queues.notification import (
    CLEANUP_JOB_NAME,
    NotificationProcessor,
    schedule_notification_cleanup,
)
from src.queues.worker import Worker
from src.realtime.hub import ADMIN_NOTIFICATIONS_ROOM, COUNT_UPDATE, NEW_ITEM, merchant_room
from src.schemas.notification import CreateNotificationPayload
from src.services.notification_preferences import (
    get_preferences,
    is_notification_enabled,
    update_preferences,
)
from src.services.notification_types import (
    NOTIFICATION_PREFERENCE_FIELDS,
    NOTIFICATION_TEMPLATES,
    render_notification,
)
from src.services.notifications import (
    NotificationService,
    delete_notification,
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
)


def _payload(recipient_id="m-1", recipient_type=RecipientType.MERCHANT, type_=NotificationType.GIFT_CARD_PURCHASED):
    title, message = render_notification(type_, {"giftCardTitle": "Coffee", "customerName": "Ann"})
    return CreateNotificationPayload(
        recipient_id=recipient_id,
        recipient_type=recipient_type,
        type=type_,
        title=title,
        message=message,
    )


def _add_notification(db, recipient_id, created_at=None, recipient_type=RecipientType.MERCHANT, is_read=False):
    row = Notification(
        recipient_id=recipient_id,
        recipient_type=recipient_type,
        type=NotificationType.GIFT_CARD_REDEEMED,
        title="Gift Card Redeemed",
        message="10 was redeemed",
        is_read=is_read,
        created_at=created_at or datetime.now(),
    )
    db.add(row)
    return row


def _count_notifications() -> int:
    with SessionLocal() as db:
        return db.execute(select(func.count(Notification.id))).scalar_one()


# ---------- таблицы типов ----------

def test_tables_cover_every_notification_type():
    assert set(NOTIFICATION_TEMPLATES) == set(NotificationType)
    assert set(NOTIFICATION_PREFERENCE_FIELDS) == set(NotificationType)
    columns = set(NotificationPreference.__table__.columns.keys())
    assert set(NOTIFICATION_PREFERENCE_FIELDS.values()) <= columns


def test_templates_fall_back_on_missing_data():
    title, message = render_notification(NotificationType.PROFILE_REJECTED, {})
    assert title == "Profile Rejected"
    assert "Reason: Not specified." in message

    _, message = render_notification(NotificationType.MERCHANT_REGISTERED, {"merchantName": "Cafe"})
    assert message == "Cafe has registered on the platform."


# ---------- гейт настроек ----------

def test_gate_allows_when_no_preferences(db):
    assert is_notification_enabled(db, "m-1", NotificationType.PROFILE_VERIFIED) is True


def test_gate_denies_only_disabled_type(db):
    db.add(NotificationPreference(user_id="m-1", gift_card_purchased=False))
    db.commit()

    assert is_notification_enabled(db, "m-1", NotificationType.GIFT_CARD_PURCHASED) is False
    assert is_notification_enabled(db, "m-1", NotificationType.GIFT_CARD_REDEEMED) is True


def test_preferences_default_row_and_update(db):
    prefs = get_preferences(db, "m-1")
    assert all(getattr(prefs, f) is True for f in NOTIFICATION_PREFERENCE_FIELDS.values())

    prefs = update_preferences(db, "m-1", {"purchase_made": False, "profile_verified": None})
    assert prefs.purchase_made is False
    assert prefs.profile_verified is True

    with pytest.raises(ValueError):
        update_preferences(db, "m-1", {"newsletter": False})


# ---------- воркер ----------

@pytest.mark.asyncio
async def test_disabled_type_is_skipped_without_row_or_push(db, hub, make_ws):
    db.add(NotificationPreference(user_id="m-1", gift_card_purchased=False))
    db.commit()
    ws = make_ws()
    await hub.add_subscriber(websocket=ws, user_id="m-1", role="MERCHANT")

    result = await NotificationProcessor(SessionLocal, hub).create(_payload())

    assert result == {"skipped": True}
    assert _count_notifications() == 0
    assert ws.sent == []


@pytest.mark.asyncio
async def test_merchant_notification_is_stored_and_pushed(db, hub, make_ws):
    _add_notification(db, "m-1")
    db.commit()
    ws = make_ws()
    await hub.add_subscriber(websocket=ws, user_id="m-1", role="MERCHANT")

    result = await NotificationProcessor(SessionLocal, hub).create(_payload())

    assert result["success"] is True
    assert _count_notifications() == 2
    room = merchant_room("m-1")
    assert [(m["event"], m["room"]) for m in ws.sent] == [(NEW_ITEM, room), (COUNT_UPDATE, room)]
    assert ws.sent[0]["data"]["id"] == result["notificationId"]
    assert ws.sent[1]["data"] == {"count": 2}


@pytest.mark.asyncio
async def test_admin_unread_count_spans_admin_audience(db, hub, make_ws):
    _add_notification(db, "admin-2", recipient_type=RecipientType.ADMIN)
    _add_notification(db, "admin-2", recipient_type=RecipientType.ADMIN, is_read=True)
    db.commit()
    ws = make_ws()
    await hub.add_subscriber(websocket=ws, user_id="admin-1", role="ADMIN")

    await NotificationProcessor(SessionLocal, hub).create(
        _payload("admin-1", RecipientType.ADMIN, NotificationType.PURCHASE_MADE)
    )

    assert [m["room"] for m in ws.sent] == [ADMIN_NOTIFICATIONS_ROOM, ADMIN_NOTIFICATIONS_ROOM]
    assert ws.sent[1]["data"] == {"count": 2}


@pytest.mark.asyncio
async def test_unknown_job_type_completes_with_none(make_queue, hub, caplog):
    queue = make_queue("notification-queue")
    job = await queue.add("mystery", {"type": "SEND_PIGEON", "data": {}})

    await Worker(queue, NotificationProcessor(SessionLocal, hub)).process_next()

    stored = await queue.get_job(job.id)
    assert stored.status == "completed"
    assert stored.return_value is None
    assert "Unknown notification job type: SEND_PIGEON" in caplog.text


# ---------- продьюсер ----------

@pytest.mark.asyncio
async def test_notify_admin_without_admin_is_not_queued(make_queue, caplog):
    queue = make_queue("notification-queue")
    service = NotificationService(queue, SessionLocal)

    result = await service.on_merchant_registered("m-1", "Cafe")

    assert result.queued is False
    assert (await queue.get_job_counts())["wait"] == 0
    assert "No active admin found" in caplog.text


@pytest.mark.asyncio
async def test_notify_admin_targets_first_active_admin(db, make_queue):
    db.add(User(id="admin-off", email="off@x.io", role=UserRole.ADMIN, is_active=False))
    db.add(User(id="admin-1", email="a@x.io", role=UserRole.ADMIN, is_active=True))
    db.commit()
    queue = make_queue("notification-queue")
    service = NotificationService(queue, SessionLocal)

    result = await service.on_purchase_made("p-1", "Coffee", 25, "Ann")

    job = await queue.get_job(result.job_id)
    assert job.data["type"] == "CREATE_NOTIFICATION"
    assert job.data["data"]["recipient_id"] == "admin-1"
    assert job.data["data"]["recipient_type"] == "ADMIN"
    assert job.data["data"]["message"] == 'A gift card "Coffee" was purchased for 25.'


@pytest.mark.asyncio
async def test_create_notification_swallows_enqueue_errors():
    queue = MagicMock()
    queue.name = "notification-queue"
    queue.add = AsyncMock(side_effect=ConnectionError("redis is down"))
    service = NotificationService(queue, SessionLocal)

    result = await service.on_profile_verified("m-1")

    assert result.queued is False


# ---------- чтение ----------

def test_list_unread_and_pagination(db):
    base = datetime(2026, 10, 1, 12, 0)
    for i in range(5):
        _add_notification(db, "m-1", created_at=base + timedelta(minutes=i), is_read=i < 2)
    _add_notification(db, "m-2", created_at=base)
    db.commit()

    page = get_notifications(db, "m-1", RecipientType.MERCHANT, page=1, limit=2)
    assert len(page["notifications"]) == 2
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 5, "totalPages": 3, "hasMore": True}

    unread = get_notifications(db, "m-1", RecipientType.MERCHANT, unread_only=True)
    assert unread["pagination"]["total"] == 3
    assert unread["pagination"]["hasMore"] is False
    assert get_unread_count(db, "m-1", RecipientType.MERCHANT) == 3


def test_mark_read_and_delete_are_scoped_to_recipient(db):
    mine = _add_notification(db, "m-1")
    _add_notification(db, "m-1")
    db.commit()

    assert mark_as_read(db, mine.id, "m-2") == 0
    assert mark_as_read(db, mine.id, "m-1") == 1
    assert get_unread_count(db, "m-1", RecipientType.MERCHANT) == 1

    assert mark_all_as_read(db, "m-1", RecipientType.MERCHANT) == 1
    assert get_unread_count(db, "m-1", RecipientType.MERCHANT) == 0

    assert delete_notification(db, mine.id, "m-2") == 0
    assert delete_notification(db, mine.id, "m-1") == 1


# ---------- очистка ----------

def test_cleanup_removes_only_old_notifications(db):
    now = datetime(2026, 10, 19, 2, 0)
    _add_notification(db, "m-1", created_at=now - timedelta(days=31), is_read=False)
    _add_notification(db, "m-1", created_at=now - timedelta(days=30, seconds=1), is_read=True)
    _add_notification(db, "m-1", created_at=now - timedelta(days=29))
    db.commit()

    result = cleanup_old_notifications_once(db, now=now)

    assert result == {"success": True, "deletedCount": 2}
    assert _count_notifications() == 1


@pytest.mark.asyncio
async def test_schedule_cleanup_replaces_existing_schedule(make_queue):
    queue = make_queue("notification-queue")
    await queue.add_repeatable(CLEANUP_JOB_NAME, {"type": "CLEANUP_OLD_NOTIFICATIONS", "data": {}}, hour=3)

    await schedule_notification_cleanup(queue)
    await schedule_notification_cleanup(queue)

    [repeatable] = await queue.get_repeatable_jobs()
    assert (repeatable.hour, repeatable.minute) == (2, 0)
    assert (await queue.get_job_counts())["delayed"] == 1
