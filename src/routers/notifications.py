# src/routers/notifications.py
# РОУТЕР УВЕДОМЛЕНИЙ (ADMIN и MERCHANT)
# -----------------------------------------------------------------------------
# Тип получателя выводится из роли в токене; пользователь видит и меняет
# только свои уведомления (чужой id → 404).

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette import status
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.notification import RecipientType
from ..schemas.notification import (
    NotificationListResponse,
    NotificationPreferenceOut,
    NotificationPreferenceResponse,
    NotificationPreferenceUpdate,
)
from ..services.notification_preferences import get_preferences, update_preferences
from ..services.notifications import (
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
    delete_notification,
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
)
from ..utils.auth_dep import AuthUser, require_roles

router = APIRouter()

_recipient = require_roles("ADMIN", "MERCHANT")


def _recipient_type(user: AuthUser) -> RecipientType:
    return RecipientType.ADMIN if user.role == "ADMIN" else RecipientType.MERCHANT


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    unread_only: bool = Query(False, alias="unreadOnly"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(_recipient),
):
    data = get_notifications(
        db,
        user.user_id,
        _recipient_type(user),
        page=page,
        limit=limit,
        unread_only=unread_only,
    )
    return {"success": True, "data": data}


@router.get("/unread-count")
def unread_count(db: Session = Depends(get_db), user: AuthUser = Depends(_recipient)):
    count = get_unread_count(db, user.user_id, _recipient_type(user))
    return {"success": True, "data": {"count": count}}


@router.get("/preferences", response_model=NotificationPreferenceResponse)
def read_preferences(db: Session = Depends(get_db), user: AuthUser = Depends(_recipient)):
    prefs = get_preferences(db, user.user_id)
    return {"success": True, "data": NotificationPreferenceOut.model_validate(prefs)}


@router.patch("/preferences", response_model=NotificationPreferenceResponse)
def patch_preferences(
    payload: NotificationPreferenceUpdate,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(_recipient),
):
    try:
        prefs = update_preferences(db, user.user_id, payload.model_dump(exclude_none=True))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return {"success": True, "data": NotificationPreferenceOut.model_validate(prefs)}


@router.patch("/read-all")
def read_all(db: Session = Depends(get_db), user: AuthUser = Depends(_recipient)):
    updated = mark_all_as_read(db, user.user_id, _recipient_type(user))
    return {"success": True, "data": {"updated": updated}}


@router.patch("/{notification_id}/read")
def read_one(notification_id: str, db: Session = Depends(get_db), user: AuthUser = Depends(_recipient)):
    if not mark_as_read(db, notification_id, user.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"success": True, "message": "Notification marked as read"}


@router.delete("/{notification_id}")
def remove_one(notification_id: str, db: Session = Depends(get_db), user: AuthUser = Depends(_recipient)):
    if not delete_notification(db, notification_id, user.user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"success": True, "message": "Notification deleted"}
