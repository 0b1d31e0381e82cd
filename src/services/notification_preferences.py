# src/services/notification_preferences.py
from __future__ import annotations

from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.models.notification import NotificationType
from src.models.notification_preference import NotificationPreference
from src.services.notification_types import NOTIFICATION_PREFERENCE_FIELDS, PREFERENCE_FIELDS


def _find(db: Session, user_id: str) -> Optional[NotificationPreference]:
    return db.execute(
        select(NotificationPreference).where(NotificationPreference.user_id == user_id)
    ).scalar_one_or_none()


def is_notification_enabled(db: Session, recipient_id: str, type_: NotificationType) -> bool:
    """
    Гейт настроек: нет записи - разрешено; запрещено только если поле,
    соответствующее типу, явно False.
    """
    prefs = _find(db, recipient_id)
    if prefs is None:
        return True
    field_name = NOTIFICATION_PREFERENCE_FIELDS[type_]
    return getattr(prefs, field_name) is not False


def get_preferences(db: Session, user_id: str) -> NotificationPreference:
    """Возвращает настройки, создавая запись по умолчанию (всё включено), если её нет."""
    prefs = _find(db, user_id)
    if prefs is None:
        prefs = NotificationPreference(user_id=user_id)
        db.add(prefs)
        db.commit()
        db.refresh(prefs)
    return prefs


def update_preferences(db: Session, user_id: str, updates: Dict[str, Any]) -> NotificationPreference:
    """Upsert: неизвестные поля - ValueError, None - «не менять»."""
    unknown = [k for k in updates if k not in PREFERENCE_FIELDS]
    if unknown:
        raise ValueError(f"Unknown preference fields: {', '.join(sorted(unknown))}")

    prefs = _find(db, user_id)
    if prefs is None:
        prefs = NotificationPreference(user_id=user_id)
        db.add(prefs)

    for key, value in updates.items():
        if value is None:
            continue
        setattr(prefs, key, bool(value))

    db.commit()
    db.refresh(prefs)
    return prefs
