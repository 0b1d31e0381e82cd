# src/services/notification_types.py
# Две параллельные таблицы по NotificationType: шаблон (title/message) и
# поле настроек получателя. Новый тип уведомления = новая строка в ОБЕИХ таблицах
# + колонка в NotificationPreference; иначе модуль не импортируется.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping

from src.models.notification import NotificationType
from src.models.notification_preference import NotificationPreference


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    render: Callable[[Mapping[str, Any]], str]

    def message(self, data: Mapping[str, Any] | None = None) -> str:
        return self.render(data or {})


def _or(data: Mapping[str, Any], key: str, fallback: str) -> Any:
    value = data.get(key)
    return value if value not in (None, "") else fallback


NOTIFICATION_TEMPLATES: Dict[NotificationType, NotificationTemplate] = {
    NotificationType.MERCHANT_REGISTERED: NotificationTemplate(
        title="New Merchant Registered",
        render=lambda d: f"{_or(d, 'merchantName', 'A new merchant')} has registered on the platform.",
    ),
    NotificationType.PROFILE_SUBMITTED_FOR_VERIFICATION: NotificationTemplate(
        title="Profile Submitted for Verification",
        render=lambda d: f"{_or(d, 'merchantName', 'A merchant')} has submitted their profile for verification.",
    ),
    NotificationType.PURCHASE_MADE: NotificationTemplate(
        title="New Purchase",
        render=lambda d: (
            f"A gift card \"{_or(d, 'giftCardTitle', 'Unknown')}\" was purchased for {_or(d, 'amount', 'N/A')}."
        ),
    ),
    NotificationType.REDEMPTION_MADE: NotificationTemplate(
        title="New Redemption",
        render=lambda d: f"A redemption of {_or(d, 'amount', 'N/A')} was made on a gift card.",
    ),
    NotificationType.PROFILE_VERIFIED: NotificationTemplate(
        title="Profile Verified",
        render=lambda d: "Congratulations! Your merchant profile has been verified. You can now create gift cards.",
    ),
    NotificationType.PROFILE_REJECTED: NotificationTemplate(
        title="Profile Rejected",
        render=lambda d: (
            f"Your merchant profile was rejected. Reason: {_or(d, 'reason', 'Not specified')}. "
            "Please update and resubmit."
        ),
    ),
    NotificationType.GIFT_CARD_PURCHASED: NotificationTemplate(
        title="Gift Card Purchased",
        render=lambda d: (
            f"Your gift card \"{_or(d, 'giftCardTitle', 'Unknown')}\" was purchased by "
            f"{_or(d, 'customerName', 'a customer')}."
        ),
    ),
    NotificationType.GIFT_CARD_REDEEMED: NotificationTemplate(
        title="Gift Card Redeemed",
        render=lambda d: (
            f"{_or(d, 'amount', 'An amount')} was redeemed from your gift card "
            f"\"{_or(d, 'giftCardTitle', 'Unknown')}\"."
        ),
    ),
}


NOTIFICATION_PREFERENCE_FIELDS: Dict[NotificationType, str] = {
    NotificationType.MERCHANT_REGISTERED: "merchant_registered",
    NotificationType.PROFILE_SUBMITTED_FOR_VERIFICATION: "profile_submitted_for_verification",
    NotificationType.PURCHASE_MADE: "purchase_made",
    NotificationType.REDEMPTION_MADE: "redemption_made",
    NotificationType.PROFILE_VERIFIED: "profile_verified",
    NotificationType.PROFILE_REJECTED: "profile_rejected",
    NotificationType.GIFT_CARD_PURCHASED: "gift_card_purchased",
    NotificationType.GIFT_CARD_REDEEMED: "gift_card_redeemed",
}

PREFERENCE_FIELDS = tuple(NOTIFICATION_PREFERENCE_FIELDS.values())


def _check_tables() -> None:
    members = set(NotificationType)
    missing_templates = members - set(NOTIFICATION_TEMPLATES)
    missing_flags = members - set(NOTIFICATION_PREFERENCE_FIELDS)
    if missing_templates or missing_flags:
        raise RuntimeError(
            f"notification tables out of sync: templates missing {sorted(m.value for m in missing_templates)}, "
            f"preference flags missing {sorted(m.value for m in missing_flags)}"
        )
    columns = set(NotificationPreference.__table__.columns.keys())
    unknown = [f for f in PREFERENCE_FIELDS if f not in columns]
    if unknown or len(set(PREFERENCE_FIELDS)) != len(PREFERENCE_FIELDS):
        raise RuntimeError(f"preference fields do not map 1:1 to columns: {unknown}")


_check_tables()


def render_notification(type_: NotificationType, data: Mapping[str, Any] | None = None) -> tuple[str, str]:
    template = NOTIFICATION_TEMPLATES[type_]
    return template.title, template.message(data)
