# src/models/notification_preference.py
# Один ряд на пользователя: по булеву флагу на каждый тип уведомления.
# Нет ряда - значит всё включено.

import uuid

from sqlalchemy import Boolean, Column, DateTime, String, func, text
from src.db import Base


def _flag(comment: str) -> Column:
    return Column(Boolean, nullable=False, default=True, server_default=text("true"), comment=comment)


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), unique=True, nullable=False, index=True)

    # админские
    merchant_registered = _flag("MERCHANT_REGISTERED")
    profile_submitted_for_verification = _flag("PROFILE_SUBMITTED_FOR_VERIFICATION")
    purchase_made = _flag("PURCHASE_MADE")
    redemption_made = _flag("REDEMPTION_MADE")

    # мерчантские
    profile_verified = _flag("PROFILE_VERIFIED")
    profile_rejected = _flag("PROFILE_REJECTED")
    gift_card_purchased = _flag("GIFT_CARD_PURCHASED")
    gift_card_redeemed = _flag("GIFT_CARD_REDEEMED")

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<NotificationPreference(user_id={self.user_id})>"
