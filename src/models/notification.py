# src/models/notification.py
# -----------------------------------------------------------------------------
# МОДЕЛЬ: Notification (SQLAlchemy)
# -----------------------------------------------------------------------------

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Enum, Index, String, Text, func, text

from ..db import Base


class NotificationType(enum.Enum):
    # для админа
    MERCHANT_REGISTERED = "MERCHANT_REGISTERED"
    PROFILE_SUBMITTED_FOR_VERIFICATION = "PROFILE_SUBMITTED_FOR_VERIFICATION"
    PURCHASE_MADE = "PURCHASE_MADE"
    REDEMPTION_MADE = "REDEMPTION_MADE"

    # для мерчанта
    PROFILE_VERIFIED = "PROFILE_VERIFIED"
    PROFILE_REJECTED = "PROFILE_REJECTED"
    GIFT_CARD_PURCHASED = "GIFT_CARD_PURCHASED"
    GIFT_CARD_REDEEMED = "GIFT_CARD_REDEEMED"


class RecipientType(enum.Enum):
    ADMIN = "ADMIN"
    MERCHANT = "MERCHANT"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    recipient_id = Column(String(36), nullable=False)
    recipient_type = Column(Enum(RecipientType, name="recipient_type"), nullable=False)

    type = Column(Enum(NotificationType, name="notification_type"), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    resource_type = Column(String(64), nullable=True)
    resource_id = Column(String(64), nullable=True)
    actor_id = Column(String(36), nullable=True)
    actor_name = Column(String(255), nullable=True)

    is_read = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="Прочитано получателем (только unread -> read)",
    )
    read_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.now, server_default=func.now())

    __table_args__ = (
        Index("ix_notifications_recipient_read", "recipient_id", "recipient_type", "is_read"),
        Index("ix_notifications_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} type={self.type} recipient={self.recipient_id}>"
