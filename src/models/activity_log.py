# src/models/activity_log.py
# -----------------------------------------------------------------------------
# МОДЕЛЬ: ActivityLog (аудит-лог доменных событий)
# -----------------------------------------------------------------------------
# Строки пишет только воркер очереди activity-logs; домен лишь ставит задачи.

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, Index, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from src.db import Base


class ActorType(enum.Enum):
    user = "user"
    merchant = "merchant"
    admin = "admin"
    system = "system"


class ActivityCategory(enum.Enum):
    AUTH = "AUTH"
    USER = "USER"
    MERCHANT = "MERCHANT"
    GIFT_CARD = "GIFT_CARD"
    PURCHASE = "PURCHASE"
    REDEMPTION = "REDEMPTION"
    SYSTEM = "SYSTEM"


class ActivitySeverity(enum.Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # кто совершил действие (NULL - системные события)
    actor_id = Column(String(36), nullable=True)
    actor_type = Column(Enum(ActorType, name="actor_type"), nullable=False)

    action = Column(String(64), nullable=False)
    category = Column(Enum(ActivityCategory, name="activity_category"), nullable=False)
    description = Column(Text, nullable=False)

    # над какой сущностью
    resource_type = Column(String(64), nullable=True)
    resource_id = Column(String(64), nullable=True)

    # произвольные данные события; атрибут meta, т.к. metadata занято у Base
    meta = Column("metadata", JSON().with_variant(JSONB, "postgresql"), nullable=True)

    severity = Column(
        Enum(ActivitySeverity, name="activity_severity"),
        nullable=False,
        default=ActivitySeverity.INFO,
    )

    # тенант
    merchant_id = Column(String(36), nullable=True)

    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)

    # время постановки в очередь, а не записи
    created_at = Column(DateTime, nullable=False, default=datetime.now, server_default=func.now())

    __table_args__ = (
        Index("ix_activity_logs_created_at", "created_at"),
        Index("ix_activity_logs_category_created_at", "category", "created_at"),
        Index("ix_activity_logs_merchant_created_at", "merchant_id", "created_at"),
        Index("ix_activity_logs_resource_created_at", "resource_type", "resource_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ActivityLog id={self.id} category={self.category} action={self.action}>"
