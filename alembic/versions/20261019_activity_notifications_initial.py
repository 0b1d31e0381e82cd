"""activity logs, notifications, notification preferences

Revision ID: 20261019_activity_notifications
Revises:
Create Date: 2026-10-19 10:00:00.000000

- users (минимальная таблица: роль и признак активности)
- activity_logs + индексы под админские выборки
- notifications + индекс непрочитанных по получателю
- notification_preferences (по флагу на тип уведомления, по умолчанию true)

Идемпотентно: таблицы и индексы создаются, только если их ещё нет.
"""
from __future__ import annotations

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_activity_notifications"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


USER_ROLE = ("ADMIN", "MERCHANT", "USER")
ACTOR_TYPE = ("user", "merchant", "admin", "system")
ACTIVITY_CATEGORY = ("AUTH", "USER", "MERCHANT", "GIFT_CARD", "PURCHASE", "REDEMPTION", "SYSTEM")
ACTIVITY_SEVERITY = ("INFO", "WARNING", "ERROR", "CRITICAL")
RECIPIENT_TYPE = ("ADMIN", "MERCHANT")
NOTIFICATION_TYPE = (
    "MERCHANT_REGISTERED",
    "PROFILE_SUBMITTED_FOR_VERIFICATION",
    "PURCHASE_MADE",
    "REDEMPTION_MADE",
    "PROFILE_VERIFIED",
    "PROFILE_REJECTED",
    "GIFT_CARD_PURCHASED",
    "GIFT_CARD_REDEEMED",
)

PREFERENCE_FLAGS = (
    "merchant_registered",
    "profile_submitted_for_verification",
    "purchase_made",
    "redemption_made",
    "profile_verified",
    "profile_rejected",
    "gift_card_purchased",
    "gift_card_redeemed",
)


def _tables(bind) -> set[str]:
    return set(sa.inspect(bind).get_table_names())


def _index_names(bind, table: str) -> set[str]:
    insp = sa.inspect(bind)
    return {ix["name"] for ix in insp.get_indexes(table)}


def upgrade() -> None:
    bind = op.get_bind()
    tables = _tables(bind)
    json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

    # ---- USERS ----
    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("email", sa.String(255), nullable=False),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("role", sa.Enum(*USER_ROLE, name="user_role"), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ---- ACTIVITY_LOGS ----
    if "activity_logs" not in tables:
        op.create_table(
            "activity_logs",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("actor_id", sa.String(36), nullable=True),
            sa.Column("actor_type", sa.Enum(*ACTOR_TYPE, name="actor_type"), nullable=False),
            sa.Column("action", sa.String(64), nullable=False),
            sa.Column("category", sa.Enum(*ACTIVITY_CATEGORY, name="activity_category"), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("resource_type", sa.String(64), nullable=True),
            sa.Column("resource_id", sa.String(64), nullable=True),
            sa.Column("metadata", json_type, nullable=True),
            sa.Column(
                "severity",
                sa.Enum(*ACTIVITY_SEVERITY, name="activity_severity"),
                nullable=False,
                server_default="INFO",
            ),
            sa.Column("merchant_id", sa.String(36), nullable=True),
            sa.Column("ip_address", sa.String(64), nullable=True),
            sa.Column("user_agent", sa.String(512), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    ix = _index_names(bind, "activity_logs")
    if "ix_activity_logs_created_at" not in ix:
        op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"], unique=False)
    if "ix_activity_logs_category_created_at" not in ix:
        op.create_index(
            "ix_activity_logs_category_created_at", "activity_logs", ["category", "created_at"], unique=False
        )
    if "ix_activity_logs_merchant_created_at" not in ix:
        op.create_index(
            "ix_activity_logs_merchant_created_at", "activity_logs", ["merchant_id", "created_at"], unique=False
        )
    if "ix_activity_logs_resource_created_at" not in ix:
        op.create_index(
            "ix_activity_logs_resource_created_at",
            "activity_logs",
            ["resource_type", "resource_id", "created_at"],
            unique=False,
        )

    # ---- NOTIFICATIONS ----
    if "notifications" not in tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("recipient_id", sa.String(36), nullable=False),
            sa.Column("recipient_type", sa.Enum(*RECIPIENT_TYPE, name="recipient_type"), nullable=False),
            sa.Column("type", sa.Enum(*NOTIFICATION_TYPE, name="notification_type"), nullable=False),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("resource_type", sa.String(64), nullable=True),
            sa.Column("resource_id", sa.String(64), nullable=True),
            sa.Column("actor_id", sa.String(36), nullable=True),
            sa.Column("actor_name", sa.String(255), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
            sa.Column("read_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )

    ix = _index_names(bind, "notifications")
    if "ix_notifications_recipient_read" not in ix:
        op.create_index(
            "ix_notifications_recipient_read",
            "notifications",
            ["recipient_id", "recipient_type", "is_read"],
            unique=False,
        )
    if "ix_notifications_created_at" not in ix:
        op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)

    # ---- NOTIFICATION_PREFERENCES ----
    if "notification_preferences" not in tables:
        op.create_table(
            "notification_preferences",
            sa.Column("id", sa.String(36), primary_key=True),
            sa.Column("user_id", sa.String(36), nullable=False),
            *[
                sa.Column(flag, sa.Boolean(), nullable=False, server_default=sa.text("true"))
                for flag in PREFERENCE_FLAGS
            ],
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        )
        op.create_index(
            "ix_notification_preferences_user_id", "notification_preferences", ["user_id"], unique=True
        )


def downgrade() -> None:
    bind = op.get_bind()
    tables = _tables(bind)

    for table in ("notification_preferences", "notifications", "activity_logs", "users"):
        if table in tables:
            op.drop_table(table)

    if bind.dialect.name == "postgresql":
        for enum_name in (
            "notification_type",
            "recipient_type",
            "activity_severity",
            "activity_category",
            "actor_type",
            "user_role",
        ):
            op.execute(f"DROP TYPE IF EXISTS {enum_name}")
