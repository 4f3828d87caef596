"""init support schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUMS = {
    "channel": ("web_chat", "whatsapp", "instagram", "facebook", "email", "sms"),
    "conversation_status": ("active", "resolved", "escalated", "closed", "archived"),
    "conversation_priority": ("low", "normal", "high", "urgent"),
    "message_sender": ("customer", "ai_agent", "human_agent", "system"),
    "message_type": ("text", "media", "sticker", "quick_reply", "system", "product"),
    "ticket_status": ("open", "in_progress", "resolved", "closed", "escalated"),
    "ticket_priority": ("urgent", "high", "normal", "low"),
    "ticket_category": (
        "refund",
        "return",
        "technical",
        "shipping",
        "billing",
        "product_issue",
        "general",
    ),
    "ticket_source": ("ai_chat", "agent", "api"),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "conversations",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_id", sa.String(length=120), nullable=False),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("channel", _enum("channel"), nullable=False),
        sa.Column(
            "status",
            _enum("conversation_status"),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column(
            "priority",
            _enum("conversation_priority"),
            nullable=False,
            server_default=sa.text("'normal'"),
        ),
        sa.Column("is_ai_handling", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("assigned_to", sa.String(length=120), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column(
            "last_message_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_conversations_business_id", "conversations", ["business_id"])
    op.create_index("ix_conversations_customer_id", "conversations", ["customer_id"])
    op.create_index("ix_conversations_assigned_to", "conversations", ["assigned_to"])
    op.create_index(
        "ix_conversations_business_last_message",
        "conversations",
        ["business_id", "last_message_at"],
    )
    op.create_index(
        "uq_conversations_open_slot",
        "conversations",
        ["business_id", "customer_id", "channel"],
        unique=True,
        postgresql_where=sa.text("status <> 'closed'"),
    )

    op.create_table(
        "messages",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sender", _enum("message_sender"), nullable=False),
        sa.Column("sender_name", sa.String(length=255), nullable=True),
        sa.Column(
            "message_type",
            _enum("message_type"),
            nullable=False,
            server_default=sa.text("'text'"),
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("channel_data", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "delivery_failed", sa.Boolean(), nullable=False, server_default=sa.text("false")
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["conversation_id"], ["conversations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "conversation_id",
            "provider_message_id",
            name="uq_messages_conversation_provider_id",
        ),
    )
    op.create_index("ix_messages_conversation_id", "messages", ["conversation_id"])

    op.create_table(
        "tickets",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ticket_number", sa.String(length=32), nullable=False),
        sa.Column("business_id", sa.String(length=120), nullable=False),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "status", _enum("ticket_status"), nullable=False, server_default=sa.text("'open'")
        ),
        sa.Column("priority", _enum("ticket_priority"), nullable=False),
        sa.Column("category", _enum("ticket_category"), nullable=False),
        sa.Column(
            "source", _enum("ticket_source"), nullable=False, server_default=sa.text("'api'")
        ),
        sa.Column("assigned_to", sa.String(length=120), nullable=True),
        sa.Column("escalation_level", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("sla_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("parent_conversation_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["parent_conversation_id"], ["conversations.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id", "ticket_number", name="uq_tickets_business_number"),
    )
    op.create_index("ix_tickets_business_id", "tickets", ["business_id"])
    op.create_index("ix_tickets_customer_id", "tickets", ["customer_id"])
    op.create_index("ix_tickets_assigned_to", "tickets", ["assigned_to"])

    op.create_table(
        "ticket_counters",
        sa.Column("business_id", sa.String(length=120), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("current_value", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("business_id", "day"),
    )

    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.String(length=120), nullable=False),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("conversation_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("context", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column(
            "last_activity",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_chat_sessions_customer_id", "chat_sessions", ["customer_id"])


def downgrade() -> None:
    op.drop_index("ix_chat_sessions_customer_id", table_name="chat_sessions")
    op.drop_table("chat_sessions")
    op.drop_table("ticket_counters")

    op.drop_index("ix_tickets_assigned_to", table_name="tickets")
    op.drop_index("ix_tickets_customer_id", table_name="tickets")
    op.drop_index("ix_tickets_business_id", table_name="tickets")
    op.drop_table("tickets")

    op.drop_index("ix_messages_conversation_id", table_name="messages")
    op.drop_table("messages")

    op.drop_index("uq_conversations_open_slot", table_name="conversations")
    op.drop_index("ix_conversations_business_last_message", table_name="conversations")
    op.drop_index("ix_conversations_assigned_to", table_name="conversations")
    op.drop_index("ix_conversations_customer_id", table_name="conversations")
    op.drop_index("ix_conversations_business_id", table_name="conversations")
    op.drop_table("conversations")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(bind, checkfirst=True)
