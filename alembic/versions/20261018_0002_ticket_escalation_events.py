"""ticket escalation events

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 00:10:00.000000

"""

from __future__ import annotations

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261018_0002"
down_revision: str | Sequence[str] | None = "20261018_0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    escalation_event_kind = sa.Enum("escalated", "completed", name="escalation_event_kind")
    escalation_event_kind.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "ticket_escalation_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("ticket_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("escalated", "completed", name="escalation_event_kind", create_type=False),
            nullable=False,
        ),
        sa.Column("note", sa.Text(), nullable=False),
        sa.Column("actor_id", sa.String(length=120), nullable=True),
        sa.Column("actor_name", sa.String(length=255), nullable=True),
        sa.Column("reassigned_to", sa.String(length=120), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_ticket_escalation_events_ticket_id", "ticket_escalation_events", ["ticket_id"]
    )


def downgrade() -> None:
    op.drop_index(
        "ix_ticket_escalation_events_ticket_id", table_name="ticket_escalation_events"
    )
    op.drop_table("ticket_escalation_events")
    sa.Enum(name="escalation_event_kind").drop(op.get_bind(), checkfirst=True)
