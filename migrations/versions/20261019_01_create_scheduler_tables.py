"""create scheduler tables

Revision ID: 20261019_01
Revises: None
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "delivered_messages",
        sa.Column("record_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("delivered_on", sa.Date(), nullable=False),
        sa.Column("message_id", sa.String(length=64), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_favorite", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_delivered_messages_delivered_on", "delivered_messages", ["delivered_on"], unique=True
    )

    op.create_table(
        "scheduling_ledger",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "scheduled_notifications",
        sa.Column("identifier", sa.String(length=36), primary_key=True),
        sa.Column("fire_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.Column("title", sa.String(length=120), nullable=True),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_scheduled_notifications_fire_at", "scheduled_notifications", ["fire_at"]
    )

    op.create_table(
        "user_preferences",
        sa.Column("pref_id", sa.Integer(), primary_key=True),
        sa.Column("preferred_slots", sa.JSON(), nullable=False),
        sa.Column("notifications_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("user_preferences")
    op.drop_index("ix_scheduled_notifications_fire_at", table_name="scheduled_notifications")
    op.drop_table("scheduled_notifications")
    op.drop_table("scheduling_ledger")
    op.drop_index("ix_delivered_messages_delivered_on", table_name="delivered_messages")
    op.drop_table("delivered_messages")
