"""add retry and idempotency hot-path indexes

Revision ID: 0002_retry_hot_indexes
Revises: 0001_webhook
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_retry_hot_indexes"
down_revision = "0001_webhook"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Recovery sweep: status = 'pending' AND next_retry_at <= now - grace.
    op.create_index(
        "ix_webhook_events_status_next_retry_at",
        "webhook_events",
        ["status", "next_retry_at"],
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )
    op.create_index(
        "ix_webhook_events_idempotency",
        "webhook_events",
        ["tenant_id", "subject_id", "event_type", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("ix_webhook_events_idempotency", table_name="webhook_events")
    op.drop_index("ix_webhook_events_status_next_retry_at", table_name="webhook_events")
