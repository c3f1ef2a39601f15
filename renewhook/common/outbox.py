"""Claim helpers for the durable webhook event table.

Every event row doubles as its own outbox entry: `pending` rows with a due
`next_retry_at` are work, `processing` rows are claimed. These helpers are
model-agnostic so the same claim/metrics logic works against any table with
`status`, `next_retry_at`, `last_attempt_at` and `created_at` columns.
"""

from datetime import datetime, timedelta

from sqlalchemy import func, or_, select, update

from renewhook.common.db import as_utc, utcnow
from renewhook.common.metrics import webhook_oldest_pending_age_seconds, webhook_pending_total
from renewhook.common.state_machine import PENDING, PROCESSING


def claim_due_batch(
    db,
    event_model,
    limit: int = 100,
    grace_seconds: int = 30,
    processing_timeout_seconds: int = 60,
    now: datetime | None = None,
) -> list[str]:
    """Atomically claim overdue pending rows and stale processing rows.

    Pending rows are only picked up once they are `grace_seconds` past due, so a
    live in-process retry loop waking on time wins the claim.
    """

    table = event_model.__table__
    now = now or utcnow()
    due_before = now - timedelta(seconds=grace_seconds)
    stale_before = now - timedelta(seconds=processing_timeout_seconds)
    claim_ids = (
        select(table.c.id)
        .where(
            or_(
                (table.c.status == PENDING)
                & (table.c.next_retry_at.is_not(None))
                & (table.c.next_retry_at <= due_before),
                (table.c.status == PROCESSING) & (table.c.updated_at < stale_before),
            )
        )
        .order_by(table.c.next_retry_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .cte("claim_ids")
    )
    rows = db.execute(
        update(table)
        .where(table.c.id.in_(select(claim_ids.c.id)))
        .values(status=PROCESSING, updated_at=now)
        .returning(table.c.id)
    ).all()
    return [row.id for row in rows]


def update_backlog_metrics(db, event_model, service_name: str) -> None:
    """Update gauges for non-terminal event depth and oldest age."""

    table = event_model.__table__
    now = utcnow()
    open_statuses = (PENDING, PROCESSING)
    pending_count = db.execute(
        select(func.count()).select_from(table).where(table.c.status.in_(open_statuses))
    ).scalar_one()
    oldest_pending = as_utc(
        db.execute(select(func.min(table.c.created_at)).where(table.c.status.in_(open_statuses))).scalar_one()
    )
    age_seconds = 0.0
    if oldest_pending is not None:
        age_seconds = max(0.0, (now - oldest_pending).total_seconds())
    webhook_pending_total.labels(service=service_name).set(float(pending_count))
    webhook_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)
