"""Event store for webhook notifications.

Owns `webhook_events` rows: creation, per-attempt claims, and the read-only
status projection. Endpoint lookups read the tenant's `rms_endpoints` row.
"""

from datetime import datetime

from sqlalchemy import select, update

from renewhook.common.db import utcnow
from renewhook.common.state_machine import PENDING, PROCESSING
from renewhook.services.webhook.models import EndpointConfig, NotificationEvent
from renewhook.services.webhook.schemas import RiskFlaggedPayload


class EventStore:
    """Persistence operations over notification events."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create_event(self, db, payload: RiskFlaggedPayload, now: datetime | None = None) -> NotificationEvent:
        """Insert a `pending` event due immediately; the body is frozen here."""

        now = now or utcnow()
        event = NotificationEvent(
            event_id=payload.event_id,
            tenant_id=payload.tenant_id,
            subject_id=payload.subject_id,
            event_type=payload.event,
            payload=payload.model_dump(by_alias=True, mode="json"),
            body=payload.serialize(),
            status=PENDING,
            attempt_count=0,
            next_retry_at=now,
            created_at=now,
            updated_at=now,
        )
        db.add(event)
        db.flush()
        return event

    def get(self, db, event_pk: str) -> NotificationEvent | None:
        return db.get(NotificationEvent, event_pk)

    def get_by_external_id(self, db, event_id: str) -> NotificationEvent | None:
        return db.execute(
            select(NotificationEvent).where(NotificationEvent.event_id == event_id)
        ).scalar_one_or_none()

    def claim_for_attempt(self, db, event_pk: str, now: datetime | None = None) -> bool:
        """Move one `pending` row to `processing`.

        Guarded by the current status so only one loop works a row at a time;
        returns False when someone else already claimed or finished it.
        """

        result = db.execute(
            update(NotificationEvent)
            .where(NotificationEvent.id == event_pk, NotificationEvent.status == PENDING)
            .values(status=PROCESSING, updated_at=now or utcnow())
        )
        return result.rowcount == 1

    def latest_for(self, tenant_id: str, subject_id: str) -> NotificationEvent | None:
        """Most recently created event for a tenant/subject pair."""

        with self.session_factory() as db:
            return db.execute(
                select(NotificationEvent)
                .where(
                    NotificationEvent.tenant_id == tenant_id,
                    NotificationEvent.subject_id == subject_id,
                )
                .order_by(NotificationEvent.created_at.desc())
                .limit(1)
            ).scalar_one_or_none()

    def find_recent(
        self, db, tenant_id: str, subject_id: str, event_type: str, created_after: datetime
    ) -> NotificationEvent | None:
        """Newest event of `event_type` for the pair created after `created_after`."""

        return db.execute(
            select(NotificationEvent)
            .where(
                NotificationEvent.tenant_id == tenant_id,
                NotificationEvent.subject_id == subject_id,
                NotificationEvent.event_type == event_type,
                NotificationEvent.created_at > created_after,
            )
            .order_by(NotificationEvent.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def active_endpoint(self, db, tenant_id: str) -> EndpointConfig | None:
        return db.execute(
            select(EndpointConfig).where(
                EndpointConfig.tenant_id == tenant_id,
                EndpointConfig.is_active.is_(True),
            )
        ).scalar_one_or_none()

