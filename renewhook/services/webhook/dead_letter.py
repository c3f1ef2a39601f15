"""Dead-letter sink for events that exhausted their attempts."""

from datetime import datetime

from sqlalchemy import select

from renewhook.common.db import utcnow
from renewhook.common.logging import logger as default_logger
from renewhook.common.metrics import dlq_recorded_total
from renewhook.services.webhook.models import DeadLetterRecord, NotificationEvent


class DeadLetterSink:
    """Writes one `webhook_dlq` row per terminally failed event."""

    def __init__(self, session_factory, service_name: str = "renewal-webhooks", logger=None) -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.logger = logger or default_logger

    def record(
        self,
        db,
        event: NotificationEvent,
        reason: str,
        error_type: str = "RETRY_EXHAUSTED",
        now: datetime | None = None,
    ) -> DeadLetterRecord:
        """Add the record in the caller's transaction (the one marking `failed`)."""

        record = DeadLetterRecord(webhook_event_id=event.id, failure_reason=reason, moved_at=now or utcnow())
        db.add(record)
        dlq_recorded_total.labels(service=self.service_name, error_type=error_type).inc()
        self.logger.error(
            "webhook moved to dlq event_id=%s attempts=%s reason=%s",
            event.event_id,
            event.attempt_count,
            reason,
        )
        return record

    def list_recent(self, limit: int = 100) -> list[tuple[DeadLetterRecord, NotificationEvent]]:
        """Newest dead letters with their events, for manual remediation."""

        with self.session_factory() as db:
            return list(
                db.execute(
                    select(DeadLetterRecord, NotificationEvent)
                    .join(NotificationEvent, NotificationEvent.id == DeadLetterRecord.webhook_event_id)
                    .order_by(DeadLetterRecord.moved_at.desc())
                    .limit(limit)
                ).all()
            )
