"""Time-boxed duplicate-trigger detection.

Best effort only: two triggers for the same resident racing inside the same
instant can both pass the check. The unique `event_id` constraint keeps the
rows themselves distinct.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta

from renewhook.common.db import utcnow
from renewhook.services.webhook.models import RISK_FLAGGED_EVENT
from renewhook.services.webhook.store import EventStore


@dataclass(frozen=True)
class IdempotencyCheck:
    exists: bool
    existing_event_id: str | None = None
    existing_status: str | None = None


class IdempotencyGuard:
    """Looks for a recent event for the same tenant/subject/event type."""

    def __init__(self, store: EventStore, window_seconds: int = 3600) -> None:
        self.store = store
        self.window = timedelta(seconds=window_seconds)

    def check_recent(
        self,
        db,
        tenant_id: str,
        subject_id: str,
        event_type: str = RISK_FLAGGED_EVENT,
        window: timedelta | None = None,
        now: datetime | None = None,
    ) -> IdempotencyCheck:
        created_after = (now or utcnow()) - (window or self.window)
        existing = self.store.find_recent(db, tenant_id, subject_id, event_type, created_after)
        if existing is None:
            return IdempotencyCheck(exists=False)
        return IdempotencyCheck(
            exists=True,
            existing_event_id=existing.event_id,
            existing_status=existing.status,
        )
