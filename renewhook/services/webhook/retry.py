"""Post-attempt transition rules: deliver, retry later, or give up."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from renewhook.common.state_machine import DELIVERED, FAILED, PENDING, validate_transition
from renewhook.services.webhook.delivery import DeliveryOutcome
from renewhook.services.webhook.models import NotificationEvent


BACKOFF_SECONDS: tuple[int, ...] = (1, 2, 4, 8, 16)
MAX_ATTEMPTS = 5


@dataclass(frozen=True)
class RetryDecision:
    status: str
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None

    @property
    def terminal(self) -> bool:
        return self.status in (DELIVERED, FAILED)


class RetryScheduler:
    """Applies the retry policy after each attempt and persists the result."""

    def __init__(self, max_attempts: int = MAX_ATTEMPTS, backoff_seconds=BACKOFF_SECONDS) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not backoff_seconds:
            raise ValueError("backoff_seconds must not be empty")
        self.max_attempts = max_attempts
        self.backoff_seconds = tuple(backoff_seconds)

    def backoff_after(self, attempt_count: int) -> timedelta:
        """Delay after the `attempt_count`-th attempt (1 -> first slot)."""

        index = min(attempt_count - 1, len(self.backoff_seconds) - 1)
        return timedelta(seconds=self.backoff_seconds[index])

    def decide(self, attempt_count: int, success: bool, now: datetime) -> RetryDecision:
        if success:
            return RetryDecision(status=DELIVERED, delivered_at=now)
        if attempt_count >= self.max_attempts:
            return RetryDecision(status=FAILED)
        return RetryDecision(status=PENDING, next_retry_at=now + self.backoff_after(attempt_count))

    def apply(self, event: NotificationEvent, outcome: DeliveryOutcome, now: datetime) -> RetryDecision:
        """Record the attempt on `event` and move it to its next status.

        Attempt bookkeeping is written whatever the outcome so retried-then-
        delivered events keep their full trail.
        """

        attempt_count = event.attempt_count + 1
        decision = self.decide(attempt_count, outcome.success, now)
        validate_transition(event.status, decision.status)
        event.status = decision.status
        event.attempt_count = attempt_count
        event.last_attempt_at = now
        event.last_response_code = outcome.status_code
        event.last_response_body = outcome.body
        event.next_retry_at = decision.next_retry_at
        if decision.delivered_at is not None:
            event.delivered_at = decision.delivered_at
        event.updated_at = now
        return decision


def failure_reason(attempt_count: int, last_error: str | None) -> str:
    """Dead-letter reason naming the attempt count and last failure detail."""

    return f"Failed after {attempt_count} attempts. Last error: {last_error or 'Unknown'}"
