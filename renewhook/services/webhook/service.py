"""Webhook delivery orchestration.

Accepts risk triggers, enforces idempotency, persists one durable event per
notification, and drives each event's attempt/backoff loop in a background task
until it is delivered or dead-lettered. A recovery sweep resumes loops that a
restart (or crash) left behind.
"""

import asyncio
from dataclasses import dataclass
from datetime import timezone
from uuid import uuid4

from renewhook.common.db import as_utc, utcnow
from renewhook.common.logging import bind_delivery_context, logger as default_logger
from renewhook.common.metrics import (
    duplicate_triggers_skipped_total,
    recovered_events_total,
    retries_total,
    webhook_attempt_latency_seconds,
    webhook_attempts_total,
    webhook_delivered_total,
    webhook_e2e_seconds,
    webhook_failed_total,
    webhook_triggers_total,
)
from renewhook.common.outbox import claim_due_batch, update_backlog_metrics
from renewhook.common.signing import sign_payload
from renewhook.common.state_machine import DELIVERED, FAILED, PROCESSING, validate_transition
from renewhook.services.webhook.dead_letter import DeadLetterSink
from renewhook.services.webhook.delivery import Deliverer, DeliveryOutcome
from renewhook.services.webhook.idempotency import IdempotencyGuard
from renewhook.services.webhook.models import RISK_FLAGGED_EVENT, NotificationEvent
from renewhook.services.webhook.retry import RetryScheduler, failure_reason
from renewhook.services.webhook.schemas import RiskFlaggedPayload, RiskSnapshot
from renewhook.services.webhook.store import EventStore


class EndpointNotConfiguredError(ValueError):
    """Tenant has no active RMS endpoint; not retryable."""

    def __init__(self, tenant_id: str) -> None:
        super().__init__(f"No RMS endpoint configured for tenant {tenant_id}")
        self.tenant_id = tenant_id


@dataclass(frozen=True)
class TriggerResult:
    """What the caller learns synchronously; never the delivery outcome."""

    event_id: str
    message: str
    already_exists: bool = False
    existing_status: str | None = None


def generate_event_id(tenant_id: str, subject_id: str) -> str:
    return f"evt_{tenant_id[:8]}_{subject_id[:8]}_{uuid4().hex[:12]}"


class DeliveryOrchestrator:
    """Owns trigger handling and the per-event delivery loop."""

    def __init__(
        self,
        session_factory,
        service_name: str = "renewal-webhooks",
        deliverer: Deliverer | None = None,
        scheduler: RetryScheduler | None = None,
        idempotency_window_seconds: int = 3600,
        timeout_seconds: float = 5.0,
        recovery_interval_seconds: float = 5.0,
        recovery_grace_seconds: int = 30,
        processing_timeout_seconds: int = 60,
        clock=utcnow,
        sleep=asyncio.sleep,
        logger=None,
    ) -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.logger = logger or default_logger
        self.store = EventStore(session_factory)
        self.guard = IdempotencyGuard(self.store, window_seconds=idempotency_window_seconds)
        self.deliverer = deliverer or Deliverer(timeout_seconds=timeout_seconds, logger=self.logger)
        self.scheduler = scheduler or RetryScheduler()
        self.dead_letters = DeadLetterSink(session_factory, service_name=service_name, logger=self.logger)
        self.timeout_seconds = timeout_seconds
        self.recovery_interval_seconds = recovery_interval_seconds
        self.recovery_grace_seconds = recovery_grace_seconds
        self.processing_timeout_seconds = processing_timeout_seconds
        self.clock = clock
        self.sleep = sleep
        self._tasks: set[asyncio.Task] = set()
        # Attempt number each loop has claimed but not yet recorded, by event pk.
        self._attempting: dict[str, int] = {}

    async def trigger(self, tenant_id: str, subject_id: str, snapshot: RiskSnapshot) -> TriggerResult:
        """Accept a risk flag and schedule delivery without waiting for it.

        Raises `EndpointNotConfiguredError` before anything is written when the
        tenant has no active endpoint.
        """

        bind_delivery_context(tenant_id, subject_id)
        with self.session_factory() as db:
            check = self.guard.check_recent(db, tenant_id, subject_id, RISK_FLAGGED_EVENT, now=self.clock())
            if check.exists:
                self.logger.info(
                    "duplicate trigger skipped event_id=%s status=%s",
                    check.existing_event_id,
                    check.existing_status,
                )
                duplicate_triggers_skipped_total.labels(service=self.service_name).inc()
                webhook_triggers_total.labels(service=self.service_name, outcome="replayed").inc()
                return TriggerResult(
                    event_id=check.existing_event_id,
                    message=f"Event already exists with status: {check.existing_status}",
                    already_exists=True,
                    existing_status=check.existing_status,
                )

            if self.store.active_endpoint(db, tenant_id) is None:
                self.logger.warning("trigger rejected: no active RMS endpoint")
                webhook_triggers_total.labels(service=self.service_name, outcome="no_endpoint").inc()
                raise EndpointNotConfiguredError(tenant_id)

            payload = RiskFlaggedPayload(
                event_id=generate_event_id(tenant_id, subject_id),
                timestamp=self.clock().astimezone(timezone.utc).isoformat(),
                tenant_id=tenant_id,
                subject_id=subject_id,
                data=snapshot,
            )
            event = self.store.create_event(db, payload, now=self.clock())
            db.commit()

        bind_delivery_context(tenant_id, subject_id, event.event_id)
        self.logger.info("webhook event accepted event_id=%s", event.event_id)
        webhook_triggers_total.labels(service=self.service_name, outcome="accepted").inc()
        self._spawn(event.id)
        return TriggerResult(event_id=event.event_id, message="Webhook event accepted for delivery")

    def _spawn(self, event_pk: str, claimed: bool = False) -> asyncio.Task:
        task = asyncio.create_task(self._drive_guarded(event_pk, claimed))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _drive_guarded(self, event_pk: str, claimed: bool) -> None:
        """Task boundary: delivery-loop errors are logged, never re-raised.

        A crash after the claim still spends the attempt in flight.
        """

        try:
            await self.drive(event_pk, claimed=claimed)
        except asyncio.CancelledError:
            self._attempting.pop(event_pk, None)
            raise
        except Exception as exc:
            attempt_number = self._attempting.pop(event_pk, None)
            self.logger.exception(
                "webhook delivery loop crashed event_pk=%s attempt=%s", event_pk, attempt_number
            )
            if attempt_number is not None:
                self._record_crash(event_pk, attempt_number, exc)

    async def drive(self, event_pk: str, claimed: bool = False) -> str | None:
        """Run attempts for one event until it is terminal.

        Returns the final status, or None when another loop owns the row.
        Attempts are strictly sequential: the next claim only happens after the
        previous transition has been committed.
        """

        while True:
            with self.session_factory() as db:
                if not claimed and not self.store.claim_for_attempt(db, event_pk, now=self.clock()):
                    db.rollback()
                    return None
                db.commit()
                event = self.store.get(db, event_pk)
                endpoint = self.store.active_endpoint(db, event.tenant_id)
                endpoint_url = endpoint.endpoint_url if endpoint else None
                secret = endpoint.signing_secret if endpoint else None
            claimed = False
            bind_delivery_context(event.tenant_id, event.subject_id, event.event_id)
            attempt_number = event.attempt_count + 1
            self._attempting[event_pk] = attempt_number

            if endpoint_url is None:
                self._fail_without_endpoint(event_pk)
                self._attempting.pop(event_pk, None)
                return FAILED

            try:
                body = event.body.encode("utf-8")
                outcome = await self.deliverer.attempt(
                    endpoint_url,
                    body,
                    sign_payload(body, secret),
                    event.event_id,
                    timeout_seconds=self.timeout_seconds,
                )
            except Exception as exc:
                self.logger.exception(
                    "webhook attempt raised event_id=%s attempt=%s", event.event_id, attempt_number
                )
                outcome = DeliveryOutcome(False, None, f"{type(exc).__name__}: {exc}")

            decision, retry_in = self._record_outcome(event_pk, outcome)
            self._attempting.pop(event_pk, None)
            if decision.terminal:
                return decision.status
            retries_total.labels(service=self.service_name, dependency="rms").inc()
            self.logger.warning(
                "webhook retry scheduled event_id=%s attempt=%s backoff_s=%s",
                event.event_id,
                attempt_number,
                retry_in,
            )
            await self.sleep(retry_in)

    def _record_outcome(self, event_pk: str, outcome: DeliveryOutcome):
        now = self.clock()
        with self.session_factory() as db:
            event = self.store.get(db, event_pk)
            decision = self.scheduler.apply(event, outcome, now)
            if decision.status == FAILED:
                self.dead_letters.record(db, event, failure_reason(event.attempt_count, outcome.body), now=now)
            db.commit()
            update_backlog_metrics(db, NotificationEvent, self.service_name)

        result = "success" if outcome.success else "failure"
        webhook_attempts_total.labels(service=self.service_name, result=result).inc()
        webhook_attempt_latency_seconds.labels(service=self.service_name).observe(outcome.latency_ms / 1000.0)
        if decision.status == DELIVERED:
            self.logger.info(
                "webhook delivered event_id=%s attempt=%s status_code=%s",
                event.event_id,
                event.attempt_count,
                outcome.status_code,
            )
            webhook_delivered_total.labels(service=self.service_name).inc()
            self._observe_terminal_e2e(event, DELIVERED)
        elif decision.status == FAILED:
            webhook_failed_total.labels(service=self.service_name).inc()
            self._observe_terminal_e2e(event, FAILED)

        retry_in = 0.0
        if decision.next_retry_at is not None:
            retry_in = max(0.0, (decision.next_retry_at - now).total_seconds())
        return decision, retry_in

    def _fail_without_endpoint(self, event_pk: str) -> None:
        """Endpoint disappeared after the event was accepted: terminal, no retry."""

        now = self.clock()
        with self.session_factory() as db:
            event = self.store.get(db, event_pk)
            validate_transition(event.status, FAILED)
            event.status = FAILED
            event.next_retry_at = None
            event.last_response_body = "No active RMS endpoint configured"
            event.updated_at = now
            self.dead_letters.record(
                db,
                event,
                f"No active RMS endpoint configured after {event.attempt_count} attempts",
                error_type="NON_RETRYABLE",
                now=now,
            )
            db.commit()
        webhook_failed_total.labels(service=self.service_name).inc()

    def _record_crash(self, event_pk: str, attempt_number: int, exc: Exception) -> None:
        """Count a crashed attempt as failed: retry later, or dead-letter at the cap.

        Uses `decide` only; `apply` may be what raised. No-op once the row has
        moved past this attempt.
        """

        now = self.clock()
        error = f"{type(exc).__name__}: {exc}"
        try:
            with self.session_factory() as db:
                event = self.store.get(db, event_pk)
                if event is None or event.status != PROCESSING or event.attempt_count != attempt_number - 1:
                    return
                decision = self.scheduler.decide(attempt_number, False, now)
                validate_transition(event.status, decision.status)
                event.status = decision.status
                event.attempt_count = attempt_number
                event.last_attempt_at = now
                event.last_response_code = None
                event.last_response_body = error
                event.next_retry_at = decision.next_retry_at
                event.updated_at = now
                if decision.status == FAILED:
                    self.dead_letters.record(
                        db, event, failure_reason(attempt_number, error), error_type="LOOP_CRASH", now=now
                    )
                db.commit()
        except Exception:
            self.logger.exception(
                "failed to record crashed webhook attempt event_pk=%s attempt=%s", event_pk, attempt_number
            )
            return

        webhook_attempts_total.labels(service=self.service_name, result="failure").inc()
        if decision.status == FAILED:
            webhook_failed_total.labels(service=self.service_name).inc()
            self._observe_terminal_e2e(event, FAILED)
        else:
            self.logger.warning(
                "crashed webhook attempt rescheduled event_id=%s attempt=%s next_retry_at=%s",
                event.event_id,
                attempt_number,
                decision.next_retry_at.isoformat(),
            )

    def _observe_terminal_e2e(self, event: NotificationEvent, terminal_state: str) -> None:
        created_at = as_utc(event.created_at)
        if created_at is None:
            return
        elapsed = max(0.0, (self.clock() - created_at).total_seconds())
        webhook_e2e_seconds.labels(service=self.service_name, terminal_state=terminal_state).observe(elapsed)

    def recovery_sweep(self, limit: int = 100) -> list[str]:
        """Claim overdue/stale rows and resume their loops; returns claimed ids."""

        with self.session_factory() as db:
            claimed = claim_due_batch(
                db,
                NotificationEvent,
                limit=limit,
                grace_seconds=self.recovery_grace_seconds,
                processing_timeout_seconds=self.processing_timeout_seconds,
                now=self.clock(),
            )
            update_backlog_metrics(db, NotificationEvent, self.service_name)
            db.commit()
        for event_pk in claimed:
            self.logger.info("recovering webhook event event_pk=%s status=%s", event_pk, PROCESSING)
            recovered_events_total.labels(service=self.service_name).inc()
            self._spawn(event_pk, claimed=True)
        return claimed

    async def recovery_sweeper(self) -> None:
        """Continuously resume events whose in-process loop was lost."""

        while True:
            try:
                self.recovery_sweep()
            except Exception as exc:
                self.logger.exception("recovery sweep failed: %s", exc)
            await asyncio.sleep(self.recovery_interval_seconds)

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight delivery loop, including ones they spawn."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_seconds: float = 10.0) -> None:
        """Give in-flight loops a grace period, then cancel the rest.

        Cancelled loops leave their rows `pending`/`processing`; the next
        process's recovery sweep picks them up.
        """

        try:
            await asyncio.wait_for(self.drain(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            self.logger.warning("cancelling %s in-flight webhook loops on shutdown", len(self._tasks))
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
