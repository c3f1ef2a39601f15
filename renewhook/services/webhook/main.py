"""HTTP surface for renewal-risk webhook triggers, status polling, and ops.

The recovery sweeper runs with the application lifecycle so events left
behind by a previous process are resumed on startup.
"""

import asyncio
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import UUID, uuid4

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from renewhook.common.config import settings
from renewhook.common.db import SessionLocal
from renewhook.common.logging import configure_logging, logger, trace_id_ctx
from renewhook.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from renewhook.common.startup import log_startup_config
from renewhook.common.state_machine import FAILED
from renewhook.common.tracing import instrument_app, setup_tracing
from renewhook.services.webhook.retry import RetryScheduler
from renewhook.services.webhook.schemas import (
    DeadLetterResponse,
    RiskSnapshot,
    TriggerResponse,
    WebhookStatusResponse,
)
from renewhook.services.webhook.service import DeliveryOrchestrator, EndpointNotConfiguredError

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "WEBHOOK_MAX_ATTEMPTS",
        "WEBHOOK_TIMEOUT_SECONDS",
        "IDEMPOTENCY_WINDOW_SECONDS",
        "RECOVERY_INTERVAL_SECONDS",
    ],
)
service = DeliveryOrchestrator(
    SessionLocal,
    service_name=settings.service_name,
    scheduler=RetryScheduler(settings.webhook_max_attempts, settings.webhook_backoff_seconds),
    idempotency_window_seconds=settings.idempotency_window_seconds,
    timeout_seconds=settings.webhook_timeout_seconds,
    recovery_interval_seconds=settings.recovery_interval_seconds,
    recovery_grace_seconds=settings.recovery_grace_seconds,
    processing_timeout_seconds=settings.processing_timeout_seconds,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the recovery sweeper with application lifecycle."""

    sweeper_task = asyncio.create_task(service.recovery_sweeper())
    yield
    sweeper_task.cancel()
    await service.shutdown(settings.shutdown_grace_seconds)


app = FastAPI(title="Renewal Risk Webhooks", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Record request count and latency for every HTTP call."""

    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


def enforce_api_key(x_api_key: str | None) -> None:
    """Simple API-key gate for ops endpoints."""

    if x_api_key != settings.api_key:
        raise HTTPException(status_code=401, detail="invalid API key")


def _require_uuids(*values: str) -> None:
    for value in values:
        try:
            UUID(value)
        except ValueError as exc:
            raise HTTPException(
                status_code=400, detail="Invalid UUID format for propertyId or residentId."
            ) from exc


@app.post(
    "/api/v1/properties/{tenant_id}/residents/{subject_id}/trigger-event",
    response_model=TriggerResponse,
    response_model_exclude_none=True,
    status_code=201,
)
async def trigger_event(
    tenant_id: str,
    subject_id: str,
    snapshot: RiskSnapshot,
    x_trace_id: str | None = Header(default=None),
):
    """Accept a risk flag for delivery; returns before the webhook is sent."""

    _require_uuids(tenant_id, subject_id)
    trace_id_ctx.set(x_trace_id or str(uuid4()))
    try:
        result = await service.trigger(tenant_id, subject_id, snapshot)
    except EndpointNotConfiguredError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    if not result.already_exists:
        return TriggerResponse(event_id=result.event_id, message=result.message)
    replay = TriggerResponse(event_id=result.event_id, message=result.message, already_exists=True)
    # A replay of a dead-lettered event is surfaced as a gateway failure.
    status_code = 502 if result.existing_status == FAILED else 200
    return JSONResponse(status_code=status_code, content=replay.model_dump(by_alias=True))


@app.get(
    "/api/v1/properties/{tenant_id}/residents/{subject_id}/webhook-status",
    response_model=WebhookStatusResponse,
)
def webhook_status(tenant_id: str, subject_id: str):
    """Latest event state for one resident."""

    event = service.store.latest_for(tenant_id, subject_id)
    if event is None:
        raise HTTPException(status_code=404, detail="No webhook events found for this resident.")
    return WebhookStatusResponse(
        event_id=event.event_id,
        status=event.status,
        attempt_count=event.attempt_count,
        last_attempt_at=event.last_attempt_at,
        delivered_at=event.delivered_at,
    )


@app.get("/ops/dead-letters", response_model=list[DeadLetterResponse])
def list_dead_letters(limit: int = Query(100, ge=1, le=500), x_api_key: str | None = Header(default=None)):
    """Dead-lettered events awaiting manual remediation."""

    enforce_api_key(x_api_key)
    rows = service.dead_letters.list_recent(limit=limit)
    logger.info("dead letters listed count=%s", len(rows))
    return [
        DeadLetterResponse(
            event_id=event.event_id,
            tenant_id=event.tenant_id,
            subject_id=event.subject_id,
            failure_reason=record.failure_reason,
            attempt_count=event.attempt_count,
            last_response_code=event.last_response_code,
            moved_at=record.moved_at,
        )
        for record, event in rows
    ]


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True, "in_flight": service.in_flight}
