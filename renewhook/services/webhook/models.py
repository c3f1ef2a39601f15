"""Webhook delivery database models.

`webhook_events` is the source of truth for delivery state, `webhook_dlq` holds
terminal failures for manual remediation, and `rms_endpoints` (owned by the
property-management side) maps each tenant to its receiver URL and secret.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from renewhook.common.db import Base, JSONDocument, utcnow
from renewhook.common.state_machine import PENDING


RISK_FLAGGED_EVENT = "renewal.risk_flagged"


class NotificationEvent(Base):
    """One notification and the full audit trail of its delivery attempts."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_status_next_retry_at", "status", "next_retry_at"),
        Index("ix_webhook_events_idempotency", "tenant_id", "subject_id", "event_type", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    event_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    tenant_id: Mapped[str] = mapped_column(String, index=True)
    subject_id: Mapped[str] = mapped_column(String)
    event_type: Mapped[str] = mapped_column(String(100), default=RISK_FLAGGED_EVENT)
    payload: Mapped[dict] = mapped_column(JSONDocument)
    # Exact serialized bytes that are signed and sent on every attempt.
    body: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=PENDING)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class DeadLetterRecord(Base):
    """Terminal delivery failure kept for operators; never updated here."""

    __tablename__ = "webhook_dlq"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    webhook_event_id: Mapped[str] = mapped_column(ForeignKey("webhook_events.id"), unique=True)
    failure_reason: Mapped[str] = mapped_column(Text)
    moved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)


class EndpointConfig(Base):
    """Receiver URL and signing secret for one tenant."""

    __tablename__ = "rms_endpoints"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    tenant_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    endpoint_url: Mapped[str] = mapped_column(String(500))
    signing_secret: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
