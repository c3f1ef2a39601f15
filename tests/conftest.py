"""Shared fixtures: in-memory database, fake clock, and scripted receivers."""

import os

# Settings are read at import time; point them at SQLite before app imports.
os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("API_KEY", "test-key")

from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

from renewhook.common.db import Base, make_engine
from renewhook.services.webhook.delivery import Deliverer
from renewhook.services.webhook.models import EndpointConfig
from renewhook.services.webhook.schemas import RiskSignals, RiskSnapshot
from renewhook.services.webhook.service import DeliveryOrchestrator

from support import ENDPOINT_URL, SIGNING_SECRET, TENANT_ID, FakeClock, ScriptedReceiver


@pytest.fixture
def engine():
    engine = make_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def endpoint(session_factory):
    with session_factory() as db:
        row = EndpointConfig(
            tenant_id=TENANT_ID,
            endpoint_url=ENDPOINT_URL,
            signing_secret=SIGNING_SECRET,
            is_active=True,
        )
        db.add(row)
        db.commit()
        return row


@pytest.fixture
def snapshot():
    return RiskSnapshot(
        risk_score=85,
        risk_tier="high",
        days_to_expiry=45,
        signals=RiskSignals(
            days_to_expiry_days=45,
            payment_history_delinquent=False,
            no_renewal_offer_yet=True,
            rent_growth_above_market=False,
        ),
    )


@pytest.fixture
def make_orchestrator(session_factory, clock):
    """Build an orchestrator wired to a mock receiver and the fake clock."""

    def _make(receiver=None, deliverer=None, **kwargs) -> DeliveryOrchestrator:
        if deliverer is None:
            transport = httpx.MockTransport(receiver or ScriptedReceiver(200))
            deliverer = Deliverer(timeout_seconds=5.0, transport=transport)
        return DeliveryOrchestrator(
            session_factory,
            deliverer=deliverer,
            clock=clock.now,
            sleep=clock.sleep,
            **kwargs,
        )

    return _make
