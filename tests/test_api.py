"""HTTP surface: trigger, status polling, and dead-letter listing."""

from datetime import datetime, timezone

import httpx
import pytest
from fastapi.testclient import TestClient

from renewhook.common.db import Base, SessionLocal, engine
from renewhook.services.webhook.delivery import Deliverer
from renewhook.services.webhook.models import DeadLetterRecord, EndpointConfig, NotificationEvent

from support import ENDPOINT_URL, SIGNING_SECRET, SUBJECT_ID, TENANT_ID, ScriptedReceiver


SNAPSHOT = {
    "riskScore": 72,
    "riskTier": "high",
    "daysToExpiry": 30,
    "signals": {
        "daysToExpiryDays": 30,
        "paymentHistoryDelinquent": True,
        "noRenewalOfferYet": True,
        "rentGrowthAboveMarket": False,
    },
}
TRIGGER_URL = f"/api/v1/properties/{TENANT_ID}/residents/{SUBJECT_ID}/trigger-event"
STATUS_URL = f"/api/v1/properties/{TENANT_ID}/residents/{SUBJECT_ID}/webhook-status"


@pytest.fixture
def api(monkeypatch):
    """The app module wired to a fresh schema and a mock receiver."""

    from renewhook.services.webhook import main

    Base.metadata.create_all(engine)
    receiver = ScriptedReceiver(200)
    monkeypatch.setattr(
        main.service, "deliverer", Deliverer(timeout_seconds=5.0, transport=httpx.MockTransport(receiver))
    )
    yield main, receiver
    Base.metadata.drop_all(engine)


def add_endpoint():
    with SessionLocal() as db:
        db.add(EndpointConfig(tenant_id=TENANT_ID, endpoint_url=ENDPOINT_URL, signing_secret=SIGNING_SECRET))
        db.commit()


def add_event(status: str, event_id: str = "evt_existing") -> NotificationEvent:
    now = datetime.now(timezone.utc)
    with SessionLocal() as db:
        event = NotificationEvent(
            event_id=event_id,
            tenant_id=TENANT_ID,
            subject_id=SUBJECT_ID,
            payload={},
            body="{}",
            status=status,
            attempt_count=5 if status == "failed" else 1,
            last_attempt_at=now,
            last_response_code=500 if status == "failed" else 200,
            created_at=now,
            updated_at=now,
        )
        db.add(event)
        db.commit()
        return event


def test_trigger_accepts_and_delivers(api):
    main, receiver = api
    add_endpoint()

    with TestClient(main.app) as client:
        resp = client.post(TRIGGER_URL, json=SNAPSHOT)
    # Leaving the client runs shutdown, which drains in-flight deliveries.

    assert resp.status_code == 201
    body = resp.json()
    assert body["eventId"].startswith("evt_")
    assert "alreadyExists" not in body
    assert len(receiver.requests) == 1

    with TestClient(main.app) as client:
        status = client.get(STATUS_URL)
    assert status.status_code == 200
    assert status.json()["eventId"] == body["eventId"]
    assert status.json()["status"] == "delivered"
    assert status.json()["attemptCount"] == 1
    assert status.json()["deliveredAt"] is not None


def test_trigger_replay_returns_existing_event(api):
    main, _ = api
    add_endpoint()
    add_event("delivered")

    with TestClient(main.app) as client:
        resp = client.post(TRIGGER_URL, json=SNAPSHOT)

    assert resp.status_code == 200
    assert resp.json() == {
        "eventId": "evt_existing",
        "message": "Event already exists with status: delivered",
        "alreadyExists": True,
    }


def test_trigger_replay_of_failed_event_is_502(api):
    main, receiver = api
    add_endpoint()
    add_event("failed")

    with TestClient(main.app) as client:
        resp = client.post(TRIGGER_URL, json=SNAPSHOT)

    assert resp.status_code == 502
    assert resp.json()["eventId"] == "evt_existing"
    assert resp.json()["alreadyExists"] is True
    assert receiver.requests == []


def test_trigger_without_endpoint_is_404(api):
    main, _ = api

    with TestClient(main.app) as client:
        resp = client.post(TRIGGER_URL, json=SNAPSHOT)
        status = client.get(STATUS_URL)

    assert resp.status_code == 404
    assert "No RMS endpoint configured" in resp.json()["detail"]
    assert status.status_code == 404


def test_trigger_rejects_bad_ids_and_bodies(api):
    main, _ = api
    add_endpoint()

    with TestClient(main.app) as client:
        bad_id = client.post(f"/api/v1/properties/not-a-uuid/residents/{SUBJECT_ID}/trigger-event", json=SNAPSHOT)
        bad_score = client.post(TRIGGER_URL, json={**SNAPSHOT, "riskScore": 140})

    assert bad_id.status_code == 400
    assert bad_score.status_code == 422


def test_dead_letters_require_api_key(api):
    main, _ = api
    event = add_event("failed")
    with SessionLocal() as db:
        db.add(DeadLetterRecord(webhook_event_id=event.id, failure_reason="Failed after 5 attempts. Last error: 500"))
        db.commit()

    with TestClient(main.app) as client:
        denied = client.get("/ops/dead-letters")
        listed = client.get("/ops/dead-letters", headers={"x-api-key": "test-key"})

    assert denied.status_code == 401
    assert listed.status_code == 200
    [row] = listed.json()
    assert row["eventId"] == "evt_existing"
    assert row["attemptCount"] == 5
    assert row["failureReason"].startswith("Failed after 5 attempts")


def test_health_and_metrics(api):
    main, _ = api

    with TestClient(main.app) as client:
        health = client.get("/health")
        metrics = client.get("/metrics")

    assert health.json()["ok"] is True
    assert metrics.status_code == 200
    assert "webhook_triggers_total" in metrics.text


def test_dead_letter_limit_is_bounded(api):
    main, _ = api
    headers = {"x-api-key": "test-key"}

    with TestClient(main.app) as client:
        negative = client.get("/ops/dead-letters", params={"limit": -1}, headers=headers)
        huge = client.get("/ops/dead-letters", params={"limit": 10000}, headers=headers)
        ok = client.get("/ops/dead-letters", params={"limit": 500}, headers=headers)

    assert negative.status_code == 422
    assert huge.status_code == 422
    assert ok.status_code == 200
