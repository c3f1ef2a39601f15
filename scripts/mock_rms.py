"""Local stand-in for the Revenue-Management receiver.

Verifies `X-Webhook-Signature`, de-duplicates by `X-Event-Id`, and can fail a
configurable share of requests to exercise the retry path.

    SIGNING_SECRET=dev-webhook-secret FAILURE_RATE=40 python scripts/mock_rms.py
"""

import os
import random
from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from renewhook.common.signing import verify_signature


SIGNING_SECRET = os.getenv("SIGNING_SECRET", "dev-webhook-secret")
# Percentage (0-100) of valid requests answered with 503.
FAILURE_RATE = int(os.getenv("FAILURE_RATE", "0"))

app = FastAPI(title="Mock RMS")
received_events: list[dict] = []


@app.post("/webhook")
async def receive_webhook(
    request: Request,
    x_webhook_signature: str | None = Header(default=None),
    x_event_id: str | None = Header(default=None),
):
    """Accept one signed renewal-risk event."""

    raw_body = await request.body()
    if not x_webhook_signature:
        return JSONResponse(status_code=401, content={"error": "Missing signature"})
    if not verify_signature(raw_body, x_webhook_signature, SIGNING_SECRET):
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})
    if FAILURE_RATE > 0 and random.random() * 100 < FAILURE_RATE:
        return JSONResponse(status_code=503, content={"error": "Simulated failure"})

    if any(event["eventId"] == x_event_id for event in received_events):
        return {"status": "duplicate", "message": "Event already processed", "eventId": x_event_id}

    received_events.append(
        {
            "eventId": x_event_id,
            "receivedAt": datetime.now(timezone.utc).isoformat(),
            "payload": await request.json(),
        }
    )
    return {"status": "received", "eventId": x_event_id, "message": "Webhook processed successfully"}


@app.get("/events")
def list_events():
    return {"count": len(received_events), "events": received_events}


@app.delete("/events")
def clear_events():
    received_events.clear()
    return {"message": "Events cleared"}


@app.get("/health")
def health():
    return {
        "status": "healthy",
        "signingSecretConfigured": bool(SIGNING_SECRET),
        "failureRate": FAILURE_RATE,
        "eventsReceived": len(received_events),
    }


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "4000")))
