"""Single-attempt HTTP delivery and outcome classification."""

import asyncio
import json

import httpx
import pytest

from renewhook.common.signing import sign_payload
from renewhook.services.webhook.delivery import RESPONSE_BODY_LIMIT, Deliverer


URL = "https://rms.example.test/webhook"
BODY = json.dumps({"event": "renewal.risk_flagged", "eventId": "evt_1"}).encode("utf-8")


def deliverer_for(handler, timeout_seconds: float = 5.0) -> Deliverer:
    return Deliverer(timeout_seconds=timeout_seconds, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_sends_signed_body_and_headers():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"status": "received"})

    signature = sign_payload(BODY, "secret")
    outcome = await deliverer_for(handler).attempt(URL, BODY, signature, "evt_1")

    assert outcome.success
    assert outcome.status_code == 200
    request = seen[0]
    assert request.method == "POST"
    assert request.content == BODY
    assert request.headers["content-type"] == "application/json"
    assert request.headers["x-webhook-signature"] == signature
    assert request.headers["x-event-id"] == "evt_1"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [200, 201, 204, 299])
async def test_any_2xx_is_success(status):
    outcome = await deliverer_for(lambda request: httpx.Response(status)).attempt(URL, BODY, "sig", "evt_1")
    assert outcome.success


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [301, 400, 401, 404, 500, 503])
async def test_non_2xx_is_failure_with_body(status):
    handler = lambda request: httpx.Response(status, text="nope")  # noqa: E731
    outcome = await deliverer_for(handler).attempt(URL, BODY, "sig", "evt_1")

    assert not outcome.success
    assert outcome.status_code == status
    assert outcome.body == "nope"


@pytest.mark.asyncio
async def test_connection_error_becomes_diagnostic():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    outcome = await deliverer_for(handler).attempt(URL, BODY, "sig", "evt_1")

    assert not outcome.success
    assert outcome.status_code is None
    assert outcome.body == "ConnectError: connection refused"


@pytest.mark.asyncio
async def test_hung_receiver_is_cut_off_by_timeout():
    """A receiver that never answers cannot stall the retry loop."""

    async def handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(2)
        return httpx.Response(200)

    outcome = await deliverer_for(handler, timeout_seconds=0.05).attempt(URL, BODY, "sig", "evt_1")

    assert not outcome.success
    assert outcome.status_code is None
    assert "timed out" in outcome.body


@pytest.mark.asyncio
async def test_long_response_bodies_are_truncated():
    handler = lambda request: httpx.Response(500, text="x" * (RESPONSE_BODY_LIMIT + 100))  # noqa: E731
    outcome = await deliverer_for(handler).attempt(URL, BODY, "sig", "evt_1")
    assert len(outcome.body) == RESPONSE_BODY_LIMIT


@pytest.mark.asyncio
async def test_invalid_url_is_a_failed_attempt():
    outcome = await Deliverer().attempt("not a url", BODY, "sig", "evt_1")
    assert not outcome.success
    assert outcome.status_code is None
    assert outcome.body
