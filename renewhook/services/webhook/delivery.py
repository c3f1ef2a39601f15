"""Single authenticated HTTP delivery attempt."""

import asyncio
import time
from dataclasses import dataclass

import httpx

from renewhook.common.logging import logger as default_logger
from renewhook.common.tracing import get_tracer


RESPONSE_BODY_LIMIT = 4096


@dataclass(frozen=True)
class DeliveryOutcome:
    """Classified result of one attempt.

    `body` holds the receiver's response text, or a diagnostic string when the
    request never produced a status code.
    """

    success: bool
    status_code: int | None
    body: str | None
    latency_ms: int = 0


class Deliverer:
    """POSTs a signed body to a receiver and classifies the outcome."""

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        logger=None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.logger = logger or default_logger

    async def attempt(
        self,
        endpoint_url: str,
        body: bytes,
        signature: str,
        event_id: str,
        timeout_seconds: float | None = None,
    ) -> DeliveryOutcome:
        """Send once; 2xx is success, everything else (including errors) is not."""

        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": signature,
            "X-Event-Id": event_id,
        }
        start = time.perf_counter()
        with get_tracer().start_as_current_span("webhook.deliver") as span:
            span.set_attribute("webhook.event_id", event_id)
            try:
                # httpx timeouts are per phase; wait_for bounds the whole attempt.
                resp = await asyncio.wait_for(self._post(endpoint_url, body, headers, timeout), timeout)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                outcome = DeliveryOutcome(False, None, _describe(exc), _elapsed_ms(start))
            except asyncio.TimeoutError:
                outcome = DeliveryOutcome(False, None, f"timed out after {timeout}s", _elapsed_ms(start))
            else:
                outcome = DeliveryOutcome(
                    success=200 <= resp.status_code < 300,
                    status_code=resp.status_code,
                    body=resp.text[:RESPONSE_BODY_LIMIT],
                    latency_ms=_elapsed_ms(start),
                )
                span.set_attribute("http.status_code", resp.status_code)
            span.set_attribute("webhook.success", outcome.success)

        if not outcome.success:
            self.logger.warning(
                "webhook attempt failed event_id=%s status_code=%s detail=%s",
                event_id,
                outcome.status_code,
                outcome.body,
            )
        return outcome

    async def _post(self, url: str, body: bytes, headers: dict[str, str], timeout: float) -> httpx.Response:
        async with httpx.AsyncClient(timeout=timeout, transport=self.transport) as client:
            return await client.post(url, content=body, headers=headers)


def _describe(exc: Exception) -> str:
    message = str(exc)
    return f"{type(exc).__name__}: {message}" if message else type(exc).__name__


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
