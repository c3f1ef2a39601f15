"""Test doubles and constants shared by the test modules."""

from datetime import datetime, timedelta

import httpx


TENANT_ID = "9b2f4c1e-6a0d-4f5e-8c3b-1d2e3f4a5b6c"
SUBJECT_ID = "3c4d5e6f-7a8b-4c9d-8e0f-1a2b3c4d5e6f"
ENDPOINT_URL = "https://rms.example.test/webhook"
SIGNING_SECRET = "dev-webhook-secret"


class FakeClock:
    """Deterministic clock whose `sleep` advances time instead of waiting."""

    def __init__(self, start: datetime) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class ScriptedReceiver:
    """MockTransport handler answering with a scripted sequence of statuses.

    The last status repeats once the script runs out.
    """

    def __init__(self, *statuses: int) -> None:
        self.statuses = list(statuses) or [200]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, text=f"rms answered {status}")
