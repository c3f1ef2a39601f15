"""Async burst generator for the trigger endpoint.

Fires many triggers (with repeats per resident) to exercise idempotency and
concurrent delivery loops.
"""

import argparse
import asyncio
import random
import statistics
import time
from uuid import uuid4

import httpx


def random_snapshot() -> dict:
    days = random.randint(5, 120)
    score = random.randint(0, 100)
    tier = "high" if score >= 70 else "medium" if score >= 40 else "low"
    return {
        "riskScore": score,
        "riskTier": tier,
        "daysToExpiry": days,
        "signals": {
            "daysToExpiryDays": days,
            "paymentHistoryDelinquent": random.random() < 0.3,
            "noRenewalOfferYet": random.random() < 0.5,
            "rentGrowthAboveMarket": random.random() < 0.2,
        },
    }


async def send_one(client: httpx.AsyncClient, base_url: str, tenant_id: str, subject_id: str):
    """Send one trigger and return (status_code, latency_ms)."""

    started = time.perf_counter()
    url = f"{base_url}/api/v1/properties/{tenant_id}/residents/{subject_id}/trigger-event"
    try:
        resp = await client.post(url, json=random_snapshot(), headers={"x-trace-id": str(uuid4())})
        return resp.status_code, (time.perf_counter() - started) * 1000
    except httpx.HTTPError:
        return 599, (time.perf_counter() - started) * 1000


async def run(total: int, concurrency: int, residents: int, base_url: str, tenant_id: str):
    """Execute a bounded-concurrency burst and print a status-code summary."""

    sem = asyncio.Semaphore(concurrency)
    subjects = [str(uuid4()) for _ in range(residents)]

    async with httpx.AsyncClient(timeout=10.0) as client:
        async def worker(i: int):
            async with sem:
                return await send_one(client, base_url, tenant_id, subjects[i % residents])

        results = await asyncio.gather(*(worker(i) for i in range(total)))

    codes: dict[int, int] = {}
    for code, _ in results:
        codes[code] = codes.get(code, 0) + 1
    lats = sorted(latency for _, latency in results)
    print(f"total={total} residents={residents}")
    for code in sorted(codes):
        print(f"status_{code}={codes[code]}")
    print(f"p50_ms={lats[len(lats) // 2]:.2f}")
    print(f"p95_ms={lats[max(0, int(len(lats) * 0.95) - 1)]:.2f}")
    print(f"avg_ms={statistics.mean(lats):.2f}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--total", type=int, default=200)
    parser.add_argument("--concurrency", type=int, default=20)
    parser.add_argument("--residents", type=int, default=50)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--tenant-id", required=True)
    args = parser.parse_args()
    asyncio.run(run(args.total, args.concurrency, args.residents, args.base_url, args.tenant_id))
