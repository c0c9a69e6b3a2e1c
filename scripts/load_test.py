"""Async load generator: initiate disbursements, then poll them to a terminal status."""

import argparse
import asyncio
import random
import statistics
import time
from collections import Counter
from uuid import uuid4

import httpx


TERMINAL = {"SUCCESSFUL", "FAILED"}


async def send_one(client: httpx.AsyncClient, base_url: str):
    """Send one payment request and return (status_code, latency_ms, payment_id)."""

    started = time.perf_counter()
    payload = {
        "transaction_key": f"LOAD-{uuid4().hex[:20]}",
        "recipient_identifier": f"+2547{random.randint(10_000_000, 99_999_999)}",
        "amount": f"{random.randint(100, 250000) / 100:.2f}",
        "currency_code": "KES",
    }
    try:
        resp = await client.post(
            f"{base_url}/api/v1/payments",
            json=payload,
            headers={"x-trace-id": str(uuid4())},
        )
        latency = (time.perf_counter() - started) * 1000
        payment_id = resp.json().get("payment_id") if resp.status_code == 202 else None
        return resp.status_code, latency, payment_id
    except Exception:
        latency = (time.perf_counter() - started) * 1000
        return 599, latency, None


async def poll_terminal(client: httpx.AsyncClient, base_url: str, payment_id: str, timeout_s: float) -> str:
    """Poll one payment until it leaves PROCESSING or the timeout passes."""

    deadline = time.monotonic() + timeout_s
    status = "UNKNOWN"
    while time.monotonic() < deadline:
        resp = await client.get(f"{base_url}/api/v1/payments/{payment_id}")
        if resp.status_code == 200:
            status = resp.json()["status"]
            if status in TERMINAL:
                return status
        await asyncio.sleep(0.5)
    return status


async def run(total: int, concurrency: int, base_url: str, poll_timeout_s: float):
    """Execute a bounded-concurrency load run and print summary stats."""

    sem = asyncio.Semaphore(concurrency)
    results = []

    async with httpx.AsyncClient(timeout=10.0) as client:
        async def worker():
            async with sem:
                return await send_one(client, base_url)

        tasks = [asyncio.create_task(worker()) for _ in range(total)]
        for task in asyncio.as_completed(tasks):
            results.append(await task)

        payment_ids = [payment_id for _, _, payment_id in results if payment_id]

        async def poller(payment_id: str):
            async with sem:
                return await poll_terminal(client, base_url, payment_id, poll_timeout_s)

        final_statuses = await asyncio.gather(*(poller(payment_id) for payment_id in payment_ids))

    codes = [c for c, _, _ in results]
    lats = [latency for _, latency, _ in results]
    accepted = sum(1 for c in codes if c == 202)
    errors = total - accepted

    def pct(values, p):
        """Simple percentile helper for sorted latency values."""

        if not values:
            return 0.0
        idx = min(len(values) - 1, max(0, int((p / 100.0) * len(values)) - 1))
        return sorted(values)[idx]

    print(f"total={total}")
    print(f"accepted={accepted}")
    print(f"errors={errors}")
    print(f"error_rate={(errors / total) * 100:.2f}%")
    print(f"p50_ms={pct(lats, 50):.2f}")
    print(f"p95_ms={pct(lats, 95):.2f}")
    print(f"p99_ms={pct(lats, 99):.2f}")
    print(f"avg_ms={statistics.mean(lats):.2f}")
    for status, count in sorted(Counter(final_statuses).items()):
        print(f"final_{status.lower()}={count}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--total", type=int, default=200)
    parser.add_argument("--concurrency", type=int, default=20)
    parser.add_argument("--base-url", default="http://localhost:8000")
    parser.add_argument("--poll-timeout", type=float, default=30.0)
    args = parser.parse_args()
    asyncio.run(run(args.total, args.concurrency, args.base_url, args.poll_timeout))
