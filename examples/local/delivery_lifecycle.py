#!/usr/bin/env python3
"""Delivery lifecycle demo.

Demonstrates the full path of an event through Herald:

- register_webhook(): owner-scoped subscription with a generated secret
- dispatch_event(): fan-out to every active matching subscription
- Retries with exponential backoff until success or exhaustion
- test_webhook(): a one-off test send that is never recorded
- get_deliveries() / get_stats(): history and statistics

No external dependencies required - Qdrant runs in-memory and the subscriber
endpoints are simulated with httpx.MockTransport.
"""

import asyncio

import httpx
from qdrant_client import AsyncQdrantClient

from herald import RetryPolicy, Settings, WebhookService
from herald.storage import HeraldStorage
from herald.webhooks import SIGNATURE_HEADER, WebhookTransport, verify_signature

SECRETS: dict[str, str] = {}


class FlakyEndpoint:
    """Subscriber that fails the first ``failures`` requests per host."""

    def __init__(self, failures: dict[str, int]) -> None:
        self.failures = dict(failures)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        valid = verify_signature(request.content, SECRETS[host], request.headers[SIGNATURE_HEADER])
        print(f"    <- {host}: attempt {request.headers['X-Herald-Delivery-Attempt']}, "
              f"signature {'ok' if valid else 'INVALID'}")
        if self.failures.get(host, 0) > 0:
            self.failures[host] -= 1
            return httpx.Response(503, text="try later")
        return httpx.Response(200, text="received")


async def wait_until_settled(service: WebhookService, delivery_ids: list[str]) -> None:
    while True:
        records = [await service.storage.get_delivery(d) for d in delivery_ids]
        if all(r is not None and r.is_terminal for r in records):
            return
        await asyncio.sleep(0.05)


async def main() -> None:
    print("=" * 70)
    print("Herald Delivery Lifecycle Demo")
    print("=" * 70)

    settings = Settings(
        _env_file=None,  # type: ignore[call-arg]
        retry=RetryPolicy(max_attempts=3, backoff_base_seconds=0.1, jitter_ratio=0.0),
        scheduler_poll_interval_seconds=0.2,
    )
    endpoint = FlakyEndpoint({"orders.example.com": 2, "broken.example.com": 99})
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    service = WebhookService(
        storage=HeraldStorage(client=AsyncQdrantClient(location=":memory:")),
        transport=WebhookTransport(client=http_client),
        settings=settings,
    )

    async with service:
        # =====================================================================
        # Register
        # =====================================================================
        print("\n1. REGISTER")
        print("-" * 70)
        subs = []
        for host in ("orders.example.com", "broken.example.com"):
            sub = await service.register_webhook(
                owner_id="biz_demo",
                url=f"https://{host}/hooks",
                events=["bid.created", "rfq.awarded"],
                description=f"demo endpoint on {host}",
            )
            SECRETS[host] = sub.secret
            subs.append(sub)
            print(f"  {sub.id} -> {sub.url} (secret {sub.secret[:10]}...)")

        # =====================================================================
        # Dispatch
        # =====================================================================
        print("\n2. DISPATCH bid.created")
        print("-" * 70)
        records = await service.dispatch_event("bid.created", {"bid_id": "b_1", "amount": 1200})
        print(f"  {len(records)} delivery records created")
        await wait_until_settled(service, [r.id for r in records])

        for record in records:
            final = await service.get_delivery(record.id, "biz_demo")
            print(f"  {final.id}: {final.status} after {final.attempt_count} attempts")
            for attempt in final.attempts:
                print(f"    #{attempt.sequence} {attempt.error_kind or 'ok'}")

        print("\n  Nobody subscribes to rfq.closed:")
        print(f"  {len(await service.dispatch_event('rfq.closed', {}))} records created")

        # =====================================================================
        # Test send
        # =====================================================================
        print("\n3. TEST SEND")
        print("-" * 70)
        outcome = await service.test_webhook(subs[0].id, "biz_demo")
        print(f"  success={outcome.success} status={outcome.http_status} (not recorded)")

        # =====================================================================
        # Statistics
        # =====================================================================
        print("\n4. STATISTICS")
        print("-" * 70)
        for sub in subs:
            stats = await service.get_stats(sub.id, "biz_demo")
            page = await service.get_deliveries(sub.id, "biz_demo")
            print(f"  {sub.url}")
            print(f"    records={stats.total_deliveries} attempts={stats.total_attempts} "
                  f"success_rate={stats.success_rate:.0%} history_page={len(page.items)}")


if __name__ == "__main__":
    asyncio.run(main())
