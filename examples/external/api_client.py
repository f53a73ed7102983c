#!/usr/bin/env python3
"""REST API client demonstration.

This example shows how an owner manages webhooks through the Herald REST API.
First, start Qdrant and the server in other terminals:

    docker run -p 6333:6333 qdrant/qdrant
    uvicorn herald.api:app --reload

Then run this script:

    python examples/external/api_client.py

The gateway in front of Herald normally sets X-Principal-Id after
authenticating the caller; this script sets it directly.
"""

import asyncio
import os

import httpx

BASE_URL = "http://localhost:8000/api/v1"
TARGET_URL = os.environ.get("HERALD_DEMO_TARGET", "https://httpbin.org/status/200")
HEADERS = {"X-Principal-Id": "biz_api_demo"}


async def main() -> None:
    """Run the API client demo."""
    print("=" * 60)
    print("Herald REST API Demo")
    print("=" * 60)
    print(f"\nConnecting to {BASE_URL}...")

    async with httpx.AsyncClient(timeout=30.0, headers=HEADERS) as client:
        # =====================================================================
        # Health Check
        # =====================================================================
        print("\nChecking API health...")
        try:
            resp = await client.get(f"{BASE_URL}/health")
            resp.raise_for_status()
            health = resp.json()
            print(f"  Status: {health['status']}")
            print(f"  Version: {health['version']}")
        except httpx.ConnectError:
            print("\nCould not connect to API server!")
            print("   Start the server with: uvicorn herald.api:app --reload")
            return

        # =====================================================================
        # Register
        # =====================================================================
        print("\nRegistering a webhook...")
        resp = await client.post(
            f"{BASE_URL}/webhooks",
            json={
                "url": TARGET_URL,
                "events": ["bid.created", "rfq.awarded"],
                "description": "API demo",
            },
        )
        resp.raise_for_status()
        webhook = resp.json()
        webhook_id = webhook["id"]
        print(f"  id:     {webhook_id}")
        print(f"  secret: {webhook['secret']}  (shown only once)")

        resp = await client.post(
            f"{BASE_URL}/webhooks",
            json={"url": "not a url", "events": ["bid.created"]},
        )
        print(f"  invalid url -> {resp.status_code} {resp.json()['error']['message']}")

        # =====================================================================
        # Test delivery
        # =====================================================================
        print("\nSending a test delivery...")
        resp = await client.post(f"{BASE_URL}/webhooks/{webhook_id}/test")
        outcome = resp.json()
        print(f"  success={outcome['success']} status={outcome['http_status']} "
              f"latency={outcome['response_time_ms']}ms")

        # =====================================================================
        # Ownership
        # =====================================================================
        print("\nReading as another owner...")
        resp = await client.get(
            f"{BASE_URL}/webhooks/{webhook_id}", headers={"X-Principal-Id": "biz_other"}
        )
        print(f"  -> {resp.status_code} {resp.json()['error']['code']}")

        # =====================================================================
        # History and stats
        # =====================================================================
        print("\nDelivery history and stats...")
        resp = await client.get(f"{BASE_URL}/webhooks/{webhook_id}/deliveries")
        page = resp.json()
        print(f"  deliveries: {page['total']} (test sends are not recorded)")
        resp = await client.get(f"{BASE_URL}/webhooks/{webhook_id}/stats")
        stats = resp.json()
        print(f"  attempts: {stats['total_attempts']} success_rate: {stats['success_rate']:.0%}")

        # =====================================================================
        # Cleanup
        # =====================================================================
        print("\nRotating the secret and deleting the webhook...")
        resp = await client.post(f"{BASE_URL}/webhooks/{webhook_id}/rotate-secret")
        print(f"  new secret: {resp.json()['secret']}")
        resp = await client.delete(f"{BASE_URL}/webhooks/{webhook_id}")
        print(f"  deleted: {resp.json()['deleted']}")

    print("\n" + "=" * 60)
    print("Demo complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
