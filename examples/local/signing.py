#!/usr/bin/env python3
"""Signing and backoff demo.

Demonstrates what a subscriber sees and how retries are spaced:

- The canonical body Herald signs and sends
- Computing and verifying the X-Herald-Signature header
- The retry schedule produced by a RetryPolicy

No external dependencies required - runs entirely locally.
"""

from herald.config import RetryPolicy
from herald.models import DomainEvent, generate_secret
from herald.webhooks import (
    SIGNATURE_HEADER,
    backoff_delay,
    compute_signature,
    verify_signature,
)


def main() -> None:
    print("=" * 70)
    print("Herald Signing & Backoff Demo")
    print("=" * 70)

    # =========================================================================
    # Part 1: Canonical body
    # =========================================================================
    print("\n1. CANONICAL BODY")
    print("-" * 70)

    event = DomainEvent(
        id="evt_demo",
        type="bid.created",
        data={"bid_id": "b_1", "amount": 1200, "currency": "EUR"},
    )
    body = event.canonical_body()
    print(f"  {body.decode()}")
    print("\n  Keys are sorted and separators compact, so retries of the same")
    print("  event always carry byte-identical bodies.")

    # =========================================================================
    # Part 2: Signature
    # =========================================================================
    print("\n2. SIGNATURE")
    print("-" * 70)

    secret = generate_secret()
    signature = compute_signature(body, secret)
    print(f"  secret:  {secret}")
    print(f"  {SIGNATURE_HEADER}: {signature}")

    print("\n  Subscriber-side verification:")
    print(f"    genuine body  -> {verify_signature(body, secret, signature)}")
    tampered = body.replace(b"1200", b"9999")
    print(f"    tampered body -> {verify_signature(tampered, secret, signature)}")
    print(f"    wrong secret  -> {verify_signature(body, generate_secret(), signature)}")

    # =========================================================================
    # Part 3: Retry schedule
    # =========================================================================
    print("\n3. RETRY SCHEDULE")
    print("-" * 70)

    policy = RetryPolicy(max_attempts=6, backoff_base_seconds=1.0, backoff_max_seconds=20.0)
    print(f"  max_attempts={policy.max_attempts}, base={policy.backoff_base_seconds}s, "
          f"cap={policy.backoff_max_seconds}s, jitter up to {policy.jitter_ratio:.0%}\n")
    for failed in range(1, policy.max_attempts):
        delay = backoff_delay(failed, policy)
        print(f"  after failure {failed}: wait {delay:>5.1f}s before attempt {failed + 1}")
    print(f"  after failure {policy.max_attempts}: exhausted, no further attempts")


if __name__ == "__main__":
    main()
