"""HMAC-SHA256 signing and outbound header construction.

Subscribers verify a delivery by recomputing the HMAC of the raw request body
with their secret and comparing it to ``X-Herald-Signature``.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-Herald-Signature"
EVENT_HEADER = "X-Herald-Event"
EVENT_ID_HEADER = "X-Herald-Event-Id"
DELIVERY_HEADER = "X-Herald-Delivery"
ATTEMPT_HEADER = "X-Herald-Delivery-Attempt"

RESERVED_HEADERS: frozenset[str] = frozenset(
    name.lower()
    for name in (
        SIGNATURE_HEADER,
        EVENT_HEADER,
        EVENT_ID_HEADER,
        DELIVERY_HEADER,
        ATTEMPT_HEADER,
        "Content-Type",
        "Content-Length",
        "User-Agent",
        "Host",
    )
)


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the HMAC-SHA256 signature of a request body.

    Args:
        body: Exact bytes sent as the request body.
        secret: Subscription signing secret.

    Returns:
        Signature in format "sha256=<hex_digest>".
    """
    digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Check a signature in constant time.

    Args:
        body: Raw request body as received.
        secret: Subscription signing secret.
        signature: Value of the signature header.

    Returns:
        True if the signature matches the body.
    """
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, signature)


def is_reserved_header(name: str) -> bool:
    return name.lower() in RESERVED_HEADERS


def build_headers(
    body: bytes,
    secret: str,
    event_type: str,
    event_id: str,
    delivery_id: str,
    sequence: int,
    user_agent: str,
    custom_headers: dict[str, str] | None = None,
) -> dict[str, str]:
    """Merge custom headers with the signed delivery headers.

    Custom headers are applied first and any that collide with a reserved
    name (case-insensitively) are dropped, so a subscription can never
    override the signature or event metadata.
    """
    headers = {
        name: value
        for name, value in (custom_headers or {}).items()
        if not is_reserved_header(name)
    }
    headers.update(
        {
            "Content-Type": "application/json",
            "User-Agent": user_agent,
            SIGNATURE_HEADER: compute_signature(body, secret),
            EVENT_HEADER: event_type,
            EVENT_ID_HEADER: event_id,
            DELIVERY_HEADER: delivery_id,
            ATTEMPT_HEADER: str(sequence),
        }
    )
    return headers
