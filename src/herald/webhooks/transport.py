"""Signed HTTP delivery of one event to one subscriber endpoint.

The transport never raises for subscriber-side problems. Every attempt ends
in an AttemptOutcome whose ``error_kind`` says what went wrong:

    non_2xx:<code>        endpoint answered with a non-2xx status
    timeout               no response within the configured timeout
    connection_refused    nothing listening at the destination
    dns_failure           host name did not resolve
    connection_error      any other failure to connect
    too_many_redirects    redirect loop
    malformed_response    response could not be parsed as HTTP
    invalid_url           destination URL rejected by the client
    request_error         any other request-level failure
"""

from __future__ import annotations

import logging
import socket
import time
from typing import TYPE_CHECKING, Any

import httpx

from herald.exceptions import TransportError
from herald.models import AttemptOutcome

from .signing import build_headers

if TYPE_CHECKING:
    from herald.models import DeliveryRecord

logger = logging.getLogger(__name__)

DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "no address associated",
    "getaddrinfo failed",
)


def _connect_error_kind(exc: BaseException) -> str:
    """Tell DNS failures and refused connections apart from other connect errors."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, socket.gaierror):
            return "dns_failure"
        if isinstance(current, ConnectionRefusedError):
            return "connection_refused"
        current = current.__cause__ or current.__context__

    message = str(exc).lower()
    if any(marker in message for marker in DNS_FAILURE_MARKERS):
        return "dns_failure"
    if "connection refused" in message or "connect call failed" in message:
        return "connection_refused"
    return "connection_error"


class WebhookTransport:
    """Builds, signs and POSTs deliveries over a shared httpx client.

    Example:
        ```python
        async with WebhookTransport(timeout_seconds=5.0) as transport:
            outcome = await transport.attempt(record)
            if not outcome.success:
                print(outcome.error_kind)
        ```
    """

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        user_agent: str = "Herald-Webhooks/0.1",
        response_excerpt_chars: int = 1000,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            timeout_seconds: Total timeout for one POST.
            user_agent: User-Agent header value.
            response_excerpt_chars: Characters of response body kept per attempt.
            client: Optional pre-built client (tests pass one with a MockTransport).
        """
        self._timeout = timeout_seconds
        self._user_agent = user_agent
        self._excerpt_chars = response_excerpt_chars
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> WebhookTransport:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def attempt(self, record: DeliveryRecord) -> AttemptOutcome:
        """Make one delivery attempt for a record.

        The attempt sequence number sent in the headers is the record's
        ``attempt_count + 1``, so it increases by one on every retry.

        Args:
            record: Record carrying the event snapshot and delivery target.

        Returns:
            The classified outcome. Never raises for subscriber-side failures.
        """
        body = record.event.canonical_body()
        headers = build_headers(
            body=body,
            secret=record.secret,
            event_type=record.event.type,
            event_id=record.event.id,
            delivery_id=record.id,
            sequence=record.attempt_count + 1,
            user_agent=self._user_agent,
            custom_headers=record.headers,
        )

        started = time.perf_counter()
        try:
            response = await self._post(record.target_url, body, headers)
        except TransportError as e:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.warning(
                "Delivery %s to %s failed: %s",
                record.id,
                record.target_url,
                e.kind,
            )
            return AttemptOutcome(
                success=False,
                http_status=e.http_status,
                error_kind=e.kind,
                error_message=e.message,
                response_time_ms=elapsed_ms,
            )
        elapsed_ms = (time.perf_counter() - started) * 1000

        excerpt = response.text[: self._excerpt_chars] if response.text else None
        if response.is_success:
            logger.info(
                "Delivered %s to %s (status %d)",
                record.event.type,
                record.target_url,
                response.status_code,
            )
            return AttemptOutcome(
                success=True,
                http_status=response.status_code,
                response_time_ms=elapsed_ms,
                response_excerpt=excerpt,
            )

        logger.warning(
            "Delivery %s rejected by %s (status %d)",
            record.id,
            record.target_url,
            response.status_code,
        )
        return AttemptOutcome(
            success=False,
            http_status=response.status_code,
            error_kind=f"non_2xx:{response.status_code}",
            error_message=f"HTTP {response.status_code}",
            response_time_ms=elapsed_ms,
            response_excerpt=excerpt,
        )

    async def _post(self, url: str, body: bytes, headers: dict[str, str]) -> httpx.Response:
        """POST the body, translating client exceptions into TransportError."""
        try:
            return await self._get_client().post(url, content=body, headers=headers)
        except httpx.TimeoutException as e:
            raise TransportError("timeout", f"no response within {self._timeout}s") from e
        except httpx.ConnectError as e:
            raise TransportError(_connect_error_kind(e), str(e) or "connection failed") from e
        except httpx.TooManyRedirects as e:
            raise TransportError("too_many_redirects", str(e)) from e
        except (httpx.RemoteProtocolError, httpx.DecodingError) as e:
            raise TransportError("malformed_response", str(e)) from e
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise TransportError("invalid_url", str(e)) from e
        except httpx.HTTPError as e:
            raise TransportError("request_error", str(e) or type(e).__name__) from e
