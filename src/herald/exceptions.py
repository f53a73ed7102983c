"""Herald exception hierarchy.

Owner-facing operations raise these; the API layer maps each one to an HTTP
status. Subscriber-side failures (TransportError, ExhaustionError) are caught
inside the delivery pipeline and recorded on the delivery record instead.
"""

from __future__ import annotations


class HeraldError(Exception):
    """Base exception for all Herald errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "herald_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HeraldError):
    """Invalid registration or update input (bad url, unknown event, etc.).

    Attributes:
        field: The field that failed validation.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(HeraldError):
    """Unknown subscription or delivery id.

    Attributes:
        resource_type: "webhook" or "delivery".
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class AuthenticationError(HeraldError):
    """No principal was supplied by the upstream auth layer."""

    code: str = "authentication_error"


class AuthorizationError(HeraldError):
    """Caller does not own the subscription it is operating on.

    Distinct from NotFoundError: the resource exists, the caller may not touch it.
    """

    code: str = "authorization_error"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"not permitted to access {resource_type}: {resource_id}")


class StorageError(HeraldError):
    """Store operation failed after retries."""

    code: str = "storage_error"


class TransportError(HeraldError):
    """Subscriber endpoint failed (timeout, refused connection, non-2xx, ...).

    Raised inside the transport and converted into an AttemptOutcome; it never
    propagates to the dispatch caller.

    Attributes:
        kind: Diagnostic tag, e.g. "timeout" or "non_2xx:503".
        http_status: Response status when one was received.
    """

    code: str = "transport_error"

    def __init__(self, kind: str, message: str, http_status: int | None = None) -> None:
        self.kind = kind
        self.http_status = http_status
        super().__init__(message)


class ExhaustionError(HeraldError):
    """Attempted to deliver a record that already reached a terminal state."""

    code: str = "delivery_exhausted"

    def __init__(self, delivery_id: str, status: str) -> None:
        self.delivery_id = delivery_id
        self.status = status
        super().__init__(f"delivery {delivery_id} is {status}; no further attempts allowed")
