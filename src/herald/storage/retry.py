"""Retry and error translation for store operations.

Transient Qdrant failures (connection drops, timeouts, 5xx) are retried with
exponential backoff. Whatever still fails is re-raised as StorageError, which
is the only failure a producer's ``dispatch`` call can see.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import httpx
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from herald.exceptions import StorageError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (
    httpx.ConnectError,
    httpx.TimeoutException,
    UnexpectedResponse,
)


def _log_retry(retry_state: RetryCallState) -> None:
    if retry_state.attempt_number > 1:
        logger.warning(
            "Retrying Qdrant operation",
            extra={
                "attempt": retry_state.attempt_number,
                "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
                "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
            },
        )


# Only network/server errors are retried, not client errors (4xx)
qdrant_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    before_sleep=_log_retry,
    reraise=True,
)


def storage_operation(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Retry transient Qdrant errors, then surface failures as StorageError."""
    retried = qdrant_retry(fn)

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await retried(*args, **kwargs)
        except (httpx.HTTPError, UnexpectedResponse, ResponseHandlingException) as e:
            logger.error("Store operation %s failed: %s", fn.__name__, e)
            raise StorageError(f"{fn.__name__} failed: {e}") from e

    return wrapper
