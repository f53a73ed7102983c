"""Principal extraction for the Herald API.

Authentication itself happens upstream; the gateway forwards the verified
principal in ``X-Principal-Id``. Requests without it are rejected with 401.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header

from herald.exceptions import AuthenticationError
from herald.logging import get_logger

logger = get_logger(__name__)

PRINCIPAL_HEADER = "X-Principal-Id"


async def get_principal(
    principal_id: Annotated[str | None, Header(alias=PRINCIPAL_HEADER)] = None,
) -> str:
    """Return the calling principal, raising AuthenticationError if absent."""
    if principal_id is None or not principal_id.strip():
        raise AuthenticationError(f"Missing {PRINCIPAL_HEADER} header")
    principal = principal_id.strip()
    logger.debug("Principal resolved", owner_id=principal)
    return principal


PrincipalDep = Annotated[str, Depends(get_principal)]
