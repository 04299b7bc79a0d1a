"""Authenticated identity resolved from the main API's bearer tokens.

Tokens are issued by the Product Bazar API; this service only verifies them.
A missing or invalid token means an anonymous request: search still works,
history operations raise Unauthorized.
"""

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from jose import JWTError, jwt

from bazar_search.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Opaque authenticated user; `subject` is the only history key."""

    subject: str


def verify_token(token: str) -> dict[str, Any]:
    """Decode a JWT, enforcing exp and sub. Raises ValueError if invalid."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require_exp": True, "require_sub": True},
        )
    except JWTError as e:
        raise ValueError(f"Invalid token: {e!s}") from e
    if not payload.get("sub"):
        raise ValueError("Token missing required claim: sub")
    return payload


def identity_from_header(authorization: str | None) -> Identity | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        payload = verify_token(token.strip())
    except ValueError as e:
        logger.info("Ignoring bearer token | %s", str(e)[:200])
        return None
    return Identity(subject=str(payload["sub"]))


async def get_identity(request: Request) -> Identity | None:
    """FastAPI dependency — identity for the current request, or None."""
    return identity_from_header(request.headers.get("authorization"))
