"""
Authentication helpers for verifying bearer JWTs from the identity provider.

The user id is the token subject; collection rows and action records are
keyed by it directly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt

from shelfscout.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: str = ""


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _extract_bearer_token(request: Request) -> str:
    auth = request.headers.get("Authorization")
    if not auth:
        raise _unauthorized("Missing Authorization header")

    parts = auth.split()
    if len(parts) != 2:
        raise _unauthorized("Invalid Authorization header format. Expected 'Bearer <token>'")

    scheme, token = parts
    if scheme.lower() != "bearer":
        raise _unauthorized("Invalid auth scheme. Expected 'Bearer'")

    return token


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify signature, audience and (when configured) issuer."""
    try:
        settings.require_auth()
    except RuntimeError as e:
        logger.error(f"Auth configuration missing: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured.",
        )

    options = {"verify_iss": settings.AUTH_JWT_ISS is not None}
    try:
        return jwt.decode(
            token,
            settings.AUTH_JWT_SECRET,
            algorithms=[settings.AUTH_JWT_ALGORITHM],
            audience=settings.AUTH_JWT_AUD,
            issuer=settings.AUTH_JWT_ISS,
            options=options,
        )
    except JWTError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise _unauthorized("Token validation failed")


def get_current_user(request: Request) -> AuthenticatedUser:
    """FastAPI dependency: the caller identified by the bearer token."""
    payload = decode_access_token(_extract_bearer_token(request))

    subject = payload.get("sub")
    if not subject:
        raise _unauthorized("Token missing subject (sub)")

    return AuthenticatedUser(id=str(subject), email=str(payload.get("email") or ""))
