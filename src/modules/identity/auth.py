"""JWT authentication dependency for FastAPI.

Validates Bearer tokens issued by the marketplace's identity service and
exposes the caller as an :class:`AuthenticatedUser`. Issuing tokens is not
this service's job; it only verifies them.
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from src.config import settings
from src.exceptions import ForbiddenException, UnauthorizedException

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


@dataclass
class AuthenticatedUser:
    """The caller: a customer, designer, shop owner or admin."""

    id: str
    role: str
    email: str | None = None
    is_admin: bool = False


def _decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises UnauthorizedException on failure."""
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc


def create_access_token(user_id: str, role: str, email: str | None = None, expires_in_minutes: int | None = None) -> str:
    """Sign a token with the shared secret. Used by tests and local tooling."""
    expiry = datetime.now(UTC) + timedelta(minutes=expires_in_minutes or settings.jwt_expiry_minutes)
    claims = {"sub": user_id, "role": role, "exp": expiry}
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AuthenticatedUser:
    """FastAPI dependency that extracts and validates the current user from JWT."""
    if credentials is None:
        raise UnauthorizedException("Authentication required")

    payload = _decode_token(credentials.credentials)

    try:
        role = str(payload.get("role", "customer")).lower()
        user = AuthenticatedUser(
            id=str(payload["sub"]),
            role=role,
            email=payload.get("email"),
            is_admin=role == ADMIN_ROLE or bool(payload.get("is_admin", False)),
        )
    except KeyError as exc:
        raise UnauthorizedException("Token is missing required claims") from exc

    request.state.user = user
    return user


async def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """Dependency for admin-only endpoints."""
    if not user.is_admin:
        raise ForbiddenException("This action requires admin access")
    return user
