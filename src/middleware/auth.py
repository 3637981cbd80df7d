"""Session authentication for protected endpoints.

Callers present an HS256 JWT either as ``Authorization: Bearer <token>``
or in the ``token`` cookie.  The ``sub`` claim names the user, whose
role is then read from the database so that role changes take effect
without re-issuing tokens.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt
import structlog
from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.settings import settings
from src.models.enums import UserRole
from src.services.user_directory import UserDirectory

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)


@dataclass(slots=True, frozen=True)
class AuthenticatedUser:
    """Verified caller identity."""

    id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def create_access_token(user_id: str, *, expires_in: timedelta | None = None) -> str:
    """Issue a signed session token for *user_id*."""
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + (expires_in or timedelta(days=settings.jwt_expiry_days)),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str:
    """Return the user id carried by *token*.

    Raises ``jwt.InvalidTokenError`` for bad signatures, expired tokens
    and tokens without a subject.
    """
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["sub", "exp"]},
    )
    return str(payload["sub"])


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> AuthenticatedUser:
    """FastAPI dependency resolving the verified caller.

    Usage::

        @router.get("/my-grievances")
        async def my_grievances(user: AuthenticatedUser = Depends(get_current_user)): ...
    """
    token = credentials.credentials if credentials is not None else request.cookies.get(settings.jwt_cookie_name)
    if not token:
        raise _unauthorized("No token provided")

    try:
        user_id = decode_access_token(token)
    except jwt.InvalidTokenError:
        logger.warning(
            "auth.invalid_token",
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
        )
        raise _unauthorized("Invalid or expired token") from None

    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        user = await UserDirectory(session).get(user_id)

    if user is None:
        logger.warning("auth.unknown_user", user_id=user_id)
        raise _unauthorized("User not found")

    return AuthenticatedUser(id=user.id, role=user.role)


async def require_admin(user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """FastAPI dependency that additionally enforces the ADMIN role."""
    if not user.is_admin:
        logger.warning("auth.admin_required", user_id=user.id)
        raise HTTPException(status_code=403, detail="Access denied. Admin only.")
    return user
