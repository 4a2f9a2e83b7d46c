"""Bearer-token guard for the chatbot admin routes."""

import logging
from dataclasses import dataclass

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from src.config import settings
from src.exceptions import ForbiddenException, UnauthorizedException

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


@dataclass
class AdminUser:
    subject: str
    role: str
    is_platform_admin: bool = False

    @property
    def is_admin(self) -> bool:
        return self.is_platform_admin or self.role.lower() == ADMIN_ROLE


def _decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises UnauthorizedException on failure."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise UnauthorizedException("Invalid or expired token") from exc


async def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> AdminUser:
    """FastAPI dependency for /admin routes: 401 without a valid token, 403 for non-admins."""
    if credentials is None:
        raise UnauthorizedException("Authentication required")

    payload = _decode_token(credentials.credentials)
    if not payload.get("sub"):
        raise UnauthorizedException("Token is missing required claims")

    user = AdminUser(
        subject=str(payload["sub"]),
        role=str(payload.get("role", "")),
        is_platform_admin=bool(payload.get("is_platform_admin", False)),
    )
    if not user.is_admin:
        logger.warning("Non-admin %s attempted to access %s", user.subject, request.url.path)
        raise ForbiddenException("Admin access required")

    request.state.user = user
    return user
