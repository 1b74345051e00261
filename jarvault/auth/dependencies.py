"""Authentication dependencies for route guards.

The session layer issues HS256 JWTs; this module only turns one into a
`Principal(user_id, is_admin)` and enforces ownership. It never looks the
user up: the principal is trusted as supplied.

  - `sub` is the user id.
  - `is_admin: true` or `role: "admin"` marks an administrator.

With DEVELOP=true a request without an Authorization header acts as
DEV_USER_ID and ownership checks are skipped, matching the dashboard's
local development mode.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, Request
from jose import JWTError, jwt

from jarvault.core.config import Settings, get_settings
from jarvault.core.errors import Forbidden, Unauthorized
from jarvault.core.logging import bind_principal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    user_id: str
    is_admin: bool = False


def _decode_jwt(token: str, settings: Settings) -> dict:
    if not settings.jwt_secret:
        raise JWTError("JWT_SECRET is not configured")
    return jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=["HS256"],
        audience=settings.jwt_audience,
    )


async def get_optional_principal(
    request: Request,
    authorization: str = Header(default=""),
    settings: Settings = Depends(get_settings),
) -> Optional[Principal]:
    """Resolve the session principal, or None when no Authorization header is sent.

    A header that is present but invalid is always a 401.
    """
    if not authorization:
        if settings.develop:
            principal = Principal(user_id=settings.dev_user_id)
            request.state.user_id = principal.user_id
            bind_principal(principal.user_id)
            return principal
        return None

    if not authorization.startswith("Bearer "):
        logger.warning("auth: malformed Authorization header")
        raise Unauthorized("Missing token")

    token = authorization.removeprefix("Bearer ").strip()
    if not token:
        logger.warning("auth: empty token after Bearer prefix")
        raise Unauthorized("Missing token")

    try:
        payload = _decode_jwt(token, settings)
    except JWTError as exc:
        logger.warning("auth: JWT verification failed: %s", exc)
        raise Unauthorized("Invalid token")

    sub = payload.get("sub")
    if not sub:
        raise Unauthorized("No sub claim")

    principal = Principal(
        user_id=str(sub),
        is_admin=bool(payload.get("is_admin")) or payload.get("role") == "admin",
    )
    request.state.user_id = principal.user_id
    bind_principal(principal.user_id)
    return principal


async def get_current_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    if principal is None:
        logger.warning("auth: missing Authorization header")
        raise Unauthorized()
    return principal


def ensure_owner(
    user_id: str,
    principal: Principal,
    settings: Settings,
    allow_admin: bool = False,
    action: str = "access",
) -> None:
    """Raise Forbidden unless the principal owns `user_id`'s resources."""
    if settings.develop or principal.user_id == user_id:
        return
    if allow_admin and principal.is_admin:
        return
    logger.warning(
        "auth: %s denied: principal %s is not owner %s",
        action, principal.user_id, user_id,
    )
    raise Forbidden(f"Access denied: You can only {action} your own plugins")


async def get_owner(
    user_id: str,
    principal: Principal = Depends(get_current_principal),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """Path-scoped guard: the caller must own `{user_id}`."""
    ensure_owner(user_id, principal, settings)
    return principal


async def get_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_admin:
        raise Forbidden("Administrator access required")
    return principal


def client_ip(request: Request) -> str:
    """Caller address for token IP restrictions.

    First hop of X-Forwarded-For, then X-Real-IP, then the socket peer.
    """
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"
