"""FastAPI dependencies for injection into route handlers."""

from collections.abc import Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.auth import TokenExpired, TokenInvalid, decode_token, token_fingerprint
from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.errors import Forbidden, Unauthorized
from bspcp.models import Admin, AdminRole, AdminSession, Member
from bspcp.models.base import utcnow

bearer_scheme = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _decode_session(settings: Settings, token: str, expected_type: str) -> dict:
    try:
        payload = decode_token(settings, token)
    except TokenExpired:
        raise Unauthorized("Session expired", "Please log in again") from None
    except TokenInvalid:
        raise Unauthorized("Invalid token") from None
    if payload.get("type") != expected_type:
        raise Unauthorized("Invalid token type")
    try:
        payload["sub"] = int(payload["sub"])
    except (KeyError, ValueError):
        raise Unauthorized("Invalid token") from None
    return payload


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


async def get_optional_member(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
) -> Member | None:
    """Resolve the member session if a bearer token is present, else None."""
    if credentials is None:
        return None

    payload = _decode_session(settings, credentials.credentials, "member")
    member = await db.get(Member, payload["sub"])
    if member is None:
        raise Unauthorized("Member not found")
    return member


async def get_current_member(member: Member | None = Depends(get_optional_member)) -> Member:
    """Require a valid member session token."""
    if member is None:
        raise Unauthorized("Not authenticated")
    return member


# ---------------------------------------------------------------------------
# Admins
# ---------------------------------------------------------------------------


async def get_current_admin(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
) -> Admin:
    """Validate an admin token against its live session row.

    A token that decodes but whose session was deleted (logout) or whose admin
    was deactivated is rejected.
    """
    if credentials is None:
        raise Unauthorized("Not authenticated")

    payload = _decode_session(settings, credentials.credentials, "admin")

    result = await db.execute(
        select(Admin)
        .join(AdminSession, AdminSession.admin_id == Admin.id)
        .where(
            AdminSession.token_hash == token_fingerprint(credentials.credentials),
            AdminSession.expires_at > utcnow(),
            Admin.id == payload["sub"],
            Admin.is_active.is_(True),
        )
    )
    admin = result.scalar_one_or_none()
    if admin is None:
        raise Unauthorized("Invalid or expired session")
    return admin


def require_role(role: AdminRole) -> Callable:
    """Factory: return a dependency that enforces a minimum admin role.

    Usage in a route:
        @router.post("/admins")
        async def create_admin(admin: Admin = Depends(require_role(AdminRole.SUPER_ADMIN))):
            ...
    """

    async def _check(admin: Admin = Depends(get_current_admin)) -> Admin:
        if not admin.has_role(role):
            raise Forbidden("Insufficient permissions", f"Requires role: {role.value}")
        return admin

    return _check


require_super_admin = require_role(AdminRole.SUPER_ADMIN)
