"""Member authentication routes: login, first-time password setup and password reset."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.auth import (
    MIN_PASSWORD_LENGTH,
    ActionPurpose,
    TokenExpired,
    TokenInvalid,
    bcrypt_salt,
    create_action_token,
    create_member_token,
    hash_password,
    verify_action_token,
    verify_password,
)
from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.dependencies import get_settings
from bspcp.core.errors import Forbidden, NotFound, Unauthorized, ValidationFailed
from bspcp.models import ApplicationStatus, ContactDetails, Credential, Member, MemberStatus
from bspcp.models.base import utcnow
from bspcp.schemas import (
    ForgotPasswordRequest,
    MemberLoginRequest,
    MemberLoginResponse,
    ResetPasswordRequest,
    SetupPasswordRequest,
)
from bspcp.services.email import frontend_link, send_templated_email
from bspcp.services.tokens import consume_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/member", tags=["member-auth"])


def _check_length(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


def _set_password(credential: Credential, password: str) -> None:
    credential.password_hash = hash_password(password)
    credential.salt = bcrypt_salt(credential.password_hash)


async def _find_credential(db: AsyncSession, identifier: str) -> Credential | None:
    """Look the member up by username first, then by (case-insensitive) email."""
    result = await db.execute(select(Credential).where(Credential.username == identifier))
    credential = result.scalar_one_or_none()
    if credential:
        return credential
    result = await db.execute(
        select(Credential)
        .join(ContactDetails, ContactDetails.member_id == Credential.member_id)
        .where(func.lower(ContactDetails.email) == identifier.lower())
    )
    return result.scalar_one_or_none()


@router.post("/login", response_model=MemberLoginResponse)
async def login(
    body: MemberLoginRequest,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    """Authenticate a member.

    Checks run in a fixed order so each failure has its own answer: unknown
    identifier or wrong password, then application under review, then
    application denied, then account restricted. A member still waiting on
    password setup is activated by their first successful login.
    """
    identifier = body.identifier.strip()
    credential = await _find_credential(db, identifier)
    if credential is None or not verify_password(body.password, credential.password_hash):
        raise Unauthorized("Invalid credentials")

    member = await db.get(Member, credential.member_id)
    if member.application_status == ApplicationStatus.PENDING:
        raise Forbidden(
            "Application Under Review",
            "Your membership application is still being reviewed.",
            applicationStatus="under_review",
        )
    if member.application_status == ApplicationStatus.REJECTED:
        raise Forbidden(
            "Application Denied",
            "Your membership application was not approved.",
            applicationStatus="rejected",
        )
    if member.member_status not in (MemberStatus.ACTIVE, MemberStatus.PENDING_PASSWORD_SETUP):
        raise Forbidden(
            "Account Access Restricted",
            "Your account is not active. Please contact the association.",
            accountStatus=member.member_status.value,
        )

    activated = member.member_status == MemberStatus.PENDING_PASSWORD_SETUP
    if activated:
        member.member_status = MemberStatus.ACTIVE
        logger.info("Member %s activated on first login", member.id)
    credential.last_login = utcnow()

    return MemberLoginResponse(
        token=create_member_token(settings, member.id, credential.username, member.full_name),
        member_id=member.id,
        username=credential.username,
        full_name=member.full_name,
        account_activated=activated,
    )


@router.post("/setup-password")
async def setup_password(
    body: SetupPasswordRequest,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    _check_length(body.password)
    try:
        claims = verify_action_token(settings, body.token, ActionPurpose.PASSWORD_SETUP)
    except TokenExpired:
        raise ValidationFailed(
            "Password setup link has expired.", "Please contact the association for a new link"
        ) from None
    except TokenInvalid:
        raise ValidationFailed("Invalid password setup link.") from None

    member = await db.get(Member, claims["subject_id"])
    if member is None:
        raise NotFound("Member not found")
    if member.member_status != MemberStatus.PENDING_PASSWORD_SETUP:
        raise ValidationFailed("Password has already been set", "Please log in with your existing password")

    result = await db.execute(select(Credential).where(Credential.member_id == member.id))
    credential = result.scalar_one_or_none()
    if credential is None:
        raise NotFound("Member credentials not found")

    _set_password(credential, body.password)
    member.member_status = MemberStatus.ACTIVE
    logger.info("Member %s completed password setup", member.id)
    return {"message": "Password set successfully. You can now log in.", "username": credential.username}


@router.post("/forgot-password")
async def forgot_password(
    body: ForgotPasswordRequest,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    """Always answers 200 so the endpoint cannot be used to probe for members."""
    result = await db.execute(
        select(Member, Credential)
        .join(ContactDetails, ContactDetails.member_id == Member.id)
        .join(Credential, Credential.member_id == Member.id)
        .where(func.lower(ContactDetails.email) == body.email.lower())
    )
    row = result.first()
    if row:
        member, credential = row
        token = create_action_token(settings, member.id, ActionPurpose.PASSWORD_RESET)
        await send_templated_email(
            settings,
            member.email,
            "password_reset",
            {
                "full_name": member.full_name,
                "account": credential.username,
                "reset_url": frontend_link(settings, "member/reset-password", token),
                "expires_minutes": settings.password_reset_expire_minutes,
            },
        )
    return {"message": "If an account exists with that email, a password reset link has been sent"}


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    _check_length(body.new_password)
    try:
        claims = verify_action_token(settings, body.token, ActionPurpose.PASSWORD_RESET)
    except TokenExpired:
        raise ValidationFailed("Password reset link has expired.", "Please request a new one") from None
    except TokenInvalid:
        raise ValidationFailed("Invalid password reset link.") from None

    result = await db.execute(select(Credential).where(Credential.member_id == claims["subject_id"]))
    credential = result.scalar_one_or_none()
    if credential is None:
        raise NotFound("Member credentials not found")

    await consume_token(db, claims["jti"], ActionPurpose.PASSWORD_RESET, claims["subject_id"])
    _set_password(credential, body.new_password)
    logger.info("Member %s reset their password", credential.member_id)
    return {"message": "Password reset successfully"}
