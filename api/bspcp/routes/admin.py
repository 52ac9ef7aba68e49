"""Administrator routes: sessions, account management, dashboard and notification settings.

Admin tokens are honoured only while their ``admin_sessions`` row exists, so
logout, password changes and deactivation revoke them immediately.
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.auth import (
    ADMIN_BCRYPT_ROUNDS,
    MIN_PASSWORD_LENGTH,
    ActionPurpose,
    TokenExpired,
    TokenInvalid,
    create_action_token,
    create_admin_token,
    hash_password,
    token_fingerprint,
    verify_action_token,
    verify_password,
)
from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.dependencies import bearer_scheme, client_ip, get_current_admin, get_settings, require_super_admin
from bspcp.core.errors import Conflict, Forbidden, Locked, NotFound, OperationFailed, Unauthorized, ValidationFailed
from bspcp.models import (
    Admin,
    AdminActivity,
    AdminSession,
    ApplicationStatus,
    Content,
    ContentStatus,
    ContentType,
    Member,
    MemberStatus,
    NotificationRecipient,
    PaymentStatus,
)
from bspcp.models.base import utcnow
from bspcp.schemas import (
    ActivityOut,
    AdminCreate,
    AdminForgotPasswordRequest,
    AdminLoginRequest,
    AdminLoginResponse,
    AdminOut,
    AdminRoleUpdate,
    AdminStatusUpdate,
    ChangePasswordRequest,
    DashboardStats,
    NotificationSettingsUpdate,
    RecipientCreate,
    RecipientList,
    RecipientOut,
    RecipientStatusUpdate,
    ResetPasswordRequest,
)
from bspcp.services.audit import log_admin_action
from bspcp.services.booking_rules import local_today
from bspcp.services.email import frontend_link, send_templated_email
from bspcp.services.notifications import notifications_enabled, set_notifications_enabled
from bspcp.services.tokens import consume_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


def _check_length(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")


async def _end_sessions(db: AsyncSession, admin_id: int) -> None:
    await db.execute(delete(AdminSession).where(AdminSession.admin_id == admin_id))


async def _get_admin(db: AsyncSession, admin_id: int) -> Admin:
    admin = await db.get(Admin, admin_id)
    if admin is None:
        raise NotFound("Admin not found")
    return admin


def _not_self(current: Admin, target_id: int, action: str) -> None:
    if current.id == target_id:
        raise Forbidden(f"You cannot {action} your own account")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/admin/login", response_model=AdminLoginResponse)
async def admin_login(
    body: AdminLoginRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    identifier = body.identifier.strip()
    result = await db.execute(
        select(Admin).where(
            or_(Admin.username == identifier, func.lower(Admin.email) == identifier.lower()),
            Admin.is_active.is_(True),
        )
    )
    admin = result.scalar_one_or_none()
    if admin is None:
        logger.warning("Failed admin login for unknown identifier")
        raise Unauthorized("Invalid credentials")

    now = utcnow()
    if admin.locked_until and admin.locked_until > now:
        raise Locked("Account is temporarily locked", retryAfter=admin.locked_until.isoformat())

    if not verify_password(body.password, admin.password_hash):
        admin.login_attempts += 1
        if admin.login_attempts >= settings.admin_max_login_attempts:
            admin.locked_until = now + timedelta(minutes=settings.admin_lockout_minutes)
            logger.warning("Admin %s locked until %s", admin.username, admin.locked_until.isoformat())
        log_admin_action(db, admin, "login_failed", "admin_session", admin.id, request=request, status="failure")
        # The counters must survive the 401.
        await db.commit()
        raise Unauthorized("Invalid credentials")

    admin.login_attempts = 0
    admin.locked_until = None
    admin.last_login = now

    token = create_admin_token(settings, admin.id, admin.username, admin.role.value)
    db.add(
        AdminSession(
            admin_id=admin.id,
            token_hash=token_fingerprint(token),
            ip_address=client_ip(request),
            user_agent=request.headers.get("user-agent"),
            expires_at=now + timedelta(minutes=settings.admin_token_expire_minutes),
        )
    )
    log_admin_action(db, admin, "login", "admin_session", admin.id, request=request)
    await db.flush()
    return AdminLoginResponse(token=token, admin=AdminOut.model_validate(admin))


@router.post("/admin/logout")
async def admin_logout(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    await db.execute(delete(AdminSession).where(AdminSession.token_hash == token_fingerprint(credentials.credentials)))
    log_admin_action(db, admin, "logout", "admin_session", admin.id, request=request)
    return {"message": "Logged out successfully"}


@router.get("/admin/profile", response_model=AdminOut)
async def admin_profile(admin: Admin = Depends(get_current_admin)):
    return admin


@router.put("/admin/change-password")
async def change_password(
    body: ChangePasswordRequest,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    _check_length(body.new_password)
    if not verify_password(body.current_password, admin.password_hash):
        raise Unauthorized("Current password is incorrect")

    admin.password_hash = hash_password(body.new_password, ADMIN_BCRYPT_ROUNDS)
    admin.password_changed_at = utcnow()
    await _end_sessions(db, admin.id)
    log_admin_action(db, admin, "password_change", "own_account", admin.id, request=request)
    return {"message": "Password changed successfully. You will need to login again."}


@router.post("/admin/forgot-password")
async def admin_forgot_password(
    body: AdminForgotPasswordRequest,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(Admin).where(func.lower(Admin.email) == body.email.lower(), Admin.is_active.is_(True))
    )
    admin = result.scalar_one_or_none()
    if admin:
        await _send_reset_link(settings, admin)
    return {"message": "If an account exists with that email, a password reset link has been sent"}


@router.post("/admin/reset-password")
async def admin_reset_password(
    body: ResetPasswordRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    _check_length(body.new_password)
    try:
        claims = verify_action_token(settings, body.token, ActionPurpose.ADMIN_PASSWORD_RESET)
    except TokenExpired:
        raise ValidationFailed("Password reset link has expired.", "Please request a new one") from None
    except TokenInvalid:
        raise ValidationFailed("Invalid password reset link.") from None

    admin = await _get_admin(db, claims["subject_id"])
    await consume_token(db, claims["jti"], ActionPurpose.ADMIN_PASSWORD_RESET, admin.id)
    admin.password_hash = hash_password(body.new_password, ADMIN_BCRYPT_ROUNDS)
    admin.password_changed_at = utcnow()
    admin.login_attempts = 0
    admin.locked_until = None
    await _end_sessions(db, admin.id)
    log_admin_action(db, admin, "password_reset", "own_account", admin.id, request=request)
    return {"message": "Password reset successfully"}


async def _send_reset_link(settings: Settings, admin: Admin) -> bool:
    token = create_action_token(settings, admin.id, ActionPurpose.ADMIN_PASSWORD_RESET)
    return await send_templated_email(
        settings,
        admin.email,
        "password_reset",
        {
            "full_name": admin.full_name,
            "account": admin.username,
            "reset_url": frontend_link(settings, "admin/reset-password", token),
            "expires_minutes": settings.password_reset_expire_minutes,
        },
    )


# ---------------------------------------------------------------------------
# Admin accounts (super admin)
# ---------------------------------------------------------------------------


@router.post("/admins", status_code=status.HTTP_201_CREATED)
async def create_admin(
    body: AdminCreate,
    request: Request,
    current: Admin = Depends(require_super_admin),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    _check_length(body.password)
    taken = await db.execute(
        select(Admin.id).where(or_(Admin.username == body.username, func.lower(Admin.email) == body.email.lower()))
    )
    if taken.first():
        raise Conflict("Username or email already exists")

    admin = Admin(
        username=body.username,
        email=body.email.lower(),
        password_hash=hash_password(body.password, ADMIN_BCRYPT_ROUNDS),
        role=body.role,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        created_by=current.id,
    )
    db.add(admin)
    await db.flush()
    log_admin_action(
        db,
        current,
        "admin_create",
        "admin_account",
        admin.id,
        request=request,
        new_values={"username": admin.username, "role": admin.role},
    )
    await db.commit()

    await send_templated_email(
        settings,
        admin.email,
        "admin_account",
        {
            "full_name": admin.full_name,
            "intro": f"{current.full_name} has created a BSPCP administrator account for you.",
            "username": admin.username,
            "login_url": f"{settings.frontend_url.rstrip('/')}/admin/login",
        },
    )
    return {"message": "Admin created successfully", "admin": AdminOut.model_validate(admin)}


@router.get("/admins", response_model=list[AdminOut])
async def list_admins(current: Admin = Depends(require_super_admin), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Admin).order_by(Admin.created_at.desc(), Admin.id.desc()))
    return result.scalars().all()


@router.put("/admins/{admin_id}/role", response_model=AdminOut)
async def update_admin_role(
    admin_id: int,
    body: AdminRoleUpdate,
    request: Request,
    current: Admin = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    _not_self(current, admin_id, "change the role of")
    admin = await _get_admin(db, admin_id)
    previous = admin.role
    admin.role = body.role
    log_admin_action(
        db,
        current,
        "admin_role_update",
        "admin_account",
        admin.id,
        request=request,
        old_values={"role": previous},
        new_values={"role": body.role},
    )
    await db.flush()
    return admin


@router.put("/admins/{admin_id}/status", response_model=AdminOut)
async def update_admin_status(
    admin_id: int,
    body: AdminStatusUpdate,
    request: Request,
    current: Admin = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    _not_self(current, admin_id, "deactivate")
    admin = await _get_admin(db, admin_id)
    previous = admin.is_active
    admin.is_active = body.is_active
    if not body.is_active:
        await _end_sessions(db, admin.id)
    log_admin_action(
        db,
        current,
        "admin_status_update",
        "admin_account",
        admin.id,
        request=request,
        old_values={"isActive": previous},
        new_values={"isActive": body.is_active},
    )
    await db.flush()
    return admin


@router.post("/admins/{admin_id}/reset-password")
async def force_admin_password_reset(
    admin_id: int,
    request: Request,
    current: Admin = Depends(require_super_admin),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    _not_self(current, admin_id, "reset the password of")
    admin = await _get_admin(db, admin_id)
    log_admin_action(
        db,
        current,
        "force_password_reset",
        "admin_account",
        admin.id,
        request=request,
        details=f"Forced password reset for admin {admin.username}",
    )
    await db.commit()

    if not await _send_reset_link(settings, admin):
        raise OperationFailed("Failed to send password reset email", f"Could not deliver to {admin.email}")
    return {"message": "Password reset email has been sent"}


@router.delete("/admins/{admin_id}")
async def delete_admin(
    admin_id: int,
    request: Request,
    current: Admin = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    _not_self(current, admin_id, "delete")
    admin = await _get_admin(db, admin_id)
    log_admin_action(
        db,
        current,
        "admin_delete",
        "admin_account",
        admin.id,
        request=request,
        old_values={"username": admin.username, "email": admin.email, "role": admin.role},
    )
    await db.delete(admin)
    return {"message": "Admin deleted successfully"}


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@router.get("/admin/dashboard-stats", response_model=DashboardStats)
async def dashboard_stats(
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    total_members = await db.scalar(select(func.count(Member.id)))
    active_members = await db.scalar(
        select(func.count(Member.id)).where(
            Member.member_status == MemberStatus.ACTIVE, Member.application_status == ApplicationStatus.APPROVED
        )
    )
    pending_applications = await db.scalar(
        select(func.count(Member.id)).where(Member.application_status == ApplicationStatus.PENDING)
    )
    active_news = await db.scalar(
        select(func.count(Content.id)).where(
            Content.status == ContentStatus.PUBLISHED, Content.type.in_([ContentType.ARTICLE, ContentType.NEWS])
        )
    )
    upcoming_events = await db.scalar(
        select(func.count(Content.id)).where(Content.type == ContentType.EVENT, Content.event_date > local_today())
    )
    pending_payments = await db.scalar(
        select(func.count(Member.id)).where(Member.payment_status == PaymentStatus.UPLOADED)
    )
    log_admin_action(
        db, admin, "dashboard_access", "system", request=request, details="Accessed admin dashboard statistics"
    )
    return DashboardStats(
        total_members=total_members or 0,
        active_members=active_members or 0,
        pending_applications=pending_applications or 0,
        active_news=active_news or 0,
        upcoming_events=upcoming_events or 0,
        pending_payments=pending_payments or 0,
    )


@router.get("/admin/activities", response_model=list[ActivityOut])
async def list_activities(
    limit: int = Query(50, ge=1, le=200),
    unread: bool = False,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(AdminActivity).order_by(AdminActivity.created_at.desc(), AdminActivity.id.desc()).limit(limit)
    if unread:
        query = query.where(AdminActivity.is_read.is_(False))
    result = await db.execute(query)
    return result.scalars().all()


@router.put("/admin/activities/{activity_id}/read", response_model=ActivityOut)
async def mark_activity_read(
    activity_id: int,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    activity = await db.get(AdminActivity, activity_id)
    if activity is None:
        raise NotFound("Activity not found")
    activity.is_read = True
    await db.flush()
    return activity


# ---------------------------------------------------------------------------
# Notification recipients
# ---------------------------------------------------------------------------


async def _get_recipient(db: AsyncSession, recipient_id: int) -> NotificationRecipient:
    recipient = await db.get(NotificationRecipient, recipient_id)
    if recipient is None:
        raise NotFound("Recipient not found")
    return recipient


@router.get("/admin/notification-recipients", response_model=RecipientList)
async def list_recipients(admin: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(NotificationRecipient).order_by(NotificationRecipient.email))
    return RecipientList(
        recipients=[RecipientOut.model_validate(r) for r in result.scalars()],
        notifications_enabled=await notifications_enabled(db),
    )


@router.post("/admin/notification-recipients", response_model=RecipientOut, status_code=status.HTTP_201_CREATED)
async def add_recipient(
    body: RecipientCreate,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    email = body.email.lower()
    taken = await db.execute(select(NotificationRecipient.id).where(NotificationRecipient.email == email))
    if taken.first():
        raise Conflict("Email already exists in notification recipients")

    recipient = NotificationRecipient(email=email, name=body.name)
    db.add(recipient)
    await db.flush()
    log_admin_action(
        db, admin, "notification_recipient_add", "notification_recipient", recipient.id, request=request,
        new_values={"email": email},
    )
    return recipient


@router.delete("/admin/notification-recipients/{recipient_id}")
async def remove_recipient(
    recipient_id: int,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    recipient = await _get_recipient(db, recipient_id)
    log_admin_action(
        db, admin, "notification_recipient_remove", "notification_recipient", recipient.id, request=request,
        old_values={"email": recipient.email},
    )
    await db.delete(recipient)
    return {"message": "Recipient removed successfully"}


@router.put("/admin/notification-recipients/{recipient_id}/status", response_model=RecipientOut)
async def update_recipient_status(
    recipient_id: int,
    body: RecipientStatusUpdate,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    recipient = await _get_recipient(db, recipient_id)
    recipient.is_active = body.is_active
    log_admin_action(
        db, admin, "notification_recipient_status", "notification_recipient", recipient.id, request=request,
        new_values={"isActive": body.is_active},
    )
    await db.flush()
    return recipient


@router.put("/admin/notification-settings")
async def update_notification_settings(
    body: NotificationSettingsUpdate,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    await set_notifications_enabled(db, body.notifications_enabled)
    log_admin_action(
        db, admin, "notification_settings_update", "system", request=request,
        new_values={"notificationsEnabled": body.notifications_enabled},
    )
    return {"message": "Notification settings updated", "notificationsEnabled": body.notifications_enabled}
