"""Payment-proof verification state machine.

    not_requested -> requested -> uploaded -> verified | rejected
    rejected -> uploaded (re-upload)

Every transition writes a ``payment_audit_log`` row in the same transaction
as the status change. Upload links are signed ``payment_upload`` action
tokens; redeeming one records its jti so it cannot be replayed.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.auth import ActionPurpose, TokenExpired, TokenInvalid, create_action_token, verify_action_token
from bspcp.core.config import Settings
from bspcp.core.errors import InvalidTransition, Unauthorized, ValidationFailed
from bspcp.models import (
    Admin,
    ApplicationStatus,
    Member,
    MemberPayment,
    PaymentAuditLog,
    PaymentStatus,
    PaymentUploadLog,
)
from bspcp.models.base import utcnow
from bspcp.services.uploads import StoredFile

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.NOT_REQUESTED: frozenset({PaymentStatus.REQUESTED}),
    PaymentStatus.REQUESTED: frozenset({PaymentStatus.UPLOADED}),
    PaymentStatus.UPLOADED: frozenset({PaymentStatus.VERIFIED, PaymentStatus.REJECTED}),
    PaymentStatus.REJECTED: frozenset({PaymentStatus.UPLOADED}),
    PaymentStatus.VERIFIED: frozenset(),
}

APPLICATION_FEE_TYPE = "application_fee"


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[PaymentStatus(current)]


def check_transition(current: PaymentStatus, target: PaymentStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransition("payment", PaymentStatus(current).value, PaymentStatus(target).value)


@dataclass
class Actor:
    """Who caused a transition, for the audit trail."""

    type: str  # admin, member, token, system
    id: int | None = None
    ip_address: str | None = None

    @classmethod
    def for_admin(cls, admin: Admin, ip_address: str | None = None) -> "Actor":
        return cls("admin", admin.id, ip_address)


def audit(
    db: AsyncSession,
    member: Member,
    action: str,
    old_status: PaymentStatus | None,
    new_status: PaymentStatus,
    actor: Actor,
    notes: str | None = None,
) -> PaymentAuditLog:
    entry = PaymentAuditLog(
        member_id=member.id,
        action=action,
        actor_type=actor.type,
        actor_id=actor.id,
        old_status=old_status.value if old_status else None,
        new_status=new_status.value,
        notes=notes,
        ip_address=actor.ip_address,
    )
    db.add(entry)
    return entry


def _transition(
    db: AsyncSession, member: Member, target: PaymentStatus, action: str, actor: Actor, notes: str | None = None
) -> None:
    current = PaymentStatus(member.payment_status)
    check_transition(current, target)
    member.payment_status = target
    audit(db, member, action, current, target, actor, notes)
    logger.info("Member %s payment %s -> %s (%s by %s)", member.id, current, target, action, actor.type)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def issue_upload_token(settings: Settings, member: Member) -> str:
    return create_action_token(settings, member.id, ActionPurpose.PAYMENT_UPLOAD)


def read_upload_token(settings: Settings, token: str) -> dict:
    try:
        return verify_action_token(settings, token, ActionPurpose.PAYMENT_UPLOAD)
    except TokenExpired:
        raise Unauthorized("Token expired", "This upload link has expired; please ask for a new one") from None
    except TokenInvalid:
        raise Unauthorized("Invalid token", "This upload link is not valid") from None


def upload_permitted(member: Member) -> bool:
    return member.application_status != ApplicationStatus.REJECTED and can_transition(
        member.payment_status, PaymentStatus.UPLOADED
    )


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


def request_payment(settings: Settings, db: AsyncSession, member: Member, actor: Actor) -> str:
    """Move to ``requested`` and return a fresh upload token.

    Asking again while already ``requested`` only re-issues the link.
    """
    if member.application_status == ApplicationStatus.REJECTED:
        raise ValidationFailed("Payment cannot be requested for a rejected application")

    if member.payment_status == PaymentStatus.REQUESTED:
        audit(db, member, "payment_request_resent", PaymentStatus.REQUESTED, PaymentStatus.REQUESTED, actor)
        logger.info("Re-sent payment link to member %s", member.id)
    else:
        _transition(db, member, PaymentStatus.REQUESTED, "payment_requested", actor)
    member.payment_requested_at = utcnow()
    return issue_upload_token(settings, member)


def record_upload(db: AsyncSession, member: Member, stored: StoredFile, actor: Actor) -> PaymentUploadLog:
    _transition(db, member, PaymentStatus.UPLOADED, "payment_uploaded", actor, notes=stored.original_filename)
    member.payment_proof_path = str(stored.path)
    member.payment_uploaded_at = utcnow()
    member.payment_review_comment = None

    entry = PaymentUploadLog(
        member_id=member.id,
        file_path=str(stored.path),
        original_filename=stored.original_filename,
        file_size=stored.size,
        mime_type=stored.mime_type,
        ip_address=actor.ip_address,
    )
    db.add(entry)
    return entry


def verify_payment(
    settings: Settings, db: AsyncSession, member: Member, actor: Actor, review_comment: str | None = None
) -> MemberPayment:
    _transition(db, member, PaymentStatus.VERIFIED, "payment_verified", actor, review_comment)
    member.payment_verified_at = utcnow()
    member.payment_review_comment = review_comment

    payment = MemberPayment(
        member_id=member.id,
        amount=settings.application_fee,
        fee_type=APPLICATION_FEE_TYPE,
        proof_path=member.payment_proof_path,
        verified_by=actor.id if actor.type == "admin" else None,
        notes=review_comment,
    )
    db.add(payment)
    return payment


def reject_payment(settings: Settings, db: AsyncSession, member: Member, actor: Actor, review_comment: str) -> str:
    """Reject the uploaded proof and return a fresh upload token for the retry."""
    if not review_comment or not review_comment.strip():
        raise ValidationFailed("Review comment is required for rejection")
    _transition(db, member, PaymentStatus.REJECTED, "payment_rejected", actor, review_comment)
    member.payment_rejected_at = utcnow()
    member.payment_review_comment = review_comment
    return issue_upload_token(settings, member)


async def audit_trail(db: AsyncSession, member_id: int) -> list[PaymentAuditLog]:
    result = await db.execute(
        select(PaymentAuditLog)
        .where(PaymentAuditLog.member_id == member_id)
        .order_by(PaymentAuditLog.created_at, PaymentAuditLog.id)
    )
    return list(result.scalars())
