"""Payment-proof routes: admin requests, tokenised member uploads and the admin review queue."""

import logging
import math

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.auth import ActionPurpose
from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.dependencies import client_ip, get_current_admin, get_optional_member, get_settings
from bspcp.core.errors import NotFound, Unauthorized, ValidationFailed
from bspcp.models import Admin, ApplicationStatus, Member, MemberPayment, PaymentStatus
from bspcp.schemas import (
    FeePaymentList,
    FeePaymentOut,
    Pagination,
    PaymentAuditOut,
    PaymentRecordMember,
    PaymentRecordOut,
    PaymentRecordPage,
    PaymentRequestResponse,
    PaymentReview,
    PaymentTokenMember,
    PaymentTokenOut,
)
from bspcp.services import payments
from bspcp.services.audit import log_activity, log_admin_action
from bspcp.services.email import frontend_link, send_templated_email
from bspcp.services.tokens import consume_token, is_consumed
from bspcp.services.uploads import delete_files, public_url, save_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

UPLOAD_PAGE = "payment-upload"


async def _get_member(db: AsyncSession, member_id: int) -> Member:
    member = await db.get(Member, member_id)
    if member is None:
        raise NotFound("Member not found")
    return member


def _record_out(member: Member) -> PaymentRecordOut:
    if member.payment_status == PaymentStatus.REJECTED:
        reviewed_at = member.payment_rejected_at
    else:
        reviewed_at = member.payment_verified_at
    return PaymentRecordOut(
        id=member.id,
        status=member.payment_status,
        submitted_at=member.payment_uploaded_at,
        reviewed_at=reviewed_at,
        requested_at=member.payment_requested_at,
        review_comment=member.payment_review_comment,
        proof_of_payment_url=public_url(member.payment_proof_path),
        member=PaymentRecordMember(
            id=member.id,
            name=member.full_name,
            membership_number=member.membership_number,
            email=member.email,
            phone=member.contact.phone if member.contact else None,
        ),
    )


# ---------------------------------------------------------------------------
# Request / upload
# ---------------------------------------------------------------------------


@router.post("/admin/request-payment/{member_id}", response_model=PaymentRequestResponse)
async def request_payment(
    member_id: int,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    member = await _get_member(db, member_id)
    previous = member.payment_status
    token = payments.request_payment(settings, db, member, payments.Actor.for_admin(admin, client_ip(request)))
    log_admin_action(
        db,
        admin,
        "payment_request",
        "member",
        member.id,
        request=request,
        old_values={"paymentStatus": previous},
        new_values={"paymentStatus": member.payment_status},
    )
    await db.commit()

    if member.email:
        await send_templated_email(
            settings,
            member.email,
            "payment_request",
            {
                "full_name": member.full_name,
                "membership_type": member.membership_type.value,
                "amount": settings.application_fee,
                "upload_url": frontend_link(settings, UPLOAD_PAGE, token),
                "expires_days": settings.payment_upload_expire_days,
            },
        )

    return PaymentRequestResponse(
        message="Payment request sent successfully",
        member=member.full_name,
        upload_token=token,
        expiry_days=settings.payment_upload_expire_days,
    )


@router.get("/member/payment-token/{token}", response_model=PaymentTokenOut)
async def validate_payment_token(
    token: str,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    claims = payments.read_upload_token(settings, token)
    if await is_consumed(db, claims["jti"]):
        raise Unauthorized("Token already used", "This link has already been used")
    member = await _get_member(db, claims["subject_id"])
    return PaymentTokenOut(
        is_valid=payments.upload_permitted(member),
        member=PaymentTokenMember(
            id=member.id,
            name=member.full_name,
            application_status=member.application_status,
            payment_status=member.payment_status,
        ),
        expiry=claims["exp"],
    )


@router.post("/member/payment-proof")
async def upload_payment_proof(
    request: Request,
    proof: UploadFile = File(..., alias="proofOfPayment"),
    token: str | None = Form(None),
    session_member: Member | None = Depends(get_optional_member),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    """Accept a proof of payment from a member session or an emailed upload link."""
    ip = client_ip(request)
    claims = None
    if token:
        claims = payments.read_upload_token(settings, token)
        member = await _get_member(db, claims["subject_id"])
        actor = payments.Actor("token", member.id, ip)
    elif session_member is not None:
        member = session_member
        actor = payments.Actor("member", member.id, ip)
    else:
        raise Unauthorized("Not authenticated", "An upload link or member session is required")

    if member.application_status == ApplicationStatus.REJECTED:
        raise ValidationFailed("Payment cannot be uploaded for a rejected application")
    payments.check_transition(member.payment_status, PaymentStatus.UPLOADED)
    if claims and await is_consumed(db, claims["jti"]):
        raise Unauthorized("Token already used", "This link has already been used")

    stored = await save_upload(settings, proof, "proofOfPayment")
    try:
        payments.record_upload(db, member, stored, actor)
        if claims:
            await consume_token(db, claims["jti"], ActionPurpose.PAYMENT_UPLOAD, member.id)
        log_activity(
            db,
            "payment_upload",
            "Proof of payment uploaded",
            f"{member.full_name} uploaded a proof of payment",
            priority="high",
            related_entity="member",
            related_id=member.id,
        )
        await db.commit()
    except Exception:
        delete_files([stored.path])
        raise

    return {
        "message": "Proof of payment uploaded successfully",
        "paymentStatus": member.payment_status,
        "fileUrl": public_url(stored.path),
    }


# ---------------------------------------------------------------------------
# Review queue
# ---------------------------------------------------------------------------


@router.get("/admin/payment-records", response_model=PaymentRecordPage)
async def list_payment_records(
    status_filter: PaymentStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    condition = (
        Member.payment_status == status_filter
        if status_filter
        else Member.payment_status != PaymentStatus.NOT_REQUESTED
    )
    total = await db.scalar(select(func.count(Member.id)).where(condition))
    result = await db.execute(
        select(Member)
        .where(condition)
        .order_by(
            func.coalesce(Member.payment_uploaded_at, Member.payment_requested_at).desc(),
            Member.id.desc(),
        )
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return PaymentRecordPage(
        payment_records=[_record_out(m) for m in result.scalars()],
        pagination=Pagination(
            page=page,
            limit=limit,
            total_records=total or 0,
            total_pages=math.ceil((total or 0) / limit),
        ),
    )


@router.post("/admin/payment-records/{member_id}/verify")
async def verify_payment(
    member_id: int,
    request: Request,
    body: PaymentReview | None = None,
    admin: Admin = Depends(get_current_admin),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    member = await _get_member(db, member_id)
    comment = body.review_comment if body else None
    payments.verify_payment(settings, db, member, payments.Actor.for_admin(admin, client_ip(request)), comment)
    log_admin_action(
        db,
        admin,
        "payment_verify",
        "member",
        member.id,
        request=request,
        old_values={"paymentStatus": PaymentStatus.UPLOADED},
        new_values={"paymentStatus": PaymentStatus.VERIFIED, "reviewComment": comment},
    )
    await db.commit()

    if member.email:
        await send_templated_email(
            settings,
            member.email,
            "payment_verified",
            {"full_name": member.full_name, "reviewed_by": admin.full_name, "review_comment": comment},
        )
    return {"message": "Payment verified successfully", "paymentStatus": member.payment_status}


@router.post("/admin/payment-records/{member_id}/reject")
async def reject_payment(
    member_id: int,
    body: PaymentReview,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    member = await _get_member(db, member_id)
    token = payments.reject_payment(
        settings, db, member, payments.Actor.for_admin(admin, client_ip(request)), body.review_comment
    )
    log_admin_action(
        db,
        admin,
        "payment_reject",
        "member",
        member.id,
        request=request,
        old_values={"paymentStatus": PaymentStatus.UPLOADED},
        new_values={"paymentStatus": PaymentStatus.REJECTED, "reviewComment": body.review_comment},
    )
    await db.commit()

    if member.email:
        await send_templated_email(
            settings,
            member.email,
            "payment_rejected",
            {
                "full_name": member.full_name,
                "review_comment": body.review_comment,
                "upload_url": frontend_link(settings, UPLOAD_PAGE, token),
                "expires_days": settings.payment_upload_expire_days,
            },
        )
    return {"message": "Payment rejected", "paymentStatus": member.payment_status}


@router.get("/admin/payment-records/{member_id}/audit", response_model=list[PaymentAuditOut])
async def payment_audit_trail(
    member_id: int,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await payments.audit_trail(db, member_id)


@router.get("/admin/payments", response_model=FeePaymentList)
async def list_fee_payments(
    fee_type: str | None = None,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(MemberPayment, Member)
        .join(Member, Member.id == MemberPayment.member_id)
        .order_by(MemberPayment.payment_date.desc(), MemberPayment.id.desc())
    )
    if fee_type:
        query = query.where(MemberPayment.fee_type == fee_type)
    rows = (await db.execute(query)).all()

    items = [
        FeePaymentOut(
            id=payment.id,
            member_id=member.id,
            member_name=member.full_name,
            membership_number=member.membership_number,
            amount=payment.amount,
            fee_type=payment.fee_type,
            payment_date=payment.payment_date,
            verified_by=payment.verified_by,
        )
        for payment, member in rows
    ]
    return FeePaymentList(payments=items, total_amount=sum((p.amount for p in items), start=0), count=len(items))
