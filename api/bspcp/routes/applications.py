"""Membership applications: public intake, availability probes and admin review."""

import logging

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.auth import ActionPurpose, create_action_token
from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.dependencies import get_current_admin, get_settings
from bspcp.core.errors import Conflict, NotFound, OperationFailed, ValidationFailed, invalid_payload
from bspcp.models import (
    Admin,
    ApplicationStatus,
    Certificate,
    ContactDetails,
    Credential,
    Member,
    MembershipType,
    MemberStatus,
    PersonalDocuments,
    ProfessionalDetails,
)
from bspcp.schemas import (
    ApplicantEmailRequest,
    ApplicationDocuments,
    ApplicationForm,
    ApplicationOut,
    ApplicationStatusResponse,
    ApplicationStatusUpdate,
    AvailabilityResponse,
    CertificateOut,
    EmailCheck,
    EmailResult,
    IdNumberCheck,
    MemberStatusUpdate,
    PhoneCheck,
    SendEmailRequest,
    SubmitApplicationResponse,
)
from bspcp.services import applications as lifecycle
from bspcp.services.audit import log_activity, log_admin_action
from bspcp.services.email import frontend_link, send_templated_email
from bspcp.services.notifications import active_recipient_emails
from bspcp.services.uploads import delete_files, public_url, save_upload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["applications"])

MAX_CERTIFICATES = 10
STUDENT_OCCUPATION = "Student Counsellor"
STUDENT_ORGANIZATION = "Student Training Program"


def _uploads(form, field: str) -> list:
    """Non-empty file parts submitted under ``field``."""
    return [part for part in form.getlist(field) if not isinstance(part, str) and part.filename]


def application_out(
    member: Member,
    documents: list[PersonalDocuments],
    certificates: list[Certificate],
    username: str | None = None,
) -> ApplicationOut:
    professional = member.professional
    contact = member.contact
    id_document = next((d.id_document_path for d in documents if d.id_document_path), None)
    profile_image = next((d.profile_image_path for d in documents if d.profile_image_path), None)
    return ApplicationOut(
        id=member.id,
        name=member.full_name,
        first_name=member.first_name,
        last_name=member.last_name,
        email=contact.email if contact else None,
        phone=contact.phone if contact else None,
        nationality=member.nationality,
        gender=member.gender,
        date_of_birth=member.date_of_birth,
        id_number=member.id_number,
        membership_type=member.membership_type,
        membership_number=member.membership_number,
        application_status=member.application_status,
        member_status=member.member_status,
        payment_status=member.payment_status,
        review_comment=member.review_comment,
        created_at=member.created_at,
        occupation=professional.occupation if professional else None,
        organization=professional.organization_name if professional else None,
        qualification=professional.highest_qualification if professional else None,
        experience=professional.years_experience if professional else None,
        specializations=professional.specializations if professional else [],
        languages=professional.languages if professional else [],
        session_types=professional.session_types if professional else [],
        fee_range=professional.fee_range if professional else None,
        availability=professional.availability if professional else None,
        physical_address=contact.physical_address if contact else None,
        postal_address=contact.postal_address if contact else None,
        institution_name=member.institution_name,
        study_year=member.study_year,
        username=username,
        documents=ApplicationDocuments(
            id_document=public_url(id_document),
            profile_image=public_url(profile_image),
            proof_of_payment=public_url(member.payment_proof_path),
            certificates=[
                CertificateOut(name=c.original_filename, url=public_url(c.file_path)) for c in certificates
            ],
        ),
    )


async def _get_member(db: AsyncSession, member_id: int) -> Member:
    member = await db.get(Member, member_id)
    if member is None:
        raise NotFound("Application not found")
    return member


async def _load_files(db: AsyncSession, member_ids: list[int]):
    docs = await db.execute(select(PersonalDocuments).where(PersonalDocuments.member_id.in_(member_ids)))
    certs = await db.execute(
        select(Certificate).where(Certificate.member_id.in_(member_ids)).order_by(Certificate.id)
    )
    by_member_docs: dict[int, list] = {}
    by_member_certs: dict[int, list] = {}
    for doc in docs.scalars():
        by_member_docs.setdefault(doc.member_id, []).append(doc)
    for cert in certs.scalars():
        by_member_certs.setdefault(cert.member_id, []).append(cert)
    return by_member_docs, by_member_certs


# ---------------------------------------------------------------------------
# Intake
# ---------------------------------------------------------------------------


@router.post("/membership", response_model=SubmitApplicationResponse, status_code=status.HTTP_201_CREATED)
async def submit_application(
    request: Request,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    form = await request.form()
    fields = {key: value for key, value in form.multi_items() if isinstance(value, str)}
    try:
        data = ApplicationForm.model_validate(fields)
    except ValidationError as exc:
        raise invalid_payload(exc.errors()) from None

    certificates = _uploads(form, "certificates")
    if len(certificates) > MAX_CERTIFICATES:
        raise ValidationFailed("Too many certificates", f"At most {MAX_CERTIFICATES} certificates may be uploaded")

    taken = await db.execute(select(ContactDetails.id).where(func.lower(ContactDetails.email) == data.email))
    if taken.first():
        raise Conflict("Email already registered", "An application with this email address already exists")
    taken = await db.execute(select(Member.id).where(Member.id_number == data.id_number))
    if taken.first():
        raise Conflict("ID number already registered", "An application with this ID number already exists")

    saved = []
    try:
        id_document = next(iter(_uploads(form, "idDocument")), None)
        profile_image = next(iter(_uploads(form, "profileImage")), None)
        proof = next(iter(_uploads(form, "proofOfPayment")), None)

        id_document_file = await save_upload(settings, id_document, "idDocument") if id_document else None
        if id_document_file:
            saved.append(id_document_file.path)
        profile_image_file = await save_upload(settings, profile_image, "profileImage") if profile_image else None
        if profile_image_file:
            saved.append(profile_image_file.path)
        proof_file = await save_upload(settings, proof, "proofOfPayment") if proof else None
        if proof_file:
            saved.append(proof_file.path)
        certificate_files = []
        for upload in certificates:
            stored = await save_upload(settings, upload, "certificates")
            saved.append(stored.path)
            certificate_files.append(stored)

        student = data.membership_type == MembershipType.STUDENT
        member = Member(
            first_name=data.first_name,
            last_name=data.last_name,
            id_number=data.id_number,
            date_of_birth=data.date_of_birth,
            gender=data.gender,
            nationality=data.nationality,
            membership_type=data.membership_type,
            institution_name=data.institution_name,
            study_year=data.study_year,
            counselling_coursework=data.counselling_coursework,
            internship_supervisor_name=data.internship_supervisor_name,
            internship_supervisor_contact=data.internship_supervisor_contact,
            supervised_practice_hours=data.supervised_practice_hours,
            payment_proof_path=str(proof_file.path) if proof_file else None,
        )
        db.add(member)
        await db.flush()

        db.add(
            ProfessionalDetails(
                member_id=member.id,
                title=data.title,
                occupation=STUDENT_OCCUPATION if student else data.occupation,
                organization_name=(
                    (data.organization_name or data.institution_name or STUDENT_ORGANIZATION)
                    if student
                    else data.organization_name
                ),
                highest_qualification=data.highest_qualification,
                other_qualifications=data.other_qualifications,
                scholarly_publications=data.scholarly_publications,
                employment_status="student" if student else data.employment_status,
                years_experience=(data.years_experience or "0") if student else data.years_experience,
                specializations=data.specializations,
                languages=data.languages,
                session_types=data.session_types,
                bio=data.bio,
                fee_range=data.fee_range,
                availability=data.availability,
            )
        )
        db.add(
            ContactDetails(
                member_id=member.id,
                email=data.email,
                phone=data.phone,
                website=data.website,
                physical_address=data.physical_address,
                postal_address=data.postal_address,
                city=data.city,
                emergency_contact=data.emergency_contact,
                emergency_phone=data.emergency_phone,
                show_email=data.show_email,
                show_phone=data.show_phone,
                show_address=data.show_address,
            )
        )
        if id_document_file or profile_image_file:
            db.add(
                PersonalDocuments(
                    member_id=member.id,
                    id_document_path=str(id_document_file.path) if id_document_file else None,
                    profile_image_path=str(profile_image_file.path) if profile_image_file else None,
                )
            )
        for stored in certificate_files:
            db.add(
                Certificate(member_id=member.id, file_path=str(stored.path), original_filename=stored.original_filename)
            )

        log_activity(
            db,
            "new_application",
            "New membership application",
            f"{member.full_name} applied for {data.membership_type.value} membership",
            priority="high",
            related_entity="member",
            related_id=member.id,
        )
        await db.commit()
    except Exception:
        delete_files(saved)
        raise

    logger.info("Application %s submitted (%s)", member.id, data.membership_type.value)

    await send_templated_email(
        settings,
        data.email,
        "application_received",
        {"full_name": member.full_name, "membership_type": data.membership_type.value},
    )
    recipients = await active_recipient_emails(db)
    for recipient in recipients:
        await send_templated_email(
            settings,
            recipient,
            "admin_new_application",
            {
                "full_name": member.full_name,
                "email": data.email,
                "phone": data.phone,
                "membership_type": data.membership_type.value,
                "submitted_at": member.created_at.strftime("%Y-%m-%d %H:%M UTC"),
                "review_url": f"{settings.frontend_url.rstrip('/')}/admin/applications",
            },
        )

    return SubmitApplicationResponse(message="Application submitted successfully", member_id=member.id)


@router.post("/check-email", response_model=AvailabilityResponse)
async def check_email(body: EmailCheck, db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(ContactDetails.id).where(func.lower(ContactDetails.email) == body.email.strip().lower())
    )
    if result.first():
        return AvailabilityResponse(available=False, message="This email address is already registered")
    return AvailabilityResponse(available=True, message="Email address is available")


@router.post("/check-id-number", response_model=AvailabilityResponse)
async def check_id_number(body: IdNumberCheck, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(Member.id).where(Member.id_number == body.id_number.strip()))
    if result.first():
        return AvailabilityResponse(available=False, message="This ID number is already registered")
    return AvailabilityResponse(available=True, message="ID number is available")


@router.post("/check-phone", response_model=AvailabilityResponse)
async def check_phone(body: PhoneCheck, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(ContactDetails.id).where(ContactDetails.phone == body.phone.strip()))
    if result.first():
        return AvailabilityResponse(available=False, message="This phone number is already registered")
    return AvailabilityResponse(available=True, message="Phone number is available")


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


@router.get("/applications", response_model=list[ApplicationOut])
async def list_applications(
    status_filter: ApplicationStatus | None = Query(None, alias="status"),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Member).order_by(Member.created_at.desc(), Member.id.desc())
    if status_filter:
        query = query.where(Member.application_status == status_filter)
    members = list((await db.execute(query)).scalars())
    if not members:
        return []

    ids = [m.id for m in members]
    docs, certs = await _load_files(db, ids)
    result = await db.execute(
        select(Credential.member_id, Credential.username).where(Credential.member_id.in_(ids))
    )
    usernames = dict(result.all())
    return [application_out(m, docs.get(m.id, []), certs.get(m.id, []), usernames.get(m.id)) for m in members]


@router.put("/applications/{member_id}/status", response_model=ApplicationStatusResponse)
async def update_application_status(
    member_id: int,
    body: ApplicationStatusUpdate,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    member = await _get_member(db, member_id)
    previous = member.application_status

    outcome = await lifecycle.review(db, member, body.status, body.review_comment)

    log_admin_action(
        db,
        admin,
        "application_status_update",
        "member",
        member.id,
        request=request,
        old_values={"applicationStatus": previous},
        new_values={"applicationStatus": body.status, "reviewComment": body.review_comment},
    )
    log_activity(
        db,
        "application_review",
        f"Application {body.status.value}",
        f"{admin.full_name} set {member.full_name}'s application to {body.status.value}",
        related_entity="member",
        related_id=member.id,
        admin=admin,
    )
    await db.flush()

    docs, certs = await _load_files(db, [member.id])
    application = application_out(member, docs.get(member.id, []), certs.get(member.id, []), outcome.username)

    setup_token = None
    if body.status == ApplicationStatus.APPROVED:
        setup_token = create_action_token(settings, member.id, ActionPurpose.PASSWORD_SETUP)
    await db.commit()

    if member.email:
        if body.status == ApplicationStatus.APPROVED:
            await send_templated_email(
                settings,
                member.email,
                "application_approved",
                {
                    "full_name": member.full_name,
                    "membership_number": member.membership_number,
                    "username": outcome.username,
                    "review_comment": body.review_comment,
                    "setup_url": frontend_link(settings, "member/setup-password", setup_token),
                    "expires_hours": settings.password_setup_expire_hours,
                },
            )
        elif body.status == ApplicationStatus.REJECTED:
            await send_templated_email(
                settings,
                member.email,
                "application_rejected",
                {"full_name": member.full_name, "review_comment": body.review_comment},
            )

    return ApplicationStatusResponse(
        message=f"Application {body.status.value} successfully",
        application=application,
        username_generated=outcome.username is not None,
    )


@router.delete("/applications/{member_id}")
async def delete_application(
    member_id: int,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    member = await _get_member(db, member_id)
    name = member.full_name
    paths = await lifecycle.delete_application(db, member)
    log_admin_action(db, admin, "application_delete", "member", member_id, request=request, old_values={"name": name})
    await db.commit()

    removed = delete_files(paths)
    return {"message": "Application deleted successfully", "deletedFiles": removed}


@router.put("/members/{member_id}/status")
async def update_member_status(
    member_id: int,
    body: MemberStatusUpdate,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    member = await db.get(Member, member_id)
    if member is None:
        raise NotFound("Member not found")

    if body.status == MemberStatus.ACTIVE:
        result = await db.execute(select(Credential.password_hash).where(Credential.member_id == member.id))
        password_hash = result.scalar_one_or_none()
        if member.application_status != ApplicationStatus.APPROVED or not password_hash:
            raise Conflict(
                "Member cannot be activated",
                "Only approved members who have set a password can be active",
                currentStatus=member.member_status.value,
                requestedStatus=body.status.value,
            )

    previous = member.member_status
    member.member_status = body.status
    log_admin_action(
        db,
        admin,
        "member_status_update",
        "member",
        member.id,
        request=request,
        old_values={"memberStatus": previous},
        new_values={"memberStatus": body.status},
    )
    return {"message": "Member status updated successfully", "memberId": member.id, "memberStatus": body.status}


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


@router.post("/send-applicant-email", response_model=EmailResult)
async def send_applicant_email(
    body: ApplicantEmailRequest,
    admin: Admin = Depends(get_current_admin),
    settings: Settings = Depends(get_settings),
):
    sent = await send_templated_email(
        settings,
        body.applicant_email,
        "application_more_info",
        {"subject": body.subject, "full_name": body.applicant_name, "message": body.body},
    )
    if not sent:
        raise OperationFailed("Failed to send email", f"Could not deliver to {body.applicant_email}")
    logger.info("Admin %s emailed applicant %s", admin.username, body.applicant_email)
    return EmailResult(message="Email sent successfully", accepted=[body.applicant_email], rejected=[])


@router.post("/send-email", response_model=EmailResult)
async def send_email(
    body: SendEmailRequest,
    admin: Admin = Depends(get_current_admin),
    settings: Settings = Depends(get_settings),
):
    accepted, rejected = [], []
    for recipient in body.recipients:
        if await send_templated_email(settings, recipient, "generic", {"subject": body.subject, "body": body.body}):
            accepted.append(recipient)
        else:
            rejected.append(recipient)
    if not accepted:
        raise OperationFailed("Failed to send email", "No recipient accepted the message")
    logger.info("Admin %s sent '%s' to %d recipients", admin.username, body.subject, len(accepted))
    return EmailResult(message="Email sent successfully", accepted=accepted, rejected=rejected)
