"""Member self-service: profile, contact details, photo, preferences, CPD and the member's bookings."""

import logging
from datetime import date

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.dependencies import get_current_member, get_settings
from bspcp.core.errors import Forbidden, NotFound, ValidationFailed
from bspcp.models import (
    Booking,
    BookingStatus,
    CounsellorNotificationPreference,
    CpdRecord,
    Credential,
    Member,
    PersonalDocuments,
    ProfessionalDetails,
)
from bspcp.schemas import (
    BookingOut,
    ContactOut,
    ContactUpdate,
    CpdList,
    CpdOut,
    NotificationPreferences,
    ProfessionalOut,
    ProfileOut,
    ProfileUpdate,
)
from bspcp.services.booking_rules import local_today
from bspcp.services.notifications import get_booking_preference
from bspcp.services.uploads import delete_files, public_url, save_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/member", tags=["member"])

PROFESSIONAL_FIELDS = (
    "title",
    "occupation",
    "organization_name",
    "highest_qualification",
    "other_qualifications",
    "scholarly_publications",
    "employment_status",
    "years_experience",
    "specializations",
    "languages",
    "session_types",
    "bio",
    "fee_range",
    "availability",
)


def _require_self(member: Member, member_id: int) -> None:
    if member.id != member_id:
        raise Forbidden("You can only update your own profile")


async def _profile_documents(db: AsyncSession, member_id: int) -> PersonalDocuments | None:
    result = await db.execute(
        select(PersonalDocuments)
        .where(PersonalDocuments.member_id == member_id)
        .order_by(PersonalDocuments.uploaded_at.desc(), PersonalDocuments.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _profile(db: AsyncSession, member: Member) -> ProfileOut:
    username = await db.scalar(select(Credential.username).where(Credential.member_id == member.id))
    points = await db.scalar(
        select(func.coalesce(func.sum(CpdRecord.points), 0)).where(
            CpdRecord.member_id == member.id, CpdRecord.status == "approved"
        )
    )
    documents = await _profile_documents(db, member.id)
    return ProfileOut(
        id=member.id,
        username=username,
        first_name=member.first_name,
        last_name=member.last_name,
        full_name=member.full_name,
        membership_number=member.membership_number,
        membership_type=member.membership_type,
        application_status=member.application_status,
        member_status=member.member_status,
        payment_status=member.payment_status,
        gender=member.gender,
        nationality=member.nationality,
        date_of_birth=member.date_of_birth,
        profile_image=public_url(documents.profile_image_path if documents else None),
        cpd_points=int(points or 0),
        professional=ProfessionalOut.model_validate(member.professional) if member.professional else None,
        contact=ContactOut.model_validate(member.contact) if member.contact else None,
    )


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


@router.get("/profile", response_model=ProfileOut)
async def get_profile(member: Member = Depends(get_current_member), db: AsyncSession = Depends(get_db)):
    return await _profile(db, member)


@router.put("/profile/{member_id}", response_model=ProfileOut)
async def update_profile(
    member_id: int,
    body: ProfileUpdate,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    _require_self(member, member_id)
    changes = body.model_dump(exclude_unset=True)

    for field in ("first_name", "last_name"):
        if changes.get(field):
            setattr(member, field, changes[field])

    professional = member.professional
    if professional is None:
        professional = ProfessionalDetails(member_id=member.id)
        db.add(professional)
        member.professional = professional
    for field in PROFESSIONAL_FIELDS:
        if field in changes:
            value = changes[field]
            if field in ("specializations", "languages", "session_types") and value is None:
                value = []
            setattr(professional, field, value)

    await db.flush()
    logger.info("Member %s updated profile fields %s", member.id, sorted(changes))
    return await _profile(db, member)


@router.put("/contact/{member_id}", response_model=ContactOut)
async def update_contact(
    member_id: int,
    body: ContactUpdate,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    _require_self(member, member_id)
    contact = member.contact
    if contact is None:
        raise NotFound("Contact details not found")

    for field, value in body.model_dump(exclude_unset=True).items():
        if field.startswith("show_") and value is None:
            continue
        setattr(contact, field, value)
    await db.flush()
    return contact


@router.post("/profile-photo")
async def upload_profile_photo(
    profile_image: UploadFile = File(..., alias="profileImage"),
    member: Member = Depends(get_current_member),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    if not (profile_image.content_type or "").startswith("image/"):
        raise ValidationFailed("Invalid file type", "profileImage: only image files are allowed")
    stored = await save_upload(settings, profile_image, "profileImage")

    documents = await _profile_documents(db, member.id)
    old_path = None
    if documents is None:
        db.add(PersonalDocuments(member_id=member.id, profile_image_path=str(stored.path)))
    else:
        old_path = documents.profile_image_path
        documents.profile_image_path = str(stored.path)
    await db.commit()

    if old_path:
        delete_files([old_path])
    return {"message": "Profile photo updated successfully", "profileImage": public_url(stored.path)}


# ---------------------------------------------------------------------------
# Notification preferences
# ---------------------------------------------------------------------------


@router.get("/notification-preferences", response_model=NotificationPreferences)
async def get_notification_preferences(
    member: Member = Depends(get_current_member), db: AsyncSession = Depends(get_db)
):
    preference = await get_booking_preference(db, member.id)
    if preference is None:
        return NotificationPreferences()
    return NotificationPreferences(booking_notifications=preference.booking_notifications)


@router.put("/notification-preferences", response_model=NotificationPreferences)
async def update_notification_preferences(
    body: NotificationPreferences,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    preference = await get_booking_preference(db, member.id)
    if preference is None:
        preference = CounsellorNotificationPreference(member_id=member.id)
        db.add(preference)
    preference.booking_notifications = body.booking_notifications
    await db.flush()
    return NotificationPreferences(booking_notifications=preference.booking_notifications)


# ---------------------------------------------------------------------------
# CPD
# ---------------------------------------------------------------------------


def _cpd_out(record: CpdRecord) -> CpdOut:
    out = CpdOut.model_validate(record)
    out.document_url = public_url(record.document_path)
    return out


@router.get("/cpd", response_model=CpdList)
async def list_cpd(member: Member = Depends(get_current_member), db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(CpdRecord)
        .where(CpdRecord.member_id == member.id)
        .order_by(CpdRecord.uploaded_at.desc(), CpdRecord.id.desc())
    )
    records = list(result.scalars())
    total = sum(r.points for r in records if r.status == "approved")
    return CpdList(records=[_cpd_out(r) for r in records], total_points=total)


@router.post("/cpd", response_model=CpdOut, status_code=status.HTTP_201_CREATED)
async def add_cpd(
    title: str = Form(..., min_length=1, max_length=255),
    points: int = Form(..., ge=0),
    completion_date: date | None = Form(None, alias="completionDate"),
    document: UploadFile | None = File(None),
    member: Member = Depends(get_current_member),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    stored = None
    if document is not None and document.filename:
        stored = await save_upload(settings, document, "document")

    record = CpdRecord(
        member_id=member.id,
        title=title,
        points=points,
        completion_date=completion_date,
        document_path=str(stored.path) if stored else None,
    )
    db.add(record)
    await db.flush()
    logger.info("Member %s logged %d CPD points", member.id, points)
    return _cpd_out(record)


@router.delete("/cpd/{record_id}")
async def delete_cpd(
    record_id: int,
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(CpdRecord).where(CpdRecord.id == record_id, CpdRecord.member_id == member.id))
    record = result.scalar_one_or_none()
    if record is None:
        raise NotFound("CPD record not found")

    path = record.document_path
    await db.delete(record)
    await db.commit()
    if path:
        delete_files([path])
    return {"message": "CPD record deleted successfully"}


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


@router.get("/bookings", response_model=list[BookingOut])
async def list_my_bookings(
    status_filter: BookingStatus | None = Query(None, alias="status"),
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(Booking)
        .where(Booking.counsellor_id == member.id)
        .order_by(Booking.booking_date.desc(), Booking.booking_time.desc())
    )
    if status_filter:
        query = query.where(Booking.status == status_filter)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/bookings/today", response_model=list[BookingOut])
async def todays_bookings(member: Member = Depends(get_current_member), db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Booking)
        .where(
            Booking.counsellor_id == member.id,
            Booking.booking_date == local_today(),
            Booking.status != BookingStatus.CANCELLED,
        )
        .order_by(Booking.booking_time)
    )
    return result.scalars().all()
