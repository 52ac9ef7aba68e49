"""Counsellor directory and session bookings.

Clients book anonymously; counsellors (members) confirm, cancel or reschedule
their own bookings. Rules live in services.booking_rules.
"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.dependencies import get_current_member, get_settings
from bspcp.core.errors import Conflict, InvalidTransition, NotFound, ValidationFailed
from bspcp.models import ApplicationStatus, Booking, BookingStatus, Member, MemberStatus, PersonalDocuments
from bspcp.schemas import BookingCreate, BookingOut, BookingReschedule, BookingStatusUpdate, CounsellorOut
from bspcp.services.audit import log_activity
from bspcp.services.booking_rules import (
    ACTIVE_STATUSES,
    BookingViolation,
    check_reschedulable,
    check_status_change,
    offers_session_type,
    validate_booking,
)
from bspcp.services.email import send_templated_email
from bspcp.services.notifications import booking_notifications_on
from bspcp.services.uploads import public_url

logger = logging.getLogger(__name__)

router = APIRouter(tags=["bookings"])

BOOKABLE = (Member.application_status == ApplicationStatus.APPROVED, Member.member_status == MemberStatus.ACTIVE)


def _raise_violations(violations: list[BookingViolation]) -> None:
    if not violations:
        return
    error = Conflict if any(v.rule == "slot_conflict" for v in violations) else ValidationFailed
    raise error("Booking rules violated", violations=[v.to_dict() for v in violations])


async def _profile_images(db: AsyncSession, member_ids: list[int]) -> dict[int, str]:
    result = await db.execute(
        select(PersonalDocuments.member_id, PersonalDocuments.profile_image_path)
        .where(PersonalDocuments.member_id.in_(member_ids), PersonalDocuments.profile_image_path.is_not(None))
        .order_by(PersonalDocuments.id)
    )
    return {member_id: path for member_id, path in result.all()}


def _counsellor_out(member: Member, profile_image: str | None) -> CounsellorOut:
    professional = member.professional
    contact = member.contact
    return CounsellorOut(
        id=member.id,
        name=member.full_name,
        title=professional.title if professional else None,
        occupation=professional.occupation if professional else None,
        organization_name=professional.organization_name if professional else None,
        specializations=professional.specializations if professional else [],
        languages=professional.languages if professional else [],
        session_types=professional.session_types if professional else [],
        bio=professional.bio if professional else None,
        fee_range=professional.fee_range if professional else None,
        availability=professional.availability if professional else None,
        years_experience=professional.years_experience if professional else None,
        city=contact.city if contact else None,
        email=contact.email if contact and contact.show_email else None,
        phone=contact.phone if contact and contact.show_phone else None,
        profile_image=public_url(profile_image),
    )


async def _get_counsellor(db: AsyncSession, counsellor_id: int) -> Member:
    result = await db.execute(select(Member).where(Member.id == counsellor_id, *BOOKABLE))
    counsellor = result.scalar_one_or_none()
    if counsellor is None:
        raise NotFound("Counsellor not found")
    return counsellor


async def _own_booking(db: AsyncSession, booking_id: int, member: Member) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id, Booking.counsellor_id == member.id))
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found or unauthorized")
    return booking


async def _notify_client(settings: Settings, booking: Booking, counsellor: Member) -> None:
    await send_templated_email(
        settings,
        booking.email,
        "booking_status",
        {
            "client_name": booking.client_name,
            "counsellor_name": counsellor.full_name,
            "booking_date": booking.booking_date.isoformat(),
            "booking_time": booking.booking_time.strftime("%H:%M"),
            "status": booking.status.value,
            "notes": booking.notes,
        },
    )


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------


@router.get("/counsellors", response_model=list[CounsellorOut])
async def list_counsellors(
    session_type: str | None = Query(None, alias="sessionType"),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(Member).where(*BOOKABLE).order_by(Member.first_name, Member.last_name))
    counsellors = list(result.scalars())
    if session_type:
        counsellors = [
            m for m in counsellors if m.professional and offers_session_type(m.professional.session_types, session_type)
        ]
    if not counsellors:
        return []
    images = await _profile_images(db, [c.id for c in counsellors])
    return [_counsellor_out(c, images.get(c.id)) for c in counsellors]


@router.get("/counsellors/{counsellor_id}", response_model=CounsellorOut)
async def get_counsellor(counsellor_id: int, db: AsyncSession = Depends(get_db)):
    counsellor = await _get_counsellor(db, counsellor_id)
    images = await _profile_images(db, [counsellor.id])
    return _counsellor_out(counsellor, images.get(counsellor.id))


@router.get("/counsellors/{counsellor_id}/bookings/date")
async def counsellor_bookings_on(
    counsellor_id: int,
    booking_date: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
):
    """Times already taken on a day, so the booking form can grey them out."""
    result = await db.execute(
        select(Booking.booking_time, Booking.status)
        .where(
            Booking.counsellor_id == counsellor_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Booking.booking_time)
    )
    return [{"time": t.strftime("%H:%M"), "status": s} for t, s in result.all()]


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


@router.post("/bookings", status_code=status.HTTP_201_CREATED)
async def create_booking(
    body: BookingCreate,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    counsellor = await _get_counsellor(db, body.counsellor_id)
    _raise_violations(await validate_booking(db, counsellor.id, body.booking_date, body.booking_time))

    booking = Booking(**body.model_dump())
    db.add(booking)
    await db.flush()
    log_activity(
        db,
        "new_booking",
        "New session booking",
        f"{booking.client_name} requested a session with {counsellor.full_name}",
        related_entity="booking",
        related_id=booking.id,
    )
    await db.commit()
    logger.info("Booking %s created for counsellor %s", booking.id, counsellor.id)

    if counsellor.email and await booking_notifications_on(db, counsellor.id):
        await send_templated_email(
            settings,
            counsellor.email,
            "booking_request",
            {
                "counsellor_name": counsellor.full_name,
                "client_name": booking.client_name,
                "booking_date": booking.booking_date.isoformat(),
                "booking_time": booking.booking_time.strftime("%H:%M"),
                "session_type": booking.session_type,
                "support_urgency": booking.support_urgency,
            },
        )

    return {"message": "Booking request submitted successfully", "booking": BookingOut.model_validate(booking)}


@router.put("/bookings/{booking_id}/status")
async def update_booking_status(
    booking_id: int,
    body: BookingStatusUpdate,
    member: Member = Depends(get_current_member),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    booking = await _own_booking(db, booking_id, member)
    if check_status_change(booking, body.status):
        raise InvalidTransition("booking", booking.status.value, body.status.value)

    booking.status = body.status
    if body.notes:
        booking.notes = f"{booking.notes}\n{body.notes}" if booking.notes else body.notes
    await db.commit()

    await _notify_client(settings, booking, member)
    return {
        "message": f"Booking {booking.id} status updated to {booking.status.value}",
        "booking": BookingOut.model_validate(booking),
    }


@router.put("/bookings/{booking_id}")
async def reschedule_booking(
    booking_id: int,
    body: BookingReschedule,
    member: Member = Depends(get_current_member),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    booking = await _own_booking(db, booking_id, member)
    if check_reschedulable(booking):
        raise InvalidTransition("booking", booking.status.value, BookingStatus.RESCHEDULED.value)
    _raise_violations(
        await validate_booking(db, member.id, body.booking_date, body.booking_time, exclude_booking_id=booking.id)
    )

    booking.booking_date = body.booking_date
    booking.booking_time = body.booking_time
    booking.status = BookingStatus.RESCHEDULED
    if body.notes:
        booking.notes = f"{booking.notes}\n{body.notes}" if booking.notes else body.notes
    await db.commit()

    await _notify_client(settings, booking, member)
    return {"message": f"Booking {booking.id} rescheduled successfully", "booking": BookingOut.model_validate(booking)}
