"""Booking rules enforcement.

All booking validation logic lives here, separate from the route handlers.
Each rule returns a BookingViolation or None if the rule passes.
validate_booking() runs the rules for a new or moved slot and collects violations.
"""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.config import settings
from bspcp.models import Booking, BookingStatus

LOCAL_TZ = ZoneInfo(settings.timezone)

IN_PERSON = "in-person"
ONLINE = "online"
BOTH = "both"

# Which statuses a counsellor may move a booking to. Rescheduling has its own endpoint.
STATUS_CHANGES: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.CANCELLED}),
    BookingStatus.RESCHEDULED: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
}

# Statuses that hold a slot.
ACTIVE_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.RESCHEDULED)


class BookingViolation(Exception):
    """Raised when a booking rule is violated."""

    def __init__(self, rule: str, message: str):
        self.rule = rule
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"rule": self.rule, "message": self.message}


def offers_session_type(session_types: list[str] | None, requested: str) -> bool:
    """Does a counsellor's list of session types cover ``requested``?

    ``both`` on either side stands for in-person and online together.
    """
    offered = {s.strip().lower() for s in session_types or []}
    if BOTH in offered:
        offered |= {IN_PERSON, ONLINE}
    requested = requested.strip().lower()
    if requested == BOTH:
        return {IN_PERSON, ONLINE} <= offered
    return requested in offered


async def validate_booking(
    db: AsyncSession,
    counsellor_id: int,
    booking_date: date,
    booking_time: time,
    exclude_booking_id: int | None = None,
) -> list[BookingViolation]:
    """Run all slot rules and return a list of violations (empty = valid)."""
    violations: list[BookingViolation] = []

    v = check_not_in_past(booking_date, booking_time)
    if v:
        violations.append(v)

    v = await check_slot_conflict(db, counsellor_id, booking_date, booking_time, exclude_booking_id)
    if v:
        violations.append(v)

    return violations


def local_today() -> date:
    return datetime.now(LOCAL_TZ).date()


def check_not_in_past(
    booking_date: date, booking_time: time, now: datetime | None = None
) -> BookingViolation | None:
    """Cannot book a session that has already started. Slots are local wall-clock times."""
    slot_start = datetime.combine(booking_date, booking_time, tzinfo=LOCAL_TZ)
    if slot_start <= (now or datetime.now(LOCAL_TZ)):
        return BookingViolation("past_booking", "Cannot book a session in the past.")
    return None


async def check_slot_conflict(
    db: AsyncSession,
    counsellor_id: int,
    booking_date: date,
    booking_time: time,
    exclude_booking_id: int | None = None,
) -> BookingViolation | None:
    """A counsellor cannot hold two live bookings at the same date and time."""
    query = select(Booking.id).where(
        Booking.counsellor_id == counsellor_id,
        Booking.booking_date == booking_date,
        Booking.booking_time == booking_time,
        Booking.status.in_(ACTIVE_STATUSES),
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    if (await db.execute(query)).first():
        return BookingViolation(
            "slot_conflict",
            f"The counsellor is already booked on {booking_date} at {booking_time.strftime('%H:%M')}.",
        )
    return None


def check_status_change(booking: Booking, target: BookingStatus) -> BookingViolation | None:
    if target not in STATUS_CHANGES[BookingStatus(booking.status)]:
        return BookingViolation(
            "status_change",
            f"A {booking.status.value} booking cannot be marked {target.value}.",
        )
    return None


def check_reschedulable(booking: Booking) -> BookingViolation | None:
    if booking.status == BookingStatus.CANCELLED:
        return BookingViolation("status_change", "A cancelled booking cannot be rescheduled.")
    return None
