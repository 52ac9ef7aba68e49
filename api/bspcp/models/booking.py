"""Booking model.

A booking is an anonymous client's request for a session with a counsellor
(an approved, active member). It has its own lifecycle, independent of the
counsellor's membership flags once created.
"""

import enum
from datetime import date, time

from sqlalchemy import Date, Enum, ForeignKey, Index, String, Text, Time
from sqlalchemy.orm import Mapped, mapped_column

from bspcp.models.base import Base, TimestampMixin


class BookingStatus(enum.StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"


class Booking(TimestampMixin, Base):
    __tablename__ = "bookings"

    id: Mapped[int] = mapped_column(primary_key=True)
    counsellor_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False)

    # Client
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(30), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    category: Mapped[str | None] = mapped_column(String(255))
    needs: Mapped[str | None] = mapped_column(Text)
    session_type: Mapped[str | None] = mapped_column(String(50))
    support_urgency: Mapped[str | None] = mapped_column(String(50))

    # When
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    booking_time: Mapped[time] = mapped_column(Time, nullable=False)

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=lambda e: [x.value for x in e]),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("ix_bookings_counsellor_date", "counsellor_id", "booking_date"),)

    def __repr__(self) -> str:
        return f"<Booking {self.id} counsellor={self.counsellor_id} {self.booking_date} {self.booking_time}>"
