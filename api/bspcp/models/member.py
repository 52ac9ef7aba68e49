"""Member and membership models.

Member = one applicant/counsellor; carries the three lifecycle flags.
ProfessionalDetails / ContactDetails = 1:1 satellites filled at application time.
Credential = the member's login, created at approval with no password.
"""

import enum
from datetime import date, datetime

from sqlalchemy import Boolean, Date, Enum, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bspcp.models.base import Base, JSONType, TimestampMixin, UTCDateTime


class MembershipType(enum.StrEnum):
    PROFESSIONAL = "professional"
    STUDENT = "student"


class ApplicationStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class MemberStatus(enum.StrEnum):
    PENDING = "pending"
    PENDING_PASSWORD_SETUP = "pending_password_setup"
    ACTIVE = "active"
    INACTIVE = "inactive"


class PaymentStatus(enum.StrEnum):
    NOT_REQUESTED = "not_requested"
    REQUESTED = "requested"
    UPLOADED = "uploaded"
    VERIFIED = "verified"
    REJECTED = "rejected"


def _enum(enum_cls, name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda e: [x.value for x in e])


class Member(TimestampMixin, Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(primary_key=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    id_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[str] = mapped_column(String(20), nullable=False)
    nationality: Mapped[str] = mapped_column(String(100), nullable=False)

    membership_type: Mapped[MembershipType] = mapped_column(
        _enum(MembershipType, "membership_type"), default=MembershipType.PROFESSIONAL, nullable=False
    )
    membership_number: Mapped[str | None] = mapped_column(String(50), unique=True)

    # Lifecycle
    application_status: Mapped[ApplicationStatus] = mapped_column(
        _enum(ApplicationStatus, "application_status"), default=ApplicationStatus.PENDING, nullable=False
    )
    member_status: Mapped[MemberStatus] = mapped_column(
        _enum(MemberStatus, "member_status"), default=MemberStatus.PENDING, nullable=False
    )
    review_comment: Mapped[str | None] = mapped_column(Text)
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    # Student applicants
    institution_name: Mapped[str | None] = mapped_column(String(255))
    study_year: Mapped[str | None] = mapped_column(String(50))
    counselling_coursework: Mapped[str | None] = mapped_column(Text)
    internship_supervisor_name: Mapped[str | None] = mapped_column(String(255))
    internship_supervisor_contact: Mapped[str | None] = mapped_column(String(255))
    supervised_practice_hours: Mapped[str | None] = mapped_column(String(50))

    # Payment-proof workflow
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus, "payment_status"), default=PaymentStatus.NOT_REQUESTED, nullable=False
    )
    payment_requested_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    payment_uploaded_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    payment_verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    payment_rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    payment_proof_path: Mapped[str | None] = mapped_column(String(500))
    payment_review_comment: Mapped[str | None] = mapped_column(Text)

    # Relationships (child rows are removed by the database's ON DELETE CASCADE)
    professional: Mapped["ProfessionalDetails"] = relationship(
        back_populates="member", lazy="selectin", cascade="all, delete-orphan", passive_deletes=True
    )
    contact: Mapped["ContactDetails"] = relationship(
        back_populates="member", lazy="selectin", cascade="all, delete-orphan", passive_deletes=True
    )
    credential: Mapped["Credential"] = relationship(
        back_populates="member", lazy="selectin", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_members_application_status", "application_status"),
        Index("ix_members_payment_status", "payment_status"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def email(self) -> str | None:
        return self.contact.email if self.contact else None

    def __repr__(self) -> str:
        return f"<Member {self.id} {self.full_name} ({self.application_status}/{self.member_status})>"


class ProfessionalDetails(Base):
    __tablename__ = "member_professional_details"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), unique=True, nullable=False)
    title: Mapped[str | None] = mapped_column(String(255))
    occupation: Mapped[str | None] = mapped_column(String(255))
    organization_name: Mapped[str | None] = mapped_column(String(255))
    highest_qualification: Mapped[str | None] = mapped_column(Text)
    other_qualifications: Mapped[str | None] = mapped_column(Text)
    scholarly_publications: Mapped[str | None] = mapped_column(Text)
    employment_status: Mapped[str | None] = mapped_column(String(50))
    years_experience: Mapped[str | None] = mapped_column(String(50))
    specializations: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    languages: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    session_types: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    bio: Mapped[str | None] = mapped_column(Text)
    fee_range: Mapped[str | None] = mapped_column(String(100))
    availability: Mapped[str | None] = mapped_column(String(100))

    member: Mapped["Member"] = relationship(back_populates="professional")


class ContactDetails(Base):
    __tablename__ = "member_contact_details"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(30))
    website: Mapped[str | None] = mapped_column(String(255))
    physical_address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(String(100))
    postal_address: Mapped[str | None] = mapped_column(Text)
    emergency_contact: Mapped[str | None] = mapped_column(String(255))
    emergency_phone: Mapped[str | None] = mapped_column(String(30))
    show_email: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    show_phone: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    show_address: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    member: Mapped["Member"] = relationship(back_populates="contact")


class Credential(TimestampMixin, Base):
    """Member login. Exactly one per member; password columns stay NULL until setup."""

    __tablename__ = "member_authentication"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(255))
    # bcrypt embeds its salt in the hash; the column records it separately for the legacy schema.
    salt: Mapped[str | None] = mapped_column(String(255))
    last_login: Mapped[datetime | None] = mapped_column(UTCDateTime)

    member: Mapped["Member"] = relationship(back_populates="credential")

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def __repr__(self) -> str:
        return f"<Credential {self.username} member={self.member_id}>"
