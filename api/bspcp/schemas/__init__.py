"""Pydantic schemas for API serialisation.

The portal speaks camelCase JSON; models accept either camelCase or
snake_case on input and emit camelCase.
"""

import json
from datetime import date, datetime, time
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from bspcp.models import (
    AdminRole,
    ApplicationStatus,
    BookingStatus,
    ContentStatus,
    MembershipType,
    MemberStatus,
    TestimonialStatus,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _parse_list(value):
    """Accept a JSON array string, a comma separated string or a list."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return [part.strip() for part in value.split(",") if part.strip()]
        items = parsed if isinstance(parsed, list) else [parsed]
        return [str(item) for item in items if item is not None]
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


# --- Application intake ---


class ApplicationForm(CamelModel):
    """Text fields of the multipart membership application."""

    membership_type: MembershipType = MembershipType.PROFESSIONAL

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    id_number: str = Field(min_length=1, max_length=50)
    date_of_birth: date
    gender: str
    nationality: str

    # Students
    institution_name: str | None = None
    study_year: str | None = None
    counselling_coursework: str | None = None
    internship_supervisor_name: str | None = None
    internship_supervisor_contact: str | None = None
    supervised_practice_hours: str | None = None

    # Professional details
    title: str | None = None
    occupation: str | None = None
    organization_name: str | None = None
    highest_qualification: str | None = None
    other_qualifications: str | None = None
    scholarly_publications: str | None = None
    employment_status: str | None = None
    years_experience: str | None = None
    specializations: list[str] = []
    languages: list[str] = []
    session_types: list[str] = []
    bio: str | None = None
    fee_range: str | None = None
    availability: str | None = None

    # Contact
    email: EmailStr
    phone: str | None = None
    website: str | None = None
    physical_address: str | None = None
    postal_address: str | None = None
    city: str | None = None
    emergency_contact: str | None = None
    emergency_phone: str | None = None
    show_email: bool = True
    show_phone: bool = True
    show_address: bool = False

    @field_validator("*", mode="before")
    @classmethod
    def _normalise(cls, value, info):
        value = _blank_to_none(value)
        if info.field_name in ("specializations", "languages", "session_types"):
            return _parse_list(value)
        if value is None and info.field_name in ("membership_type", "show_email", "show_phone", "show_address"):
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.strip().lower()


class SubmitApplicationResponse(CamelModel):
    message: str
    member_id: int


class EmailCheck(BaseModel):
    email: EmailStr


class IdNumberCheck(CamelModel):
    id_number: str = Field(min_length=5)


class PhoneCheck(BaseModel):
    phone: str = Field(min_length=8)


class AvailabilityResponse(BaseModel):
    available: bool
    message: str


# --- Application administration ---


class CertificateOut(BaseModel):
    name: str | None
    uploaded: bool = True
    url: str | None


class ApplicationDocuments(CamelModel):
    id_document: str | None = None
    profile_image: str | None = None
    proof_of_payment: str | None = None
    certificates: list[CertificateOut] = []


class ApplicationOut(CamelModel):
    id: int
    name: str
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    nationality: str
    gender: str
    date_of_birth: date
    id_number: str
    membership_type: str
    membership_number: str | None
    application_status: str
    member_status: str
    payment_status: str
    review_comment: str | None
    created_at: datetime
    occupation: str | None = None
    organization: str | None = None
    qualification: str | None = None
    experience: str | None = None
    specializations: list[str] = []
    languages: list[str] = []
    session_types: list[str] = []
    fee_range: str | None = None
    availability: str | None = None
    physical_address: str | None = None
    postal_address: str | None = None
    institution_name: str | None = None
    study_year: str | None = None
    username: str | None = None
    documents: ApplicationDocuments


class ApplicationStatusUpdate(CamelModel):
    status: ApplicationStatus
    review_comment: str | None = None


class ApplicationStatusResponse(CamelModel):
    message: str
    application: ApplicationOut
    username_generated: bool = False


class MemberStatusUpdate(CamelModel):
    status: MemberStatus


class ApplicantEmailRequest(CamelModel):
    applicant_email: EmailStr
    applicant_name: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)


class SendEmailRequest(CamelModel):
    recipients: list[EmailStr] = Field(min_length=1)
    subject: str = Field(min_length=1)
    body: str = Field(min_length=1)


class EmailResult(CamelModel):
    message: str
    accepted: list[str]
    rejected: list[str]


# --- Member authentication ---


class MemberLoginRequest(BaseModel):
    identifier: str
    password: str


class MemberLoginResponse(CamelModel):
    message: str = "Login successful"
    token: str
    member_id: int
    username: str
    full_name: str
    account_activated: bool


class SetupPasswordRequest(BaseModel):
    token: str
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(CamelModel):
    token: str
    new_password: str


# --- Member self-service ---


class ProfessionalOut(CamelModel):
    title: str | None
    occupation: str | None
    organization_name: str | None
    highest_qualification: str | None
    other_qualifications: str | None
    scholarly_publications: str | None
    employment_status: str | None
    years_experience: str | None
    specializations: list[str]
    languages: list[str]
    session_types: list[str]
    bio: str | None
    fee_range: str | None
    availability: str | None


class ContactOut(CamelModel):
    email: str
    phone: str | None
    website: str | None
    physical_address: str | None
    postal_address: str | None
    city: str | None
    emergency_contact: str | None
    emergency_phone: str | None
    show_email: bool
    show_phone: bool
    show_address: bool


class ProfileOut(CamelModel):
    id: int
    username: str | None
    first_name: str
    last_name: str
    full_name: str
    membership_number: str | None
    membership_type: str
    application_status: str
    member_status: str
    payment_status: str
    gender: str
    nationality: str
    date_of_birth: date
    profile_image: str | None
    cpd_points: int
    professional: ProfessionalOut | None
    contact: ContactOut | None


class ProfileUpdate(CamelModel):
    first_name: str | None = Field(default=None, min_length=1, max_length=100)
    last_name: str | None = Field(default=None, min_length=1, max_length=100)
    title: str | None = None
    occupation: str | None = None
    organization_name: str | None = None
    highest_qualification: str | None = None
    other_qualifications: str | None = None
    scholarly_publications: str | None = None
    employment_status: str | None = None
    years_experience: str | None = None
    specializations: list[str] | None = None
    languages: list[str] | None = None
    session_types: list[str] | None = None
    bio: str | None = None
    fee_range: str | None = None
    availability: str | None = None


class ContactUpdate(CamelModel):
    phone: str | None = None
    website: str | None = None
    physical_address: str | None = None
    postal_address: str | None = None
    city: str | None = None
    emergency_contact: str | None = None
    emergency_phone: str | None = None
    show_email: bool | None = None
    show_phone: bool | None = None
    show_address: bool | None = None


class NotificationPreferences(CamelModel):
    booking_notifications: bool = True


class CpdOut(CamelModel):
    id: int
    title: str
    points: int
    status: str
    completion_date: date | None
    uploaded_at: datetime
    document_url: str | None = None


class CpdList(CamelModel):
    records: list[CpdOut]
    total_points: int


# --- Counsellors & bookings ---


class CounsellorOut(CamelModel):
    id: int
    name: str
    title: str | None
    occupation: str | None
    organization_name: str | None
    specializations: list[str]
    languages: list[str]
    session_types: list[str]
    bio: str | None
    fee_range: str | None
    availability: str | None
    years_experience: str | None
    city: str | None
    email: str | None = None
    phone: str | None = None
    profile_image: str | None = None


class BookingCreate(CamelModel):
    counsellor_id: int
    client_name: str = Field(min_length=1, max_length=255)
    phone_number: str = Field(min_length=1, max_length=30)
    email: EmailStr
    category: str | None = None
    needs: str | None = None
    session_type: str | None = None
    support_urgency: str | None = None
    booking_date: date
    booking_time: time


class BookingOut(CamelModel):
    id: int
    counsellor_id: int
    client_name: str
    phone_number: str
    email: str
    category: str | None
    needs: str | None
    session_type: str | None
    support_urgency: str | None
    booking_date: date
    booking_time: time
    status: BookingStatus
    notes: str | None
    created_at: datetime


class BookingStatusUpdate(CamelModel):
    status: BookingStatus
    notes: str | None = None


class BookingReschedule(CamelModel):
    booking_date: date
    booking_time: time
    notes: str | None = None


# --- Payments ---


class PaymentTokenMember(CamelModel):
    id: int
    name: str
    application_status: str
    payment_status: str


class PaymentTokenOut(CamelModel):
    is_valid: bool
    member: PaymentTokenMember
    expiry: int


class PaymentRequestResponse(CamelModel):
    message: str
    member: str
    upload_token: str
    expiry_days: int


class PaymentReview(CamelModel):
    review_comment: str | None = None


class PaymentRecordMember(CamelModel):
    id: int
    name: str
    membership_number: str | None
    email: str | None
    phone: str | None


class PaymentRecordOut(CamelModel):
    id: int
    status: str
    submitted_at: datetime | None
    reviewed_at: datetime | None
    requested_at: datetime | None
    review_comment: str | None
    proof_of_payment_url: str | None
    member: PaymentRecordMember


class Pagination(CamelModel):
    page: int
    limit: int
    total_records: int
    total_pages: int


class PaymentRecordPage(CamelModel):
    payment_records: list[PaymentRecordOut]
    pagination: Pagination


class PaymentAuditOut(CamelModel):
    id: int
    action: str
    actor_type: str
    actor_id: int | None
    old_status: str | None
    new_status: str
    notes: str | None
    ip_address: str | None
    created_at: datetime


class FeePaymentOut(CamelModel):
    id: int
    member_id: int
    member_name: str
    membership_number: str | None
    amount: Decimal
    fee_type: str
    payment_date: datetime
    verified_by: int | None


class FeePaymentList(CamelModel):
    payments: list[FeePaymentOut]
    total_amount: Decimal
    count: int


# --- Content & testimonials ---


class ContentOut(CamelModel):
    id: int
    title: str
    slug: str
    type: str
    status: str
    content: str | None
    author: str | None
    location: str | None
    event_date: date | None
    event_time: time | None
    meta_description: str | None
    tags: str | None
    featured_image_url: str | None = None
    created_at: datetime


class ContentStatusUpdate(CamelModel):
    status: ContentStatus


class ContentStats(BaseModel):
    total: int
    published: int
    draft: int


class TestimonialCreate(CamelModel):
    __test__ = False

    name: str = Field(min_length=1, max_length=255)
    email: EmailStr
    role: str | None = None
    content: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    anonymous: bool = False


class TestimonialOut(CamelModel):
    __test__ = False

    id: int
    name: str
    email: str
    role: str | None
    content: str
    rating: int
    anonymous: bool
    status: str
    created_at: datetime


class TestimonialStatusUpdate(CamelModel):
    __test__ = False

    status: TestimonialStatus


# --- Administration ---


class AdminLoginRequest(BaseModel):
    identifier: str
    password: str


class AdminOut(CamelModel):
    id: int
    username: str
    email: str
    role: AdminRole
    first_name: str | None
    last_name: str | None
    phone: str | None
    is_active: bool
    last_login: datetime | None
    created_at: datetime


class AdminLoginResponse(CamelModel):
    message: str = "Login successful"
    token: str
    admin: AdminOut


class AdminCreate(CamelModel):
    username: str = Field(min_length=3, max_length=255)
    email: EmailStr
    password: str
    role: AdminRole = AdminRole.ADMIN
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None


class AdminRoleUpdate(CamelModel):
    role: AdminRole


class AdminStatusUpdate(CamelModel):
    is_active: bool


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str


class AdminForgotPasswordRequest(BaseModel):
    email: EmailStr


class DashboardStats(CamelModel):
    total_members: int
    active_members: int
    pending_applications: int
    active_news: int
    upcoming_events: int
    pending_payments: int


class ActivityOut(CamelModel):
    id: int
    type: str
    title: str
    message: str
    priority: str
    related_entity: str | None
    related_id: int | None
    is_read: bool
    created_at: datetime


class RecipientCreate(CamelModel):
    email: EmailStr
    name: str | None = None


class RecipientOut(CamelModel):
    id: int
    email: str
    name: str | None
    is_active: bool
    created_at: datetime


class RecipientStatusUpdate(CamelModel):
    is_active: bool


class NotificationSettingsUpdate(CamelModel):
    notifications_enabled: bool


class RecipientList(CamelModel):
    recipients: list[RecipientOut]
    notifications_enabled: bool


# --- Backups ---


class BackupOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    filesize: int
    file_count: int
    backup_type: str
    formats: list[str]
    includes: list[str]
    status: str
    created_by: str
    created_at: datetime
    deleted_at: datetime | None
    download_url: str | None = None
