"""All models imported here so ``Base.metadata`` knows every table."""

from bspcp.models.admin import AdminActivity, Admin, AdminAuditLog, AdminRole, AdminSession
from bspcp.models.backup import BackupRecord, BackupStatus
from bspcp.models.base import AppendOnlyViolation, Base
from bspcp.models.booking import Booking, BookingStatus
from bspcp.models.content import Content, ContentStatus, ContentType, Testimonial, TestimonialStatus
from bspcp.models.documents import Certificate, CpdRecord, PersonalDocuments
from bspcp.models.member import (
    ApplicationStatus,
    ContactDetails,
    Credential,
    Member,
    MembershipType,
    MemberStatus,
    PaymentStatus,
    ProfessionalDetails,
)
from bspcp.models.notification import CounsellorNotificationPreference, NotificationRecipient, NotificationSetting
from bspcp.models.payment import ConsumedActionToken, MemberPayment, PaymentAuditLog, PaymentUploadLog

__all__ = [
    "Base",
    "AppendOnlyViolation",
    "Member",
    "ProfessionalDetails",
    "ContactDetails",
    "Credential",
    "MembershipType",
    "ApplicationStatus",
    "MemberStatus",
    "PaymentStatus",
    "PersonalDocuments",
    "Certificate",
    "CpdRecord",
    "MemberPayment",
    "PaymentUploadLog",
    "PaymentAuditLog",
    "ConsumedActionToken",
    "Booking",
    "BookingStatus",
    "Content",
    "ContentType",
    "ContentStatus",
    "Testimonial",
    "TestimonialStatus",
    "Admin",
    "AdminRole",
    "AdminSession",
    "AdminAuditLog",
    "AdminActivity",
    "NotificationRecipient",
    "NotificationSetting",
    "CounsellorNotificationPreference",
    "BackupRecord",
    "BackupStatus",
]
