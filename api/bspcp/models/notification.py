"""Who gets notified, and whether notifications are on at all."""

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from bspcp.models.base import Base, TimestampMixin

NOTIFICATIONS_ENABLED = "notifications_enabled"


class NotificationRecipient(TimestampMixin, Base):
    """Admin mailbox that receives new-application alerts."""

    __tablename__ = "notification_recipients"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(254), unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class NotificationSetting(TimestampMixin, Base):
    __tablename__ = "notification_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    setting_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    setting_value: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class CounsellorNotificationPreference(TimestampMixin, Base):
    __tablename__ = "counsellor_notification_preferences"

    id: Mapped[int] = mapped_column(primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), unique=True, nullable=False)
    booking_notifications: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
