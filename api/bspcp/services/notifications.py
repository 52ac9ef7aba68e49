"""Notification switches: the global admin-alert toggle, its recipients and counsellor booking preferences."""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.models import CounsellorNotificationPreference, NotificationRecipient, NotificationSetting
from bspcp.models.notification import NOTIFICATIONS_ENABLED


async def notifications_enabled(db: AsyncSession) -> bool:
    result = await db.execute(
        select(NotificationSetting.setting_value).where(NotificationSetting.setting_name == NOTIFICATIONS_ENABLED)
    )
    value = result.scalar_one_or_none()
    return True if value is None else value


async def set_notifications_enabled(db: AsyncSession, enabled: bool) -> NotificationSetting:
    result = await db.execute(
        select(NotificationSetting).where(NotificationSetting.setting_name == NOTIFICATIONS_ENABLED)
    )
    setting = result.scalar_one_or_none()
    if setting is None:
        setting = NotificationSetting(setting_name=NOTIFICATIONS_ENABLED, setting_value=enabled)
        db.add(setting)
    else:
        setting.setting_value = enabled
    await db.flush()
    return setting


async def active_recipient_emails(db: AsyncSession) -> list[str]:
    """Addresses to alert about new applications; empty when alerts are switched off."""
    if not await notifications_enabled(db):
        return []
    result = await db.execute(
        select(NotificationRecipient.email)
        .where(NotificationRecipient.is_active.is_(True))
        .order_by(NotificationRecipient.email)
    )
    return list(result.scalars())


async def get_booking_preference(db: AsyncSession, member_id: int) -> CounsellorNotificationPreference | None:
    result = await db.execute(
        select(CounsellorNotificationPreference).where(CounsellorNotificationPreference.member_id == member_id)
    )
    return result.scalar_one_or_none()


async def booking_notifications_on(db: AsyncSession, member_id: int) -> bool:
    preference = await get_booking_preference(db, member_id)
    return True if preference is None else preference.booking_notifications
