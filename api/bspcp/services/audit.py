"""Admin audit trail and dashboard activity feed."""

import logging

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.dependencies import client_ip
from bspcp.models import Admin, AdminActivity, AdminAuditLog

logger = logging.getLogger(__name__)


def log_admin_action(
    db: AsyncSession,
    admin: Admin | None,
    action: str,
    resource_type: str,
    resource_id=None,
    *,
    request: Request | None = None,
    old_values: dict | None = None,
    new_values: dict | None = None,
    status: str = "success",
    details: str | None = None,
) -> AdminAuditLog:
    """Append one row to ``admin_audit_log`` in the caller's transaction."""
    entry = AdminAuditLog(
        admin_id=admin.id if admin else None,
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        old_values=old_values,
        new_values=new_values,
        ip_address=client_ip(request) if request else None,
        user_agent=request.headers.get("user-agent") if request else None,
        status=status,
        details=details,
    )
    db.add(entry)
    logger.info(
        "admin=%s action=%s %s:%s status=%s",
        admin.username if admin else "-",
        action,
        resource_type,
        resource_id,
        status,
    )
    return entry


def log_activity(
    db: AsyncSession,
    type: str,
    title: str,
    message: str,
    *,
    priority: str = "normal",
    related_entity: str | None = None,
    related_id: int | None = None,
    admin: Admin | None = None,
    details: dict | None = None,
) -> AdminActivity:
    activity = AdminActivity(
        type=type,
        title=title,
        message=message,
        priority=priority,
        related_entity=related_entity,
        related_id=related_id,
        admin_id=admin.id if admin else None,
        details=details,
    )
    db.add(activity)
    return activity
