"""Backup archives: create on demand, list, download, soft-delete and restore."""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.config import Settings
from bspcp.core.database import get_db
from bspcp.core.dependencies import get_current_admin, get_settings
from bspcp.core.errors import Conflict, NotFound, OperationFailed
from bspcp.models import Admin, BackupRecord, BackupStatus
from bspcp.models.base import utcnow
from bspcp.schemas import BackupOut
from bspcp.services.audit import log_admin_action
from bspcp.services.backup import BackupError, backup_stats, create_backup

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backup", tags=["backups"])
listing = APIRouter(prefix="/backups", tags=["backups"])


def _backup_out(record: BackupRecord) -> BackupOut:
    out = BackupOut.model_validate(record)
    if record.status == BackupStatus.ACTIVE:
        out.download_url = f"/backup/{record.filename}"
    return out


async def _get_backup(db: AsyncSession, backup_id: int) -> BackupRecord:
    record = await db.get(BackupRecord, backup_id)
    if record is None:
        raise NotFound("Backup not found")
    return record


@router.post("", status_code=status.HTTP_201_CREATED)
async def trigger_backup(
    request: Request,
    admin: Admin = Depends(get_current_admin),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_db),
):
    try:
        record = await create_backup(settings, db, created_by=admin.username)
    except BackupError as exc:
        logger.error("Backup requested by %s failed: %s", admin.username, exc)
        raise OperationFailed("Backup failed", str(exc)) from exc

    log_admin_action(
        db, admin, "backup_create", "backup", record.id, request=request, new_values={"filename": record.filename}
    )
    return {"success": True, "message": "Backup created successfully", "backup": _backup_out(record)}


@listing.get("", response_model=list[BackupOut])
async def list_backups(
    status_filter: BackupStatus | None = Query(None, alias="status"),
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(BackupRecord).order_by(BackupRecord.created_at.desc(), BackupRecord.id.desc())
    if status_filter:
        query = query.where(BackupRecord.status == status_filter)
    result = await db.execute(query)
    return [_backup_out(r) for r in result.scalars()]


@listing.get("/stats")
async def get_backup_stats(admin: Admin = Depends(get_current_admin), db: AsyncSession = Depends(get_db)):
    return await backup_stats(db)


@listing.get("/{backup_id}/download")
async def download_backup(
    backup_id: int,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    record = await _get_backup(db, backup_id)
    path = Path(record.filepath)
    if record.status != BackupStatus.ACTIVE or not path.is_file():
        raise NotFound("Backup file not found")
    return FileResponse(path, media_type="application/zip", filename=record.filename)


@listing.put("/{backup_id}/delete", response_model=BackupOut)
async def delete_backup(
    backup_id: int,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    record = await _get_backup(db, backup_id)
    if record.status == BackupStatus.DELETED:
        raise Conflict("Backup is already deleted")
    record.status = BackupStatus.DELETED
    record.deleted_at = utcnow()
    log_admin_action(db, admin, "backup_delete", "backup", record.id, request=request)
    await db.flush()
    return _backup_out(record)


@listing.put("/{backup_id}/restore", response_model=BackupOut)
async def restore_backup(
    backup_id: int,
    request: Request,
    admin: Admin = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    record = await _get_backup(db, backup_id)
    if record.status == BackupStatus.ACTIVE:
        raise Conflict("Backup is not deleted")
    if not Path(record.filepath).is_file():
        # Pruned archives cannot come back.
        raise NotFound("Backup file no longer exists on disk")
    record.status = BackupStatus.ACTIVE
    record.deleted_at = None
    log_admin_action(db, admin, "backup_restore", "backup", record.id, request=request)
    await db.flush()
    return _backup_out(record)
