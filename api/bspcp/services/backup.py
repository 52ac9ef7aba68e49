"""Full backups: pg_dump in three formats plus a tarball of uploads, zipped with a manifest.

Archive layout (``backup_<timestamp>.zip``)::

    database/BSPCP_backup.dump   pg_dump -Fc
    database/BSPCP_backup.bak    pg_dump plain SQL
    database/BSPCP_backup.sql    pg_dump plain SQL
    uploads.tar.gz               tar -czf of the uploads directory
    backup_manifest.json

Only the newest ``backup_retention`` archives are kept on disk.
"""

import asyncio
import json
import logging
import os
import shutil
import zipfile
from datetime import datetime
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bspcp.core.config import Settings
from bspcp.models import BackupRecord, BackupStatus
from bspcp.models.base import utcnow

logger = logging.getLogger(__name__)

DUMP_NAME = "BSPCP_backup.dump"
BAK_NAME = "BSPCP_backup.bak"
SQL_NAME = "BSPCP_backup.sql"
UPLOADS_TARBALL = "uploads.tar.gz"
MANIFEST_NAME = "backup_manifest.json"
INCLUDES = [DUMP_NAME, BAK_NAME, SQL_NAME, UPLOADS_TARBALL, MANIFEST_NAME]
FORMATS = ["dump", "bak", "sql"]


class BackupError(RuntimeError):
    pass


def backup_timestamp(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"{now:%Y-%m-%d_%H-%M-%S}-{now.microsecond // 1000:03d}Z"


async def run_command(argv: list[str], env: dict | None = None) -> None:
    """Run an external tool, raising BackupError with its stderr on failure."""
    logger.debug("Running %s", argv[0])
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        env={**os.environ, **(env or {})},
    )
    _, stderr = await process.communicate()
    if process.returncode != 0:
        raise BackupError(f"{argv[0]} exited with {process.returncode}: {stderr.decode(errors='replace').strip()}")


def _pg_dump_argv(settings: Settings, output: Path, custom_format: bool) -> list[str]:
    argv = ["pg_dump", "--no-privileges", "--no-owner", "-h", settings.pg_host, "-U", settings.pg_user]
    argv += ["-d", settings.pg_database, "-f", str(output)]
    if custom_format:
        argv.insert(1, "-Fc")
    return argv


def build_manifest(settings: Settings, timestamp: str, created_by: str) -> dict:
    db = f"-h {settings.pg_host} -U {settings.pg_user} -d {settings.pg_database}"
    return {
        "backupInfo": {
            "timestamp": timestamp,
            "type": "dual_backup",
            "pg_dump": "dual_database_formats",
            "tarFile": "user_uploads",
            "createdBy": created_by,
            "version": "1.0",
        },
        "files": [
            {
                "type": "dump_file",
                "name": DUMP_NAME,
                "description": "PostgreSQL custom format backup (.dump)",
                "restoreCommand": f"pg_restore {db} database/{DUMP_NAME}",
            },
            {
                "type": "bak_file",
                "name": BAK_NAME,
                "description": "PostgreSQL SQL dump (.bak)",
                "restoreCommand": f"psql {db} < database/{BAK_NAME}",
            },
            {
                "type": "sql_file",
                "name": SQL_NAME,
                "description": "PostgreSQL SQL dump (.sql)",
                "restoreCommand": f"psql {db} < database/{SQL_NAME}",
            },
            {
                "type": "user_files",
                "name": UPLOADS_TARBALL,
                "description": "User uploads compressed archive",
                "restoreCommand": f"tar -xzf {UPLOADS_TARBALL} -C {settings.upload_dir}",
            },
        ],
    }


async def run_shell_backup(settings: Settings, target_dir: Path, created_by: str = "system") -> dict:
    """Populate ``target_dir`` with dumps, the uploads tarball and the manifest; return the manifest."""
    database_dir = target_dir / "database"
    database_dir.mkdir(parents=True, exist_ok=True)
    env = {"PGPASSWORD": settings.pg_password} if settings.pg_password else None

    await run_command(_pg_dump_argv(settings, database_dir / DUMP_NAME, custom_format=True), env)
    await run_command(_pg_dump_argv(settings, database_dir / BAK_NAME, custom_format=False), env)
    await run_command(_pg_dump_argv(settings, database_dir / SQL_NAME, custom_format=False), env)

    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    await run_command(["tar", "-czf", str(target_dir / UPLOADS_TARBALL), "-C", str(settings.upload_dir), "."])

    manifest = build_manifest(settings, utcnow().isoformat(), created_by)
    (target_dir / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2))
    return manifest


def zip_directory(source: Path, destination: Path) -> int:
    """Zip the contents of ``source`` (paths relative to it); return the file count."""
    count = 0
    with zipfile.ZipFile(destination, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as archive:
        for path in sorted(source.rglob("*")):
            if path.is_file():
                archive.write(path, path.relative_to(source).as_posix())
                count += 1
    return count


def prune_archives(backup_dir: Path, keep: int) -> list[str]:
    """Delete all but the newest ``keep`` ``backup_*.zip`` files; return the removed names."""
    archives = sorted(
        backup_dir.glob("backup_*.zip"),
        key=lambda p: (p.stat().st_mtime, p.name),
        reverse=True,
    )
    removed = []
    for path in archives[keep:]:
        try:
            path.unlink()
            removed.append(path.name)
            logger.info("Pruned old backup %s", path.name)
        except OSError as exc:
            logger.warning("Could not prune backup %s: %s", path.name, exc)
    return removed


async def create_backup(settings: Settings, db: AsyncSession, created_by: str = "system") -> BackupRecord:
    settings.backup_dir.mkdir(parents=True, exist_ok=True)
    timestamp = backup_timestamp()
    filename = f"backup_{timestamp}.zip"
    archive_path = settings.backup_dir / filename
    staging = settings.backup_dir / f"backup_temp_{timestamp}"

    try:
        await run_shell_backup(settings, staging, created_by)
        file_count = zip_directory(staging, archive_path)
    except BackupError:
        archive_path.unlink(missing_ok=True)
        raise
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    removed = prune_archives(settings.backup_dir, settings.backup_retention)
    if removed:
        result = await db.execute(select(BackupRecord).where(BackupRecord.filename.in_(removed)))
        for stale in result.scalars():
            stale.status = BackupStatus.DELETED
            stale.deleted_at = utcnow()

    record = BackupRecord(
        filename=filename,
        filepath=str(archive_path),
        filesize=archive_path.stat().st_size,
        file_count=file_count,
        backup_type="comprehensive",
        formats=list(FORMATS),
        includes=list(INCLUDES),
        created_by=created_by,
    )
    db.add(record)
    await db.flush()
    logger.info("Backup %s created (%d bytes, %d files)", filename, record.filesize, file_count)
    return record


def format_file_size(size: float) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    return f"{size:.2f} {units[index]}"


async def backup_stats(db: AsyncSession) -> dict:
    total = await db.scalar(select(func.count(BackupRecord.id)))
    active = await db.scalar(select(func.count(BackupRecord.id)).where(BackupRecord.status == BackupStatus.ACTIVE))
    deleted = await db.scalar(select(func.count(BackupRecord.id)).where(BackupRecord.status == BackupStatus.DELETED))
    size = await db.scalar(
        select(func.coalesce(func.sum(BackupRecord.filesize), 0)).where(BackupRecord.status == BackupStatus.ACTIVE)
    )
    return {
        "total_backups": total or 0,
        "active_backups": active or 0,
        "deleted_backups": deleted or 0,
        "total_size_bytes": int(size or 0),
        "total_size_formatted": format_file_size(int(size or 0)),
    }
