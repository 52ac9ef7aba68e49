"""Backup archive records."""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, Enum, String
from sqlalchemy.orm import Mapped, mapped_column

from bspcp.models.base import Base, JSONType, UTCDateTime, utcnow


class BackupStatus(enum.StrEnum):
    ACTIVE = "active"
    DELETED = "deleted"


class BackupRecord(Base):
    __tablename__ = "backup_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    filepath: Mapped[str] = mapped_column(String(500), nullable=False)
    filesize: Mapped[int] = mapped_column(BigInteger, nullable=False)
    file_count: Mapped[int] = mapped_column(default=0, nullable=False)
    backup_type: Mapped[str] = mapped_column(String(100), default="full", nullable=False)
    formats: Mapped[list] = mapped_column(JSONType, default=lambda: ["dump", "bak", "sql"], nullable=False)
    includes: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    status: Mapped[BackupStatus] = mapped_column(
        Enum(BackupStatus, name="backup_status", values_callable=lambda e: [x.value for x in e]),
        default=BackupStatus.ACTIVE,
        nullable=False,
    )
    created_by: Mapped[str] = mapped_column(String(255), default="system", nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime)

    def __repr__(self) -> str:
        return f"<BackupRecord {self.filename} ({self.status})>"
