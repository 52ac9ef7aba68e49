"""Local-disk storage for uploaded documents, certificates, payment proofs and CPD evidence."""

import logging
import time
from dataclasses import dataclass
from pathlib import Path

import aiofiles
from fastapi import UploadFile

from bspcp.core.config import Settings
from bspcp.core.errors import OperationFailed, ValidationFailed

logger = logging.getLogger(__name__)

PDF_MIME = "application/pdf"

# Same-millisecond uploads bump the timestamp instead of overwriting.
MAX_NAME_ATTEMPTS = 1000


@dataclass
class StoredFile:
    path: Path
    original_filename: str
    size: int
    mime_type: str

    @property
    def filename(self) -> str:
        return self.path.name


def is_allowed_mime(mime_type: str | None) -> bool:
    if not mime_type:
        return False
    return mime_type.startswith("image/") or mime_type == PDF_MIME


def stored_name(original_filename: str | None, now_ms: int | None = None) -> str:
    """``{epochMillis}-{originalName}`` with any directory components stripped."""
    base = Path(original_filename or "").name or "upload"
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{now_ms}-{base}"


async def save_upload(settings: Settings, upload: UploadFile, field: str = "file") -> StoredFile:
    """Validate and write one multipart file under ``settings.upload_dir``."""
    if not is_allowed_mime(upload.content_type):
        raise ValidationFailed(
            "Invalid file type",
            f"{field}: only images and PDF files are allowed",
        )

    data = await upload.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise ValidationFailed(
            "File too large",
            f"{field}: maximum size is {settings.max_upload_bytes // (1024 * 1024)}MB",
        )

    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    path = await _write_new_file(settings.upload_dir, upload.filename, data)
    logger.info("Stored upload %s (%d bytes, %s)", path.name, len(data), upload.content_type)

    return StoredFile(
        path=path,
        original_filename=upload.filename or path.name,
        size=len(data),
        mime_type=upload.content_type,
    )


async def _write_new_file(directory: Path, original_filename: str | None, data: bytes) -> Path:
    """Create the file exclusively, moving the timestamp on when the name is taken."""
    now_ms = int(time.time() * 1000)
    for offset in range(MAX_NAME_ATTEMPTS):
        path = directory / stored_name(original_filename, now_ms + offset)
        try:
            async with aiofiles.open(path, "xb") as f:
                await f.write(data)
        except FileExistsError:
            continue
        return path
    raise OperationFailed("Failed to store upload", f"No free file name for {original_filename!r}")


def public_url(stored_path: str | Path | None) -> str | None:
    """Map a stored path onto the static ``/uploads`` mount."""
    if not stored_path:
        return None
    return f"/uploads/{Path(stored_path).name}"


def delete_files(paths) -> int:
    """Best-effort removal; returns how many files were actually deleted."""
    deleted = 0
    for raw in paths:
        if not raw:
            continue
        try:
            Path(raw).unlink()
            deleted += 1
        except FileNotFoundError:
            logger.debug("File already gone: %s", raw)
        except OSError as exc:
            logger.warning("Could not delete %s: %s", raw, exc)
    return deleted
