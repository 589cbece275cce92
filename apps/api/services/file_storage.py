"""Local disk storage for original and processed ECU files.

The rest of the service only ever sees the opaque reference returned by
``save``; bytes never touch the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import logging
import os
import uuid

from config import settings
from services.errors import InvalidUpload, NotFound, StorageFailure

logger = logging.getLogger(__name__)


@dataclass
class UploadedFile:
    filename: str
    data: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)


def sanitize_filename(filename: str) -> str:
    base = os.path.basename(filename or "upload.bin")
    safe = "".join(ch if ch.isalnum() or ch in ("-", "_", ".") else "_" for ch in base)
    return safe or "upload.bin"


def validate_upload(upload: UploadedFile) -> str:
    """Return the sanitized filename, or raise InvalidUpload."""
    filename = sanitize_filename(upload.filename)
    allowed = {ext.lower() for ext in settings.ALLOWED_UPLOAD_EXTENSIONS}
    if Path(filename).suffix.lower() not in allowed:
        raise InvalidUpload(
            f"Unsupported file type. Allowed extensions: {', '.join(sorted(allowed))}.",
            filename=filename,
        )
    if upload.size == 0:
        raise InvalidUpload("Uploaded file is empty.", filename=filename)
    if upload.size > settings.MAX_UPLOAD_BYTES:
        raise InvalidUpload(
            f"File too large. Max upload size is {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB.",
            filename=filename,
        )
    return filename


class LocalFileStorage:
    """Stores files under ``root/<user_id>/<uuid>.bin``."""

    def __init__(self, root: Optional[str] = None) -> None:
        self.root = Path(root or settings.UPLOAD_DIR)

    def _resolve(self, reference: str) -> Path:
        path = (self.root / reference).resolve()
        if self.root.resolve() not in path.parents:
            raise NotFound("File not found.")
        return path

    def save(self, user_id: str, data: bytes, prefix: str = "") -> str:
        reference = f"{sanitize_filename(user_id)}/{prefix}{uuid.uuid4()}.bin"
        destination = self.root / reference
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            with destination.open("wb") as out:
                out.write(data)
        except OSError as exc:
            logger.error("Could not store file for user %s: %s", user_id, exc)
            raise StorageFailure("The uploaded file could not be stored.") from exc
        return reference

    def read(self, reference: str) -> bytes:
        path = self._resolve(reference)
        if not path.is_file():
            raise NotFound("File not found.")
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageFailure("The stored file could not be read.") from exc

    def delete(self, reference: str) -> None:
        """Best-effort removal, used to clean up after a rolled-back submission."""
        try:
            self._resolve(reference).unlink(missing_ok=True)
        except (OSError, NotFound) as exc:
            logger.warning("Could not remove stored file %s: %s", reference, exc)


def get_file_storage() -> LocalFileStorage:
    return LocalFileStorage()
