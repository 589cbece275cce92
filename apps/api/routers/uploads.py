"""Multipart upload reading shared by the tuning and admin routers."""

from fastapi import UploadFile

from config import settings
from services.file_storage import UploadedFile

CHUNK_SIZE = 1024 * 1024


async def read_upload(file: UploadFile) -> UploadedFile:
    """Buffer an upload, stopping one byte past the limit so validation can reject it."""
    limit = settings.MAX_UPLOAD_BYTES + 1
    chunks = []
    total = 0
    try:
        while total < limit:
            chunk = await file.read(min(CHUNK_SIZE, limit - total))
            if not chunk:
                break
            chunks.append(chunk)
            total += len(chunk)
    finally:
        await file.close()
    return UploadedFile(
        filename=file.filename or "upload.bin",
        data=b"".join(chunks),
        content_type=file.content_type,
    )
