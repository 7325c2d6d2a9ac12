"""File storage collaborator.

Persists uploaded files and hands back ``(name, url, mime_type)`` triples,
which the job service stores verbatim as deliverables. The local backend
writes under ``settings.upload_dir/<folder>/``; files are never inspected.
"""

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Protocol

from fastapi import UploadFile
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.errors import ValidationFailedError

logger = logging.getLogger(__name__)

CONTRIBUTOR_FOLDER = "contributor"
WATERMARKED_FOLDER = "watermarked"
FINAL_FOLDER = "final"


@dataclass(frozen=True)
class StoredFile:
    name: str
    url: str
    mime_type: str


class FileStorage(Protocol):
    async def save(self, uploads: Sequence[UploadFile], folder: str) -> list[StoredFile]: ...


def validate_uploads(uploads: Sequence[UploadFile]) -> None:
    """Reject empty, oversized-batch or disallowed-type uploads before anything is written."""
    if not uploads:
        raise ValidationFailedError("No files uploaded")
    if len(uploads) > settings.max_upload_files:
        raise ValidationFailedError(f"Too many files (max {settings.max_upload_files})")
    for upload in uploads:
        if upload.content_type not in settings.allowed_upload_types:
            raise ValidationFailedError(
                f"File type not allowed: {upload.content_type or 'unknown'}"
            )


class LocalFileStorage:
    """Writes files to local disk. Development and single-node deployments."""

    def __init__(self, root: str | Path, base_url: str) -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    async def save(self, uploads: Sequence[UploadFile], folder: str) -> list[StoredFile]:
        validate_uploads(uploads)

        contents: list[bytes] = []
        for upload in uploads:
            data = await upload.read()
            if len(data) > settings.max_upload_file_bytes:
                limit_mb = settings.max_upload_file_bytes // (1024 * 1024)
                raise ValidationFailedError(
                    f"File is too large: {upload.filename}. Maximum file size is {limit_mb}MB."
                )
            contents.append(data)

        target_dir = self.root / folder
        await run_in_threadpool(target_dir.mkdir, parents=True, exist_ok=True)

        written: list[Path] = []
        stored: list[StoredFile] = []
        try:
            for upload, data in zip(uploads, contents):
                original = PurePath(upload.filename or "file").name
                stored_name = f"{uuid.uuid4().hex}{PurePath(original).suffix}"
                path = target_dir / stored_name
                await run_in_threadpool(path.write_bytes, data)
                written.append(path)
                stored.append(StoredFile(
                    name=original,
                    url=f"{self.base_url}/{folder}/{stored_name}",
                    mime_type=upload.content_type or "application/octet-stream",
                ))
        except OSError:
            logger.exception("Failed to store upload batch in %s; removing partial files", target_dir)
            for path in written:
                path.unlink(missing_ok=True)
            raise

        logger.info("Stored %d file(s) in %s", len(stored), target_dir)
        return stored


def get_file_storage() -> FileStorage:
    return LocalFileStorage(settings.upload_dir, settings.file_base_url)
