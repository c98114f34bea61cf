from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

import aiofiles
from fastapi import HTTPException, UploadFile, status

_CHUNK_SIZE = 1024 * 1024
_SAFE_FILENAME_PATTERN = re.compile(r"[^A-Za-z0-9._-]")


@dataclass(slots=True)
class StoredFile:
    relative_path: str
    file_name: str
    original_file_name: str
    content_type: str | None
    size: int


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe version of *filename* without directory parts."""

    name = Path(filename or "").name
    if not name:
        return "upload"
    cleaned = _SAFE_FILENAME_PATTERN.sub("_", name).lstrip(".") or "upload"
    return cleaned[:255]


async def store_direct_message_attachment(
    *,
    direct_message_id: int,
    upload: UploadFile,
    uploads_root: Path,
    max_size: int,
) -> StoredFile:
    """Write an uploaded attachment below ``uploads_root/direct-messages/<id>``."""

    directory = uploads_root / "direct-messages" / str(direct_message_id)
    directory.mkdir(parents=True, exist_ok=True)

    original_name = sanitize_filename(upload.filename or "upload")
    stored_name = f"{uuid4().hex}{Path(original_name).suffix.lower()}"
    destination = directory / stored_name

    total_size = 0
    try:
        async with aiofiles.open(destination, "wb") as buffer:
            while True:
                chunk = await upload.read(_CHUNK_SIZE)
                if not chunk:
                    break
                total_size += len(chunk)
                if total_size > max_size:
                    raise HTTPException(
                        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                        detail=f"Attachment exceeds the {max_size // (1024 * 1024)} MB limit",
                    )
                await buffer.write(chunk)
    except Exception:
        destination.unlink(missing_ok=True)
        raise
    finally:
        await upload.close()

    relative_path = destination.relative_to(uploads_root).as_posix()
    return StoredFile(
        relative_path=relative_path,
        file_name=stored_name,
        original_file_name=original_name,
        content_type=upload.content_type,
        size=total_size,
    )


def delete_stored_file(relative_path: str | None, uploads_root: Path) -> None:
    """Remove a stored attachment, refusing paths that escape ``uploads_root``."""

    if not relative_path:
        return
    base_path = uploads_root.resolve()
    candidate = (base_path / relative_path).resolve()
    if base_path not in candidate.parents:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid file path")
    candidate.unlink(missing_ok=True)
