"""Filesystem helpers for the upload directory."""

from __future__ import annotations

import logging
import shutil
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from fastapi import UploadFile

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class FileTooLargeError(Exception):
    pass


@dataclass
class StagedFile:
    """An uploaded item written to the upload directory, not yet validated."""

    path: Path
    original_name: str
    content_type: str
    size: int


def ensure_dir_exists(path: Path) -> Path:
    """Ensure that the given directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def reset_upload_dir(path: Path) -> Path:
    """Recursively delete and recreate ``path``.

    Errors propagate: a storage directory that cannot be reset must abort
    start-up.
    """
    if path.exists():
        logger.info("Wiping upload directory %s", path)
        shutil.rmtree(path)
    return ensure_dir_exists(path)


def delete_file(path: Path | str | None) -> bool:
    """Best-effort unlink. Returns True if a file was removed."""
    if not path:
        return False
    try:
        Path(path).unlink()
    except FileNotFoundError:
        logger.debug("File %s already gone", path)
        return False
    except OSError as exc:
        logger.error("Could not delete file %s: %s", path, exc)
        return False
    logger.info("Deleted file %s", path)
    return True


def delete_files(paths: Iterable[Path | str | None]) -> None:
    for path in paths:
        delete_file(path)


def staged_name(original_name: str) -> str:
    """Storage name for an upload: unrelated to the display name except the lowercased extension."""
    suffix = Path(original_name).suffix.lower()
    return f"files-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}{suffix}"


async def stage_upload(file: UploadFile, target_dir: Path, max_bytes: int) -> StagedFile:
    """Copy an uploaded item into ``target_dir`` in chunks, enforcing ``max_bytes``."""
    ensure_dir_exists(target_dir)
    original_name = file.filename or ""
    file_path = target_dir / staged_name(original_name)

    bytes_written = 0
    try:
        with open(file_path, "wb") as f:
            while True:
                chunk = await file.read(CHUNK_SIZE)
                if not chunk:
                    break
                bytes_written += len(chunk)
                if max_bytes and bytes_written > max_bytes:
                    raise FileTooLargeError(f"File too large: {original_name}")
                f.write(chunk)
    except Exception:
        delete_file(file_path)
        raise

    logger.info("Staged upload '%s' (%d bytes) at %s", original_name, bytes_written, file_path)
    return StagedFile(
        path=file_path,
        original_name=original_name,
        content_type=file.content_type or "application/octet-stream",
        size=bytes_written,
    )
