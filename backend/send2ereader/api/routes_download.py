"""Device-facing pages and downloads.

These routes share the URL space with the static directory, so they are
registered last: anything they cannot resolve is served from ``STATIC_DIR``
or answered with 404.
"""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import FileResponse

from ..config import settings
from ..errors import NotFoundError
from ..services.devices import classify_device, is_ereader
from ..services.download import resolve, wants_attachment
from ..services.sessions import SessionRegistry
from .deps import get_registry

router = APIRouter()
logger = logging.getLogger(__name__)

mimetypes.add_type("application/epub+zip", ".epub")
mimetypes.add_type("application/x-mobipocket-ebook", ".mobi")
mimetypes.add_type("application/vnd.comicbook+zip", ".cbz")
mimetypes.add_type("application/vnd.comicbook-rar", ".cbr")


def is_safe_path(basedir: Path, path_to_check: Path) -> bool:
    try:
        return path_to_check.resolve().parent == basedir.resolve()
    except OSError:
        return False


def static_file(filename: str) -> FileResponse:
    """Serve a top-level file from the static directory or raise 404."""
    file_path = settings.STATIC_DIR / filename
    if not is_safe_path(settings.STATIC_DIR, file_path) or not file_path.is_file():
        raise NotFoundError("Not Found")
    return FileResponse(file_path)


@router.get("/")
async def index(user_agent: Optional[str] = Header(None)) -> FileResponse:
    """E-readers land on the receiving page, everything else on the upload page."""
    return static_file("download.html" if is_ereader(user_agent) else "upload.html")


@router.get("/receive")
async def receive() -> FileResponse:
    return static_file("download.html")


@router.get("/{filename}")
async def download(
    filename: str,
    key: Optional[str] = Query(None),
    user_agent: Optional[str] = Header(None),
    registry: SessionRegistry = Depends(get_registry),
) -> FileResponse:
    """Send a session file to its device, or fall through to static assets."""
    record = resolve(registry, key, filename, user_agent) if key else None
    if record is None:
        return static_file(filename)

    logger.info("Sending %s (%s) for key %s", record.name, record.path, key)
    media_type = mimetypes.guess_type(record.name)[0] or "application/octet-stream"
    if wants_attachment(classify_device(user_agent)):
        return FileResponse(record.path, media_type=media_type, filename=record.name)
    return FileResponse(record.path, media_type=media_type)
