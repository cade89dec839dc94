"""Uploader endpoints.

1. `POST   /upload`                 – Multipart upload of up to 10 files and/or a URL.
2. `DELETE /file/{key}/{filename}`  – Remove one file from a session.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, UploadFile
from fastapi.responses import PlainTextResponse

from ..config import settings
from ..errors import ValidationError
from ..services.keys import normalize_key
from ..services.sessions import SessionRegistry
from ..services.uploads import UploadOptions, ingest_upload, resolve_upload_key
from ..utils.storage import FileTooLargeError, StagedFile, delete_files, stage_upload
from .deps import get_registry

router = APIRouter()
logger = logging.getLogger(__name__)


def _flag(value: Optional[str]) -> bool:
    """HTML checkboxes send "on"; absent fields are None."""
    return bool(value) and value.strip().lower() not in ("0", "false", "off")


@router.post("/upload", response_class=PlainTextResponse)
async def upload(
    files: Optional[List[UploadFile]] = File(None),
    url: Optional[str] = Form(None),
    body_key: Optional[str] = Form(None, alias="key"),
    transliteration: Optional[str] = Form(None),
    kindlegen: Optional[str] = Form(None),
    kepubify: Optional[str] = Form(None),
    header_key: Optional[str] = Header(None, alias="x-upload-key"),
    query_key: Optional[str] = Query(None, alias="key"),
    registry: SessionRegistry = Depends(get_registry),
) -> str:
    """Stage, validate and (optionally) convert every uploaded file."""
    files = files or []
    logger.info("upload endpoint called with %d file(s).", len(files))

    if len(files) > settings.MAX_UPLOAD_FILES:
        raise ValidationError(f"Too many files, at most {settings.MAX_UPLOAD_FILES} are allowed.")

    staged: List[StagedFile] = []
    try:
        for file in files:
            staged.append(await stage_upload(file, settings.UPLOAD_DIR, settings.max_file_size_bytes))
    except FileTooLargeError as exc:
        delete_files(s.path for s in staged)
        logger.warning("Upload rejected: %s (limit=%dMB)", exc, settings.MAX_FILE_SIZE_MB)
        raise ValidationError(f"{exc} (limit {settings.MAX_FILE_SIZE_MB} MB)") from exc
    except Exception:
        delete_files(s.path for s in staged)
        raise

    key = resolve_upload_key(header_key, query_key, body_key)
    options = UploadOptions(
        kindlegen=_flag(kindlegen),
        kepubify=_flag(kepubify),
        transliteration=_flag(transliteration),
    )
    result = await ingest_upload(registry, key, staged, options, url=url)

    logger.info("Upload for key %s: %s", result.key, " | ".join(result.lines))
    return result.message


@router.delete("/file/{key}/{filename}", response_class=PlainTextResponse)
async def delete_file(
    key: str,
    filename: str,
    registry: SessionRegistry = Depends(get_registry),
) -> str:
    """Remove ``filename`` from the session. Unknown file names are ignored."""
    if registry.get(key) is None:
        raise ValidationError(f"Unknown key: {normalize_key(key)}")

    if registry.delete_file(key, filename):
        logger.info("Deleted %s from key %s", filename, normalize_key(key))
    return "ok"
