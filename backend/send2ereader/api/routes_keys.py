"""Session endpoints.

1. `POST /generate`     – Create a session for the calling device, return its key.
2. `GET  /status/{key}` – Poll a session (device side); renews the idle timer.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from ..errors import NotFoundError
from ..services.download import check_device
from ..services.sessions import SessionRegistry
from .deps import get_registry

router = APIRouter()
logger = logging.getLogger(__name__)


class FileInfo(BaseModel):
    name: str


class StatusInfo(BaseModel):
    alive: datetime
    files: List[FileInfo]
    urls: List[str]


@router.post("/generate", response_class=PlainTextResponse)
async def generate(
    request: Request,
    user_agent: Optional[str] = Header(None),
    registry: SessionRegistry = Depends(get_registry),
) -> PlainTextResponse:
    """Create a session bound to the caller's User-Agent."""
    client = request.client.host if request.client else "unknown"
    logger.info("Generating unique key... %s %s", client, user_agent)

    key = registry.create(user_agent or "")

    response = PlainTextResponse(key)
    # Convenience for the upload page only; never used for authorisation.
    response.set_cookie(
        "key",
        key,
        max_age=int(registry.expire_delay),
        httponly=False,
        samesite="strict",
    )
    return response


@router.get("/status/{key}", response_model=StatusInfo)
async def status(
    key: str,
    user_agent: Optional[str] = Header(None),
    registry: SessionRegistry = Depends(get_registry),
) -> StatusInfo:
    """Return the files and URLs queued for the device."""
    session = registry.get(key)
    if session is None:
        raise NotFoundError("Unknown key")

    check_device(session, user_agent)
    registry.touch(session.key)

    return StatusInfo(
        alive=session.alive,
        files=[FileInfo(name=f.name) for f in session.files],
        urls=list(session.urls),
    )
