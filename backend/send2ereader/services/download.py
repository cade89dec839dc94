"""Resolve a (key, filename) pair to a stored file for the paired device."""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import ForbiddenError
from ..models.session import FileRecord, Session
from .devices import DeviceClass
from .sessions import SessionRegistry

logger = logging.getLogger(__name__)


def check_device(session: Session, agent: Optional[str]) -> None:
    """Only the device that created the session may read from it."""
    if session.agent != (agent or ""):
        logger.error("User Agent doesnt match: %s VS %s", session.agent, agent)
        raise ForbiddenError("Forbidden")


def resolve(
    registry: SessionRegistry,
    key: Optional[str],
    filename: str,
    agent: Optional[str],
) -> Optional[FileRecord]:
    """Return the file to send, or None to let the request fall through.

    Raises :class:`ForbiddenError` without renewing the session when the
    device identity does not match.
    """
    session = registry.get(key)
    if session is None:
        return None
    record = session.find_file(filename)
    if record is None:
        return None

    check_device(session, agent)
    registry.touch(session.key)
    return record


def wants_attachment(device_class: DeviceClass) -> bool:
    """Kindle browsers only save files served as attachments."""
    return device_class is DeviceClass.KINDLE
