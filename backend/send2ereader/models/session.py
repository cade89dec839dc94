"""In-memory session state.

Sessions live only as long as the process; there is deliberately no ORM model
behind them. Only :class:`~send2ereader.services.sessions.SessionRegistry`
creates and mutates these objects.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from ..services.devices import DeviceClass, classify_device


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FileRecord:
    """A file that was accepted into a session.

    ``name`` is what the device sees and downloads by; ``path`` is where the
    bytes live on disk and has no relation to ``name``.
    """

    name: str
    path: Path
    uploaded: datetime = field(default_factory=utcnow)
    conversion: Optional[str] = None


@dataclass
class Session:
    key: str
    agent: str
    serial: int
    created: datetime = field(default_factory=utcnow)
    alive: datetime = field(default_factory=utcnow)
    files: List[FileRecord] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)
    idle_timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)
    hard_timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)

    @property
    def device_class(self) -> DeviceClass:
        return classify_device(self.agent)

    def find_file(self, name: str) -> Optional[FileRecord]:
        return next((f for f in self.files if f.name == name), None)
