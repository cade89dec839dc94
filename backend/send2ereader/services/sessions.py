"""Process-wide registry of live pairing sessions.

Every session has two countdowns scheduled on the running event loop:

* the *idle* timer, restarted by :meth:`SessionRegistry.touch`;
* the *hard-cap* timer, scheduled once at creation and never renewed.

Whichever fires first expires the session. Timers only carry the key and the
session serial; :meth:`SessionRegistry.expire` re-resolves the key and does
nothing if it now belongs to a different session.

All methods are synchronous and run on the event loop thread, so no locking
is needed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable, Dict, Optional

from ..errors import CapacityError, NotFoundError
from ..models.session import FileRecord, Session, utcnow
from ..utils.storage import delete_file
from .keys import generate_key, normalize_key

logger = logging.getLogger(__name__)


class SessionRegistry:
    def __init__(
        self,
        expire_delay: float,
        max_expire_duration: float,
        key_factory: Callable[[], str] = generate_key,
    ) -> None:
        self.expire_delay = expire_delay
        self.max_expire_duration = max_expire_duration
        self._key_factory = key_factory
        self._sessions: Dict[str, Session] = {}
        self._serials = itertools.count(1)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and normalize_key(key) in self._sessions

    def create(self, agent: str) -> str:
        """Register a new session for the device identified by ``agent``.

        Candidates are drawn until an unused key turns up. The retry budget
        grows with the registry size; exceeding it raises
        :class:`CapacityError` even though the key space may not be full.
        """
        logger.info("There are currently %d key(s) in use.", len(self._sessions))

        attempts = 0
        while True:
            key = self._key_factory()
            if attempts > len(self._sessions):
                logger.error(
                    "Can't generate more keys, map is full. attempts=%d size=%d",
                    attempts,
                    len(self._sessions),
                )
                raise CapacityError("Can't generate more keys, try again later.")
            attempts += 1
            if key not in self._sessions:
                break

        logger.info("Generated key %s, %d attempt(s)", key, attempts)

        loop = asyncio.get_running_loop()
        session = Session(key=key, agent=agent or "", serial=next(self._serials))
        session.idle_timer = loop.call_later(self.expire_delay, self.expire, key, session.serial)
        session.hard_timer = loop.call_later(self.max_expire_duration, self.expire, key, session.serial)
        self._sessions[key] = session
        return key

    def get(self, key: Optional[str]) -> Optional[Session]:
        key = normalize_key(key)
        if key is None:
            return None
        return self._sessions.get(key)

    def touch(self, key: Optional[str]) -> None:
        """Restart the idle countdown. Unknown keys are ignored."""
        session = self.get(key)
        if session is None:
            return

        if session.idle_timer is not None:
            session.idle_timer.cancel()
        loop = asyncio.get_running_loop()
        session.idle_timer = loop.call_later(self.expire_delay, self.expire, session.key, session.serial)
        session.alive = utcnow()

    def expire(self, key: str, serial: Optional[int] = None) -> None:
        """Remove a session and delete every file it owns.

        ``serial`` identifies the session a timer was scheduled for. If the key
        has since been re-issued to another session, this is a no-op.
        """
        key = normalize_key(key)
        session = self._sessions.get(key) if key else None
        if session is None:
            logger.info("Tried to remove non-existing key %s", key)
            return
        if serial is not None and session.serial != serial:
            logger.info("Key %s now belongs to a newer session, not removing", key)
            return

        logger.info("Removing expired key %s", key)
        for timer in (session.idle_timer, session.hard_timer):
            if timer is not None:
                timer.cancel()

        for record in session.files:
            logger.info("Deleting file %s", record.path)
            delete_file(record.path)
        session.files = []

        del self._sessions[key]

    def delete_file(self, key: str, filename: str) -> bool:
        """Remove the first file named ``filename``. Returns False if nothing matched."""
        session = self.get(key)
        if session is None:
            raise NotFoundError(f"Unknown key: {key}")

        record = session.find_file(filename)
        if record is None:
            return False

        session.files.remove(record)
        delete_file(record.path)
        return True

    def append_file(self, key: str, record: FileRecord, serial: Optional[int] = None) -> None:
        session = self.get(key)
        if session is None or (serial is not None and session.serial != serial):
            raise NotFoundError(f"Session {key} expired before {record.name} could be added")
        session.files.append(record)

    def append_url(self, key: str, url: str) -> bool:
        session = self.get(key)
        if session is None:
            raise NotFoundError(f"Unknown key: {key}")
        if url in session.urls:
            return False
        session.urls.append(url)
        return True

    def clear(self) -> None:
        """Expire every live session."""
        for key in list(self._sessions):
            self.expire(key)
