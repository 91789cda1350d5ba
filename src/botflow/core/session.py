"""Session store contract and the in-process backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable

from botflow.core.errors import SessionConflict
from botflow.core.models import Session, SessionKey, utcnow
from botflow.log import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 3600


class SessionStore(ABC):
    """Durable per-user conversation state keyed by ``SessionKey``.

    Backends raise ``StorageUnavailable`` when they cannot be reached; callers
    must retry rather than assume the user has no session.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @abstractmethod
    async def get(self, key: SessionKey) -> Session:
        """Return the stored session, or a fresh idle one if absent or expired."""
        ...

    @abstractmethod
    async def put(self, key: SessionKey, session: Session, expected_version: int) -> Session:
        """Write ``session`` if the stored version still equals ``expected_version``.

        Returns the committed copy. Raises ``SessionConflict`` otherwise.
        """
        ...

    @abstractmethod
    async def delete(self, key: SessionKey) -> None:
        ...

    @abstractmethod
    async def purge_expired(self) -> int:
        """Drop expired sessions. Returns how many were removed."""
        ...

    def _fresh(self, key: SessionKey, version: int = 0) -> Session:
        # Expired rows keep their version so the next write still passes the check.
        return Session(key=key, last_activity=self._clock(), version=version)

    def _committed(self, key: SessionKey, session: Session, expected_version: int) -> Session:
        committed = session.copy()
        committed.key = key
        committed.version = expected_version + 1
        committed.last_activity = self._clock()
        return committed


class InMemorySessionStore(SessionStore):
    """Process-local store for tests and single-instance deployments."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(ttl_seconds, clock)
        self._sessions: dict[SessionKey, Session] = {}

    async def get(self, key: SessionKey) -> Session:
        stored = self._sessions.get(key)
        if stored is None:
            return self._fresh(key)
        if stored.is_expired(self.ttl_seconds, self._clock()):
            logger.info("session_expired", key=str(key), state=stored.state)
            return self._fresh(key, version=stored.version)
        return stored.copy()

    async def put(self, key: SessionKey, session: Session, expected_version: int) -> Session:
        stored = self._sessions.get(key)
        actual = stored.version if stored is not None else 0
        if actual != expected_version:
            raise SessionConflict(str(key), expected_version, actual)

        committed = self._committed(key, session, expected_version)
        self._sessions[key] = committed
        return committed.copy()

    async def delete(self, key: SessionKey) -> None:
        self._sessions.pop(key, None)

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, s in self._sessions.items() if s.is_expired(self.ttl_seconds, now)]
        for key in expired:
            del self._sessions[key]
        if expired:
            logger.info("sessions_purged", count=len(expired))
        return len(expired)
