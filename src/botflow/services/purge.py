"""Periodic removal of expired sessions (storage hygiene only)."""

from __future__ import annotations

from botflow.core.session import SessionStore
from botflow.log import get_logger
from botflow.services.base import PeriodicService

logger = get_logger(__name__)


class SessionPurgeService(PeriodicService):
    """Expiry is lazy on read; this only keeps the backing store small."""

    def __init__(self, store: SessionStore, interval: float):
        super().__init__(interval)
        self._store = store

    @property
    def service_name(self) -> str:
        return "session_purge"

    async def tick(self) -> None:
        removed = await self._store.purge_expired()
        logger.debug("session_purge_tick", removed=removed)
