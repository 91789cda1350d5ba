"""SQLite-backed session store with optimistic concurrency."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Callable

import aiosqlite

from botflow.core.errors import SessionConflict, StorageUnavailable
from botflow.core.models import Session, SessionKey, utcnow
from botflow.core.session import DEFAULT_TTL_SECONDS, SessionStore
from botflow.log import get_logger
from botflow.storage.database import Database

logger = get_logger(__name__)


@asynccontextmanager
async def _storage_errors(operation: str, key: str = "") -> AsyncIterator[None]:
    try:
        yield
    except aiosqlite.Error as e:
        logger.error("session_storage_error", operation=operation, key=key, error=str(e))
        raise StorageUnavailable(f"Session {operation} failed: {e}") from e


class SqliteSessionStore(SessionStore):
    """Sessions persisted as JSON rows; writes are conditional on the version column.

    Several processes can share one database file: the ``version = ?`` guard
    on every update is what keeps concurrent writers from losing updates.
    """

    def __init__(
        self,
        db: Database,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(ttl_seconds, clock)
        self._db = db

    async def get(self, key: SessionKey) -> Session:
        async with _storage_errors("get", str(key)):
            cursor = await self._db.conn.execute(
                "SELECT payload_json FROM sessions WHERE session_key = ?",
                (str(key),),
            )
            row = await cursor.fetchone()
        if row is None:
            return self._fresh(key)

        stored = Session.from_dict(key, json.loads(row["payload_json"]))
        if stored.is_expired(self.ttl_seconds, self._clock()):
            logger.info("session_expired", key=str(key), state=stored.state)
            return self._fresh(key, version=stored.version)
        return stored

    async def put(self, key: SessionKey, session: Session, expected_version: int) -> Session:
        committed = self._committed(key, session, expected_version)
        params = (
            committed.version,
            committed.last_activity.isoformat(),
            json.dumps(committed.to_dict()),
        )

        async with _storage_errors("put", str(key)):
            if expected_version == 0:
                cursor = await self._db.conn.execute(
                    """INSERT INTO sessions
                       (version, last_activity, payload_json, session_key, bot_id, user_id, chat_id)
                       VALUES (?, ?, ?, ?, ?, ?, ?)
                       ON CONFLICT(session_key) DO NOTHING""",
                    (*params, str(key), key.bot_id, key.user_id, key.chat_id),
                )
            else:
                cursor = await self._db.conn.execute(
                    """UPDATE sessions
                       SET version = ?, last_activity = ?, payload_json = ?
                       WHERE session_key = ? AND version = ?""",
                    (*params, str(key), expected_version),
                )
            await self._db.conn.commit()
            written = cursor.rowcount

            if written != 1:
                actual = await self._stored_version(key)
                raise SessionConflict(str(key), expected_version, actual)

        return committed

    async def delete(self, key: SessionKey) -> None:
        async with _storage_errors("delete", str(key)):
            await self._db.conn.execute("DELETE FROM sessions WHERE session_key = ?", (str(key),))
            await self._db.conn.commit()

    async def purge_expired(self) -> int:
        if self.ttl_seconds <= 0:
            return 0
        cutoff = self._clock() - timedelta(seconds=self.ttl_seconds)
        async with _storage_errors("purge"):
            cursor = await self._db.conn.execute(
                "DELETE FROM sessions WHERE last_activity < ?",
                (cutoff.isoformat(),),
            )
            await self._db.conn.commit()
        if cursor.rowcount:
            logger.info("sessions_purged", count=cursor.rowcount)
        return cursor.rowcount

    async def _stored_version(self, key: SessionKey) -> int:
        cursor = await self._db.conn.execute(
            "SELECT version FROM sessions WHERE session_key = ?", (str(key),)
        )
        row = await cursor.fetchone()
        return row["version"] if row else 0
