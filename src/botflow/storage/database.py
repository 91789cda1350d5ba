"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from botflow.core.errors import StorageUnavailable
from botflow.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sessions (
    session_key     TEXT    PRIMARY KEY,
    bot_id          TEXT    NOT NULL,
    user_id         TEXT    NOT NULL,
    chat_id         TEXT,
    version         INTEGER NOT NULL,
    last_activity   TEXT    NOT NULL,
    payload_json    TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_activity
    ON sessions(last_activity);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(self._db_path)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(SCHEMA_SQL)
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise StorageUnavailable(f"Cannot open session database {self._db_path}: {e}") from e
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StorageUnavailable("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
