"""Unit tests for the session store contract (in-memory and SQLite backends)."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from botflow.core.errors import SessionConflict, StorageUnavailable
from botflow.core.models import SessionKey
from botflow.core.session import InMemorySessionStore
from botflow.storage.database import Database
from botflow.storage.session_repo import SqliteSessionStore

KEY = SessionKey(bot_id="demo", user_id="42")


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def backend(request, tmp_path, clock):
    if request.param == "memory":
        yield InMemorySessionStore(ttl_seconds=3600, clock=clock)
        return

    db = Database(str(tmp_path / "sessions.db"))
    await db.initialize()
    try:
        yield SqliteSessionStore(db, ttl_seconds=3600, clock=clock)
    finally:
        await db.close()


class TestGet:
    @pytest.mark.asyncio
    async def test_absent_session_is_fresh_idle(self, backend):
        session = await backend.get(KEY)
        assert session.state == "idle"
        assert session.data == {}
        assert session.version == 0

    @pytest.mark.asyncio
    async def test_round_trip(self, backend):
        session = await backend.get(KEY)
        session.state = "awaiting_quantity"
        session.data["product"] = "Widget"
        session.history.append("awaiting_product")
        await backend.put(KEY, session, expected_version=0)

        loaded = await backend.get(KEY)
        assert loaded.state == "awaiting_quantity"
        assert loaded.data == {"product": "Widget"}
        assert loaded.history == ["awaiting_product"]
        assert loaded.version == 1

    @pytest.mark.asyncio
    async def test_get_returns_a_copy(self, backend):
        session = await backend.get(KEY)
        session.data["product"] = "Widget"
        await backend.put(KEY, session, expected_version=0)

        loaded = await backend.get(KEY)
        loaded.data["product"] = "Gadget"
        assert (await backend.get(KEY)).data == {"product": "Widget"}

    @pytest.mark.asyncio
    async def test_expired_session_reads_as_idle_but_keeps_version(self, backend, clock):
        session = await backend.get(KEY)
        session.state = "awaiting_product"
        await backend.put(KEY, session, expected_version=0)

        clock.advance(3601)
        expired = await backend.get(KEY)
        assert expired.state == "idle"
        assert expired.data == {}
        assert expired.version == 1

        # The next write still passes the version check.
        committed = await backend.put(KEY, expired, expected_version=expired.version)
        assert committed.version == 2

    @pytest.mark.asyncio
    async def test_activity_within_ttl_keeps_session(self, backend, clock):
        session = await backend.get(KEY)
        session.state = "awaiting_product"
        await backend.put(KEY, session, expected_version=0)

        clock.advance(3500)
        assert (await backend.get(KEY)).state == "awaiting_product"


class TestPut:
    @pytest.mark.asyncio
    async def test_put_bumps_version_and_activity(self, backend, clock):
        session = await backend.get(KEY)
        clock.advance(10)
        committed = await backend.put(KEY, session, expected_version=0)
        assert committed.version == 1
        assert committed.last_activity == clock.now

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, backend):
        session = await backend.get(KEY)
        await backend.put(KEY, session, expected_version=0)

        with pytest.raises(SessionConflict) as exc_info:
            await backend.put(KEY, session, expected_version=0)
        assert exc_info.value.actual_version == 1

    @pytest.mark.asyncio
    async def test_conflict_on_missing_row(self, backend):
        session = await backend.get(KEY)
        with pytest.raises(SessionConflict):
            await backend.put(KEY, session, expected_version=3)

    @pytest.mark.asyncio
    async def test_concurrent_writers_exactly_one_wins(self, backend):
        first = await backend.get(KEY)
        second = await backend.get(KEY)
        first.data["winner"] = "first"
        second.data["winner"] = "second"
        second.data["extra"] = True

        results = await asyncio.gather(
            backend.put(KEY, first, expected_version=0),
            backend.put(KEY, second, expected_version=0),
            return_exceptions=True,
        )

        conflicts = [r for r in results if isinstance(r, SessionConflict)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(conflicts) == 1
        assert len(successes) == 1

        stored = await backend.get(KEY)
        assert stored.data == successes[0].data
        assert stored.version == 1


class TestDeleteAndPurge:
    @pytest.mark.asyncio
    async def test_delete(self, backend):
        session = await backend.get(KEY)
        session.state = "awaiting_product"
        await backend.put(KEY, session, expected_version=0)

        await backend.delete(KEY)
        fresh = await backend.get(KEY)
        assert fresh.state == "idle"
        assert fresh.version == 0

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, backend):
        await backend.delete(KEY)

    @pytest.mark.asyncio
    async def test_purge_expired(self, backend, clock):
        old_key = SessionKey(bot_id="demo", user_id="1")
        new_key = SessionKey(bot_id="demo", user_id="2")
        await backend.put(old_key, await backend.get(old_key), expected_version=0)
        clock.advance(3000)
        await backend.put(new_key, await backend.get(new_key), expected_version=0)
        clock.advance(1000)

        assert await backend.purge_expired() == 1
        assert (await backend.get(old_key)).version == 0
        assert (await backend.get(new_key)).version == 1


class TestGroupScoping:
    @pytest.mark.asyncio
    async def test_chat_scoped_keys_are_independent(self, backend):
        private = SessionKey(bot_id="demo", user_id="42")
        in_group = SessionKey(bot_id="demo", user_id="42", chat_id="-100")

        session = await backend.get(in_group)
        session.state = "awaiting_product"
        await backend.put(in_group, session, expected_version=0)

        assert (await backend.get(private)).state == "idle"
        assert (await backend.get(in_group)).state == "awaiting_product"


class TestSqliteFailures:
    @pytest.mark.asyncio
    async def test_uninitialized_database_is_unavailable(self, tmp_path):
        store = SqliteSessionStore(Database(str(tmp_path / "never-opened.db")))
        with pytest.raises(StorageUnavailable):
            await store.get(KEY)

    @pytest.mark.asyncio
    async def test_closed_database_is_unavailable(self, tmp_path):
        db = Database(str(tmp_path / "closed.db"))
        await db.initialize()
        await db.close()
        with pytest.raises(StorageUnavailable):
            await SqliteSessionStore(db).get(KEY)
