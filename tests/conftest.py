"""
Shared fixtures for botflow tests.

Everything runs against the in-memory session store unless a test asks for
the SQLite backend explicitly.
"""

import itertools
from typing import Callable

import pytest
import structlog

from botflow.commands.builtin import register_builtin
from botflow.conversation.callbacks import CallbackResolver
from botflow.conversation.engine import ConversationEngine
from botflow.core.dedup import UpdateDeduplicator
from botflow.core.dispatcher import Dispatcher
from botflow.core.models import SessionKey, Update
from botflow.core.registry import CommandRegistry
from botflow.core.session import InMemorySessionStore
from botflow.core.types import ChatType, UpdateKind

BOT_ID = "demo"
USER_ID = "42"


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Drop any logging config a test installed; it may point at a closed capture stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def admins() -> set[tuple[str, str]]:
    """(chat_id, user_id) pairs the fake platform reports as admins."""
    return set()


@pytest.fixture
def registry(admins) -> CommandRegistry:
    async def is_admin(chat_id: str, user_id: str) -> bool:
        return (chat_id, user_id) in admins

    return CommandRegistry(is_admin=is_admin)


@pytest.fixture
def engine(store, registry) -> ConversationEngine:
    return ConversationEngine(store, registry)


@pytest.fixture
def callbacks() -> CallbackResolver:
    return CallbackResolver()


@pytest.fixture
def dispatcher(engine, callbacks) -> Dispatcher:
    register_builtin(engine, callbacks)
    return Dispatcher(BOT_ID, engine, callbacks, UpdateDeduplicator())


@pytest.fixture
def session_key() -> SessionKey:
    return SessionKey(bot_id=BOT_ID, user_id=USER_ID)


@pytest.fixture
def message() -> Callable[..., Update]:
    """Factory for text message updates with auto-incrementing ids."""
    ids = itertools.count(1)

    def _make(
        text: str,
        update_id: int | None = None,
        user_id: str | None = USER_ID,
        chat_id: str | None = USER_ID,
        chat_type: ChatType = ChatType.PRIVATE,
    ) -> Update:
        return Update(
            update_id=update_id if update_id is not None else next(ids),
            bot_id=BOT_ID,
            kind=UpdateKind.MESSAGE,
            user_id=user_id,
            chat_id=chat_id,
            chat_type=chat_type,
            text=text,
        )

    return _make
