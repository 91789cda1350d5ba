"""Dispatcher: the single entry point from the transport shell into the core."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from botflow.config import MessagesConfig
from botflow.core.dedup import UpdateDeduplicator
from botflow.core.errors import ConflictRetriesExhausted, SessionConflict, StorageUnavailable
from botflow.core.models import OutboundAction, SessionKey, Update
from botflow.core.types import UpdateKind
from botflow.log import get_logger

if TYPE_CHECKING:
    from botflow.conversation.callbacks import CallbackResolver
    from botflow.conversation.engine import ConversationEngine

logger = get_logger(__name__)

DEFAULT_CONFLICT_RETRIES = 3


class Dispatcher:
    """Handles one bot's updates end-to-end and returns the outbound actions.

    Duplicates short-circuit to ``[]``. An update id is recorded as processed
    only once handling succeeded, so a failed update can be redelivered.
    ``StorageUnavailable`` is the only error that reaches the caller.
    """

    def __init__(
        self,
        bot_id: str,
        engine: ConversationEngine,
        callbacks: CallbackResolver,
        deduplicator: UpdateDeduplicator | None = None,
        max_conflict_retries: int = DEFAULT_CONFLICT_RETRIES,
        scope_by_chat: bool = True,
        messages: MessagesConfig | None = None,
    ):
        self.bot_id = bot_id
        self._engine = engine
        self._callbacks = callbacks
        self._dedup = deduplicator or UpdateDeduplicator()
        self._max_conflict_retries = max_conflict_retries
        self._scope_by_chat = scope_by_chat
        self._messages = messages or MessagesConfig()
        # Ids being handled right now; a redelivery racing the first copy is dropped.
        self._in_flight: set[int] = set()

    @property
    def engine(self) -> ConversationEngine:
        return self._engine

    async def handle(self, update: Update) -> list[OutboundAction]:
        if self._dedup.seen(update.update_id) or update.update_id in self._in_flight:
            logger.debug("update_duplicate", bot_id=self.bot_id, update_id=update.update_id)
            return []

        self._in_flight.add(update.update_id)
        try:
            with structlog.contextvars.bound_contextvars(
                bot_id=self.bot_id, update_id=update.update_id, kind=str(update.kind)
            ):
                try:
                    actions = await self._route(update)
                except StorageUnavailable:
                    logger.error("update_storage_unavailable", user_id=update.user_id)
                    raise
                except Exception:
                    logger.exception(
                        "handler_panic",
                        user_id=update.user_id,
                        chat_id=update.chat_id,
                        text=update.text,
                        callback_data=update.callback_data,
                    )
                    return self._panic_reply(update)

            self._dedup.record(update.update_id)
            return actions
        finally:
            self._in_flight.discard(update.update_id)

    async def _route(self, update: Update) -> list[OutboundAction]:
        key = SessionKey.for_update(update, scope_by_chat=self._scope_by_chat)
        if key is None:
            logger.warning("update_dropped_no_user", chat_id=update.chat_id)
            return []

        match update.kind:
            case UpdateKind.MESSAGE:
                return await self._converse(key, update)
            case UpdateKind.CALLBACK_QUERY:
                return await self._callbacks.resolve(update)
            case _:
                logger.debug("update_ignored", user_id=update.user_id)
                return []

    async def _converse(self, key: SessionKey, update: Update) -> list[OutboundAction]:
        for attempt in range(1, self._max_conflict_retries + 1):
            if attempt > 1 and self._dedup.seen(update.update_id):
                logger.info("update_completed_elsewhere", key=str(key), attempt=attempt)
                return []
            try:
                return await self._engine.process(key, update)
            except SessionConflict as e:
                logger.info(
                    "session_conflict_retry",
                    key=str(key),
                    attempt=attempt,
                    expected_version=e.expected_version,
                    actual_version=e.actual_version,
                )
        raise ConflictRetriesExhausted(
            f"Session {key} kept conflicting after {self._max_conflict_retries} attempts"
        )

    def _panic_reply(self, update: Update) -> list[OutboundAction]:
        recipient = update.chat_id or update.user_id
        if not recipient:
            return []
        return [OutboundAction(recipient=recipient, text=self._messages.error)]
