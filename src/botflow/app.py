"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from botflow.commands.builtin import register_builtin
from botflow.config import AppConfig, BotConfig
from botflow.conversation.callbacks import CallbackResolver
from botflow.conversation.engine import ConversationEngine
from botflow.core.bot_registry import BotRegistry, BotRuntime
from botflow.core.dedup import UpdateDeduplicator
from botflow.core.dispatcher import Dispatcher
from botflow.core.errors import StorageUnavailable
from botflow.core.models import OutboundAction, Update
from botflow.core.registry import CommandRegistry
from botflow.core.session import InMemorySessionStore, SessionStore
from botflow.log import get_logger
from botflow.messenger.base import MessengerAdapter
from botflow.outbound.queue import OutboundQueue
from botflow.services.purge import SessionPurgeService
from botflow.storage.database import Database
from botflow.storage.session_repo import SqliteSessionStore

logger = get_logger(__name__)


class BotflowApp:
    """Top-level application orchestrator."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.db: Database | None = None
        self.store = self._create_store()
        self.purge_service = SessionPurgeService(self.store, config.sessions.purge_interval_seconds)
        self.bot_registry = BotRegistry()
        for bot_cfg in config.bots:
            self.bot_registry.register(self._create_runtime(bot_cfg))

    async def open_storage(self) -> None:
        if self.db is not None:
            await self.db.initialize()

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.open_storage()

        # 2. Background services
        await self.purge_service.start()

        # 3. Bots: the queue first so nothing handled is left undelivered
        for runtime in self.bot_registry.all():
            try:
                await runtime.queue.start()
                await runtime.adapter.start()
                runtime.dispatcher.engine.bot_username = runtime.adapter.username or None
                logger.info("bot_started", bot_id=runtime.bot_id, platform=runtime.adapter.platform_name)
            except Exception as e:
                logger.error("bot_start_failed", bot_id=runtime.bot_id, error=str(e))

        logger.info("botflow_started", bot_count=len(self.bot_registry.ids()))

    async def stop(self) -> None:
        """Gracefully shut down all components."""
        for runtime in self.bot_registry.all():
            try:
                await runtime.adapter.stop()
            except Exception as e:
                logger.error("bot_stop_error", bot_id=runtime.bot_id, error=str(e))
            await runtime.queue.stop()

        await self.purge_service.stop()
        if self.db is not None:
            await self.db.close()
        logger.info("botflow_stopped")

    async def handle(self, bot_id: str, update: Update) -> list[OutboundAction]:
        """Run one update through the bot's dispatcher and queue the result."""
        runtime = self.bot_registry.get(bot_id)
        if runtime is None:
            raise ValueError(f"Unknown bot: {bot_id}")
        actions = await runtime.dispatcher.handle(update)
        runtime.queue.enqueue(actions)
        return actions

    def _create_store(self) -> SessionStore:
        ttl = self.config.sessions.ttl_seconds
        match self.config.storage.backend:
            case "sqlite":
                self.db = Database(self.config.storage.db_path)
                return SqliteSessionStore(self.db, ttl_seconds=ttl)
            case _:
                return InMemorySessionStore(ttl_seconds=ttl)

    def _create_runtime(self, bot_cfg: BotConfig) -> BotRuntime:
        adapter = self._create_adapter(bot_cfg)

        registry = CommandRegistry(is_admin=adapter.is_admin)
        engine = ConversationEngine(
            self.store, registry, messages=self.config.messages, bot_username=adapter.username or None
        )
        callbacks = CallbackResolver()
        register_builtin(engine, callbacks)

        dispatcher = Dispatcher(
            bot_id=bot_cfg.id,
            engine=engine,
            callbacks=callbacks,
            deduplicator=UpdateDeduplicator(self.config.dedup.strategy, self.config.dedup.window),
            max_conflict_retries=self.config.dispatcher.max_conflict_retries,
            scope_by_chat=self.config.sessions.scope_by_chat,
            messages=self.config.messages,
        )
        queue = OutboundQueue.from_config(adapter.deliver, self.config.outbound)

        async def _on_update(update: Update) -> None:
            try:
                await self.handle(bot_cfg.id, update)
            except StorageUnavailable as e:
                # Polling already acknowledged the update, so it cannot be redelivered.
                logger.error("update_lost_storage_unavailable", update_id=update.update_id, error=str(e))

        adapter.on_update(_on_update)
        return BotRuntime(bot_id=bot_cfg.id, adapter=adapter, dispatcher=dispatcher, queue=queue)

    def _create_adapter(self, cfg: BotConfig) -> MessengerAdapter:
        match cfg.platform:
            case "telegram":
                from botflow.messenger.telegram import TelegramAdapter

                return TelegramAdapter(cfg.id, cfg)
            case "console":
                from botflow.messenger.console import ConsoleAdapter

                return ConsoleAdapter(cfg.id, cfg)
            case _:
                raise ValueError(f"Unknown platform: {cfg.platform}")
