"""Telegram messenger adapter using python-telegram-bot v21+."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from telegram import Update as TelegramUpdate
from telegram.constants import ChatMemberStatus
from telegram.error import BadRequest, ChatMigrated, Forbidden, RetryAfter, TelegramError
from telegram.ext import Application, TypeHandler

from botflow.config import BotConfig
from botflow.core.errors import DeliveryFailed, DeliveryThrottled
from botflow.core.models import OutboundAction, Update
from botflow.core.types import ActionMethod, ChatType, Platform, UpdateKind
from botflow.log import get_logger
from botflow.messenger.base import MessengerAdapter

logger = get_logger(__name__)

_PAYLOAD_KINDS: tuple[tuple[str, UpdateKind], ...] = (
    ("message", UpdateKind.MESSAGE),
    ("edited_message", UpdateKind.EDITED_MESSAGE),
    ("callback_query", UpdateKind.CALLBACK_QUERY),
    ("inline_query", UpdateKind.INLINE_QUERY),
    ("chat_member", UpdateKind.CHAT_MEMBER),
    ("my_chat_member", UpdateKind.CHAT_MEMBER),
)

_ADMIN_STATUSES = (ChatMemberStatus.ADMINISTRATOR, ChatMemberStatus.OWNER)


def _chat_type(raw: str | None) -> ChatType:
    try:
        return ChatType(raw or "unknown")
    except ValueError:
        return ChatType.UNKNOWN


def _display_name(user: dict[str, Any]) -> str:
    parts = [user.get("first_name", ""), user.get("last_name", "")]
    return " ".join(p for p in parts if p)


def _timestamp(raw: Any) -> datetime:
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    return datetime.now(timezone.utc)


def parse_update(bot_id: str, payload: dict[str, Any]) -> Update:
    """Convert a Bot API update object (webhook body or getUpdates item) into an ``Update``."""
    if not isinstance(payload, dict) or "update_id" not in payload:
        raise ValueError("Update payload has no update_id")
    update_id = int(payload["update_id"])
    for field_name, kind in _PAYLOAD_KINDS:
        body = payload.get(field_name)
        if not body:
            continue

        sender = body.get("from") or {}
        message = body.get("message") if kind == UpdateKind.CALLBACK_QUERY else body
        chat = (message or {}).get("chat") or {}

        return Update(
            update_id=update_id,
            bot_id=bot_id,
            kind=kind,
            user_id=str(sender["id"]) if "id" in sender else None,
            chat_id=str(chat["id"]) if "id" in chat else None,
            chat_type=_chat_type(chat.get("type")),
            text=body.get("text") or body.get("caption") or body.get("query") or "",
            callback_id=body.get("id") if kind == UpdateKind.CALLBACK_QUERY else None,
            callback_data=body.get("data") if kind == UpdateKind.CALLBACK_QUERY else None,
            user_display_name=_display_name(sender),
            timestamp=_timestamp((message or {}).get("date")),
        )

    return Update(update_id=update_id, bot_id=bot_id, kind=UpdateKind.UNKNOWN)


def _retry_seconds(value: int | float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _chat_id(recipient: str) -> int | str:
    try:
        return int(recipient)
    except ValueError:
        return recipient  # "@channelusername"


class TelegramAdapter(MessengerAdapter):
    """Telegram bot adapter using python-telegram-bot long polling."""

    def __init__(self, bot_id: str, config: BotConfig):
        super().__init__(bot_id, config)
        self._app: Application | None = None  # type: ignore[type-arg]

    @property
    def platform_name(self) -> str:
        return Platform.TELEGRAM

    async def start(self) -> None:
        if not self.config.token:
            raise ValueError(f"Telegram bot token not configured for bot '{self.bot_id}'")

        self._app = Application.builder().token(self.config.token).build()
        self._app.add_handler(TypeHandler(TelegramUpdate, self._on_telegram_update))

        await self._app.initialize()
        self.username = self.username or self._app.bot.username or ""
        await self._app.start()
        await self._app.updater.start_polling(allowed_updates=TelegramUpdate.ALL_TYPES)  # type: ignore[union-attr]
        logger.info("telegram_adapter_started", bot_id=self.bot_id)

    async def stop(self) -> None:
        if self._app:
            await self._app.updater.stop()  # type: ignore[union-attr]
            await self._app.stop()
            await self._app.shutdown()
            self._app = None
            logger.info("telegram_adapter_stopped", bot_id=self.bot_id)

    async def deliver(self, action: OutboundAction) -> None:
        if not self._app or not self._app.bot:
            raise DeliveryFailed(f"Telegram adapter for '{self.bot_id}' is not running")
        bot = self._app.bot

        try:
            if action.method == ActionMethod.ANSWER_CALLBACK:
                await bot.answer_callback_query(
                    callback_query_id=action.options["callback_query_id"],
                    text=action.text or None,
                    show_alert=action.options.get("show_alert", False),
                )
                return

            parse_mode = None
            if action.options.get("parse_mode") == "markdown":
                parse_mode = "MarkdownV2"
            elif action.options.get("parse_mode") == "html":
                parse_mode = "HTML"

            await bot.send_message(
                chat_id=_chat_id(action.recipient),
                text=action.text,
                parse_mode=parse_mode,
                reply_to_message_id=action.options.get("reply_to_message_id"),
            )
        except RetryAfter as e:
            raise DeliveryThrottled(_retry_seconds(e.retry_after)) from e
        except ChatMigrated as e:
            raise DeliveryFailed(f"Chat {action.recipient} migrated to {e.new_chat_id}") from e
        except (Forbidden, BadRequest) as e:
            raise DeliveryFailed(str(e)) from e

    async def platform_is_admin(self, chat_id: str, user_id: str) -> bool:
        if not self._app or not self._app.bot:
            return False
        try:
            member = await self._app.bot.get_chat_member(chat_id=_chat_id(chat_id), user_id=int(user_id))
        except TelegramError as e:
            logger.warning("telegram_admin_check_failed", chat_id=chat_id, user_id=user_id, error=str(e))
            return False
        return member.status in _ADMIN_STATUSES

    async def _on_telegram_update(self, update: TelegramUpdate, context: Any) -> None:
        if not self._update_callback:
            return

        incoming = parse_update(self.bot_id, update.to_dict())
        try:
            await self._update_callback(incoming)
        except Exception as e:
            logger.error(
                "telegram_handler_error",
                error=str(e),
                update_id=incoming.update_id,
                chat_id=incoming.chat_id,
            )
