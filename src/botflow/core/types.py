"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum

IDLE_STATE = "idle"


class Platform(StrEnum):
    TELEGRAM = "telegram"
    CONSOLE = "console"


class UpdateKind(StrEnum):
    MESSAGE = "message"
    EDITED_MESSAGE = "edited_message"
    CALLBACK_QUERY = "callback_query"
    INLINE_QUERY = "inline_query"
    CHAT_MEMBER = "chat_member"
    UNKNOWN = "unknown"


class ChatType(StrEnum):
    PRIVATE = "private"
    GROUP = "group"
    SUPERGROUP = "supergroup"
    CHANNEL = "channel"
    UNKNOWN = "unknown"

    @property
    def is_group(self) -> bool:
        return self in (ChatType.GROUP, ChatType.SUPERGROUP)


class CommandScope(StrEnum):
    """Command applicability, listed from most to least specific."""

    CHAT_MEMBER = "chat_member"
    CHAT_ADMINISTRATORS = "chat_administrators"
    CHAT = "chat"
    ALL_CHAT_ADMINISTRATORS = "all_chat_administrators"
    ALL_GROUP_CHATS = "all_group_chats"
    ALL_PRIVATE_CHATS = "all_private_chats"
    DEFAULT = "default"

    @property
    def admin_only(self) -> bool:
        return self in (CommandScope.CHAT_ADMINISTRATORS, CommandScope.ALL_CHAT_ADMINISTRATORS)


class ActionMethod(StrEnum):
    SEND_MESSAGE = "send_message"
    ANSWER_CALLBACK = "answer_callback"
