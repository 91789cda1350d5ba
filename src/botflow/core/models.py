"""Core data models: inbound updates, sessions and outbound actions."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from botflow.core.types import IDLE_STATE, ActionMethod, ChatType, UpdateKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Update:
    """One inbound event from the messaging platform."""

    update_id: int
    bot_id: str
    kind: UpdateKind
    user_id: Optional[str] = None
    chat_id: Optional[str] = None
    chat_type: ChatType = ChatType.UNKNOWN
    text: str = ""
    callback_id: Optional[str] = None
    callback_data: Optional[str] = None
    user_display_name: str = ""
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class SessionKey:
    bot_id: str
    user_id: str
    chat_id: Optional[str] = None

    def __str__(self) -> str:
        parts = [self.bot_id, self.user_id]
        if self.chat_id is not None:
            parts.append(self.chat_id)
        return ":".join(parts)

    @classmethod
    def for_update(cls, update: Update, scope_by_chat: bool = True) -> SessionKey | None:
        """Build the routing key for an update, or None when it has no sender."""
        if not update.user_id:
            return None
        chat_id = update.chat_id if scope_by_chat and update.chat_type.is_group else None
        return cls(bot_id=update.bot_id, user_id=update.user_id, chat_id=chat_id)


@dataclass
class Session:
    """Per-user conversation state."""

    key: SessionKey
    state: str = IDLE_STATE
    data: dict[str, Any] = field(default_factory=dict)
    history: list[str] = field(default_factory=list)
    last_activity: datetime = field(default_factory=utcnow)
    version: int = 0

    @property
    def is_idle(self) -> bool:
        return self.state == IDLE_STATE

    def reset(self) -> None:
        """Return to the rest state, dropping everything captured so far."""
        self.state = IDLE_STATE
        self.data = {}
        self.history = []

    def copy(self) -> Session:
        return copy.deepcopy(self)

    def is_expired(self, ttl_seconds: float, now: datetime) -> bool:
        if ttl_seconds <= 0:
            return False
        return (now - self.last_activity).total_seconds() > ttl_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "data": self.data,
            "history": self.history,
            "last_activity": self.last_activity.isoformat(),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, key: SessionKey, raw: dict[str, Any]) -> Session:
        return cls(
            key=key,
            state=raw.get("state", IDLE_STATE),
            data=dict(raw.get("data", {})),
            history=list(raw.get("history", [])),
            last_activity=datetime.fromisoformat(raw["last_activity"]),
            version=int(raw.get("version", 0)),
        )


@dataclass(frozen=True, slots=True)
class OutboundAction:
    """A pending message or effect addressed to one recipient (chat)."""

    recipient: str
    text: str = ""
    method: ActionMethod = ActionMethod.SEND_MESSAGE
    options: dict[str, Any] = field(default_factory=dict)
    priority: int = 0
    attempts: int = 0
    not_before: float = 0.0
