"""Abstract messenger adapter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from botflow.config import BotConfig
from botflow.core.models import OutboundAction, Update

UpdateCallback = Callable[[Update], Awaitable[None]]


class MessengerAdapter(ABC):
    """Transport-facing shell for one bot.

    Subclasses turn platform events into ``Update`` objects (handed to the
    callback registered with ``on_update``), deliver ``OutboundAction``
    objects, and answer admin checks for the command registry.

    ``deliver`` must raise ``DeliveryThrottled`` when the platform asks to
    back off and ``DeliveryFailed`` when the recipient can never be reached;
    anything else is treated as transient by the outbound queue.
    """

    def __init__(self, bot_id: str, config: BotConfig):
        self.bot_id = bot_id
        self.config = config
        self.username = config.username.lstrip("@")
        self._update_callback: UpdateCallback | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving updates."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def deliver(self, action: OutboundAction) -> None:
        """Perform one outbound action."""
        ...

    async def is_admin(self, chat_id: str, user_id: str) -> bool:
        """Statically configured admins win; otherwise ask the platform."""
        if user_id in self.config.admins:
            return True
        return await self.platform_is_admin(chat_id, user_id)

    async def platform_is_admin(self, chat_id: str, user_id: str) -> bool:
        return False

    def on_update(self, callback: UpdateCallback) -> None:
        """Register the callback invoked for every incoming update."""
        self._update_callback = callback

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Return platform identifier string."""
        ...
