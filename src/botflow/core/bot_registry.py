"""Registry of wired bot runtimes (adapter, dispatcher, outbound queue)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from botflow.core.dispatcher import Dispatcher
    from botflow.messenger.base import MessengerAdapter
    from botflow.outbound.queue import OutboundQueue


@dataclass
class BotRuntime:
    bot_id: str
    adapter: MessengerAdapter
    dispatcher: Dispatcher
    queue: OutboundQueue


class BotRegistry:
    """Tracks one runtime per configured bot id."""

    def __init__(self) -> None:
        self._runtimes: dict[str, BotRuntime] = {}

    def register(self, runtime: BotRuntime) -> None:
        if runtime.bot_id in self._runtimes:
            raise ValueError(f"Bot '{runtime.bot_id}' is configured twice")
        self._runtimes[runtime.bot_id] = runtime

    def get(self, bot_id: str) -> BotRuntime | None:
        return self._runtimes.get(bot_id)

    def all(self) -> list[BotRuntime]:
        return list(self._runtimes.values())

    def ids(self) -> list[str]:
        return list(self._runtimes.keys())
