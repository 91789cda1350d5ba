"""Console adapter: reads Bot API updates from JSON lines and prints actions."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Iterator, TextIO

from botflow.config import BotConfig
from botflow.core.models import OutboundAction, Update
from botflow.core.types import ActionMethod, Platform
from botflow.log import get_logger
from botflow.messenger.base import MessengerAdapter
from botflow.messenger.telegram import parse_update

logger = get_logger(__name__)


class ConsoleAdapter(MessengerAdapter):
    """Offline shell used for replaying recorded updates."""

    def __init__(self, bot_id: str, config: BotConfig, out: TextIO | None = None):
        super().__init__(bot_id, config)
        self._out = out

    @property
    def platform_name(self) -> str:
        return Platform.CONSOLE

    async def start(self) -> None:
        logger.info("console_adapter_started", bot_id=self.bot_id)

    async def stop(self) -> None:
        logger.info("console_adapter_stopped", bot_id=self.bot_id)

    async def deliver(self, action: OutboundAction) -> None:
        out = self._out or sys.stdout
        if action.method == ActionMethod.ANSWER_CALLBACK:
            print(f"[{action.recipient}] (callback answered) {action.text}".rstrip(), file=out)
        else:
            print(f"[{action.recipient}] {action.text}", file=out)

    def read_updates(self, path: str | Path) -> Iterator[Update]:
        """Yield updates from a file holding one Bot API update object per line."""
        with open(path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                try:
                    update = parse_update(self.bot_id, json.loads(line))
                except ValueError as e:
                    logger.warning("replay_line_invalid", line=line_no, error=str(e))
                    continue
                yield update
