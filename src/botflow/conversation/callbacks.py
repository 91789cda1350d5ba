"""Stateless resolver for button-press callbacks."""

from __future__ import annotations

from typing import Callable

from botflow.core.context import Handler, HandlerContext
from botflow.core.errors import DuplicateCommand
from botflow.core.models import OutboundAction, Update
from botflow.log import get_logger

logger = get_logger(__name__)

TOKEN_SEPARATOR = ":"


def split_token(data: str) -> tuple[str, str]:
    """``"vote:42"`` -> ``("vote", "42")``; a bare token has empty args."""
    action, _, args = data.partition(TOKEN_SEPARATOR)
    return action.strip(), args.strip()


class CallbackResolver:
    """Matches the action token of ``callback_data`` to a handler.

    Callback handlers get no session: they only see the update and the
    token arguments. Every callback query is answered, an unknown token gets
    an empty acknowledgement so the client stops waiting.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, action: str, handler: Handler) -> None:
        if action in self._handlers:
            raise DuplicateCommand(f"Callback action '{action}' already registered")
        self._handlers[action] = handler

    def action(self, name: str) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            self.register(name, handler)
            return handler

        return decorator

    async def resolve(self, update: Update) -> list[OutboundAction]:
        action, args = split_token(update.callback_data or "")
        ctx = HandlerContext(update=update, args=args)
        handler = self._handlers.get(action)
        if handler is None:
            logger.info("callback_unknown", action=action, update_id=update.update_id)
            ctx.answer_callback()
            return ctx.actions

        await handler(ctx)
        return ctx.actions
