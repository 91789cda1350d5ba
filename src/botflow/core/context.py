"""Context object handed to command, callback and completion handlers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from botflow.core.models import OutboundAction, Session, Update
from botflow.core.types import ActionMethod

if TYPE_CHECKING:
    from botflow.core.registry import CommandRegistry


@dataclass
class HandlerContext:
    """Collects the outbound actions a handler produces.

    Handlers never talk to the transport directly: they call ``reply`` /
    ``answer_callback`` and the dispatcher hands the collected actions to the
    outbound queue once the session write has been committed.
    """

    update: Update
    session: Optional[Session] = None
    args: str = ""
    registry: Optional[CommandRegistry] = None
    actions: list[OutboundAction] = field(default_factory=list)

    @property
    def chat_id(self) -> str:
        return self.update.chat_id or self.update.user_id or ""

    def reply(self, text: str, priority: int = 0, **options: Any) -> None:
        self.actions.append(
            OutboundAction(recipient=self.chat_id, text=text, options=options, priority=priority)
        )

    def answer_callback(self, text: str = "", show_alert: bool = False) -> None:
        if not self.update.callback_id:
            return
        self.actions.append(
            OutboundAction(
                recipient=self.chat_id,
                text=text,
                method=ActionMethod.ANSWER_CALLBACK,
                options={"callback_query_id": self.update.callback_id, "show_alert": show_alert},
                # Clients show a spinner until the query is answered.
                priority=1,
            )
        )


Handler = Callable[[HandlerContext], Awaitable[None]]
