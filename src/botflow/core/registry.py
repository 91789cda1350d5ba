"""Command registry with scope-aware resolution."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from botflow.core.context import Handler
from botflow.core.errors import CommandForbidden, CommandNotFound, DuplicateCommand
from botflow.core.models import Update
from botflow.core.types import ChatType, CommandScope
from botflow.log import get_logger

if TYPE_CHECKING:
    from botflow.conversation.wizard import Wizard

logger = get_logger(__name__)

IsAdmin = Callable[[str, str], Awaitable[bool]]

COMMAND_PATTERN = re.compile(r"^/(?P<name>[A-Za-z0-9_]+)(?:@(?P<target>\S+))?(?:\s+(?P<args>.*))?$", re.DOTALL)

# Most specific first; resolution walks this list and stops at the first match.
SCOPE_ORDER: tuple[CommandScope, ...] = tuple(CommandScope)


@dataclass(frozen=True, slots=True)
class CommandContext:
    """Where a command is being invoked from."""

    user_id: str
    chat_id: Optional[str] = None
    chat_type: ChatType = ChatType.PRIVATE

    @classmethod
    def from_update(cls, update: Update) -> CommandContext:
        return cls(user_id=update.user_id or "", chat_id=update.chat_id, chat_type=update.chat_type)


@dataclass(frozen=True, slots=True)
class CommandDefinition:
    name: str
    handler: Optional[Handler] = None
    wizard: Optional[Wizard] = None
    scope: CommandScope = CommandScope.DEFAULT
    chat_id: Optional[str] = None
    user_id: Optional[str] = None
    description: str = ""

    def __post_init__(self) -> None:
        if (self.handler is None) == (self.wizard is None):
            raise ValueError(f"Command /{self.name} needs exactly one of handler or wizard")
        if self.scope in (CommandScope.CHAT, CommandScope.CHAT_ADMINISTRATORS, CommandScope.CHAT_MEMBER):
            if self.chat_id is None:
                raise ValueError(f"Scope {self.scope} requires chat_id")
        if self.scope == CommandScope.CHAT_MEMBER and self.user_id is None:
            raise ValueError("Scope chat_member requires user_id")

    @property
    def binding(self) -> tuple[str, CommandScope, Optional[str], Optional[str]]:
        return (self.name, self.scope, self.chat_id, self.user_id)

    def applies_to(self, ctx: CommandContext) -> bool:
        match self.scope:
            case CommandScope.CHAT_MEMBER:
                return ctx.chat_id == self.chat_id and ctx.user_id == self.user_id
            case CommandScope.CHAT | CommandScope.CHAT_ADMINISTRATORS:
                return ctx.chat_id == self.chat_id
            case CommandScope.ALL_CHAT_ADMINISTRATORS | CommandScope.ALL_GROUP_CHATS:
                return ctx.chat_type.is_group
            case CommandScope.ALL_PRIVATE_CHATS:
                return ctx.chat_type == ChatType.PRIVATE
            case _:
                return True


def parse_command(text: str) -> tuple[str, str] | None:
    """Split ``/name[@bot] args`` into ``(name, args)``; None for plain text."""
    match = COMMAND_PATTERN.match(text.strip())
    if not match:
        return None
    return match.group("name").lower(), (match.group("args") or "").strip()


def addressed_to_other_bot(text: str, bot_username: str | None) -> bool:
    """True for ``/name@other_bot``. Without our own username every command counts as ours."""
    if not bot_username:
        return False
    match = COMMAND_PATTERN.match(text.strip())
    if not match or not match.group("target"):
        return False
    return match.group("target").lower() != bot_username.lstrip("@").lower()


async def _nobody_is_admin(chat_id: str, user_id: str) -> bool:
    return False


class CommandRegistry:
    """Maps command names to handlers or wizards, per scope."""

    def __init__(self, is_admin: IsAdmin | None = None):
        self._is_admin = is_admin or _nobody_is_admin
        self._commands: dict[str, list[CommandDefinition]] = {}

    def register(self, definition: CommandDefinition) -> None:
        name = definition.name.lower()
        if name != definition.name:
            raise ValueError(f"Command names must be lowercase: /{definition.name}")
        existing = self._commands.setdefault(name, [])
        if any(d.binding == definition.binding for d in existing):
            raise DuplicateCommand(f"/{name} already registered for scope {definition.scope}")
        existing.append(definition)
        existing.sort(key=lambda d: SCOPE_ORDER.index(d.scope))
        logger.info("command_registered", command=name, scope=str(definition.scope))

    def command(
        self,
        name: str,
        scope: CommandScope = CommandScope.DEFAULT,
        description: str = "",
        chat_id: str | None = None,
        user_id: str | None = None,
    ) -> Callable[[Handler], Handler]:
        """Decorator form of ``register`` for plain handlers."""

        def decorator(handler: Handler) -> Handler:
            self.register(
                CommandDefinition(
                    name=name,
                    handler=handler,
                    scope=scope,
                    chat_id=chat_id,
                    user_id=user_id,
                    description=description,
                )
            )
            return handler

        return decorator

    async def resolve(self, name: str, ctx: CommandContext) -> CommandDefinition:
        for definition in self._commands.get(name.lower(), []):
            if not definition.applies_to(ctx):
                continue
            if definition.scope.admin_only and not await self._check_admin(ctx):
                # An admin-scoped match never falls through to a broader scope.
                raise CommandForbidden(name, ctx.user_id)
            return definition
        raise CommandNotFound(name)

    async def visible_commands(self, ctx: CommandContext) -> list[CommandDefinition]:
        """Commands the user could invoke from this context, one per name."""
        visible: list[CommandDefinition] = []
        for name in sorted(self._commands):
            try:
                visible.append(await self.resolve(name, ctx))
            except (CommandNotFound, CommandForbidden):
                continue
        return visible

    def wizards(self) -> list[Wizard]:
        return [d.wizard for defs in self._commands.values() for d in defs if d.wizard is not None]

    async def _check_admin(self, ctx: CommandContext) -> bool:
        if ctx.chat_id is None:
            return False
        return await self._is_admin(ctx.chat_id, ctx.user_id)
