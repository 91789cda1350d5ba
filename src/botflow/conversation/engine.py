"""Conversation engine: drives commands and multi-step wizards per session."""

from __future__ import annotations

from typing import Optional

from botflow.config import MessagesConfig
from botflow.conversation.wizard import Step, Wizard
from botflow.core.context import Handler, HandlerContext
from botflow.core.errors import CommandForbidden, CommandNotFound, DuplicateStep, ValidationFailed
from botflow.core.models import OutboundAction, SessionKey, Update
from botflow.core.registry import (
    CommandContext,
    CommandDefinition,
    CommandRegistry,
    addressed_to_other_bot,
    parse_command,
)
from botflow.core.session import SessionStore
from botflow.core.types import CommandScope
from botflow.log import get_logger

logger = get_logger(__name__)

ESCAPE_COMMANDS = frozenset({"cancel", "back", "help"})


class ConversationEngine:
    """Turns one message update into outbound actions and a session commit.

    Commands addressed to another bot (``/start@other_bot``) are ignored
    without touching the session once ``bot_username`` is known.
    Escape commands (``/cancel``, ``/back``, ``/help``) are checked before
    anything else in every state. Idle sessions route through the command
    registry; sessions parked on a wizard step feed the text to that step's
    validator. The session is written back with the version that was read,
    so a concurrent writer makes ``process`` raise ``SessionConflict`` and
    none of this attempt's actions leak out.
    """

    def __init__(
        self,
        store: SessionStore,
        registry: CommandRegistry,
        messages: MessagesConfig | None = None,
        help_handler: Handler | None = None,
        text_handler: Handler | None = None,
        bot_username: str | None = None,
    ):
        self._store = store
        self._registry = registry
        self._messages = messages or MessagesConfig()
        self.help_handler = help_handler or self.default_help
        self.text_handler = text_handler
        self.bot_username = bot_username
        self._steps: dict[str, tuple[Wizard, Step]] = {}

    @property
    def registry(self) -> CommandRegistry:
        return self._registry

    def add_wizard(
        self,
        command: str,
        wizard: Wizard,
        scope: CommandScope = CommandScope.DEFAULT,
        description: str = "",
    ) -> None:
        """Register ``/command`` as the entry point of ``wizard``."""
        self._index(wizard)
        self._registry.register(
            CommandDefinition(name=command, wizard=wizard, scope=scope, description=description)
        )

    async def process(self, key: SessionKey, update: Update) -> list[OutboundAction]:
        if addressed_to_other_bot(update.text, self.bot_username):
            logger.debug("command_for_other_bot", key=str(key), text=update.text)
            return []

        session = await self._store.get(key)
        expected_version = session.version
        state_before = session.state

        ctx = HandlerContext(update=update, session=session, registry=self._registry)
        await self._route(ctx)

        committed = await self._store.put(key, session, expected_version)
        logger.debug(
            "session_committed",
            key=str(key),
            state_from=state_before,
            state_to=committed.state,
            version=committed.version,
        )
        return ctx.actions

    async def default_help(self, ctx: HandlerContext) -> None:
        lines = ["Available commands:"]
        for definition in await self._registry.visible_commands(CommandContext.from_update(ctx.update)):
            suffix = f" - {definition.description}" if definition.description else ""
            lines.append(f"/{definition.name}{suffix}")
        lines.append("/help - Show this help message")
        lines.append("/cancel - Abort the current conversation")
        lines.append("/back - Return to the previous step")
        ctx.reply("\n".join(lines))

    async def _route(self, ctx: HandlerContext) -> None:
        session = ctx.session
        text = ctx.update.text.strip()
        command = parse_command(text)

        if command is not None and command[0] in ESCAPE_COMMANDS:
            await self._escape(ctx, command[0])
        elif session.is_idle:
            await self._idle(ctx, text, command)
        else:
            await self._advance(ctx, text)

    async def _escape(self, ctx: HandlerContext, name: str) -> None:
        session = ctx.session
        match name:
            case "cancel":
                if session.is_idle:
                    ctx.reply(self._messages.nothing_to_cancel)
                    return
                logger.info("conversation_cancelled", key=str(session.key), state=session.state)
                session.reset()
                ctx.reply(self._messages.cancelled)
            case "back":
                await self._back(ctx)
            case "help":
                await self.help_handler(ctx)
                located = self._locate(session.state)
                if located is not None:
                    ctx.reply(located[1].render_prompt(session.data))

    async def _idle(self, ctx: HandlerContext, text: str, command: tuple[str, str] | None) -> None:
        if command is None:
            if self.text_handler is not None and text:
                await self.text_handler(ctx)
            return

        name, args = command
        try:
            definition = await self._registry.resolve(name, CommandContext.from_update(ctx.update))
        except CommandForbidden:
            logger.warning(
                "command_forbidden",
                command=name,
                user_id=ctx.update.user_id,
                chat_id=ctx.update.chat_id,
            )
            ctx.reply(self._messages.forbidden)
            return
        except CommandNotFound:
            ctx.reply(self._messages.unknown_command)
            return

        ctx.args = args
        if definition.wizard is not None:
            self._start(ctx, definition.wizard)
        else:
            await definition.handler(ctx)

    def _start(self, ctx: HandlerContext, wizard: Wizard) -> None:
        self._index(wizard)
        session = ctx.session
        session.reset()
        session.state = wizard.first.name
        logger.info("wizard_started", wizard=wizard.name, key=str(session.key))
        ctx.reply(wizard.first.render_prompt(session.data))

    async def _advance(self, ctx: HandlerContext, text: str) -> None:
        session = ctx.session
        located = self._locate(session.state)
        if located is None:
            logger.warning("session_state_unknown", key=str(session.key), state=session.state)
            session.reset()
            ctx.reply(self._messages.session_reset)
            return

        wizard, step = located
        try:
            value = step.validate(text, dict(session.data))
        except ValidationFailed as e:
            ctx.reply(e.message)
            return

        session.data[step.field] = value
        following = wizard.next_step(step.name)
        if following is not None:
            session.history.append(step.name)
            session.state = following.name
            ctx.reply(following.render_prompt(session.data))
            return

        collected = dict(session.data)
        session.reset()
        logger.info("wizard_completed", wizard=wizard.name, key=str(session.key))
        await wizard.on_complete(ctx, collected)

    async def _back(self, ctx: HandlerContext) -> None:
        session = ctx.session
        located = self._locate(session.state)
        if located is None:
            ctx.reply(self._messages.nothing_to_go_back_to)
            return

        wizard, current = located
        if not session.history:
            ctx.reply(self._messages.nothing_to_go_back_to)
            ctx.reply(current.render_prompt(session.data))
            return

        previous = wizard.step(session.history.pop())
        session.data.pop(previous.field, None)
        session.state = previous.name
        ctx.reply(previous.render_prompt(session.data))

    def _index(self, wizard: Wizard) -> None:
        for step in wizard.steps:
            owner = self._steps.get(step.name)
            if owner is not None and owner[0] is not wizard:
                raise DuplicateStep(
                    f"Step '{step.name}' of wizard {wizard.name} is already used by {owner[0].name}"
                )
        for step in wizard.steps:
            self._steps[step.name] = (wizard, step)

    def _locate(self, state: str) -> Optional[tuple[Wizard, Step]]:
        if state not in self._steps:
            # Wizards registered on the registry directly are indexed on first sight.
            for wizard in self._registry.wizards():
                self._index(wizard)
        return self._steps.get(state)
