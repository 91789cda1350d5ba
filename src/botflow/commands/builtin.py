"""Built-in commands and callbacks every bot gets."""

from __future__ import annotations

from botflow.commands.order import order_wizard
from botflow.conversation.callbacks import CallbackResolver
from botflow.conversation.engine import ConversationEngine
from botflow.core.context import HandlerContext

WELCOME_TEXT = "Hello! Welcome to my bot! 👋\n\nUse /help to see available commands."


async def start(ctx: HandlerContext) -> None:
    ctx.reply(WELCOME_TEXT)


async def echo(ctx: HandlerContext) -> None:
    if not ctx.args:
        ctx.reply("Usage: /echo <text>")
        return
    ctx.reply(f"You said: {ctx.args}")


async def echo_text(ctx: HandlerContext) -> None:
    ctx.reply(f"You said: {ctx.update.text.strip()}")


async def button_clicked(ctx: HandlerContext) -> None:
    ctx.answer_callback("Button clicked!")
    ctx.reply("You clicked the button! 🎉")


def register_builtin(engine: ConversationEngine, callbacks: CallbackResolver) -> None:
    registry = engine.registry
    registry.command("start", description="Start the bot")(start)
    registry.command("echo", description="Echo back your message")(echo)
    engine.add_wizard("order", order_wizard(), description="Place an order")
    engine.text_handler = echo_text
    callbacks.register("button_clicked", button_clicked)
