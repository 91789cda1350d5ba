"""Unit tests for the conversation engine and wizard definitions."""

import pytest

from botflow.commands.order import order_wizard
from botflow.config import MessagesConfig
from botflow.conversation.wizard import Step, Wizard, positive_int
from botflow.core.errors import DuplicateStep, SessionConflict
from botflow.core.registry import CommandDefinition
from botflow.core.types import ChatType, CommandScope

MESSAGES = MessagesConfig()


def _texts(actions):
    return [a.text for a in actions]


@pytest.fixture
def completed():
    return []


@pytest.fixture
def order_engine(engine, completed):
    async def on_complete(ctx, data):
        completed.append(data)
        ctx.reply(f"Done: {data['quantity']} x {data['product']}")

    wizard = Wizard(
        name="order",
        steps=order_wizard().steps,
        on_complete=on_complete,
    )
    engine.add_wizard("order", wizard, description="Place an order")
    return engine


async def _run(engine, key, message, *inputs):
    actions = []
    for text in inputs:
        actions = await engine.process(key, message(text))
    return actions


class TestOrderScenario:
    @pytest.mark.asyncio
    async def test_full_order_flow(self, order_engine, store, session_key, message, completed):
        actions = await order_engine.process(session_key, message("/order"))
        assert _texts(actions) == ["What product?"]
        session = await store.get(session_key)
        assert session.state == "awaiting_product"

        actions = await order_engine.process(session_key, message("Widget"))
        assert _texts(actions) == ["How many Widget would you like?"]
        session = await store.get(session_key)
        assert session.state == "awaiting_quantity"
        assert session.data == {"product": "Widget"}

        actions = await order_engine.process(session_key, message("abc"))
        assert _texts(actions) == ["Please send a whole number, e.g. 3."]
        session = await store.get(session_key)
        assert session.state == "awaiting_quantity"
        assert session.data == {"product": "Widget"}

        actions = await order_engine.process(session_key, message("3"))
        assert _texts(actions) == ["Done: 3 x Widget"]
        assert completed == [{"product": "Widget", "quantity": 3}]
        session = await store.get(session_key)
        assert session.state == "idle"
        assert session.data == {}

    @pytest.mark.asyncio
    async def test_actions_address_the_chat(self, order_engine, session_key, message):
        actions = await order_engine.process(
            session_key, message("/order", chat_id="-100", chat_type=ChatType.GROUP)
        )
        assert actions[0].recipient == "-100"


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_input", ["abc", "0", "-2", "", "3.5"])
    async def test_invalid_input_keeps_state_and_data(self, order_engine, store, session_key, message, bad_input):
        await _run(order_engine, session_key, message, "/order", "Widget")
        before = await store.get(session_key)

        actions = await order_engine.process(session_key, message(bad_input))

        after = await store.get(session_key)
        assert len(actions) == 1
        assert after.state == before.state == "awaiting_quantity"
        assert after.data == before.data

    @pytest.mark.asyncio
    async def test_repeated_bad_input_is_idempotent(self, order_engine, store, session_key, message):
        await _run(order_engine, session_key, message, "/order", "Widget")
        first = await order_engine.process(session_key, message("abc"))
        second = await order_engine.process(session_key, message("abc"))
        assert _texts(first) == _texts(second)
        assert (await store.get(session_key)).state == "awaiting_quantity"

    def test_positive_int_transforms(self):
        assert positive_int(" 12 ", {}) == 12


class TestEscapeCommands:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("steps", [["/order"], ["/order", "Widget"]])
    async def test_cancel_from_any_state(self, order_engine, store, session_key, message, steps):
        await _run(order_engine, session_key, message, *steps)

        actions = await order_engine.process(session_key, message("/cancel"))

        session = await store.get(session_key)
        assert session.state == "idle"
        assert session.data == {}
        assert session.history == []
        assert _texts(actions) == [MESSAGES.cancelled]

    @pytest.mark.asyncio
    async def test_cancel_from_unknown_state(self, order_engine, store, session_key, message):
        session = await store.get(session_key)
        session.state = "retired_step"
        session.data = {"x": 1}
        await store.put(session_key, session, expected_version=0)

        await order_engine.process(session_key, message("/cancel"))
        session = await store.get(session_key)
        assert session.state == "idle"
        assert session.data == {}

    @pytest.mark.asyncio
    async def test_cancel_when_idle(self, order_engine, session_key, message):
        actions = await order_engine.process(session_key, message("/cancel"))
        assert _texts(actions) == [MESSAGES.nothing_to_cancel]

    @pytest.mark.asyncio
    async def test_cancel_is_not_consumed_as_step_input(self, order_engine, store, session_key, message, completed):
        await _run(order_engine, session_key, message, "/order")
        await order_engine.process(session_key, message("/CANCEL@demo_bot"))
        assert (await store.get(session_key)).data == {}
        assert completed == []

    @pytest.mark.asyncio
    async def test_back_returns_to_previous_step(self, order_engine, store, session_key, message):
        await _run(order_engine, session_key, message, "/order", "Widget")

        actions = await order_engine.process(session_key, message("/back"))

        session = await store.get(session_key)
        assert session.state == "awaiting_product"
        assert session.data == {}
        assert _texts(actions) == ["What product?"]

    @pytest.mark.asyncio
    async def test_back_on_first_step(self, order_engine, store, session_key, message):
        await _run(order_engine, session_key, message, "/order")

        actions = await order_engine.process(session_key, message("/back"))

        assert (await store.get(session_key)).state == "awaiting_product"
        assert _texts(actions) == [MESSAGES.nothing_to_go_back_to, "What product?"]

    @pytest.mark.asyncio
    async def test_help_mid_wizard_reprompts(self, order_engine, store, session_key, message):
        await _run(order_engine, session_key, message, "/order", "Widget")

        actions = await order_engine.process(session_key, message("/help"))

        texts = _texts(actions)
        assert texts[0].startswith("Available commands:")
        assert "/order - Place an order" in texts[0]
        assert texts[-1] == "How many Widget would you like?"
        session = await store.get(session_key)
        assert session.state == "awaiting_quantity"
        assert session.data == {"product": "Widget"}

    @pytest.mark.asyncio
    async def test_custom_help_handler(self, order_engine, session_key, message):
        async def help_handler(ctx):
            ctx.reply("custom help")

        order_engine.help_handler = help_handler
        actions = await order_engine.process(session_key, message("/help"))
        assert _texts(actions) == ["custom help"]


class TestIdleRouting:
    @pytest.mark.asyncio
    async def test_unknown_command(self, engine, session_key, message):
        actions = await engine.process(session_key, message("/nope"))
        assert _texts(actions) == [MESSAGES.unknown_command]

    @pytest.mark.asyncio
    async def test_forbidden_command_replies_not_authorized(self, engine, registry, session_key, message):
        async def ban(ctx):
            ctx.reply("banned")

        registry.register(CommandDefinition(name="ban", handler=ban, scope=CommandScope.ALL_CHAT_ADMINISTRATORS))
        actions = await engine.process(session_key, message("/ban", chat_id="-100", chat_type=ChatType.GROUP))
        assert _texts(actions) == [MESSAGES.forbidden]

    @pytest.mark.asyncio
    async def test_admin_may_run_admin_command(self, engine, registry, admins, session_key, message):
        async def ban(ctx):
            ctx.reply(f"banned {ctx.args}")

        admins.add(("-100", "42"))
        registry.register(CommandDefinition(name="ban", handler=ban, scope=CommandScope.ALL_CHAT_ADMINISTRATORS))
        actions = await engine.process(
            session_key, message("/ban spammer", chat_id="-100", chat_type=ChatType.GROUP)
        )
        assert _texts(actions) == ["banned spammer"]

    @pytest.mark.asyncio
    async def test_plain_text_without_fallback_is_silent(self, engine, session_key, message):
        assert await engine.process(session_key, message("hello")) == []

    @pytest.mark.asyncio
    async def test_handler_may_change_session(self, engine, registry, store, session_key, message):
        async def remember(ctx):
            ctx.session.data["note"] = ctx.args

        registry.register(CommandDefinition(name="remember", handler=remember))
        await engine.process(session_key, message("/remember milk"))
        assert (await store.get(session_key)).data == {"note": "milk"}


class TestStaleState:
    @pytest.mark.asyncio
    async def test_unknown_state_resets_to_idle(self, engine, store, session_key, message):
        session = await store.get(session_key)
        session.state = "retired_step"
        await store.put(session_key, session, expected_version=0)

        actions = await engine.process(session_key, message("anything"))
        assert _texts(actions) == [MESSAGES.session_reset]
        assert (await store.get(session_key)).state == "idle"


class TestWizardRegistration:
    def test_step_names_must_be_unique_across_wizards(self, engine):
        async def done(ctx, data):
            pass

        engine.add_wizard("order", order_wizard())
        clash = Wizard(name="other", steps=(Step("awaiting_product", "x", "?"),), on_complete=done)
        with pytest.raises(DuplicateStep):
            engine.add_wizard("other", clash)

    def test_idle_is_reserved(self):
        async def done(ctx, data):
            pass

        with pytest.raises(ValueError):
            Wizard(name="bad", steps=(Step("idle", "x", "?"),), on_complete=done)

    def test_wizard_needs_steps(self):
        async def done(ctx, data):
            pass

        with pytest.raises(ValueError):
            Wizard(name="empty", steps=(), on_complete=done)

    @pytest.mark.asyncio
    async def test_wizard_registered_directly_on_registry(self, engine, registry, store, session_key, message):
        registry.register(CommandDefinition(name="order", wizard=order_wizard()))
        await engine.process(session_key, message("/order"))
        await engine.process(session_key, message("Widget"))
        assert (await store.get(session_key)).state == "awaiting_quantity"


class TestConflicts:
    @pytest.mark.asyncio
    async def test_conflict_discards_effects(self, engine, registry, store, session_key, message):
        async def racy(ctx):
            # Another writer commits while this handler runs.
            other = await store.get(session_key)
            other.data["other"] = True
            await store.put(session_key, other, expected_version=other.version)
            ctx.session.data["mine"] = True
            ctx.reply("should not leak")

        registry.register(CommandDefinition(name="racy", handler=racy))
        with pytest.raises(SessionConflict):
            await engine.process(session_key, message("/racy"))

        assert (await store.get(session_key)).data == {"other": True}


class TestAddressedCommands:
    @pytest.mark.asyncio
    async def test_command_for_other_bot_is_ignored(self, order_engine, store, session_key, message):
        order_engine.bot_username = "demo_bot"
        await order_engine.process(session_key, message("/order"))
        before = await store.get(session_key)

        actions = await order_engine.process(
            session_key, message("/cancel@OtherBot", chat_id="-100", chat_type=ChatType.GROUP)
        )

        assert actions == []
        after = await store.get(session_key)
        assert after.state == "awaiting_product"
        assert after.version == before.version

    @pytest.mark.asyncio
    async def test_command_for_this_bot_runs(self, order_engine, session_key, message):
        order_engine.bot_username = "demo_bot"
        actions = await order_engine.process(session_key, message("/order@Demo_Bot"))
        assert _texts(actions) == ["What product?"]

    @pytest.mark.asyncio
    async def test_target_ignored_until_username_known(self, order_engine, session_key, message):
        actions = await order_engine.process(session_key, message("/order@OtherBot"))
        assert _texts(actions) == ["What product?"]
