"""CLI entry point for botflow."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from botflow.app import BotflowApp
from botflow.config import AppConfig, load_config
from botflow.core.errors import StorageUnavailable
from botflow.log import setup_logging
from botflow.messenger.console import ConsoleAdapter


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="botflow",
        description="Conversational command router with wizard flows for messaging bots",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # start command
    start_parser = subparsers.add_parser("start", help="Start the bots")
    _add_config_args(start_parser)

    # config-check command
    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    # replay command
    replay_parser = subparsers.add_parser(
        "replay", help="Feed a JSON-lines file of Bot API updates through a bot and print replies"
    )
    replay_parser.add_argument("updates", help="Path to the JSON-lines update file")
    replay_parser.add_argument("-b", "--bot", default=None, help="Bot id (defaults to the first bot)")
    _add_config_args(replay_parser)

    args = parser.parse_args(argv)

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "replay":
        _replay(args.config, args.env, args.updates, args.bot)
    elif args.command == "start":
        _run(args.config, args.env)


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and edit it first.", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Bots configured: {len(config.bots)}")
    for bot in config.bots:
        admins = ", ".join(bot.admins) or "(none)"
        print(f"    - {bot.id} ({bot.platform}) admins: {admins}")
    storage = config.storage.backend
    if storage == "sqlite":
        storage += f" ({config.storage.db_path})"
    print(f"  Storage: {storage}")
    print(f"  Session TTL: {config.sessions.ttl_seconds}s (scope by chat: {config.sessions.scope_by_chat})")
    print(f"  Dedup: {config.dedup.strategy} (window {config.dedup.window})")
    print(
        f"  Outbound: {config.outbound.global_rate}/s global, "
        f"{config.outbound.per_recipient_rate}/s per chat"
    )


def _replay(config_path: str, env_path: str, updates_path: str, bot_id: str | None) -> None:
    """Run recorded updates through the dispatcher and print the actions in order."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    bot_id = bot_id or config.bots[0].id
    if config.bot(bot_id) is None:
        print(f"Error: unknown bot '{bot_id}'", file=sys.stderr)
        sys.exit(1)
    if not Path(updates_path).is_file():
        print(f"Error: Updates file not found: {updates_path}", file=sys.stderr)
        sys.exit(1)

    # Replay prints replies itself, whatever platform the bot is configured for.
    config.bots = [config.bot(bot_id).model_copy(update={"platform": "console"})]

    async def _async_replay() -> None:
        app = BotflowApp(config)
        runtime = app.bot_registry.get(bot_id)
        adapter = runtime.adapter
        if not isinstance(adapter, ConsoleAdapter):
            raise TypeError(f"Replay needs a console adapter, got {type(adapter).__name__}")

        await app.open_storage()
        try:
            for update in adapter.read_updates(updates_path):
                actions = await runtime.dispatcher.handle(update)
                for action in actions:
                    await adapter.deliver(action)
        finally:
            if app.db is not None:
                await app.db.close()

    try:
        asyncio.run(_async_replay())
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except StorageUnavailable as e:
        print(f"Storage error: {e}", file=sys.stderr)
        sys.exit(1)


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the application."""
    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    async def _async_main() -> None:
        loop = asyncio.get_running_loop()
        stop_event = asyncio.Event()

        def _signal_handler() -> None:
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _signal_handler)
            except NotImplementedError:
                # Windows doesn't support add_signal_handler
                signal.signal(sig, lambda s, f: _signal_handler())

        app = BotflowApp(config)
        await app.start()
        try:
            await stop_event.wait()
        finally:
            await app.stop()

    asyncio.run(_async_main())


if __name__ == "__main__":
    main()
