"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class BotConfig(BaseModel):
    id: str
    platform: str = "telegram"  # "telegram" | "console"
    token: str = ""
    admins: list[str] = Field(default_factory=list)  # user ids that are always admins
    username: str = ""  # bot handle; Telegram fills it in at start when empty


class StorageConfig(BaseModel):
    backend: Literal["memory", "sqlite"] = "memory"
    db_path: str = "./data/botflow.db"


class SessionConfig(BaseModel):
    ttl_seconds: int = 3600
    scope_by_chat: bool = True
    purge_interval_seconds: int = 600  # 0 disables the background purge


class DedupConfig(BaseModel):
    strategy: Literal["window", "watermark"] = "window"
    window: int = Field(default=1000, ge=1)


class DispatcherConfig(BaseModel):
    max_conflict_retries: int = Field(default=3, ge=1)


class OutboundConfig(BaseModel):
    global_rate: float = 30.0  # messages/second across all chats
    global_burst: int = 30
    per_recipient_rate: float = 1.0  # messages/second per chat
    per_recipient_burst: int = 1
    max_retries: int = 5


class MessagesConfig(BaseModel):
    """User-facing texts for failures and escape commands."""

    error: str = "Something went wrong. Please try again, or send /cancel to start over."
    forbidden: str = "Sorry, you are not authorized to use this command."
    unknown_command: str = "Unknown command. Send /help to see what I can do."
    cancelled: str = "Cancelled. Send /help to see what I can do."
    nothing_to_cancel: str = "There is nothing to cancel."
    nothing_to_go_back_to: str = "There is no previous step to go back to."
    session_reset: str = "That conversation is no longer available. Let's start over: send /help."


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    bots: list[BotConfig]
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    outbound: OutboundConfig = Field(default_factory=OutboundConfig)
    messages: MessagesConfig = Field(default_factory=MessagesConfig)

    def bot(self, bot_id: str) -> Optional[BotConfig]:
        return next((b for b in self.bots if b.id == bot_id), None)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated)

    return AppConfig(**data)
