"""Error taxonomy of the conversational core.

Only ``StorageUnavailable`` (and its subclass ``ConflictRetriesExhausted``)
is meant to cross the library boundary; everything else is turned into a
regular outbound reply by the engine or dispatcher.
"""

from __future__ import annotations


class BotflowError(Exception):
    """Base class for all botflow errors."""


class StorageUnavailable(BotflowError):
    """The session backend could not be reached. Retryable."""


class SessionConflict(BotflowError):
    """Another writer committed the session since it was read."""

    def __init__(self, key: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Session {key} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


class ConflictRetriesExhausted(StorageUnavailable):
    """Session conflicts persisted past the retry budget."""


class DuplicateCommand(BotflowError):
    pass


class DuplicateStep(BotflowError):
    pass


class CommandNotFound(BotflowError):
    def __init__(self, name: str):
        super().__init__(f"Unknown command: /{name}")
        self.name = name


class CommandForbidden(BotflowError):
    def __init__(self, name: str, user_id: str | None):
        super().__init__(f"User {user_id} may not run /{name}")
        self.name = name
        self.user_id = user_id


class ValidationFailed(BotflowError):
    """Raised by step validators; the message is shown to the user."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DeliveryThrottled(BotflowError):
    """The transport asked us to back off for ``retry_after`` seconds."""

    def __init__(self, retry_after: float):
        super().__init__(f"Throttled, retry after {retry_after}s")
        self.retry_after = retry_after


class DeliveryFailed(BotflowError):
    """Permanent delivery failure (recipient blocked the bot, chat gone, ...)."""
