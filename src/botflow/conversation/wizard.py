"""Wizard definitions: ordered steps that collect fields into the session."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Union

from botflow.core.context import HandlerContext
from botflow.core.errors import ValidationFailed
from botflow.core.types import IDLE_STATE

Validator = Callable[[str, dict[str, Any]], Any]
Prompt = Union[str, Callable[[dict[str, Any]], str]]
Completion = Callable[[HandlerContext, dict[str, Any]], Awaitable[None]]


def non_empty_text(raw: str, data: dict[str, Any]) -> str:
    value = raw.strip()
    if not value:
        raise ValidationFailed("Please send a non-empty text message.")
    return value


def positive_int(raw: str, data: dict[str, Any]) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValidationFailed("Please send a whole number, e.g. 3.") from None
    if value <= 0:
        raise ValidationFailed("The number must be greater than zero.")
    return value


@dataclass(frozen=True)
class Step:
    """One wizard position. ``name`` is also the session state while waiting here."""

    name: str
    field: str
    prompt: Prompt
    validator: Validator = non_empty_text

    def render_prompt(self, data: dict[str, Any]) -> str:
        if callable(self.prompt):
            return self.prompt(data)
        return self.prompt

    def validate(self, raw: str, data: dict[str, Any]) -> Any:
        """Return the transformed value or raise ``ValidationFailed``."""
        return self.validator(raw, data)


@dataclass(frozen=True)
class Wizard:
    name: str
    steps: tuple[Step, ...]
    on_complete: Completion

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError(f"Wizard {self.name} has no steps")
        names = [s.name for s in self.steps]
        if len(set(names)) != len(names):
            raise ValueError(f"Wizard {self.name} repeats a step name")
        if IDLE_STATE in names:
            raise ValueError(f"'{IDLE_STATE}' is reserved and cannot be a step name")

    @property
    def first(self) -> Step:
        return self.steps[0]

    def step(self, name: str) -> Optional[Step]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def next_step(self, name: str) -> Optional[Step]:
        """The step after ``name``, or None when ``name`` is the last one."""
        names = [s.name for s in self.steps]
        index = names.index(name)
        if index + 1 < len(self.steps):
            return self.steps[index + 1]
        return None
