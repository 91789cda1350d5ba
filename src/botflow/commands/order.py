"""Demo ordering wizard: product, then quantity."""

from __future__ import annotations

from typing import Any

from botflow.conversation.wizard import Step, Wizard, non_empty_text, positive_int
from botflow.core.context import HandlerContext


async def _order_placed(ctx: HandlerContext, data: dict[str, Any]) -> None:
    ctx.reply(f"Order placed: {data['quantity']} x {data['product']}. Thank you!")


def order_wizard() -> Wizard:
    return Wizard(
        name="order",
        steps=(
            Step(
                name="awaiting_product",
                field="product",
                prompt="What product?",
                validator=non_empty_text,
            ),
            Step(
                name="awaiting_quantity",
                field="quantity",
                prompt=lambda data: f"How many {data['product']} would you like?",
                validator=positive_int,
            ),
        ),
        on_complete=_order_placed,
    )
