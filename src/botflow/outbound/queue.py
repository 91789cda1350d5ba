"""Rate-aware outbound action queue."""

from __future__ import annotations

import asyncio
import inspect
import itertools
import time
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Iterable, Optional

from botflow.config import OutboundConfig
from botflow.core.errors import DeliveryFailed, DeliveryThrottled
from botflow.core.models import OutboundAction
from botflow.log import get_logger
from botflow.outbound.buckets import TokenBucket
from botflow.services.base import Service

logger = get_logger(__name__)

Deliver = Callable[[OutboundAction], Awaitable[None]]
OnFailure = Callable[[OutboundAction, Exception], Any]


@dataclass
class _Lane:
    """Per-recipient FIFO. The head stays queued until its send resolves."""

    bucket: TokenBucket
    pending: deque[tuple[int, OutboundAction]] = field(default_factory=deque)
    paused_until: float = 0.0
    in_flight: bool = False


class OutboundQueue(Service):
    """Delivers actions under a global and a per-recipient token bucket.

    Each recipient has its own lane with at most one send in flight, so
    actions to the same chat are never reordered. Across recipients the ready
    head with the highest priority goes first, then enqueue order.

    ``DeliveryThrottled`` pauses only the affected recipient for
    ``retry_after`` seconds and keeps the action at the head of its lane.
    ``DeliveryFailed`` drops the action after reporting it once. Any other
    error is retried with exponential backoff up to ``max_retries`` times.
    """

    def __init__(
        self,
        deliver: Deliver,
        global_rate: float = 30.0,
        global_burst: int = 30,
        per_recipient_rate: float = 1.0,
        per_recipient_burst: int = 1,
        max_retries: int = 5,
        backoff_base: float = 0.5,
        on_failure: OnFailure | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._deliver = deliver
        self._clock = clock
        self._global = TokenBucket(global_rate, global_burst, clock)
        self._per_recipient_rate = per_recipient_rate
        self._per_recipient_burst = per_recipient_burst
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._on_failure = on_failure

        self._lanes: dict[str, _Lane] = {}
        self._seq = itertools.count()
        self._sends: set[asyncio.Task[None]] = set()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._runner: Optional[asyncio.Task[None]] = None

    @classmethod
    def from_config(
        cls, deliver: Deliver, config: OutboundConfig, on_failure: OnFailure | None = None
    ) -> OutboundQueue:
        return cls(
            deliver,
            global_rate=config.global_rate,
            global_burst=config.global_burst,
            per_recipient_rate=config.per_recipient_rate,
            per_recipient_burst=config.per_recipient_burst,
            max_retries=config.max_retries,
            on_failure=on_failure,
        )

    @property
    def service_name(self) -> str:
        return "outbound_queue"

    def enqueue(self, actions: Iterable[OutboundAction]) -> None:
        added = 0
        for action in actions:
            lane = self._lanes.get(action.recipient)
            if lane is None:
                lane = _Lane(TokenBucket(self._per_recipient_rate, self._per_recipient_burst, self._clock))
                self._lanes[action.recipient] = lane
            lane.pending.append((next(self._seq), action))
            added += 1
        if added:
            self._idle.clear()
            self._wakeup.set()

    def pending(self, recipient: str | None = None) -> int:
        if recipient is not None:
            lane = self._lanes.get(recipient)
            return len(lane.pending) if lane else 0
        return sum(len(lane.pending) for lane in self._lanes.values())

    async def start(self) -> None:
        if self._runner is None:
            self._runner = asyncio.create_task(self._run(), name=self.service_name)
            logger.info("outbound_queue_started")

    async def stop(self) -> None:
        if self._runner is None:
            return
        self._runner.cancel()
        for task in list(self._sends):
            task.cancel()
        await asyncio.gather(self._runner, *self._sends, return_exceptions=True)
        self._runner = None
        logger.info("outbound_queue_stopped", undelivered=self.pending())

    async def join(self) -> None:
        """Wait until every queued action was delivered or dropped."""
        await self._idle.wait()

    async def health_check(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def _run(self) -> None:
        while True:
            self._wakeup.clear()
            delay = self._dispatch_ready()
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def _dispatch_ready(self) -> float | None:
        """Start every send that both buckets allow now; return seconds until the next one."""
        now = self._clock()
        ready: list[tuple[int, int, str]] = []
        next_wake: float | None = None

        for recipient, lane in list(self._lanes.items()):
            if lane.in_flight:
                continue
            if not lane.pending:
                if lane.paused_until <= now and lane.bucket.is_full(now):
                    del self._lanes[recipient]
                continue
            seq, action = lane.pending[0]
            ready_at = max(lane.paused_until, action.not_before, now + lane.bucket.wait_time(now))
            if ready_at > now:
                next_wake = _earliest(next_wake, ready_at - now)
            else:
                ready.append((-action.priority, seq, recipient))

        for _, _, recipient in sorted(ready):
            global_wait = self._global.wait_time(now)
            if global_wait > 0:
                next_wake = _earliest(next_wake, global_wait)
                break
            lane = self._lanes[recipient]
            self._global.consume(now)
            lane.bucket.consume(now)
            lane.in_flight = True
            task = asyncio.create_task(self._send(recipient, lane))
            self._sends.add(task)
            task.add_done_callback(self._sends.discard)

        return next_wake

    async def _send(self, recipient: str, lane: _Lane) -> None:
        seq, action = lane.pending[0]
        try:
            await self._deliver(action)
        except DeliveryThrottled as e:
            lane.paused_until = self._clock() + e.retry_after
            lane.pending[0] = (seq, replace(action, attempts=action.attempts + 1))
            logger.warning("delivery_throttled", recipient=recipient, retry_after=e.retry_after)
        except DeliveryFailed as e:
            lane.pending.popleft()
            logger.error("delivery_failed", recipient=recipient, method=str(action.method), error=str(e))
            await self._report(action, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            attempts = action.attempts + 1
            if attempts > self._max_retries:
                lane.pending.popleft()
                logger.error("delivery_gave_up", recipient=recipient, attempts=attempts, error=str(e))
                await self._report(action, e)
            else:
                delay = self._backoff_base * 2 ** (attempts - 1)
                lane.pending[0] = (
                    seq,
                    replace(action, attempts=attempts, not_before=self._clock() + delay),
                )
                logger.warning("delivery_retry", recipient=recipient, attempts=attempts, delay=delay, error=str(e))
        else:
            lane.pending.popleft()
        finally:
            lane.in_flight = False
            if not any(other.pending or other.in_flight for other in self._lanes.values()):
                self._idle.set()
            self._wakeup.set()

    async def _report(self, action: OutboundAction, error: Exception) -> None:
        if self._on_failure is None:
            return
        result = self._on_failure(action, error)
        if inspect.isawaitable(result):
            await result


def _earliest(current: float | None, candidate: float) -> float:
    return candidate if current is None else min(current, candidate)
