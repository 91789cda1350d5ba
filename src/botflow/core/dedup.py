"""Filter update ids that were already processed."""

from __future__ import annotations

import heapq

from botflow.log import get_logger

logger = get_logger(__name__)

STRATEGIES = ("window", "watermark")


class UpdateDeduplicator:
    """Tracks processed update ids for a single bot.

    ``window`` keeps the ``window`` highest recorded ids, so updates that
    arrive slightly out of order are still accepted. Ids that fell out of the
    window (at or below the eviction floor) are treated as seen.

    ``watermark`` only keeps the highest processed id and rejects anything at
    or below it, which assumes the transport delivers in order.
    """

    def __init__(self, strategy: str = "window", window: int = 1000):
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown dedup strategy: {strategy}")
        if window < 1:
            raise ValueError("Dedup window must be at least 1")
        self._strategy = strategy
        self._window = window
        self._recent: set[int] = set()
        self._heap: list[int] = []
        self._floor: int | None = None
        self._watermark: int | None = None

    @property
    def strategy(self) -> str:
        return self._strategy

    def seen(self, update_id: int) -> bool:
        if self._strategy == "watermark":
            return self._watermark is not None and update_id <= self._watermark
        if update_id in self._recent:
            return True
        return self._floor is not None and update_id <= self._floor

    def record(self, update_id: int) -> None:
        if self._watermark is None or update_id > self._watermark:
            self._watermark = update_id
        if self._strategy == "watermark" or self.seen(update_id):
            return

        self._recent.add(update_id)
        heapq.heappush(self._heap, update_id)
        while len(self._heap) > self._window:
            evicted = heapq.heappop(self._heap)
            self._recent.discard(evicted)
            self._floor = evicted
            logger.debug("dedup_evicted", update_id=evicted)
