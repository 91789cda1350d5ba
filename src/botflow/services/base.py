"""Background service lifecycle: the abstract interface plus a periodic runner."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from botflow.log import get_logger

logger = get_logger(__name__)


class Service(ABC):
    """Anything the app starts after wiring and stops on shutdown."""

    @property
    @abstractmethod
    def service_name(self) -> str:
        ...

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        ...


class PeriodicService(Service):
    """Runs ``tick`` every ``interval`` seconds until stopped.

    A failing tick is logged and the loop keeps going; the next tick gets a
    fresh chance.
    """

    def __init__(self, interval: float):
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @abstractmethod
    async def tick(self) -> None:
        ...

    async def start(self) -> None:
        if self._task is not None or self.interval <= 0:
            return
        self._task = asyncio.create_task(self._loop(), name=self.service_name)
        logger.info("service_started", service=self.service_name, interval=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("service_stopped", service=self.service_name)

    async def health_check(self) -> bool:
        if self.interval <= 0:
            return True
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                logger.error("service_tick_failed", service=self.service_name, error=str(e))
