"""Fixed-interval background tasks that can be started, stopped and stepped."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """
    Runs ``func`` every ``interval`` seconds on the event loop.

    ``run_once`` performs a single step without the timer, so callers and
    tests can drive the work synchronously. An exception from one step is
    logged and the next step still runs.
    """

    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[Any]]):
        self.name = name
        self.interval = interval
        self.func = func
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        return await self.func()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(f"{self.name} started (every {self.interval}s)")

    async def stop(self) -> None:
        if not self._task:
            return
        self._stopping.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.interval + 5)
        except asyncio.TimeoutError:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info(f"{self.name} stopped")

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.func()
            except Exception as e:
                # Keep running even if one step fails, e.g. on temporary RPC issues
                logger.error(f"{self.name} step failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
