"""
Clocks and the fixed-interval scheduler that drives paper trading ticks.
"""
import asyncio
import heapq
import itertools
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional, Tuple

from paper_trader.config import logger


class Clock(ABC):
    """Source of the current time and of (possibly virtual) sleeping."""

    @abstractmethod
    def now(self) -> datetime:
        pass

    @abstractmethod
    async def sleep(self, seconds: float):
        pass


class SystemClock(Clock):
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float):
        await asyncio.sleep(seconds)


class ManualClock(Clock):
    """
    Virtual clock for deterministic runs.

    Time only moves when `advance()` is awaited. Sleepers whose wake-up time
    is reached are released in order, and the event loop is given a few
    iterations after each release so the woken coroutine can finish its work
    before time moves on.
    """

    def __init__(self, start: Optional[datetime] = None, settle_steps: int = 50):
        self._now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._sleepers: List[Tuple[datetime, int, asyncio.Future]] = []
        self._counter = itertools.count()
        self.settle_steps = settle_steps

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float):
        future = asyncio.get_running_loop().create_future()
        wake_at = self._now + timedelta(seconds=seconds)
        heapq.heappush(self._sleepers, (wake_at, next(self._counter), future))
        await future

    async def advance(self, delta: timedelta):
        """Move time forward, waking every sleeper due on the way."""
        target = self._now + delta
        await self._settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            wake_at, _, future = heapq.heappop(self._sleepers)
            self._now = max(self._now, wake_at)
            if not future.done():
                future.set_result(None)
            await self._settle()
        self._now = target
        await self._settle()

    async def _settle(self):
        for _ in range(self.settle_steps):
            await asyncio.sleep(0)


class IntervalScheduler:
    """
    Runs a coroutine callback every `interval` until stopped.

    A tick that is already running is never cancelled: `stop()` waits for it
    to finish. A failing tick is logged and the schedule continues.
    """

    def __init__(self, interval: timedelta, clock: Optional[Clock] = None):
        self.interval = interval
        self.clock = clock or SystemClock()
        self.tick_count = 0
        self._task: Optional[asyncio.Task] = None
        self._stopping = False
        self._in_tick = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, callback: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """Schedule the callback. The first run happens one interval from now."""
        if self.running:
            raise RuntimeError("Scheduler is already running")
        self._stopping = False
        self._task = asyncio.create_task(self._run(callback))
        logger.info(f"Scheduled ticks every {self.interval.total_seconds() / 60:.1f} minutes")
        return self._task

    async def _run(self, callback: Callable[[], Awaitable[None]]):
        while not self._stopping:
            await self.clock.sleep(self.interval.total_seconds())
            if self._stopping:
                break
            self._in_tick = True
            try:
                await callback()
                self.tick_count += 1
            except Exception as e:
                logger.error(f"Scheduled tick failed: {e}", exc_info=True)
            finally:
                self._in_tick = False

    async def stop(self):
        """Cancel the schedule at the next safe point."""
        self._stopping = True
        task = self._task
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            # Called from inside a tick: the loop exits once the tick returns
            return
        if self._in_tick:
            await task
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Scheduler stopped")
