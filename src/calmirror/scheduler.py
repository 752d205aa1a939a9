"""Runs sync passes on a fixed interval without ever overlapping them."""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import pytz

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SchedulerLoop:
    """Idle/Running state machine around a pass coroutine.

    A pass starts immediately when the loop starts and then on every timer
    tick. A tick that arrives while a pass is still running is dropped. The
    loop returns to Idle after every pass, whether it succeeded or raised.
    """

    def __init__(
        self,
        run_pass: Callable[[], Awaitable[Any]],
        interval_seconds: float,
        max_runs: Optional[int] = None,
        on_result: Optional[Callable[[Any], None]] = None,
    ):
        """Initialize scheduler loop.

        Args:
            run_pass: Coroutine function executing one full pass
            interval_seconds: Time between timer ticks
            max_runs: Stop after this many passes (runs forever when None)
            on_result: Called with the return value of each successful pass
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.run_pass = run_pass
        self.interval_seconds = interval_seconds
        self.max_runs = max_runs
        self.on_result = on_result

        self.state = SchedulerState.IDLE
        self.runs_started = 0
        self.runs_failed = 0
        self.dropped_ticks = 0
        self.last_run_at: Optional[datetime] = None
        self.last_result: Any = None
        self.last_error: Optional[str] = None

        self._current: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()
        self.logger = logger.getChild('scheduler')

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    def trigger(self) -> bool:
        """Start a pass unless one is already running.

        Returns:
            True if a pass was started, False if the trigger was dropped
        """
        if self.state == SchedulerState.RUNNING:
            self.dropped_ticks += 1
            self.logger.warning("Previous sync still running, skipping this tick")
            return False
        if self._limit_reached():
            return False

        self.state = SchedulerState.RUNNING
        self.runs_started += 1
        self._current = asyncio.create_task(self._execute())
        return True

    async def _execute(self) -> None:
        try:
            result = await self.run_pass()
            self.last_result = result
            self.last_error = None
            if self.on_result is not None:
                self.on_result(result)
        except Exception as e:
            self.runs_failed += 1
            self.last_error = str(e)
            self.logger.exception(f"Sync run {self.runs_started} failed: {e}")
        finally:
            self.last_run_at = datetime.now(pytz.UTC)
            self.state = SchedulerState.IDLE
            if self._limit_reached():
                self._stop.set()

    def _limit_reached(self) -> bool:
        return self.max_runs is not None and self.runs_started >= self.max_runs

    async def run(self) -> None:
        """Run until :meth:`stop` is called or ``max_runs`` passes completed."""
        self.logger.info(f"Calendar sync scheduled to run every {self.interval_seconds / 60:g} minutes")
        self.trigger()
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                self.logger.info("Running scheduled sync")
                self.trigger()
        await self.wait_idle()

    async def wait_idle(self) -> None:
        """Wait for the pass in progress, if any."""
        if self._current is not None and not self._current.done():
            await asyncio.wait([self._current])

    async def stop(self) -> None:
        """Stop ticking and let the pass in progress finish."""
        self._stop.set()
        await self.wait_idle()
