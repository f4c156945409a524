"""
Cycle Scheduler

Runs a canary cycle immediately, then once per test interval until stopped.
Each cycle is bounded by a deadline of its tick time plus the interval.
Cycles never overlap: ticks that pass while a cycle is still running are
skipped.
"""

import asyncio
import logging
from typing import Optional

from .orchestrator import CanaryOrchestrator
from .schemas import CycleResult

logger = logging.getLogger(__name__)


class CycleScheduler:
    """
    Fixed-interval driver for :class:`CanaryOrchestrator`.

    Args:
        orchestrator: Runs the individual cycles
        interval: Seconds between cycle starts (the test frequency)
    """

    def __init__(self, orchestrator: CanaryOrchestrator, interval: float):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.orchestrator = orchestrator
        self.interval = interval
        self.cycles_run = 0
        self.last_result: Optional[CycleResult] = None
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run_once(self, deadline: Optional[float] = None) -> Optional[CycleResult]:
        """
        Run one cycle, bounded by ``deadline`` (event loop time) if given.

        Never raises for cycle failures or deadline overruns; those are
        logged so the schedule keeps going.
        """
        loop = asyncio.get_running_loop()
        self.cycles_run += 1

        try:
            if deadline is None:
                result = await self.orchestrator.run_cycle()
            else:
                result = await asyncio.wait_for(
                    self.orchestrator.run_cycle(),
                    timeout=max(deadline - loop.time(), 0),
                )
        except asyncio.TimeoutError:
            logger.warning(f"Cycle exceeded its deadline of {self.interval}s and was cancelled")
            self.last_result = None
            return None
        except Exception as e:
            logger.error(f"Error testing pyroscope cell: cycle aborted: {e}", exc_info=True)
            self.last_result = None
            return None

        if result.error is not None:
            for line in _error_lines(result.error):
                logger.error(f"Error testing pyroscope cell: {line}")
        else:
            logger.info("Pyroscope cell test successful")

        self.last_result = result
        return result

    async def run(self, immediate: bool = True) -> None:
        """Run the first cycle now (unless ``immediate`` is False), then one per interval until :meth:`stop`."""
        loop = asyncio.get_running_loop()

        if immediate:
            await self.run_once()

        next_tick = loop.time() + self.interval
        while not self.stopped:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=max(next_tick - loop.time(), 0))
                break
            except asyncio.TimeoutError:
                pass

            tick = next_tick
            await self.run_once(deadline=tick + self.interval)

            # Skip ticks that elapsed while the cycle was running.
            next_tick = tick + self.interval
            now = loop.time()
            while next_tick <= now:
                next_tick += self.interval

        logger.info("Cycle scheduler stopped")


def _error_lines(error: BaseException):
    lines = str(error).split("\n")
    details = getattr(error, "details", None)
    if callable(details):
        lines.extend(details().split("\n"))
    return [line for line in lines if line]
