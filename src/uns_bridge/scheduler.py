"""BridgeScheduler: fixed-period, single-flight driver of read-all-then-publish-all cycles."""

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

from .executor import CycleExecutor
from .source import TagSource
from .types import CycleResult, SchedulerState

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_S = 3.0


class BridgeScheduler:
    """
    Runs one cycle immediately, then one per period until stop() is called.

    The next fire time is computed only after the current cycle has returned, so two
    cycles never overlap. A tick that came due while a cycle was running fires right
    after it; further missed ticks collapse into that one and the schedule re-anchors.
    stop() never interrupts a running cycle; it only prevents the next one.
    """

    def __init__(
        self,
        source: TagSource,
        executor: CycleExecutor,
        period_s: float = DEFAULT_PERIOD_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if period_s <= 0:
            raise ValueError(f"period must be positive, got {period_s}")
        self._source = source
        self._executor = executor
        self._period_s = period_s
        self._clock = clock
        self._state = SchedulerState.IDLE
        self._stop = asyncio.Event()
        self._cycles = 0
        self._last_result: CycleResult | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def period_s(self) -> float:
        return self._period_s

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def last_result(self) -> CycleResult | None:
        return self._last_result

    def stop(self) -> None:
        """Request shutdown: no new cycle starts; a running one completes."""
        if not self._stop.is_set():
            logger.info("Stop requested; finishing current cycle")
        self._stop.set()

    async def wait_stop_requested(self) -> None:
        await self._stop.wait()

    async def run_cycle(self) -> CycleResult:
        """One read-all-then-publish-all pass, stamped with a single capture time."""
        started_at = datetime.now(timezone.utc)
        snapshot = await self._source.read_all()
        result = await self._executor.run(snapshot, started_at)
        self._cycles += 1
        self._last_result = result
        logger.info(
            "Cycle %d: published=%d/%d skipped=%d failed=%d read_errors=%d (%.3fs)",
            self._cycles,
            result.published,
            result.total,
            result.skipped,
            result.failed,
            len(snapshot.errors),
            result.duration_s,
        )
        return result

    async def run(self, max_cycles: int | None = None) -> None:
        """Drive cycles until stop() (or max_cycles). Errors escaping a cycle end the run."""
        if self._state != SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler cannot start from state {self._state.value}")
        self._state = SchedulerState.RUNNING
        try:
            next_fire = self._clock()
            while not self._stop.is_set():
                await self.run_cycle()
                if max_cycles is not None and self._cycles >= max_cycles:
                    break
                next_fire += self._period_s
                now = self._clock()
                if now >= next_fire:
                    logger.warning(
                        "Cycle overran the %.3fs period by %.3fs; next cycle starts now",
                        self._period_s,
                        now - next_fire,
                    )
                    next_fire = now
                    continue
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=next_fire - now)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._state = SchedulerState.STOPPED
            logger.info("Scheduler stopped after %d cycles", self._cycles)
