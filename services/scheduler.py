"""Jittered repeating scheduler that never overlaps its own runs."""
from __future__ import annotations

import asyncio
import logging
import math
import random
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Optional

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

MIN_DELAY_SECONDS = 1
JOB_ID = "booking-watch-tick"

Routine = Callable[[], Awaitable[None]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class JitterScheduler:
    """Run a coroutine repeatedly with a randomized delay between runs.

    Each run is a one-shot ``date`` job on an APScheduler
    :class:`AsyncIOScheduler`; the next job is armed only after the previous
    run has finished. If a job fires while a run is still in flight it does
    not start the routine again, it just re-arms.
    """

    def __init__(
        self,
        base_interval: float,
        jitter_ratio: float,
        scheduler: Optional[AsyncIOScheduler] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        if base_interval <= 0:
            raise ValueError("base_interval must be positive")
        if not 0 <= jitter_ratio <= 1:
            raise ValueError("jitter_ratio must be between 0 and 1")
        self.base_interval = base_interval
        self.jitter_ratio = jitter_ratio
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or AsyncIOScheduler(timezone=UTC)
        self._rng = rng or random.Random()
        self._state = SchedulerState.IDLE
        self._routine: Optional[Routine] = None
        self._job: Optional[Job] = None
        self._in_flight = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def pending(self) -> bool:
        return self._job is not None

    def start(self, routine: Routine) -> None:
        if self._state is not SchedulerState.IDLE:
            raise RuntimeError(f"Cannot start scheduler in state {self._state.value}")
        self._routine = routine
        self._state = SchedulerState.RUNNING
        if not self._scheduler.running:
            self._scheduler.start()
        self._schedule_next()

    def stop(self) -> None:
        """Stop arming new runs. A run already in progress finishes normally."""
        if self._state is not SchedulerState.RUNNING:
            return
        self._state = SchedulerState.STOPPED
        self._cancel_pending()

    async def shutdown(self) -> None:
        """Stop, let the in-flight run finish, then release APScheduler."""
        self.stop()
        await self.wait_idle()
        # the asyncio executor cancels running jobs on shutdown
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def update_interval(self, base_interval: float) -> None:
        if base_interval <= 0:
            raise ValueError("base_interval must be positive")
        self.base_interval = base_interval
        logger.info("Check interval set to %ss", base_interval)

        # while a run is in flight the new base applies when it re-arms
        if self._state is SchedulerState.RUNNING and self._job is not None and not self._in_flight:
            self._cancel_pending()
            self._schedule_next()

    def calculate_delay(self) -> int:
        jitter = self._rng.uniform(-self.jitter_ratio, self.jitter_ratio)
        delay = math.floor(self.base_interval * (1 + jitter))
        return max(delay, MIN_DELAY_SECONDS)

    def _schedule_next(self) -> None:
        if self._state is not SchedulerState.RUNNING:
            return
        delay = self.calculate_delay()
        run_date = datetime.now(UTC) + timedelta(seconds=delay)
        self._job = self._scheduler.add_job(
            self._fire,
            "date",
            run_date=run_date,
            id=JOB_ID,
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.debug("Next check in %ss", delay)

    def _cancel_pending(self) -> None:
        if self._job is None:
            return
        try:
            self._scheduler.remove_job(self._job.id)
        except JobLookupError:
            pass
        self._job = None

    async def _fire(self) -> None:
        self._job = None
        if self._state is not SchedulerState.RUNNING or self._routine is None:
            return

        # check-and-set with no await in between
        if self._in_flight:
            logger.debug("Previous check still running, rescheduling")
            self._schedule_next()
            return
        self._in_flight = True
        self._idle.clear()

        try:
            await self._routine()
        except Exception:
            logger.exception("Scheduled check failed")
        finally:
            self._in_flight = False
            self._idle.set()

        self._schedule_next()

    async def wait_idle(self) -> None:
        """Wait until no run is in flight."""
        await self._idle.wait()


__all__ = ["JitterScheduler", "MIN_DELAY_SECONDS", "SchedulerState"]
