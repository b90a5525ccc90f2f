"""Scheduler for periodic background jobs.

This module provides interval scheduling for the worker:
- ScheduledJob: a named handler with a run interval
- Scheduler: runs the jobs that are due on each tick
- run_scheduler_loop: ticks until the shutdown event is set
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

logger = logging.getLogger(__name__)

# Type alias for job handlers
JobHandler = Callable[[], Awaitable[dict[str, Any] | None]]


@dataclass
class ScheduledJob:
    """Definition of a periodic job.

    Attributes:
        name: Job name used in logs.
        interval: Time between runs.
        handler: Async callable doing the work.
        enabled: Whether this scheduled job is active.
        last_run: When the job last started.
        last_result: Result returned by the last successful run.
    """

    name: str
    interval: timedelta
    handler: JobHandler
    enabled: bool = True
    last_run: datetime | None = None
    last_result: dict[str, Any] | None = field(default=None, repr=False)


class Scheduler:
    """Runs scheduled jobs when their interval has elapsed.

    Example:
        scheduler = Scheduler()
        scheduler.add_schedule(ScheduledJob(
            name="expiry_sweep",
            interval=timedelta(hours=1),
            handler=sweep,
        ))
        await scheduler.tick()  # Run due jobs
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._schedules: list[ScheduledJob] = []
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def schedules(self) -> list[ScheduledJob]:
        return list(self._schedules)

    def add_schedule(self, schedule: ScheduledJob) -> None:
        """Add a scheduled job definition.

        Args:
            schedule: The scheduled job configuration.
        """
        self._schedules.append(schedule)
        logger.debug(
            "Added schedule: name=%s, interval=%s",
            schedule.name,
            schedule.interval,
        )

    async def tick(self) -> list[str]:
        """Run every enabled job that is due.

        A failing job is logged and counts as run, so it waits a full
        interval before the next attempt.

        Returns:
            Names of the jobs that ran.
        """
        now = self._clock()
        ran: list[str] = []

        for schedule in self._schedules:
            if not schedule.enabled or not self._is_due(schedule, now):
                continue

            schedule.last_run = now
            ran.append(schedule.name)
            try:
                schedule.last_result = await schedule.handler()
                logger.info(
                    "Scheduled job finished: name=%s, next_due=%s",
                    schedule.name,
                    (now + schedule.interval).isoformat(),
                )
            except Exception as e:
                logger.exception(
                    "Scheduled job failed: name=%s, error=%s",
                    schedule.name,
                    e,
                )

        return ran

    def _is_due(self, schedule: ScheduledJob, now: datetime) -> bool:
        """Check if a scheduled job is due to run.

        Args:
            schedule: The scheduled job configuration.
            now: Current timestamp.

        Returns:
            True if the job should run now.
        """
        if schedule.last_run is None:
            # Never run - due immediately
            return True

        next_run = schedule.last_run + schedule.interval
        return now >= next_run


async def run_scheduler_loop(
    scheduler: Scheduler,
    check_interval: float = 60.0,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Tick the scheduler until shutdown is requested.

    Args:
        scheduler: Scheduler holding the jobs.
        check_interval: Seconds between ticks.
        shutdown_event: Event to signal shutdown.
    """
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    logger.info(
        "Scheduler starting: check_interval=%ss, schedules=%d",
        check_interval,
        len(scheduler.schedules),
    )

    while not shutdown_event.is_set():
        try:
            await scheduler.tick()
        except Exception as e:
            logger.exception("Error in scheduler loop: %s", e)

        # Wait for next check interval (uses wait_for to allow shutdown)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=check_interval,
            )

    logger.info("Scheduler stopped")
