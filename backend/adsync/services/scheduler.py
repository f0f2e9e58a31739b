"""Interval scheduler for the sync jobs."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Protocol

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[object]]


class Scheduler(Protocol):
    def every(self, interval: timedelta, task: Task, name: str, offset: timedelta = timedelta(0)) -> None: ...

    def start(self) -> None: ...

    def shutdown(self) -> None: ...

    def job_names(self) -> list[str]: ...


class IntervalScheduler:
    """APScheduler-backed implementation running on the current event loop."""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    def every(self, interval: timedelta, task: Task, name: str, offset: timedelta = timedelta(0)) -> None:
        first_run = datetime.now(timezone.utc) + interval + offset
        self.scheduler.add_job(
            task,
            trigger=IntervalTrigger(seconds=int(interval.total_seconds()), start_date=first_run),
            id=name,
            name=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    def start(self) -> None:
        self.scheduler.start()
        logger.info("Scheduler started with jobs: %s", ", ".join(self.job_names()))

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    def job_names(self) -> list[str]:
        return [job.id for job in self.scheduler.get_jobs()]
