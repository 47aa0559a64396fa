"""
Sweep Scheduler

Explicitly constructed timer that decides when each sweep is due:
- reminders, overdue forms, inventory: fixed intervals from settings
- digest: once per day at DIGEST_HOUR (UTC); a worker starting after that
  hour catches up immediately, the digest's own guard prevents a resend

start()/stop() own a background task; tick(now) runs whatever is due and is
what tests drive directly.
"""

import asyncio
from datetime import datetime, time, timedelta
from typing import Callable, Dict, List, Optional

import structlog

from config import get_settings
from models import utcnow
from services.sweeps import SweepResult, SweepRunner

logger = structlog.get_logger("scheduler")
settings = get_settings()


class SweepScheduler:

    def __init__(
        self,
        runner: SweepRunner,
        on_result: Optional[Callable[[SweepResult], None]] = None,
        tick_seconds: Optional[float] = None,
    ):
        self.runner = runner
        self.on_result = on_result
        self.tick_seconds = tick_seconds or settings.SCHEDULER_TICK_SECONDS
        self.intervals: Dict[str, timedelta] = {
            "reminders": timedelta(seconds=settings.REMINDER_INTERVAL_SECONDS),
            "overdue_forms": timedelta(seconds=settings.FORM_OVERDUE_INTERVAL_SECONDS),
            "inventory": timedelta(seconds=settings.INVENTORY_INTERVAL_SECONDS),
        }
        self.next_run: Dict[str, datetime] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def schedule_from(self, now: datetime):
        """Interval jobs are due immediately; the digest at today's DIGEST_HOUR."""
        for job in self.intervals:
            self.next_run[job] = now
        self.next_run["digest"] = datetime.combine(now.date(), time(hour=settings.DIGEST_HOUR))

    def _advance(self, job: str, now: datetime):
        if job == "digest":
            self.next_run[job] = datetime.combine(
                now.date() + timedelta(days=1), time(hour=settings.DIGEST_HOUR)
            )
        else:
            self.next_run[job] = now + self.intervals[job]

    async def tick(self, now: Optional[datetime] = None) -> List[SweepResult]:
        """Run every due job. One failing job never blocks the others."""
        now = now or utcnow()
        if not self.next_run:
            self.schedule_from(now)

        results = []
        for job, due in list(self.next_run.items()):
            if now < due:
                continue

            # SweepRunner.run already isolates crashes
            result = await self.runner.run(job, now)
            self._advance(job, now)
            results.append(result)

            if self.on_result:
                try:
                    self.on_result(result)
                except Exception as e:
                    logger.warning("Sweep result hook failed", job=job, error=str(e))

        return results

    async def start(self):
        if self._running:
            return
        self._running = True
        self.schedule_from(utcnow())
        self._task = asyncio.create_task(self._loop())
        logger.info("Sweep scheduler started",
                    tick_seconds=self.tick_seconds,
                    digest_hour=settings.DIGEST_HOUR)

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Sweep scheduler stopped")

    async def _loop(self):
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error("Scheduler tick failed", error=str(e))
            await asyncio.sleep(self.tick_seconds)
