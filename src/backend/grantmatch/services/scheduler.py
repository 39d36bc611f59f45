"""
Cadence-based job scheduler.

The day (in the scheduler timezone) is split into equal windows: two in
NORMAL mode, four in PEAK mode. APScheduler fires one cron job at the
start of every window, restricted to the months of its mode, and a
separate cron job runs the daily housekeeping. Each window tick enqueues
one FETCH job per enabled, non-suspended source. The dedupe key
`source:date:wN` makes repeated ticks within a window idempotent, and
the queue refuses a key that is still in flight.
"""

import enum
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grantmatch.core.clock import utcnow
from grantmatch.core.config import Settings, get_settings
from grantmatch.core.logging import LoggerMixin
from grantmatch.models.scrape_job import JobKind, JobPriority
from grantmatch.services.repositories import SourceRepository
from grantmatch.services.work_queue import QueuedJob, WorkQueue

DailyTask = Callable[[date], Awaitable[object]]

MINUTES_PER_DAY = 24 * 60


class ScheduleMode(str, enum.Enum):
    NORMAL = "NORMAL"
    PEAK = "PEAK"


def window_starts(runs: int) -> list[tuple[int, int]]:
    """(hour, minute) at which each of `runs` equal windows begins."""
    starts = []
    for index in range(runs):
        # Rounded up so a tick at the start lands inside window `index`
        minute_of_day = -(-index * MINUTES_PER_DAY // runs)
        starts.append(divmod(minute_of_day, 60))
    return starts


class Scheduler(LoggerMixin):
    """Enqueues fetch jobs per source on the NORMAL/PEAK cadence."""

    def __init__(
        self,
        queue: WorkQueue,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        daily_tasks: list[DailyTask] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.queue = queue
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.timezone = ZoneInfo(self.settings.scheduler_timezone)
        self.daily_tasks = daily_tasks or []
        self._clock = clock
        self._scheduled: dict[str, str] = {}
        self._last_daily_run: date | None = None
        self._scheduler: AsyncIOScheduler | None = None

    def local(self, moment: datetime) -> datetime:
        return moment.astimezone(self.timezone)

    def mode_for(self, moment: datetime) -> ScheduleMode:
        if self.local(moment).month in self.settings.peak_months:
            return ScheduleMode.PEAK
        return ScheduleMode.NORMAL

    def runs_per_day(self, mode: ScheduleMode) -> int:
        if mode == ScheduleMode.PEAK:
            return self.settings.scheduler_peak_runs_per_day
        return self.settings.scheduler_normal_runs_per_day

    def months_for(self, mode: ScheduleMode) -> list[int]:
        peak = self.settings.peak_months
        if mode == ScheduleMode.PEAK:
            return sorted(m for m in peak if 1 <= m <= 12)
        return [m for m in range(1, 13) if m not in peak]

    def window_of(self, moment: datetime) -> tuple[date, int]:
        """Local date and zero-based window index of `moment`."""
        local = self.local(moment)
        runs = self.runs_per_day(self.mode_for(moment))
        minutes = local.hour * 60 + local.minute
        return local.date(), minutes * runs // MINUTES_PER_DAY

    def dedupe_key(self, source_key: str, moment: datetime) -> str:
        day, window = self.window_of(moment)
        return f"{source_key}:{day.isoformat()}:w{window}"

    def _job(self, source_key: str, dedupe_key: str, priority: JobPriority) -> QueuedJob:
        return QueuedJob(
            source_key=source_key,
            dedupe_key=dedupe_key,
            kind=JobKind.FETCH,
            priority=priority,
            max_attempts=self.settings.job_max_attempts,
        )

    async def tick(self, now: datetime | None = None) -> list[QueuedJob]:
        """
        Enqueue the current window's jobs.

        Returns:
            Jobs accepted by the queue
        """
        now = now or self._clock()
        mode = self.mode_for(now)
        priority = JobPriority.HIGH if mode == ScheduleMode.PEAK else JobPriority.STANDARD

        async with self.session_factory() as session:
            sources = await SourceRepository(session).list_enabled()
            candidates = [(s.source_key, s.is_suspended(now)) for s in sources]

        enqueued = []
        for source_key, suspended in candidates:
            if suspended:
                self.logger.info("source_skipped_suspended", source_id=source_key)
                continue
            key = self.dedupe_key(source_key, now)
            if self._scheduled.get(source_key) == key:
                continue
            job = self._job(source_key, key, priority)
            if await self.queue.put(job):
                enqueued.append(job)
            self._scheduled[source_key] = key

        if enqueued:
            self.logger.info("scheduler_tick", mode=mode.value, enqueued=len(enqueued))
        return enqueued

    async def trigger(self, source_key: str) -> QueuedJob | None:
        """Manual HIGH-priority run; None when one is already in flight."""
        job = self._job(source_key, f"{source_key}:manual", JobPriority.HIGH)
        return job if await self.queue.put(job) else None

    async def run_daily(self, now: datetime | None = None) -> None:
        """Run the daily tasks at most once per local day."""
        today = self.local(now or self._clock()).date()
        if self._last_daily_run == today:
            return
        self._last_daily_run = today
        for task in self.daily_tasks:
            await task(today)

    async def _scheduled_tick(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            self.logger.exception("scheduler_tick_failed", error=str(e))

    async def _scheduled_daily(self) -> None:
        try:
            await self.run_daily()
        except Exception as e:
            self.logger.exception("daily_housekeeping_failed", error=str(e))

    def build_jobs(self) -> AsyncIOScheduler:
        """
        Create the APScheduler instance with one cron job per window.

        Windows of a mode only fire in that mode's months, so a month
        boundary switches the cadence without rescheduling.
        """
        scheduler = AsyncIOScheduler(
            timezone=self.timezone,
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": self.settings.scheduler_misfire_grace_seconds,
            },
        )

        for mode in ScheduleMode:
            months = self.months_for(mode)
            if not months:
                continue
            month_expr = ",".join(str(m) for m in months)
            for index, (hour, minute) in enumerate(window_starts(self.runs_per_day(mode))):
                scheduler.add_job(
                    self._scheduled_tick,
                    trigger=CronTrigger(month=month_expr, hour=hour, minute=minute, timezone=self.timezone),
                    id=f"window:{mode.value.lower()}:w{index}",
                    name=f"{mode.value} window {index} ({hour:02d}:{minute:02d})",
                    replace_existing=True,
                )

        scheduler.add_job(
            self._scheduled_daily,
            trigger=CronTrigger(hour=self.settings.scheduler_housekeeping_hour, minute=0, timezone=self.timezone),
            id="daily_housekeeping",
            name="Deadline housekeeping",
            replace_existing=True,
        )
        return scheduler

    def start(self) -> None:
        if self._scheduler is not None:
            return
        self._scheduler = self.build_jobs()
        # Catch up on the current window after a restart
        self._scheduler.add_job(self._scheduled_tick, id="startup_tick", name="Startup tick")
        self._scheduler.start()
        self.logger.info(
            "scheduler_started",
            timezone=self.settings.scheduler_timezone,
            jobs=[job.id for job in self._scheduler.get_jobs()],
        )

    async def stop(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            self.logger.info("scheduler_stopped")
