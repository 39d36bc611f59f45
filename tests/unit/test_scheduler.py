"""Tests for the cadence scheduler."""

from datetime import datetime, timedelta, timezone

import pytest

from grantmatch.models.scrape_job import JobPriority
from grantmatch.services.scheduler import ScheduleMode, Scheduler, window_starts
from grantmatch.services.work_queue import InMemoryWorkQueue

# 10:00 in Seoul
MARCH_MORNING = datetime(2025, 3, 1, 1, 0, tzinfo=timezone.utc)
JUNE_MORNING = datetime(2025, 6, 10, 1, 0, tzinfo=timezone.utc)


@pytest.fixture
def queue(clock):
    return InMemoryWorkQueue(clock=clock)


@pytest.fixture
def scheduler(queue, session_factory, settings, clock):
    return Scheduler(queue, session_factory, settings, clock=clock)


class TestWindows:
    """Tests for modes, windows and dedupe keys."""

    def test_peak_months(self, scheduler):
        assert scheduler.mode_for(MARCH_MORNING) == ScheduleMode.PEAK
        assert scheduler.mode_for(JUNE_MORNING) == ScheduleMode.NORMAL

    def test_normal_mode_has_two_windows(self, scheduler):
        assert scheduler.dedupe_key("KEIT", JUNE_MORNING) == "KEIT:2025-06-10:w0"
        assert scheduler.dedupe_key("KEIT", JUNE_MORNING + timedelta(hours=4)) == "KEIT:2025-06-10:w1"

    def test_peak_mode_has_four_windows(self, scheduler):
        assert scheduler.dedupe_key("KEIT", MARCH_MORNING) == "KEIT:2025-03-01:w1"
        assert scheduler.dedupe_key("KEIT", MARCH_MORNING + timedelta(hours=5)) == "KEIT:2025-03-01:w2"

    def test_date_is_local(self, scheduler):
        """Test that 00:30 in Seoul belongs to the Seoul date."""
        moment = datetime(2025, 6, 9, 15, 30, tzinfo=timezone.utc)
        assert scheduler.window_of(moment) == (datetime(2025, 6, 10).date(), 0)


class TestTick:
    """Tests for Scheduler.tick."""

    @pytest.mark.asyncio
    async def test_tick_enqueues_each_enabled_source(self, scheduler, add_source):
        await add_source("KEIT")
        await add_source("NTIS")
        await add_source("OLD", is_enabled=False)

        jobs = await scheduler.tick(JUNE_MORNING)

        assert sorted(j.source_key for j in jobs) == ["KEIT", "NTIS"]
        assert all(j.priority == JobPriority.STANDARD for j in jobs)
        assert jobs[0].max_attempts == 3

    @pytest.mark.asyncio
    async def test_repeated_ticks_are_idempotent(self, scheduler, add_source):
        await add_source("KEIT")

        first = await scheduler.tick(JUNE_MORNING)
        second = await scheduler.tick(JUNE_MORNING + timedelta(minutes=5))

        assert len(first) == 1
        assert second == []

    @pytest.mark.asyncio
    async def test_next_window_enqueues_again(self, scheduler, queue, add_source):
        await add_source("KEIT")
        await scheduler.tick(JUNE_MORNING)
        running = await queue.get()
        await queue.complete(running)

        jobs = await scheduler.tick(JUNE_MORNING + timedelta(hours=4))

        assert [j.dedupe_key for j in jobs] == ["KEIT:2025-06-10:w1"]

    @pytest.mark.asyncio
    async def test_suspended_source_skipped(self, scheduler, add_source):
        await add_source("KEIT", suspended_until=JUNE_MORNING + timedelta(hours=1))

        assert await scheduler.tick(JUNE_MORNING) == []

    @pytest.mark.asyncio
    async def test_peak_jobs_are_high_priority(self, scheduler, add_source):
        await add_source("KEIT")

        jobs = await scheduler.tick(MARCH_MORNING)

        assert jobs[0].priority == JobPriority.HIGH

    @pytest.mark.asyncio
    async def test_daily_tasks_run_once_per_local_day(self, queue, session_factory, settings, clock):
        days = []

        async def housekeeping(today):
            days.append(today)

        scheduler = Scheduler(queue, session_factory, settings, daily_tasks=[housekeeping], clock=clock)
        await scheduler.run_daily(JUNE_MORNING)
        await scheduler.run_daily(JUNE_MORNING + timedelta(hours=6))
        await scheduler.run_daily(JUNE_MORNING + timedelta(days=1))

        assert [d.isoformat() for d in days] == ["2025-06-10", "2025-06-11"]


class TestTrigger:
    """Tests for manual runs."""

    @pytest.mark.asyncio
    async def test_trigger_is_high_priority_and_deduplicated(self, scheduler):
        job = await scheduler.trigger("KEIT")

        assert job.priority == JobPriority.HIGH
        assert job.dedupe_key == "KEIT:manual"
        assert await scheduler.trigger("KEIT") is None


def cron_fields(job) -> dict[str, str]:
    return {f.name: str(f) for f in job.trigger.fields if not f.is_default}


class TestCronJobs:
    """Tests for the APScheduler jobs driving the windows."""

    def test_one_job_per_window_and_housekeeping(self, scheduler):
        jobs = {job.id: job for job in scheduler.build_jobs().get_jobs()}

        assert sorted(jobs) == [
            "daily_housekeeping",
            "window:normal:w0",
            "window:normal:w1",
            "window:peak:w0",
            "window:peak:w1",
            "window:peak:w2",
            "window:peak:w3",
        ]
        assert cron_fields(jobs["window:peak:w1"]) == {"month": "1,2,3", "hour": "6", "minute": "0"}
        assert cron_fields(jobs["window:normal:w1"]) == {
            "month": "4,5,6,7,8,9,10,11,12",
            "hour": "12",
            "minute": "0",
        }
        assert cron_fields(jobs["daily_housekeeping"]) == {"hour": "6", "minute": "0"}
        assert str(jobs["window:peak:w0"].trigger.timezone) == "Asia/Seoul"

    def test_all_peak_year_has_no_normal_windows(self, queue, session_factory, settings):
        settings = settings.model_copy(update={"scheduler_peak_months": ",".join(str(m) for m in range(1, 13))})
        scheduler = Scheduler(queue, session_factory, settings)

        ids = [job.id for job in scheduler.build_jobs().get_jobs()]

        assert not [i for i in ids if i.startswith("window:normal")]

    @pytest.mark.parametrize("runs", [2, 4, 7])
    def test_window_starts_fall_inside_their_window(self, runs):
        starts = window_starts(runs)

        assert len(starts) == runs
        assert [(h * 60 + m) * runs // (24 * 60) for h, m in starts] == list(range(runs))
