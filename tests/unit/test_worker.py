"""Tests for job outcome handling in the worker pool."""

import asyncio
from datetime import timedelta

import pytest

from grantmatch.core.exceptions import (
    AccessDeniedException,
    ChallengeWallException,
    EntityNotFoundException,
    QuotaExhaustedException,
    RobotsDisallowedException,
    SourceSuspendedException,
    StructuralParseException,
    TransientFetchException,
)
from grantmatch.models.scrape_job import JobKind, JobStatus
from grantmatch.services.work_queue import InMemoryWorkQueue, QueuedJob
from grantmatch.services.worker import WorkerPool


class ScriptedHandler:
    """Raises the scripted exception per source, or succeeds."""

    def __init__(self, errors=None):
        self.errors = errors or {}
        self.calls: list[str] = []

    async def __call__(self, job: QueuedJob):
        self.calls.append(job.source_key)
        error = self.errors.get(job.source_key)
        if error is not None:
            raise error
        return {"records": 1}


@pytest.fixture
def queue(clock):
    return InMemoryWorkQueue(per_source_limit=1, clock=clock)


def make_pool(queue, handler, settings, notifier, clock, on_access_denied=None):
    return WorkerPool(
        queue,
        {JobKind.FETCH: handler},
        settings=settings,
        notifier=notifier,
        on_access_denied=on_access_denied,
        clock=clock,
    )


async def put_and_get(queue, source_key, max_attempts=3) -> QueuedJob:
    await queue.put(QueuedJob(source_key=source_key, dedupe_key=f"{source_key}:manual", max_attempts=max_attempts))
    return await queue.get()


class TestWorkerOutcomes:
    """Tests for WorkerPool.run_job."""

    @pytest.mark.asyncio
    async def test_success(self, queue, settings, notifier, clock):
        pool = make_pool(queue, ScriptedHandler(), settings, notifier, clock)
        running = await put_and_get(queue, "KEIT")

        assert await pool.run_job(running) == JobStatus.SUCCEEDED
        assert running.result == {"records": 1}

    @pytest.mark.asyncio
    async def test_repeated_timeouts_dead_letter(self, queue, settings, notifier, clock):
        """Test that a source timing out on every attempt is dead-lettered without stalling others."""
        handler = ScriptedHandler({"KEIT": asyncio.TimeoutError()})
        pool = make_pool(queue, handler, settings, notifier, clock)

        running = await put_and_get(queue, "KEIT")
        assert await pool.run_job(running) == JobStatus.RETRY_SCHEDULED
        assert running.next_retry_at == clock() + timedelta(seconds=60)

        other = await put_and_get(queue, "NTIS")
        assert await pool.run_job(other) == JobStatus.SUCCEEDED

        clock.advance(seconds=61)
        running = await queue.get()
        assert await pool.run_job(running) == JobStatus.RETRY_SCHEDULED
        assert running.next_retry_at == clock() + timedelta(seconds=120)

        clock.advance(seconds=121)
        running = await queue.get()
        assert await pool.run_job(running) == JobStatus.DEAD_LETTERED

        assert running.attempts == 3
        assert queue.dead_letter_count == 1
        assert [e["kind"] for e in notifier.sent] == ["job_dead_lettered"]
        assert handler.calls == ["KEIT", "NTIS", "KEIT", "KEIT"]

    @pytest.mark.asyncio
    async def test_quota_requeues_without_counting(self, queue, settings, notifier, clock):
        retry_after = clock() + timedelta(seconds=30)
        handler = ScriptedHandler({"KEIT": QuotaExhaustedException("AzureOpenAI", retry_after)})
        pool = make_pool(queue, handler, settings, notifier, clock)
        running = await put_and_get(queue, "KEIT")

        assert await pool.run_job(running) == JobStatus.RETRY_SCHEDULED
        assert running.attempts == 0
        assert running.next_retry_at == retry_after

    @pytest.mark.asyncio
    async def test_suspended_source_deferred_without_counting(self, queue, settings, notifier, clock):
        until = clock() + timedelta(hours=3)
        handler = ScriptedHandler({"KEIT": SourceSuspendedException("KEIT", until)})
        pool = make_pool(queue, handler, settings, notifier, clock)
        running = await put_and_get(queue, "KEIT")

        assert await pool.run_job(running) == JobStatus.RETRY_SCHEDULED
        assert running.attempts == 0
        assert running.next_retry_at == until

    @pytest.mark.asyncio
    async def test_access_denied_suspends_source(self, queue, settings, notifier, clock):
        suspended = []

        async def on_denied(source_key, error):
            suspended.append((source_key, error.status))

        handler = ScriptedHandler({"KEIT": AccessDeniedException(403, "https://keit.example/list", "KEIT")})
        pool = make_pool(queue, handler, settings, notifier, clock, on_access_denied=on_denied)
        running = await put_and_get(queue, "KEIT")

        assert await pool.run_job(running) == JobStatus.FAILED
        assert suspended == [("KEIT", 403)]

    @pytest.mark.asyncio
    async def test_challenge_needs_attention(self, queue, settings, notifier, clock):
        handler = ScriptedHandler({"KEIT": ChallengeWallException("https://keit.example/list", "KEIT")})
        pool = make_pool(queue, handler, settings, notifier, clock)
        running = await put_and_get(queue, "KEIT")

        assert await pool.run_job(running) == JobStatus.NEEDS_ATTENTION
        assert notifier.sent[0]["kind"] == "manual_handling_required"

    @pytest.mark.asyncio
    async def test_structural_failure_is_not_retried(self, queue, settings, notifier, clock):
        handler = ScriptedHandler({"KEIT": StructuralParseException("No rows", "KEIT")})
        pool = make_pool(queue, handler, settings, notifier, clock)
        running = await put_and_get(queue, "KEIT")

        assert await pool.run_job(running) == JobStatus.NEEDS_ATTENTION
        assert running.attempts == 1

    @pytest.mark.asyncio
    async def test_robots_disallow_fails(self, queue, settings, notifier, clock):
        handler = ScriptedHandler({"KEIT": RobotsDisallowedException("https://keit.example/list", "KEIT")})
        pool = make_pool(queue, handler, settings, notifier, clock)
        running = await put_and_get(queue, "KEIT")

        assert await pool.run_job(running) == JobStatus.FAILED
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_transient_error_retries(self, queue, settings, notifier, clock):
        handler = ScriptedHandler({"KEIT": TransientFetchException("HTTP 503", "KEIT")})
        pool = make_pool(queue, handler, settings, notifier, clock)
        running = await put_and_get(queue, "KEIT", max_attempts=1)

        assert await pool.run_job(running) == JobStatus.DEAD_LETTERED

    @pytest.mark.asyncio
    async def test_missing_handler_fails(self, queue, settings, notifier, clock):
        pool = WorkerPool(queue, {}, settings=settings, notifier=notifier, clock=clock)
        running = await put_and_get(queue, "KEIT")

        assert await pool.run_job(running) == JobStatus.FAILED
        assert running.error_type == "ValueError"

    @pytest.mark.asyncio
    async def test_deleted_source_fails_fast(self, queue, settings, notifier, clock):
        """Test that a job for a removed source is not retried."""
        handler = ScriptedHandler({"GONE": EntityNotFoundException("Source", "GONE")})
        pool = make_pool(queue, handler, settings, notifier, clock)
        running = await put_and_get(queue, "GONE")

        assert await pool.run_job(running) == JobStatus.FAILED
        assert running.error_type == "EntityNotFoundException"
        assert running.next_retry_at is None
        assert queue.stats()["pending"] == 0
        assert queue.dead_letter_count == 0


class TestWorkerLoop:
    """Tests for starting and stopping the pool."""

    @pytest.mark.asyncio
    async def test_workers_drain_queue(self, queue, settings, notifier, clock):
        handler = ScriptedHandler()
        pool = make_pool(queue, handler, settings, notifier, clock)
        await queue.put(QueuedJob(source_key="KEIT", dedupe_key="a"))
        await queue.put(QueuedJob(source_key="NTIS", dedupe_key="b"))

        pool.start()
        for _ in range(50):
            if len(handler.calls) == 2:
                break
            await asyncio.sleep(0.01)
        await pool.stop()

        assert sorted(handler.calls) == ["KEIT", "NTIS"]
