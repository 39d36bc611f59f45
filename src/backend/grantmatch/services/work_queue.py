"""
Work queue for fetch and enrichment jobs.

`WorkQueue` is the injectable interface; `InMemoryWorkQueue` keeps jobs in
process and optionally mirrors every transition to the scrape_job table
through a `JobLedger`, so operators and the ingestion status see the same
lifecycle and unfinished jobs survive a restart.

Ordering is priority first, then FIFO. A job becomes eligible when its
retry time has passed and its source is below the per-source running
limit; jobs of other sources are never held back by a saturated source.
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grantmatch.core.clock import as_utc, utcnow
from grantmatch.core.logging import LoggerMixin
from grantmatch.models.scrape_job import JobKind, JobPriority, JobStatus, ScrapeJob
from grantmatch.services.repositories import JobRepository

# Upper bound on a single idle wait so clock changes are picked up
MAX_IDLE_WAIT = 30.0


@dataclass
class QueuedJob:
    """A job as held by the queue."""

    source_key: str
    dedupe_key: str
    kind: JobKind = JobKind.FETCH
    priority: JobPriority = JobPriority.STANDARD
    payload: dict[str, Any] = field(default_factory=dict)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    attempts: int = 0
    max_attempts: int = 3
    status: JobStatus = JobStatus.PENDING
    next_retry_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_type: str | None = None
    last_error: str | None = None
    result: dict[str, Any] = field(default_factory=dict)
    seq: int = 0

    def to_row(self) -> dict[str, Any]:
        """Column values for the scrape_job mirror."""
        return {
            "source_key": self.source_key,
            "kind": self.kind,
            "priority": self.priority,
            "status": self.status,
            "dedupe_key": self.dedupe_key,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "next_retry_at": self.next_retry_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "error_type": self.error_type,
            "last_error_message": self.last_error,
            "payload": self.payload,
            "result": self.result,
        }

    @classmethod
    def from_row(cls, row: ScrapeJob) -> "QueuedJob":
        return cls(
            id=row.id,
            source_key=row.source_key,
            dedupe_key=row.dedupe_key,
            kind=row.kind,
            priority=row.priority,
            payload=dict(row.payload or {}),
            attempts=row.attempts or 0,
            max_attempts=row.max_attempts or 3,
            next_retry_at=as_utc(row.next_retry_at),
        )


class JobLedger(LoggerMixin):
    """Mirrors queue transitions to the scrape_job table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def record(self, job: QueuedJob) -> None:
        """Persist the current state of a job; failures are logged, never raised."""
        try:
            async with self.session_factory() as session:
                repo = JobRepository(session)
                if await repo.get(job.id) is None:
                    await repo.add(ScrapeJob(id=job.id, **job.to_row()))
                else:
                    await repo.save(job.id, **job.to_row())
                await session.commit()
        except SQLAlchemyError as e:
            self.logger.error("job_ledger_write_failed", job_id=str(job.id), error=str(e))

    async def unfinished(self) -> list[QueuedJob]:
        async with self.session_factory() as session:
            rows = await JobRepository(session).list_unfinished()
            return [QueuedJob.from_row(row) for row in rows]


class WorkQueue(ABC):
    """Interface consumed by the scheduler, the worker pool and the API."""

    @abstractmethod
    async def put(self, job: QueuedJob) -> bool:
        """Enqueue a job; False when a job with the same dedupe key is in flight."""

    @abstractmethod
    async def get(self) -> QueuedJob | None:
        """Wait for the next eligible job; None once the queue is closed."""

    @abstractmethod
    async def complete(self, job: QueuedJob, result: dict[str, Any] | None = None) -> None:
        """Mark a running job SUCCEEDED."""

    @abstractmethod
    async def fail(self, job: QueuedJob, status: JobStatus, error: BaseException) -> None:
        """Finish a running job in a terminal failure status."""

    @abstractmethod
    async def retry(
        self,
        job: QueuedJob,
        not_before: datetime,
        error: BaseException,
        count_attempt: bool = True,
    ) -> None:
        """Put a running job back, eligible again at `not_before`."""

    @abstractmethod
    async def dead_letter(self, job: QueuedJob, error: BaseException) -> None:
        """Park a job that exhausted its retry budget."""

    @abstractmethod
    async def close(self) -> None:
        """Wake all waiters and stop handing out jobs."""

    @abstractmethod
    def stats(self) -> dict[str, Any]:
        """Queue depth and running counts."""


class InMemoryWorkQueue(WorkQueue, LoggerMixin):
    """
    Process-local queue.

    Args:
        per_source_limit: Maximum concurrently running jobs per source
        ledger: Optional persistent mirror
        clock: Current time, injectable for tests
    """

    def __init__(
        self,
        per_source_limit: int = 2,
        ledger: JobLedger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.per_source_limit = per_source_limit
        self.ledger = ledger
        self._clock = clock
        self._pending: list[QueuedJob] = []
        self._inflight: dict[str, uuid.UUID] = {}
        self._running: Counter[str] = Counter()
        self.dead_letter_count = 0
        self._seq = 0
        self._closed = False
        self._cond = asyncio.Condition()

    async def _record(self, job: QueuedJob) -> None:
        if self.ledger is not None:
            await self.ledger.record(job)

    def _next_ready(self, now: datetime) -> tuple[QueuedJob | None, float | None]:
        """Best eligible job, or the seconds until the earliest retry becomes eligible."""
        wait: float | None = None
        for job in sorted(self._pending, key=lambda j: (j.priority.rank, j.seq)):
            if job.next_retry_at is not None and job.next_retry_at > now:
                delay = (job.next_retry_at - now).total_seconds()
                wait = delay if wait is None else min(wait, delay)
                continue
            if self._running[job.source_key] >= self.per_source_limit:
                continue
            return job, None
        return None, wait

    async def put(self, job: QueuedJob) -> bool:
        async with self._cond:
            if self._closed:
                return False
            if job.dedupe_key in self._inflight:
                self.logger.info("job_deduplicated", source_id=job.source_key, dedupe_key=job.dedupe_key)
                return False
            self._seq += 1
            job.seq = self._seq
            if job.status != JobStatus.RETRY_SCHEDULED:
                job.status = JobStatus.PENDING
            self._pending.append(job)
            self._inflight[job.dedupe_key] = job.id
            self._cond.notify_all()

        self.logger.info(
            "job_enqueued",
            job_id=str(job.id),
            source_id=job.source_key,
            kind=job.kind.value,
            priority=job.priority.value,
            dedupe_key=job.dedupe_key,
        )
        await self._record(job)
        return True

    async def get(self) -> QueuedJob | None:
        async with self._cond:
            while True:
                if self._closed:
                    return None
                job, wait = self._next_ready(self._clock())
                if job is not None:
                    break
                timeout = MAX_IDLE_WAIT if wait is None else min(max(wait, 0.0), MAX_IDLE_WAIT)
                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass

            self._pending.remove(job)
            self._running[job.source_key] += 1
            job.status = JobStatus.RUNNING
            job.attempts += 1
            job.started_at = self._clock()
            job.next_retry_at = None

        await self._record(job)
        return job

    async def _release(self, job: QueuedJob, keep_inflight: bool = False) -> None:
        async with self._cond:
            self._running[job.source_key] -= 1
            if self._running[job.source_key] <= 0:
                del self._running[job.source_key]
            if not keep_inflight:
                self._inflight.pop(job.dedupe_key, None)
            self._cond.notify_all()

    async def complete(self, job: QueuedJob, result: dict[str, Any] | None = None) -> None:
        job.status = JobStatus.SUCCEEDED
        job.result = result or {}
        job.completed_at = self._clock()
        job.error_type = job.last_error = None
        await self._release(job)
        await self._record(job)

    async def fail(self, job: QueuedJob, status: JobStatus, error: BaseException) -> None:
        job.status = status
        job.completed_at = self._clock()
        job.error_type = type(error).__name__
        job.last_error = str(error)
        await self._release(job)
        await self._record(job)

    async def retry(
        self,
        job: QueuedJob,
        not_before: datetime,
        error: BaseException,
        count_attempt: bool = True,
    ) -> None:
        if not count_attempt:
            job.attempts = max(job.attempts - 1, 0)
        job.status = JobStatus.RETRY_SCHEDULED
        job.next_retry_at = not_before
        job.error_type = type(error).__name__
        job.last_error = str(error)
        await self._release(job, keep_inflight=True)
        async with self._cond:
            self._seq += 1
            job.seq = self._seq
            self._pending.append(job)
            self._cond.notify_all()
        await self._record(job)

    async def dead_letter(self, job: QueuedJob, error: BaseException) -> None:
        self.dead_letter_count += 1
        await self.fail(job, JobStatus.DEAD_LETTERED, error)

    async def restore(self) -> int:
        """Re-enqueue jobs a previous process left unfinished."""
        if self.ledger is None:
            return 0
        restored = 0
        for job in await self.ledger.unfinished():
            if job.next_retry_at is not None:
                job.status = JobStatus.RETRY_SCHEDULED
            if await self.put(job):
                restored += 1
        if restored:
            self.logger.info("jobs_restored", count=restored)
        return restored

    async def notify(self) -> None:
        """Wake waiting workers, e.g. after the clock moved in tests."""
        async with self._cond:
            self._cond.notify_all()

    async def close(self) -> None:
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    def stats(self) -> dict[str, Any]:
        return {
            "pending": len(self._pending),
            "running": dict(self._running),
            "in_flight": len(self._inflight),
            "dead_lettered": self.dead_letter_count,
        }


def backoff_delay(attempts: int, base: float, cap: float) -> timedelta:
    """Exponential backoff for the given attempt count (1 = first retry)."""
    return timedelta(seconds=min(base * 2 ** max(attempts - 1, 0), cap))
