"""
Bounded worker pool consuming the work queue.

Each job runs under a hard timeout. The outcome is decided from the
exception class alone:

    QuotaExhaustedException            requeued for the next budget window
    SourceSuspendedException           requeued for the end of the cool-down
    AccessDeniedException              source suspended, alert, FAILED
    ChallengeWall / StructuralParse    alert, NEEDS_ATTENTION
    TransientFetchException / timeout  retried with backoff, then DEAD_LETTERED
    other FetchException               FAILED (robots disallow, HTTP 4xx)
    EntityNotFoundException            FAILED, the source no longer exists
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from grantmatch.core.clock import utcnow
from grantmatch.core.config import Settings, get_settings
from grantmatch.core.exceptions import (
    AccessDeniedException,
    ChallengeWallException,
    EntityNotFoundException,
    FetchException,
    QuotaExhaustedException,
    SourceSuspendedException,
    StructuralParseException,
    TransientFetchException,
)
from grantmatch.core.logging import LoggerMixin, job_context
from grantmatch.models.scrape_job import JobKind, JobStatus
from grantmatch.services.notifications import NotificationEmitter
from grantmatch.services.work_queue import QueuedJob, WorkQueue, backoff_delay

JobHandler = Callable[[QueuedJob], Awaitable[dict[str, Any] | None]]
AccessDeniedHook = Callable[[str, AccessDeniedException], Awaitable[None]]


class WorkerPool(LoggerMixin):
    """Runs `worker_count` workers over one queue."""

    def __init__(
        self,
        queue: WorkQueue,
        handlers: dict[JobKind, JobHandler],
        settings: Settings | None = None,
        notifier: NotificationEmitter | None = None,
        on_access_denied: AccessDeniedHook | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.queue = queue
        self.handlers = handlers
        self.settings = settings or get_settings()
        self.notifier = notifier
        self.on_access_denied = on_access_denied
        self._clock = clock
        self._tasks: list[asyncio.Task] = []

    async def _alert(self, kind: str, job: QueuedJob, error: BaseException) -> None:
        if self.notifier is not None:
            await self.notifier.alert(kind, job.source_key, str(error), job_id=str(job.id))

    async def _retry_or_dead_letter(self, job: QueuedJob, error: BaseException) -> None:
        if job.attempts >= job.max_attempts:
            await self.queue.dead_letter(job, error)
            self.logger.error("job_dead_lettered", attempts=job.attempts, error=str(error))
            await self._alert("job_dead_lettered", job, error)
            return
        delay = backoff_delay(job.attempts, self.settings.job_retry_base_delay, self.settings.job_retry_max_delay)
        await self.queue.retry(job, self._clock() + delay, error)
        self.logger.warning(
            "job_retry_scheduled",
            attempt=job.attempts,
            delay=delay.total_seconds(),
            error=str(error),
        )

    async def run_job(self, job: QueuedJob) -> JobStatus:
        """
        Run one job and record its outcome on the queue.

        Returns:
            The status the job ended in (RETRY_SCHEDULED when requeued)
        """
        with job_context(str(job.id), job.source_key, kind=job.kind.value):
            await self._run(job)
        return job.status

    async def _run(self, job: QueuedJob) -> None:
        handler = self.handlers.get(job.kind)
        log = self.logger
        if handler is None:
            error = ValueError(f"No handler for job kind {job.kind.value}")
            await self.queue.fail(job, JobStatus.FAILED, error)
            log.error("job_handler_missing")
            return

        start = time.time()
        log.info("job_started", attempt=job.attempts)
        try:
            result = await asyncio.wait_for(handler(job), timeout=self.settings.job_timeout_seconds)
        except asyncio.TimeoutError:
            error = TransientFetchException(
                f"Job exceeded {self.settings.job_timeout_seconds}s timeout", source_id=job.source_key
            )
            await self._retry_or_dead_letter(job, error)
        except QuotaExhaustedException as e:
            await self.queue.retry(job, e.retry_after, e, count_attempt=False)
            log.info("job_deferred", retry_after=e.retry_after.isoformat())
        except SourceSuspendedException as e:
            await self.queue.retry(job, e.suspended_until, e, count_attempt=False)
            log.info("job_deferred_suspended", retry_after=e.suspended_until.isoformat())
        except AccessDeniedException as e:
            if self.on_access_denied is not None:
                await self.on_access_denied(job.source_key, e)
            await self.queue.fail(job, JobStatus.FAILED, e)
            log.error("job_access_denied", status=e.status)
        except (ChallengeWallException, StructuralParseException) as e:
            await self.queue.fail(job, JobStatus.NEEDS_ATTENTION, e)
            log.error("job_needs_attention", error_code=e.error_code, error=e.message)
            await self._alert("manual_handling_required", job, e)
        except TransientFetchException as e:
            await self._retry_or_dead_letter(job, e)
        except FetchException as e:
            await self.queue.fail(job, JobStatus.FAILED, e)
            log.error("job_failed", error_code=e.error_code, error=e.message)
        except EntityNotFoundException as e:
            await self.queue.fail(job, JobStatus.FAILED, e)
            log.error("job_target_missing", error=e.message)
        except Exception as e:
            log.exception("job_crashed", error=str(e))
            await self._retry_or_dead_letter(job, e)
        else:
            await self.queue.complete(job, result or {})
            log.info("job_succeeded", duration=round(time.time() - start, 2))

    async def _worker(self, index: int) -> None:
        self.logger.debug("worker_started", worker=index)
        while True:
            job = await self.queue.get()
            if job is None:
                break
            await self.run_job(job)
        self.logger.debug("worker_stopped", worker=index)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"grantmatch-worker-{i}")
            for i in range(self.settings.worker_count)
        ]
        self.logger.info("worker_pool_started", workers=len(self._tasks))

    async def stop(self) -> None:
        await self.queue.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self.logger.info("worker_pool_stopped")
