"""
Ingestion operation endpoints.

Source status for dashboards, manual runs, enrichment and the
dead-letter queue for operators.
"""

from fastapi import APIRouter, Query, status

from grantmatch.api.deps import DB, Container
from grantmatch.core.clock import as_utc, utcnow
from grantmatch.core.exceptions import EntityNotFoundException, SourceSuspendedException
from grantmatch.core.logging import get_logger
from grantmatch.models.scrape_job import JobKind, JobPriority
from grantmatch.schemas.common import ErrorResponse
from grantmatch.schemas.ingestion import (
    EnqueueResponse,
    EnrichRequest,
    IngestionStatusResponse,
    ScrapeJobResponse,
)
from grantmatch.schemas.source import SourceResponse
from grantmatch.services.repositories import JobRepository, SourceRepository
from grantmatch.services.work_queue import QueuedJob

logger = get_logger(__name__)
router = APIRouter(responses={404: {"model": ErrorResponse}})


@router.get("/sources", response_model=list[SourceResponse])
async def list_sources(db: DB) -> list[SourceResponse]:
    """All configured sources, enabled or not."""
    sources = await SourceRepository(db).list_all()
    return [SourceResponse.model_validate(source) for source in sources]


@router.get("/sources/{source_id}/status", response_model=IngestionStatusResponse)
async def get_ingestion_status(container: Container, source_id: str) -> IngestionStatusResponse:
    """Last run, success rate and dead-letter count of a source."""
    return await container.status.get_status(source_id)


@router.post(
    "/sources/{source_id}/run",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={409: {"model": ErrorResponse}},
)
async def run_source(db: DB, container: Container, source_id: str) -> EnqueueResponse:
    """Enqueue a HIGH-priority fetch of one source; 409 while it is suspended."""
    source = await SourceRepository(db).get_by_key(source_id)
    if source is None:
        raise EntityNotFoundException("Source", source_id)
    if source.is_suspended(utcnow()):
        raise SourceSuspendedException(source_id, as_utc(source.suspended_until))

    job = await container.scheduler.trigger(source_id)
    dedupe_key = f"{source_id}:manual"
    if job is None:
        return EnqueueResponse(accepted=False, dedupe_key=dedupe_key, message="A manual run is already in progress")

    logger.info("manual_run_enqueued", source_id=source_id, job_id=str(job.id))
    return EnqueueResponse(accepted=True, job_id=job.id, dedupe_key=dedupe_key, message="Fetch job enqueued")


@router.post("/enrich", response_model=EnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
async def enrich_programs(container: Container, request: EnrichRequest) -> EnqueueResponse:
    """Enqueue a Tier 2/3 re-run over stored programs."""
    job = QueuedJob(
        source_key="enrichment",
        dedupe_key="enrichment:manual",
        kind=JobKind.ENRICH,
        priority=JobPriority.STANDARD,
        payload={
            "program_ids": [str(pid) for pid in request.program_ids or []],
            "limit": request.limit,
        },
        max_attempts=container.settings.job_max_attempts,
    )
    if not await container.queue.put(job):
        return EnqueueResponse(accepted=False, dedupe_key=job.dedupe_key, message="Enrichment already queued")
    return EnqueueResponse(accepted=True, job_id=job.id, dedupe_key=job.dedupe_key, message="Enrichment job enqueued")


@router.get("/dead-letters", response_model=list[ScrapeJobResponse])
async def list_dead_letters(
    db: DB,
    source_id: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
) -> list[ScrapeJobResponse]:
    """Jobs that exhausted their retry budget."""
    jobs = await JobRepository(db).list_dead_letters(source_id, limit)
    return [ScrapeJobResponse.model_validate(job) for job in jobs]
