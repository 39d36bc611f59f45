"""
Schemas for ingestion status and operator endpoints.
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from grantmatch.models.scrape_job import JobKind, JobPriority, JobStatus
from grantmatch.schemas.common import BaseSchema


class IngestionStatusResponse(BaseModel):
    """Operational view of one source."""

    source_id: str
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None
    success_rate: float | None = Field(default=None, description="Share of terminal jobs that succeeded")
    dead_letter_count: int = 0
    pending_jobs: int = 0
    suspended_until: datetime | None = None
    is_enabled: bool = True
    last_error_message: str | None = None
    outcomes: dict[str, int] = Field(default_factory=dict)


class ScrapeJobResponse(BaseSchema):
    id: uuid.UUID
    source_key: str
    kind: JobKind
    priority: JobPriority
    status: JobStatus
    dedupe_key: str
    attempts: int
    max_attempts: int
    next_retry_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_type: str | None = None
    last_error_message: str | None = None
    result: dict[str, Any] = Field(default_factory=dict)


class EnqueueResponse(BaseModel):
    """Outcome of a manual enqueue request."""

    accepted: bool
    job_id: uuid.UUID | None = None
    dedupe_key: str
    message: str


class EnrichRequest(BaseModel):
    program_ids: list[uuid.UUID] | None = Field(
        default=None,
        description="Programs to enrich; defaults to programs with unresolved fields",
    )
    limit: int = Field(default=50, ge=1, le=500)
