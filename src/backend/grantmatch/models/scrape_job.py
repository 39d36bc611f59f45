"""
ScrapeJob model - Units of ingestion work.

Rows mirror the lifecycle of jobs flowing through the work queue and
feed the per-source ingestion status.
"""

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from grantmatch.db.base import Base, JSONType, TimestampMixin, enum_values


class JobKind(str, enum.Enum):
    """What the job does."""

    FETCH = "FETCH"      # Fetch a source and ingest changed records
    ENRICH = "ENRICH"    # Re-run Tier 2/3 over stored programs


class JobPriority(str, enum.Enum):
    """Queue priority."""

    HIGH = "HIGH"
    STANDARD = "STANDARD"

    @property
    def rank(self) -> int:
        return 0 if self is JobPriority.HIGH else 1


class JobStatus(str, enum.Enum):
    """Lifecycle status of a job."""

    PENDING = "PENDING"                   # Waiting in the queue
    RUNNING = "RUNNING"                   # Picked up by a worker
    RETRY_SCHEDULED = "RETRY_SCHEDULED"   # Waiting for its backoff to elapse
    SUCCEEDED = "SUCCEEDED"               # Terminal
    FAILED = "FAILED"                     # Terminal, not retryable (robots, access denied)
    NEEDS_ATTENTION = "NEEDS_ATTENTION"   # Terminal, manual handling (challenge wall, markup change)
    DEAD_LETTERED = "DEAD_LETTERED"       # Terminal, retry budget exhausted

    @property
    def is_terminal(self) -> bool:
        return self in (
            JobStatus.SUCCEEDED,
            JobStatus.FAILED,
            JobStatus.NEEDS_ATTENTION,
            JobStatus.DEAD_LETTERED,
        )


class ScrapeJob(Base, TimestampMixin):
    """Persistent record of a queued job."""

    source_key: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    kind: Mapped[JobKind] = mapped_column(
        Enum(JobKind, name="jobkind", native_enum=False, length=20, values_callable=enum_values),
        default=JobKind.FETCH,
        nullable=False,
    )
    priority: Mapped[JobPriority] = mapped_column(
        Enum(JobPriority, name="jobpriority", native_enum=False, length=20, values_callable=enum_values),
        default=JobPriority.STANDARD,
        nullable=False,
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="jobstatus", native_enum=False, length=20, values_callable=enum_values),
        default=JobStatus.PENDING,
        nullable=False,
        index=True,
    )
    dedupe_key: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        index=True,
        comment="source + scheduled window",
    )

    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    error_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    result: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Counters reported by the handler",
    )

    def __repr__(self) -> str:
        return f"<ScrapeJob(id={self.id}, source='{self.source_key}', status='{self.status.value}')>"
