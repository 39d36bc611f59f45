"""
Repositories over the async SQLAlchemy session.

Callers own the transaction: repositories add, flush and query but never
commit, so one unit of work (a fetched source, a match page) commits or
rolls back as a whole.
"""

import uuid
from collections.abc import Sequence
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from grantmatch.core.clock import as_utc, utcnow
from grantmatch.core.logging import LoggerMixin
from grantmatch.models.funding_program import FundingProgram, ProgramStatus
from grantmatch.models.match_record import MatchRecord
from grantmatch.models.scrape_job import JobKind, JobStatus, ScrapeJob
from grantmatch.models.source import Source


class SourceRepository:
    """Access to source configuration and operational state."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_key(self, source_key: str) -> Source | None:
        result = await self.session.execute(select(Source).where(Source.source_key == source_key))
        return result.scalar_one_or_none()

    async def list_all(self) -> Sequence[Source]:
        result = await self.session.execute(select(Source).order_by(Source.source_key))
        return result.scalars().all()

    async def list_enabled(self) -> Sequence[Source]:
        result = await self.session.execute(
            select(Source).where(Source.is_enabled.is_(True)).order_by(Source.source_key)
        )
        return result.scalars().all()


class ProgramRepository(LoggerMixin):
    """Funding programs keyed by (agency, external_id)."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, program_id: uuid.UUID) -> FundingProgram | None:
        return await self.session.get(FundingProgram, program_id)

    async def get_by_key(self, agency: str, external_id: str) -> FundingProgram | None:
        result = await self.session.execute(
            select(FundingProgram).where(
                FundingProgram.agency == agency,
                FundingProgram.external_id == external_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_many(self, program_ids: Sequence[uuid.UUID]) -> Sequence[FundingProgram]:
        if not program_ids:
            return []
        result = await self.session.execute(
            select(FundingProgram).where(FundingProgram.id.in_(list(program_ids)))
        )
        return result.scalars().all()

    async def upsert(self, agency: str, external_id: str, values: dict[str, Any]) -> tuple[FundingProgram, bool]:
        """
        Insert or update the program identified by (agency, external_id).

        A concurrent insert of the same identity loses the race on the
        unique constraint and falls back to updating the winner's row.

        Returns:
            Tuple of (program, created)
        """
        program = await self.get_by_key(agency, external_id)
        if program is not None:
            for key, value in values.items():
                setattr(program, key, value)
            await self.session.flush()
            return program, False

        program = FundingProgram(agency=agency, external_id=external_id, **values)
        try:
            async with self.session.begin_nested():
                self.session.add(program)
        except IntegrityError:
            self.logger.info("program_upsert_race", agency=agency, external_id=external_id)
            program = await self.get_by_key(agency, external_id)
            if program is None:
                raise
            for key, value in values.items():
                if key != "first_seen_at":
                    setattr(program, key, value)
            await self.session.flush()
            return program, False
        return program, True

    async def list_for_matching(self, historical: bool = False, agency: str | None = None) -> Sequence[FundingProgram]:
        """ACTIVE programs, or EXPIRED ones when `historical` is set."""
        status = ProgramStatus.EXPIRED if historical else ProgramStatus.ACTIVE
        query = select(FundingProgram).where(FundingProgram.status == status)
        if agency:
            query = query.where(FundingProgram.agency == agency)
        result = await self.session.execute(query.order_by(FundingProgram.scraped_at.desc()))
        return result.scalars().all()

    async def list_needing_enrichment(self, limit: int = 50) -> list[FundingProgram]:
        """ACTIVE programs with unresolved fields or a deferred extraction."""
        result = await self.session.execute(
            select(FundingProgram)
            .where(FundingProgram.status == ProgramStatus.ACTIVE)
            .order_by(FundingProgram.scraped_at.desc())
        )
        selected = []
        for program in result.scalars():
            meta = program.extraction_meta or {}
            if meta.get("unresolved") or meta.get("deferred_until"):
                selected.append(program)
                if len(selected) >= limit:
                    break
        return selected

    async def expire_past_deadline(self, today: date) -> Sequence[FundingProgram]:
        """Mark ACTIVE programs whose deadline is before `today` as EXPIRED."""
        result = await self.session.execute(
            select(FundingProgram).where(
                FundingProgram.status == ProgramStatus.ACTIVE,
                FundingProgram.deadline.is_not(None),
                FundingProgram.deadline < today,
            )
        )
        programs = result.scalars().all()
        for program in programs:
            program.status = ProgramStatus.EXPIRED
        await self.session.flush()
        return programs

    async def due_on(self, deadlines: Sequence[date]) -> Sequence[FundingProgram]:
        result = await self.session.execute(
            select(FundingProgram).where(
                FundingProgram.status == ProgramStatus.ACTIVE,
                FundingProgram.deadline.in_(list(deadlines)),
            )
        )
        return result.scalars().all()


class JobRepository:
    """Persistent mirror of work queue jobs."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, job_id: uuid.UUID) -> ScrapeJob | None:
        return await self.session.get(ScrapeJob, job_id)

    async def add(self, job: ScrapeJob) -> ScrapeJob:
        self.session.add(job)
        await self.session.flush()
        return job

    async def save(self, job_id: uuid.UUID, **values: Any) -> None:
        await self.session.execute(update(ScrapeJob).where(ScrapeJob.id == job_id).values(**values))

    async def list_unfinished(self) -> Sequence[ScrapeJob]:
        """Jobs a previous process left pending, running or waiting to retry."""
        result = await self.session.execute(
            select(ScrapeJob)
            .where(ScrapeJob.status.in_([JobStatus.PENDING, JobStatus.RUNNING, JobStatus.RETRY_SCHEDULED]))
            .order_by(ScrapeJob.created_at)
        )
        return result.scalars().all()

    async def list_dead_letters(self, source_key: str | None = None, limit: int = 100) -> Sequence[ScrapeJob]:
        query = select(ScrapeJob).where(ScrapeJob.status == JobStatus.DEAD_LETTERED)
        if source_key:
            query = query.where(ScrapeJob.source_key == source_key)
        result = await self.session.execute(query.order_by(ScrapeJob.completed_at.desc()).limit(limit))
        return result.scalars().all()

    async def status_summary(self, source_key: str, window_days: int = 7, now: datetime | None = None) -> dict[str, Any]:
        """
        Aggregate FETCH job outcomes for one source.

        Returns:
            Dict with last_run_at, success_rate (over terminal jobs in the
            window, None when there are none), dead_letter_count (all time),
            pending_jobs and the counts per terminal status
        """
        now = now or utcnow()
        since = now - timedelta(days=window_days)

        last_run = await self.session.execute(
            select(func.max(ScrapeJob.started_at)).where(
                ScrapeJob.source_key == source_key,
                ScrapeJob.kind == JobKind.FETCH,
            )
        )
        dead_letters = await self.session.execute(
            select(func.count(ScrapeJob.id)).where(
                ScrapeJob.source_key == source_key,
                ScrapeJob.status == JobStatus.DEAD_LETTERED,
            )
        )
        pending = await self.session.execute(
            select(func.count(ScrapeJob.id)).where(
                ScrapeJob.source_key == source_key,
                ScrapeJob.status.in_([JobStatus.PENDING, JobStatus.RUNNING, JobStatus.RETRY_SCHEDULED]),
            )
        )
        outcomes = await self.session.execute(
            select(ScrapeJob.status, func.count(ScrapeJob.id))
            .where(
                ScrapeJob.source_key == source_key,
                ScrapeJob.kind == JobKind.FETCH,
                ScrapeJob.completed_at >= since,
            )
            .group_by(ScrapeJob.status)
        )
        counts = {status.value: count for status, count in outcomes.all() if status.is_terminal}
        terminal = sum(counts.values())
        succeeded = counts.get(JobStatus.SUCCEEDED.value, 0)

        return {
            "last_run_at": as_utc(last_run.scalar_one_or_none()),
            "success_rate": round(succeeded / terminal, 4) if terminal else None,
            "dead_letter_count": dead_letters.scalar_one(),
            "pending_jobs": pending.scalar_one(),
            "outcomes": counts,
        }


class MatchRepository:
    """Analytics snapshots of computed match results."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, match_id: uuid.UUID) -> MatchRecord | None:
        return await self.session.get(MatchRecord, match_id)

    async def for_organization(self, organization_id: str) -> dict[uuid.UUID, MatchRecord]:
        result = await self.session.execute(
            select(MatchRecord).where(MatchRecord.organization_id == organization_id)
        )
        return {record.program_id: record for record in result.scalars()}

    async def upsert(
        self,
        existing: MatchRecord | None,
        organization_id: str,
        program_id: uuid.UUID,
        values: dict[str, Any],
    ) -> MatchRecord:
        if existing is None:
            existing = MatchRecord(organization_id=organization_id, program_id=program_id, **values)
            self.session.add(existing)
        else:
            for key, value in values.items():
                setattr(existing, key, value)
        await self.session.flush()
        return existing
