"""
Ingestion pipeline: fetch, detect change, extract, persist.

One FETCH job runs `run_source()`. Records are classified against the
stored program with the same (agency, external_id); UNCHANGED records are
dropped before any extraction or write. Program updates publish an
invalidation event once the transaction has committed.
"""

import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grantmatch.core.clock import as_utc, utcnow
from grantmatch.core.config import Settings, get_settings
from grantmatch.core.exceptions import AccessDeniedException, EntityNotFoundException, SourceSuspendedException
from grantmatch.core.logging import LoggerMixin
from grantmatch.extraction.base import ExtractionRequest, text_digest
from grantmatch.extraction.chain import ExtractionChain
from grantmatch.extraction.profile import EligibilityProfile, FieldSource
from grantmatch.extraction.tier3 import attachments_digest
from grantmatch.matching.cache import PROGRAM_UPDATED, InvalidationBus
from grantmatch.matching.gates import deadline_of
from grantmatch.models.funding_program import ProgramStatus
from grantmatch.models.scrape_job import JobKind, JobPriority
from grantmatch.schemas.ingestion import IngestionStatusResponse
from grantmatch.schemas.source import SourceConfig
from grantmatch.services.change_detector import ChangeKind, canonicalize_url, detect, record_identity
from grantmatch.services.fetcher import SourceFetcher
from grantmatch.services.notifications import NotificationEmitter
from grantmatch.services.records import RawRecord
from grantmatch.services.repositories import JobRepository, ProgramRepository, SourceRepository
from grantmatch.services.work_queue import QueuedJob, WorkQueue

# Days before a deadline on which reminders go out
REMINDER_DAYS = (7, 3, 1)

ENRICHMENT_TIERS = {FieldSource.TIER2, FieldSource.TIER3}


@dataclass
class IngestionReport:
    """Counters of one source run."""

    source_key: str
    fetched: int = 0
    pages: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    deferred_until: datetime | None = None
    error: str | None = None
    changed_program_ids: list[uuid.UUID] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["deferred_until"] = self.deferred_until.isoformat() if self.deferred_until else None
        data["changed_program_ids"] = [str(pid) for pid in self.changed_program_ids]
        return data


def evidence_digests(title: str, raw_text: str, attachment_urls: list[str]) -> dict[FieldSource, str | None]:
    """Current evidence digest for each field source."""
    digest = text_digest(f"{title}\n{raw_text}")
    return {
        FieldSource.API: digest,
        FieldSource.TIER1: digest,
        FieldSource.TIER2: digest,
        FieldSource.TIER3: attachments_digest(attachment_urls),
    }


class IngestionPipeline(LoggerMixin):
    """Runs FETCH and ENRICH jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: SourceFetcher,
        chain: ExtractionChain,
        bus: InvalidationBus,
        queue: WorkQueue | None = None,
        notifier: NotificationEmitter | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.chain = chain
        self.bus = bus
        self.queue = queue
        self.notifier = notifier
        self.settings = settings or get_settings()
        self._clock = clock

    async def _load_config(self, source_key: str) -> SourceConfig:
        async with self.session_factory() as session:
            source = await SourceRepository(session).get_by_key(source_key)
            if source is None:
                raise EntityNotFoundException("Source", source_key)
            if source.is_suspended(self._clock()):
                raise SourceSuspendedException(source_key, as_utc(source.suspended_until))
            return SourceConfig.from_source(source)

    async def _ingest_record(self, programs: ProgramRepository, record: RawRecord, report: IngestionReport) -> None:
        identity = record_identity(record, canonicalize_url(record.url))
        existing = await programs.get_by_key(record.agency, identity)
        change = detect(existing, record)
        if change.kind == ChangeKind.UNCHANGED:
            report.unchanged += 1
            return

        profile = EligibilityProfile()
        if change.kind == ChangeKind.UPDATED and existing is not None:
            profile = existing.profile
            dropped = profile.retain_valid(evidence_digests(record.title, record.body, record.attachment_urls))
            self.logger.debug("fields_invalidated", program=f"{record.agency}:{identity}", fields=dropped)

        request = ExtractionRequest(
            program_key=f"{record.agency}:{identity}",
            title=record.title,
            raw_text=record.body,
            attachment_urls=list(record.attachment_urls),
            api_fields=dict(record.api_fields),
        )
        outcome = await self.chain.run(request, profile)
        if outcome.deferred_until and (report.deferred_until is None or outcome.deferred_until > report.deferred_until):
            report.deferred_until = outcome.deferred_until

        deadline = deadline_of(outcome.profile)
        today = self._clock().date()
        values: dict[str, Any] = {
            "source_key": report.source_key,
            "title": record.title,
            "raw_text": record.body,
            "source_url": record.url,
            "canonical_url": change.canonical_url,
            "attachment_urls": list(record.attachment_urls),
            "content_hash": change.content_hash,
            "scraped_at": record.fetched_at,
            "deadline": deadline,
            "status": ProgramStatus.EXPIRED if deadline and deadline < today else ProgramStatus.ACTIVE,
            "eligibility": outcome.profile.to_dict(),
            "extraction_meta": outcome.to_meta(),
        }
        if change.kind == ChangeKind.NEW:
            values["first_seen_at"] = record.fetched_at

        program, created = await programs.upsert(record.agency, identity, values)
        if created:
            report.new += 1
        else:
            report.updated += 1
            report.changed_program_ids.append(program.id)

    async def run_source(self, source_key: str) -> dict[str, Any]:
        """
        Fetch one source and ingest its changed records.

        Records fetched before a fetch error are still ingested; the error
        is re-raised afterwards so the worker can classify the job. A
        source inside its cool-down window is not contacted at all.

        Returns:
            Report counters
        """
        config = await self._load_config(source_key)
        outcome = await self.fetcher.fetch(config)
        report = IngestionReport(source_key=source_key, fetched=len(outcome.records), pages=outcome.pages_fetched)

        async with self.session_factory() as session:
            programs = ProgramRepository(session)
            for record in outcome.records:
                await self._ingest_record(programs, record, report)

            source = await SourceRepository(session).get_by_key(source_key)
            now = self._clock()
            if source is not None:
                source.last_run_at = now
                if outcome.ok:
                    source.last_success_at = now
                    source.last_error_message = None
                    source.consecutive_access_failures = 0
                else:
                    source.last_error_message = outcome.error.message
            await session.commit()

        for program_id in report.changed_program_ids:
            await self.bus.publish(PROGRAM_UPDATED, program_id)
        if report.deferred_until is not None:
            await self._schedule_enrichment(source_key, report.deferred_until)

        self.logger.info(
            "source_ingested",
            source_id=source_key,
            fetched=report.fetched,
            new=report.new,
            updated=report.updated,
            unchanged=report.unchanged,
            ok=outcome.ok,
        )
        if outcome.error is not None:
            report.error = outcome.error.error_code
            raise outcome.error
        return report.to_dict()

    async def _schedule_enrichment(self, source_key: str, not_before: datetime) -> None:
        if self.queue is None:
            return
        job = QueuedJob(
            source_key=source_key,
            dedupe_key=f"{source_key}:enrich:{not_before.date().isoformat()}",
            kind=JobKind.ENRICH,
            priority=JobPriority.STANDARD,
            max_attempts=self.settings.job_max_attempts,
            next_retry_at=not_before,
        )
        if await self.queue.put(job):
            self.logger.info("enrichment_scheduled", source_id=source_key, not_before=not_before.isoformat())

    async def enrich(self, program_ids: list[uuid.UUID] | None = None, limit: int = 50) -> dict[str, Any]:
        """
        Re-run Tiers 2 and 3 over stored programs without re-fetching.

        Args:
            program_ids: Programs to enrich; defaults to ACTIVE programs
                with unresolved fields or a deferred extraction
            limit: Maximum programs when selecting automatically
        """
        enriched: list[uuid.UUID] = []
        examined = 0
        deferred_until: datetime | None = None

        async with self.session_factory() as session:
            repo = ProgramRepository(session)
            if program_ids:
                programs = list(await repo.get_many(program_ids))
            else:
                programs = await repo.list_needing_enrichment(limit)

            for program in programs:
                examined += 1
                before = program.eligibility or {}
                request = ExtractionRequest(
                    program_key=program.key,
                    title=program.title,
                    raw_text=program.raw_text,
                    attachment_urls=list(program.attachment_urls or []),
                )
                outcome = await self.chain.run(request, program.profile, tiers=ENRICHMENT_TIERS)
                program.extraction_meta = outcome.to_meta()
                after = outcome.profile.to_dict()
                if after != before:
                    program.eligibility = after
                    program.deadline = deadline_of(outcome.profile, program.deadline)
                    enriched.append(program.id)
                if outcome.deferred:
                    deferred_until = outcome.deferred_until
                    break
            await session.commit()

        for program_id in enriched:
            await self.bus.publish(PROGRAM_UPDATED, program_id)
        if deferred_until is not None:
            await self._schedule_enrichment("enrichment", deferred_until)

        self.logger.info("programs_enriched", examined=examined, enriched=len(enriched), deferred=deferred_until is not None)
        return {
            "examined": examined,
            "enriched": len(enriched),
            "deferred_until": deferred_until.isoformat() if deferred_until else None,
        }

    async def run_job(self, job: QueuedJob) -> dict[str, Any]:
        """Work queue handler for FETCH jobs."""
        return await self.run_source(job.source_key)

    async def run_enrich_job(self, job: QueuedJob) -> dict[str, Any]:
        """Work queue handler for ENRICH jobs."""
        ids = [uuid.UUID(str(pid)) for pid in job.payload.get("program_ids") or []]
        return await self.enrich(ids or None, int(job.payload.get("limit", 50)))

    async def suspend_source(self, source_key: str, error: AccessDeniedException) -> None:
        """Put a source into its cool-down window after access was denied."""
        until = self._clock() + timedelta(minutes=self.settings.crawler_cooldown_minutes)
        async with self.session_factory() as session:
            source = await SourceRepository(session).get_by_key(source_key)
            if source is None:
                return
            source.consecutive_access_failures = (source.consecutive_access_failures or 0) + 1
            source.suspended_until = until
            source.last_error_message = error.message
            await session.commit()

        self.logger.error("source_suspended", source_id=source_key, until=until.isoformat(), status=error.status)
        if self.notifier is not None:
            await self.notifier.alert(
                "source_suspended",
                source_key,
                f"Suspended until {until.isoformat()} after HTTP {error.status}",
                suspended_until=until.isoformat(),
            )

    async def deadline_housekeeping(self, today: date) -> dict[str, int]:
        """Expire programs past their deadline and emit deadline reminders."""
        async with self.session_factory() as session:
            repo = ProgramRepository(session)
            expired = await repo.expire_past_deadline(today)
            expired_ids = [p.id for p in expired]
            due = [(p.id, p.deadline) for p in await repo.due_on([today + timedelta(days=d) for d in REMINDER_DAYS])]
            await session.commit()

        for program_id in expired_ids:
            await self.bus.publish(PROGRAM_UPDATED, program_id)
        if self.notifier is not None:
            for program_id, deadline in due:
                await self.notifier.deadline_reminder(program_id, (deadline - today).days)

        self.logger.info("deadline_housekeeping", expired=len(expired_ids), reminders=len(due))
        return {"expired": len(expired_ids), "reminders": len(due)}


class IngestionStatusService:
    """getIngestionStatus for operational dashboards."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], clock: Callable[[], datetime] = utcnow) -> None:
        self.session_factory = session_factory
        self._clock = clock

    async def get_status(self, source_key: str) -> IngestionStatusResponse:
        async with self.session_factory() as session:
            source = await SourceRepository(session).get_by_key(source_key)
            if source is None:
                raise EntityNotFoundException("Source", source_key)
            summary = await JobRepository(session).status_summary(source_key, now=self._clock())

        run_times = [t for t in (summary["last_run_at"], as_utc(source.last_run_at)) if t is not None]
        now = self._clock()
        return IngestionStatusResponse(
            source_id=source_key,
            last_run_at=max(run_times) if run_times else None,
            last_success_at=as_utc(source.last_success_at),
            success_rate=summary["success_rate"],
            dead_letter_count=summary["dead_letter_count"],
            pending_jobs=summary["pending_jobs"],
            suspended_until=as_utc(source.suspended_until) if source.is_suspended(now) else None,
            is_enabled=source.is_enabled,
            last_error_message=source.last_error_message,
            outcomes=summary["outcomes"],
        )
