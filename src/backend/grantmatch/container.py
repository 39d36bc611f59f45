"""
Service wiring.

Builds every long-lived service from settings and a session factory.
Tests build a container around an in-memory database and fake
collaborators through the same constructor.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grantmatch.core.config import Settings, get_settings
from grantmatch.core.logging import get_logger
from grantmatch.extraction.chain import ExtractionChain
from grantmatch.extraction.tier1 import PatternExtractor
from grantmatch.extraction.tier2 import LanguageModelExtractor
from grantmatch.extraction.tier3 import AttachmentExtractor
from grantmatch.matching.cache import InvalidationBus, MatchCache
from grantmatch.matching.service import MatchingService, OrganizationProvider
from grantmatch.models.scrape_job import JobKind
from grantmatch.services.document_converter import DocumentConverter
from grantmatch.services.fetcher import SourceFetcher
from grantmatch.services.ingestion import IngestionPipeline, IngestionStatusService
from grantmatch.services.language_model import LanguageModelClient
from grantmatch.services.notifications import NotificationEmitter
from grantmatch.services.organization_client import OrganizationClient
from grantmatch.services.scheduler import Scheduler
from grantmatch.services.work_queue import InMemoryWorkQueue, JobLedger
from grantmatch.services.worker import WorkerPool

logger = get_logger(__name__)


def build_chain(settings: Settings) -> ExtractionChain:
    """Tier 1, Tier 2 and Tier 3 in escalation order."""
    return ExtractionChain([
        PatternExtractor(),
        LanguageModelExtractor(
            LanguageModelClient(settings),
            max_chars=settings.extraction_tier2_max_chars,
            enabled=settings.extraction_tier2_enabled,
        ),
        AttachmentExtractor(DocumentConverter(settings), enabled=settings.extraction_tier3_enabled),
    ])


@dataclass
class ServiceContainer:
    settings: Settings
    bus: InvalidationBus
    cache: MatchCache
    notifier: NotificationEmitter
    queue: InMemoryWorkQueue
    fetcher: SourceFetcher
    pipeline: IngestionPipeline
    status: IngestionStatusService
    matching: MatchingService
    workers: WorkerPool
    scheduler: Scheduler
    organizations: OrganizationProvider

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        organizations: OrganizationProvider | None = None,
        fetcher: SourceFetcher | None = None,
        chain: ExtractionChain | None = None,
        notifier: NotificationEmitter | None = None,
        persist_jobs: bool = True,
    ) -> "ServiceContainer":
        settings = settings or get_settings()
        bus = InvalidationBus()
        cache = MatchCache(settings.match_cache_ttl_seconds, bus)
        notifier = notifier or NotificationEmitter(settings)
        organizations = organizations or OrganizationClient(settings)
        queue = InMemoryWorkQueue(
            per_source_limit=settings.worker_per_source_concurrency,
            ledger=JobLedger(session_factory) if persist_jobs else None,
        )
        fetcher = fetcher or SourceFetcher(settings)
        pipeline = IngestionPipeline(
            session_factory,
            fetcher,
            chain or build_chain(settings),
            bus,
            queue=queue,
            notifier=notifier,
            settings=settings,
        )
        workers = WorkerPool(
            queue,
            {JobKind.FETCH: pipeline.run_job, JobKind.ENRICH: pipeline.run_enrich_job},
            settings=settings,
            notifier=notifier,
            on_access_denied=pipeline.suspend_source,
        )
        scheduler = Scheduler(
            queue,
            session_factory,
            settings=settings,
            daily_tasks=[pipeline.deadline_housekeeping],
        )
        return cls(
            settings=settings,
            bus=bus,
            cache=cache,
            notifier=notifier,
            queue=queue,
            fetcher=fetcher,
            pipeline=pipeline,
            status=IngestionStatusService(session_factory),
            matching=MatchingService(session_factory, organizations, cache, bus, notifier, settings),
            workers=workers,
            scheduler=scheduler,
            organizations=organizations,
        )

    async def start(self) -> None:
        restored = await self.queue.restore()
        self.workers.start()
        if self.settings.scheduler_enabled:
            self.scheduler.start()
        logger.info("services_started", restored_jobs=restored, scheduler=self.settings.scheduler_enabled)

    async def stop(self) -> None:
        await self.scheduler.stop()
        await self.workers.stop()
        await self.fetcher.close()
        await self.notifier.close()
        close = getattr(self.organizations, "close", None)
        if close is not None:
            await close()
        logger.info("services_stopped")
