"""Fixtures wiring real services around the in-memory database."""

import pytest
import pytest_asyncio

from grantmatch.container import ServiceContainer
from grantmatch.core.exceptions import DocumentConversionException
from grantmatch.extraction.chain import ExtractionChain
from grantmatch.extraction.tier1 import PatternExtractor
from grantmatch.extraction.tier2 import LanguageModelExtractor
from grantmatch.extraction.tier3 import AttachmentExtractor
from grantmatch.matching.cache import InvalidationBus, MatchCache
from grantmatch.matching.service import MatchingService
from grantmatch.services.ingestion import IngestionPipeline, IngestionStatusService
from grantmatch.services.language_model import LanguageModelResponse
from grantmatch.services.work_queue import InMemoryWorkQueue, JobLedger


class StubModelClient:
    """Language-model client returning fixed fields, or raising."""

    def __init__(self) -> None:
        self.fields: dict = {}
        self.error: Exception | None = None
        self.is_configured = True
        self.calls = 0

    async def extract(self, text, schema):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return LanguageModelResponse(fields={k: v for k, v in self.fields.items() if k in schema})


class NoAttachments:
    async def to_text(self, url):
        raise DocumentConversionException("no converter in tests", url=url)


class CountingChain(ExtractionChain):
    """Extraction chain that counts its runs."""

    def __init__(self, model_client: StubModelClient) -> None:
        super().__init__([
            PatternExtractor(),
            LanguageModelExtractor(model_client),
            AttachmentExtractor(NoAttachments()),
        ])
        self.runs = 0

    async def run(self, request, profile=None, tiers=None):
        self.runs += 1
        return await super().run(request, profile, tiers)


class RecordingBus(InvalidationBus):
    def __init__(self) -> None:
        super().__init__()
        self.published: list[tuple[str, object]] = []

    async def publish(self, topic, key):
        self.published.append((topic, key))
        return await super().publish(topic, key)


@pytest.fixture
def model_client() -> StubModelClient:
    return StubModelClient()


@pytest.fixture
def chain(model_client) -> CountingChain:
    return CountingChain(model_client)


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
def ledger(session_factory) -> JobLedger:
    return JobLedger(session_factory)


@pytest.fixture
def queue(ledger, clock) -> InMemoryWorkQueue:
    return InMemoryWorkQueue(per_source_limit=1, ledger=ledger, clock=clock)


@pytest.fixture
def pipeline(session_factory, fake_fetcher, chain, bus, queue, notifier, settings, clock) -> IngestionPipeline:
    return IngestionPipeline(
        session_factory,
        fake_fetcher,
        chain,
        bus,
        queue=queue,
        notifier=notifier,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def status_service(session_factory, clock) -> IngestionStatusService:
    return IngestionStatusService(session_factory, clock)


@pytest.fixture
def cache(settings, bus) -> MatchCache:
    return MatchCache(settings.match_cache_ttl_seconds, bus)


@pytest.fixture
def matching(session_factory, organizations, cache, bus, notifier, settings, clock) -> MatchingService:
    return MatchingService(session_factory, organizations, cache, bus, notifier, settings, clock)


@pytest_asyncio.fixture
async def save_programs(session_factory):
    """Persist FundingPrograms built with make_program."""

    async def _save(*programs):
        async with session_factory() as session:
            session.add_all(programs)
            await session.commit()
        return programs

    return _save


@pytest.fixture
def container(session_factory, settings, organizations, fake_fetcher, chain, notifier) -> ServiceContainer:
    return ServiceContainer.build(
        session_factory,
        settings,
        organizations=organizations,
        fetcher=fake_fetcher,
        chain=chain,
        notifier=notifier,
        persist_jobs=True,
    )
