"""Shared fixtures: settings, an in-memory database and fake collaborators."""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from grantmatch.core.config import Settings
from grantmatch.core.exceptions import EntityNotFoundException
from grantmatch.db.base import Base
from grantmatch.extraction.profile import Confidence, EligibilityProfile, FieldSource, FieldValue
from grantmatch.models import FetchMode, FundingProgram, ProgramStatus, Source
from grantmatch.schemas.organization import OrganizationProfile
from grantmatch.services.change_detector import canonicalize_url, compute_content_hash
from grantmatch.services.notifications import NotificationEmitter
from grantmatch.services.records import FetchOutcome


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeOrganizations:
    """In-memory organization-profile service."""

    def __init__(self, *profiles: OrganizationProfile) -> None:
        self.profiles = {p.organization_id: p for p in profiles}
        self.calls: list[str] = []

    async def get_organization_profile(self, organization_id: str) -> OrganizationProfile:
        self.calls.append(organization_id)
        if organization_id not in self.profiles:
            raise EntityNotFoundException("Organization", organization_id)
        return self.profiles[organization_id]


class FakeFetcher:
    """Returns queued FetchOutcomes per source instead of crawling."""

    def __init__(self) -> None:
        self.outcomes: dict[str, list[FetchOutcome]] = {}
        self.calls: list[str] = []

    def queue(self, outcome: FetchOutcome) -> None:
        self.outcomes.setdefault(outcome.source_key, []).append(outcome)

    async def fetch(self, source) -> FetchOutcome:
        self.calls.append(source.source_key)
        pending = self.outcomes.get(source.source_key) or []
        if len(pending) > 1:
            return pending.pop(0)
        if pending:
            return pending[0]
        return FetchOutcome(source_key=source.source_key)

    async def close(self) -> None:
        pass


class RecordingNotifier(NotificationEmitter):
    """Keeps every emitted event so tests can assert on them."""

    def __init__(self, settings: Settings, http_client=None) -> None:
        super().__init__(settings, http_client)
        self.sent: list[dict] = []

    async def deliver(self, event: dict) -> bool:
        self.sent.append(event)
        return await super().deliver(event)


@pytest.fixture
def settings() -> Settings:
    """Settings with delays disabled and no external services."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        crawler_min_delay=0.0,
        crawler_max_delay=0.0,
        crawler_max_retries=2,
        crawler_retry_min_wait=0.0,
        crawler_retry_max_wait=0.0,
        crawler_respect_robots=False,
        scheduler_enabled=False,
        worker_count=1,
        job_max_attempts=3,
        job_retry_base_delay=60.0,
        job_retry_max_delay=3600.0,
        match_cache_ttl_seconds=3600,
        log_format="console",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 1, 1, 0, tzinfo=timezone.utc))


@pytest.fixture
def notifier(settings) -> RecordingNotifier:
    return RecordingNotifier(settings)


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite engine with SAVEPOINT support for nested transactions."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
def organizations() -> FakeOrganizations:
    return FakeOrganizations(
        OrganizationProfile(
            organization_id="org-1",
            name="Acme Robotics",
            organization_type="COMPANY",
            industry_sector="ICT",
            technology_keywords=["AI"],
            trl=7,
            certifications=[],
            regions=["SEOUL"],
            rd_experience=True,
        )
    )


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


def field(value, source=FieldSource.TIER1, confidence=Confidence.HIGH) -> FieldValue:
    return FieldValue(value, source, confidence, "evidence")


def build_program(
    title: str = "2025년 AI 융합 기술개발사업",
    agency: str = "KEIT",
    external_id: str | None = None,
    deadline: date | None = None,
    status: ProgramStatus = ProgramStatus.ACTIVE,
    scraped_at: datetime | None = None,
    **fields: FieldValue,
) -> FundingProgram:
    """A FundingProgram with the given eligibility fields."""
    profile = EligibilityProfile(fields=dict(fields))
    if deadline is not None and "deadline" not in fields:
        profile.fields["deadline"] = field(deadline.isoformat())
    url = f"https://{agency.lower()}.example/notice/{external_id or uuid.uuid4().hex[:8]}"
    scraped_at = scraped_at or datetime(2025, 2, 1, tzinfo=timezone.utc)
    return FundingProgram(
        id=uuid.uuid4(),
        agency=agency,
        external_id=external_id or url,
        source_key=agency,
        title=title,
        raw_text="",
        source_url=url,
        canonical_url=canonicalize_url(url),
        attachment_urls=[],
        content_hash=compute_content_hash(agency, title, canonicalize_url(url), ""),
        scraped_at=scraped_at,
        first_seen_at=scraped_at,
        status=status,
        deadline=deadline,
        eligibility=profile.to_dict(),
        extraction_meta={},
    )


@pytest.fixture
def make_program():
    return build_program


@pytest.fixture
def make_field():
    return field


@pytest_asyncio.fixture
async def add_source(session_factory):
    """Insert a Source row."""

    async def _add(source_key: str = "KEIT", **overrides) -> Source:
        values = {
            "source_key": source_key,
            "name": f"{source_key} announcements",
            "agency": source_key,
            "fetch_mode": FetchMode.HTML,
            "base_url": f"https://{source_key.lower()}.example",
            "listing_url": f"https://{source_key.lower()}.example/list",
            "config": {},
            "requests_per_minute": 600,
            "min_delay_seconds": 0.0,
            "max_pages": 1,
            "is_enabled": True,
        }
        values.update(overrides)
        async with session_factory() as session:
            source = Source(**values)
            session.add(source)
            await session.commit()
            return source

    return _add
