"""Tests for fetch-to-persistence ingestion."""

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from grantmatch.core.exceptions import (
    AccessDeniedException,
    QuotaExhaustedException,
    SourceSuspendedException,
    TransientFetchException,
)
from grantmatch.extraction import profile as pf
from grantmatch.matching.cache import PROGRAM_UPDATED
from grantmatch.models import FundingProgram, ProgramStatus, Source
from grantmatch.models.scrape_job import JobKind
from grantmatch.services.records import FetchOutcome, RawRecord

BODY = "지원대상: 중소기업\n신청마감일: 2025.03.20\n지원규모: 총 2억원"


def record(body: str = BODY, external_id: str = "N-101", title: str = "2025년 AI 바우처 지원사업") -> RawRecord:
    return RawRecord(
        agency="KEIT",
        title=title,
        url=f"https://keit.example/notice/view?id={external_id}",
        body=body,
        external_id=external_id,
    )


async def count_programs(session_factory) -> int:
    async with session_factory() as session:
        return (await session.execute(select(func.count(FundingProgram.id)))).scalar_one()


async def load_program(session_factory, external_id: str = "N-101") -> FundingProgram:
    async with session_factory() as session:
        result = await session.execute(select(FundingProgram).where(FundingProgram.external_id == external_id))
        return result.scalar_one()


class TestRunSource:
    """Tests for IngestionPipeline.run_source."""

    @pytest.mark.asyncio
    async def test_new_record_is_extracted_and_stored(self, pipeline, add_source, fake_fetcher, session_factory):
        await add_source("KEIT")
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record()]))

        report = await pipeline.run_source("KEIT")

        assert report["new"] == 1
        program = await load_program(session_factory)
        assert program.status == ProgramStatus.ACTIVE
        assert program.deadline == date(2025, 3, 20)
        assert program.profile.value(pf.BUDGET_AMOUNT) == 200_000_000
        assert program.profile.value(pf.TARGET_ORG_TYPES) == ["COMPANY"]
        assert program.canonical_url == "https://keit.example/notice/view?id=N-101"
        assert program.extraction_meta["tiers_run"][0] == "TIER1"

    @pytest.mark.asyncio
    async def test_unchanged_record_is_skipped(self, pipeline, add_source, fake_fetcher, chain, bus, session_factory):
        """Test that an identical second scrape neither extracts nor writes."""
        await add_source("KEIT")
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record()]))
        await pipeline.run_source("KEIT")
        stored = await load_program(session_factory)

        report = await pipeline.run_source("KEIT")

        assert report["unchanged"] == 1
        assert report["new"] == report["updated"] == 0
        assert chain.runs == 1
        assert bus.published == []
        assert await count_programs(session_factory) == 1
        assert (await load_program(session_factory)).scraped_at == stored.scraped_at

    @pytest.mark.asyncio
    async def test_updated_record_invalidates_matches(self, pipeline, add_source, fake_fetcher, bus, session_factory):
        await add_source("KEIT")
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record()]))
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record(BODY.replace("2025.03.20", "2025.03.31"))]))
        await pipeline.run_source("KEIT")

        report = await pipeline.run_source("KEIT")

        program = await load_program(session_factory)
        assert report["updated"] == 1
        assert program.deadline == date(2025, 3, 31)
        assert bus.published == [(PROGRAM_UPDATED, program.id)]
        assert await count_programs(session_factory) == 1

    @pytest.mark.asyncio
    async def test_same_identity_twice_in_one_fetch(self, pipeline, add_source, fake_fetcher, session_factory):
        await add_source("KEIT")
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record(), record()]))

        report = await pipeline.run_source("KEIT")

        assert (report["new"], report["unchanged"]) == (1, 1)
        assert await count_programs(session_factory) == 1

    @pytest.mark.asyncio
    async def test_past_deadline_stored_as_expired(self, pipeline, add_source, fake_fetcher, session_factory):
        await add_source("KEIT")
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record(BODY.replace("2025.03.20", "2025.02.10"))]))

        await pipeline.run_source("KEIT")

        assert (await load_program(session_factory)).status == ProgramStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_partial_fetch_ingests_then_raises(self, pipeline, add_source, fake_fetcher, session_factory):
        await add_source("KEIT")
        error = TransientFetchException("HTTP 503 from https://keit.example/list?page=2", "KEIT")
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record()], error=error))

        with pytest.raises(TransientFetchException):
            await pipeline.run_source("KEIT")

        assert await count_programs(session_factory) == 1
        async with session_factory() as session:
            source = (await session.execute(select(Source))).scalar_one()
        assert source.last_error_message == error.message
        assert source.last_success_at is None

    @pytest.mark.asyncio
    async def test_quota_exhaustion_schedules_enrichment(
        self, pipeline, add_source, fake_fetcher, model_client, queue, clock, session_factory
    ):
        await add_source("KEIT")
        model_client.error = QuotaExhaustedException("AzureOpenAI", clock() + timedelta(minutes=1))
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record()]))

        report = await pipeline.run_source("KEIT")

        assert report["deferred_until"] is not None
        program = await load_program(session_factory)
        assert program.extraction_meta["deferred_until"] is not None
        clock.advance(minutes=2)
        job = await queue.get()
        assert job.kind == JobKind.ENRICH
        assert job.dedupe_key == "KEIT:enrich:2025-03-01"


class TestEnrich:
    """Tests for re-running Tiers 2 and 3 over stored programs."""

    @pytest.mark.asyncio
    async def test_enrich_fills_unresolved_fields(
        self, pipeline, add_source, fake_fetcher, model_client, bus, session_factory
    ):
        await add_source("KEIT")
        model_client.is_configured = False
        fake_fetcher.queue(FetchOutcome("KEIT", records=[record()]))
        await pipeline.run_source("KEIT")

        model_client.is_configured = True
        model_client.fields = {pf.REGIONS: {"value": ["BUSAN"], "confidence": "medium", "evidence": ""}}
        summary = await pipeline.enrich()

        program = await load_program(session_factory)
        assert summary["enriched"] == 1
        assert program.profile.value(pf.REGIONS) == ["BUSAN"]
        assert program.profile.get(pf.REGIONS).source.value == "TIER2"
        assert (PROGRAM_UPDATED, program.id) in bus.published


class TestSourceOperations:
    """Tests for suspension and deadline housekeeping."""

    @pytest.mark.asyncio
    async def test_suspend_source(self, pipeline, add_source, notifier, clock, settings, session_factory):
        await add_source("KEIT")

        await pipeline.suspend_source("KEIT", AccessDeniedException(403, "https://keit.example/list", "KEIT"))

        async with session_factory() as session:
            source = (await session.execute(select(Source))).scalar_one()
        assert source.is_suspended(clock())
        assert not source.is_suspended(clock() + timedelta(minutes=settings.crawler_cooldown_minutes + 1))
        assert source.consecutive_access_failures == 1
        assert notifier.sent[0]["kind"] == "source_suspended"

    @pytest.mark.asyncio
    async def test_suspended_source_is_not_fetched(self, pipeline, add_source, fake_fetcher, clock, settings):
        """Test that queued runs wait out the cool-down instead of contacting the source."""
        await add_source("KEIT")
        await pipeline.suspend_source("KEIT", AccessDeniedException(403, "https://keit.example/list", "KEIT"))

        with pytest.raises(SourceSuspendedException) as exc_info:
            await pipeline.run_source("KEIT")

        assert fake_fetcher.calls == []
        assert exc_info.value.suspended_until == clock() + timedelta(minutes=settings.crawler_cooldown_minutes)

        clock.advance(minutes=settings.crawler_cooldown_minutes + 1)
        await pipeline.run_source("KEIT")
        assert fake_fetcher.calls == ["KEIT"]

    @pytest.mark.asyncio
    async def test_deadline_housekeeping(self, pipeline, make_program, save_programs, notifier, bus, session_factory):
        today = date(2025, 3, 1)
        closed = make_program("마감 과제", external_id="old", deadline=date(2025, 2, 27))
        soon = make_program("임박 과제", external_id="soon", deadline=today + timedelta(days=3))
        later = make_program("여유 과제", external_id="later", deadline=today + timedelta(days=20))
        await save_programs(closed, soon, later)

        summary = await pipeline.deadline_housekeeping(today)

        assert summary == {"expired": 1, "reminders": 1}
        assert (await load_program(session_factory, "old")).status == ProgramStatus.EXPIRED
        assert notifier.sent[0]["type"] == "deadline_reminder"
        assert notifier.sent[0]["deadlineInDays"] == 3
        assert bus.published == [(PROGRAM_UPDATED, closed.id)]
