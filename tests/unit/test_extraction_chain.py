"""Tests for the extraction tier chain."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from grantmatch.core.exceptions import DocumentConversionException, LanguageModelException, QuotaExhaustedException
from grantmatch.extraction import profile as pf
from grantmatch.extraction.base import ExtractionRequest
from grantmatch.extraction.chain import ExtractionChain
from grantmatch.extraction.profile import Confidence, FieldSource, FieldValue
from grantmatch.extraction.tier1 import PatternExtractor
from grantmatch.extraction.tier2 import LanguageModelExtractor, normalize_value
from grantmatch.extraction.tier3 import AttachmentExtractor
from grantmatch.services.document_converter import DocumentConverter
from grantmatch.services.language_model import LanguageModelResponse


class FakeModelClient:
    """Stands in for the Azure OpenAI client."""

    def __init__(self, fields=None, error=None, configured=True):
        self.fields = fields or {}
        self.error = error
        self.is_configured = configured
        self.requested: list[set[str]] = []

    async def extract(self, text, schema):
        self.requested.append(set(schema))
        if self.error is not None:
            raise self.error
        return LanguageModelResponse(fields={k: v for k, v in self.fields.items() if k in schema})


class FakeConverter:
    def __init__(self, texts):
        self.texts = texts
        self.converted: list[str] = []

    async def to_text(self, url):
        self.converted.append(url)
        text = self.texts.get(url)
        if text is None:
            raise DocumentConversionException("unsupported", url=url)
        return text


def make_chain(model_client, converter=None):
    return ExtractionChain([
        PatternExtractor(),
        LanguageModelExtractor(model_client),
        AttachmentExtractor(converter or FakeConverter({})),
    ])


@pytest.fixture
def request_without_region():
    return ExtractionRequest(
        program_key="KEIT:101",
        title="2025년 스마트공장 고도화 지원사업",
        raw_text="지원대상: 중소기업\n신청마감일: 2025.03.15\n동남권 제조기업의 공정 혁신을 지원합니다.",
    )


class TestExtractionChain:
    """Tests for tier escalation and precedence."""

    @pytest.mark.asyncio
    async def test_tier2_fills_region_at_medium_confidence(self, request_without_region):
        """Test a region Tier 1 cannot find being supplied by Tier 2."""
        client = FakeModelClient(fields={
            pf.REGIONS: {"value": ["BUSAN"], "confidence": "high", "evidence": "부산에 있는 제조기업"},
        })
        outcome = await make_chain(client).run(request_without_region)

        region = outcome.profile.get(pf.REGIONS)
        assert region.value == ["BUSAN"]
        assert region.source == FieldSource.TIER2
        assert region.confidence == Confidence.MEDIUM

    @pytest.mark.asyncio
    async def test_tier2_only_asked_for_unresolved_fields(self, request_without_region):
        client = FakeModelClient()
        await make_chain(client).run(request_without_region)

        requested = client.requested[0]
        assert pf.REGIONS in requested
        assert pf.DEADLINE not in requested
        assert pf.TARGET_ORG_TYPES not in requested

    @pytest.mark.asyncio
    async def test_tier2_promoted_when_evidence_reproduces(self, request_without_region):
        """Test HIGH confidence when the quoted evidence matches the patterns."""
        client = FakeModelClient(fields={
            pf.REGIONS: {"value": ["BUSAN"], "confidence": "medium", "evidence": "부산 지역 소재 기업"},
        })
        outcome = await make_chain(client).run(request_without_region)

        assert outcome.profile.get(pf.REGIONS).confidence == Confidence.HIGH

    @pytest.mark.asyncio
    async def test_tier2_keyword_match_stays_medium(self):
        """Test that evidence matching sector keywords alone is not promoted."""
        request = ExtractionRequest(
            program_key="KEIT:102",
            title="2025년 혁신 기술개발 지원사업",
            raw_text="지원대상: 중소기업\n신청마감일: 2025.03.15",
        )
        client = FakeModelClient(fields={
            pf.INDUSTRY_SECTORS: {"value": ["ICT"], "confidence": "high", "evidence": "인공지능 소프트웨어 기업"},
        })
        outcome = await make_chain(client).run(request)

        sectors = outcome.profile.get(pf.INDUSTRY_SECTORS)
        assert sectors.value == ["ICT"]
        assert sectors.source == FieldSource.TIER2
        assert sectors.confidence == Confidence.MEDIUM

    @pytest.mark.asyncio
    async def test_tier1_values_win(self, request_without_region):
        outcome = await make_chain(FakeModelClient()).run(request_without_region)

        deadline = outcome.profile.get(pf.DEADLINE)
        assert deadline.value == "2025-03-15"
        assert deadline.source == FieldSource.TIER1
        assert outcome.tiers_run == ["TIER1", "TIER2"]
        assert outcome.skipped["TIER3"] == "no_attachment"

    @pytest.mark.asyncio
    async def test_api_fields_take_precedence(self, request_without_region):
        request_without_region.api_fields = {
            pf.DEADLINE: FieldValue("2025-03-20", FieldSource.API, Confidence.HIGH, "x"),
        }
        outcome = await make_chain(FakeModelClient()).run(request_without_region)

        assert outcome.profile.value(pf.DEADLINE) == "2025-03-20"
        assert outcome.profile.get(pf.DEADLINE).source == FieldSource.API

    @pytest.mark.asyncio
    async def test_unresolved_fields_marked_low(self, request_without_region):
        outcome = await make_chain(FakeModelClient()).run(request_without_region)

        trl = outcome.profile.get(pf.TRL_RANGE)
        assert trl.value is None
        assert trl.confidence == Confidence.LOW
        assert pf.TRL_RANGE in outcome.unresolved

    @pytest.mark.asyncio
    async def test_tier2_failure_is_recorded_not_raised(self, request_without_region):
        client = FakeModelClient(error=LanguageModelException("bad json"))
        outcome = await make_chain(client).run(request_without_region)

        assert "TIER2" in outcome.errors
        assert outcome.profile.value(pf.DEADLINE) == "2025-03-15"

    @pytest.mark.asyncio
    async def test_quota_exhaustion_defers_remaining_tiers(self, request_without_region):
        """Test that an exhausted budget stops the chain with a retry time."""
        retry_after = datetime.now(timezone.utc) + timedelta(seconds=30)
        request_without_region.attachment_urls = ["https://keit.example/files/notice.pdf"]
        converter = FakeConverter({})
        client = FakeModelClient(error=QuotaExhaustedException("AzureOpenAI", retry_after))

        outcome = await make_chain(client, converter).run(request_without_region)

        assert outcome.deferred
        assert outcome.deferred_until == retry_after
        assert outcome.errors["TIER2"] == "quota_exhausted"
        assert converter.converted == []
        assert outcome.to_meta()["deferred_until"] == retry_after.isoformat()

    @pytest.mark.asyncio
    async def test_tier3_reads_attachments(self, request_without_region):
        url = "https://keit.example/files/notice.pdf"
        request_without_region.attachment_urls = [url]
        converter = FakeConverter({url: "기술성숙도 TRL 4~6단계 과제"})

        outcome = await make_chain(FakeModelClient(configured=False), converter).run(request_without_region)

        trl = outcome.profile.get(pf.TRL_RANGE)
        assert trl.value == {"min": 4, "max": 6}
        assert trl.source == FieldSource.TIER3
        assert outcome.skipped["TIER2"] == "not_configured"

    @pytest.mark.asyncio
    async def test_enrichment_restricts_tiers(self, request_without_region):
        client = FakeModelClient()
        outcome = await make_chain(client).run(
            request_without_region, tiers={FieldSource.TIER2, FieldSource.TIER3}
        )

        assert outcome.skipped["TIER1"] == "not_requested"
        assert outcome.profile.get(pf.DEADLINE).source != FieldSource.TIER1


class TestAttachmentFailures:
    """Tests for attachments that cannot be parsed."""

    @pytest.mark.asyncio
    async def test_login_page_served_as_docx_is_recorded(self, settings, request_without_region):
        """Test an HTML page behind a .docx link degrading to a Tier 3 error."""
        settings = settings.model_copy(
            update={"azure_doc_intelligence_endpoint": None, "azure_doc_intelligence_key": None}
        )
        url = "https://keit.example/files/notice.docx"

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, headers={"content-type": "text/html"}, text="<html>login required</html>")

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        converter = DocumentConverter(settings, http_client=http_client)
        request_without_region.attachment_urls = [url]

        outcome = await make_chain(FakeModelClient(configured=False), converter).run(request_without_region)
        await converter.close()

        assert "DOCX extraction failed" in outcome.errors["TIER3"]
        assert outcome.profile.value(pf.DEADLINE) == "2025-03-15"


class TestNormalizeValue:
    """Tests for validating model output."""

    def test_rejects_unknown_codes(self):
        assert normalize_value(pf.REGIONS, ["ATLANTIS"]) is None
        assert normalize_value(pf.TARGET_ORG_TYPES, ["company"]) == ["COMPANY"]

    def test_trl_bounds(self):
        assert normalize_value(pf.TRL_RANGE, {"min": 3, "max": 12}) is None
        assert normalize_value(pf.TRL_RANGE, {"min": 3}) == {"min": 3, "max": 9}

    def test_deadline_and_budget(self):
        assert normalize_value(pf.DEADLINE, "2025-03-15T00:00:00") == "2025-03-15"
        assert normalize_value(pf.DEADLINE, "next month") is None
        assert normalize_value(pf.BUDGET_AMOUNT, "150000000") == 150_000_000
        assert normalize_value(pf.BUDGET_AMOUNT, -5) is None
