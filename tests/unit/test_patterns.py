"""Tests for the deterministic eligibility patterns."""

from datetime import date

from grantmatch.extraction import profile as pf
from grantmatch.extraction.patterns import (
    extract_fields,
    find_budget,
    find_business_age_range,
    find_business_structures,
    find_certifications,
    find_deadline,
    find_employee_range,
    find_org_types,
    find_regions,
    find_trl_range,
    parse_budget_amount,
    parse_korean_date,
)
from grantmatch.extraction.profile import Confidence, FieldSource


class TestDates:
    """Tests for deadline parsing."""

    def test_parse_korean_formats(self):
        """Test dotted, dashed and Korean date formats."""
        assert parse_korean_date("2025.03.15") == date(2025, 3, 15)
        assert parse_korean_date("2025-3-5") == date(2025, 3, 5)
        assert parse_korean_date("2025년 3월 5일") == date(2025, 3, 5)

    def test_invalid_date(self):
        assert parse_korean_date("2025.13.45") is None
        assert parse_korean_date("마감 미정") is None

    def test_labelled_deadline(self):
        """Test that a labelled deadline is read with HIGH confidence."""
        assert find_deadline("신청마감일: 2025.03.15 18:00") == ("2025-03-15", Confidence.HIGH)

    def test_period_uses_end_date(self):
        """Test that an application period yields its closing date."""
        found = find_deadline("접수기간: 2025.02.01 ~ 2025.03.14")
        assert found == ("2025-03-14", Confidence.HIGH)

    def test_no_deadline(self):
        assert find_deadline("사업 개요와 추진 일정 안내") is None


class TestBudget:
    """Tests for budget amounts in Korean units."""

    def test_units(self):
        assert parse_budget_amount("1.5", "억") == 150_000_000
        assert parse_budget_amount("3,000", "만") == 30_000_000
        assert parse_budget_amount("500", None) == 500

    def test_labelled_budget(self):
        assert find_budget("지원규모: 총 1.5억원") == (150_000_000, Confidence.HIGH)

    def test_unlabelled_amount_ignored(self):
        assert find_budget("작년에는 5억원이 집행되었습니다") is None


class TestEligibility:
    """Tests for eligibility clauses."""

    def test_org_types_from_section(self):
        assert find_org_types("", "지원대상: 중소기업") == (["COMPANY"], Confidence.HIGH)

    def test_org_types_from_title_are_medium(self):
        found = find_org_types("대학 연구실 창업 지원", "본문")
        assert found is not None
        assert found[1] == Confidence.MEDIUM
        assert "UNIVERSITY" in found[0]

    def test_region_clause(self):
        """Test that a location clause yields region codes."""
        assert find_regions("", "신청자격: 부산광역시 소재 중소기업") == (["BUSAN"], Confidence.HIGH)

    def test_nationwide_region(self):
        assert find_regions("", "지원지역: 전국") == ([], Confidence.HIGH)

    def test_metropolitan_area(self):
        regions, _ = find_regions("", "수도권 소재 기업 대상")
        assert set(regions) == {"SEOUL", "GYEONGGI", "INCHEON"}

    def test_region_title_prefix(self):
        assert find_regions("[부산] 2025년 스마트공장 지원", "") == (["BUSAN"], Confidence.MEDIUM)

    def test_region_absent(self):
        assert find_regions("스마트공장 지원", "제조 혁신을 위한 사업입니다") is None

    def test_trl_range(self):
        assert find_trl_range("TRL 4~6 단계 기술") == ({"min": 4, "max": 6}, Confidence.HIGH)

    def test_trl_lower_bound(self):
        assert find_trl_range("TRL 5단계 이상") == ({"min": 5, "max": 9}, Confidence.HIGH)

    def test_employee_range(self):
        assert find_employee_range("상시근로자 50인 이하") == ({"max": 50}, Confidence.HIGH)

    def test_business_age(self):
        """Test that "within N years" is an upper bound."""
        assert find_business_age_range("창업 7년 이내 기업") == ({"max": 7}, Confidence.HIGH)

    def test_required_certification_only(self):
        """Test that preferred certifications are not treated as required."""
        text = "이노비즈 인증 보유 필수\n벤처기업 확인 시 우대"
        assert find_certifications(text) == (["INNO-BIZ"], Confidence.HIGH)

    def test_isms_p_not_split(self):
        certs, _ = find_certifications("ISMS-P 인증 보유 기업")
        assert certs == ["ISMS-P"]

    def test_business_structure(self):
        assert find_business_structures("개인사업자 제외") == (["CORPORATION"], Confidence.HIGH)
        assert find_business_structures("개인사업자만 신청 가능") == (["SOLE_PROPRIETOR"], Confidence.HIGH)


class TestExtractFields:
    """Tests for the combined extractor."""

    def test_tags_source_and_evidence(self):
        fields = extract_fields(
            "2025년 AI 바우처",
            "지원대상: 중소기업\n신청마감일: 2025.03.15",
            FieldSource.TIER3,
            evidence="abc",
        )

        assert fields[pf.DEADLINE].value == "2025-03-15"
        assert fields[pf.DEADLINE].source == FieldSource.TIER3
        assert fields[pf.DEADLINE].evidence == "abc"
        assert fields[pf.TARGET_ORG_TYPES].value == ["COMPANY"]

    def test_wanted_restricts_fields(self):
        fields = extract_fields(
            "",
            "지원대상: 중소기업\n신청마감일: 2025.03.15",
            FieldSource.TIER1,
            wanted={pf.DEADLINE},
        )

        assert set(fields) == {pf.DEADLINE}
