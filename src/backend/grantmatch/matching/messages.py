"""
Localized message catalog for gate verdicts, warnings and factor rules.

Matching code records reason codes with parameters; text is rendered only
at the edges (result serialization and the explainer), in English or
Korean.
"""

from dataclasses import dataclass, field
from typing import Any

DEFAULT_LOCALE = "en"

ORG_TYPE_LABELS = {
    "en": {
        "COMPANY": "company",
        "RESEARCH_INSTITUTE": "research institute",
        "UNIVERSITY": "university",
        "PUBLIC_INSTITUTION": "public institution",
    },
    "ko": {
        "COMPANY": "기업",
        "RESEARCH_INSTITUTE": "연구기관",
        "UNIVERSITY": "대학",
        "PUBLIC_INSTITUTION": "공공기관",
    },
}

STRUCTURE_LABELS = {
    "en": {"CORPORATION": "corporation", "SOLE_PROPRIETOR": "sole proprietor"},
    "ko": {"CORPORATION": "법인사업자", "SOLE_PROPRIETOR": "개인사업자"},
}

MESSAGES: dict[str, dict[str, str]] = {
    # Gate failures
    "ORG_TYPE_NOT_TARGETED": {
        "en": "Open to {targets} only; organization is a {org_type}",
        "ko": "{targets}만 신청 가능하며, 귀 기관은 {org_type}입니다",
    },
    "TRL_OUT_OF_RANGE": {
        "en": "TRL {trl} is outside the accepted range TRL {min}-{max}",
        "ko": "기술성숙도 TRL {trl}단계가 허용 범위 TRL {min}~{max}단계를 벗어납니다",
    },
    "CERTIFICATION_MISSING": {
        "en": "{certification} certification required but not held",
        "ko": "{certification} 인증이 필요하지만 보유하고 있지 않습니다",
    },
    "BUSINESS_STRUCTURE_NOT_ALLOWED": {
        "en": "Open to {allowed} only; organization is a {structure}",
        "ko": "{allowed}만 신청 가능하며, 귀사는 {structure}입니다",
    },
    # Warnings
    "ORG_TYPE_UNSTATED": {
        "en": "Eligible applicant types are not stated in the announcement",
        "ko": "공고문에 신청 가능 기관 유형이 명시되어 있지 않습니다",
    },
    "TRL_NOT_PROVIDED": {
        "en": "Program expects TRL {min}-{max}; add your TRL to the profile to verify",
        "ko": "TRL {min}~{max}단계 대상 과제입니다. 프로필에 기술성숙도를 입력해 주세요",
    },
    "TRL_INFERRED": {
        "en": "TRL range is inferred, not stated explicitly; check the announcement",
        "ko": "TRL 범위는 공고문에 명시되지 않아 추정한 값입니다. 공고문을 확인하세요",
    },
    "TRL_HISTORICAL_TOLERANCE": {
        "en": "TRL {trl} is outside TRL {min}-{max}; shown for reference on a closed program",
        "ko": "TRL {trl}단계는 TRL {min}~{max}단계 범위 밖이며, 마감된 과제 참고용으로 표시됩니다",
    },
    "BUSINESS_STRUCTURE_UNKNOWN": {
        "en": "Open to {allowed} only; add your business structure to the profile",
        "ko": "{allowed}만 신청 가능합니다. 프로필에 사업자 유형을 입력해 주세요",
    },
    "REGION_MISMATCH": {
        "en": "Restricted to companies located in {regions}",
        "ko": "{regions} 소재 기업으로 제한됩니다",
    },
    "REGION_UNVERIFIED": {
        "en": "Restricted to companies located in {regions}; add locations to the profile",
        "ko": "{regions} 소재 기업으로 제한됩니다. 프로필에 소재지를 입력해 주세요",
    },
    "REVENUE_OUT_OF_RANGE": {
        "en": "Revenue requirement {bounds} may not be met",
        "ko": "매출액 요건({bounds})을 충족하지 못할 수 있습니다",
    },
    "EMPLOYEES_OUT_OF_RANGE": {
        "en": "Employee requirement {bounds} may not be met",
        "ko": "상시근로자 수 요건({bounds})을 충족하지 못할 수 있습니다",
    },
    "BUSINESS_AGE_OUT_OF_RANGE": {
        "en": "Business age requirement {bounds} may not be met",
        "ko": "업력 요건({bounds})을 충족하지 못할 수 있습니다",
    },
    "SCALE_MISMATCH": {
        "en": "Targets {scales}; organization is registered as {scale}",
        "ko": "{scales} 대상 과제이며, 귀사는 {scale}입니다",
    },
    "DEADLINE_MISSING": {
        "en": "Deadline not yet announced",
        "ko": "마감일이 아직 공고되지 않았습니다",
    },
    "BUDGET_MISSING": {
        "en": "Budget not yet announced",
        "ko": "지원규모가 아직 확정되지 않았습니다",
    },
    "DEADLINE_PASSED": {
        "en": "Closed on {deadline}; use as reference for next year's call",
        "ko": "{deadline} 마감된 과제입니다. 내년도 유사 공고 준비용으로 참고하세요",
    },
    # Factor rules
    "INDUSTRY_EXACT": {
        "en": "Industry {sector} matches the program's sector",
        "ko": "산업 분야({sector})가 과제 분야와 일치합니다",
    },
    "INDUSTRY_RELATED": {
        "en": "Industry {sector} is closely related to {program_sector}",
        "ko": "산업 분야({sector})가 {program_sector} 분야와 밀접하게 관련됩니다",
    },
    "INDUSTRY_KEYWORD": {
        "en": "Technology keyword '{keyword}' appears in the program title",
        "ko": "기술 키워드 '{keyword}'가 과제명에 포함되어 있습니다",
    },
    "INDUSTRY_UNRELATED": {
        "en": "No industry alignment found",
        "ko": "산업 분야 연관성이 확인되지 않습니다",
    },
    "TRL_IN_RANGE": {
        "en": "TRL {trl} is within the required range TRL {min}-{max}",
        "ko": "기술성숙도 TRL {trl}단계가 요구 범위 TRL {min}~{max}단계에 해당합니다",
    },
    "TRL_TOO_LOW": {
        "en": "TRL {trl} is {distance} below the required minimum TRL {min}",
        "ko": "기술성숙도 TRL {trl}단계가 최소 요구 TRL {min}단계보다 {distance}단계 낮습니다",
    },
    "TRL_TOO_HIGH": {
        "en": "TRL {trl} is {distance} above the required maximum TRL {max}",
        "ko": "기술성숙도 TRL {trl}단계가 최대 요구 TRL {max}단계보다 {distance}단계 높습니다",
    },
    "TRL_UNKNOWN_ORG": {
        "en": "Organization TRL not provided",
        "ko": "기관의 기술성숙도 정보가 없습니다",
    },
    "TRL_NO_REQUIREMENT": {
        "en": "Program has no TRL requirement",
        "ko": "TRL 요건이 없는 과제입니다",
    },
    "TYPE_MATCH": {
        "en": "Organization type {org_type} is an eligible applicant type",
        "ko": "기관 유형({org_type})이 신청 대상에 해당합니다",
    },
    "TYPE_NO_RESTRICTION": {
        "en": "No applicant type restriction stated",
        "ko": "신청 기관 유형 제한이 명시되어 있지 않습니다",
    },
    "RD_EXPERIENCE": {
        "en": "Prior R&D project experience",
        "ko": "국가 R&D 수행 경험이 있습니다",
    },
    "RD_FIRST_TIME": {
        "en": "First-time R&D applicant",
        "ko": "R&D 과제 첫 도전입니다",
    },
    "DEADLINE_IDEAL": {
        "en": "{days} days until the deadline: enough time to prepare",
        "ko": "마감까지 {days}일 남아 준비 기간이 적절합니다",
    },
    "DEADLINE_URGENT": {
        "en": "Only {days} days until the deadline",
        "ko": "마감까지 {days}일밖에 남지 않았습니다",
    },
    "DEADLINE_MODERATE": {
        "en": "{days} days until the deadline",
        "ko": "마감까지 {days}일 남았습니다",
    },
    "DEADLINE_FAR": {
        "en": "Deadline is {days} days away",
        "ko": "마감까지 {days}일로 여유가 있습니다",
    },
    "DEADLINE_UNKNOWN": {
        "en": "Deadline not announced",
        "ko": "마감일 미정",
    },
    "DEADLINE_CLOSED": {
        "en": "Deadline has passed",
        "ko": "마감된 과제입니다",
    },
}


@dataclass(frozen=True)
class Reason:
    """A message code with its parameters."""

    code: str
    params: dict[str, Any] = field(default_factory=dict, hash=False, compare=True)

    def render(self, locale: str = DEFAULT_LOCALE) -> str:
        return render(self.code, locale, **self.params)


def _label(table: dict[str, dict[str, str]], locale: str, value: Any) -> str:
    return table.get(locale, table[DEFAULT_LOCALE]).get(str(value), str(value))


def _localize_params(locale: str, params: dict[str, Any]) -> dict[str, Any]:
    localized = dict(params)
    if "org_type" in localized:
        localized["org_type"] = _label(ORG_TYPE_LABELS, locale, localized["org_type"])
    if "targets" in localized:
        localized["targets"] = ", ".join(_label(ORG_TYPE_LABELS, locale, t) for t in localized["targets"])
    if "structure" in localized:
        localized["structure"] = _label(STRUCTURE_LABELS, locale, localized["structure"])
    if "allowed" in localized:
        localized["allowed"] = ", ".join(_label(STRUCTURE_LABELS, locale, s) for s in localized["allowed"])
    for key in ("regions", "scales"):
        if isinstance(localized.get(key), list):
            localized[key] = ", ".join(localized[key])
    return localized


def render(code: str, locale: str = DEFAULT_LOCALE, **params: Any) -> str:
    """Render a message; unknown locales fall back to English."""
    templates = MESSAGES[code]
    template = templates.get(locale, templates[DEFAULT_LOCALE])
    return template.format(**_localize_params(locale, params))
