"""
Deterministic eligibility patterns for Korean funding announcements.

Pure functions only: they are shared by Tier 1 (announcement text), the
Tier 2 evidence check and Tier 3 (attachment text).

Confidence convention:
- HIGH: value read from an explicitly labelled clause
  (e.g. "신청마감일: 2025.03.15", "지원대상: 중소기업")
- MEDIUM: value inferred from keywords outside a labelled clause
"""

import re
from datetime import date
from typing import Any

from grantmatch.extraction import profile as pf
from grantmatch.extraction.profile import Confidence, FieldSource, FieldValue
from grantmatch.extraction.vocabulary import (
    COMPANY_SCALE_KEYWORDS,
    METROPOLITAN_REGIONS,
    ORG_TYPE_KEYWORDS,
    REGION_KEYWORDS,
    SECTOR_KEYWORDS,
    BusinessStructure,
    normalize_certification,
)

KOREAN_UNITS: dict[str, int] = {
    "조": 1_000_000_000_000,
    "억": 100_000_000,
    "천만": 10_000_000,
    "백만": 1_000_000,
    "만": 10_000,
}

_DATE = r"(\d{4})\s*[.\-/년]\s*(\d{1,2})\s*[.\-/월]\s*(\d{1,2})\s*일?"

DEADLINE_LABEL_RE = re.compile(
    r"(?:신청\s*마감일?|접수\s*마감일?|마감\s*일시?|마감일|제출\s*마감|deadline)\s*[:：]?\s*" + _DATE,
    re.IGNORECASE,
)
PERIOD_RE = re.compile(
    r"(?:접수|신청|공모)\s*기간\s*[:：]?\s*" + _DATE + r"[^~\n]{0,20}~\s*" + _DATE,
)
BUDGET_RE = re.compile(
    r"(?:공고금액|지원규모|지원예산|지원금액|연구비|총사업비|사업비)\s*[:：]?\s*(?:총\s*)?"
    r"([\d,]+(?:\.\d+)?)\s*(조|억|천만|백만|만)\s*원"
)
ELIGIBILITY_SECTION_RE = re.compile(
    r"(?:지원\s*대상|신청\s*자격|참여\s*자격|신청\s*대상|eligible applicants?)\s*[:：]?\s*([^\n]{1,200})",
    re.IGNORECASE,
)
REGION_CLAUSE_RE = re.compile(r"[^\n]{0,30}(?:소재|지역|주소지|본사|본점)[^\n]{0,30}")
TRL_RANGE_RE = re.compile(
    r"(?:TRL|기술성숙도)\s*(?:\(TRL\))?\s*:?\s*(\d)\s*(?:단계)?\s*(?:~|-|–|에서|부터)\s*(?:TRL\s*)?(\d)",
    re.IGNORECASE,
)
TRL_BOUND_RE = re.compile(
    r"(?:TRL|기술성숙도)\s*(?:\(TRL\))?\s*:?\s*(\d)\s*(?:단계)?\s*(이상|이하|or higher|or lower)",
    re.IGNORECASE,
)
REVENUE_RE = re.compile(
    r"매출(?:액)?\s*(?:이|은|:)?\s*([\d,]+(?:\.\d+)?)\s*(조|억|천만|백만|만)?\s*원?\s*(이상|이하|미만|초과)"
)
EMPLOYEE_RE = re.compile(
    r"(?:상시\s*)?(?:근로자|종업원|직원)(?:\s*수)?\s*(?:가|이|:)?\s*(\d+)\s*(?:인|명)\s*(이상|이하|미만|초과)"
)
BUSINESS_AGE_RE = re.compile(r"(?:업력|창업(?:\s*후)?)\s*(\d+)\s*년\s*(이내|이하|미만|이상|초과)")
CERTIFICATION_RE = re.compile(
    r"(INNO-?BIZ|이노비즈|벤처기업|메인비즈|Main-?Biz|경영혁신형기업|ISMS-P|ISMS|ISO\s?27001|기업부설연구소)",
    re.IGNORECASE,
)
REQUIREMENT_HINT_RE = re.compile(r"필수|보유|소지|요건|자격|required|must hold", re.IGNORECASE)
PREFERENCE_HINT_RE = re.compile(r"우대|가점|preferred", re.IGNORECASE)

_SENTENCE_SPLIT_RE = re.compile(r"[\n。]|(?<=[.!?])\s")


def parse_korean_date(text: str) -> date | None:
    """
    Parse Korean and numeric date formats.

    Supports "2025.03.15", "2025-3-5", "2025/03/15" and "2025년 3월 15일".
    """
    match = re.search(_DATE, text)
    if not match:
        return None
    return _to_date(*match.groups())


def _to_date(year: str, month: str, day: str) -> date | None:
    try:
        return date(int(year), int(month), int(day))
    except ValueError:
        return None


def parse_budget_amount(number: str, unit: str | None) -> int | None:
    """Convert "1.5" + "억" style amounts into won."""
    try:
        value = float(number.replace(",", ""))
    except ValueError:
        return None
    return int(round(value * KOREAN_UNITS.get(unit or "", 1)))


def _sentences(text: str) -> list[str]:
    return [s for s in _SENTENCE_SPLIT_RE.split(text) if s and s.strip()]


def _keyword_in(keyword: str, text: str) -> bool:
    if keyword.isascii():
        return re.search(rf"(?<![A-Za-z]){re.escape(keyword)}(?![A-Za-z])", text, re.IGNORECASE) is not None
    return keyword in text


def _scan_keywords(text: str, table: dict[str, Any]) -> list[Any]:
    found: list[Any] = []
    for keyword in sorted(table, key=len, reverse=True):
        if _keyword_in(keyword, text) and table[keyword] not in found:
            found.append(table[keyword])
    return found


def _eligibility_sections(text: str) -> list[str]:
    # Certification names contain "연구소"; strip them before type detection
    return [m.group(1).replace("기업부설연구소", "") for m in ELIGIBILITY_SECTION_RE.finditer(text)]


def _bounds(matches: list[tuple[float, str]]) -> dict[str, float] | None:
    """Fold (amount, comparator) pairs into a {"min", "max"} range."""
    result: dict[str, float] = {}
    for amount, comparator in matches:
        if comparator in ("이상", "초과"):
            result["min"] = amount
        else:
            result["max"] = amount
    return result or None


def find_deadline(text: str) -> tuple[str, Confidence] | None:
    match = DEADLINE_LABEL_RE.search(text)
    if match:
        parsed = _to_date(*match.groups())
        if parsed:
            return parsed.isoformat(), Confidence.HIGH
    match = PERIOD_RE.search(text)
    if match:
        parsed = _to_date(*match.groups()[3:6])
        if parsed:
            return parsed.isoformat(), Confidence.HIGH
    return None


def find_budget(text: str) -> tuple[int, Confidence] | None:
    match = BUDGET_RE.search(text)
    if not match:
        return None
    amount = parse_budget_amount(match.group(1), match.group(2))
    return (amount, Confidence.HIGH) if amount else None


def find_org_types(title: str, text: str) -> tuple[list[str], Confidence] | None:
    sections = _eligibility_sections(text)
    for section in sections:
        found = _scan_keywords(section, ORG_TYPE_KEYWORDS)
        if found:
            return [t.value for t in found], Confidence.HIGH
    found = _scan_keywords(title, ORG_TYPE_KEYWORDS)
    if found:
        return [t.value for t in found], Confidence.MEDIUM
    return None


def find_company_scales(title: str, text: str) -> tuple[list[str], Confidence] | None:
    for section in _eligibility_sections(text):
        found = _scan_keywords(section.lower(), {k.lower(): v for k, v in COMPANY_SCALE_KEYWORDS.items()})
        if found:
            return [s.value for s in found], Confidence.HIGH
    found = _scan_keywords(title.lower(), {k.lower(): v for k, v in COMPANY_SCALE_KEYWORDS.items()})
    if found:
        return [s.value for s in found], Confidence.MEDIUM
    return None


def find_regions(title: str, text: str) -> tuple[list[str], Confidence] | None:
    for clause in REGION_CLAUSE_RE.findall(text):
        if "전국" in clause:
            return [], Confidence.HIGH
        regions = _scan_keywords(clause, REGION_KEYWORDS)
        if "수도권" in clause:
            regions += [r for r in METROPOLITAN_REGIONS if r not in regions]
        if regions:
            return regions, Confidence.HIGH
    # "[부산] 2025년 ..." style title prefixes
    prefix = re.match(r"\s*[\[(（【]([^\])）】]{1,12})[\])）】]", title)
    if prefix:
        regions = _scan_keywords(prefix.group(1), REGION_KEYWORDS)
        if regions:
            return regions, Confidence.MEDIUM
    return None


def find_trl_range(text: str) -> tuple[dict[str, int], Confidence] | None:
    match = TRL_RANGE_RE.search(text)
    if match:
        low, high = sorted((int(match.group(1)), int(match.group(2))))
        if 1 <= low <= high <= 9:
            return {"min": low, "max": high}, Confidence.HIGH
    match = TRL_BOUND_RE.search(text)
    if match:
        level = int(match.group(1))
        if 1 <= level <= 9:
            if match.group(2) in ("이상", "or higher"):
                return {"min": level, "max": 9}, Confidence.HIGH
            return {"min": 1, "max": level}, Confidence.HIGH
    return None


def find_revenue_range(text: str) -> tuple[dict[str, float], Confidence] | None:
    pairs = []
    for number, unit, comparator in REVENUE_RE.findall(text):
        amount = parse_budget_amount(number, unit or None)
        if amount is not None:
            pairs.append((amount, comparator))
    bounds = _bounds(pairs)
    return (bounds, Confidence.HIGH) if bounds else None


def find_employee_range(text: str) -> tuple[dict[str, float], Confidence] | None:
    bounds = _bounds([(int(n), c) for n, c in EMPLOYEE_RE.findall(text)])
    return (bounds, Confidence.HIGH) if bounds else None


def find_business_age_range(text: str) -> tuple[dict[str, float], Confidence] | None:
    pairs = []
    for years, comparator in BUSINESS_AGE_RE.findall(text):
        # "창업 7년 이내" is an upper bound on business age
        pairs.append((int(years), "이하" if comparator == "이내" else comparator))
    bounds = _bounds(pairs)
    return (bounds, Confidence.HIGH) if bounds else None


def find_certifications(text: str) -> tuple[list[str], Confidence] | None:
    required: list[str] = []
    for sentence in _sentences(text):
        if PREFERENCE_HINT_RE.search(sentence) or not REQUIREMENT_HINT_RE.search(sentence):
            continue
        for raw in CERTIFICATION_RE.findall(sentence):
            cert = normalize_certification(raw)
            # "ISMS" also matches the prefix of "ISMS-P"
            if cert == "ISMS" and "ISMS-P" in sentence.upper():
                continue
            if cert not in required:
                required.append(cert)
    return (required, Confidence.HIGH) if required else None


def find_business_structures(text: str) -> tuple[list[str], Confidence] | None:
    corp = BusinessStructure.CORPORATION.value
    sole = BusinessStructure.SOLE_PROPRIETOR.value
    if re.search(r"개인사업자\s*(?:는|은)?\s*(?:제외|불가|신청\s*불가)", text) or re.search(
        r"법인(?:사업자)?(?:만|에\s*한함|에\s*한하여)", text
    ):
        return [corp], Confidence.HIGH
    if re.search(r"개인사업자(?:만|에\s*한함)", text) or re.search(r"법인(?:사업자)?\s*(?:는|은)?\s*제외", text):
        return [sole], Confidence.HIGH
    return None


def find_industry_sectors(title: str, text: str) -> tuple[list[str], Confidence] | None:
    window = f"{title}\n{text[:500]}"
    sectors = [
        sector
        for sector, keywords in SECTOR_KEYWORDS.items()
        if any(_keyword_in(k, window) for k in keywords)
    ]
    return (sectors, Confidence.MEDIUM) if sectors else None


_FINDERS = {
    pf.DEADLINE: lambda title, text: find_deadline(text),
    pf.BUDGET_AMOUNT: lambda title, text: find_budget(text),
    pf.TARGET_ORG_TYPES: find_org_types,
    pf.COMPANY_SCALES: find_company_scales,
    pf.REGIONS: find_regions,
    pf.TRL_RANGE: lambda title, text: find_trl_range(text),
    pf.REVENUE_RANGE: lambda title, text: find_revenue_range(text),
    pf.EMPLOYEE_RANGE: lambda title, text: find_employee_range(text),
    pf.BUSINESS_AGE_RANGE: lambda title, text: find_business_age_range(text),
    pf.REQUIRED_CERTIFICATIONS: lambda title, text: find_certifications(text),
    pf.BUSINESS_STRUCTURES: lambda title, text: find_business_structures(text),
    pf.INDUSTRY_SECTORS: find_industry_sectors,
}


def extract_fields(
    title: str,
    text: str,
    source: FieldSource,
    evidence: str | None = None,
    wanted: set[str] | None = None,
) -> dict[str, FieldValue]:
    """
    Run every pattern over `title` and `text`.

    Args:
        title: Announcement title
        text: Body or attachment text
        source: Tag applied to every produced value
        evidence: Digest of `text` stored with each value
        wanted: Restrict extraction to these field names

    Returns:
        Mapping of field name to FieldValue for fields that matched
    """
    results: dict[str, FieldValue] = {}
    for name, finder in _FINDERS.items():
        if wanted is not None and name not in wanted:
            continue
        found = finder(title or "", text or "")
        if found is None:
            continue
        value, confidence = found
        results[name] = FieldValue(value, source, confidence, evidence)
    return results
