"""
Shared eligibility vocabulary.

Organization types, company scales, business structures, region codes and
industry sectors used by both the extraction tiers and the matching engine.
"""

import enum


class OrganizationType(str, enum.Enum):
    """Kind of applicant organization."""

    COMPANY = "COMPANY"
    RESEARCH_INSTITUTE = "RESEARCH_INSTITUTE"
    UNIVERSITY = "UNIVERSITY"
    PUBLIC_INSTITUTION = "PUBLIC_INSTITUTION"


class CompanyScale(str, enum.Enum):
    """Company size category."""

    STARTUP = "STARTUP"
    SME = "SME"
    MID_SIZED = "MID_SIZED"
    LARGE = "LARGE"


class BusinessStructure(str, enum.Enum):
    """Legal structure of a company."""

    CORPORATION = "CORPORATION"          # 법인사업자
    SOLE_PROPRIETOR = "SOLE_PROPRIETOR"  # 개인사업자


# Keyword -> organization type. Longest keywords are tried first.
ORG_TYPE_KEYWORDS: dict[str, OrganizationType] = {
    "중소기업": OrganizationType.COMPANY,
    "중견기업": OrganizationType.COMPANY,
    "기업": OrganizationType.COMPANY,
    "벤처": OrganizationType.COMPANY,
    "스타트업": OrganizationType.COMPANY,
    "창업": OrganizationType.COMPANY,
    "company": OrganizationType.COMPANY,
    "연구기관": OrganizationType.RESEARCH_INSTITUTE,
    "연구소": OrganizationType.RESEARCH_INSTITUTE,
    "출연연": OrganizationType.RESEARCH_INSTITUTE,
    "research institute": OrganizationType.RESEARCH_INSTITUTE,
    "대학": OrganizationType.UNIVERSITY,
    "university": OrganizationType.UNIVERSITY,
    "공공기관": OrganizationType.PUBLIC_INSTITUTION,
    "지자체": OrganizationType.PUBLIC_INSTITUTION,
    "지방자치단체": OrganizationType.PUBLIC_INSTITUTION,
    "public institution": OrganizationType.PUBLIC_INSTITUTION,
}

COMPANY_SCALE_KEYWORDS: dict[str, CompanyScale] = {
    "예비창업자": CompanyScale.STARTUP,
    "창업기업": CompanyScale.STARTUP,
    "스타트업": CompanyScale.STARTUP,
    "startup": CompanyScale.STARTUP,
    "중소기업": CompanyScale.SME,
    "소상공인": CompanyScale.SME,
    "sme": CompanyScale.SME,
    "중견기업": CompanyScale.MID_SIZED,
    "대기업": CompanyScale.LARGE,
}

REGION_KEYWORDS: dict[str, str] = {
    "서울": "SEOUL",
    "인천": "INCHEON",
    "경기": "GYEONGGI",
    "부산": "BUSAN",
    "울산": "ULSAN",
    "경남": "GYEONGNAM",
    "경상남도": "GYEONGNAM",
    "대구": "DAEGU",
    "경북": "GYEONGBUK",
    "경상북도": "GYEONGBUK",
    "광주": "GWANGJU",
    "전남": "JEONNAM",
    "전라남도": "JEONNAM",
    "전북": "JEONBUK",
    "전라북도": "JEONBUK",
    "대전": "DAEJEON",
    "충남": "CHUNGNAM",
    "충청남도": "CHUNGNAM",
    "충북": "CHUNGBUK",
    "충청북도": "CHUNGBUK",
    "세종": "SEJONG",
    "강원": "GANGWON",
    "제주": "JEJU",
}

REGION_CODES: frozenset[str] = frozenset(REGION_KEYWORDS.values())

METROPOLITAN_REGIONS: tuple[str, ...] = ("SEOUL", "GYEONGGI", "INCHEON")

# Sector -> keywords used to recognise the sector in announcement text
SECTOR_KEYWORDS: dict[str, tuple[str, ...]] = {
    "ICT": ("ICT", "정보통신", "소프트웨어", "인공지능", "AI", "데이터", "클라우드", "보안", "IoT", "사물인터넷"),
    "MANUFACTURING": ("제조", "스마트공장", "스마트팩토리", "로봇", "소재", "부품", "장비"),
    "BIO_HEALTH": ("바이오", "헬스", "의료", "제약", "생명공학", "의료기기"),
    "ENERGY": ("에너지", "신재생", "수소", "전기차", "배터리", "이차전지"),
    "ENVIRONMENT": ("환경", "탄소중립", "폐기물", "수처리"),
    "AGRICULTURE": ("농업", "스마트팜", "농식품", "푸드테크"),
    "MARINE": ("해양", "수산", "조선", "해운"),
    "CONSTRUCTION": ("건설", "건축", "인프라"),
    "TRANSPORTATION": ("교통", "자율주행", "모빌리티", "항공", "드론"),
    "DEFENSE": ("국방", "방산", "방위"),
    "CULTURAL": ("문화", "콘텐츠", "게임", "미디어", "관광"),
}

# Symmetric sector relevance (0.0-1.0). Pairs not listed are unrelated.
_RELEVANCE_PAIRS: dict[frozenset[str], float] = {
    frozenset({"ICT", "MANUFACTURING"}): 0.8,
    frozenset({"ICT", "BIO_HEALTH"}): 0.7,
    frozenset({"ICT", "ENERGY"}): 0.7,
    frozenset({"ICT", "AGRICULTURE"}): 0.7,
    frozenset({"ICT", "TRANSPORTATION"}): 0.8,
    frozenset({"ICT", "CULTURAL"}): 0.8,
    frozenset({"ICT", "ENVIRONMENT"}): 0.6,
    frozenset({"ICT", "CONSTRUCTION"}): 0.6,
    frozenset({"MANUFACTURING", "TRANSPORTATION"}): 0.7,
    frozenset({"MANUFACTURING", "ENERGY"}): 0.6,
    frozenset({"MANUFACTURING", "MARINE"}): 0.6,
    frozenset({"ENERGY", "ENVIRONMENT"}): 0.8,
    frozenset({"ENERGY", "TRANSPORTATION"}): 0.7,
    frozenset({"BIO_HEALTH", "AGRICULTURE"}): 0.6,
}

RELATED_SECTOR_THRESHOLD = 0.7


def sector_relevance(a: str, b: str) -> float:
    """Relevance between two sectors, 1.0 for identical sectors."""
    if a == b:
        return 1.0
    return _RELEVANCE_PAIRS.get(frozenset({a, b}), 0.0)


def normalize_certification(name: str) -> str:
    """Canonical form used to compare certification names."""
    cleaned = name.strip().upper().replace(" ", "").replace("_", "-")
    return CERTIFICATION_ALIASES.get(cleaned, cleaned)


CERTIFICATION_ALIASES: dict[str, str] = {
    "이노비즈": "INNO-BIZ",
    "INNOBIZ": "INNO-BIZ",
    "메인비즈": "MAIN-BIZ",
    "MAINBIZ": "MAIN-BIZ",
    "경영혁신형기업": "MAIN-BIZ",
    "벤처기업": "VENTURE",
    "벤처기업확인": "VENTURE",
    "ISMSP": "ISMS-P",
    "ISO27001": "ISO-27001",
    "ISO-27001": "ISO-27001",
    "기업부설연구소": "CORPORATE-RESEARCH-INSTITUTE",
    "연구소인증": "CORPORATE-RESEARCH-INSTITUTE",
}
