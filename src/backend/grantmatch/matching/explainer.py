"""
Narrative explanations for match results.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from grantmatch.matching.messages import DEFAULT_LOCALE
from grantmatch.matching.result import MatchResult

SUMMARIES = {
    "en": {
        "excellent": "An excellent fit: applying soon is recommended.",
        "strong": "A strong fit worth serious consideration.",
        "moderate": "A possible fit; check the conditions before applying.",
        "weak": "A weak fit for this organization.",
        "blocked": "Not eligible: {reason}.",
    },
    "ko": {
        "excellent": "이 프로그램에 매우 적합한 후보입니다. 빠른 지원을 권장합니다.",
        "strong": "적합도가 높은 프로그램으로 지원을 적극 검토해 보세요.",
        "moderate": "조건을 확인하신 후 지원을 고려해 보세요.",
        "weak": "적합도가 낮은 프로그램입니다.",
        "blocked": "지원 자격 미충족: {reason}",
    },
}

RECOMMENDATIONS = {
    "en": {
        "prepare": "The deadline is {days} days away; start preparing documents now.",
        "reference": "Use this closed program as reference for next year's call.",
    },
    "ko": {
        "prepare": "마감일이 {days}일 남았습니다. 서류 준비를 서두르세요.",
        "reference": "마감된 과제입니다. 내년도 유사 공고 준비에 참고하세요.",
    },
}


@dataclass
class MatchExplanation:
    summary: str
    reasons: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    factor_breakdown: list[dict[str, Any]] = field(default_factory=list)


def score_band(score: int) -> str:
    if score >= 80:
        return "excellent"
    if score >= 60:
        return "strong"
    if score >= 45:
        return "moderate"
    return "weak"


def explain(
    result: MatchResult,
    deadline: date | None,
    today: date,
    locale: str = DEFAULT_LOCALE,
) -> MatchExplanation:
    """
    Build the narrative for a match.

    Reasons list the factors that earned points, strongest first; blocked
    matches explain every failed requirement instead.
    """
    summaries = SUMMARIES.get(locale, SUMMARIES[DEFAULT_LOCALE])
    recommendations = RECOMMENDATIONS.get(locale, RECOMMENDATIONS[DEFAULT_LOCALE])

    if not result.gate_passed:
        blocked = result.blocked_reasons(locale)
        return MatchExplanation(
            summary=summaries["blocked"].format(reason=blocked[0]),
            reasons=blocked,
            warnings=result.warning_reasons(locale),
        )

    explanation = MatchExplanation(
        summary=summaries[score_band(result.score)],
        warnings=result.warning_reasons(locale),
        factor_breakdown=result.factor_breakdown(locale),
    )
    earning = sorted((f for f in result.factors if f.points > 0), key=lambda f: f.points, reverse=True)
    explanation.reasons = [f.reason.render(locale) for f in earning]

    if deadline is not None:
        days = (deadline - today).days
        if days < 0:
            explanation.recommendations.append(recommendations["reference"])
        elif days <= 30:
            explanation.recommendations.append(recommendations["prepare"].format(days=days))
    return explanation
