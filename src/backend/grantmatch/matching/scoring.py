"""
Scoring engine.

`score()` is a pure function of the organization profile, the program,
its eligibility profile and the evaluation date. Gates run first; only
when every gate passes are the five factors scored:

    industry alignment   30
    TRL compatibility    20
    organization type    20
    R&D experience       15
    deadline proximity   15

Every point in the score comes from exactly one Factor, so the factor
breakdown always sums to the score.
"""

from datetime import date, datetime

from grantmatch.extraction import profile as pf
from grantmatch.extraction.profile import EligibilityProfile
from grantmatch.extraction.vocabulary import RELATED_SECTOR_THRESHOLD, sector_relevance
from grantmatch.matching.gates import deadline_of, evaluate_gates
from grantmatch.matching.messages import Reason
from grantmatch.matching.result import Factor, MatchResult
from grantmatch.models.funding_program import FundingProgram
from grantmatch.schemas.organization import OrganizationProfile

INDUSTRY_POINTS = 30
TRL_POINTS = 20
ORG_TYPE_POINTS = 20
RD_POINTS = 15
DEADLINE_POINTS = 15

# Partial credit by distance outside the TRL range
TRL_TOO_LOW_POINTS = {1: 12, 2: 6, 3: 3}
TRL_TOO_HIGH_POINTS = {1: 15, 2: 10, 3: 5}


def score_industry(org: OrganizationProfile, title: str, profile: EligibilityProfile) -> Factor:
    sectors = profile.value(pf.INDUSTRY_SECTORS) or []
    if org.industry_sector:
        if org.industry_sector in sectors:
            return Factor("industry", INDUSTRY_POINTS, INDUSTRY_POINTS,
                          Reason("INDUSTRY_EXACT", {"sector": org.industry_sector}))
        related = sorted(
            ((sector_relevance(org.industry_sector, s), s) for s in sectors),
            reverse=True,
        )
        if related and related[0][0] >= RELATED_SECTOR_THRESHOLD:
            return Factor("industry", 15, INDUSTRY_POINTS, Reason(
                "INDUSTRY_RELATED",
                {"sector": org.industry_sector, "program_sector": related[0][1]},
            ))

    lowered = title.lower()
    for keyword in org.technology_keywords:
        if keyword and keyword.lower() in lowered:
            return Factor("industry", 10, INDUSTRY_POINTS, Reason("INDUSTRY_KEYWORD", {"keyword": keyword}))
    return Factor("industry", 0, INDUSTRY_POINTS, Reason("INDUSTRY_UNRELATED"))


def score_trl(org: OrganizationProfile, profile: EligibilityProfile) -> Factor:
    trl_range = profile.value(pf.TRL_RANGE)
    if org.trl is None:
        return Factor("trl", 5, TRL_POINTS, Reason("TRL_UNKNOWN_ORG"))
    if not trl_range:
        return Factor("trl", 15, TRL_POINTS, Reason("TRL_NO_REQUIREMENT"))

    low, high = int(trl_range.get("min", 1)), int(trl_range.get("max", 9))
    params = {"trl": org.trl, "min": low, "max": high}
    if low <= org.trl <= high:
        return Factor("trl", TRL_POINTS, TRL_POINTS, Reason("TRL_IN_RANGE", params))
    if org.trl < low:
        distance = low - org.trl
        points = TRL_TOO_LOW_POINTS.get(distance, 0)
        return Factor("trl", points, TRL_POINTS, Reason("TRL_TOO_LOW", {**params, "distance": distance}))
    distance = org.trl - high
    points = TRL_TOO_HIGH_POINTS.get(distance, 0)
    return Factor("trl", points, TRL_POINTS, Reason("TRL_TOO_HIGH", {**params, "distance": distance}))


def score_org_type(org: OrganizationProfile, profile: EligibilityProfile) -> Factor:
    targets = profile.value(pf.TARGET_ORG_TYPES) or []
    if not targets:
        return Factor("organization_type", 10, ORG_TYPE_POINTS, Reason("TYPE_NO_RESTRICTION"))
    if org.organization_type.value in targets:
        return Factor("organization_type", ORG_TYPE_POINTS, ORG_TYPE_POINTS,
                      Reason("TYPE_MATCH", {"org_type": org.organization_type.value}))
    return Factor("organization_type", 0, ORG_TYPE_POINTS, Reason(
        "ORG_TYPE_NOT_TARGETED",
        {"targets": list(targets), "org_type": org.organization_type.value},
    ))


def score_rd_experience(org: OrganizationProfile) -> Factor:
    if org.rd_experience:
        return Factor("rd_experience", RD_POINTS, RD_POINTS, Reason("RD_EXPERIENCE"))
    return Factor("rd_experience", 7, RD_POINTS, Reason("RD_FIRST_TIME"))


def score_deadline(deadline: date | None, today: date) -> Factor:
    """Most points for deadlines 8-30 days out: close, but with time to prepare."""
    if deadline is None:
        return Factor("deadline", 5, DEADLINE_POINTS, Reason("DEADLINE_UNKNOWN"))
    days = (deadline - today).days
    if days < 0:
        return Factor("deadline", 0, DEADLINE_POINTS, Reason("DEADLINE_CLOSED"))
    if days <= 7:
        return Factor("deadline", 8, DEADLINE_POINTS, Reason("DEADLINE_URGENT", {"days": days}))
    if days <= 30:
        return Factor("deadline", DEADLINE_POINTS, DEADLINE_POINTS, Reason("DEADLINE_IDEAL", {"days": days}))
    if days <= 60:
        return Factor("deadline", 10, DEADLINE_POINTS, Reason("DEADLINE_MODERATE", {"days": days}))
    return Factor("deadline", 5, DEADLINE_POINTS, Reason("DEADLINE_FAR", {"days": days}))


def score(
    org: OrganizationProfile,
    program: FundingProgram,
    profile: EligibilityProfile,
    now: datetime,
    trl_tolerance: int = 0,
) -> MatchResult:
    """
    Evaluate one (organization, program) pair.

    Args:
        org: Organization profile
        program: Program being matched (read only)
        profile: The program's eligibility profile
        now: Evaluation time; deadline proximity is measured from its date
        trl_tolerance: TRL gate tolerance (0 for active programs)

    Returns:
        MatchResult with gate verdicts, score and factor breakdown
    """
    outcome = evaluate_gates(org, profile, trl_tolerance)
    result = MatchResult(
        program_id=program.id,
        organization_id=org.organization_id,
        score=0,
        gate_passed=outcome.passed,
        blocked=outcome.blocked,
        warnings=outcome.warnings,
        computed_at=now,
    )
    if not outcome.passed:
        return result

    deadline = deadline_of(profile, program.deadline)
    if deadline is None:
        result.warnings.append(Reason("DEADLINE_MISSING"))
    elif deadline < now.date():
        result.warnings.append(Reason("DEADLINE_PASSED", {"deadline": deadline.isoformat()}))

    result.factors = [
        score_industry(org, program.title or "", profile),
        score_trl(org, profile),
        score_org_type(org, profile),
        score_rd_experience(org),
        score_deadline(deadline, now.date()),
    ]
    result.score = sum(f.points for f in result.factors)
    return result
