"""
Eligibility gates and soft checks.

Gates run in order and stop at the first failing gate:

1. organization type within the program's target types
2. organization TRL within [min - tolerance, max + tolerance]
3. every required certification held
4. business structure allowed

A gate whose program-side field is unresolved passes. A gate whose
organization-side data is missing also passes, with a warning, since the
profile may simply be incomplete.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from grantmatch.extraction import profile as pf
from grantmatch.extraction.profile import Confidence, EligibilityProfile
from grantmatch.matching.messages import Reason
from grantmatch.schemas.organization import OrganizationProfile


@dataclass
class GateOutcome:
    passed: bool = True
    blocked: list[Reason] = field(default_factory=list)
    warnings: list[Reason] = field(default_factory=list)


def trl_window(trl_range: dict[str, int], tolerance: int) -> tuple[int, int]:
    low = max(1, int(trl_range.get("min", 1)) - tolerance)
    high = min(9, int(trl_range.get("max", 9)) + tolerance)
    return low, high


def _org_type_gate(org: OrganizationProfile, profile: EligibilityProfile, outcome: GateOutcome) -> bool:
    targets = profile.value(pf.TARGET_ORG_TYPES) or []
    if not targets:
        outcome.warnings.append(Reason("ORG_TYPE_UNSTATED"))
        return True
    if org.organization_type.value in targets:
        return True
    outcome.blocked.append(Reason(
        "ORG_TYPE_NOT_TARGETED",
        {"targets": list(targets), "org_type": org.organization_type.value},
    ))
    return False


def _trl_gate(org: OrganizationProfile, profile: EligibilityProfile, tolerance: int, outcome: GateOutcome) -> bool:
    trl_range = profile.value(pf.TRL_RANGE)
    if not trl_range:
        return True
    params = {"min": trl_range.get("min", 1), "max": trl_range.get("max", 9)}
    field_value = profile.get(pf.TRL_RANGE)
    if field_value is not None and field_value.confidence != Confidence.HIGH:
        outcome.warnings.append(Reason("TRL_INFERRED"))
    if org.trl is None:
        outcome.warnings.append(Reason("TRL_NOT_PROVIDED", params))
        return True

    low, high = trl_window(trl_range, tolerance)
    if not low <= org.trl <= high:
        outcome.blocked.append(Reason("TRL_OUT_OF_RANGE", {"trl": org.trl, **params}))
        return False
    if tolerance and not params["min"] <= org.trl <= params["max"]:
        outcome.warnings.append(Reason("TRL_HISTORICAL_TOLERANCE", {"trl": org.trl, **params}))
    return True


def _certification_gate(org: OrganizationProfile, profile: EligibilityProfile, outcome: GateOutcome) -> bool:
    required = profile.value(pf.REQUIRED_CERTIFICATIONS) or []
    held = set(org.certifications)
    missing = [cert for cert in required if cert not in held]
    for cert in missing:
        outcome.blocked.append(Reason("CERTIFICATION_MISSING", {"certification": cert}))
    return not missing


def _business_structure_gate(org: OrganizationProfile, profile: EligibilityProfile, outcome: GateOutcome) -> bool:
    allowed = profile.value(pf.BUSINESS_STRUCTURES) or []
    if not allowed:
        return True
    if org.business_structure is None:
        outcome.warnings.append(Reason("BUSINESS_STRUCTURE_UNKNOWN", {"allowed": list(allowed)}))
        return True
    if org.business_structure.value in allowed:
        return True
    outcome.blocked.append(Reason(
        "BUSINESS_STRUCTURE_NOT_ALLOWED",
        {"allowed": list(allowed), "structure": org.business_structure.value},
    ))
    return False


def _format_bounds(bounds: dict[str, Any]) -> str:
    low, high = bounds.get("min"), bounds.get("max")
    if low is not None and high is not None:
        return f"{low:,.0f}-{high:,.0f}"
    if low is not None:
        return f">= {low:,.0f}"
    return f"<= {high:,.0f}"


def _outside(value: float | None, bounds: dict[str, Any] | None) -> bool:
    if value is None or not bounds:
        return False
    low, high = bounds.get("min"), bounds.get("max")
    return (low is not None and value < low) or (high is not None and value > high)


def soft_checks(org: OrganizationProfile, profile: EligibilityProfile, outcome: GateOutcome) -> None:
    """Record warnings for requirements that never block a match."""
    regions = profile.value(pf.REGIONS) or []
    if regions:
        if not org.regions:
            outcome.warnings.append(Reason("REGION_UNVERIFIED", {"regions": list(regions)}))
        elif not set(org.regions) & set(regions):
            outcome.warnings.append(Reason("REGION_MISMATCH", {"regions": list(regions)}))

    for field_name, value, code in (
        (pf.REVENUE_RANGE, org.revenue_estimate, "REVENUE_OUT_OF_RANGE"),
        (pf.EMPLOYEE_RANGE, org.employee_estimate, "EMPLOYEES_OUT_OF_RANGE"),
        (pf.BUSINESS_AGE_RANGE, org.business_age_years, "BUSINESS_AGE_OUT_OF_RANGE"),
    ):
        bounds = profile.value(field_name)
        if _outside(value, bounds):
            outcome.warnings.append(Reason(code, {"bounds": _format_bounds(bounds)}))

    scales = profile.value(pf.COMPANY_SCALES) or []
    if scales and org.company_scale is not None and org.company_scale.value not in scales:
        outcome.warnings.append(Reason("SCALE_MISMATCH", {"scales": list(scales), "scale": org.company_scale.value}))

    if not profile.is_resolved(pf.BUDGET_AMOUNT):
        outcome.warnings.append(Reason("BUDGET_MISSING"))


def deadline_of(profile: EligibilityProfile, fallback: date | None = None) -> date | None:
    raw = profile.value(pf.DEADLINE)
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        try:
            return date.fromisoformat(raw[:10])
        except ValueError:
            return fallback
    return fallback


def evaluate_gates(
    org: OrganizationProfile,
    profile: EligibilityProfile,
    trl_tolerance: int = 0,
) -> GateOutcome:
    """
    Run the eligibility gates in order, stopping at the first failure.

    Soft checks run only when every gate passes.
    """
    outcome = GateOutcome()
    gates = (
        lambda: _org_type_gate(org, profile, outcome),
        lambda: _trl_gate(org, profile, trl_tolerance, outcome),
        lambda: _certification_gate(org, profile, outcome),
        lambda: _business_structure_gate(org, profile, outcome),
    )
    for gate in gates:
        if not gate():
            outcome.passed = False
            return outcome

    soft_checks(org, profile, outcome)
    return outcome
