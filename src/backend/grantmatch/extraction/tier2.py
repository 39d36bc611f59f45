"""
Tier 2: language-model assisted inference.

Only asked for fields Tier 1 left unresolved. Model output is capped at
MEDIUM confidence unless the quoted evidence reproduces the same value
through the Tier 1 patterns, in which case it is promoted to HIGH.
"""

import asyncio
from datetime import date
from typing import Any

from grantmatch.core.exceptions import LanguageModelException
from grantmatch.extraction import profile as pf
from grantmatch.extraction.base import BaseExtractor, ExtractionRequest, TierResult
from grantmatch.extraction.patterns import extract_fields
from grantmatch.extraction.profile import Confidence, FieldSource, FieldValue
from grantmatch.extraction.vocabulary import (
    REGION_CODES,
    SECTOR_KEYWORDS,
    BusinessStructure,
    CompanyScale,
    OrganizationType,
    normalize_certification,
)
from grantmatch.services.language_model import LanguageModelClient

FIELD_SCHEMA: dict[str, str] = {
    pf.TARGET_ORG_TYPES: f"list of eligible organization types from {[t.value for t in OrganizationType]}",
    pf.REGIONS: "list of region codes the applicant must be located in (e.g. SEOUL, BUSAN); [] if nationwide",
    pf.COMPANY_SCALES: f"list of eligible company scales from {[s.value for s in CompanyScale]}",
    pf.REVENUE_RANGE: 'annual revenue bounds in won as {"min": n, "max": n} (omit unknown bound)',
    pf.EMPLOYEE_RANGE: 'employee count bounds as {"min": n, "max": n}',
    pf.BUSINESS_AGE_RANGE: 'years since founding bounds as {"min": n, "max": n}',
    pf.TRL_RANGE: 'required technology readiness level as {"min": 1-9, "max": 1-9}',
    pf.REQUIRED_CERTIFICATIONS: "list of certifications the applicant must hold (not merely preferred)",
    pf.BUDGET_AMOUNT: "total program budget in won (integer)",
    pf.BUSINESS_STRUCTURES: f"allowed business structures from {[b.value for b in BusinessStructure]}",
    pf.DEADLINE: "application deadline as YYYY-MM-DD",
    pf.INDUSTRY_SECTORS: f"industry sectors from {sorted(SECTOR_KEYWORDS)}",
}

_CONFIDENCE = {"high": Confidence.MEDIUM, "medium": Confidence.MEDIUM, "low": Confidence.LOW}


def _enum_list(value: Any, allowed: set[str]) -> list[str] | None:
    if not isinstance(value, list):
        return None
    cleaned = [str(v).upper() for v in value if str(v).upper() in allowed]
    if value and not cleaned:
        return None
    return cleaned


def _range(value: Any, low: float | None = None, high: float | None = None) -> dict[str, float] | None:
    if not isinstance(value, dict):
        return None
    result = {}
    for key in ("min", "max"):
        raw = value.get(key)
        if raw is None:
            continue
        try:
            number = float(raw)
        except (TypeError, ValueError):
            return None
        if (low is not None and number < low) or (high is not None and number > high):
            return None
        result[key] = int(number) if number.is_integer() else number
    return result or None


def normalize_value(name: str, value: Any) -> Any:
    """Validate and coerce a model-supplied value; None when unusable."""
    if value is None:
        return None
    if name == pf.TARGET_ORG_TYPES:
        return _enum_list(value, {t.value for t in OrganizationType}) or None
    if name == pf.REGIONS:
        return _enum_list(value, set(REGION_CODES))
    if name == pf.COMPANY_SCALES:
        return _enum_list(value, {s.value for s in CompanyScale}) or None
    if name == pf.BUSINESS_STRUCTURES:
        return _enum_list(value, {b.value for b in BusinessStructure}) or None
    if name == pf.INDUSTRY_SECTORS:
        return _enum_list(value, set(SECTOR_KEYWORDS)) or None
    if name in (pf.REVENUE_RANGE, pf.EMPLOYEE_RANGE, pf.BUSINESS_AGE_RANGE):
        return _range(value, low=0)
    if name == pf.TRL_RANGE:
        bounds = _range(value, low=1, high=9)
        if bounds is None:
            return None
        return {"min": int(bounds.get("min", 1)), "max": int(bounds.get("max", 9))}
    if name == pf.REQUIRED_CERTIFICATIONS:
        if not isinstance(value, list):
            return None
        return [normalize_certification(str(v)) for v in value if str(v).strip()]
    if name == pf.BUDGET_AMOUNT:
        try:
            amount = int(float(value))
        except (TypeError, ValueError):
            return None
        return amount if amount > 0 else None
    if name == pf.DEADLINE:
        try:
            return date.fromisoformat(str(value)[:10]).isoformat()
        except ValueError:
            return None
    return None


class LanguageModelExtractor(BaseExtractor):
    """Fills unresolved fields through the language-model service."""

    tier = FieldSource.TIER2

    def __init__(self, client: LanguageModelClient, max_chars: int = 6000, enabled: bool = True) -> None:
        super().__init__(enabled=enabled)
        self.client = client
        self.max_chars = max_chars

    def applies_to(self, request: ExtractionRequest, wanted: set[str]) -> str | None:
        reason = super().applies_to(request, wanted)
        if reason:
            return reason
        if not self.client.is_configured:
            return "not_configured"
        if not request.raw_text.strip() and not request.title.strip():
            return "no_text"
        return None

    def _bounded_text(self, request: ExtractionRequest) -> str:
        return f"{request.title}\n\n{request.raw_text}"[: self.max_chars]

    def _confidence(self, name: str, value: Any, declared: str, evidence: str) -> Confidence:
        level = _CONFIDENCE.get(declared.lower(), Confidence.LOW)
        if level == Confidence.LOW or not evidence:
            return level
        reproduced = extract_fields("", evidence, FieldSource.TIER1, wanted={name}).get(name)
        # Only an explicit pattern match, not keyword inference, earns HIGH
        if reproduced is not None and reproduced.confidence == Confidence.HIGH and reproduced.value == value:
            return Confidence.HIGH
        return Confidence.MEDIUM

    async def extract(self, request: ExtractionRequest, wanted: set[str]) -> TierResult:
        schema = {name: FIELD_SCHEMA[name] for name in sorted(wanted) if name in FIELD_SCHEMA}
        result = TierResult(tier=self.tier, attempted=set(schema))
        try:
            response = await self.client.extract(self._bounded_text(request), schema)
        except asyncio.TimeoutError:
            self.logger.warning("tier2_timeout", program=request.program_key)
            result.error = "timeout"
            return result
        except LanguageModelException as e:
            self.logger.warning("tier2_failed", program=request.program_key, error=e.message)
            result.error = e.message
            return result

        evidence_digest = request.text_digest
        for name, payload in response.fields.items():
            value = normalize_value(name, payload.get("value"))
            if value is None:
                continue
            confidence = self._confidence(
                name, value, str(payload.get("confidence", "low")), str(payload.get("evidence") or "")
            )
            result.fields[name] = FieldValue(value, FieldSource.TIER2, confidence, evidence_digest)

        self.logger.info(
            "tier2_extracted",
            program=request.program_key,
            requested=sorted(schema),
            resolved=sorted(n for n, fv in result.fields.items() if fv.is_resolved),
        )
        return result
