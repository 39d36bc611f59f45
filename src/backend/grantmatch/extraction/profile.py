"""
Eligibility profile data model.

Every extracted field is stored as a FieldValue carrying the value, the
source that produced it and a confidence level. The merge rules in
EligibilityProfile.merge enforce source precedence:

    API > TIER1 > TIER2 > TIER3

A value from a lower-precedence source never replaces a resolved value
(MEDIUM or HIGH confidence) from a higher-precedence one. LOW-confidence
entries count as unresolved and may be backfilled by any later tier.
"""

import enum
from dataclasses import dataclass, field
from typing import Any


class FieldSource(str, enum.Enum):
    """Producer of an extracted field."""

    API = "API"         # Structured data feed
    TIER1 = "TIER1"     # Deterministic patterns
    TIER2 = "TIER2"     # Language-model inference
    TIER3 = "TIER3"     # Attachment parsing

    @property
    def precedence(self) -> int:
        return _PRECEDENCE[self]


_PRECEDENCE = {
    FieldSource.API: 4,
    FieldSource.TIER1: 3,
    FieldSource.TIER2: 2,
    FieldSource.TIER3: 1,
}


class Confidence(str, enum.Enum):
    """Confidence attached to an extracted field."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


# Field names, in the order they are reported
TARGET_ORG_TYPES = "target_org_types"
REGIONS = "regions"
COMPANY_SCALES = "company_scales"
REVENUE_RANGE = "revenue_range"
EMPLOYEE_RANGE = "employee_range"
BUSINESS_AGE_RANGE = "business_age_range"
TRL_RANGE = "trl_range"
REQUIRED_CERTIFICATIONS = "required_certifications"
BUDGET_AMOUNT = "budget_amount"
BUSINESS_STRUCTURES = "business_structures"
DEADLINE = "deadline"
INDUSTRY_SECTORS = "industry_sectors"

ELIGIBILITY_FIELDS: tuple[str, ...] = (
    TARGET_ORG_TYPES,
    REGIONS,
    COMPANY_SCALES,
    REVENUE_RANGE,
    EMPLOYEE_RANGE,
    BUSINESS_AGE_RANGE,
    TRL_RANGE,
    REQUIRED_CERTIFICATIONS,
    BUDGET_AMOUNT,
    BUSINESS_STRUCTURES,
    DEADLINE,
    INDUSTRY_SECTORS,
)


@dataclass(frozen=True)
class FieldValue:
    """A single extracted value with provenance."""

    value: Any
    source: FieldSource
    confidence: Confidence
    evidence: str | None = None  # digest of the text the value was derived from

    @property
    def is_resolved(self) -> bool:
        return self.value is not None and self.confidence != Confidence.LOW

    def to_dict(self) -> dict[str, Any]:
        data = {
            "value": self.value,
            "source": self.source.value,
            "confidence": self.confidence.value,
        }
        if self.evidence:
            data["evidence"] = self.evidence
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FieldValue":
        return cls(
            value=data.get("value"),
            source=FieldSource(data["source"]),
            confidence=Confidence(data.get("confidence", Confidence.LOW.value)),
            evidence=data.get("evidence"),
        )


def accepts(existing: FieldValue | None, incoming: FieldValue) -> bool:
    """
    Decide whether `incoming` may replace `existing`.

    Args:
        existing: Value currently stored for the field, if any
        incoming: Candidate value from an extractor

    Returns:
        True when the precedence rules allow the replacement
    """
    if existing is None:
        return True
    if not incoming.is_resolved:
        # An unresolved marker never displaces anything already present
        return False
    if not existing.is_resolved:
        return True
    if incoming.source.precedence > existing.source.precedence:
        return True
    # Same producer re-running over changed text refreshes its own value
    return incoming.source == existing.source


@dataclass
class EligibilityProfile:
    """Structured eligibility data for one funding program."""

    fields: dict[str, FieldValue] = field(default_factory=dict)

    def get(self, name: str) -> FieldValue | None:
        return self.fields.get(name)

    def value(self, name: str, default: Any = None) -> Any:
        """Return the resolved value of a field, or `default`."""
        fv = self.fields.get(name)
        if fv is None or not fv.is_resolved:
            return default
        return fv.value

    def is_resolved(self, name: str) -> bool:
        fv = self.fields.get(name)
        return fv is not None and fv.is_resolved

    def unresolved(self, names: tuple[str, ...] | None = None) -> set[str]:
        """Names of fields that are missing or LOW confidence."""
        return {n for n in (names or ELIGIBILITY_FIELDS) if not self.is_resolved(n)}

    def merge(self, incoming: dict[str, FieldValue]) -> list[str]:
        """
        Merge extractor output into the profile.

        Returns:
            Names of fields that were written
        """
        written = []
        for name, candidate in incoming.items():
            if accepts(self.fields.get(name), candidate):
                self.fields[name] = candidate
                written.append(name)
        return written

    def mark_unresolved(self, name: str, source: FieldSource) -> None:
        """Record that `source` tried and failed to resolve a field."""
        if not self.is_resolved(name):
            self.fields[name] = FieldValue(None, source, Confidence.LOW)

    def retain_valid(self, digests: dict[FieldSource, str | None]) -> list[str]:
        """
        Drop fields whose underlying text changed.

        Args:
            digests: Current evidence digest per source (raw text digest for
                API/TIER1/TIER2, attachment digest for TIER3)

        Returns:
            Names of dropped fields
        """
        dropped = []
        for name, fv in list(self.fields.items()):
            current = digests.get(fv.source)
            if fv.evidence is None or fv.evidence != current:
                del self.fields[name]
                dropped.append(name)
        return dropped

    def to_dict(self) -> dict[str, Any]:
        return {name: fv.to_dict() for name, fv in self.fields.items()}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EligibilityProfile":
        if not data:
            return cls()
        return cls(fields={name: FieldValue.from_dict(raw) for name, raw in data.items()})
