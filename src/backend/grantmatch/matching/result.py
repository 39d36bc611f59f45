"""
Match result types.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from grantmatch.matching.messages import DEFAULT_LOCALE, Reason


@dataclass(frozen=True)
class Factor:
    """Points awarded by one scoring rule."""

    name: str
    points: int
    max_points: int
    reason: Reason

    def to_dict(self, locale: str = DEFAULT_LOCALE) -> dict[str, Any]:
        return {
            "name": self.name,
            "points": self.points,
            "max_points": self.max_points,
            "rule": self.reason.code,
            "params": self.reason.params,
            "description": self.reason.render(locale),
        }


@dataclass
class MatchResult:
    """
    Gate verdicts and score for one (organization, program) pair.

    A failed gate always means score 0 with at least one blocked reason;
    a passed gate means the factor points sum to the score.
    """

    program_id: uuid.UUID
    organization_id: str
    score: int
    gate_passed: bool
    blocked: list[Reason] = field(default_factory=list)
    warnings: list[Reason] = field(default_factory=list)
    factors: list[Factor] = field(default_factory=list)
    computed_at: datetime | None = None

    def blocked_reasons(self, locale: str = DEFAULT_LOCALE) -> list[str]:
        return [r.render(locale) for r in self.blocked]

    def warning_reasons(self, locale: str = DEFAULT_LOCALE) -> list[str]:
        return [r.render(locale) for r in self.warnings]

    def factor_breakdown(self, locale: str = DEFAULT_LOCALE) -> list[dict[str, Any]]:
        return [f.to_dict(locale) for f in self.factors]
