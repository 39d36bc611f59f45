"""
Request and response schemas for match generation and explanation.
"""

import uuid
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from grantmatch.schemas.common import BaseSchema, PaginatedResponse, PaginationParams


class MatchFilters(PaginationParams):
    """Optional filters for generateMatches."""

    historical: bool = Field(default=False, description="Match against EXPIRED programs instead of ACTIVE ones")
    agency: str | None = Field(default=None, description="Restrict to one agency")
    min_score: int | None = Field(default=None, ge=0, le=100, description="Override the listing threshold")
    locale: str | None = Field(default=None, description="Locale for reason strings (en, ko)")


class FactorBreakdownItem(BaseModel):
    name: str
    points: int
    max_points: int
    rule: str
    params: dict[str, Any] = Field(default_factory=dict)
    description: str


class MatchResultResponse(BaseSchema):
    """One scored (organization, program) pair."""

    match_id: uuid.UUID | None = None
    program_id: uuid.UUID
    organization_id: str
    title: str
    agency: str
    deadline: date | None = None
    source_url: str | None = None
    score: int = Field(ge=0, le=100)
    gate_passed: bool
    blocked_reasons: list[str] = Field(default_factory=list)
    warning_reasons: list[str] = Field(default_factory=list)
    factor_breakdown: list[FactorBreakdownItem] = Field(default_factory=list)
    computed_at: datetime | None = None


class MatchListResponse(PaginatedResponse[MatchResultResponse]):
    """A page of matches plus the freshness of the underlying data."""

    last_updated: datetime | None = Field(
        default=None,
        description="Latest scrape time among the programs considered",
    )
    new_match_count: int = Field(default=0, description="Results newly above the notification threshold")


class MatchExplanationResponse(BaseModel):
    """Factor breakdown plus narrative for one match."""

    match_id: uuid.UUID
    program_id: uuid.UUID
    organization_id: str
    title: str
    score: int
    gate_passed: bool
    summary: str
    reasons: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    factor_breakdown: list[FactorBreakdownItem] = Field(default_factory=list)
    computed_at: datetime
