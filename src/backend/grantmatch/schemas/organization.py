"""
Organization profile as delivered by the organization-profile service.

Read-only to this service; revenue and employee counts arrive as ranges
and are compared against program bounds through their midpoints.
"""

import enum
from datetime import datetime

from pydantic import Field, field_validator

from grantmatch.extraction.vocabulary import (
    REGION_CODES,
    BusinessStructure,
    CompanyScale,
    OrganizationType,
    normalize_certification,
)
from grantmatch.schemas.common import BaseSchema


class RevenueRange(str, enum.Enum):
    UNDER_1B = "UNDER_1B"
    FROM_1B_TO_10B = "FROM_1B_TO_10B"
    FROM_10B_TO_50B = "FROM_10B_TO_50B"
    FROM_50B_TO_100B = "FROM_50B_TO_100B"
    OVER_100B = "OVER_100B"


class EmployeeCountRange(str, enum.Enum):
    UNDER_10 = "UNDER_10"
    FROM_10_TO_50 = "FROM_10_TO_50"
    FROM_50_TO_100 = "FROM_50_TO_100"
    FROM_100_TO_300 = "FROM_100_TO_300"
    OVER_300 = "OVER_300"


# Representative values in won / headcount
REVENUE_MIDPOINTS: dict[RevenueRange, int] = {
    RevenueRange.UNDER_1B: 500_000_000,
    RevenueRange.FROM_1B_TO_10B: 5_000_000_000,
    RevenueRange.FROM_10B_TO_50B: 30_000_000_000,
    RevenueRange.FROM_50B_TO_100B: 75_000_000_000,
    RevenueRange.OVER_100B: 150_000_000_000,
}

EMPLOYEE_MIDPOINTS: dict[EmployeeCountRange, int] = {
    EmployeeCountRange.UNDER_10: 5,
    EmployeeCountRange.FROM_10_TO_50: 30,
    EmployeeCountRange.FROM_50_TO_100: 75,
    EmployeeCountRange.FROM_100_TO_300: 200,
    EmployeeCountRange.OVER_300: 500,
}


class OrganizationProfile(BaseSchema):
    """The counterparty being matched."""

    organization_id: str
    name: str | None = None
    organization_type: OrganizationType
    industry_sector: str | None = Field(default=None, description="Sector code, e.g. ICT")
    technology_keywords: list[str] = Field(default_factory=list)
    trl: int | None = Field(default=None, ge=1, le=9, description="Technology readiness level")
    revenue_range: RevenueRange | None = None
    employee_count: EmployeeCountRange | None = None
    business_age_years: float | None = Field(default=None, ge=0)
    company_scale: CompanyScale | None = None
    business_structure: BusinessStructure | None = None
    certifications: list[str] = Field(default_factory=list)
    regions: list[str] = Field(default_factory=list, description="Region codes of company locations")
    rd_experience: bool = False
    updated_at: datetime | None = None

    @field_validator("certifications")
    @classmethod
    def normalize_certifications(cls, v: list[str]) -> list[str]:
        return [normalize_certification(c) for c in v if c and c.strip()]

    @field_validator("regions")
    @classmethod
    def validate_regions(cls, v: list[str]) -> list[str]:
        regions = [r.strip().upper() for r in v if r and r.strip()]
        unknown = [r for r in regions if r not in REGION_CODES]
        if unknown:
            raise ValueError(f"Unknown region codes: {', '.join(unknown)}")
        return regions

    @field_validator("industry_sector")
    @classmethod
    def upper_sector(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else v

    @property
    def revenue_estimate(self) -> int | None:
        return REVENUE_MIDPOINTS.get(self.revenue_range) if self.revenue_range else None

    @property
    def employee_estimate(self) -> int | None:
        return EMPLOYEE_MIDPOINTS.get(self.employee_count) if self.employee_count else None


class OrganizationUpdatedEvent(BaseSchema):
    """Change notification from the organization-profile service."""

    organization_id: str
    updated_at: datetime | None = None
