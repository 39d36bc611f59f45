"""
Pydantic schemas for API request/response validation.
"""

from grantmatch.schemas.common import (
    BaseSchema,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    PaginatedResponse,
    PaginationParams,
    SuccessResponse,
)
from grantmatch.schemas.ingestion import (
    EnqueueResponse,
    EnrichRequest,
    IngestionStatusResponse,
    ScrapeJobResponse,
)
from grantmatch.schemas.matching import (
    FactorBreakdownItem,
    MatchExplanationResponse,
    MatchFilters,
    MatchListResponse,
    MatchResultResponse,
)
from grantmatch.schemas.organization import OrganizationProfile, OrganizationUpdatedEvent
from grantmatch.schemas.source import (
    FeedMapping,
    PaginationConfig,
    SelectorConfig,
    SourceConfig,
    SourceResponse,
)

__all__ = [
    # Common
    "BaseSchema",
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
    "PaginatedResponse",
    "PaginationParams",
    "SuccessResponse",
    # Ingestion
    "EnqueueResponse",
    "EnrichRequest",
    "IngestionStatusResponse",
    "ScrapeJobResponse",
    # Matching
    "FactorBreakdownItem",
    "MatchExplanationResponse",
    "MatchFilters",
    "MatchListResponse",
    "MatchResultResponse",
    # Organization
    "OrganizationProfile",
    "OrganizationUpdatedEvent",
    # Source
    "FeedMapping",
    "PaginationConfig",
    "SelectorConfig",
    "SourceConfig",
    "SourceResponse",
]
