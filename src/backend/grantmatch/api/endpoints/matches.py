"""
Match endpoints.

generateMatches and explainMatch for collaborating services. Matches are
recomputed from current programs and the organization profile; the match
id refers to the stored analytics snapshot of a pair.
"""

from uuid import UUID

from fastapi import APIRouter, Query

from grantmatch.api.deps import Container
from grantmatch.core.logging import get_logger
from grantmatch.schemas.common import ErrorResponse
from grantmatch.schemas.matching import MatchExplanationResponse, MatchFilters, MatchListResponse

logger = get_logger(__name__)
router = APIRouter(responses={404: {"model": ErrorResponse}})


@router.get("/organizations/{organization_id}/matches", response_model=MatchListResponse)
async def generate_matches(
    container: Container,
    organization_id: str,
    historical: bool = Query(default=False, description="Match closed programs for reference"),
    agency: str | None = None,
    min_score: int | None = Query(default=None, ge=0, le=100),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    locale: str | None = Query(default=None, pattern="^(en|ko)$"),
) -> MatchListResponse:
    """
    List matching programs for an organization, highest score first.

    Results below the threshold are hidden but still recorded for
    analytics. `last_updated` shows how fresh the program data is.
    """
    filters = MatchFilters(
        historical=historical,
        agency=agency,
        min_score=min_score,
        page=page,
        page_size=page_size,
        locale=locale,
    )
    return await container.matching.generate_matches(organization_id, filters)


@router.get("/matches/{match_id}/explanation", response_model=MatchExplanationResponse)
async def explain_match(
    container: Container,
    match_id: UUID,
    locale: str | None = Query(default=None, pattern="^(en|ko)$"),
) -> MatchExplanationResponse:
    """Factor breakdown and narrative for one match."""
    return await container.matching.explain_match(match_id, locale)
