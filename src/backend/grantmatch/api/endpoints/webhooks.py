"""
Change notifications from collaborating services.
"""

from fastapi import APIRouter, status

from grantmatch.api.deps import Container
from grantmatch.core.logging import get_logger
from grantmatch.schemas.common import SuccessResponse
from grantmatch.schemas.organization import OrganizationUpdatedEvent

logger = get_logger(__name__)
router = APIRouter()


@router.post("/organization-updated", response_model=SuccessResponse, status_code=status.HTTP_202_ACCEPTED)
async def organization_updated(container: Container, event: OrganizationUpdatedEvent) -> SuccessResponse:
    """Invalidate cached matches of an organization whose profile changed."""
    await container.matching.organization_updated(event.organization_id)
    logger.info("organization_update_received", organization_id=event.organization_id)
    return SuccessResponse(message="Invalidation published", data={"organization_id": event.organization_id})
