"""
Main API router that aggregates all endpoint routers.
"""

from fastapi import APIRouter

from grantmatch.api.endpoints import ingestion, matches, webhooks

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(
    matches.router,
    tags=["Matches"],
)

api_router.include_router(
    ingestion.router,
    prefix="/ingestion",
    tags=["Ingestion"],
)

api_router.include_router(
    webhooks.router,
    prefix="/webhooks",
    tags=["Webhooks"],
)
