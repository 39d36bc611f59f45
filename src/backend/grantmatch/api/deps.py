"""
Shared FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from grantmatch.container import ServiceContainer
from grantmatch.db.session import get_db


def get_container(request: Request) -> ServiceContainer:
    """Service container built during application startup."""
    return request.app.state.container


# Type aliases for dependencies
DB = Annotated[AsyncSession, Depends(get_db)]
Container = Annotated[ServiceContainer, Depends(get_container)]
