"""
Database module for SQLAlchemy models and session management.
"""

from grantmatch.db.base import Base
from grantmatch.db.session import get_db, get_session_factory

__all__ = ["get_db", "get_session_factory", "Base"]
