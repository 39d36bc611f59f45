"""
Core module containing configuration, settings, and foundational utilities.
"""

from grantmatch.core.config import get_settings, Settings
from grantmatch.core.logging import get_logger, setup_logging

__all__ = ["get_settings", "Settings", "get_logger", "setup_logging"]
