"""
Source model - Configuration-driven agency definitions.

Each source is one agency endpoint with its fetch strategy, selector
configuration and politeness limits stored in the database rather than
hardcoded. Operational state (suspension window, consecutive access
denials, last run) lives on the same row.
"""

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Boolean, DateTime, Enum, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from grantmatch.db.base import Base, JSONType, TimestampMixin, enum_values


class FetchMode(str, enum.Enum):
    """How a source is retrieved."""

    FEED = "feed"          # Direct JSON data feed
    HTML = "html"          # Static HTML listing + detail pages
    BROWSER = "browser"    # Headless-browser rendering


class Source(Base, TimestampMixin):
    """
    A funding agency endpoint polled by the scheduler.

    Attributes:
        source_key: Stable identifier used in jobs and APIs (e.g. "NTIS")
        agency: Agency name stamped on every program from this source
        fetch_mode: Strategy used by the fetcher
        listing_url: First listing page
        config: Selector / pagination / feed mapping configuration
        requests_per_minute: Per-source request budget
        min_delay_seconds: Lower bound of the jittered inter-request delay
        suspended_until: Cool-down end after repeated access denials
    """

    # Identity
    source_key: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    agency: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Fetching
    fetch_mode: Mapped[FetchMode] = mapped_column(
        Enum(
            FetchMode,
            name="fetchmode",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        default=FetchMode.HTML,
        nullable=False,
    )
    base_url: Mapped[str] = mapped_column(String(500), nullable=False)
    listing_url: Mapped[str] = mapped_column(String(500), nullable=False)
    config: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Selectors, pagination and feed field mapping",
    )

    # Politeness
    requests_per_minute: Mapped[int] = mapped_column(Integer, default=10)
    min_delay_seconds: Mapped[float] = mapped_column(
        Float,
        default=5.0,
        comment="Minimum delay between requests in seconds",
    )
    max_pages: Mapped[int] = mapped_column(Integer, default=5)

    # Operational
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    suspended_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    consecutive_access_failures: Mapped[int] = mapped_column(Integer, default=0)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def is_suspended(self, now: datetime | None = None) -> bool:
        """Check whether the source is inside its cool-down window."""
        if self.suspended_until is None:
            return False
        now = now or datetime.now(timezone.utc)
        until = self.suspended_until
        if until.tzinfo is None:
            until = until.replace(tzinfo=timezone.utc)
        return until > now

    def __repr__(self) -> str:
        return f"<Source(key='{self.source_key}', mode='{self.fetch_mode.value}')>"
