"""
FundingProgram model - One external funding announcement.

Owned by the ingestion pipeline. The eligibility profile extracted by the
tier chain is stored with the program as a JSON document of
{field: {value, source, confidence, evidence}} entries.
"""

import enum
from datetime import date, datetime
from typing import Any

from sqlalchemy import Date, DateTime, Enum, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from grantmatch.db.base import Base, JSONType, TimestampMixin, enum_values
from grantmatch.extraction.profile import EligibilityProfile


class ProgramStatus(str, enum.Enum):
    """Lifecycle status of a funding program."""

    ACTIVE = "ACTIVE"       # Accepting applications
    EXPIRED = "EXPIRED"     # Deadline passed; kept for history and audit


class FundingProgram(Base, TimestampMixin):
    """
    A funding program announcement.

    `content_hash` and `scraped_at` are kept for the life of the row,
    including after the program expires.
    """

    __table_args__ = (
        UniqueConstraint("agency", "external_id", name="uq_funding_program_agency_external_id"),
    )

    # Identity
    agency: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    external_id: Mapped[str] = mapped_column(String(500), nullable=False)
    source_key: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Content
    title: Mapped[str] = mapped_column(String(1000), nullable=False)
    raw_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    source_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    canonical_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    attachment_urls: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    # Change detection
    content_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment="SHA-256 over normalized agency|title|canonical_url|body",
    )
    scraped_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[ProgramStatus] = mapped_column(
        Enum(
            ProgramStatus,
            name="programstatus",
            native_enum=False,
            length=20,
            values_callable=enum_values,
        ),
        default=ProgramStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    # Denormalized from the eligibility profile for querying
    deadline: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)

    # Extraction
    eligibility: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Eligibility profile fields with source and confidence",
    )
    extraction_meta: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
        comment="Tiers run, skipped tiers, errors, unresolved fields",
    )

    @property
    def profile(self) -> EligibilityProfile:
        """Deserialized eligibility profile."""
        return EligibilityProfile.from_dict(self.eligibility)

    @property
    def key(self) -> str:
        return f"{self.agency}:{self.external_id}"

    def __repr__(self) -> str:
        return f"<FundingProgram(id={self.id}, agency='{self.agency}', title='{self.title[:40]}')>"
