"""
MatchRecord model - Analytics snapshot of computed match results.

Never the source of truth for eligibility: match results are always
recomputed from the organization profile and the program. Snapshots
include results below the listing threshold.
"""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from grantmatch.db.base import Base, JSONType, TimestampMixin


class MatchRecord(Base, TimestampMixin):
    """Last computed MatchResult per (organization, program)."""

    __table_args__ = (
        UniqueConstraint("organization_id", "program_id", name="uq_match_record_org_program"),
    )

    organization_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    program_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("funding_program.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    score: Mapped[int] = mapped_column(Integer, nullable=False)
    gate_passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    notified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment="Counted in a newMatchCount notification",
    )
    blocked_reasons: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    warning_reasons: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    factor_breakdown: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    computed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<MatchRecord(org='{self.organization_id}', program={self.program_id}, score={self.score})>"
