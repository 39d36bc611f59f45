"""
Common types for the extraction tier chain.
"""

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from grantmatch.core.logging import LoggerMixin
from grantmatch.extraction.profile import FieldSource, FieldValue


def text_digest(text: str | None) -> str | None:
    """Short stable digest used as field evidence."""
    if not text:
        return None
    normalized = " ".join(text.split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


@dataclass
class ExtractionRequest:
    """Input handed to every tier."""

    program_key: str
    title: str
    raw_text: str
    attachment_urls: list[str] = field(default_factory=list)
    api_fields: dict[str, FieldValue] = field(default_factory=dict)

    @property
    def text_digest(self) -> str | None:
        return text_digest(f"{self.title}\n{self.raw_text}")


@dataclass
class TierResult:
    """Partial output of one tier."""

    tier: FieldSource
    fields: dict[str, FieldValue] = field(default_factory=dict)
    attempted: set[str] = field(default_factory=set)
    error: str | None = None
    skipped: str | None = None

    @property
    def unresolved(self) -> set[str]:
        """Fields this tier was asked for but could not resolve."""
        return {n for n in self.attempted if n not in self.fields or not self.fields[n].is_resolved}


class BaseExtractor(ABC, LoggerMixin):
    """One strategy in the escalating extraction chain."""

    tier: FieldSource

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def applies_to(self, request: ExtractionRequest, wanted: set[str]) -> str | None:
        """
        Return a reason to skip this tier, or None to run it.

        Subclasses add their own preconditions (attachments, budgets...).
        """
        if not self.enabled:
            return "disabled"
        if not wanted:
            return "nothing_to_resolve"
        return None

    @abstractmethod
    async def extract(self, request: ExtractionRequest, wanted: set[str]) -> TierResult:
        """Resolve as many of `wanted` as possible."""
