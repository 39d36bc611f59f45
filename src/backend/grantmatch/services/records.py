"""
Records handed from the fetcher to the ingestion pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime

from grantmatch.core.clock import utcnow
from grantmatch.core.exceptions import FetchException
from grantmatch.extraction.profile import FieldValue


@dataclass
class RawRecord:
    """One announcement as fetched, before change detection and extraction."""

    agency: str
    title: str
    url: str
    body: str = ""
    external_id: str | None = None
    attachment_urls: list[str] = field(default_factory=list)
    api_fields: dict[str, FieldValue] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=utcnow)


@dataclass
class FetchOutcome:
    """Records fetched from one source plus the error that stopped the fetch, if any."""

    source_key: str
    records: list[RawRecord] = field(default_factory=list)
    error: FetchException | None = None
    pages_fetched: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None
