"""
Schemas for source configuration.

The `config` JSON column of Source is validated into SourceConfig before
the fetcher sees it, so selector typos fail at load time rather than as
structural parse failures in the middle of a crawl.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from grantmatch.models.source import FetchMode, Source
from grantmatch.schemas.common import BaseSchema


class SelectorConfig(BaseModel):
    """CSS selectors for listing and detail pages."""

    item: str = Field(description="Selector for one announcement row on the listing page")
    title: str = Field(description="Selector for the title inside a row")
    link: str = Field(default="a", description="Selector for the detail link inside a row")
    deadline: str | None = Field(default=None, description="Selector for the deadline inside a row")
    external_id_attribute: str | None = Field(
        default=None,
        description="Row attribute holding the agency's announcement id"
    )
    external_id_pattern: str | None = Field(
        default=None,
        description="Regex with one group extracting the id from the detail URL"
    )
    detail_url_template: str | None = Field(
        default=None,
        description="Detail URL built from the id, for rows linking via javascript: handlers"
    )
    body: str | None = Field(default=None, description="Selector for the body on the detail page")
    attachments: str = Field(
        default="a[href]",
        description="Selector for attachment links on the detail page"
    )
    empty_marker: str | None = Field(
        default=None,
        description="Text shown when a listing legitimately has no rows"
    )


class PaginationConfig(BaseModel):
    """Pagination handling for listing pages."""

    page_param: str = Field(default="page", description="URL parameter for page number")
    start: int = Field(default=1, ge=0)
    max_pages: int | None = Field(default=None, ge=1, le=100, description="Overrides the source max_pages")


class FeedMapping(BaseModel):
    """Field mapping for JSON data feeds."""

    items_path: str = Field(default="items", description="Dotted path to the list of records")
    external_id: str = "id"
    title: str = "title"
    url: str = "url"
    body: str | None = "content"
    deadline: str | None = None
    budget: str | None = None
    attachments: str | None = None


class SourceConfig(BaseModel):
    """Complete fetch configuration for one source."""

    source_key: str
    agency: str
    fetch_mode: FetchMode
    base_url: str
    listing_url: str
    requests_per_minute: int = 10
    min_delay_seconds: float = 5.0
    max_pages: int = 5
    selectors: SelectorConfig | None = None
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    feed: FeedMapping | None = None
    fetch_details: bool = True

    @field_validator("listing_url", "base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v

    @property
    def page_limit(self) -> int:
        return self.pagination.max_pages or self.max_pages

    @classmethod
    def from_source(cls, source: Source) -> "SourceConfig":
        config = source.config or {}
        return cls(
            source_key=source.source_key,
            agency=source.agency,
            fetch_mode=source.fetch_mode,
            base_url=source.base_url,
            listing_url=source.listing_url,
            requests_per_minute=source.requests_per_minute,
            min_delay_seconds=source.min_delay_seconds,
            max_pages=source.max_pages,
            selectors=config.get("selectors"),
            pagination=config.get("pagination") or {},
            feed=config.get("feed"),
            fetch_details=config.get("fetch_details", True),
        )


class SourceResponse(BaseSchema):
    """Source summary returned by the API."""

    source_key: str
    name: str
    agency: str
    fetch_mode: FetchMode
    listing_url: str
    is_enabled: bool
    suspended_until: datetime | None
    last_run_at: datetime | None
    last_success_at: datetime | None
