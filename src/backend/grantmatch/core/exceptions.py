"""
Custom exception classes for the application.

Provides structured error handling with consistent error codes
and HTTP status mappings. The fetch exceptions double as the ingestion
failure taxonomy: the worker pool decides retry, suspension or
dead-lettering from the exception class alone.
"""

from datetime import datetime
from typing import Any


class AppException(Exception):
    """
    Base exception for all application errors.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for client handling
        status_code: HTTP status code to return
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        error_code: str = "APP_ERROR",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details,
            }
        }


class EntityNotFoundException(AppException):
    """Raised when a requested entity is not found."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"{entity_type} not found"
        if entity_id:
            message = f"{entity_type} with id '{entity_id}' not found"
        super().__init__(message, "ENTITY_NOT_FOUND", 404, details)


# Fetch Exceptions
class FetchException(AppException):
    """Base exception for source fetch failures."""

    retryable: bool = False

    def __init__(
        self,
        message: str = "Source fetch failed",
        error_code: str = "FETCH_ERROR",
        source_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        _details = details or {}
        if source_id:
            _details["source_id"] = source_id
        self.source_id = source_id
        super().__init__(message, error_code, 502, _details)


class TransientFetchException(FetchException):
    """Network error or timeout; retried with backoff, then dead-lettered."""

    retryable = True

    def __init__(self, message: str, source_id: str | None = None, url: str | None = None) -> None:
        super().__init__(message, "FETCH_TRANSIENT", source_id, {"url": url} if url else None)


class AccessDeniedException(FetchException):
    """Source answered 403/429 after in-fetch backoff was exhausted."""

    def __init__(self, status: int, url: str, source_id: str | None = None) -> None:
        self.status = status
        super().__init__(
            f"HTTP {status} from {url}",
            "FETCH_ACCESS_DENIED",
            source_id,
            {"url": url, "status": status},
        )


class StructuralParseException(FetchException):
    """Source markup no longer matches the configured selectors."""

    def __init__(self, message: str, source_id: str | None = None, snapshot: str = "") -> None:
        self.snapshot = snapshot
        super().__init__(message, "FETCH_STRUCTURE_CHANGED", source_id, {"snapshot_chars": len(snapshot)})


class ChallengeWallException(FetchException):
    """A verification or captcha page blocked automated access."""

    def __init__(self, url: str, source_id: str | None = None) -> None:
        super().__init__(
            f"Challenge page served for {url}",
            "FETCH_CHALLENGE_WALL",
            source_id,
            {"url": url},
        )


class SourceSuspendedException(FetchException):
    """The source is inside its access-denial cool-down window."""

    def __init__(self, source_id: str, suspended_until: datetime) -> None:
        self.suspended_until = suspended_until
        super().__init__(
            f"Source '{source_id}' is suspended until {suspended_until.isoformat()}",
            "SOURCE_SUSPENDED",
            source_id,
            {"suspended_until": suspended_until.isoformat()},
        )
        self.status_code = 409


class RobotsDisallowedException(FetchException):
    """The source's robots.txt disallows the requested path."""

    def __init__(self, url: str, source_id: str | None = None) -> None:
        super().__init__(
            f"robots.txt disallows {url}",
            "FETCH_ROBOTS_DISALLOWED",
            source_id,
            {"url": url},
        )


# External Service Exceptions
class ExternalServiceException(AppException):
    """Raised when an external service call fails."""

    def __init__(
        self,
        service_name: str,
        message: str = "External service call failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.service_name = service_name
        super().__init__(
            f"{service_name}: {message}",
            "EXTERNAL_SERVICE_ERROR",
            503,
            {"service": service_name, **(details or {})},
        )


class LanguageModelException(ExternalServiceException):
    """Raised when the language-model service fails."""

    def __init__(self, message: str = "Eligibility extraction failed") -> None:
        super().__init__("AzureOpenAI", message)


class DocumentConversionException(ExternalServiceException):
    """Raised when an attachment cannot be converted to text."""

    def __init__(self, message: str = "Document conversion failed", url: str | None = None) -> None:
        super().__init__("DocumentConversion", message, {"url": url} if url else None)


class OrganizationServiceException(ExternalServiceException):
    """Raised when the organization-profile service is unavailable."""

    def __init__(self, message: str = "Organization profile lookup failed") -> None:
        super().__init__("OrganizationService", message)


class QuotaExhaustedException(ExternalServiceException):
    """Raised when a per-minute call budget has no capacity left."""

    def __init__(self, service_name: str, retry_after: datetime) -> None:
        self.retry_after = retry_after
        super().__init__(
            service_name,
            "Call budget exhausted",
            {"retry_after": retry_after.isoformat()},
        )
