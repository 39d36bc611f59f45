"""
Change detection for fetched records.

A record is NEW when no program exists for its identity, UNCHANGED when
its content hash equals the stored one, and UPDATED otherwise. Only NEW
and UPDATED records reach the extraction chain.
"""

import enum
import hashlib
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from grantmatch.models.funding_program import FundingProgram
from grantmatch.services.records import RawRecord

# Query parameters that vary per visit without changing the page
VOLATILE_PARAMS = frozenset({
    "jsessionid",
    "phpsessid",
    "sessionid",
    "sid",
    "fbclid",
    "gclid",
    "_",
})


class ChangeKind(str, enum.Enum):
    NEW = "NEW"
    UPDATED = "UPDATED"
    UNCHANGED = "UNCHANGED"


@dataclass(frozen=True)
class Change:
    kind: ChangeKind
    content_hash: str
    canonical_url: str
    identity: str


def canonicalize_url(url: str, base: str | None = None) -> str:
    """
    Normalize a URL so the same page always produces the same string.

    Lowercases scheme and host, drops the fragment, `;jsessionid=` path
    parameters, tracking and session query parameters, sorts the remaining
    query and strips a trailing slash from non-root paths.
    """
    if base:
        url = urljoin(base, url)
    parts = urlsplit(url.strip())

    path = parts.path.split(";jsessionid=")[0].split(";JSESSIONID=")[0]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")

    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() not in VOLATILE_PARAMS and not key.lower().startswith("utm_")
    ]
    query.sort()

    netloc = parts.netloc.lower()
    if parts.scheme == "http" and netloc.endswith(":80"):
        netloc = netloc[:-3]
    elif parts.scheme == "https" and netloc.endswith(":443"):
        netloc = netloc[:-4]

    return urlunsplit((parts.scheme.lower(), netloc, path or "/", urlencode(query), ""))


def _normalize(text: str | None) -> str:
    return " ".join((text or "").split())


def compute_content_hash(agency: str, title: str, canonical_url: str, body: str) -> str:
    """SHA-256 over normalized agency | title | canonical URL | body."""
    material = "|".join(_normalize(part) for part in (agency, title, canonical_url, body))
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def record_identity(record: RawRecord, canonical_url: str) -> str:
    """Identity within an agency: the agency's own id, or the canonical URL."""
    return (record.external_id or "").strip() or canonical_url


def detect(existing: FundingProgram | None, record: RawRecord) -> Change:
    """
    Classify a fetched record against its stored program.

    Args:
        existing: Program stored under the record's identity, if any
        record: Freshly fetched record

    Returns:
        Change with the kind and the hash to persist
    """
    canonical = canonicalize_url(record.url)
    content_hash = compute_content_hash(record.agency, record.title, canonical, record.body)
    identity = record_identity(record, canonical)

    if existing is None:
        kind = ChangeKind.NEW
    elif existing.content_hash == content_hash:
        kind = ChangeKind.UNCHANGED
    else:
        kind = ChangeKind.UPDATED
    return Change(kind=kind, content_hash=content_hash, canonical_url=canonical, identity=identity)
