"""
Source fetcher.

Retrieves announcements from one agency source with the strategy its
configuration names:

- FeedStrategy: paginated JSON data feed, fields mapped by configuration
- HtmlListingStrategy: static listing pages plus detail pages parsed with
  BeautifulSoup and configured CSS selectors
- BrowserStrategy: same parsing over pages rendered by headless Chromium

Every request goes through SourceSession, which applies the robots.txt
gate and the per-source rate limiter, backs off on 403/429 and classifies
failures into the fetch exception taxonomy. A fetch that fails part way
returns the records collected so far together with the error.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from grantmatch.core.config import Settings, get_settings
from grantmatch.core.exceptions import (
    AccessDeniedException,
    ChallengeWallException,
    FetchException,
    StructuralParseException,
    TransientFetchException,
)
from grantmatch.core.logging import LoggerMixin
from grantmatch.extraction import profile as pf
from grantmatch.extraction.base import text_digest
from grantmatch.extraction.patterns import find_budget, parse_korean_date
from grantmatch.extraction.profile import Confidence, FieldSource, FieldValue
from grantmatch.models.source import FetchMode
from grantmatch.schemas.source import FeedMapping, SelectorConfig, SourceConfig
from grantmatch.services.browser import BrowserRenderer
from grantmatch.services.politeness import RateLimiter, RobotsPolicy, SourceLimits
from grantmatch.services.records import FetchOutcome, RawRecord

THROTTLE_STATUSES = (403, 429)
SNAPSHOT_CHARS = 5000

ATTACHMENT_EXTENSIONS = (".pdf", ".docx", ".doc", ".hwp", ".hwpx", ".zip")
ATTACHMENT_URL_HINTS = ("download", "filedown", "atchfile", "fileid")

# Verification and captcha markers, checked on short pages only
CHALLENGE_INDICATORS = [
    "captcha",
    "robot verification",
    "please verify you are human",
    "unusual traffic",
    "automated access",
    "자동입력 방지",
    "보안문자",
    "비정상적인 접근",
]
# Markers that identify a challenge page regardless of length
STRONG_CHALLENGE_INDICATORS = [
    "g-recaptcha",
    "h-captcha",
    "cf-challenge",
    "challenge-platform",
]


def is_challenge_page(html: str, status: int = 200) -> bool:
    """Check whether a response is a verification wall instead of content."""
    lowered = html.lower()
    if any(marker in lowered for marker in STRONG_CHALLENGE_INDICATORS):
        return True
    if status == 503 and "cloudflare" in lowered:
        return True
    if len(html) < 2000:
        return any(marker in lowered for marker in CHALLENGE_INDICATORS)
    return False


class _Throttled(Exception):
    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"HTTP {status}")


@dataclass
class FetchedPage:
    url: str
    status: int
    text: str


class SourceSession(LoggerMixin):
    """Polite request channel for one source."""

    def __init__(
        self,
        source: SourceConfig,
        http_client: httpx.AsyncClient,
        limiter: RateLimiter,
        robots: RobotsPolicy,
        settings: Settings,
        renderer: BrowserRenderer | None = None,
    ) -> None:
        self.source = source
        self.http_client = http_client
        self.limiter = limiter
        self.robots = robots
        self.settings = settings
        self.renderer = renderer
        self.pages_fetched = 0

    @property
    def source_id(self) -> str:
        return self.source.source_key

    async def _send(self, url: str, render: bool) -> FetchedPage:
        await self.robots.check(url, self.source_id)
        await self.limiter.acquire(self.source_id)

        if render:
            if self.renderer is None:
                raise FetchException("Browser rendering is not available", "FETCH_NO_BROWSER", self.source_id)
            rendered = await self.renderer.render(url, self.source_id)
            page = FetchedPage(rendered.url, rendered.status, rendered.html)
        else:
            try:
                response = await self.http_client.get(url)
            except httpx.TimeoutException as e:
                raise TransientFetchException(f"Timeout fetching {url}", self.source_id, url) from e
            except httpx.HTTPError as e:
                raise TransientFetchException(f"Network error fetching {url}: {e}", self.source_id, url) from e
            page = FetchedPage(str(response.url), response.status_code, response.text)

        self.pages_fetched += 1
        if page.status in THROTTLE_STATUSES:
            self.logger.warning("source_throttled", source_id=self.source_id, url=url, status=page.status)
            raise _Throttled(page.status)
        if is_challenge_page(page.text, page.status):
            self.logger.warning("challenge_page_detected", source_id=self.source_id, url=url)
            raise ChallengeWallException(url, self.source_id)
        if page.status == 408 or page.status >= 500:
            raise TransientFetchException(f"HTTP {page.status} from {url}", self.source_id, url)
        if page.status >= 400:
            raise FetchException(
                f"HTTP {page.status} from {url}",
                "FETCH_HTTP_ERROR",
                self.source_id,
                {"url": url, "status": page.status},
            )
        return page

    async def get(self, url: str, params: dict[str, Any] | None = None, render: bool = False) -> FetchedPage:
        """
        Fetch one page.

        Throttling responses are retried with exponential backoff; when the
        retries run out the source is reported as denying access.
        """
        if params:
            url = str(httpx.URL(url).copy_merge_params(params))

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(_Throttled),
            stop=stop_after_attempt(self.settings.crawler_max_retries),
            wait=wait_exponential(
                multiplier=self.settings.crawler_retry_min_wait,
                min=self.settings.crawler_retry_min_wait,
                max=self.settings.crawler_retry_max_wait,
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send(url, render)
        except _Throttled as e:
            raise AccessDeniedException(e.status, url, self.source_id) from e


@dataclass
class ListingRow:
    title: str
    url: str
    external_id: str | None = None
    deadline_text: str | None = None


def _dig(payload: Any, path: str) -> Any:
    """Follow a dotted path through nested dicts."""
    current = payload
    for part in path.split(".") if path else []:
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _clean(text: str | None) -> str:
    return " ".join((text or "").split())


def parse_listing(html: str, selectors: SelectorConfig, base_url: str) -> list[ListingRow]:
    """Extract announcement rows from a listing page."""
    soup = BeautifulSoup(html, "html.parser")
    rows: list[ListingRow] = []
    id_pattern = re.compile(selectors.external_id_pattern) if selectors.external_id_pattern else None

    for item in soup.select(selectors.item):
        title_el = item.select_one(selectors.title)
        link_el = item.select_one(selectors.link)
        if title_el is None:
            continue
        title = _clean(title_el.get_text(" "))
        if not title:
            continue
        href = (link_el.get("href") or "") if link_el is not None else ""
        if link_el is not None and not href:
            href = link_el.get("onclick") or ""

        external_id = None
        if selectors.external_id_attribute:
            external_id = item.get(selectors.external_id_attribute)
            if external_id is None and link_el is not None:
                external_id = link_el.get(selectors.external_id_attribute)
        if external_id is None and id_pattern is not None:
            match = id_pattern.search(href)
            if match:
                external_id = match.group(1)

        if selectors.detail_url_template and external_id:
            url = selectors.detail_url_template.format(external_id=external_id)
        elif href and not href.lower().startswith("javascript:"):
            url = urljoin(base_url, href)
        else:
            continue

        deadline_text = None
        if selectors.deadline:
            deadline_el = item.select_one(selectors.deadline)
            if deadline_el is not None:
                deadline_text = _clean(deadline_el.get_text(" "))

        rows.append(ListingRow(
            title=title,
            url=url,
            external_id=str(external_id).strip() if external_id else None,
            deadline_text=deadline_text,
        ))
    return rows


def _looks_like_attachment(href: str) -> bool:
    lowered = href.lower().split("#")[0]
    path = lowered.split("?")[0]
    return path.endswith(ATTACHMENT_EXTENSIONS) or any(hint in lowered for hint in ATTACHMENT_URL_HINTS)


def parse_detail(html: str, selectors: SelectorConfig, base_url: str) -> tuple[str, list[str]]:
    """
    Extract the body text and attachment links from a detail page.

    Returns:
        Tuple of (body_text, attachment_urls)
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    container = soup.select_one(selectors.body) if selectors.body else None
    if container is None:
        container = soup.find("main") or soup.body or soup
    body = container.get_text("\n", strip=True)

    attachments: list[str] = []
    for anchor in soup.select(selectors.attachments):
        href = anchor.get("href") or ""
        if not href or href.lower().startswith("javascript:") or not _looks_like_attachment(href):
            continue
        absolute = urljoin(base_url, href)
        if absolute not in attachments:
            attachments.append(absolute)
    return body, attachments


class FetchStrategy(ABC, LoggerMixin):
    """How records are retrieved from one kind of source."""

    @abstractmethod
    async def fetch(self, session: SourceSession, sink: list[RawRecord]) -> None:
        """Append fetched records to `sink`; raise FetchException on failure."""


class FeedStrategy(FetchStrategy):
    """Paginated JSON feed; deadline and budget come through as API fields."""

    async def fetch(self, session: SourceSession, sink: list[RawRecord]) -> None:
        source = session.source
        mapping = source.feed or FeedMapping()
        start = source.pagination.start

        for page_no in range(start, start + source.page_limit):
            page = await session.get(source.listing_url, params={source.pagination.page_param: page_no})
            try:
                payload = json.loads(page.text)
            except ValueError as e:
                raise StructuralParseException(
                    "Feed response is not valid JSON",
                    session.source_id,
                    snapshot=page.text[:SNAPSHOT_CHARS],
                ) from e

            items = _dig(payload, mapping.items_path)
            if not isinstance(items, list):
                raise StructuralParseException(
                    f"Feed path '{mapping.items_path}' is not a list",
                    session.source_id,
                    snapshot=page.text[:SNAPSHOT_CHARS],
                )
            if not items:
                break
            for item in items:
                record = self._to_record(source, mapping, item)
                if record is not None:
                    sink.append(record)

    def _to_record(self, source: SourceConfig, mapping: FeedMapping, item: Any) -> RawRecord | None:
        if not isinstance(item, dict):
            return None
        title = _clean(str(_dig(item, mapping.title) or ""))
        url = _dig(item, mapping.url)
        if not title or not url:
            self.logger.debug("feed_item_skipped", source_id=source.source_key, reason="missing title or url")
            return None

        body = str(_dig(item, mapping.body) or "") if mapping.body else ""
        attachments = _dig(item, mapping.attachments) if mapping.attachments else None
        external_id = _dig(item, mapping.external_id)

        evidence = text_digest(f"{title}\n{body}")
        api_fields: dict[str, FieldValue] = {}
        if mapping.deadline:
            deadline = _parse_feed_date(_dig(item, mapping.deadline))
            if deadline:
                api_fields[pf.DEADLINE] = FieldValue(deadline.isoformat(), FieldSource.API, Confidence.HIGH, evidence)
        if mapping.budget:
            budget = _parse_feed_budget(_dig(item, mapping.budget))
            if budget is not None:
                api_fields[pf.BUDGET_AMOUNT] = FieldValue(budget, FieldSource.API, Confidence.HIGH, evidence)

        return RawRecord(
            agency=source.agency,
            title=title,
            url=urljoin(source.base_url, str(url)),
            body=body,
            external_id=str(external_id) if external_id not in (None, "") else None,
            attachment_urls=[urljoin(source.base_url, str(a)) for a in attachments or [] if a],
            api_fields=api_fields,
        )


def _parse_feed_date(value: Any) -> date | None:
    if not value:
        return None
    text = str(value).strip()
    if re.fullmatch(r"\d{8}", text):
        text = f"{text[:4]}-{text[4:6]}-{text[6:]}"
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return parse_korean_date(text)


def _parse_feed_budget(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).replace(",", "").strip()
    if text.isdigit():
        return int(text)
    found = find_budget(f"지원규모: {value}")
    return found[0] if found else None


class HtmlListingStrategy(FetchStrategy):
    """Listing pages with per-announcement detail pages."""

    render = False

    async def fetch(self, session: SourceSession, sink: list[RawRecord]) -> None:
        source = session.source
        selectors = source.selectors
        if selectors is None:
            raise StructuralParseException("No selectors configured", session.source_id)

        seen: set[str] = set()
        start = source.pagination.start
        for index in range(source.page_limit):
            page = await session.get(
                source.listing_url,
                params={source.pagination.page_param: start + index},
                render=self.render,
            )
            rows = parse_listing(page.text, selectors, page.url)
            if not rows:
                legitimately_empty = selectors.empty_marker and selectors.empty_marker in page.text
                if index == 0 and not legitimately_empty:
                    raise StructuralParseException(
                        f"No rows matched selector '{selectors.item}'",
                        session.source_id,
                        snapshot=page.text[:SNAPSHOT_CHARS],
                    )
                break

            fresh = [row for row in rows if row.url not in seen]
            if not fresh:
                # Pagination parameter ignored by the site
                break
            for row in fresh:
                seen.add(row.url)
                sink.append(await self._build_record(session, row))

    async def _build_record(self, session: SourceSession, row: ListingRow) -> RawRecord:
        source = session.source
        body_parts = []
        if row.deadline_text:
            body_parts.append(f"접수마감: {row.deadline_text}")
        attachments: list[str] = []

        if source.fetch_details:
            try:
                detail = await session.get(row.url, render=self.render)
            except FetchException as e:
                if e.error_code != "FETCH_HTTP_ERROR":
                    raise
                self.logger.warning("detail_page_unavailable", source_id=session.source_id, url=row.url, error=e.message)
            else:
                body, attachments = parse_detail(detail.text, source.selectors, detail.url)
                body_parts.append(body)

        return RawRecord(
            agency=source.agency,
            title=row.title,
            url=row.url,
            body="\n".join(body_parts),
            external_id=row.external_id,
            attachment_urls=attachments,
        )


class BrowserStrategy(HtmlListingStrategy):
    """HTML listing strategy over headless-browser rendered pages."""

    render = True


DEFAULT_STRATEGIES: dict[FetchMode, FetchStrategy] = {
    FetchMode.FEED: FeedStrategy(),
    FetchMode.HTML: HtmlListingStrategy(),
    FetchMode.BROWSER: BrowserStrategy(),
}


class SourceFetcher(LoggerMixin):
    """
    Fetches all current announcements of a source.

    Strategies are looked up by source key first, then by fetch mode, so a
    source with unusual markup can plug in its own strategy.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        limiter: RateLimiter | None = None,
        http_client: httpx.AsyncClient | None = None,
        robots: RobotsPolicy | None = None,
        renderer: BrowserRenderer | None = None,
        strategies: dict[str, FetchStrategy] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.limiter = limiter or RateLimiter(SourceLimits(
            requests_per_minute=self.settings.crawler_requests_per_minute,
            min_delay=self.settings.crawler_min_delay,
            max_delay=self.settings.crawler_max_delay,
        ))
        self._owns_http = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.crawler_timeout, connect=15.0),
            follow_redirects=True,
            headers={
                "User-Agent": self.settings.crawler_user_agent,
                "Accept-Language": "ko-KR,ko;q=0.9,en;q=0.8",
            },
            proxy=self.settings.crawler_proxy_url,
        )
        self.robots = robots or RobotsPolicy(
            self.http_client,
            self.settings.crawler_user_agent,
            enabled=self.settings.crawler_respect_robots,
        )
        self.renderer = renderer
        self.strategies = strategies or {}

    def strategy_for(self, source: SourceConfig) -> FetchStrategy:
        return self.strategies.get(source.source_key) or DEFAULT_STRATEGIES[source.fetch_mode]

    async def _configure_limits(self, source: SourceConfig) -> None:
        min_delay = source.min_delay_seconds
        crawl_delay = await self.robots.crawl_delay(source.listing_url) if self.robots.enabled else None
        if crawl_delay and crawl_delay > min_delay:
            min_delay = crawl_delay
        spread = max(self.settings.crawler_max_delay - self.settings.crawler_min_delay, 0.0)
        self.limiter.configure(source.source_key, SourceLimits(
            requests_per_minute=source.requests_per_minute,
            min_delay=min_delay,
            max_delay=min_delay + spread,
        ))

    async def fetch(self, source: SourceConfig) -> FetchOutcome:
        """
        Fetch every announcement the source currently lists.

        Returns:
            FetchOutcome with the records and, when the fetch stopped early,
            the classified error
        """
        outcome = FetchOutcome(source_key=source.source_key)
        renderer = self.renderer
        if source.fetch_mode == FetchMode.BROWSER and renderer is None:
            renderer = self.renderer = BrowserRenderer(self.settings)
        session = SourceSession(source, self.http_client, self.limiter, self.robots, self.settings, renderer)
        strategy = self.strategy_for(source)

        self.logger.info(
            "source_fetch_started",
            source_id=source.source_key,
            mode=source.fetch_mode.value,
            strategy=type(strategy).__name__,
        )
        try:
            await self._configure_limits(source)
            await strategy.fetch(session, outcome.records)
        except FetchException as e:
            outcome.error = e
            self.logger.error(
                "source_fetch_failed",
                source_id=source.source_key,
                error_code=e.error_code,
                error=e.message,
                records=len(outcome.records),
            )
        outcome.pages_fetched = session.pages_fetched

        self.logger.info(
            "source_fetch_finished",
            source_id=source.source_key,
            records=len(outcome.records),
            pages=outcome.pages_fetched,
            ok=outcome.ok,
        )
        return outcome

    async def close(self) -> None:
        if self.renderer is not None:
            await self.renderer.close()
        if self._owns_http:
            await self.http_client.aclose()
