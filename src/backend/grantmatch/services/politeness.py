"""
Politeness layer consulted by every outbound fetch.

- RateLimiter: per-source token bucket plus a jittered minimum delay
  between consecutive requests. Each source has its own lock, so a slow
  source never delays another.
- RobotsPolicy: per-origin robots.txt cache; a disallowed path is a hard
  failure, never a retry.
"""

import asyncio
import random
import time
import urllib.robotparser
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from urllib.parse import urlparse

import httpx

from grantmatch.core.exceptions import RobotsDisallowedException
from grantmatch.core.logging import LoggerMixin


@dataclass
class SourceLimits:
    """Politeness limits for one source."""

    requests_per_minute: int = 10
    min_delay: float = 5.0
    max_delay: float = 8.0


@dataclass
class _BucketState:
    limits: SourceLimits
    tokens: float
    updated_at: float
    last_request_at: float | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class RateLimiter(LoggerMixin):
    """
    Per-source token bucket with jittered spacing.

    The bucket holds at most one minute of budget; `acquire()` waits until
    a token is available and at least a random delay in
    [min_delay, max_delay] has passed since the previous request.
    """

    def __init__(
        self,
        default_limits: SourceLimits | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.default_limits = default_limits or SourceLimits()
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._buckets: dict[str, _BucketState] = {}

    def configure(self, source_key: str, limits: SourceLimits) -> None:
        """Set or update the limits for a source."""
        state = self._buckets.get(source_key)
        if state is None:
            self._buckets[source_key] = _BucketState(
                limits=limits,
                tokens=float(limits.requests_per_minute),
                updated_at=self._clock(),
            )
        else:
            state.limits = limits

    def _state(self, source_key: str) -> _BucketState:
        if source_key not in self._buckets:
            self.configure(source_key, self.default_limits)
        return self._buckets[source_key]

    def _refill(self, state: _BucketState, now: float) -> None:
        rate = state.limits.requests_per_minute / 60.0
        capacity = float(state.limits.requests_per_minute)
        state.tokens = min(capacity, state.tokens + (now - state.updated_at) * rate)
        state.updated_at = now

    def _jitter(self, limits: SourceLimits) -> float:
        upper = max(limits.max_delay, limits.min_delay)
        return self._rng.uniform(limits.min_delay, upper)

    async def acquire(self, source_key: str) -> float:
        """
        Wait for permission to send one request to `source_key`.

        Returns:
            Total seconds waited
        """
        state = self._state(source_key)
        waited = 0.0
        async with state.lock:
            now = self._clock()
            if state.last_request_at is not None:
                spacing = self._jitter(state.limits) - (now - state.last_request_at)
                if spacing > 0:
                    await self._sleep(spacing)
                    waited += spacing

            now = self._clock()
            self._refill(state, now)
            if state.tokens < 1.0:
                rate = state.limits.requests_per_minute / 60.0
                deficit = (1.0 - state.tokens) / rate
                await self._sleep(deficit)
                waited += deficit
                self._refill(state, self._clock())

            state.tokens = max(state.tokens - 1.0, 0.0)
            state.last_request_at = self._clock()

        if waited:
            self.logger.debug("rate_limited", source_id=source_key, waited=round(waited, 2))
        return waited


class RobotsPolicy(LoggerMixin):
    """robots.txt gate with a per-origin cache."""

    def __init__(self, http_client: httpx.AsyncClient, user_agent: str, enabled: bool = True) -> None:
        self.http_client = http_client
        self.user_agent = user_agent
        self.enabled = enabled
        self._parsers: dict[str, urllib.robotparser.RobotFileParser | None] = {}

    async def _parser_for(self, url: str) -> urllib.robotparser.RobotFileParser | None:
        parsed = urlparse(url)
        origin = f"{parsed.scheme}://{parsed.netloc}"
        if origin in self._parsers:
            return self._parsers[origin]

        robots_url = f"{origin}/robots.txt"
        parser: urllib.robotparser.RobotFileParser | None = None
        try:
            response = await self.http_client.get(robots_url, headers={"User-Agent": self.user_agent})
            if response.status_code == 200:
                parser = urllib.robotparser.RobotFileParser()
                parser.parse(response.text.splitlines())
            elif response.status_code in (401, 403):
                # Access to robots.txt itself is refused: treat as disallow-all
                parser = urllib.robotparser.RobotFileParser()
                parser.parse(["User-agent: *", "Disallow: /"])
        except httpx.HTTPError as e:
            self.logger.warning("robots_fetch_failed", robots_url=robots_url, error=str(e))

        self._parsers[origin] = parser
        return parser

    async def check(self, url: str, source_id: str | None = None) -> None:
        """
        Raise RobotsDisallowedException when `url` is disallowed.

        Missing or unreachable robots.txt allows everything.
        """
        if not self.enabled:
            return
        parser = await self._parser_for(url)
        if parser is not None and not parser.can_fetch(self.user_agent, url):
            self.logger.error("robots_disallowed", source_id=source_id, url=url)
            raise RobotsDisallowedException(url, source_id)

    async def crawl_delay(self, url: str) -> float | None:
        parser = await self._parser_for(url)
        if parser is None:
            return None
        delay = parser.crawl_delay(self.user_agent)
        return float(delay) if delay is not None else None
