"""
Match cache with pub/sub invalidation.

The cache is advisory: a miss always falls back to recomputing. Entries
expire after a TTL and are dropped when an invalidation event names
their organization or program.

Writes carry the generation token read before computing. Invalidation
bumps the generation, so a result computed from pre-update data and
written after the invalidation is discarded instead of cached.
"""

import inspect
import time
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from grantmatch.core.logging import LoggerMixin
from grantmatch.matching.result import MatchResult

ORGANIZATION_UPDATED = "organization.updated"
PROGRAM_UPDATED = "program.updated"

Handler = Callable[[Any], Awaitable[None] | None]


class InvalidationBus(LoggerMixin):
    """In-process publish/subscribe for invalidation events."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._subscribers[topic].append(handler)

    async def publish(self, topic: str, key: Any) -> int:
        """
        Deliver `key` to every subscriber of `topic`.

        Returns:
            Number of handlers called
        """
        handlers = self._subscribers.get(topic, [])
        for handler in handlers:
            outcome = handler(key)
            if inspect.isawaitable(outcome):
                await outcome
        self.logger.debug("invalidation_published", topic=topic, key=str(key), handlers=len(handlers))
        return len(handlers)


@dataclass
class _Entry:
    result: MatchResult
    expires_at: float


class MatchCache(LoggerMixin):
    """TTL cache of MatchResults keyed by (organization_id, program_id)."""

    def __init__(
        self,
        ttl_seconds: float,
        bus: InvalidationBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, uuid.UUID], _Entry] = {}
        self._by_org: dict[str, set[uuid.UUID]] = defaultdict(set)
        self._by_program: dict[uuid.UUID, set[str]] = defaultdict(set)
        self._org_generation: dict[str, int] = defaultdict(int)
        self._program_generation: dict[uuid.UUID, int] = defaultdict(int)
        self.hits = 0
        self.misses = 0
        if bus is not None:
            bus.subscribe(ORGANIZATION_UPDATED, self.invalidate_organization)
            bus.subscribe(PROGRAM_UPDATED, self.invalidate_program)

    def token(self, organization_id: str, program_id: uuid.UUID) -> tuple[int, int]:
        """Generation token to pass to `put()` for a result about to be computed."""
        return self._org_generation[organization_id], self._program_generation[program_id]

    def get(self, organization_id: str, program_id: uuid.UUID) -> MatchResult | None:
        key = (organization_id, program_id)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if entry.expires_at <= self._clock():
            self._drop(key)
            self.misses += 1
            return None
        self.hits += 1
        return entry.result

    def put(self, result: MatchResult, token: tuple[int, int] | None = None) -> bool:
        """
        Cache a result.

        Returns:
            False when the entry was invalidated since `token` was taken
        """
        if self.ttl_seconds <= 0:
            return False
        key = (result.organization_id, result.program_id)
        if token is not None and token != self.token(*key):
            self.logger.debug("stale_cache_write_dropped", organization_id=key[0], program_id=str(key[1]))
            return False
        self._entries[key] = _Entry(result, self._clock() + self.ttl_seconds)
        self._by_org[key[0]].add(key[1])
        self._by_program[key[1]].add(key[0])
        return True

    def _drop(self, key: tuple[str, uuid.UUID]) -> None:
        self._entries.pop(key, None)
        self._by_org.get(key[0], set()).discard(key[1])
        self._by_program.get(key[1], set()).discard(key[0])

    def invalidate_organization(self, organization_id: str) -> int:
        self._org_generation[organization_id] += 1
        program_ids = self._by_org.pop(organization_id, set())
        for program_id in program_ids:
            self._entries.pop((organization_id, program_id), None)
            self._by_program.get(program_id, set()).discard(organization_id)
        self.logger.info("cache_invalidated", organization_id=organization_id, entries=len(program_ids))
        return len(program_ids)

    def invalidate_program(self, program_id: uuid.UUID) -> int:
        self._program_generation[program_id] += 1
        organization_ids = self._by_program.pop(program_id, set())
        for organization_id in organization_ids:
            self._entries.pop((organization_id, program_id), None)
            self._by_org.get(organization_id, set()).discard(program_id)
        self.logger.info("cache_invalidated", program_id=str(program_id), entries=len(organization_ids))
        return len(organization_ids)

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
