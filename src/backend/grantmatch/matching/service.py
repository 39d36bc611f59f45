"""
Match generation and explanation.

Results are always computed from current data: the cache only saves
recomputation and the persisted match records are analytics snapshots.
"""

import re
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from grantmatch.core.clock import as_utc, utcnow
from grantmatch.core.config import Settings, get_settings
from grantmatch.core.exceptions import EntityNotFoundException
from grantmatch.core.logging import LoggerMixin
from grantmatch.extraction import profile as pf
from grantmatch.matching.cache import ORGANIZATION_UPDATED, InvalidationBus, MatchCache
from grantmatch.matching.explainer import explain
from grantmatch.matching.gates import deadline_of
from grantmatch.matching.result import MatchResult
from grantmatch.matching.scoring import score
from grantmatch.models.funding_program import FundingProgram, ProgramStatus
from grantmatch.models.match_record import MatchRecord
from grantmatch.schemas.common import PaginatedResponse
from grantmatch.schemas.matching import (
    MatchExplanationResponse,
    MatchFilters,
    MatchListResponse,
    MatchResultResponse,
)
from grantmatch.schemas.organization import OrganizationProfile
from grantmatch.services.notifications import NotificationEmitter
from grantmatch.services.repositories import MatchRepository, ProgramRepository

_YEAR_PREFIX_RE = re.compile(r"^\d{4}\s*년도?\s*")
_TRAILING_PAREN_RE = re.compile(r"\([^)]*\)\s*$")


class OrganizationProvider(Protocol):
    async def get_organization_profile(self, organization_id: str) -> OrganizationProfile: ...


def normalize_title(title: str) -> str:
    """Title with the year prefix and trailing parenthetical removed, for duplicate detection."""
    normalized = _YEAR_PREFIX_RE.sub("", title or "")
    normalized = _TRAILING_PAREN_RE.sub("", normalized)
    return " ".join(normalized.split()).lower()


def dedupe_programs(programs: Sequence[FundingProgram]) -> list[FundingProgram]:
    """
    Keep one program per (agency, normalized title).

    Announcements re-posted under a new id differ only in their year
    prefix or suffix. Programs with a deadline win, then programs with a
    budget, then the earliest scraped.
    """
    groups: dict[tuple[str, str], list[FundingProgram]] = {}
    for program in programs:
        groups.setdefault((program.agency, normalize_title(program.title)), []).append(program)

    def preference(program: FundingProgram) -> tuple:
        return (
            program.deadline is None,
            not program.profile.is_resolved(pf.BUDGET_AMOUNT),
            as_utc(program.scraped_at),
        )

    return [min(group, key=preference) for group in groups.values()]


class MatchingService(LoggerMixin):
    """generateMatches and explainMatch over the persisted programs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        organizations: OrganizationProvider,
        cache: MatchCache,
        bus: InvalidationBus,
        notifier: NotificationEmitter | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.organizations = organizations
        self.cache = cache
        self.bus = bus
        self.notifier = notifier
        self.settings = settings or get_settings()
        self._clock = clock

    def _tolerance(self, program: FundingProgram) -> int:
        if program.status == ProgramStatus.EXPIRED:
            return self.settings.match_historical_trl_tolerance
        return 0

    def _evaluate(self, org: OrganizationProfile, program: FundingProgram, now: datetime) -> MatchResult:
        cached = self.cache.get(org.organization_id, program.id)
        # Deadline proximity is date dependent
        if cached is not None and cached.computed_at and cached.computed_at.date() == now.date():
            return cached
        token = self.cache.token(org.organization_id, program.id)
        result = score(org, program, program.profile, now, self._tolerance(program))
        self.cache.put(result, token)
        return result

    @staticmethod
    def _snapshot(result: MatchResult) -> dict[str, Any]:
        return {
            "score": result.score,
            "gate_passed": result.gate_passed,
            "blocked_reasons": result.blocked_reasons(),
            "warning_reasons": result.warning_reasons(),
            "factor_breakdown": result.factor_breakdown(),
            "computed_at": result.computed_at,
        }

    @staticmethod
    def _to_response(
        result: MatchResult,
        program: FundingProgram,
        record: MatchRecord | None,
        locale: str,
    ) -> MatchResultResponse:
        return MatchResultResponse(
            match_id=record.id if record else None,
            program_id=program.id,
            organization_id=result.organization_id,
            title=program.title,
            agency=program.agency,
            deadline=deadline_of(program.profile, program.deadline),
            source_url=program.source_url,
            score=result.score,
            gate_passed=result.gate_passed,
            blocked_reasons=result.blocked_reasons(locale),
            warning_reasons=result.warning_reasons(locale),
            factor_breakdown=result.factor_breakdown(locale),
            computed_at=result.computed_at,
        )

    async def generate_matches(self, organization_id: str, filters: MatchFilters | None = None) -> MatchListResponse:
        """
        Score every current program for an organization.

        Args:
            organization_id: Organization to match
            filters: Historical mode, agency, threshold override, paging, locale

        Returns:
            Page of results at or above the threshold, highest score first
        """
        filters = filters or MatchFilters()
        locale = filters.locale or self.settings.match_locale
        threshold = filters.min_score
        if threshold is None:
            threshold = (
                self.settings.match_min_score_historical if filters.historical
                else self.settings.match_min_score_active
            )
        notify_threshold = self.settings.match_min_score_notification

        org = await self.organizations.get_organization_profile(organization_id)
        now = self._clock()

        async with self.session_factory() as session:
            programs = await ProgramRepository(session).list_for_matching(filters.historical, filters.agency)
            programs = dedupe_programs(programs)
            matches = MatchRepository(session)
            records = await matches.for_organization(organization_id)

            scored: list[tuple[MatchResult, FundingProgram, MatchRecord]] = []
            new_match_count = 0
            for program in programs:
                result = self._evaluate(org, program, now)
                existing = records.get(program.id)
                above = result.gate_passed and result.score >= notify_threshold
                newly_notified = above and not (existing is not None and existing.notified)
                if newly_notified and not filters.historical:
                    new_match_count += 1
                record = await matches.upsert(existing, organization_id, program.id, {
                    **self._snapshot(result),
                    "notified": above if not filters.historical else bool(existing and existing.notified),
                })
                scored.append((result, program, record))
            await session.commit()

        listed = [item for item in scored if item[0].gate_passed and item[0].score >= threshold]
        listed.sort(key=lambda item: (-item[0].score, item[1].title))
        page_items = listed[filters.offset:filters.offset + filters.page_size]

        scraped = [as_utc(p.scraped_at) for p in programs if p.scraped_at is not None]
        last_updated = max(scraped) if scraped else None

        if new_match_count and self.notifier is not None:
            await self.notifier.new_matches(organization_id, new_match_count)

        self.logger.info(
            "matches_generated",
            organization_id=organization_id,
            programs=len(programs),
            listed=len(listed),
            new_matches=new_match_count,
            historical=filters.historical,
        )
        return MatchListResponse(
            items=[self._to_response(r, p, rec, locale) for r, p, rec in page_items],
            last_updated=last_updated,
            new_match_count=new_match_count,
            **PaginatedResponse.page_fields(len(listed), filters.page, filters.page_size),
        )

    async def explain_match(self, match_id: uuid.UUID, locale: str | None = None) -> MatchExplanationResponse:
        """
        Recompute a match and explain it.

        Raises:
            EntityNotFoundException: Unknown match id or deleted program
        """
        locale = locale or self.settings.match_locale
        async with self.session_factory() as session:
            matches = MatchRepository(session)
            record = await matches.get(match_id)
            if record is None:
                raise EntityNotFoundException("Match", str(match_id))
            program = await ProgramRepository(session).get(record.program_id)
            if program is None:
                raise EntityNotFoundException("FundingProgram", str(record.program_id))

            org = await self.organizations.get_organization_profile(record.organization_id)
            now = self._clock()
            token = self.cache.token(org.organization_id, program.id)
            result = score(org, program, program.profile, now, self._tolerance(program))
            self.cache.put(result, token)

            await matches.upsert(record, record.organization_id, program.id, self._snapshot(result))
            await session.commit()

        narrative = explain(result, deadline_of(program.profile, program.deadline), now.date(), locale)
        return MatchExplanationResponse(
            match_id=match_id,
            program_id=program.id,
            organization_id=result.organization_id,
            title=program.title,
            score=result.score,
            gate_passed=result.gate_passed,
            summary=narrative.summary,
            reasons=narrative.reasons,
            warnings=narrative.warnings,
            recommendations=narrative.recommendations,
            factor_breakdown=narrative.factor_breakdown,
            computed_at=now,
        )

    async def organization_updated(self, organization_id: str) -> None:
        """Change hook of the organization-profile service."""
        await self.bus.publish(ORGANIZATION_UPDATED, organization_id)
