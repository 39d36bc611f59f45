"""
Extraction tier chain.

An ordered list of extractors. Each tier receives the set of fields still
unresolved, returns partial results, and the profile merge applies the
source-precedence rules. A field nobody resolves ends up as an explicit
LOW-confidence marker with no value.
"""

from dataclasses import dataclass, field
from datetime import datetime

from grantmatch.core.exceptions import QuotaExhaustedException
from grantmatch.core.logging import LoggerMixin
from grantmatch.extraction.base import BaseExtractor, ExtractionRequest
from grantmatch.extraction.profile import EligibilityProfile, FieldSource


@dataclass
class ExtractionOutcome:
    """Result of running the chain for one program."""

    profile: EligibilityProfile
    tiers_run: list[str] = field(default_factory=list)
    skipped: dict[str, str] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    deferred_until: datetime | None = None

    @property
    def unresolved(self) -> set[str]:
        return self.profile.unresolved()

    @property
    def deferred(self) -> bool:
        return self.deferred_until is not None

    def to_meta(self) -> dict:
        """Summary stored alongside the program for audits."""
        return {
            "tiers_run": self.tiers_run,
            "skipped": self.skipped,
            "errors": self.errors,
            "unresolved": sorted(self.unresolved),
            "deferred_until": self.deferred_until.isoformat() if self.deferred_until else None,
        }


class ExtractionChain(LoggerMixin):
    """Runs extractors in order, each only over what is still missing."""

    def __init__(self, extractors: list[BaseExtractor]) -> None:
        self.extractors = extractors

    async def run(
        self,
        request: ExtractionRequest,
        profile: EligibilityProfile | None = None,
        tiers: set[FieldSource] | None = None,
    ) -> ExtractionOutcome:
        """
        Fill an eligibility profile for one program.

        Args:
            request: Title, text and attachments of the program
            profile: Previously extracted fields to build on
            tiers: Restrict the run to these tiers (enrichment mode)

        Returns:
            ExtractionOutcome with the merged profile
        """
        profile = profile or EligibilityProfile()
        outcome = ExtractionOutcome(profile=profile)

        if request.api_fields:
            profile.merge(request.api_fields)

        last_tier = FieldSource.TIER1
        for extractor in self.extractors:
            name = extractor.tier.value
            if tiers is not None and extractor.tier not in tiers:
                outcome.skipped[name] = "not_requested"
                continue

            wanted = profile.unresolved()
            reason = extractor.applies_to(request, wanted)
            if reason:
                outcome.skipped[name] = reason
                continue

            try:
                result = await extractor.extract(request, wanted)
            except QuotaExhaustedException as e:
                self.logger.warning(
                    "extraction_deferred",
                    program=request.program_key,
                    tier=name,
                    retry_after=e.retry_after.isoformat(),
                )
                outcome.deferred_until = e.retry_after
                outcome.errors[name] = "quota_exhausted"
                break

            outcome.tiers_run.append(name)
            last_tier = extractor.tier
            if result.error:
                outcome.errors[name] = result.error
            profile.merge(result.fields)

        for missing in profile.unresolved():
            profile.mark_unresolved(missing, last_tier)

        self.logger.info(
            "extraction_complete",
            program=request.program_key,
            tiers=outcome.tiers_run,
            unresolved=len(outcome.unresolved),
            deferred=outcome.deferred,
        )
        return outcome
