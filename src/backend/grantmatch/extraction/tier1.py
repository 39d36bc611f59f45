"""
Tier 1: deterministic pattern extraction.

Zero marginal cost, runs on every NEW or UPDATED record.
"""

from grantmatch.extraction.base import BaseExtractor, ExtractionRequest, TierResult
from grantmatch.extraction.patterns import extract_fields
from grantmatch.extraction.profile import FieldSource


class PatternExtractor(BaseExtractor):
    """Regex and keyword rules over the announcement title and body."""

    tier = FieldSource.TIER1

    async def extract(self, request: ExtractionRequest, wanted: set[str]) -> TierResult:
        return self.extract_sync(request, wanted)

    def extract_sync(self, request: ExtractionRequest, wanted: set[str]) -> TierResult:
        fields = extract_fields(
            request.title,
            request.raw_text,
            FieldSource.TIER1,
            evidence=request.text_digest,
            wanted=wanted,
        )
        self.logger.debug(
            "tier1_extracted",
            program=request.program_key,
            resolved=sorted(fields),
        )
        return TierResult(tier=self.tier, fields=fields, attempted=set(wanted))
