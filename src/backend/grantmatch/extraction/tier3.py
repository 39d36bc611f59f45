"""
Tier 3: attachment parsing.

Runs only for fields still unresolved after Tiers 1 and 2, and only when
the program links at least one attachment. Attachment text goes through
the same deterministic patterns as Tier 1.
"""

from grantmatch.core.exceptions import DocumentConversionException
from grantmatch.extraction.base import BaseExtractor, ExtractionRequest, TierResult, text_digest
from grantmatch.extraction.patterns import extract_fields
from grantmatch.extraction.profile import FieldSource
from grantmatch.services.document_converter import DocumentConverter

MAX_ATTACHMENTS = 3


def attachments_digest(urls: list[str]) -> str | None:
    return text_digest("\n".join(sorted(urls)))


class AttachmentExtractor(BaseExtractor):
    """Converts attachments to text and re-applies the Tier 1 patterns."""

    tier = FieldSource.TIER3

    def __init__(self, converter: DocumentConverter, enabled: bool = True) -> None:
        super().__init__(enabled=enabled)
        self.converter = converter

    def applies_to(self, request: ExtractionRequest, wanted: set[str]) -> str | None:
        reason = super().applies_to(request, wanted)
        if reason:
            return reason
        if not request.attachment_urls:
            return "no_attachment"
        return None

    async def extract(self, request: ExtractionRequest, wanted: set[str]) -> TierResult:
        result = TierResult(tier=self.tier, attempted=set(wanted))
        evidence = attachments_digest(request.attachment_urls)
        remaining = set(wanted)

        for url in request.attachment_urls[:MAX_ATTACHMENTS]:
            if not remaining:
                break
            try:
                text = await self.converter.to_text(url)
            except DocumentConversionException as e:
                self.logger.warning("tier3_conversion_failed", program=request.program_key, url=url, error=e.message)
                result.error = e.message
                continue

            found = extract_fields(request.title, text, FieldSource.TIER3, evidence=evidence, wanted=remaining)
            result.fields.update(found)
            remaining -= {name for name, fv in found.items() if fv.is_resolved}

        self.logger.info(
            "tier3_extracted",
            program=request.program_key,
            resolved=sorted(result.fields),
            unresolved=sorted(remaining),
        )
        return result
