"""
Three-tier eligibility extraction: deterministic patterns, language-model
inference and attachment parsing.
"""

from grantmatch.extraction.base import BaseExtractor, ExtractionRequest, TierResult
from grantmatch.extraction.chain import ExtractionChain, ExtractionOutcome
from grantmatch.extraction.profile import (
    Confidence,
    EligibilityProfile,
    FieldSource,
    FieldValue,
)

__all__ = [
    "BaseExtractor",
    "Confidence",
    "EligibilityProfile",
    "ExtractionChain",
    "ExtractionOutcome",
    "ExtractionRequest",
    "FieldSource",
    "FieldValue",
    "TierResult",
]
