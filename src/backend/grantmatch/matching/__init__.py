"""
Eligibility gates, scoring, explanations and the match cache.
"""

from grantmatch.matching.cache import InvalidationBus, MatchCache
from grantmatch.matching.explainer import MatchExplanation, explain
from grantmatch.matching.gates import evaluate_gates
from grantmatch.matching.result import Factor, MatchResult
from grantmatch.matching.scoring import score

__all__ = [
    "Factor",
    "InvalidationBus",
    "MatchCache",
    "MatchExplanation",
    "MatchResult",
    "evaluate_gates",
    "explain",
    "score",
]
