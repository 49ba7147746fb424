"""
Matching engine for reconciling extracted fuel lines with reference data.

Provides exact and tolerance-based dimension scoring and the weighted
decision policy (auto-matched, suggested, unmatched).
"""

from .exact_matcher import ExactMatcher
from .tolerance_matcher import ToleranceMatcher
from .scoring_engine import ScoringEngine, match_all, score, summarize_decisions

__all__ = [
    "ExactMatcher",
    "ToleranceMatcher",
    "ScoringEngine",
    "match_all",
    "score",
    "summarize_decisions"
]
