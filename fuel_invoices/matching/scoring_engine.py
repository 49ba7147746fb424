"""
Weighted scoring and match decisions for extracted fuel lines.

The composite score of a line/candidate pairing is the weighted average of
the dimensions both sides carry a value for. Candidates are ranked by
score, then by recency, then by entity id, so identical inputs always
produce identical decisions.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from fuel_invoices.models import (
    ExtractedLine, MatchDecision, MatchScore, MatchStatus, MatchingError,
    MatchingTolerances, ReferenceEntity
)
from fuel_invoices.normalization import FuelTypeCatalog
from fuel_invoices.matching.exact_matcher import ExactMatcher
from fuel_invoices.matching.tolerance_matcher import ToleranceMatcher

import logging
logger = logging.getLogger(__name__)

DEFAULT_SUGGESTION_LIMIT = 3


def _ranking_key(match: MatchScore):
    recency = match.recency.timestamp() if match.recency is not None else float("-inf")
    return (-match.total_score, -recency, match.entity_id)


class ScoringEngine:
    """
    Scores extracted lines against reference entities and decides matches.

    The engine keeps no state between calls.
    """

    def __init__(self, fuel_catalog: Optional[FuelTypeCatalog] = None):
        """
        Initialize scoring engine.

        Args:
            fuel_catalog: Alias table for fuel type canonicalization
        """
        self.exact_matcher = ExactMatcher(fuel_catalog)
        self.tolerance_matcher = ToleranceMatcher()
        self.logger = logging.getLogger(f"{__name__}.ScoringEngine")

    def score(self, line: ExtractedLine, candidate: ReferenceEntity,
              tolerances: Optional[MatchingTolerances] = None) -> MatchScore:
        """
        Compute the composite score of one line against one candidate.

        Dimensions missing on either side are left out of both the
        weighted sum and the weight total. With nothing comparable the
        score is 0.0.
        """
        tolerances = tolerances or MatchingTolerances()
        weights = tolerances.weights

        dimensions = [
            self.exact_matcher.match_license_plate(
                line.license_plate, candidate.license_plate, weights.license_plate),
            self.tolerance_matcher.score_date(
                line.date, candidate.date, tolerances.date_tolerance_days, weights.date),
            self.tolerance_matcher.score_percentage(
                'quantity', line.quantity, candidate.quantity,
                tolerances.quantity_tolerance_percent, weights.quantity),
            self.tolerance_matcher.score_percentage(
                'amount', line.amount, candidate.amount,
                tolerances.amount_tolerance_percent, weights.amount),
            self.exact_matcher.match_fuel_type(
                line.fuel_type, candidate.fuel_type, weights.fuel_type),
        ]

        compared = [d for d in dimensions if d.comparable]
        weight_total = sum(d.weight for d in compared)
        if weight_total > 0:
            total_score = sum(d.score * d.weight for d in compared) / weight_total
        else:
            total_score = 0.0

        return MatchScore(
            entity_id=candidate.entity_id,
            total_score=total_score,
            dimensions=dimensions,
            recency=candidate.recency
        )

    def rank(self, line: ExtractedLine, candidates: Iterable[ReferenceEntity],
             tolerances: Optional[MatchingTolerances] = None) -> List[MatchScore]:
        """Score every candidate and order them best first."""
        scores = [self.score(line, candidate, tolerances) for candidate in candidates]
        scores.sort(key=_ranking_key)
        return scores

    def decide(self, line: ExtractedLine, candidates: Sequence[ReferenceEntity],
               tolerances: Optional[MatchingTolerances] = None,
               require_manual_confirmation: bool = False,
               suggestion_limit: int = DEFAULT_SUGGESTION_LIMIT) -> MatchDecision:
        """
        Decide the outcome of one line against the full candidate set.

        Returns:
            AUTO_MATCHED when the top score reaches the threshold (inclusive),
            SUGGESTED when it is above zero, UNMATCHED otherwise
        """
        tolerances = tolerances or MatchingTolerances()
        ranked = self.rank(line, candidates, tolerances)
        top = ranked[0] if ranked else None
        top_score = top.total_score if top else 0.0

        if top is None or top_score <= 0.0:
            return MatchDecision(
                line_number=line.line_number,
                status=MatchStatus.UNMATCHED,
                matched_entity_id=None,
                score=0.0,
                candidates=[],
                candidate_count=len(ranked)
            )

        if top_score >= tolerances.auto_match_threshold and not require_manual_confirmation:
            status = MatchStatus.AUTO_MATCHED
        else:
            status = MatchStatus.SUGGESTED

        return MatchDecision(
            line_number=line.line_number,
            status=status,
            matched_entity_id=top.entity_id,
            score=top_score,
            candidates=ranked[:suggestion_limit],
            candidate_count=len(ranked)
        )

    def match_all(self, lines: Iterable[ExtractedLine], candidates: Iterable[ReferenceEntity],
                  tolerances: Optional[MatchingTolerances] = None,
                  require_manual_confirmation: bool = False,
                  suggestion_limit: int = DEFAULT_SUGGESTION_LIMIT) -> List[MatchDecision]:
        """
        Decide every line against the same candidate set.

        Args:
            lines: Extracted invoice lines
            candidates: Reference entities to reconcile against
            tolerances: Tolerances and weights (defaults when omitted)
            require_manual_confirmation: Demote auto-matches to suggestions
            suggestion_limit: Number of ranked candidates kept per decision

        Returns:
            One MatchDecision per line, in input order
        """
        if suggestion_limit < 1:
            raise MatchingError("suggestion_limit must be at least 1")

        candidate_list = list(candidates)
        decisions = [
            self.decide(line, candidate_list, tolerances, require_manual_confirmation, suggestion_limit)
            for line in lines
        ]

        summary = summarize_decisions(decisions)
        self.logger.info(
            f"Matched {summary['total']} line(s) against {len(candidate_list)} candidate(s): "
            f"{summary['auto_matched']} auto, {summary['suggested']} suggested, "
            f"{summary['unmatched']} unmatched"
        )
        return decisions


def summarize_decisions(decisions: Iterable[MatchDecision]) -> Dict[str, int]:
    """Count decisions per outcome."""
    summary = {'total': 0, 'auto_matched': 0, 'suggested': 0, 'unmatched': 0}
    for decision in decisions:
        summary['total'] += 1
        summary[decision.status.value] += 1
    return summary


_default_engine = ScoringEngine()


def score(line: ExtractedLine, candidate: ReferenceEntity,
          tolerances: Optional[MatchingTolerances] = None) -> MatchScore:
    """Score one pairing with the default fuel type catalog."""
    return _default_engine.score(line, candidate, tolerances)


def match_all(lines: Iterable[ExtractedLine], candidates: Iterable[ReferenceEntity],
              tolerances: Optional[MatchingTolerances] = None, **kwargs: Any) -> List[MatchDecision]:
    """Decide every line with the default fuel type catalog."""
    return _default_engine.match_all(lines, candidates, tolerances, **kwargs)
