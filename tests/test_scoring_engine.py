"""
Unit tests for weighted scoring and match decisions.

Tests the composite score, exclusion of missing dimensions, the
threshold policy, deterministic ranking and decision summaries.
"""

import math
from datetime import date, datetime
from decimal import Decimal

import pytest

from fuel_invoices.models import (
    ExtractedLine, MatchingError, MatchingTolerances, MatchingWeights, MatchStatus, ReferenceEntity
)
from fuel_invoices.matching import ScoringEngine, match_all, score, summarize_decisions


def make_line(**overrides) -> ExtractedLine:
    values = dict(
        line_number=1,
        license_plate="AB123CD",
        date=date(2024, 12, 17),
        fuel_type="SUPER 95",
        quantity=Decimal("16.41"),
        amount=Decimal("28.37")
    )
    values.update(overrides)
    return ExtractedLine(**values)


def make_entity(entity_id: str, **overrides) -> ReferenceEntity:
    values = dict(
        entity_id=entity_id,
        license_plate="AB123CD",
        date=date(2024, 12, 17),
        fuel_type="BENZINA",
        quantity=Decimal("16.41"),
        amount=Decimal("28.37")
    )
    values.update(overrides)
    return ReferenceEntity(**values)


class TestScore:
    """Test cases for the composite score."""

    def setup_method(self):
        self.engine = ScoringEngine()

    def test_perfect_match(self):
        result = self.engine.score(make_line(), make_entity("r1"))

        assert result.entity_id == "r1"
        assert result.total_score == pytest.approx(1.0)
        assert result.compared_dimensions == ['licensePlate', 'date', 'quantity', 'amount', 'fuelType']

    def test_weighted_average(self):
        """Test that a plate mismatch costs exactly its weight share."""
        result = self.engine.score(make_line(), make_entity("r1", license_plate="FH432NB"))

        assert result.total_score == pytest.approx(0.65)

    def test_missing_dimensions_are_excluded(self):
        """Test that dimensions absent on either side leave the denominator."""
        line = make_line(date=None, quantity=None, fuel_type=None)
        candidate = make_entity("r1", amount=Decimal("999"))

        result = self.engine.score(line, candidate)

        assert result.compared_dimensions == ['licensePlate', 'amount']
        assert result.total_score == pytest.approx(0.35 / 0.5)

    def test_reference_side_null_fuel_type_is_excluded(self):
        """Test that a null reference fuel type is not scored as a mismatch."""
        with_fuel = self.engine.score(make_line(), make_entity("r1"))
        without_fuel = self.engine.score(make_line(), make_entity("r2", fuel_type=None))

        assert without_fuel.compared_dimensions == ['licensePlate', 'date', 'quantity', 'amount']
        assert without_fuel.total_score == pytest.approx(with_fuel.total_score)
        assert without_fuel.total_score == pytest.approx(1.0)

    def test_nothing_comparable_scores_zero(self):
        line = ExtractedLine(line_number=1)

        assert self.engine.score(line, make_entity("r1")).total_score == 0.0

    def test_zero_weight_dimension_does_not_count(self):
        tolerances = MatchingTolerances(weights=MatchingWeights(fuel_type=0))
        candidate = make_entity("r1", fuel_type="DIESEL")

        assert self.engine.score(make_line(), candidate, tolerances).total_score == pytest.approx(1.0)

    def test_module_level_score(self):
        assert score(make_line(), make_entity("r1")).total_score == pytest.approx(1.0)


class TestDecisions:
    """Test cases for the decision policy."""

    def setup_method(self):
        self.engine = ScoringEngine()
        # Plate and date only, equal weights: a plate mismatch with an exact date scores 0.5
        self.half_line = ExtractedLine(line_number=7, license_plate="AB123CD", date=date(2024, 12, 17))
        self.half_candidate = ReferenceEntity(entity_id="r1", license_plate="FH432NB", date=date(2024, 12, 17))
        self.equal_weights = MatchingWeights(license_plate=1, date=1, quantity=1, amount=1, fuel_type=1)

    def test_auto_match(self):
        decision = self.engine.decide(make_line(), [make_entity("r1")])

        assert decision.status is MatchStatus.AUTO_MATCHED
        assert decision.matched_entity_id == "r1"
        assert decision.score == pytest.approx(1.0)
        assert decision.candidate_count == 1

    def test_threshold_is_inclusive(self):
        tolerances = MatchingTolerances(auto_match_threshold=0.5, weights=self.equal_weights)

        decision = self.engine.decide(self.half_line, [self.half_candidate], tolerances)

        assert decision.score == 0.5
        assert decision.status is MatchStatus.AUTO_MATCHED

    def test_just_below_threshold_is_suggested(self):
        tolerances = MatchingTolerances(auto_match_threshold=math.nextafter(0.5, 1), weights=self.equal_weights)

        decision = self.engine.decide(self.half_line, [self.half_candidate], tolerances)

        assert decision.status is MatchStatus.SUGGESTED
        assert decision.matched_entity_id == "r1"

    def test_unmatched(self):
        """Test that a zero top score leaves the line unmatched."""
        candidate = make_entity("r1", license_plate="FH432NB", date=date(2023, 1, 1),
                                quantity=Decimal("100"), amount=Decimal("500"), fuel_type="DIESEL")

        decision = self.engine.decide(make_line(), [candidate])

        assert decision.status is MatchStatus.UNMATCHED
        assert decision.matched_entity_id is None
        assert decision.score == 0.0
        assert decision.candidates == []
        assert decision.candidate_count == 1

    def test_no_candidates(self):
        decision = self.engine.decide(make_line(), [])

        assert decision.status is MatchStatus.UNMATCHED
        assert decision.candidate_count == 0

    def test_manual_confirmation_demotes_auto_match(self):
        decision = self.engine.decide(make_line(), [make_entity("r1")], require_manual_confirmation=True)

        assert decision.status is MatchStatus.SUGGESTED
        assert decision.matched_entity_id == "r1"


class TestRanking:
    """Test cases for deterministic ranking."""

    def setup_method(self):
        self.engine = ScoringEngine()

    def test_best_score_first(self):
        candidates = [
            make_entity("weak", amount=Decimal("29.00")),
            make_entity("strong"),
        ]

        ranked = self.engine.rank(make_line(), candidates)

        assert [m.entity_id for m in ranked] == ["strong", "weak"]

    def test_recency_breaks_ties(self):
        """Test that the most recently used entity wins a tie."""
        candidates = [
            make_entity("old", last_used_at=datetime(2024, 1, 1)),
            make_entity("new", last_used_at=datetime(2024, 6, 1)),
            make_entity("never"),
        ]

        decision = self.engine.decide(make_line(), candidates)

        assert decision.matched_entity_id == "new"
        assert [c.entity_id for c in decision.candidates] == ["new", "old", "never"]

    def test_entity_id_is_final_tie_break(self):
        candidates = [make_entity("b"), make_entity("c"), make_entity("a")]

        ranked = self.engine.rank(make_line(), candidates)

        assert [m.entity_id for m in ranked] == ["a", "b", "c"]

    def test_order_of_candidates_does_not_matter(self):
        candidates = [make_entity("b"), make_entity("a", created_at=datetime(2024, 1, 1))]

        first = self.engine.decide(make_line(), candidates)
        second = self.engine.decide(make_line(), list(reversed(candidates)))

        assert first.to_dict() == second.to_dict()

    def test_suggestion_limit(self):
        candidates = [make_entity(f"r{i}") for i in range(5)]

        decision = self.engine.decide(make_line(), candidates, suggestion_limit=2)

        assert len(decision.candidates) == 2
        assert decision.candidate_count == 5


class TestMatchAll:
    """Test cases for batch matching."""

    def setup_method(self):
        self.engine = ScoringEngine()

    def test_one_decision_per_line_in_order(self):
        lines = [
            make_line(line_number=1),
            make_line(line_number=3, license_plate="FH432NB", date=date(2024, 12, 18)),
            make_line(line_number=4, license_plate="ZZ999ZZ", date=date(2020, 1, 1),
                      quantity=Decimal("1"), amount=Decimal("1"), fuel_type="GPL"),
        ]
        candidates = [make_entity("r1")]

        decisions = self.engine.match_all(lines, candidates)

        assert [d.line_number for d in decisions] == [1, 3, 4]
        assert [d.status for d in decisions] == [
            MatchStatus.AUTO_MATCHED, MatchStatus.SUGGESTED, MatchStatus.UNMATCHED
        ]

    def test_accepts_generators(self):
        decisions = self.engine.match_all((make_line() for _ in range(2)), (make_entity(f"r{i}") for i in range(2)))

        assert all(d.candidate_count == 2 for d in decisions)

    def test_invalid_suggestion_limit(self):
        with pytest.raises(MatchingError):
            self.engine.match_all([make_line()], [make_entity("r1")], suggestion_limit=0)

    def test_summary(self):
        decisions = match_all(
            [make_line(line_number=1), make_line(line_number=2, license_plate="FH432NB")],
            [make_entity("r1")],
            require_manual_confirmation=True
        )

        assert summarize_decisions(decisions) == {'total': 2, 'auto_matched': 0, 'suggested': 2, 'unmatched': 0}
