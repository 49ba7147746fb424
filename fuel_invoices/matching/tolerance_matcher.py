"""
Tolerance-based scoring for dates, quantities and amounts.

Each dimension scores 1.0 at exact equality and decays linearly to 0.0 at
the configured tolerance; anything at or beyond the tolerance scores 0.0.
Percentages are always relative to the reference (expected) value.
"""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

from fuel_invoices.models import DimensionScore, MatchingError

import logging
logger = logging.getLogger(__name__)

Number = Union[Decimal, float, int, str]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise MatchingError(f"Not a number: {value!r}") from e


def _to_date(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


class ToleranceMatcher:
    """
    Scores dimensions that admit a tolerance window.

    Scores are returned unrounded so the caller can compare them against
    a threshold exactly.
    """

    def __init__(self):
        """Initialize tolerance matcher."""
        self.logger = logging.getLogger(f"{__name__}.ToleranceMatcher")

    def score_date(self, extracted: Optional[date], reference: Optional[date],
                   tolerance_days: int = 2, weight: float = 1.0) -> DimensionScore:
        """
        Score two dates by their distance in whole days.

        Args:
            extracted: Date read from the invoice line
            reference: Date of the reference record
            tolerance_days: Distance at which the score reaches 0.0
            weight: Weight carried into the composite score

        Returns:
            DimensionScore; ``score`` is None when either date is missing
        """
        if tolerance_days < 0:
            raise MatchingError("tolerance_days must not be negative")

        if extracted is None or reference is None:
            return DimensionScore(dimension='date', score=None, weight=weight,
                                  detail='missing', expected_value=reference, actual_value=extracted)

        days_apart = abs((_to_date(extracted) - _to_date(reference)).days)
        if days_apart == 0:
            score = 1.0
        elif days_apart >= tolerance_days:
            score = 0.0
        else:
            score = 1.0 - days_apart / tolerance_days

        self.logger.debug(f"Date {extracted} vs {reference} (±{tolerance_days} days): "
                          f"{days_apart} day(s) apart, score {score}")
        return DimensionScore(
            dimension='date',
            score=score,
            weight=weight,
            detail=f"{days_apart} day(s) apart, tolerance {tolerance_days}",
            expected_value=reference,
            actual_value=extracted
        )

    def score_percentage(self, dimension: str, extracted: Optional[Number], reference: Optional[Number],
                         tolerance_percent: float = 5.0, weight: float = 1.0) -> DimensionScore:
        """
        Score two numbers by their deviation as a percentage of the reference.

        Args:
            dimension: Dimension name ('quantity' or 'amount')
            extracted: Value read from the invoice line
            reference: Value of the reference record
            tolerance_percent: Deviation at which the score reaches 0.0
            weight: Weight carried into the composite score

        Returns:
            DimensionScore; ``score`` is None when either value is missing
        """
        if tolerance_percent < 0:
            raise MatchingError("tolerance_percent must not be negative")

        if extracted is None or reference is None:
            return DimensionScore(dimension=dimension, score=None, weight=weight,
                                  detail='missing', expected_value=reference, actual_value=extracted)

        extracted_decimal = _to_decimal(extracted)
        reference_decimal = _to_decimal(reference)

        if reference_decimal == 0:
            score = 1.0 if extracted_decimal == 0 else 0.0
            detail = "zero reference"
        else:
            deviation = abs(extracted_decimal - reference_decimal) / abs(reference_decimal) * 100
            tolerance = _to_decimal(tolerance_percent)
            if deviation == 0:
                score = 1.0
            elif deviation >= tolerance:
                score = 0.0
            else:
                score = float(1 - deviation / tolerance)
            detail = f"{float(deviation):.2f}% deviation, tolerance {tolerance_percent}%"

        self.logger.debug(f"{dimension} {extracted_decimal} vs {reference_decimal}: {detail}, score {score}")
        return DimensionScore(
            dimension=dimension,
            score=score,
            weight=weight,
            detail=detail,
            expected_value=reference,
            actual_value=extracted
        )
