"""
Unit tests for tabular exports.
"""

import io
from datetime import date
from decimal import Decimal

import pandas as pd
import pytest

from fuel_invoices.models import ExtractedLine, ExtractionResult, MatchDecision, MatchScore, MatchStatus
from fuel_invoices.export import (
    DECISION_COLUMNS, LINE_COLUMNS, decisions_to_dataframe, export_extraction, lines_to_dataframe,
    review_dataframe
)


def make_result() -> ExtractionResult:
    lines = [
        ExtractedLine(line_number=1, license_plate="GH123KL", date=date(2024, 12, 17),
                      fuel_type="SUPER 95", quantity=Decimal("16.41"), amount=Decimal("28.37")),
        ExtractedLine(line_number=3, license_plate="FH432NB", amount=Decimal("71.20"),
                      errors=["date: bad", "quantity: bad"]),
    ]
    return ExtractionResult(success=True, lines=lines, total_lines=3, filtered_lines=1)


def make_decisions():
    return [
        MatchDecision(line_number=1, status=MatchStatus.AUTO_MATCHED, matched_entity_id="r1", score=0.95,
                      candidates=[MatchScore(entity_id="r1", total_score=0.95, dimensions=[])],
                      candidate_count=2),
        MatchDecision(line_number=3, status=MatchStatus.UNMATCHED, matched_entity_id=None, score=0.0,
                      candidates=[], candidate_count=2),
    ]


class TestDataFrames:
    """Test cases for DataFrame builders."""

    def test_lines_to_dataframe(self):
        df = lines_to_dataframe(make_result())

        assert list(df.columns) == LINE_COLUMNS
        assert list(df['line_number']) == [1, 3]
        assert df.loc[0, 'date'] == "2024-12-17"
        assert df.loc[1, 'errors'] == "date: bad; quantity: bad"

    def test_empty_lines(self):
        df = lines_to_dataframe([])

        assert df.empty
        assert list(df.columns) == LINE_COLUMNS

    def test_decisions_to_dataframe(self):
        df = decisions_to_dataframe(make_decisions())

        assert list(df.columns) == DECISION_COLUMNS
        assert list(df['status']) == ["auto_matched", "unmatched"]
        assert df.loc[0, 'candidates'] == "r1:0.9500"

    def test_review_dataframe(self):
        df = review_dataframe(make_result(), make_decisions())

        assert len(df) == 2
        assert list(df['matched_entity_id'])[0] == "r1"
        assert list(df['status']) == ["auto_matched", "unmatched"]

    def test_review_without_decisions(self):
        df = review_dataframe(make_result(), [])

        assert len(df) == 2
        assert 'status' in df.columns


class TestExportExtraction:
    """Test cases for file exports."""

    def test_csv(self):
        content = export_extraction(make_result(), "csv")

        df = pd.read_csv(io.BytesIO(content))
        assert list(df.columns) == LINE_COLUMNS
        assert list(df['license_plate']) == ["GH123KL", "FH432NB"]

    def test_csv_with_decisions(self):
        content = export_extraction(make_result(), "csv", make_decisions())

        df = pd.read_csv(io.BytesIO(content))
        assert 'status' in df.columns

    def test_xlsx_sheets(self):
        content = export_extraction(make_result(), "XLSX", make_decisions())

        sheets = pd.read_excel(io.BytesIO(content), sheet_name=None, engine="openpyxl")
        assert list(sheets) == ["lines", "matches"]
        assert len(sheets["lines"]) == 2

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            export_extraction(make_result(), "pdf")
