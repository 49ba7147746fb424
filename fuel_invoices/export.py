"""
Tabular exports of extraction results and match decisions.

Builds pandas DataFrames for the review screens and renders them as CSV
or Excel downloads.
"""

import io
from typing import Iterable, List, Optional, Sequence, Union

import pandas as pd

from fuel_invoices.models import ExtractedLine, ExtractionResult, MatchDecision

import logging
logger = logging.getLogger(__name__)

LINE_COLUMNS = [
    'line_number', 'license_plate', 'date', 'fuel_type', 'quantity', 'amount',
    'unit_price', 'card_number', 'odometer_km', 'description', 'errors'
]

DECISION_COLUMNS = [
    'line_number', 'status', 'matched_entity_id', 'score', 'candidate_count', 'candidates'
]

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_MEDIA_TYPE = "text/csv"


def lines_to_dataframe(lines: Union[ExtractionResult, Iterable[ExtractedLine]]) -> pd.DataFrame:
    """One row per extracted line; errors are joined with '; '."""
    if isinstance(lines, ExtractionResult):
        lines = lines.lines

    rows = []
    for line in lines:
        row = line.to_dict()
        row['errors'] = "; ".join(line.errors)
        rows.append({column: row.get(column) for column in LINE_COLUMNS})
    return pd.DataFrame(rows, columns=LINE_COLUMNS)


def decisions_to_dataframe(decisions: Sequence[MatchDecision]) -> pd.DataFrame:
    """One row per decision; candidates are listed as 'id:score'."""
    rows = []
    for decision in decisions:
        rows.append({
            'line_number': decision.line_number,
            'status': decision.status.value,
            'matched_entity_id': decision.matched_entity_id,
            'score': round(decision.score, 4),
            'candidate_count': decision.candidate_count,
            'candidates': ", ".join(f"{c.entity_id}:{c.total_score:.4f}" for c in decision.candidates)
        })
    return pd.DataFrame(rows, columns=DECISION_COLUMNS)


def review_dataframe(result: ExtractionResult, decisions: Sequence[MatchDecision]) -> pd.DataFrame:
    """Extracted lines joined with their match decision on line number."""
    lines_df = lines_to_dataframe(result)
    decisions_df = decisions_to_dataframe(decisions)
    if lines_df.empty or decisions_df.empty:
        return lines_df.reindex(columns=LINE_COLUMNS + DECISION_COLUMNS[1:])
    return lines_df.merge(decisions_df, on='line_number', how='left')


def to_csv_bytes(df: pd.DataFrame) -> bytes:
    """Render a DataFrame as UTF-8 CSV."""
    output = io.StringIO()
    df.to_csv(output, index=False)
    return output.getvalue().encode("utf-8")


def to_excel_bytes(sheets: Union[pd.DataFrame, dict], sheet_name: str = "lines") -> bytes:
    """
    Render one or more DataFrames as an .xlsx workbook.

    Args:
        sheets: A DataFrame, or a mapping of sheet name to DataFrame
        sheet_name: Sheet name used when a single DataFrame is given
    """
    if isinstance(sheets, pd.DataFrame):
        sheets = {sheet_name: sheets}

    output = io.BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        for name, df in sheets.items():
            df.to_excel(writer, sheet_name=name, index=False)
    return output.getvalue()


def export_extraction(result: ExtractionResult, fmt: str = "csv",
                      decisions: Optional[Sequence[MatchDecision]] = None) -> bytes:
    """
    Export an extraction result, optionally with its match decisions.

    Args:
        result: Extraction result to export
        fmt: 'csv' or 'xlsx'
        decisions: Match decisions to include

    Returns:
        File content
    """
    fmt = fmt.lower()
    if fmt not in ("csv", "xlsx"):
        raise ValueError(f"Unsupported export format: {fmt}")

    if fmt == "csv":
        df = review_dataframe(result, decisions) if decisions else lines_to_dataframe(result)
        return to_csv_bytes(df)

    sheets = {"lines": lines_to_dataframe(result)}
    if decisions:
        sheets["matches"] = decisions_to_dataframe(decisions)
    logger.debug(f"Exporting {len(result.lines)} line(s) to xlsx")
    return to_excel_bytes(sheets)
