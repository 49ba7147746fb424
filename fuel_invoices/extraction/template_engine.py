"""
Template extraction engine.

Applies a supplier TemplateConfig to an XML document: locates the
repeating line-item nodes, evaluates every field rule per line, types the
values, applies the line filters and reads the invoice-level metadata.

Only a document that fails to parse produces ``success=False``; every
data-quality problem is reported in the result instead of raised.
"""

import re
from datetime import date
from typing import Any, List, Optional, Union

from fuel_invoices.models import (
    DATE_FIELDS, DECIMAL_FIELDS, INTEGER_FIELDS, ExtractedLine, ExtractionError,
    ExtractionOptions, ExtractionResult, FieldExtractionRule, FilterAction,
    InvoiceMetadata, LineFilter, TemplateConfig
)
from fuel_invoices.normalization import parse_date, parse_decimal, parse_odometer
from fuel_invoices.extraction.field_extractor import FieldExtractor
from fuel_invoices.extraction.xml_tree import XmlTree, locate_lines, parse_xml, render_node, resolve_text

import logging
logger = logging.getLogger(__name__)

Document = Union[str, bytes, XmlTree]


def stringify_value(value: Any) -> Optional[str]:
    """Text form of an extracted value as seen by line filters."""
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


class TemplateExtractor:
    """
    Extracts structured fuel lines from XML documents.

    The extractor is stateless between calls; options set at construction
    apply to every document unless overridden per call.
    """

    def __init__(self, options: Optional[ExtractionOptions] = None):
        """
        Initialize template extractor.

        Args:
            options: Default extraction options (number locale, raw XML)
        """
        self.options = options or ExtractionOptions()
        self.field_extractor = FieldExtractor()
        self.logger = logging.getLogger(f"{__name__}.TemplateExtractor")

    def extract(self, document: Document, config: TemplateConfig,
                options: Optional[ExtractionOptions] = None) -> ExtractionResult:
        """
        Extract lines and invoice metadata from a document.

        Args:
            document: Raw XML text/bytes or an already parsed tree
            config: Supplier template configuration
            options: Per-call options overriding the extractor defaults

        Returns:
            ExtractionResult; ``success`` is False only for malformed XML
        """
        options = options or self.options

        if isinstance(document, (str, bytes)):
            try:
                tree = parse_xml(document)
            except ExtractionError as e:
                return ExtractionResult(success=False, lines=[], total_lines=0, filtered_lines=0,
                                        errors=[str(e)])
        else:
            tree = document

        errors: List[str] = []
        nodes = locate_lines(tree, config.line_xpath)
        if not nodes:
            self.logger.info(f"No line items found at '{config.line_xpath}'")

        line_tag = re.sub(r"\[\d+\]$", "", config.line_xpath.split(".")[-1])
        lines = [
            self._extract_line(index + 1, node, config, options, line_tag)
            for index, node in enumerate(nodes)
        ]
        total_lines = len(lines)

        lines = self._apply_filters(lines, config.line_filters, errors)
        metadata = self._extract_metadata(tree, config, errors)

        self.logger.info(
            f"Extracted {len(lines)} of {total_lines} lines "
            f"({total_lines - len(lines)} filtered, {len(errors)} document warnings)"
        )
        return ExtractionResult(
            success=True,
            lines=lines,
            total_lines=total_lines,
            filtered_lines=total_lines - len(lines),
            errors=errors,
            invoice_metadata=metadata
        )

    def _extract_line(self, line_number: int, node: Any, config: TemplateConfig,
                      options: ExtractionOptions, line_tag: str) -> ExtractedLine:
        line = ExtractedLine(line_number=line_number)

        for field_name, rule in config.fields.items():
            extraction = self.field_extractor.extract(node, rule, field_name)
            line.errors.extend(extraction.errors)
            try:
                value = self._convert(field_name, extraction.value, rule, options)
            except ValueError as e:
                line.errors.append(f"{field_name}: {e}")
                value = None
            line.set_field(field_name, value)

        if options.include_raw_xml:
            line.raw_xml = render_node(node, line_tag)

        if line.errors:
            self.logger.debug(f"Line {line_number} extracted with errors: {line.errors}")
        return line

    def _convert(self, field_name: str, value: Optional[str], rule: FieldExtractionRule,
                 options: ExtractionOptions) -> Any:
        if value is None:
            return None
        if field_name in DATE_FIELDS:
            return parse_date(value, rule.date_format)
        if field_name in DECIMAL_FIELDS:
            return parse_decimal(value, options.number_locale)
        if field_name in INTEGER_FIELDS:
            return parse_odometer(value)
        if field_name == "licensePlate":
            return value.upper()
        return value

    def _apply_filters(self, lines: List[ExtractedLine], filters, errors: List[str]) -> List[ExtractedLine]:
        """Apply line filters in order; each filter sees only surviving lines."""
        for line_filter in filters:
            if not line_filter.field_path or not line_filter.regex:
                continue
            try:
                pattern = re.compile(line_filter.regex, re.IGNORECASE)
            except re.error as e:
                self.logger.warning(f"Skipping line filter with invalid regex '{line_filter.regex}': {e}")
                errors.append(f"Invalid line filter regex '{line_filter.regex}': {e}")
                continue

            before = len(lines)
            lines = [line for line in lines if self._keeps(line, line_filter, pattern)]
            self.logger.debug(
                f"Filter {line_filter.action.value} {line_filter.field_path}~'{line_filter.regex}' "
                f"removed {before - len(lines)} line(s)"
            )
        return lines

    def _keeps(self, line: ExtractedLine, line_filter: LineFilter, pattern) -> bool:
        value = stringify_value(line.get_field(line_filter.field_path))
        matches = value is not None and pattern.search(value) is not None
        if line_filter.action is FilterAction.INCLUDE:
            return matches
        return not matches

    def _extract_metadata(self, tree: XmlTree, config: TemplateConfig, errors: List[str]) -> InvoiceMetadata:
        metadata = InvoiceMetadata()

        paths = config.invoice_metadata
        if paths:
            if paths.invoice_number_path:
                metadata.invoice_number = resolve_text(tree, paths.invoice_number_path)
            if paths.invoice_date_path:
                raw_date = resolve_text(tree, paths.invoice_date_path)
                metadata.invoice_date_raw = raw_date
                try:
                    metadata.invoice_date = parse_date(raw_date, paths.invoice_date_format)
                except ValueError as e:
                    errors.append(f"Invoice date not parsed: {e}")

        if config.supplier_detection and config.supplier_detection.vat_number_path:
            metadata.supplier_vat_number = resolve_text(tree, config.supplier_detection.vat_number_path)

        return metadata


_default_extractor = TemplateExtractor()


def extract(document: Document, config: TemplateConfig,
            options: Optional[ExtractionOptions] = None) -> ExtractionResult:
    """Extract lines from ``document`` with a shared default extractor."""
    return _default_extractor.extract(document, config, options)
