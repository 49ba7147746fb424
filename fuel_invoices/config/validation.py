"""
Template and tolerance validation utilities.

Validates supplier template configurations and matching tolerances before
they are stored, with detailed error, warning and suggestion reporting.
Validation works on the persisted JSON form so that malformed templates
can be reported in full rather than failing on the first problem.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from fuel_invoices.models import (
    DATE_FIELDS, FIELD_NAMES, ExtractionMethod, FilterAction, MatchingTolerances,
    TemplateConfig, Transform
)
from fuel_invoices.normalization import is_supported_date_format

import logging
logger = logging.getLogger(__name__)

METHODS = {m.value for m in ExtractionMethod}
TRANSFORMS = {t.value for t in Transform}
FILTER_ACTIONS = {a.value for a in FilterAction}


@dataclass
class ValidationResult:
    """Result of configuration validation."""
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    suggestions: List[str]

    def add_error(self, message: str):
        """Add an error message."""
        self.errors.append(message)
        self.is_valid = False

    def add_warning(self, message: str):
        """Add a warning message."""
        self.warnings.append(message)

    def add_suggestion(self, message: str):
        """Add a suggestion message."""
        self.suggestions.append(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'is_valid': self.is_valid,
            'errors': self.errors,
            'warnings': self.warnings,
            'suggestions': self.suggestions
        }


def _new_result() -> ValidationResult:
    return ValidationResult(is_valid=True, errors=[], warnings=[], suggestions=[])


def _compile(pattern: Any) -> Union["re.Pattern", str]:
    """Compiled pattern, or the error message when it does not compile."""
    if not isinstance(pattern, str):
        return "regex must be a string"
    try:
        return re.compile(pattern)
    except re.error as e:
        return str(e)


class TemplateConfigValidator:
    """Validates template configurations with detailed error reporting."""

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.TemplateConfigValidator")

    def validate_template_config(self, config: Union[TemplateConfig, Dict[str, Any]]) -> ValidationResult:
        """
        Validate a template configuration.

        Args:
            config: TemplateConfig or its persisted JSON form

        Returns:
            ValidationResult with validation details
        """
        data = config.to_dict() if isinstance(config, TemplateConfig) else config
        result = _new_result()

        if not isinstance(data, dict):
            result.add_error("Template configuration must be an object")
            return result

        line_xpath = data.get("lineXpath")
        if not line_xpath:
            result.add_error("lineXpath is required")
        elif not isinstance(line_xpath, str):
            result.add_error("lineXpath must be a dot-separated path")
        elif "/" in line_xpath:
            result.add_error("lineXpath uses '.' as separator, not '/'")

        version = data.get("version", 1)
        if not isinstance(version, int) or version < 1:
            result.add_error("version must be a positive integer")

        fields = data.get("fields") or {}
        if not isinstance(fields, dict):
            result.add_error("fields must be an object")
            fields = {}
        if not fields:
            result.add_warning("No fields configured - lines will carry no values")

        for field_name, rule in fields.items():
            if field_name not in FIELD_NAMES:
                result.add_error(f"Unknown field '{field_name}' (expected one of: {', '.join(FIELD_NAMES)})")
                continue
            if rule is None:
                continue
            self._validate_rule(field_name, rule, result)

        if "licensePlate" not in fields:
            result.add_warning("No licensePlate field - matching will rely on dates and amounts only")

        self._validate_filters(data.get("lineFilters") or [], fields, result)
        self._validate_metadata(data, result)

        self.logger.debug(f"Template validation completed: {len(result.errors)} errors, "
                          f"{len(result.warnings)} warnings")
        return result

    def _validate_rule(self, field_name: str, rule: Any, result: ValidationResult):
        prefix = f"Field '{field_name}'"
        if not isinstance(rule, dict):
            result.add_error(f"{prefix}: rule must be an object")
            return

        method = rule.get("method")
        if method not in METHODS:
            result.add_error(f"{prefix}: unknown method '{method}' (expected one of: {', '.join(sorted(METHODS))})")
            return

        if method in ("XPATH", "XPATH_REGEX") and not rule.get("xpath"):
            result.add_error(f"{prefix}: {method} requires 'xpath'")

        if method == "STATIC":
            if rule.get("staticValue") is None:
                result.add_error(f"{prefix}: STATIC requires 'staticValue'")
            if rule.get("transform"):
                result.add_warning(f"{prefix}: transform is not applied to STATIC values")

        patterns = rule.get("regexPatterns") or []
        if method == "REGEX" and not rule.get("regex") and not patterns:
            result.add_error(f"{prefix}: REGEX requires 'regex' or 'regexPatterns'")
        if method == "XPATH_REGEX" and not rule.get("regex") and not patterns:
            result.add_warning(f"{prefix}: XPATH_REGEX without a regex behaves like XPATH")
        if method in ("XPATH", "STATIC") and (rule.get("regex") or patterns):
            result.add_warning(f"{prefix}: regex is ignored by {method}")

        if rule.get("regex") and patterns:
            result.add_suggestion(f"{prefix}: 'regexPatterns' takes precedence over 'regex'")

        if rule.get("regex"):
            self._validate_pattern(prefix, rule.get("regex"), rule.get("regexGroup"), result)
        for index, pattern in enumerate(patterns):
            label = f"{prefix} pattern {index + 1}"
            if not isinstance(pattern, dict) or not pattern.get("regex"):
                result.add_error(f"{label}: 'regex' is required")
                continue
            self._validate_pattern(label, pattern["regex"], pattern.get("regexGroup"), result)
            if pattern.get("transform") and pattern["transform"] not in TRANSFORMS:
                result.add_error(f"{label}: unknown transform '{pattern['transform']}'")

        transform = rule.get("transform")
        if transform and transform not in TRANSFORMS:
            result.add_error(f"{prefix}: unknown transform '{transform}' (expected one of: {', '.join(sorted(TRANSFORMS))})")

        date_format = rule.get("dateFormat")
        if field_name in DATE_FIELDS:
            if date_format and not is_supported_date_format(date_format):
                result.add_error(f"{prefix}: unsupported dateFormat '{date_format}'")
            elif not date_format and method != "STATIC":
                result.add_suggestion(f"{prefix}: no dateFormat - common Italian and ISO layouts are tried")
        elif date_format:
            result.add_warning(f"{prefix}: dateFormat only applies to the date field")

    def _validate_pattern(self, label: str, pattern: Any, group: Optional[int], result: ValidationResult):
        compiled = _compile(pattern)
        if isinstance(compiled, str):
            result.add_error(f"{label}: invalid regex '{pattern}': {compiled}")
            return
        if group is None:
            if compiled.groups == 0:
                result.add_suggestion(f"{label}: regex has no capture group - the whole match is used")
            return
        if not isinstance(group, int) or group < 0:
            result.add_error(f"{label}: regexGroup must be a non-negative integer")
        elif group > compiled.groups:
            result.add_error(f"{label}: regexGroup {group} exceeds the {compiled.groups} group(s) of the regex")

    def _validate_filters(self, filters: Any, fields: Dict[str, Any], result: ValidationResult):
        if not isinstance(filters, list):
            result.add_error("lineFilters must be a list")
            return

        for index, line_filter in enumerate(filters):
            label = f"Line filter {index + 1}"
            if not isinstance(line_filter, dict):
                result.add_error(f"{label}: must be an object")
                continue
            if line_filter.get("action") not in FILTER_ACTIONS:
                result.add_error(f"{label}: action must be 'include' or 'exclude'")

            field_path = line_filter.get("fieldPath")
            regex = line_filter.get("regex")
            if not field_path or not regex:
                result.add_warning(f"{label}: without fieldPath and regex the filter is ignored")
                continue
            if field_path not in FIELD_NAMES:
                result.add_error(f"{label}: unknown fieldPath '{field_path}'")
            elif field_path not in fields:
                result.add_warning(f"{label}: field '{field_path}' is not extracted, so it is always absent")

            compiled = _compile(regex)
            if isinstance(compiled, str):
                result.add_error(f"{label}: invalid regex '{regex}': {compiled}")

    def _validate_metadata(self, data: Dict[str, Any], result: ValidationResult):
        metadata = data.get("invoiceMetadata") or {}
        date_format = metadata.get("invoiceDateFormat")
        if date_format and not is_supported_date_format(date_format):
            result.add_error(f"Unsupported invoiceDateFormat '{date_format}'")
        if metadata.get("invoiceDatePath") and not date_format:
            result.add_suggestion("No invoiceDateFormat - common Italian and ISO layouts are tried")

        detection = data.get("supplierDetection") or {}
        if not detection.get("vatNumberPath"):
            result.add_suggestion("Set supplierDetection.vatNumberPath to cross-check the supplier VAT")

    def validate_tolerances(self, tolerances: Union[MatchingTolerances, Dict[str, Any]]) -> ValidationResult:
        """
        Validate matching tolerances.

        Args:
            tolerances: MatchingTolerances or its persisted JSON form

        Returns:
            ValidationResult with validation details
        """
        data = tolerances.to_dict() if isinstance(tolerances, MatchingTolerances) else tolerances
        result = _new_result()

        if not isinstance(data, dict):
            result.add_error("Matching tolerances must be an object")
            return result

        def number(key: str) -> Optional[float]:
            value = data.get(key)
            if value is None:
                return None
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                result.add_error(f"{key} must be a number")
                return None
            return float(value)

        days = number("dateToleranceDays")
        if days is not None:
            if days < 0:
                result.add_error("dateToleranceDays must not be negative")
            elif days != int(days):
                result.add_error("dateToleranceDays must be a whole number of days")
            elif days > 30:
                result.add_warning("dateToleranceDays is very high (>30 days)")

        for key in ("quantityTolerancePercent", "amountTolerancePercent"):
            value = number(key)
            if value is None:
                continue
            if value < 0:
                result.add_error(f"{key} must not be negative")
            elif value == 0:
                result.add_warning(f"{key} is 0 - only exact values will score")
            elif value > 50:
                result.add_warning(f"{key} is very high (>50%)")

        threshold = number("autoMatchThreshold")
        if threshold is not None:
            if not 0.0 <= threshold <= 1.0:
                result.add_error("autoMatchThreshold must be between 0 and 1")
            elif threshold < 0.5:
                result.add_warning("autoMatchThreshold below 0.5 may auto-match weak candidates")

        weights = data.get("weights")
        if weights is not None:
            if not isinstance(weights, dict):
                result.add_error("weights must be an object")
            else:
                effective = MatchingTolerances().weights.to_dict()
                for key, value in weights.items():
                    if key not in ("licensePlate", "date", "quantity", "amount", "fuelType"):
                        result.add_error(f"Unknown weight '{key}'")
                    elif isinstance(value, bool) or not isinstance(value, (int, float)):
                        result.add_error(f"Weight '{key}' must be a number")
                    elif value < 0:
                        result.add_error(f"Weight '{key}' must not be negative")
                    else:
                        effective[key] = value
                if result.is_valid and sum(effective.values()) == 0:
                    result.add_error("At least one weight must be positive")
                elif weights.get("licensePlate", 1) == 0:
                    result.add_warning("licensePlate weight is 0 - plates will not influence matching")

        self.logger.debug(f"Tolerance validation completed: {len(result.errors)} errors")
        return result
