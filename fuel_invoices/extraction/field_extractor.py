"""
Field extraction rules evaluated against a single line node.

Each extraction method is a separate evaluation path selected by the
rule's ``method`` tag. Values flow raw text -> regex capture -> transform;
a missing path or a non-matching regex yields None, while malformed rules
(bad regex, capture group out of range) are reported as errors.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from fuel_invoices.models import ExtractionMethod, FieldExtractionRule, Transform
from fuel_invoices.normalization import apply_transform
from fuel_invoices.extraction.xml_tree import flatten_text, navigate, resolve_text

import logging
logger = logging.getLogger(__name__)


@dataclass
class FieldExtraction:
    """Raw string value of one field plus any rule errors."""
    value: Optional[str] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class RegexCapture:
    """Outcome of applying one pattern to a text."""
    matched: bool
    value: Optional[str] = None
    error: Optional[str] = None


def capture(pattern: str, text: str, group: Optional[int] = None) -> RegexCapture:
    """
    Search ``text`` with ``pattern`` and return the requested capture group.

    The group defaults to 1, or to the whole match when the pattern has
    no groups. A group beyond the pattern's group count is an error.
    """
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        return RegexCapture(matched=False, error=f"invalid regex '{pattern}': {e}")

    if group is None:
        group = 1 if compiled.groups >= 1 else 0
    elif group < 0 or group > compiled.groups:
        return RegexCapture(
            matched=False,
            error=f"capture group {group} out of range for '{pattern}' ({compiled.groups} group(s))"
        )

    match = compiled.search(text)
    if not match:
        return RegexCapture(matched=False)
    return RegexCapture(matched=True, value=match.group(group))


class FieldExtractor:
    """
    Evaluates FieldExtractionRules against line nodes.

    Holds no per-call state; one instance may serve any number of
    documents concurrently.
    """

    def __init__(self):
        """Initialize field extractor."""
        self.logger = logging.getLogger(f"{__name__}.FieldExtractor")
        self._methods: Dict[ExtractionMethod, Callable[[Any, FieldExtractionRule, List[str]], Optional[str]]] = {
            ExtractionMethod.XPATH: self._extract_xpath,
            ExtractionMethod.REGEX: self._extract_regex,
            ExtractionMethod.XPATH_REGEX: self._extract_xpath_regex,
            ExtractionMethod.STATIC: self._extract_static,
        }

    def extract(self, node: Any, rule: FieldExtractionRule, field_name: str = "field") -> FieldExtraction:
        """
        Extract one field value from a line node.

        Args:
            node: Line node of the parsed document tree
            rule: Extraction rule for the field
            field_name: Name used to prefix error messages

        Returns:
            FieldExtraction with the string value (or None) and rule errors
        """
        errors: List[str] = []
        value = self._methods[rule.method](node, rule, errors)
        if value == "":
            value = None

        self.logger.debug(f"{field_name} via {rule.method.value}: {value!r}")
        return FieldExtraction(value=value, errors=[f"{field_name}: {error}" for error in errors])

    def _extract_static(self, node: Any, rule: FieldExtractionRule, errors: List[str]) -> Optional[str]:
        return rule.static_value

    def _extract_xpath(self, node: Any, rule: FieldExtractionRule, errors: List[str]) -> Optional[str]:
        return apply_transform(resolve_text(node, rule.xpath), rule.transform)

    def _extract_xpath_regex(self, node: Any, rule: FieldExtractionRule, errors: List[str]) -> Optional[str]:
        text = resolve_text(node, rule.xpath)
        if text is None:
            return None
        return self._apply_patterns(text, rule, errors)

    def _extract_regex(self, node: Any, rule: FieldExtractionRule, errors: List[str]) -> Optional[str]:
        context = navigate(node, rule.xpath) if rule.xpath else node
        text = flatten_text(context)
        if not text:
            return None
        return self._apply_patterns(text, rule, errors)

    def _apply_patterns(self, text: str, rule: FieldExtractionRule, errors: List[str]) -> Optional[str]:
        value, transform = self._capture_value(text, rule, errors)
        return apply_transform(value, transform)

    def _capture_value(self, text: str, rule: FieldExtractionRule,
                       errors: List[str]) -> Tuple[Optional[str], Optional[Transform]]:
        if rule.regex_patterns:
            for pattern in rule.regex_patterns:
                result = capture(pattern.regex, text, pattern.regex_group)
                if result.error:
                    self.logger.warning(f"Skipping regex pattern {pattern.label or pattern.regex}: {result.error}")
                    errors.append(result.error)
                    continue
                if result.matched:
                    return result.value, pattern.transform or rule.transform
            return None, None

        if rule.regex:
            result = capture(rule.regex, text, rule.regex_group)
            if result.error:
                self.logger.warning(f"Regex rule failed: {result.error}")
                errors.append(result.error)
            return result.value, rule.transform

        return text, rule.transform
