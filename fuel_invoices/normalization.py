"""
Value normalization helpers shared by the extraction and matching engines.

Covers date parsing (date-fns style format strings and a flexible
fallback parser), locale-aware number parsing, odometer parsing, string
transforms, license plate normalization and fuel type canonicalization.

Parsers return None for absent input and raise ValueError for text that
is present but cannot be parsed; callers decide how to report the error.
"""

import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from fuel_invoices.models import NumberLocale, Transform

import logging
logger = logging.getLogger(__name__)


# date-fns tokens understood by parse_date, longest first
DATE_TOKENS: Dict[str, Tuple[str, str]] = {
    "yyyy": ("year", r"\d{4}"),
    "yy": ("short_year", r"\d{2}"),
    "MM": ("month", r"\d{2}"),
    "M": ("month", r"\d{1,2}"),
    "dd": ("day", r"\d{2}"),
    "d": ("day", r"\d{1,2}"),
    "HH": ("hour", r"\d{2}"),
    "mm": ("minute", r"\d{2}"),
    "ss": ("second", r"\d{2}"),
}

# Two-digit years at or above the pivot belong to the 1900s
TWO_DIGIT_YEAR_PIVOT = 50

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:T[\d:.]+(?:Z|[+-]\d{2}:?\d{2})?)?$")
_ITALIAN_DATE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})$")
_ITALIAN_SHORT_DATE = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2})$")
_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")

_CURRENCY_PREFIX = re.compile(r"^(?:EUR|€)\s*", re.IGNORECASE)
_CURRENCY_SUFFIX = re.compile(r"\s*(?:EUR|€|Eu\.?)$", re.IGNORECASE)
_NUMBER_SHAPE = re.compile(r"^-?[\d.,]*\d[\d.,]*$")
_ODOMETER = re.compile(r"^(\d{1,3}(?:[.,\s]\d{3})+|\d+)(?:\s*km)?$", re.IGNORECASE)


def _expand_year(short_year: int) -> int:
    return 1900 + short_year if short_year >= TWO_DIGIT_YEAR_PIVOT else 2000 + short_year


def _tokenize_date_format(date_format: str) -> List[Tuple[str, str]]:
    """
    Split a date-fns format into ('token', name) and ('literal', text) parts.

    Text between single quotes is literal. Raises ValueError for letters
    that are not a supported token.
    """
    parts = []
    i = 0
    while i < len(date_format):
        char = date_format[i]
        if char == "'":
            end = date_format.find("'", i + 1)
            if end == -1:
                raise ValueError(f"Unterminated literal in date format '{date_format}'")
            parts.append(("literal", date_format[i + 1:end]))
            i = end + 1
            continue
        if char.isalpha():
            for token in DATE_TOKENS:
                if date_format.startswith(token, i):
                    parts.append(("token", token))
                    i += len(token)
                    break
            else:
                raise ValueError(f"Unsupported token '{char}' in date format '{date_format}'")
            continue
        parts.append(("literal", char))
        i += 1
    return parts


def is_supported_date_format(date_format: str) -> bool:
    """Whether parse_date understands every token of ``date_format``."""
    try:
        parts = _tokenize_date_format(date_format)
    except ValueError:
        return False
    names = {DATE_TOKENS[value][0] for kind, value in parts if kind == "token"}
    has_year = "year" in names or "short_year" in names
    return has_year and "month" in names and "day" in names


def _compile_date_format(date_format: str) -> "re.Pattern":
    pattern = []
    seen = set()
    for kind, value in _tokenize_date_format(date_format):
        if kind == "literal":
            pattern.append(re.escape(value))
            continue
        name, digits = DATE_TOKENS[value]
        if name in seen:
            pattern.append(digits)
        else:
            seen.add(name)
            pattern.append(f"(?P<{name}>{digits})")
    return re.compile("".join(pattern))


def parse_date_with_format(text: str, date_format: str) -> date:
    """
    Parse ``text`` strictly under a date-fns style ``date_format``.

    Raises:
        ValueError: If the text does not match the format or is not a real date
    """
    match = _compile_date_format(date_format).fullmatch(text.strip())
    if not match:
        raise ValueError(f"'{text}' does not match date format '{date_format}'")

    parts = match.groupdict()
    if parts.get("year") is not None:
        year = int(parts["year"])
    elif parts.get("short_year") is not None:
        year = _expand_year(int(parts["short_year"]))
    else:
        raise ValueError(f"Date format '{date_format}' has no year")
    if parts.get("month") is None or parts.get("day") is None:
        raise ValueError(f"Date format '{date_format}' needs a month and a day")

    return date(year, int(parts["month"]), int(parts["day"]))


def parse_flexible_date(text: Optional[str]) -> Optional[date]:
    """
    Parse a date in one of the common Italian and ISO layouts.

    Accepts yyyy-MM-dd (optionally with a time part), dd/MM/yyyy,
    dd/MM/yy and yyyyMMdd; '-' and '.' also work as separators.
    """
    if text is None or not text.strip():
        return None
    trimmed = text.strip()

    iso = _ISO_DATE.match(trimmed)
    if iso:
        return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))

    italian = _ITALIAN_DATE.match(trimmed)
    if italian:
        return date(int(italian.group(3)), int(italian.group(2)), int(italian.group(1)))

    italian_short = _ITALIAN_SHORT_DATE.match(trimmed)
    if italian_short:
        year = _expand_year(int(italian_short.group(3)))
        return date(year, int(italian_short.group(2)), int(italian_short.group(1)))

    compact = _COMPACT_DATE.match(trimmed)
    if compact:
        return date(int(compact.group(1)), int(compact.group(2)), int(compact.group(3)))

    raise ValueError(f"Unrecognized date '{text}'")


def parse_date(text: Optional[str], date_format: Optional[str] = None) -> Optional[date]:
    """Parse with ``date_format`` when given, otherwise flexibly."""
    if text is None or not text.strip():
        return None
    if date_format:
        return parse_date_with_format(text, date_format)
    return parse_flexible_date(text)


def parse_decimal(text: Optional[str], locale: NumberLocale = NumberLocale.AUTO) -> Optional[Decimal]:
    """
    Parse a monetary or quantity value.

    Args:
        text: Raw text such as "28,37", "1.234,56", "EUR 12.50"
        locale: Which separator is the decimal separator

    Returns:
        Decimal value, or None when the text is empty

    Raises:
        ValueError: If the text is not a number under the locale
    """
    if text is None:
        return None
    cleaned = _CURRENCY_SUFFIX.sub("", _CURRENCY_PREFIX.sub("", text.strip())).strip()
    if not cleaned:
        return None
    if not _NUMBER_SHAPE.match(cleaned):
        raise ValueError(f"'{text}' is not a number")

    negative = cleaned.startswith("-")
    digits = cleaned.lstrip("-")

    if locale is NumberLocale.IT:
        normalized = digits.replace(".", "").replace(",", ".")
    elif locale is NumberLocale.EN:
        normalized = digits.replace(",", "")
    else:
        normalized = _normalize_auto(digits)

    if normalized.count(".") > 1 or normalized.startswith(".") or normalized.endswith("."):
        raise ValueError(f"'{text}' is not a number")
    try:
        value = Decimal(normalized)
    except InvalidOperation:
        raise ValueError(f"'{text}' is not a number")
    return -value if negative else value


def _normalize_auto(digits: str) -> str:
    has_comma = "," in digits
    has_dot = "." in digits
    if has_comma and has_dot:
        if digits.rfind(",") > digits.rfind("."):
            return digits.replace(".", "").replace(",", ".")
        return digits.replace(",", "")
    if has_comma:
        if digits.count(",") > 1:
            return digits.replace(",", "")
        return digits.replace(",", ".")
    if has_dot and digits.count(".") > 1:
        return digits.replace(".", "")
    return digits


def parse_odometer(text: Optional[str]) -> Optional[int]:
    """Parse a kilometre reading such as "22947", "22.947" or "22 947 km"."""
    if text is None or not text.strip():
        return None
    match = _ODOMETER.match(text.strip())
    if not match:
        raise ValueError(f"'{text}' is not an odometer reading")
    return int(re.sub(r"\D", "", match.group(1)))


def apply_transform(value: Optional[str], transform: Optional[Transform]) -> Optional[str]:
    """Apply an optional string transform; idempotent for every transform."""
    if value is None or transform is None:
        return value
    if transform is Transform.UPPERCASE:
        return value.upper()
    if transform is Transform.LOWERCASE:
        return value.lower()
    return value.strip()


def normalize_plate(plate: Optional[str]) -> Optional[str]:
    """Upper-case a plate and strip whitespace and hyphens."""
    if plate is None:
        return None
    normalized = re.sub(r"[\s\-]", "", plate.strip().upper())
    return normalized or None


@dataclass(frozen=True)
class FuelTypeCatalog:
    """
    Immutable alias table mapping supplier fuel descriptions to macro fuel types.

    Aliases are lower case with single spaces; canonical names are upper
    case with underscores.
    """
    aliases: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "aliases", MappingProxyType(dict(self.aliases)))
        # containment fallback prefers the most specific alias
        ordered = tuple(sorted(self.aliases, key=lambda alias: (-len(alias), alias)))
        object.__setattr__(self, "_containment_order", ordered)
        object.__setattr__(self, "_canonical_names", frozenset(self.aliases.values()))

    @property
    def canonical_names(self) -> frozenset:
        return self._canonical_names

    def canonicalize(self, raw: Optional[str]) -> Optional[str]:
        """
        Map a raw fuel description to its macro fuel type.

        Tries a direct alias lookup, then an already-canonical name, then
        the longest alias contained in the text; falls back to the
        upper-cased raw value.
        """
        if raw is None or not raw.strip():
            return None
        normalized = re.sub(r"[\s_\-]+", " ", raw.strip().lower())

        if normalized in self.aliases:
            return self.aliases[normalized]

        as_canonical = normalized.replace(" ", "_").upper()
        if as_canonical in self._canonical_names:
            return as_canonical

        for alias in self._containment_order:
            if alias in normalized:
                return self.aliases[alias]

        return raw.strip().upper()

    def with_aliases(self, extra: Mapping[str, str]) -> "FuelTypeCatalog":
        """Return a new catalog with ``extra`` aliases merged in."""
        merged = dict(self.aliases)
        merged.update({re.sub(r"\s+", " ", k.strip().lower()): v.strip().upper() for k, v in extra.items()})
        return FuelTypeCatalog(aliases=merged)


DEFAULT_FUEL_TYPE_CATALOG = FuelTypeCatalog(aliases={
    # Diesel
    "diesel": "DIESEL",
    "gasolio": "DIESEL",
    "gasolio autotrazion": "DIESEL",
    "gasolio autotrazione": "DIESEL",
    "gasolio auto": "DIESEL",
    "nafta": "DIESEL",
    "gas oil": "DIESEL",
    # Petrol
    "benzina": "BENZINA",
    "petrol": "BENZINA",
    "gasoline": "BENZINA",
    "unleaded": "BENZINA",
    "senza piombo": "BENZINA",
    "super benzina": "BENZINA",
    "super senza pb": "BENZINA",
    "super 95": "BENZINA",
    "super 98": "BENZINA",
    "senza pb": "BENZINA",
    "benzina super": "BENZINA",
    "benzina verde": "BENZINA",
    # LPG
    "gpl": "GPL",
    "lpg": "GPL",
    "gas liquido": "GPL",
    # CNG
    "metano": "METANO",
    "cng": "METANO",
    "gas naturale": "METANO",
    "natural gas": "METANO",
    "gas metano": "METANO",
    # Electric
    "elettrico": "ELETTRICO",
    "elettrica": "ELETTRICO",
    "electric": "ELETTRICO",
    "elettr": "ELETTRICO",
    # Hybrids
    "ibrido benzina": "IBRIDO_BENZINA",
    "ibrida benzina": "IBRIDO_BENZINA",
    "hybrid petrol": "IBRIDO_BENZINA",
    "ibrido diesel": "IBRIDO_DIESEL",
    "ibrida diesel": "IBRIDO_DIESEL",
    "hybrid diesel": "IBRIDO_DIESEL",
    # Bifuel
    "benzina/gpl": "BIFUEL_BENZINA_GPL",
    "benzina gpl": "BIFUEL_BENZINA_GPL",
    "benzina/metano": "BIFUEL_BENZINA_METANO",
    "benzina metano": "BIFUEL_BENZINA_METANO",
    # Hydrogen
    "idrogeno": "IDROGENO",
    "hydrogen": "IDROGENO",
    # Additives, kept for line classification
    "adblue": "ADBLUE",
    "ad blue": "ADBLUE",
})
