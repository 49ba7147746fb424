"""
Core data models for fuel invoice extraction and matching.

This module defines the fundamental data structures used throughout the
extraction and reconciliation process: supplier template configuration,
extracted invoice lines, reference entities, match scores and decisions.

Configuration types (``TemplateConfig`` and friends, ``MatchingTolerances``)
read and write the persisted camelCase JSON form shared with the storage
layer. Result types serialize to snake_case dictionaries.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


# Semantic field names a template may extract, in canonical order
FIELD_NAMES: Tuple[str, ...] = (
    "licensePlate",
    "date",
    "fuelType",
    "quantity",
    "amount",
    "cardNumber",
    "odometerKm",
    "description",
    "unitPrice",
)

DECIMAL_FIELDS = frozenset({"quantity", "amount", "unitPrice"})
INTEGER_FIELDS = frozenset({"odometerKm"})
DATE_FIELDS = frozenset({"date"})

# camelCase field name -> ExtractedLine attribute
LINE_ATTRIBUTES: Dict[str, str] = {
    "licensePlate": "license_plate",
    "date": "date",
    "fuelType": "fuel_type",
    "quantity": "quantity",
    "amount": "amount",
    "cardNumber": "card_number",
    "odometerKm": "odometer_km",
    "description": "description",
    "unitPrice": "unit_price",
}


class ExtractionMethod(Enum):
    """How a field value is extracted from a line node."""
    XPATH = "XPATH"
    REGEX = "REGEX"
    XPATH_REGEX = "XPATH_REGEX"
    STATIC = "STATIC"


class Transform(Enum):
    """String transforms applied after extraction."""
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    TRIM = "trim"


class FilterAction(Enum):
    """Line filter actions."""
    INCLUDE = "include"
    EXCLUDE = "exclude"


class NumberLocale(Enum):
    """Decimal separator conventions for numeric fields."""
    AUTO = "auto"
    IT = "it"
    EN = "en"


class MatchStatus(Enum):
    """Outcome of reconciling an extracted line against reference data."""
    AUTO_MATCHED = "auto_matched"
    SUGGESTED = "suggested"
    UNMATCHED = "unmatched"


# Custom exceptions for fuel invoice processing
class FuelInvoiceError(Exception):
    """Base exception for fuel invoice operations."""
    pass


class ConfigurationError(FuelInvoiceError):
    """Raised when configuration is invalid or missing."""
    pass


class ExtractionError(FuelInvoiceError):
    """Raised when an extraction request cannot be served."""
    pass


class MatchingError(FuelInvoiceError):
    """Raised when the matching API is used incorrectly."""
    pass


class ValidationError(FuelInvoiceError):
    """Raised when data validation fails."""
    pass


def _enum_value(enum_cls, raw: Any, what: str):
    if raw is None or isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ConfigurationError(f"Unknown {what} '{raw}' (expected one of: {allowed})")


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _decimal_from(value: Any, name: str) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} is not a number: {value!r}")


def _as_utc(stamp: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if stamp.tzinfo is None:
        return stamp.replace(tzinfo=timezone.utc)
    return stamp.astimezone(timezone.utc)


@dataclass(frozen=True)
class RegexPattern:
    """One pattern of an ordered ``regexPatterns`` list."""
    regex: str
    regex_group: Optional[int] = None
    transform: Optional[Transform] = None
    label: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "transform", _enum_value(Transform, self.transform, "transform"))

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "label": self.label,
            "regex": self.regex,
            "regexGroup": self.regex_group,
            "transform": self.transform.value if self.transform else None,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegexPattern":
        if not isinstance(data, dict) or not data.get("regex"):
            raise ConfigurationError("Regex pattern entries require a 'regex'")
        return cls(
            regex=data["regex"],
            regex_group=data.get("regexGroup"),
            transform=data.get("transform"),
            label=data.get("label"),
        )


@dataclass(frozen=True)
class FieldExtractionRule:
    """
    Defines how a single field is extracted from a line node.

    The ``method`` tag selects the evaluation path; the remaining
    attributes are read only by the methods that need them.
    """
    method: ExtractionMethod
    xpath: Optional[str] = None
    regex: Optional[str] = None
    regex_group: Optional[int] = None
    regex_patterns: Tuple[RegexPattern, ...] = ()
    date_format: Optional[str] = None
    static_value: Optional[str] = None
    transform: Optional[Transform] = None

    def __post_init__(self):
        object.__setattr__(self, "method", _enum_value(ExtractionMethod, self.method, "extraction method"))
        object.__setattr__(self, "transform", _enum_value(Transform, self.transform, "transform"))
        object.__setattr__(self, "regex_patterns", tuple(self.regex_patterns or ()))
        if self.method is None:
            raise ConfigurationError("Field extraction rules require a method")

    def to_dict(self) -> Dict[str, Any]:
        data = _drop_none({
            "method": self.method.value,
            "xpath": self.xpath,
            "regex": self.regex,
            "regexGroup": self.regex_group,
            "dateFormat": self.date_format,
            "staticValue": self.static_value,
            "transform": self.transform.value if self.transform else None,
        })
        if self.regex_patterns:
            data["regexPatterns"] = [p.to_dict() for p in self.regex_patterns]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldExtractionRule":
        if not isinstance(data, dict):
            raise ConfigurationError("Field extraction rule must be an object")
        return cls(
            method=data.get("method"),
            xpath=data.get("xpath"),
            regex=data.get("regex"),
            regex_group=data.get("regexGroup"),
            regex_patterns=tuple(RegexPattern.from_dict(p) for p in data.get("regexPatterns") or ()),
            date_format=data.get("dateFormat"),
            static_value=data.get("staticValue"),
            transform=data.get("transform"),
        )


@dataclass(frozen=True)
class LineFilter:
    """Include/exclude predicate evaluated on an extracted line."""
    action: FilterAction
    field_path: Optional[str] = None
    regex: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "action", _enum_value(FilterAction, self.action, "filter action"))
        if self.action is None:
            raise ConfigurationError("Line filters require an action")

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "fieldPath": self.field_path,
            "regex": self.regex,
            "action": self.action.value,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LineFilter":
        return cls(
            action=data.get("action"),
            field_path=data.get("fieldPath"),
            regex=data.get("regex"),
        )


@dataclass(frozen=True)
class SupplierDetection:
    """Paths used to cross-check the supplier of a document."""
    vat_number_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({"vatNumberPath": self.vat_number_path})


@dataclass(frozen=True)
class InvoiceMetadataPaths:
    """Paths to invoice-level fields, resolved against the document root."""
    invoice_number_path: Optional[str] = None
    invoice_date_path: Optional[str] = None
    invoice_date_format: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "invoiceNumberPath": self.invoice_number_path,
            "invoiceDatePath": self.invoice_date_path,
            "invoiceDateFormat": self.invoice_date_format,
        })


@dataclass(frozen=True)
class TemplateConfig:
    """
    Immutable per-supplier extraction configuration.

    ``fields`` maps recognized field names to their extraction rule and
    keeps declaration order; ``line_filters`` is evaluated in order.
    """
    line_xpath: str
    fields: Mapping[str, FieldExtractionRule] = field(default_factory=dict)
    line_filters: Tuple[LineFilter, ...] = ()
    supplier_detection: Optional[SupplierDetection] = None
    invoice_metadata: Optional[InvoiceMetadataPaths] = None
    version: int = 1
    namespace: Optional[str] = None

    def __post_init__(self):
        unknown = [name for name in self.fields if name not in FIELD_NAMES]
        if unknown:
            raise ConfigurationError(f"Unknown template field(s): {', '.join(unknown)}")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))
        object.__setattr__(self, "line_filters", tuple(self.line_filters or ()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted JSON form."""
        data: Dict[str, Any] = {
            "version": self.version,
            "lineXpath": self.line_xpath,
            "fields": {name: rule.to_dict() for name, rule in self.fields.items()},
        }
        if self.namespace:
            data["namespace"] = self.namespace
        if self.line_filters:
            data["lineFilters"] = [f.to_dict() for f in self.line_filters]
        if self.supplier_detection:
            data["supplierDetection"] = self.supplier_detection.to_dict()
        if self.invoice_metadata:
            data["invoiceMetadata"] = self.invoice_metadata.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemplateConfig":
        """Create TemplateConfig from its persisted JSON form."""
        if not isinstance(data, dict):
            raise ConfigurationError("Template configuration must be an object")
        if not data.get("lineXpath"):
            raise ConfigurationError("Template configuration requires 'lineXpath'")

        fields = {}
        for name, rule in (data.get("fields") or {}).items():
            if rule is None:
                continue
            fields[name] = FieldExtractionRule.from_dict(rule)

        detection = data.get("supplierDetection")
        metadata = data.get("invoiceMetadata")
        return cls(
            line_xpath=data["lineXpath"],
            fields=fields,
            line_filters=tuple(LineFilter.from_dict(f) for f in data.get("lineFilters") or ()),
            supplier_detection=SupplierDetection(
                vat_number_path=detection.get("vatNumberPath")
            ) if detection else None,
            invoice_metadata=InvoiceMetadataPaths(
                invoice_number_path=metadata.get("invoiceNumberPath"),
                invoice_date_path=metadata.get("invoiceDatePath"),
                invoice_date_format=metadata.get("invoiceDateFormat"),
            ) if metadata else None,
            version=data.get("version", 1),
            namespace=data.get("namespace"),
        )


@dataclass(frozen=True)
class ExtractionOptions:
    """Caller-supplied settings for one extraction call."""
    number_locale: NumberLocale = NumberLocale.AUTO
    include_raw_xml: bool = False

    def __post_init__(self):
        object.__setattr__(self, "number_locale",
                           _enum_value(NumberLocale, self.number_locale, "number locale"))


@dataclass
class ExtractedLine:
    """
    One row per located line-item node.

    ``line_number`` is the 1-based position before filtering and is never
    renumbered.
    """
    line_number: int
    license_plate: Optional[str] = None
    date: Optional[date] = None
    fuel_type: Optional[str] = None
    quantity: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    card_number: Optional[str] = None
    odometer_km: Optional[int] = None
    description: Optional[str] = None
    unit_price: Optional[Decimal] = None
    raw_xml: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def get_field(self, field_name: str) -> Any:
        """Value of a template field name, or None for unknown names."""
        attribute = LINE_ATTRIBUTES.get(field_name)
        return getattr(self, attribute) if attribute else None

    def set_field(self, field_name: str, value: Any):
        setattr(self, LINE_ATTRIBUTES[field_name], value)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'line_number': self.line_number,
            'license_plate': self.license_plate,
            'date': self.date.isoformat() if self.date else None,
            'fuel_type': self.fuel_type,
            'quantity': float(self.quantity) if self.quantity is not None else None,
            'amount': float(self.amount) if self.amount is not None else None,
            'card_number': self.card_number,
            'odometer_km': self.odometer_km,
            'description': self.description,
            'unit_price': float(self.unit_price) if self.unit_price is not None else None,
            'raw_xml': self.raw_xml,
            'errors': list(self.errors)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExtractedLine':
        """Create ExtractedLine from dictionary."""

        raw_date = data.get('date')
        if isinstance(raw_date, str):
            raw_date = date.fromisoformat(raw_date[:10])

        return cls(
            line_number=data['line_number'],
            license_plate=data.get('license_plate'),
            date=raw_date,
            fuel_type=data.get('fuel_type'),
            quantity=_decimal_from(data.get('quantity'), 'quantity'),
            amount=_decimal_from(data.get('amount'), 'amount'),
            card_number=data.get('card_number'),
            odometer_km=data.get('odometer_km'),
            description=data.get('description'),
            unit_price=_decimal_from(data.get('unit_price'), 'unit_price'),
            raw_xml=data.get('raw_xml'),
            errors=list(data.get('errors') or [])
        )


@dataclass
class InvoiceMetadata:
    """Invoice-level fields resolved against the document root."""
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    invoice_date_raw: Optional[str] = None
    supplier_vat_number: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'invoice_number': self.invoice_number,
            'invoice_date': self.invoice_date.isoformat() if self.invoice_date else None,
            'invoice_date_raw': self.invoice_date_raw,
            'supplier_vat_number': self.supplier_vat_number
        }


@dataclass
class ExtractionResult:
    """
    Complete result of a template extraction.

    ``lines`` holds the lines surviving the filters; ``total_lines`` counts
    every located line node.
    """
    success: bool
    lines: List[ExtractedLine]
    total_lines: int
    filtered_lines: int
    errors: List[str] = field(default_factory=list)
    invoice_metadata: InvoiceMetadata = field(default_factory=InvoiceMetadata)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'success': self.success,
            'lines': [line.to_dict() for line in self.lines],
            'total_lines': self.total_lines,
            'filtered_lines': self.filtered_lines,
            'errors': list(self.errors),
            'invoice_metadata': self.invoice_metadata.to_dict()
        }


@dataclass(frozen=True)
class MatchingWeights:
    """Relative weights of the scoring dimensions (need not sum to 1)."""
    license_plate: float = 0.35
    date: float = 0.25
    quantity: float = 0.2
    amount: float = 0.15
    fuel_type: float = 0.05

    def to_dict(self) -> Dict[str, float]:
        return {
            "licensePlate": self.license_plate,
            "date": self.date,
            "quantity": self.quantity,
            "amount": self.amount,
            "fuelType": self.fuel_type,
        }


@dataclass(frozen=True)
class MatchingTolerances:
    """Configuration settings for the matching engine."""
    date_tolerance_days: int = 2
    quantity_tolerance_percent: float = 5.0
    amount_tolerance_percent: float = 5.0
    auto_match_threshold: float = 0.85  # 0.0 to 1.0
    weights: MatchingWeights = field(default_factory=MatchingWeights)

    def __post_init__(self):
        if self.date_tolerance_days < 0:
            raise ConfigurationError("dateToleranceDays must not be negative")
        if self.quantity_tolerance_percent < 0 or self.amount_tolerance_percent < 0:
            raise ConfigurationError("Tolerance percentages must not be negative")
        if not 0.0 <= self.auto_match_threshold <= 1.0:
            raise ConfigurationError("autoMatchThreshold must be between 0 and 1")
        if any(w < 0 for w in self.weights.to_dict().values()):
            raise ConfigurationError("Matching weights must not be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted JSON form."""
        return {
            "dateToleranceDays": self.date_tolerance_days,
            "quantityTolerancePercent": self.quantity_tolerance_percent,
            "amountTolerancePercent": self.amount_tolerance_percent,
            "autoMatchThreshold": self.auto_match_threshold,
            "weights": self.weights.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MatchingTolerances":
        """Create MatchingTolerances from its persisted JSON form."""
        defaults = cls()
        weights = data.get("weights") or {}
        default_weights = defaults.weights
        try:
            return cls(
                date_tolerance_days=int(data.get("dateToleranceDays", defaults.date_tolerance_days)),
                quantity_tolerance_percent=float(
                    data.get("quantityTolerancePercent", defaults.quantity_tolerance_percent)),
                amount_tolerance_percent=float(
                    data.get("amountTolerancePercent", defaults.amount_tolerance_percent)),
                auto_match_threshold=float(data.get("autoMatchThreshold", defaults.auto_match_threshold)),
                weights=MatchingWeights(
                    license_plate=float(weights.get("licensePlate", default_weights.license_plate)),
                    date=float(weights.get("date", default_weights.date)),
                    quantity=float(weights.get("quantity", default_weights.quantity)),
                    amount=float(weights.get("amount", default_weights.amount)),
                    fuel_type=float(weights.get("fuelType", default_weights.fuel_type)),
                ),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid matching tolerances: {e}")


@dataclass(frozen=True)
class ReferenceEntity:
    """
    A known tenant record an extracted line can be reconciled against.

    Typically a fuel record joined with its vehicle plate; any attribute
    may be None when the reference side does not carry it.
    """
    entity_id: str
    entity_type: str = "fuel_record"
    license_plate: Optional[str] = None
    date: Optional[date] = None
    quantity: Optional[Decimal] = None
    amount: Optional[Decimal] = None
    fuel_type: Optional[str] = None
    card_number: Optional[str] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def recency(self) -> Optional[datetime]:
        """Most recent of ``last_used_at`` / ``created_at``, in UTC."""
        stamps = [_as_utc(s) for s in (self.last_used_at, self.created_at) if s is not None]
        return max(stamps) if stamps else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_id': self.entity_id,
            'entity_type': self.entity_type,
            'license_plate': self.license_plate,
            'date': self.date.isoformat() if self.date else None,
            'quantity': float(self.quantity) if self.quantity is not None else None,
            'amount': float(self.amount) if self.amount is not None else None,
            'fuel_type': self.fuel_type,
            'card_number': self.card_number,
            'last_used_at': self.last_used_at.isoformat() if self.last_used_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'attributes': dict(self.attributes)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReferenceEntity':
        """Create ReferenceEntity from dictionary."""
        def _datetime(value):
            return datetime.fromisoformat(value) if isinstance(value, str) else value

        raw_date = data.get('date')
        if isinstance(raw_date, str):
            raw_date = date.fromisoformat(raw_date[:10])

        return cls(
            entity_id=str(data['entity_id']),
            entity_type=data.get('entity_type', 'fuel_record'),
            license_plate=data.get('license_plate'),
            date=raw_date,
            quantity=_decimal_from(data.get('quantity'), 'quantity'),
            amount=_decimal_from(data.get('amount'), 'amount'),
            fuel_type=data.get('fuel_type'),
            card_number=data.get('card_number'),
            last_used_at=_datetime(data.get('last_used_at')),
            created_at=_datetime(data.get('created_at')),
            attributes=dict(data.get('attributes') or {})
        )


@dataclass
class DimensionScore:
    """Score of one comparison dimension."""
    dimension: str
    score: Optional[float]  # None when either side is missing
    weight: float
    detail: str
    expected_value: Any = None
    actual_value: Any = None

    @property
    def comparable(self) -> bool:
        return self.score is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dimension': self.dimension,
            'score': self.score,
            'weight': self.weight,
            'comparable': self.comparable,
            'detail': self.detail,
            'expected_value': None if self.expected_value is None else str(self.expected_value),
            'actual_value': None if self.actual_value is None else str(self.actual_value)
        }


@dataclass
class MatchScore:
    """Composite score of one line/candidate pairing."""
    entity_id: str
    total_score: float
    dimensions: List[DimensionScore]
    recency: Optional[datetime] = None

    @property
    def compared_dimensions(self) -> List[str]:
        return [d.dimension for d in self.dimensions if d.comparable]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_id': self.entity_id,
            'total_score': self.total_score,
            'compared_dimensions': self.compared_dimensions,
            'dimensions': [d.to_dict() for d in self.dimensions]
        }


@dataclass
class MatchDecision:
    """Outcome for one extracted line against the full candidate set."""
    line_number: int
    status: MatchStatus
    matched_entity_id: Optional[str]
    score: float
    candidates: List[MatchScore]
    candidate_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'line_number': self.line_number,
            'status': self.status.value,
            'matched_entity_id': self.matched_entity_id,
            'score': self.score,
            'candidates': [c.to_dict() for c in self.candidates],
            'candidate_count': self.candidate_count
        }


@dataclass
class SupplierTemplate:
    """A stored supplier template with its matching configuration."""
    template_id: str
    supplier_name: str
    vat_number: Optional[str]
    name: str
    template_config: TemplateConfig
    description: Optional[str] = None
    matching_config: Optional[MatchingTolerances] = None
    is_active: bool = True
    created_at: Optional[float] = None
    updated_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            'template_id': self.template_id,
            'supplier_name': self.supplier_name,
            'vat_number': self.vat_number,
            'name': self.name,
            'description': self.description,
            'template_config': self.template_config.to_dict(),
            'matching_config': self.matching_config.to_dict() if self.matching_config else None,
            'is_active': self.is_active,
            'created_at': self.created_at,
            'updated_at': self.updated_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SupplierTemplate':
        """Create SupplierTemplate from dictionary."""
        matching = data.get('matching_config')
        return cls(
            template_id=data['template_id'],
            supplier_name=data['supplier_name'],
            vat_number=data.get('vat_number'),
            name=data['name'],
            description=data.get('description'),
            template_config=TemplateConfig.from_dict(data['template_config']),
            matching_config=MatchingTolerances.from_dict(matching) if matching else None,
            is_active=data.get('is_active', True),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at')
        )
