"""
Fuel Invoice Extraction and Matching

Reads supplier fuel invoices (Italian FatturaPA XML) through declarative
per-supplier templates and reconciles the extracted lines against known
fleet records.

This package provides:
- Core data models for templates, extracted lines and match decisions
- The template extraction engine and FatturaPA auto-detection
- Weighted, tolerance-based matching and decision policy
- Template storage, validation and supplier presets
- Tabular exports for review
"""

from .models import (
    # Template configuration
    TemplateConfig,
    FieldExtractionRule,
    RegexPattern,
    LineFilter,
    SupplierDetection,
    InvoiceMetadataPaths,
    ExtractionOptions,
    SupplierTemplate,

    # Extraction results
    ExtractedLine,
    ExtractionResult,
    InvoiceMetadata,

    # Matching
    MatchingTolerances,
    MatchingWeights,
    ReferenceEntity,
    DimensionScore,
    MatchScore,
    MatchDecision,

    # Enums
    ExtractionMethod,
    Transform,
    FilterAction,
    NumberLocale,
    MatchStatus,

    # Exceptions
    FuelInvoiceError,
    ConfigurationError,
    ExtractionError,
    MatchingError,
    ValidationError
)
from .extraction import extract
from .matching import match_all, score

__version__ = "1.0.0"

__all__ = [
    # Template configuration
    "TemplateConfig",
    "FieldExtractionRule",
    "RegexPattern",
    "LineFilter",
    "SupplierDetection",
    "InvoiceMetadataPaths",
    "ExtractionOptions",
    "SupplierTemplate",

    # Extraction results
    "ExtractedLine",
    "ExtractionResult",
    "InvoiceMetadata",

    # Matching
    "MatchingTolerances",
    "MatchingWeights",
    "ReferenceEntity",
    "DimensionScore",
    "MatchScore",
    "MatchDecision",

    # Enums
    "ExtractionMethod",
    "Transform",
    "FilterAction",
    "NumberLocale",
    "MatchStatus",

    # Exceptions
    "FuelInvoiceError",
    "ConfigurationError",
    "ExtractionError",
    "MatchingError",
    "ValidationError",

    # Engines
    "extract",
    "match_all",
    "score"
]
