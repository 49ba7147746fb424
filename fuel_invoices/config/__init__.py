"""
Configuration management for the fuel invoice engine.

Provides file-backed storage of supplier templates and default matching
tolerances, template validation and preset reference data.
"""

from .config_manager import ConfigManager, ConfigurationError, get_config_manager
from .validation import TemplateConfigValidator, ValidationResult
from .presets import (
    DEFAULT_FIELD_PRESETS, DEFAULT_MATCHING_TOLERANCES, DEFAULT_REGEX_PATTERNS,
    FieldRegexPreset, RegexPatternInfo, SupplierTemplatePresets, resolve_template_presets
)

__all__ = [
    "ConfigManager",
    "ConfigurationError",
    "get_config_manager",
    "TemplateConfigValidator",
    "ValidationResult",
    "DEFAULT_FIELD_PRESETS",
    "DEFAULT_MATCHING_TOLERANCES",
    "DEFAULT_REGEX_PATTERNS",
    "FieldRegexPreset",
    "RegexPatternInfo",
    "SupplierTemplatePresets",
    "resolve_template_presets"
]
