"""
Reference data for template authoring.

Holds the named regex catalog shown in the template editor, the default
matching tolerances, reusable per-field regex presets and the ready-made
templates of the fuel card issuers we receive FatturaPA invoices from.
"""

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from fuel_invoices.models import (
    ExtractionMethod, MatchingTolerances, RegexPattern, SupplierTemplate, TemplateConfig
)

import logging
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegexPatternInfo:
    """A named, documented pattern offered to template authors."""
    label: str
    pattern: str
    description: str
    examples: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'label': self.label,
            'pattern': self.pattern,
            'description': self.description,
            'examples': list(self.examples)
        }


DEFAULT_REGEX_PATTERNS: Mapping[str, RegexPatternInfo] = MappingProxyType({
    # Dates
    "dateISO": RegexPatternInfo(
        label="ISO date (yyyy-MM-dd)",
        pattern=r"(\d{4}-\d{2}-\d{2})",
        description="ISO date: 2024-01-15",
        examples=("2024-01-15", "2025-12-31"),
    ),
    "dateItalian": RegexPatternInfo(
        label="Italian date (dd/MM/yyyy)",
        pattern=r"(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{4})",
        description="Italian date: 15/01/2024, 15-01-2024, 15.01.2024",
        examples=("15/01/2024", "1-3-2025", "31.12.2024"),
    ),
    "dateItalianShort": RegexPatternInfo(
        label="Short Italian date (dd/MM/yy)",
        pattern=r"(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2})",
        description="Short Italian date: 15/01/24",
        examples=("15/01/24", "1-3-25"),
    ),
    "dateCompact": RegexPatternInfo(
        label="Compact date (yyyyMMdd)",
        pattern=r"(\d{8})",
        description="Date without separators: 20240115",
        examples=("20240115", "20251231"),
    ),
    # Numbers
    "amount": RegexPatternInfo(
        label="Amount (EUR)",
        pattern=r"([\d.,]+)",
        description="Number with separators: 1.234,56 or 1234.56",
        examples=("1.234,56", "1234.56", "99,99"),
    ),
    "amountWithCurrency": RegexPatternInfo(
        label="Amount with currency",
        pattern=r"(?:EUR|€)?\s*([\d.,]+)",
        description="Amount with an optional EUR prefix or euro sign",
        examples=("EUR 1.234,56", "1234.56"),
    ),
    "integerNumber": RegexPatternInfo(
        label="Integer",
        pattern=r"(\d+)",
        description="Digits only",
        examples=("12345", "0", "999999"),
    ),
    "decimalNumber": RegexPatternInfo(
        label="Decimal number",
        pattern=r"(\d+[.,]\d+)",
        description="Number with decimals (point or comma)",
        examples=("12.50", "1234,56", "0.5"),
    ),
    # Italian fiscal identifiers
    "codiceFiscale": RegexPatternInfo(
        label="Codice Fiscale",
        pattern=r"([A-Z]{6}\d{2}[A-Z]\d{2}[A-Z]\d{3}[A-Z])",
        description="Italian fiscal code (16 alphanumeric characters)",
        examples=("RSSMRA85M01H501Z",),
    ),
    "partitaIVA": RegexPatternInfo(
        label="Partita IVA",
        pattern=r"(\d{11})",
        description="Italian VAT number (11 digits)",
        examples=("01234567890", "08510870960"),
    ),
    "partitaIVAWithPrefix": RegexPatternInfo(
        label="Partita IVA with IT prefix",
        pattern=r"(?:IT)?(\d{11})",
        description="Italian VAT number with an optional IT prefix",
        examples=("IT01234567890", "01234567890"),
    ),
    # Vehicle identifiers
    "targaItaliana": RegexPatternInfo(
        label="Italian plate",
        pattern=r"([A-Z]{2}\s?\d{3}\s?[A-Z]{2})",
        description="Current Italian plate format: AB123CD or AB 123 CD",
        examples=("GA727GS", "AB 123 CD", "FH432NB"),
    ),
    "targaItalianaDaDescrizione": RegexPatternInfo(
        label="Plate in free text",
        pattern=r"(?:targa|plate|veicolo)[:\s]*([A-Za-z]{2}\s?\d{3}\s?[A-Za-z]{2})",
        description="Plate introduced by 'targa:', 'plate:' or 'veicolo:'",
        examples=("targa: GA727GS", "veicolo AB123CD"),
    ),
    "targaCardNumber": RegexPatternInfo(
        label="Plate from fuel card number",
        pattern=r"\d+-([A-Z]{2}\d{3}[A-Z]{2})",
        description="Plate following the card number, e.g. 7033167200254244329-GA727GS",
        examples=("7033167200254244329-GA727GS",),
    ),
    "telaio": RegexPatternInfo(
        label="Chassis number (VIN)",
        pattern=r"([A-HJ-NPR-Z0-9]{17})",
        description="Vehicle Identification Number: 17 characters, no I, O or Q",
        examples=("WVWZZZ3CZWE123456", "1HGBH41JXMN109186"),
    ),
})

DEFAULT_MATCHING_TOLERANCES = MatchingTolerances()


@dataclass(frozen=True)
class FieldRegexPreset:
    """
    Reusable patterns for one field, global or tied to a supplier VAT.

    Lower ``priority`` values are tried first.
    """
    field_name: str
    name: str
    patterns: Tuple[RegexPattern, ...]
    supplier_vat: Optional[str] = None
    priority: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field_name': self.field_name,
            'name': self.name,
            'patterns': [p.to_dict() for p in self.patterns],
            'supplier_vat': self.supplier_vat,
            'priority': self.priority
        }


EDENRED_VAT = "01696270212"
ESSO_VAT = "08510870960"
Q8_VAT = "00891951006"

DEFAULT_FIELD_PRESETS: Tuple[FieldRegexPreset, ...] = (
    FieldRegexPreset(
        field_name="licensePlate",
        name="Standard Italian plate",
        patterns=(RegexPattern(label="Plate AA000AA", regex=r"([A-Z]{2}\d{3}[A-Z]{2})", regex_group=1),),
    ),
    FieldRegexPreset(
        field_name="licensePlate",
        name="Fleet alias JOLLY (Edenred)",
        patterns=(RegexPattern(label="JOLLY N", regex=r"JOLLY\s*(\d+)", regex_group=1),),
        supplier_vat=EDENRED_VAT,
        priority=10,
    ),
    FieldRegexPreset(
        field_name="licensePlate",
        name="Plate from card-plate (Esso)",
        patterns=(RegexPattern(label="Card-plate", regex=r"\d+-([A-Z]{2}\d{3}[A-Z]{2})", regex_group=1),),
        supplier_vat=ESSO_VAT,
    ),
    FieldRegexPreset(
        field_name="cardNumber",
        name="Numeric card number (Esso)",
        patterns=(RegexPattern(label="con carta N", regex=r"con carta (\d+)", regex_group=1),),
        supplier_vat=ESSO_VAT,
    ),
    FieldRegexPreset(
        field_name="date",
        name="Italian date (dd/MM/yyyy)",
        patterns=(RegexPattern(label="dd/MM/yyyy", regex=r"(\d{1,2}[/\-.](\d{1,2})[/\-.](\d{2,4}))", regex_group=1),),
    ),
    FieldRegexPreset(
        field_name="date",
        name="ISO date (yyyy-MM-dd)",
        patterns=(RegexPattern(label="yyyy-MM-dd", regex=r"(\d{4}-\d{2}-\d{2})", regex_group=1),),
    ),
    FieldRegexPreset(
        field_name="amount",
        name="Numeric amount",
        patterns=(RegexPattern(label="Amount", regex=r"([\d.,]+)", regex_group=1),),
    ),
    FieldRegexPreset(
        field_name="vin",
        name="17-character VIN",
        patterns=(RegexPattern(label="VIN", regex=r"([A-HJ-NPR-Z0-9]{17})", regex_group=1),),
    ),
)


def presets_for_field(field_name: str, supplier_vat: Optional[str] = None,
                      presets: Iterable[FieldRegexPreset] = DEFAULT_FIELD_PRESETS) -> List[RegexPattern]:
    """
    Ordered patterns for a field: supplier presets first, then globals.

    Within each group presets are ordered by priority; declaration order
    breaks ties.
    """
    matching = [p for p in presets if p.field_name == field_name]
    supplier = [p for p in matching if p.supplier_vat is not None and p.supplier_vat == supplier_vat]
    global_presets = [p for p in matching if p.supplier_vat is None]

    patterns: List[RegexPattern] = []
    for preset in sorted(supplier, key=lambda p: p.priority) + sorted(global_presets, key=lambda p: p.priority):
        patterns.extend(preset.patterns)
    return patterns


def resolve_template_presets(config: TemplateConfig, supplier_vat: Optional[str] = None,
                             presets: Iterable[FieldRegexPreset] = DEFAULT_FIELD_PRESETS) -> TemplateConfig:
    """
    Return a copy of ``config`` whose regex fields also try preset patterns.

    For REGEX and XPATH_REGEX fields with presets, the inline ``regex`` is
    kept as the first pattern and the presets follow. Fields without
    presets are left untouched.
    """
    presets = tuple(presets)
    fields = {}
    for field_name, rule in config.fields.items():
        if rule.method not in (ExtractionMethod.REGEX, ExtractionMethod.XPATH_REGEX):
            fields[field_name] = rule
            continue

        preset_patterns = presets_for_field(field_name, supplier_vat, presets)
        if not preset_patterns:
            fields[field_name] = rule
            continue

        patterns: List[RegexPattern] = []
        if rule.regex:
            patterns.append(RegexPattern(label="Template inline", regex=rule.regex, regex_group=rule.regex_group))
        patterns.extend(preset_patterns)
        fields[field_name] = replace(rule, regex_patterns=tuple(patterns))
        logger.debug(f"Field {field_name}: {len(preset_patterns)} preset pattern(s) added")

    return replace(config, fields=fields)


def _fatturapa_paths(root: str) -> Dict[str, Any]:
    document = f"{root}.FatturaElettronicaBody.DatiGenerali.DatiGeneraliDocumento"
    return {
        "lineXpath": f"{root}.FatturaElettronicaBody.DatiBeniServizi.DettaglioLinee",
        "supplierDetection": {
            "vatNumberPath": f"{root}.FatturaElettronicaHeader.CedentePrestatore.DatiAnagrafici.IdFiscaleIVA.IdCodice",
        },
        "invoiceMetadata": {
            "invoiceNumberPath": f"{document}.Numero",
            "invoiceDatePath": f"{document}.Data",
            "invoiceDateFormat": "yyyy-MM-dd",
        },
    }


class SupplierTemplatePresets:
    """Ready-made templates for known fuel card issuers."""

    @staticmethod
    def get_edenred_template() -> SupplierTemplate:
        """
        Edenred UTA Mobility, FatturaPA with the ``p:`` prefix.

        Date, fuel type and odometer are read from Descrizione, e.g.
        "17/12/2024 18:38:00 AGIP Roma (RM) Agip JOLLY 1 Km:22947 SUPER 95 16,41 lt 28,37Eu."
        """
        config = {
            "version": 1,
            **_fatturapa_paths("p:FatturaElettronica"),
            "fields": {
                "licensePlate": {"method": "XPATH_REGEX", "xpath": "AltriDatiGestionali.RiferimentoTesto",
                                 "regex": r"([A-Z]{2}\d{3}[A-Z]{2})", "regexGroup": 1, "transform": "uppercase"},
                "date": {"method": "XPATH_REGEX", "xpath": "Descrizione",
                         "regex": r"(\d{2}/\d{2}/\d{4})", "regexGroup": 1, "dateFormat": "dd/MM/yyyy"},
                "fuelType": {"method": "XPATH_REGEX", "xpath": "Descrizione",
                             "regex": r"Km:\d+\s+(.+?)\s+[\d.,]+\s*lt", "regexGroup": 1, "transform": "trim"},
                "quantity": {"method": "XPATH", "xpath": "Quantita"},
                "amount": {"method": "XPATH", "xpath": "PrezzoTotale"},
                "unitPrice": {"method": "XPATH", "xpath": "PrezzoUnitario"},
                "cardNumber": {"method": "XPATH", "xpath": "RiferimentoAmministrazione", "transform": "trim"},
                "odometerKm": {"method": "XPATH_REGEX", "xpath": "Descrizione",
                               "regex": r"Km:(\d+)", "regexGroup": 1},
                "description": {"method": "XPATH", "xpath": "Descrizione", "transform": "trim"},
            },
            "lineFilters": [
                {"fieldPath": "description", "regex": r"lt\s+[\d.,]+\s*Eu", "action": "include"},
            ],
        }
        return SupplierTemplate(
            template_id="edenred-uta",
            supplier_name="Edenred UTA Mobility",
            vat_number=EDENRED_VAT,
            name="Edenred UTA - FatturaPA fuel",
            description="Plate from AltriDatiGestionali; date, fuel type and km from Descrizione.",
            template_config=TemplateConfig.from_dict(config),
            matching_config=DEFAULT_MATCHING_TOLERANCES
        )

    @staticmethod
    def get_esso_template() -> SupplierTemplate:
        """
        WEX Europe Services (Esso), FatturaPA with the ``ns0:`` prefix.

        Plate and card number come from the card-plate text in Descrizione, e.g.
        "gasolio autotrazion  in data 08.02.23 con carta 7033167200254244329-GA727GS ..."
        """
        config = {
            "version": 1,
            **_fatturapa_paths("ns0:FatturaElettronica"),
            "fields": {
                "licensePlate": {"method": "XPATH_REGEX", "xpath": "Descrizione",
                                 "regex": r"\d+-([A-Z]{2}\d{3}[A-Z]{2})", "regexGroup": 1, "transform": "uppercase"},
                "date": {"method": "XPATH_REGEX", "xpath": "Descrizione",
                         "regex": r"in data (\d{2}\.\d{2}\.\d{2})", "regexGroup": 1, "dateFormat": "dd.MM.yy"},
                "fuelType": {"method": "XPATH_REGEX", "xpath": "Descrizione",
                             "regex": r"^(.+?)\s{2,}in data", "regexGroup": 1, "transform": "trim"},
                "quantity": {"method": "XPATH", "xpath": "Quantita"},
                "amount": {"method": "XPATH", "xpath": "PrezzoTotale"},
                "unitPrice": {"method": "XPATH", "xpath": "PrezzoUnitario"},
                "cardNumber": {"method": "XPATH_REGEX", "xpath": "Descrizione",
                               "regex": r"con carta (\d+)", "regexGroup": 1},
                "description": {"method": "XPATH", "xpath": "Descrizione", "transform": "trim"},
            },
        }
        return SupplierTemplate(
            template_id="esso-wex",
            supplier_name="WEX Europe Services (Esso)",
            vat_number=ESSO_VAT,
            name="Esso/WEX - FatturaPA fuel",
            description="Plate from the card-plate text in Descrizione.",
            template_config=TemplateConfig.from_dict(config),
            matching_config=DEFAULT_MATCHING_TOLERANCES
        )

    @staticmethod
    def get_q8_template() -> SupplierTemplate:
        """Kuwait Petroleum Italia (Q8), FatturaPA with the ``p:`` prefix."""
        config = {
            "version": 1,
            **_fatturapa_paths("p:FatturaElettronica"),
            "fields": {
                "licensePlate": {"method": "XPATH_REGEX", "xpath": "AltriDatiGestionali.RiferimentoTesto",
                                 "regex": r"([A-Z]{2}\d{3}[A-Z]{2})", "regexGroup": 1, "transform": "uppercase"},
                "date": {"method": "XPATH", "xpath": "DataInizioPeriodo", "dateFormat": "yyyy-MM-dd"},
                "fuelType": {"method": "XPATH", "xpath": "Descrizione", "transform": "trim"},
                "quantity": {"method": "XPATH", "xpath": "Quantita"},
                "amount": {"method": "XPATH", "xpath": "PrezzoTotale"},
                "unitPrice": {"method": "XPATH", "xpath": "PrezzoUnitario"},
                "description": {"method": "XPATH", "xpath": "Descrizione", "transform": "trim"},
            },
        }
        return SupplierTemplate(
            template_id="q8",
            supplier_name="Kuwait Petroleum Italia (Q8)",
            vat_number=Q8_VAT,
            name="Q8 - FatturaPA fuel",
            description="Plate from AltriDatiGestionali, date from DataInizioPeriodo.",
            template_config=TemplateConfig.from_dict(config),
            matching_config=DEFAULT_MATCHING_TOLERANCES
        )

    @staticmethod
    def list_templates() -> List[SupplierTemplate]:
        """Get list of all preset supplier templates."""
        return [
            SupplierTemplatePresets.get_edenred_template(),
            SupplierTemplatePresets.get_esso_template(),
            SupplierTemplatePresets.get_q8_template()
        ]
