"""
Unit tests for fuel invoice data models.

Tests template configuration parsing, line and entity serialization and
tolerance validation.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fuel_invoices.models import (
    ConfigurationError, ExtractedLine, ExtractionMethod, FieldExtractionRule, FilterAction,
    MatchDecision, MatchingTolerances, MatchingWeights, MatchScore, MatchStatus, ReferenceEntity,
    RegexPattern, SupplierTemplate, TemplateConfig, Transform
)


SAMPLE_CONFIG = {
    "version": 1,
    "lineXpath": "FatturaElettronica.FatturaElettronicaBody.DatiBeniServizi.DettaglioLinee",
    "fields": {
        "licensePlate": {
            "method": "XPATH_REGEX",
            "xpath": "Descrizione",
            "regexPatterns": [
                {"label": "plate", "regex": "([A-Z]{2}\\d{3}[A-Z]{2})", "regexGroup": 1, "transform": "uppercase"}
            ]
        },
        "date": {"method": "XPATH", "xpath": "DataInizioPeriodo", "dateFormat": "yyyy-MM-dd"},
        "amount": {"method": "XPATH", "xpath": "PrezzoTotale"}
    },
    "lineFilters": [{"fieldPath": "description", "regex": "AdBlue", "action": "exclude"}],
    "supplierDetection": {"vatNumberPath": "FatturaElettronica.Header.IdCodice"},
    "invoiceMetadata": {"invoiceNumberPath": "Numero", "invoiceDatePath": "Data", "invoiceDateFormat": "yyyy-MM-dd"}
}


class TestTemplateConfig:
    """Test cases for TemplateConfig parsing."""

    def test_from_dict(self):
        """Test parsing the persisted JSON form."""
        config = TemplateConfig.from_dict(SAMPLE_CONFIG)

        assert config.line_xpath.endswith("DettaglioLinee")
        assert list(config.fields) == ["licensePlate", "date", "amount"]
        plate_rule = config.fields["licensePlate"]
        assert plate_rule.method is ExtractionMethod.XPATH_REGEX
        assert plate_rule.regex_patterns[0].transform is Transform.UPPERCASE
        assert config.line_filters[0].action is FilterAction.EXCLUDE
        assert config.supplier_detection.vat_number_path == "FatturaElettronica.Header.IdCodice"
        assert config.invoice_metadata.invoice_date_format == "yyyy-MM-dd"

    def test_to_dict_keeps_camel_case(self):
        """Test that serialization reproduces the persisted form."""
        config = TemplateConfig.from_dict(SAMPLE_CONFIG)

        assert config.to_dict() == SAMPLE_CONFIG

    def test_missing_line_xpath(self):
        """Test that lineXpath is required."""
        with pytest.raises(ConfigurationError):
            TemplateConfig.from_dict({"fields": {}})

    def test_unknown_field(self):
        """Test that unknown field names are rejected."""
        with pytest.raises(ConfigurationError, match="vin"):
            TemplateConfig.from_dict({"lineXpath": "a.b", "fields": {"vin": {"method": "XPATH", "xpath": "x"}}})

    def test_unknown_method(self):
        """Test that unknown extraction methods are rejected."""
        with pytest.raises(ConfigurationError, match="XPATH2"):
            FieldExtractionRule.from_dict({"method": "XPATH2"})

    def test_unknown_transform(self):
        with pytest.raises(ConfigurationError):
            RegexPattern(regex="(x)", transform="capitalize")

    def test_null_rules_are_skipped(self):
        config = TemplateConfig.from_dict({"lineXpath": "a.b", "fields": {"amount": None}})

        assert dict(config.fields) == {}

    def test_fields_are_read_only(self):
        """Test that a built config cannot be mutated."""
        config = TemplateConfig.from_dict(SAMPLE_CONFIG)

        with pytest.raises(TypeError):
            config.fields["quantity"] = FieldExtractionRule(method=ExtractionMethod.XPATH, xpath="Quantita")


class TestExtractedLine:
    """Test cases for ExtractedLine."""

    def test_field_access_by_template_name(self):
        line = ExtractedLine(line_number=1)
        line.set_field("licensePlate", "AB123CD")
        line.set_field("odometerKm", 22947)

        assert line.license_plate == "AB123CD"
        assert line.get_field("odometerKm") == 22947
        assert line.get_field("unknown") is None

    def test_to_dict(self):
        """Test conversion to dictionary."""
        line = ExtractedLine(
            line_number=3,
            license_plate="AB123CD",
            date=date(2024, 12, 17),
            quantity=Decimal("16.41"),
            amount=Decimal("28.37"),
            errors=["fuelType: bad"]
        )

        data = line.to_dict()

        assert data['line_number'] == 3
        assert data['date'] == "2024-12-17"
        assert data['quantity'] == 16.41
        assert data['amount'] == 28.37
        assert data['unit_price'] is None
        assert data['errors'] == ["fuelType: bad"]

    def test_from_dict(self):
        """Test creation from dictionary."""
        line = ExtractedLine.from_dict({
            'line_number': 2,
            'license_plate': 'FH432NB',
            'date': '2024-12-20',
            'amount': 71.2
        })

        assert line.date == date(2024, 12, 20)
        assert line.amount == Decimal("71.2")
        assert line.quantity is None
        assert line.errors == []


class TestMatchingTolerances:
    """Test cases for MatchingTolerances."""

    def test_defaults(self):
        tolerances = MatchingTolerances()

        assert tolerances.date_tolerance_days == 2
        assert tolerances.quantity_tolerance_percent == 5.0
        assert tolerances.amount_tolerance_percent == 5.0
        assert tolerances.auto_match_threshold == 0.85
        assert tolerances.weights == MatchingWeights(0.35, 0.25, 0.2, 0.15, 0.05)

    def test_from_dict_partial(self):
        """Test that missing keys fall back to defaults."""
        tolerances = MatchingTolerances.from_dict({
            "dateToleranceDays": 3,
            "weights": {"fuelType": 0}
        })

        assert tolerances.date_tolerance_days == 3
        assert tolerances.amount_tolerance_percent == 5.0
        assert tolerances.weights.fuel_type == 0.0
        assert tolerances.weights.license_plate == 0.35

    def test_round_trip(self):
        tolerances = MatchingTolerances(date_tolerance_days=1, auto_match_threshold=0.9)

        assert MatchingTolerances.from_dict(tolerances.to_dict()) == tolerances

    def test_invalid_values(self):
        """Test construction-time validation."""
        with pytest.raises(ConfigurationError):
            MatchingTolerances(auto_match_threshold=1.5)
        with pytest.raises(ConfigurationError):
            MatchingTolerances(date_tolerance_days=-1)
        with pytest.raises(ConfigurationError):
            MatchingTolerances(amount_tolerance_percent=-0.1)
        with pytest.raises(ConfigurationError):
            MatchingTolerances(weights=MatchingWeights(license_plate=-1))

    def test_from_dict_not_a_number(self):
        with pytest.raises(ConfigurationError):
            MatchingTolerances.from_dict({"autoMatchThreshold": "high"})


class TestReferenceEntity:
    """Test cases for ReferenceEntity."""

    def test_recency_uses_latest_timestamp(self):
        entity = ReferenceEntity(
            entity_id="r1",
            last_used_at=datetime(2024, 5, 1),
            created_at=datetime(2024, 6, 1)
        )

        assert entity.recency == datetime(2024, 6, 1, tzinfo=timezone.utc)
        assert ReferenceEntity(entity_id="r2").recency is None

    def test_recency_mixes_naive_and_aware(self):
        """Test that naive timestamps are compared as UTC."""
        entity = ReferenceEntity(
            entity_id="r1",
            last_used_at=datetime(2024, 6, 1, 12, 0),
            created_at=datetime(2024, 6, 1, 13, 0, tzinfo=timezone(timedelta(hours=2)))
        )

        assert entity.recency == datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def test_from_dict_rejects_non_numeric_amounts(self):
        with pytest.raises(ValueError):
            ReferenceEntity.from_dict({'entity_id': 'r1', 'amount': 'ten'})
        with pytest.raises(ValueError):
            ExtractedLine.from_dict({'line_number': 1, 'quantity': 'ten'})

    def test_from_dict(self):
        entity = ReferenceEntity.from_dict({
            'entity_id': 42,
            'license_plate': 'GA727GS',
            'date': '2023-02-08',
            'quantity': '45.20',
            'last_used_at': '2023-02-09T10:00:00',
            'attributes': {'status': 'ACTIVE'}
        })

        assert entity.entity_id == "42"
        assert entity.entity_type == "fuel_record"
        assert entity.date == date(2023, 2, 8)
        assert entity.quantity == Decimal("45.20")
        assert entity.last_used_at == datetime(2023, 2, 9, 10, 0)
        assert entity.attributes['status'] == 'ACTIVE'


class TestSupplierTemplate:
    """Test cases for SupplierTemplate."""

    def test_round_trip(self):
        template = SupplierTemplate(
            template_id="t1",
            supplier_name="Test Supplier",
            vat_number="01234567890",
            name="Test template",
            template_config=TemplateConfig.from_dict(SAMPLE_CONFIG),
            matching_config=MatchingTolerances(date_tolerance_days=1)
        )

        restored = SupplierTemplate.from_dict(template.to_dict())

        assert restored.template_id == "t1"
        assert restored.template_config == template.template_config
        assert restored.matching_config.date_tolerance_days == 1
        assert restored.is_active is True


class TestMatchDecision:

    def test_to_dict(self):
        decision = MatchDecision(
            line_number=1,
            status=MatchStatus.SUGGESTED,
            matched_entity_id="r1",
            score=0.7,
            candidates=[MatchScore(entity_id="r1", total_score=0.7, dimensions=[])],
            candidate_count=4
        )

        data = decision.to_dict()

        assert data['status'] == "suggested"
        assert data['candidates'][0]['entity_id'] == "r1"
        assert data['candidate_count'] == 4
