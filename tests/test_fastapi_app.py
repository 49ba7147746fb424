"""
Tests for the HTTP API.

Exercises the endpoints with FastAPI's TestClient against a temporary
template store seeded with the supplier presets.
"""

import io
import json
import shutil
import tempfile

import pandas as pd
from fastapi.testclient import TestClient

import fastapi_app
from fastapi_app import app, get_store
from fuel_invoices.config.config_manager import ConfigManager


class TestFuelInvoiceApi:
    """Test cases for the API endpoints."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = ConfigManager(self.temp_dir)
        self.store.seed_preset_templates()
        app.dependency_overrides[get_store] = lambda: self.store
        self.client = TestClient(app)

    def teardown_method(self):
        app.dependency_overrides.clear()
        shutil.rmtree(self.temp_dir)

    def upload(self, path: str, content: bytes, **data):
        return self.client.post(path, files={"file": ("invoice.xml", content, "application/xml")}, data=data)

    def test_root_and_health(self):
        assert self.client.get("/").status_code == 200

        response = self.client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["template_store"]["templates_count"] == 3

    def test_list_and_get_templates(self):
        templates = self.client.get("/templates").json()["templates"]

        assert {t["template_id"] for t in templates} == {"edenred-uta", "esso-wex", "q8"}

        detail = self.client.get("/templates/q8")
        assert detail.status_code == 200
        assert detail.json()["template"]["template_config"]["fields"]["date"]["xpath"] == "DataInizioPeriodo"

        assert self.client.get("/templates/unknown").status_code == 404

    def test_validate_template(self):
        response = self.client.post("/templates/validate", json={
            "lineXpath": "a.b",
            "fields": {"licensePlate": {"method": "XPATH_REGEX", "xpath": "Descrizione", "regex": "(bad"}}
        })

        assert response.status_code == 200
        assert response.json()["is_valid"] is False

    def test_regex_patterns(self):
        patterns = self.client.get("/regex_patterns").json()

        assert patterns["targaItaliana"]["pattern"].startswith("([A-Z]{2}")

    def test_extract_auto_detects_supplier(self, edenred_xml):
        """Test that the template is picked by the supplier VAT in the document."""
        response = self.upload("/extract", edenred_xml)

        assert response.status_code == 200
        body = response.json()
        assert body["template_id"] == "edenred-uta"
        assert body["result"]["success"] is True
        assert [line["line_number"] for line in body["result"]["lines"]] == [1, 3]
        assert body["result"]["lines"][0]["odometer_km"] == 22947

    def test_extract_with_template_id(self, esso_xml):
        response = self.upload("/extract", esso_xml, template_id="esso-wex", include_raw_xml="true")

        lines = response.json()["result"]["lines"]
        assert lines[0]["license_plate"] == "GA727GS"
        assert lines[0]["raw_xml"].startswith("<DettaglioLinee>")

    def test_extract_with_inline_config(self, q8_xml):
        config = {
            "lineXpath": "p:FatturaElettronica.FatturaElettronicaBody.DatiBeniServizi.DettaglioLinee",
            "fields": {"amount": {"method": "XPATH", "xpath": "PrezzoTotale"}}
        }

        response = self.upload("/extract", q8_xml, template_config=json.dumps(config))

        body = response.json()
        assert body["template_id"] is None
        assert body["result"]["lines"][0]["amount"] == 85.0

    def test_extract_invalid_inline_config(self, q8_xml):
        assert self.upload("/extract", q8_xml, template_config="{not json").status_code == 400
        assert self.upload("/extract", q8_xml, template_config=json.dumps({"fields": {}})).status_code == 400

    def test_extract_unknown_template(self, q8_xml):
        assert self.upload("/extract", q8_xml, template_id="missing").status_code == 404

    def test_extract_unknown_supplier(self):
        document = b"<Invoice><Line><Total>1</Total></Line></Invoice>"

        assert self.upload("/extract", document).status_code == 404

    def test_extract_malformed_xml(self, malformed_xml):
        response = self.upload("/extract", malformed_xml, template_id="q8")

        assert response.status_code == 200
        assert response.json()["result"]["success"] is False

    def test_extract_csv(self, edenred_xml):
        response = self.upload("/extract", edenred_xml, format="csv")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        df = pd.read_csv(io.BytesIO(response.content))
        assert len(df) == 2

    def test_extract_unsupported_format(self, edenred_xml):
        assert self.upload("/extract", edenred_xml, format="pdf").status_code == 400

    def test_detect(self, q8_xml):
        body = self.upload("/detect", q8_xml).json()

        assert body["detected"] is True
        assert body["detection"]["supplier_vat"] == "00891951006"
        assert body["existing_template_id"] == "q8"
        assert body["template_config"]["fields"]["date"]["xpath"] == "DataInizioPeriodo"

    def test_detect_not_fatturapa(self):
        body = self.upload("/detect", b"<Invoice/>").json()

        assert body["detected"] is False

    def test_structure(self, q8_xml):
        response = self.upload("/structure", q8_xml)

        assert response.status_code == 200
        assert response.json()["nodes"][0]["name"] == "p:FatturaElettronica"

    def test_structure_malformed(self, malformed_xml):
        assert self.upload("/structure", malformed_xml).status_code == 400

    def test_match(self):
        response = self.client.post("/match", json={
            "lines": [
                {"line_number": 1, "license_plate": "GH123KL", "date": "2024-12-17", "amount": 28.37},
                {"line_number": 3, "license_plate": "ZZ999ZZ", "date": "2020-01-01", "amount": 1.0},
            ],
            "candidates": [
                {"entity_id": "r1", "license_plate": "GH123KL", "date": "2024-12-17", "amount": 28.37},
            ],
            "suggestionLimit": 1
        })

        assert response.status_code == 200
        body = response.json()
        assert [d["status"] for d in body["decisions"]] == ["auto_matched", "unmatched"]
        assert body["summary"] == {"total": 2, "auto_matched": 1, "suggested": 0, "unmatched": 1}

    def test_match_manual_confirmation(self):
        response = self.client.post("/match", json={
            "lines": [{"line_number": 1, "license_plate": "GH123KL"}],
            "candidates": [{"entity_id": "r1", "license_plate": "GH123KL"}],
            "requireManualConfirmation": True
        })

        assert response.json()["decisions"][0]["status"] == "suggested"

    def test_match_invalid_tolerances(self):
        response = self.client.post("/match", json={
            "lines": [], "candidates": [], "tolerances": {"autoMatchThreshold": 2}
        })

        assert response.status_code == 422

    def test_match_invalid_line(self):
        response = self.client.post("/match", json={"lines": [{"license_plate": "X"}], "candidates": []})

        assert response.status_code == 400

    def test_match_invalid_suggestion_limit(self):
        response = self.client.post("/match", json={"lines": [], "candidates": [], "suggestionLimit": 0})

        assert response.status_code == 400

    def test_match_non_numeric_quantity(self):
        response = self.client.post("/match", json={
            "lines": [{"line_number": 1, "quantity": "ten"}],
            "candidates": [{"entity_id": "r1"}]
        })

        assert response.status_code == 400

    def test_match_mixed_timezone_timestamps(self):
        """Test that naive and offset timestamps can be ranked together."""
        response = self.client.post("/match", json={
            "lines": [{"line_number": 1, "license_plate": "GH123KL"}],
            "candidates": [
                {"entity_id": "r1", "license_plate": "GH123KL",
                 "last_used_at": "2024-06-01T12:00:00", "created_at": "2024-06-01T13:00:00+02:00"},
                {"entity_id": "r2", "license_plate": "GH123KL", "created_at": "2024-06-01T11:30:00+00:00"},
            ]
        })

        assert response.status_code == 200
        assert response.json()["decisions"][0]["matched_entity_id"] == "r1"

    def test_entity_declarations_rejected(self):
        document = b'<!DOCTYPE a [<!ENTITY x "y">]><a><b><c>&x;</c></b></a>'

        assert self.upload("/structure", document).status_code == 400
        assert self.upload("/detect", document).status_code == 400
        assert self.upload("/extract", document).json()["result"]["success"] is False


class TestPresetSeeding:
    """Test cases for seeding the preset templates at startup."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.store = ConfigManager(self.temp_dir)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir)

    def test_seeded_once_at_startup(self, monkeypatch):
        """Test that deleted templates are not brought back by later requests."""
        monkeypatch.setattr(fastapi_app, "get_config_manager", lambda: self.store)
        monkeypatch.setattr(fastapi_app, "SEED_PRESET_TEMPLATES", True)

        with TestClient(app) as client:
            assert len(self.store.list_templates()) == 3

            for template in self.store.list_templates():
                self.store.delete_template(template["template_id"])

            assert client.get("/templates").json()["templates"] == []

    def test_seeding_disabled(self, monkeypatch):
        monkeypatch.setattr(fastapi_app, "get_config_manager", lambda: self.store)
        monkeypatch.setattr(fastapi_app, "SEED_PRESET_TEMPLATES", False)

        with TestClient(app):
            assert self.store.list_templates() == []
