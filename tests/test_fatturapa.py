"""
Unit tests for FatturaPA detection and template generation.
"""

from datetime import date

import pytest

from fuel_invoices.models import ExtractionError, ExtractionMethod
from fuel_invoices.extraction import (
    auto_detect_fatturapa, auto_detect_supplier_vat, extract, generate_template_config
)
from fuel_invoices.extraction.fatturapa import CARD_PLATE_REGEX


PLAIN_FATTURA = """
<FatturaElettronica versione="FPR12">
  <FatturaElettronicaHeader>
    <CedentePrestatore><DatiAnagrafici>
      <IdFiscaleIVA><IdPaese>IT</IdPaese><IdCodice>01234567890</IdCodice></IdFiscaleIVA>
      <Anagrafica><Denominazione>Carburanti Srl</Denominazione></Anagrafica>
    </DatiAnagrafici></CedentePrestatore>
  </FatturaElettronicaHeader>
  <FatturaElettronicaBody>
    <DatiGenerali><DatiGeneraliDocumento><Data>2024-03-01</Data><Numero>77</Numero></DatiGeneraliDocumento></DatiGenerali>
    <DatiBeniServizi>
      <DettaglioLinee>
        <Descrizione>Rifornimento data 28/02/2024 carta 7060-AB123CD</Descrizione>
        <Quantita>30.00</Quantita>
        <PrezzoUnitario>1.800000</PrezzoUnitario>
        <PrezzoTotale>54.00</PrezzoTotale>
      </DettaglioLinee>
    </DatiBeniServizi>
  </FatturaElettronicaBody>
</FatturaElettronica>
"""


class TestSupplierVatDetection:
    """Test cases for supplier VAT auto-detection."""

    def test_prefixed_roots(self, edenred_xml, esso_xml):
        assert auto_detect_supplier_vat(edenred_xml) == "01696270212"
        assert auto_detect_supplier_vat(esso_xml) == "08510870960"

    def test_plain_root(self):
        assert auto_detect_supplier_vat(PLAIN_FATTURA) == "01234567890"

    def test_not_fatturapa(self):
        assert auto_detect_supplier_vat("<Invoice><Vat>1</Vat></Invoice>") is None

    def test_malformed(self, malformed_xml):
        with pytest.raises(ExtractionError):
            auto_detect_supplier_vat(malformed_xml)


class TestStructureDetection:
    """Test cases for FatturaPA structure detection."""

    def test_edenred(self, edenred_xml):
        detection = auto_detect_fatturapa(edenred_xml)

        assert detection.root == "p:FatturaElettronica"
        assert detection.line_xpath == "p:FatturaElettronica.FatturaElettronicaBody.DatiBeniServizi.DettaglioLinee"
        assert detection.has_altri_dati_gestionali_targa is True
        assert detection.has_data_inizio_periodo is False
        assert detection.has_descrizione is True
        assert detection.supplier_name == "Edenred Italia Fin S.r.l."
        assert detection.invoice_number == "0012345"
        assert detection.sample_line_count == 3

    def test_q8_with_repeated_altri_dati(self, q8_xml):
        detection = auto_detect_fatturapa(q8_xml)

        assert detection.has_altri_dati_gestionali_targa is True
        assert detection.has_data_inizio_periodo is True
        assert detection.sample_line_count == 1

    def test_no_lines(self):
        assert auto_detect_fatturapa("<FatturaElettronica><FatturaElettronicaBody/></FatturaElettronica>") is None

    def test_to_dict(self, esso_xml):
        data = auto_detect_fatturapa(esso_xml).to_dict()

        assert data['root'] == "ns0:FatturaElettronica"
        assert data['supplier_vat'] == "08510870960"


class TestTemplateGeneration:
    """Test cases for generated templates."""

    def test_plate_from_altri_dati(self, q8_xml):
        config = generate_template_config(auto_detect_fatturapa(q8_xml))

        plate = config.fields["licensePlate"]
        assert plate.method is ExtractionMethod.XPATH
        assert plate.xpath == "AltriDatiGestionali.RiferimentoTesto"
        assert config.fields["date"].xpath == "DataInizioPeriodo"
        assert config.supplier_detection.vat_number_path.startswith("p:FatturaElettronica.")

    def test_plate_and_date_from_description(self):
        detection = auto_detect_fatturapa(PLAIN_FATTURA)

        config = generate_template_config(detection)

        assert config.fields["licensePlate"].regex == CARD_PLATE_REGEX
        assert config.fields["date"].method is ExtractionMethod.XPATH_REGEX

    def test_generated_template_extracts(self):
        """Test that a generated template works on its own document."""
        config = generate_template_config(auto_detect_fatturapa(PLAIN_FATTURA))

        result = extract(PLAIN_FATTURA, config)

        line = result.lines[0]
        assert line.license_plate == "AB123CD"
        assert line.date == date(2024, 2, 28)
        assert str(line.amount) == "54.00"
        assert result.invoice_metadata.invoice_date == date(2024, 3, 1)
        assert result.invoice_metadata.supplier_vat_number == "01234567890"
