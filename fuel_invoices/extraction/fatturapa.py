"""
FatturaPA structure detection and template generation.

FatturaPA documents from different issuers differ mainly in the root
element prefix (none, ``p:``, ``ns0:`` ...). These helpers find the root,
read the supplier identity and propose a starting TemplateConfig.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from fuel_invoices.models import (
    ExtractionMethod, FieldExtractionRule, InvoiceMetadataPaths, SupplierDetection,
    TemplateConfig, Transform
)
from fuel_invoices.extraction.xml_tree import XmlTree, locate_lines, parse_xml, resolve_text

import logging
logger = logging.getLogger(__name__)

FATTURAPA_ROOTS = (
    "FatturaElettronica",
    "p:FatturaElettronica",
    "ns0:FatturaElettronica",
    "ns1:FatturaElettronica",
    "ns2:FatturaElettronica",
)

LINES_PATH = "FatturaElettronicaBody.DatiBeniServizi.DettaglioLinee"
SUPPLIER_PATH = "FatturaElettronicaHeader.CedentePrestatore.DatiAnagrafici"
VAT_PATH = f"{SUPPLIER_PATH}.IdFiscaleIVA.IdCodice"
SUPPLIER_NAME_PATH = f"{SUPPLIER_PATH}.Anagrafica.Denominazione"
DOCUMENT_PATH = "FatturaElettronicaBody.DatiGenerali.DatiGeneraliDocumento"

# Fuel card number followed by the plate, e.g. "7060-AB123CD"
CARD_PLATE_REGEX = r"\d+-([A-Z]{2}\d{3}[A-Z]{2})"
DESCRIPTION_DATE_REGEX = r"(?:in data|data|il)\s*(\d{1,2}[./\-]\d{1,2}[./\-]\d{2,4})"


@dataclass
class FatturaDetection:
    """Structure of a FatturaPA document as seen through its first line."""
    root: str
    line_xpath: str
    has_altri_dati_gestionali_targa: bool
    has_data_inizio_periodo: bool
    has_descrizione: bool
    has_quantita: bool
    supplier_vat: Optional[str]
    supplier_name: Optional[str]
    invoice_number: Optional[str]
    invoice_date: Optional[str]
    sample_line_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'root': self.root,
            'line_xpath': self.line_xpath,
            'has_altri_dati_gestionali_targa': self.has_altri_dati_gestionali_targa,
            'has_data_inizio_periodo': self.has_data_inizio_periodo,
            'has_descrizione': self.has_descrizione,
            'has_quantita': self.has_quantita,
            'supplier_vat': self.supplier_vat,
            'supplier_name': self.supplier_name,
            'invoice_number': self.invoice_number,
            'invoice_date': self.invoice_date,
            'sample_line_count': self.sample_line_count
        }


def _as_tree(document: Union[str, bytes, XmlTree]) -> XmlTree:
    if isinstance(document, (str, bytes)):
        return parse_xml(document)
    return document


def auto_detect_supplier_vat(document: Union[str, bytes, XmlTree]) -> Optional[str]:
    """
    Read the supplier VAT number (CedentePrestatore IdCodice) of a FatturaPA.

    Raises:
        ExtractionError: If the document is not well-formed XML
    """
    tree = _as_tree(document)
    for root in FATTURAPA_ROOTS:
        vat = resolve_text(tree, f"{root}.{VAT_PATH}")
        if vat:
            logger.debug(f"Supplier VAT {vat} found under {root}")
            return vat.strip()
    return None


def _has_targa(line: Dict[str, Any]) -> bool:
    altri_dati = line.get("AltriDatiGestionali")
    entries = altri_dati if isinstance(altri_dati, list) else [altri_dati]
    return any(isinstance(entry, dict) and entry.get("TipoDato") == "TARGA" for entry in entries)


def auto_detect_fatturapa(document: Union[str, bytes, XmlTree]) -> Optional[FatturaDetection]:
    """
    Detect the FatturaPA root and the fields available on its lines.

    Returns:
        FatturaDetection for the first root with line items, or None

    Raises:
        ExtractionError: If the document is not well-formed XML
    """
    tree = _as_tree(document)

    for root in FATTURAPA_ROOTS:
        line_xpath = f"{root}.{LINES_PATH}"
        lines = locate_lines(tree, line_xpath)
        if not lines:
            continue

        first = lines[0] if isinstance(lines[0], dict) else {}
        detection = FatturaDetection(
            root=root,
            line_xpath=line_xpath,
            has_altri_dati_gestionali_targa=_has_targa(first),
            has_data_inizio_periodo=first.get("DataInizioPeriodo") is not None,
            has_descrizione=first.get("Descrizione") is not None,
            has_quantita=first.get("Quantita") is not None,
            supplier_vat=resolve_text(tree, f"{root}.{VAT_PATH}"),
            supplier_name=resolve_text(tree, f"{root}.{SUPPLIER_NAME_PATH}"),
            invoice_number=resolve_text(tree, f"{root}.{DOCUMENT_PATH}.Numero"),
            invoice_date=resolve_text(tree, f"{root}.{DOCUMENT_PATH}.Data"),
            sample_line_count=len(lines)
        )
        logger.info(f"Detected FatturaPA root {root} with {len(lines)} line(s)")
        return detection

    return None


def generate_template_config(detection: FatturaDetection) -> TemplateConfig:
    """
    Propose a TemplateConfig for a detected FatturaPA structure.

    The plate comes from AltriDatiGestionali when the supplier tags it,
    otherwise from the card-plate pattern in Descrizione; the date from
    DataInizioPeriodo or a "data ..." mention in Descrizione.
    """
    fields: Dict[str, FieldExtractionRule] = {}

    if detection.has_altri_dati_gestionali_targa:
        fields["licensePlate"] = FieldExtractionRule(
            method=ExtractionMethod.XPATH,
            xpath="AltriDatiGestionali.RiferimentoTesto",
            transform=Transform.UPPERCASE
        )
    elif detection.has_descrizione:
        fields["licensePlate"] = FieldExtractionRule(
            method=ExtractionMethod.XPATH_REGEX,
            xpath="Descrizione",
            regex=CARD_PLATE_REGEX,
            regex_group=1,
            transform=Transform.UPPERCASE
        )

    if detection.has_data_inizio_periodo:
        fields["date"] = FieldExtractionRule(
            method=ExtractionMethod.XPATH,
            xpath="DataInizioPeriodo",
            date_format="yyyy-MM-dd"
        )
    elif detection.has_descrizione:
        fields["date"] = FieldExtractionRule(
            method=ExtractionMethod.XPATH_REGEX,
            xpath="Descrizione",
            regex=DESCRIPTION_DATE_REGEX,
            regex_group=1
        )

    if detection.has_quantita:
        fields["quantity"] = FieldExtractionRule(method=ExtractionMethod.XPATH, xpath="Quantita")

    fields["amount"] = FieldExtractionRule(method=ExtractionMethod.XPATH, xpath="PrezzoTotale")

    if detection.has_descrizione:
        fields["fuelType"] = FieldExtractionRule(method=ExtractionMethod.XPATH, xpath="Descrizione")
        fields["description"] = FieldExtractionRule(method=ExtractionMethod.XPATH, xpath="Descrizione")

    fields["unitPrice"] = FieldExtractionRule(method=ExtractionMethod.XPATH, xpath="PrezzoUnitario")

    return TemplateConfig(
        line_xpath=detection.line_xpath,
        fields=fields,
        supplier_detection=SupplierDetection(vat_number_path=f"{detection.root}.{VAT_PATH}"),
        invoice_metadata=InvoiceMetadataPaths(
            invoice_number_path=f"{detection.root}.{DOCUMENT_PATH}.Numero",
            invoice_date_path=f"{detection.root}.{DOCUMENT_PATH}.Data",
            invoice_date_format="yyyy-MM-dd"
        )
    )
