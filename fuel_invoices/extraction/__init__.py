"""
Template extraction engine for supplier fuel invoices.

Parses FatturaPA XML documents and extracts structured fuel lines using
declarative per-supplier templates.
"""

from .field_extractor import FieldExtractor
from .template_engine import TemplateExtractor, extract
from .fatturapa import (
    FatturaDetection, auto_detect_fatturapa, auto_detect_supplier_vat,
    generate_template_config
)
from .xml_tree import XmlTreeNode, get_xml_tree_structure, parse_xml

__all__ = [
    "FieldExtractor",
    "TemplateExtractor",
    "extract",
    "FatturaDetection",
    "auto_detect_fatturapa",
    "auto_detect_supplier_vat",
    "generate_template_config",
    "XmlTreeNode",
    "get_xml_tree_structure",
    "parse_xml"
]
