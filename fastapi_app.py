import sys
import os
import io
import json
import logging
import datetime
from contextlib import asynccontextmanager
from typing import List, Dict, Any, Optional

from fastapi import FastAPI, UploadFile, File, Form, HTTPException, Depends, Body
from fastapi.responses import StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, Field

# Set up root logger for startup diagnostics
root_logger = logging.getLogger()
root_logger.setLevel(os.environ.get('LOG_LEVEL', 'INFO').upper())
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
root_logger.addHandler(handler)

root_logger.info("App starting up - Python version: %s", sys.version)

from fuel_invoices import (
    ConfigurationError, ExtractedLine, ExtractionError, ExtractionOptions, ExtractionResult,
    MatchingError, MatchingTolerances, ReferenceEntity, TemplateConfig, ValidationError, __version__
)
from fuel_invoices.config import (
    DEFAULT_REGEX_PATTERNS, ConfigManager, TemplateConfigValidator, get_config_manager,
    resolve_template_presets
)
from fuel_invoices.export import CSV_MEDIA_TYPE, XLSX_MEDIA_TYPE, export_extraction
from fuel_invoices.extraction import (
    auto_detect_fatturapa, auto_detect_supplier_vat, extract, generate_template_config,
    get_xml_tree_structure
)
from fuel_invoices.matching import ScoringEngine, summarize_decisions

logger = logging.getLogger('fuel_invoices_api')

# Configuration
NUMBER_LOCALE = os.environ.get('NUMBER_LOCALE', 'auto').lower()
SEED_PRESET_TEMPLATES = os.environ.get('SEED_PRESET_TEMPLATES', 'true').lower() in ('1', 'true', 'yes')
MAX_CONTENT_LENGTH = 20 * 1024 * 1024  # 20 MB limit for a single invoice

EXPORT_MEDIA_TYPES = {
    'csv': CSV_MEDIA_TYPE,
    'xlsx': XLSX_MEDIA_TYPE
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Seed the supplier presets into an empty template store once, at startup."""
    if SEED_PRESET_TEMPLATES:
        store = get_config_manager()
        if not store.list_templates():
            seeded = store.seed_preset_templates()
            logger.info(f"Seeded {seeded} preset template(s) into an empty store")
    yield


# Create the FastAPI app
app = FastAPI(
    title="Fuel Invoice Matching API",
    description="API for extracting fuel lines from FatturaPA invoices and matching them to fleet records",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Set this to specific origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

validator = TemplateConfigValidator()
scoring_engine = ScoringEngine()


def get_store() -> ConfigManager:
    """Template store dependency."""
    return get_config_manager()


# Pydantic Models
class HealthResponse(BaseModel):
    status: str
    message: str
    template_store: Dict[str, Any]


class TemplateResponse(BaseModel):
    templates: List[Dict[str, Any]]


class TemplateDetailsResponse(BaseModel):
    template: Dict[str, Any]


class MatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lines: List[Dict[str, Any]]
    candidates: List[Dict[str, Any]]
    tolerances: Optional[Dict[str, Any]] = None
    require_manual_confirmation: bool = Field(False, alias="requireManualConfirmation")
    suggestion_limit: int = Field(3, alias="suggestionLimit")


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    if len(content) > MAX_CONTENT_LENGTH:
        raise HTTPException(status_code=413, detail="Uploaded file is too large.")
    return content


def _parse_tolerances(data: Optional[Dict[str, Any]], store: ConfigManager) -> MatchingTolerances:
    if not data:
        return store.load_default_tolerances()
    result = validator.validate_tolerances(data)
    if not result.is_valid:
        raise ValidationError("; ".join(result.errors))
    return MatchingTolerances.from_dict(data)


# API Routes
@app.get("/", tags=["Info"])
def root():
    """Get basic info about the API"""
    return {
        "message": "Fuel Invoice Matching API is running",
        "version": __version__,
        "documentation": "/docs"
    }


@app.get("/health", tags=["Health"])
def health_check(store: ConfigManager = Depends(get_store)):
    """Health check for the application"""
    info = store.get_config_info()
    if 'error' in info:
        return HealthResponse(
            status="warning",
            message=f"Service running but the template store is unavailable: {info['error']}",
            template_store=info
        )
    return HealthResponse(status="ok", message="Service is operational", template_store=info)


@app.get("/templates", tags=["Templates"], response_model=TemplateResponse)
def list_templates(store: ConfigManager = Depends(get_store)):
    """List stored supplier templates"""
    return TemplateResponse(templates=store.list_templates())


@app.get("/templates/{template_id}", tags=["Templates"], response_model=TemplateDetailsResponse)
def get_template(template_id: str, store: ConfigManager = Depends(get_store)):
    """
    Get one supplier template with its extraction rules

    - **template_id**: ID of the stored template
    """
    template = store.load_template(template_id)
    if template is None:
        raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")
    return TemplateDetailsResponse(template=template.to_dict())


@app.post("/templates/validate", tags=["Templates"])
def validate_template(config: Dict[str, Any] = Body(...)):
    """
    Validate a template configuration before saving it

    - **config**: Template configuration in its JSON form (lineXpath, fields, lineFilters ...)
    """
    result = validator.validate_template_config(config)
    logger.info(f"Validated template config: valid={result.is_valid}, {len(result.errors)} error(s)")
    return result.to_dict()


@app.get("/regex_patterns", tags=["Templates"])
def get_regex_patterns():
    """Named regex patterns offered to template authors"""
    return {key: info.to_dict() for key, info in DEFAULT_REGEX_PATTERNS.items()}


@app.post("/extract", tags=["Extraction"])
async def extract_invoice(
    file: UploadFile = File(...),
    template_config: Optional[str] = Form(None),
    template_id: Optional[str] = Form(None),
    format: str = Form("json"),
    include_raw_xml: bool = Form(False),
    use_presets: bool = Form(False),
    number_locale: Optional[str] = Form(None),
    store: ConfigManager = Depends(get_store)
):
    """
    Extract fuel lines from an uploaded FatturaPA invoice

    The template is taken from, in order: the inline **template_config**
    JSON, the stored **template_id**, or the stored template of the
    supplier VAT found in the document.

    - **file**: XML invoice (multipart form)
    - **format**: json, csv or xlsx
    - **include_raw_xml**: Attach each line's XML to the result
    - **use_presets**: Let regex fields fall back to the field regex presets
    - **number_locale**: auto, it or en (defaults to the service setting)
    """
    fmt = format.lower()
    if fmt not in ('json', 'csv', 'xlsx'):
        raise HTTPException(status_code=400, detail=f"Unsupported format: {format}")

    content = await _read_upload(file)
    logger.info(f"Extraction requested for {file.filename} ({len(content)} bytes)")

    resolved_template_id = None
    supplier_vat = None
    try:
        if template_config:
            config = TemplateConfig.from_dict(json.loads(template_config))
        elif template_id:
            template = store.load_template(template_id)
            if template is None:
                raise HTTPException(status_code=404, detail=f"Template not found: {template_id}")
            config = template.template_config
            resolved_template_id = template.template_id
            supplier_vat = template.vat_number
        else:
            try:
                supplier_vat = auto_detect_supplier_vat(content)
            except ExtractionError as e:
                failed = ExtractionResult(success=False, lines=[], total_lines=0, filtered_lines=0,
                                          errors=[str(e)])
                return {"template_id": None, "result": failed.to_dict()}
            template = store.find_template_by_vat(supplier_vat)
            if template is None:
                raise HTTPException(
                    status_code=404,
                    detail=f"No active template for supplier VAT {supplier_vat or '(not found)'}"
                )
            config = template.template_config
            resolved_template_id = template.template_id

        if use_presets:
            config = resolve_template_presets(config, supplier_vat)

        options = ExtractionOptions(number_locale=number_locale or NUMBER_LOCALE,
                                    include_raw_xml=include_raw_xml)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"template_config is not valid JSON: {e}")
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = extract(content, config, options)
    except Exception as e:
        logger.error(f"Error extracting {file.filename}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error extracting invoice: {str(e)}")

    logger.info(
        f"Extracted {len(result.lines)} line(s) from {file.filename} "
        f"with template {resolved_template_id or '(inline)'}"
    )

    if fmt == 'json' or not result.success:
        return {"template_id": resolved_template_id, "result": result.to_dict()}

    try:
        output = io.BytesIO(export_extraction(result, fmt))
    except Exception as e:
        logger.error(f"Error creating {fmt} export: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error creating download: {str(e)}")

    filename = f"fuel_lines_{datetime.datetime.now().strftime('%Y%m%d%H%M%S')}.{fmt}"
    return StreamingResponse(
        output,
        media_type=EXPORT_MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@app.post("/detect", tags=["Extraction"])
async def detect_structure(file: UploadFile = File(...), store: ConfigManager = Depends(get_store)):
    """
    Detect the FatturaPA structure of an invoice and propose a template

    - **file**: XML invoice (multipart form)
    """
    content = await _read_upload(file)
    try:
        detection = auto_detect_fatturapa(content)
    except ExtractionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if detection is None:
        logger.info(f"{file.filename} is not a FatturaPA document with line items")
        return {"detected": False, "message": "No FatturaPA line items found"}

    existing = store.find_template_by_vat(detection.supplier_vat)
    return {
        "detected": True,
        "detection": detection.to_dict(),
        "template_config": generate_template_config(detection).to_dict(),
        "existing_template_id": existing.template_id if existing else None
    }


@app.post("/structure", tags=["Extraction"])
async def xml_structure(file: UploadFile = File(...)):
    """
    Describe an XML document as a tree of paths for template authoring

    - **file**: XML document (multipart form)
    """
    content = await _read_upload(file)
    try:
        nodes = get_xml_tree_structure(content)
    except ExtractionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"nodes": [node.to_dict() for node in nodes]}


@app.post("/match", tags=["Matching"])
def match_lines(request: MatchRequest, store: ConfigManager = Depends(get_store)):
    """
    Match extracted lines against reference records

    - **lines**: Extracted lines as returned by /extract
    - **candidates**: Reference records (entity_id, license_plate, date, quantity, amount ...)
    - **tolerances**: Matching tolerances; the stored defaults when omitted
    """
    try:
        tolerances = _parse_tolerances(request.tolerances, store)
        lines = [ExtractedLine.from_dict(line) for line in request.lines]
        candidates = [ReferenceEntity.from_dict(candidate) for candidate in request.candidates]
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (ConfigurationError, KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid match request: {e}")

    try:
        decisions = scoring_engine.match_all(
            lines, candidates, tolerances,
            require_manual_confirmation=request.require_manual_confirmation,
            suggestion_limit=request.suggestion_limit
        )
    except MatchingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error matching lines: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Error matching lines: {str(e)}")

    return {
        "decisions": [decision.to_dict() for decision in decisions],
        "summary": summarize_decisions(decisions)
    }


# Main entry point for uvicorn
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
