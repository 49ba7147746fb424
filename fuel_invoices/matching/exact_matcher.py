"""
Exact matching for license plates and fuel types.

Plates are never fuzzy-matched: a wrong plate bills the wrong vehicle.
Fuel types are compared after canonicalization to macro fuel types.
"""

from typing import Iterable, Optional

from fuel_invoices.models import DimensionScore, ReferenceEntity
from fuel_invoices.normalization import DEFAULT_FUEL_TYPE_CATALOG, FuelTypeCatalog, normalize_plate

import logging
logger = logging.getLogger(__name__)

INACTIVE_STATUSES = frozenset({"DISPOSED"})


class ExactMatcher:
    """
    Performs exact comparisons on normalized identifiers.

    Args:
        fuel_catalog: Alias table used to canonicalize fuel types
    """

    def __init__(self, fuel_catalog: Optional[FuelTypeCatalog] = None):
        """Initialize exact matcher."""
        self.fuel_catalog = fuel_catalog or DEFAULT_FUEL_TYPE_CATALOG
        self.logger = logging.getLogger(f"{__name__}.ExactMatcher")

    def match_license_plate(self, extracted: Optional[str], reference: Optional[str],
                            weight: float = 1.0) -> DimensionScore:
        """Score 1.0 for identical normalized plates, 0.0 otherwise."""
        extracted_plate = normalize_plate(extracted)
        reference_plate = normalize_plate(reference)

        if extracted_plate is None or reference_plate is None:
            return DimensionScore(dimension='licensePlate', score=None, weight=weight,
                                  detail='missing', expected_value=reference, actual_value=extracted)

        matches = extracted_plate == reference_plate
        self.logger.debug(f"Plate {extracted_plate} vs {reference_plate}: {matches}")
        return DimensionScore(
            dimension='licensePlate',
            score=1.0 if matches else 0.0,
            weight=weight,
            detail='exact' if matches else 'mismatch',
            expected_value=reference_plate,
            actual_value=extracted_plate
        )

    def match_fuel_type(self, extracted: Optional[str], reference: Optional[str],
                        weight: float = 1.0) -> DimensionScore:
        """Score 1.0 when both fuel types map to the same macro fuel type."""
        extracted_type = self.fuel_catalog.canonicalize(extracted)
        reference_type = self.fuel_catalog.canonicalize(reference)

        if extracted_type is None or reference_type is None:
            return DimensionScore(dimension='fuelType', score=None, weight=weight,
                                  detail='missing', expected_value=reference, actual_value=extracted)

        matches = extracted_type.upper() == reference_type.upper()
        self.logger.debug(f"Fuel type {extracted!r} ({extracted_type}) vs {reference!r} ({reference_type}): {matches}")
        return DimensionScore(
            dimension='fuelType',
            score=1.0 if matches else 0.0,
            weight=weight,
            detail=f"{extracted_type} vs {reference_type}",
            expected_value=reference_type,
            actual_value=extracted_type
        )

    def resolve_license_plate(self, plate: Optional[str],
                              entities: Iterable[ReferenceEntity]) -> Optional[ReferenceEntity]:
        """
        Find the reference entity carrying ``plate``.

        Entities whose ``status`` attribute is DISPOSED are skipped. When
        several entities share the plate the most recent one wins.
        """
        normalized = normalize_plate(plate)
        if normalized is None:
            return None

        found = [
            entity for entity in entities
            if normalize_plate(entity.license_plate) == normalized
            and str(entity.attributes.get("status", "")).upper() not in INACTIVE_STATUSES
        ]
        if not found:
            self.logger.debug(f"No active entity for plate {normalized}")
            return None

        found.sort(key=lambda e: e.entity_id)
        found.sort(key=lambda e: (e.recency is not None, e.recency or 0), reverse=True)
        return found[0]
