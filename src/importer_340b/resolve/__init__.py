"""Reference resolution: natural keys, reference extraction, find-or-create."""

from importer_340b.resolve.keys import (
    canonical_text,
    covered_entity_key,
    drug_key,
    insurance_plan_key,
    location_key,
    patient_key,
    pharmacy_key,
    prescriber_key,
)
from importer_340b.resolve.references import (
    ReferenceRequest,
    claim_references,
    prescription_references,
)
from importer_340b.resolve.resolver import ReferenceResolver, ResolutionOutcome

__all__ = [
    "canonical_text",
    "covered_entity_key",
    "drug_key",
    "insurance_plan_key",
    "location_key",
    "patient_key",
    "pharmacy_key",
    "prescriber_key",
    "ReferenceRequest",
    "claim_references",
    "prescription_references",
    "ReferenceResolver",
    "ResolutionOutcome",
]
