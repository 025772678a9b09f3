"""Data ingestion module for the 340B importer.

This module handles:
- Parsing scripts workbooks and claims CSVs into candidate records
- Normalizing raw cell values
- Validating candidates field by field
"""

from importer_340b.ingest.loaders import (
    build_claim,
    build_prescription,
    iter_claims_records,
    iter_scripts_records,
    load_csv_rows,
    load_excel_rows,
    parse_claims_file,
    parse_scripts_file,
)
from importer_340b.ingest.normalizers import (
    coerce_date,
    normalize_ndc,
    parse_currency,
    parse_date,
    to_bool,
    to_number,
    to_text,
)
from importer_340b.ingest.validators import (
    aggregate_validation_results,
    validate_claim,
    validate_date,
    validate_date_order,
    validate_ndc,
    validate_npi,
    validate_number,
    validate_prescription,
    validate_required,
)

__all__ = [
    # Loaders
    "load_excel_rows",
    "load_csv_rows",
    "iter_scripts_records",
    "iter_claims_records",
    "parse_scripts_file",
    "parse_claims_file",
    "build_prescription",
    "build_claim",
    # Normalizers
    "coerce_date",
    "normalize_ndc",
    "parse_currency",
    "parse_date",
    "to_bool",
    "to_number",
    "to_text",
    # Validators
    "validate_date",
    "validate_date_order",
    "validate_number",
    "validate_ndc",
    "validate_npi",
    "validate_required",
    "validate_claim",
    "validate_prescription",
    "aggregate_validation_results",
]
