"""Scripts and claims file parsers (Bronze Layer).

Scripts arrive as Excel workbooks (first sheet, one prescription per row);
claims arrive as ClaimReports CSV exports. Both parsers stream candidate
records row by row and report progress through an optional callback.
"""

import io
import logging
import zipfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, BinaryIO

import pandas as pd
import polars as pl
from openpyxl.utils.exceptions import InvalidFileException

from importer_340b.errors import EmptyFileError, FileFormatError
from importer_340b.ingest.normalizers import (
    coerce_date,
    is_blank,
    parse_currency,
    to_bool,
    to_number,
    to_text,
)
from importer_340b.models import (
    ImportProgress,
    ParsedClaim,
    ParsedPrescription,
    ProgressStatus,
    RawRecord,
)

logger = logging.getLogger(__name__)

FileSource = str | Path | bytes | BinaryIO
ProgressCallback = Callable[[ImportProgress], None]

SCRIPTS_PROGRESS_INTERVAL = 100
CLAIMS_PROGRESS_INTERVAL = 500

# Scripts workbook columns: field -> (column header, converter)
# PatientSsn is never read.
SCRIPTS_COLUMNS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "prescription_identifier": ("PrescriptionIdentifier", to_number),
    "prescribed_date": ("PrescribedDate", coerce_date),
    "patient_first_name": ("PatientFirstName", to_text),
    "patient_last_name": ("PatientLastName", to_text),
    "prescriber_last_name": ("PractitionerLastName", to_text),
    "organization_identifier": ("OrganizationIdentifier", to_text),
    "encounter_fin": ("EncounterFin", to_number),
    "encounter_start_date": ("EncounterStartDateTime", coerce_date),
    "encounter_end_date": ("EncounterEndDateTime", coerce_date),
    "patient_mrn": ("PatientMrn", to_text),
    "patient_middle_name": ("PatientMiddleName", to_text),
    "patient_suffix": ("PatientSuffix", to_text),
    "patient_dob": ("PatientDateOfBirth", coerce_date),
    "prescriber_first_name": ("PractitionerFirstName", to_text),
    "prescriber_middle_name": ("PractitionerMiddleName", to_text),
    "prescriber_suffix": ("PractitionerSuffix", to_text),
    "prescriber_npi": ("PractitionerNpi", to_text),
    "prescriber_dea": ("PractitionerDeaNumber", to_text),
    "location_identifier": ("LocationIdentifier", to_text),
    "location_name": ("LocationName", to_text),
    "pharmacy_name": ("PharmacyName", to_text),
    "pharmacy_npi": ("PharmacyNpi", to_text),
    "pharmacy_nabp": ("PharmacyNabp", to_text),
    "transmission_method": ("TransmissionMethod", to_text),
    "status": ("Status", to_text),
    "ndc_code": ("NdcCode", to_text),
    "medication_name": ("MedicationName", to_text),
    "dispense_quantity": ("DispenseQuantity", to_number),
    "dispense_quantity_unit": ("DispenseQuantityUnit", to_text),
    "refills_authorized": ("Refills", to_number),
    "days_supply": ("DaysSupply", to_number),
    "frequency": ("Frequency", to_text),
    "primary_insurance_company": ("InsuranceCompany", to_text),
    "primary_group": ("Group", to_text),
    "primary_subscriber_number": ("SubscriberNumber", to_text),
    "primary_bin": ("Bin", to_text),
    "primary_pcn": ("Pcn", to_text),
    "primary_is_medicaid": ("IsMedicaid", to_bool),
    "secondary_insurance_company": ("SecondaryInsuranceCompany", to_text),
    "secondary_group": ("SecondaryGroup", to_text),
    "secondary_subscriber_number": ("SecondarySubscriberNumber", to_text),
    "secondary_bin": ("SecondaryBin", to_text),
    "secondary_pcn": ("SecondaryPcn", to_text),
    "secondary_is_medicaid": ("SecondaryIsMedicaid", to_bool),
    "dose": ("Dose", to_text),
    "dose_units": ("DoseUnits", to_text),
    "drug_form": ("DrugForm", to_text),
    "route_of_administration": ("RouteOfAdministration", to_text),
}

# ClaimReports CSV columns: field -> (column header, converter)
CLAIMS_COLUMNS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "prescription_number": ("Prescription #", to_number),
    "date_rx_written": ("Date Rx Written", coerce_date),
    "fill_date": ("Fill Date", coerce_date),
    "refill_number": ("Refill #", to_number),
    "covered_entity_name": ("Covered Entity", to_text),
    "opaid": ("OPAID", to_text),
    "chain_pharmacy": ("Chain Pharmacy", to_text),
    "pharmacy_name": ("Pharmacy", to_text),
    "pharmacy_nabp_npi": ("Pharmacy NABP or NPI", to_text),
    "transaction_code": ("Transaction Code", to_text),
    "bin": ("BIN", to_text),
    "pcn": ("PCN", to_text),
    "plan_group": ("Group", to_text),
    "secondary_bin": ("Secondary BIN", to_text),
    "secondary_pcn": ("Secondary PCN", to_text),
    "secondary_group": ("Secondary Group", to_text),
    "other_coverage_code": ("Other Coverage Code", to_text),
    "submission_clarification_code": ("Submission Clarification Code", to_text),
    "claim_date": ("Claim Date", coerce_date),
    "claim_id": ("Claim ID", to_number),
    "patient_id_external": ("Patient ID", to_text),
    "gender": ("Gender", to_text),
    "first_name": ("First Name", to_text),
    "last_name": ("Last Name", to_text),
    "date_of_birth": ("DOB", coerce_date),
    "prescriber_name": ("Prescriber Name", to_text),
    "prescriber_npi_dea": ("Prescriber NPI/DEA", to_text),
    "ndc": ("NDC", to_text),
    "drug_name": ("Drug Name", to_text),
    "package_size": ("Package Size", to_number),
    "manufacturer_name": ("Mfg. Name", to_text),
    "drug_indicator": ("Drug Indicator", to_text),
    "qty_dispensed": ("Qty Dispensed", to_number),
    "days_supply": ("Days supply", to_number),
    "claim_type": ("Claim Type", to_text),
    "claim_sub_type": ("Claim Sub Type", to_text),
    "reason": ("Reason", to_text),
    "sub_reason": ("Sub Reason", to_text),
    "patient_pay": ("Patient Pay", parse_currency),
    "third_party_payment": ("Third Party Payment", parse_currency),
    "total_payment": ("Total Payment", parse_currency),
    "dispensing_fee": ("Disp. Fee", parse_currency),
    "ce_receivable": ("CE Receivable", parse_currency),
    "drug_cost_340b": ("340B Drug Cost", parse_currency),
    "total_claim_cost": ("Total Claim Cost", parse_currency),
    "profit_or_loss": ("Profit OR Loss", parse_currency),
    "retail_drug_cost": ("Retail Drug Cost", parse_currency),
    "comments": ("Comments", to_text),
    "medical_record_number": ("Medical Record #", to_text),
    "replenishment_status": ("Replenishment Status", to_text),
    "billing_model": ("Billing Model", to_text),
    "claim_captured_date": ("Claim Captured Date", coerce_date),
    "trued_up_units": ("Trued Up Units", to_number),
    "trued_up_cost": ("Trued Up Cost", parse_currency),
    "trued_up_date": ("Trued Up Date", coerce_date),
}

REQUIRED_SCRIPTS_COLUMNS = ["PrescriptionIdentifier", "PrescribedDate"]
REQUIRED_CLAIMS_COLUMNS = ["Prescription #", "Date Rx Written", "Fill Date", "Refill #"]


def _notify(callback: ProgressCallback | None, **progress: Any) -> None:
    if callback is not None:
        callback(ImportProgress(**progress))


def _as_readable(source: FileSource) -> Any:
    """Wrap raw bytes so pandas/polars can read them like a file."""
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(source)
    return source


def _check_columns(columns: list[str], required: list[str], file_label: str) -> None:
    missing = [c for c in required if c not in columns]
    if missing:
        raise FileFormatError(
            f"{file_label} is missing required columns: {', '.join(missing)}"
        )


def _is_blank_row(values: dict[str, Any]) -> bool:
    return all(is_blank(v) for v in values.values())


def _iter_raw_records(
    rows: list[dict[str, Any]],
    on_progress: ProgressCallback | None,
    interval: int,
    noun: str,
) -> Iterator[RawRecord]:
    """Yield non-blank rows as RawRecords, reporting progress every ``interval`` rows.

    Parsing progress runs from 25% to 95%; the caller reports the bookends.
    """
    total = len(rows)
    ordinal = 0
    blank_rows = 0

    for index, values in enumerate(rows):
        if index % interval == 0 or index == total - 1:
            _notify(
                on_progress,
                current=index + 1,
                total=total,
                percentage=25 + (index * 70) // max(total, 1),
                status=ProgressStatus.PARSING,
                message=f"Processing row {index + 1:,} of {total:,}...",
            )

        if _is_blank_row(values):
            blank_rows += 1
            continue

        ordinal += 1
        yield RawRecord(row=ordinal, values=values)

    if blank_rows:
        logger.info(f"Dropped {blank_rows} blank {noun} rows")


def _build(
    record_cls: type,
    columns: dict[str, tuple[str, Callable[[Any], Any]]],
    raw: RawRecord,
    **extra: Any,
) -> Any:
    values = {name: convert(raw.get(column)) for name, (column, convert) in columns.items()}
    return record_cls(row=raw.row, **values, **extra)


def build_prescription(raw: RawRecord, source_file: str | None = None) -> ParsedPrescription:
    """Map one scripts workbook row onto a prescription candidate."""
    return _build(ParsedPrescription, SCRIPTS_COLUMNS, raw, source_file=source_file)


def build_claim(raw: RawRecord) -> ParsedClaim:
    """Map one ClaimReports CSV row onto a claim candidate."""
    return _build(ParsedClaim, CLAIMS_COLUMNS, raw)


# ============ SCRIPTS (EXCEL) ============


def load_excel_rows(source: FileSource, sheet_name: str | int = 0) -> list[dict[str, Any]]:
    """Load one worksheet as a list of column -> cell dictionaries.

    Cells are read as Python objects (no type inference) so identifiers keep
    their digits and dates arrive as datetimes or Excel serial numbers.

    Args:
        source: Path, raw bytes, or binary file object of an .xlsx workbook.
        sheet_name: Worksheet name or index (first sheet by default).

    Returns:
        List of row dictionaries with trimmed headers and None for blanks.

    Raises:
        FileFormatError: If the workbook cannot be read.
        EmptyFileError: If the sheet has no header row.
    """
    try:
        frame = pd.read_excel(
            _as_readable(source), sheet_name=sheet_name, dtype=object, engine="openpyxl"
        )
    except (ValueError, OSError, KeyError, zipfile.BadZipFile, InvalidFileException) as e:
        raise FileFormatError(f"Could not read Excel workbook: {e}") from e

    if len(frame.columns) == 0:
        raise EmptyFileError("No sheets with data found in the Excel file")

    frame.columns = [str(c).strip() for c in frame.columns]
    frame = frame.astype(object).where(pd.notna(frame), None)
    return frame.to_dict("records")


def iter_scripts_records(
    source: FileSource,
    on_progress: ProgressCallback | None = None,
    source_file: str | None = None,
    progress_interval: int = SCRIPTS_PROGRESS_INTERVAL,
) -> Iterator[ParsedPrescription]:
    """Stream prescription candidates from a scripts workbook.

    Raises:
        FileFormatError: If the workbook is unreadable or lacks key columns.
        EmptyFileError: If the workbook has no data rows.
    """
    _notify(on_progress, status=ProgressStatus.READING, message="Reading file...")
    _notify(
        on_progress,
        status=ProgressStatus.READING,
        message="Parsing Excel workbook...",
        percentage=10,
    )
    rows = load_excel_rows(source)
    if rows:
        _check_columns(list(rows[0].keys()), REQUIRED_SCRIPTS_COLUMNS, "Scripts file")
    if not rows:
        raise EmptyFileError("Scripts file contains no data rows")

    _notify(
        on_progress,
        status=ProgressStatus.PARSING,
        message=f"Processing {len(rows):,} rows...",
        total=len(rows),
        percentage=25,
    )

    for raw in _iter_raw_records(rows, on_progress, progress_interval, "scripts"):
        yield build_prescription(raw, source_file=source_file)


def parse_scripts_file(
    source: FileSource,
    on_progress: ProgressCallback | None = None,
    source_file: str | None = None,
    progress_interval: int = SCRIPTS_PROGRESS_INTERVAL,
) -> list[ParsedPrescription]:
    """Parse a scripts workbook into prescription candidates.

    Args:
        source: Path, raw bytes, or binary file object of the workbook.
        on_progress: Optional progress callback.
        source_file: File name recorded on every prescription.
        progress_interval: Rows between progress updates.

    Returns:
        Candidates in file order, each carrying its 1-based row ordinal.
    """
    try:
        prescriptions = list(
            iter_scripts_records(source, on_progress, source_file, progress_interval)
        )
    except Exception as e:
        _notify(on_progress, status=ProgressStatus.ERROR, message=f"Error: {e}")
        raise

    _notify(
        on_progress,
        current=len(prescriptions),
        total=len(prescriptions),
        percentage=100,
        status=ProgressStatus.COMPLETE,
        message=f"Parsed {len(prescriptions):,} prescriptions",
    )
    logger.info(f"Parsed {len(prescriptions)} prescriptions from {source_file or 'upload'}")
    return prescriptions


# ============ CLAIMS (CSV) ============


def load_csv_rows(source: FileSource) -> list[dict[str, Any]]:
    """Load a CSV as a list of column -> text dictionaries.

    Every column is read as text; conversion happens per field so that a bad
    cell in one row cannot fail the whole file.

    Raises:
        FileFormatError: If the CSV cannot be parsed.
        EmptyFileError: If the file has no header row.
    """
    try:
        frame = pl.read_csv(
            _as_readable(source),
            infer_schema_length=0,
            encoding="utf8-lossy",
            truncate_ragged_lines=True,
        )
        # Headers differing only in surrounding spaces collide here
        frame = frame.rename({c: c.strip() for c in frame.columns})
    except pl.exceptions.NoDataError as e:
        raise EmptyFileError("Claims file is empty") from e
    except (pl.exceptions.PolarsError, OSError) as e:
        raise FileFormatError(f"Could not read CSV file: {e}") from e

    return list(frame.iter_rows(named=True))


def iter_claims_records(
    source: FileSource,
    on_progress: ProgressCallback | None = None,
    progress_interval: int = CLAIMS_PROGRESS_INTERVAL,
) -> Iterator[ParsedClaim]:
    """Stream claim candidates from a ClaimReports CSV.

    Raises:
        FileFormatError: If the CSV is unreadable or lacks key columns.
        EmptyFileError: If the CSV has no data rows.
    """
    _notify(on_progress, status=ProgressStatus.READING, message="Reading file...")
    rows = load_csv_rows(source)
    if rows:
        _check_columns(list(rows[0].keys()), REQUIRED_CLAIMS_COLUMNS, "Claims file")
    if not rows:
        raise EmptyFileError("Claims file contains no data rows")

    _notify(
        on_progress,
        status=ProgressStatus.PARSING,
        message=f"Preparing to parse {len(rows):,} rows...",
        total=len(rows),
        percentage=5,
    )

    for raw in _iter_raw_records(rows, on_progress, progress_interval, "claims"):
        yield build_claim(raw)


def parse_claims_file(
    source: FileSource,
    on_progress: ProgressCallback | None = None,
    progress_interval: int = CLAIMS_PROGRESS_INTERVAL,
) -> list[ParsedClaim]:
    """Parse a ClaimReports CSV into claim candidates.

    Args:
        source: Path, raw bytes, or binary file object of the CSV.
        on_progress: Optional progress callback.
        progress_interval: Rows between progress updates.

    Returns:
        Candidates in file order, each carrying its 1-based row ordinal.
    """
    try:
        claims = list(iter_claims_records(source, on_progress, progress_interval))
    except Exception as e:
        _notify(on_progress, status=ProgressStatus.ERROR, message=f"Error: {e}")
        raise

    _notify(
        on_progress,
        current=len(claims),
        total=len(claims),
        percentage=100,
        status=ProgressStatus.COMPLETE,
        message=f"Parsed {len(claims):,} claims",
    )
    logger.info(f"Parsed {len(claims)} claims")
    return claims
