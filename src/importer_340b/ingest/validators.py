"""Field and record validation for scripts and claims imports.

Every function here is pure: it inspects one candidate value or record and
returns findings, never touching storage. Whether a rule yields an error or a
warning is a per-rule policy. Identity and financial fields that would corrupt
downstream aggregation are errors; suspicious formats and soft ranges are
warnings so visibly dirty but usable rows still import.
"""

import dataclasses
import logging
import numbers
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from importer_340b.ingest.normalizers import digits_only, is_blank, parse_date, to_number
from importer_340b.models import (
    ParsedClaim,
    ParsedPrescription,
    Severity,
    ValidationError,
    ValidationResult,
)

logger = logging.getLogger(__name__)

NDC_DIGITS = 11
NPI_DIGITS = 10
MAX_REFILLS = 99
# Record keys are stored in signed 64-bit integer columns
MAX_RECORD_NUMBER = 2**63 - 1
MIN_QUANTITY = 0.001
MAX_QUANTITY = 99999
MIN_DAYS_SUPPLY = 1
MAX_DAYS_SUPPLY = 365

_LETTERS = re.compile(r"[A-Za-z]")


def _finding(
    row: int,
    field_name: str,
    value: Any,
    message: str,
    severity: Severity = Severity.ERROR,
) -> ValidationError:
    return ValidationError(
        row=row, field=field_name, value=value, message=message, severity=severity
    )


def _display(value: Any) -> str:
    return value.isoformat() if isinstance(value, date) else str(value)


# ============ DATE VALIDATION ============


def validate_date(
    value: Any,
    field_name: str,
    row: int,
    *,
    required: bool = False,
    min_date: date | None = None,
    max_date: date | None = None,
    allow_future: bool = False,
    today: date | None = None,
) -> ValidationError | None:
    """Validate that a value is a readable date in a reasonable range.

    Args:
        value: Date, datetime, or date text from the parser.
        field_name: Display name used in the finding.
        row: Source row ordinal.
        required: Whether a blank value is an error.
        min_date: Soft lower bound; earlier dates produce a warning.
        max_date: Soft upper bound; later dates produce a warning.
        allow_future: Whether dates after today are accepted.
        today: Reference date for the future check (defaults to today).

    Returns:
        A ValidationError, or None if the value passes.
    """
    if is_blank(value):
        if required:
            return _finding(row, field_name, value, f"{field_name} is required")
        return None

    parsed = parse_date(value)
    if parsed is None:
        return _finding(row, field_name, value, f"{field_name} is not a valid date")

    reference = today or date.today()
    if not allow_future and parsed > reference:
        return _finding(row, field_name, value, f"{field_name} cannot be in the future")

    if min_date is not None and parsed < min_date:
        return _finding(
            row,
            field_name,
            value,
            f"{field_name} is before the minimum allowed date",
            Severity.WARNING,
        )

    if max_date is not None and parsed > max_date:
        return _finding(
            row,
            field_name,
            value,
            f"{field_name} is after the maximum allowed date",
            Severity.WARNING,
        )

    return None


def validate_date_order(
    earlier_value: Any,
    later_value: Any,
    earlier_field: str,
    later_field: str,
    row: int,
) -> ValidationError | None:
    """Validate that ``later_value`` is not before ``earlier_value``.

    Unreadable or blank dates are skipped silently; validate_date already
    reports them.
    """
    earlier = parse_date(earlier_value)
    later = parse_date(later_value)
    if earlier is None or later is None:
        return None

    if later < earlier:
        return _finding(
            row,
            later_field,
            later_value,
            f"{later_field} ({_display(later_value)}) cannot be before "
            f"{earlier_field} ({_display(earlier_value)})",
        )
    return None


# ============ NUMERIC VALIDATION ============


def validate_number(
    value: Any,
    field_name: str,
    row: int,
    *,
    required: bool = False,
    min_value: float | None = None,
    max_value: float | None = None,
    allow_zero: bool = True,
    allow_negative: bool = False,
    whole_number: bool = False,
    strict_max: bool = False,
) -> ValidationError | None:
    """Validate a numeric value against required/sign/range rules.

    Exceeding ``max_value`` is a warning (a soft ceiling) unless
    ``strict_max`` is set; every other violation is an error.

    Returns:
        A ValidationError, or None if the value passes.
    """
    if is_blank(value):
        if required:
            return _finding(row, field_name, value, f"{field_name} is required")
        return None

    number = value if isinstance(value, (numbers.Real, Decimal)) else to_number(value)
    if isinstance(number, bool) or not isinstance(number, (numbers.Real, Decimal)):
        return _finding(row, field_name, value, f"{field_name} must be a valid number")

    if whole_number and number != int(number):
        return _finding(row, field_name, value, f"{field_name} must be a whole number")

    if not allow_zero and number == 0:
        return _finding(row, field_name, value, f"{field_name} cannot be zero")

    if not allow_negative and number < 0:
        return _finding(row, field_name, value, f"{field_name} cannot be negative")

    if min_value is not None and number < min_value:
        return _finding(row, field_name, value, f"{field_name} must be at least {min_value}")

    if max_value is not None and number > max_value:
        return _finding(
            row,
            field_name,
            value,
            f"{field_name} must be at most {max_value}",
            Severity.ERROR if strict_max else Severity.WARNING,
        )

    return None


# ============ FORMAT VALIDATION ============


def validate_ndc(value: Any, row: int) -> ValidationError | None:
    """Warn when an NDC does not reduce to exactly 11 digits."""
    if is_blank(value):
        return None
    cleaned = digits_only(value)
    if len(cleaned) != NDC_DIGITS:
        return _finding(
            row,
            "NDC",
            value,
            f"NDC should be {NDC_DIGITS} digits, got {len(cleaned)} digits",
            Severity.WARNING,
        )
    return None


def validate_npi(value: Any, field_name: str, row: int) -> ValidationError | None:
    """Warn when an NPI does not reduce to exactly 10 digits."""
    if is_blank(value):
        return None
    cleaned = digits_only(value)
    if len(cleaned) != NPI_DIGITS:
        return _finding(
            row,
            field_name,
            value,
            f"{field_name} should be {NPI_DIGITS} digits, got {len(cleaned)} digits",
            Severity.WARNING,
        )
    return None


def validate_required(value: Any, field_name: str, row: int) -> ValidationError | None:
    """Error when a required text field is blank."""
    if is_blank(value):
        return _finding(row, field_name, value, f"{field_name} is required")
    return None


# ============ RECORD VALIDATION ============


class _Collector:
    """Sort findings into errors and warnings by their severity."""

    def __init__(self) -> None:
        self.errors: list[ValidationError] = []
        self.warnings: list[ValidationError] = []

    def add(self, finding: ValidationError | None, *, warning_only: bool = False) -> None:
        if finding is None:
            return
        if warning_only and finding.is_error:
            finding = dataclasses.replace(finding, severity=Severity.WARNING)
        if finding.is_error:
            self.errors.append(finding)
        else:
            self.warnings.append(finding)

    def result(self) -> ValidationResult:
        return ValidationResult(
            is_valid=not self.errors, errors=self.errors, warnings=self.warnings
        )


def validate_claim(
    claim: ParsedClaim, row: int, *, today: date | None = None
) -> ValidationResult:
    """Validate one claim candidate.

    Prescription number, both key dates and their order, and the refill
    number are hard rules. Quantity below its minimum is an error, above its
    ceiling a warning. Days supply, 340B drug cost, NDC and prescriber NPI
    findings are always warnings.

    Args:
        claim: Candidate claim from the claims parser.
        row: Source row ordinal used in every finding.
        today: Reference date for future-date checks.

    Returns:
        ValidationResult with errors and warnings separated.
    """
    collector = _Collector()

    collector.add(
        validate_number(
            claim.prescription_number,
            "Prescription Number",
            row,
            required=True,
            min_value=1,
            max_value=MAX_RECORD_NUMBER,
            whole_number=True,
            strict_max=True,
        )
    )

    collector.add(
        validate_date(claim.date_rx_written, "Date Rx Written", row, required=True, today=today)
    )
    collector.add(validate_date(claim.fill_date, "Fill Date", row, required=True, today=today))
    collector.add(
        validate_date_order(
            claim.date_rx_written, claim.fill_date, "Date Rx Written", "Fill Date", row
        )
    )

    # Refill number outside 0-99 is a structural error, not a soft ceiling
    collector.add(
        validate_number(
            claim.refill_number,
            "Refill Number",
            row,
            required=True,
            min_value=0,
            max_value=MAX_REFILLS,
            whole_number=True,
            strict_max=True,
        )
    )

    collector.add(
        validate_number(
            claim.qty_dispensed,
            "Quantity Dispensed",
            row,
            min_value=MIN_QUANTITY,
            max_value=MAX_QUANTITY,
        )
    )

    collector.add(
        validate_number(
            claim.days_supply,
            "Days Supply",
            row,
            min_value=MIN_DAYS_SUPPLY,
            max_value=MAX_DAYS_SUPPLY,
        ),
        warning_only=True,
    )

    collector.add(
        validate_number(claim.drug_cost_340b, "340B Drug Cost", row, min_value=0),
        warning_only=True,
    )

    collector.add(validate_ndc(claim.ndc, row))

    # The NPI/DEA column holds a DEA number when it contains letters
    npi_dea = claim.prescriber_npi_dea
    if not is_blank(npi_dea) and not _LETTERS.search(str(npi_dea)):
        collector.add(validate_npi(npi_dea, "Prescriber NPI", row))

    return collector.result()


def validate_prescription(
    prescription: ParsedPrescription, row: int, *, today: date | None = None
) -> ValidationResult:
    """Validate one prescription candidate.

    Prescription identifier, prescribed date, patient first/last name and
    prescriber last name are hard rules; NPI, NDC, dispense quantity, refills
    authorized and days supply findings are warnings.

    Args:
        prescription: Candidate prescription from the scripts parser.
        row: Source row ordinal used in every finding.
        today: Reference date for future-date checks.

    Returns:
        ValidationResult with errors and warnings separated.
    """
    collector = _Collector()

    collector.add(
        validate_number(
            prescription.prescription_identifier,
            "Prescription Identifier",
            row,
            required=True,
            min_value=1,
            max_value=MAX_RECORD_NUMBER,
            whole_number=True,
            strict_max=True,
        )
    )
    collector.add(
        validate_date(
            prescription.prescribed_date, "Prescribed Date", row, required=True, today=today
        )
    )

    collector.add(validate_required(prescription.patient_first_name, "Patient First Name", row))
    collector.add(validate_required(prescription.patient_last_name, "Patient Last Name", row))
    collector.add(
        validate_required(prescription.prescriber_last_name, "Prescriber Last Name", row)
    )

    collector.add(validate_npi(prescription.prescriber_npi, "Prescriber NPI", row))
    collector.add(validate_ndc(prescription.ndc_code, row))

    collector.add(
        validate_number(
            prescription.dispense_quantity,
            "Dispense Quantity",
            row,
            min_value=MIN_QUANTITY,
            max_value=MAX_QUANTITY,
        ),
        warning_only=True,
    )
    collector.add(
        validate_number(
            prescription.refills_authorized,
            "Refills Authorized",
            row,
            min_value=0,
            max_value=MAX_REFILLS,
        ),
        warning_only=True,
    )
    collector.add(
        validate_number(
            prescription.days_supply,
            "Days Supply",
            row,
            min_value=MIN_DAYS_SUPPLY,
            max_value=MAX_DAYS_SUPPLY,
        ),
        warning_only=True,
    )

    return collector.result()


# ============ BATCH AGGREGATION ============


@dataclass
class ValidationAggregate:
    """Totals and per-field counts across many validation results."""

    all_errors: list[ValidationError] = field(default_factory=list)
    all_warnings: list[ValidationError] = field(default_factory=list)
    errors_by_field: dict[str, int] = field(default_factory=dict)
    warnings_by_field: dict[str, int] = field(default_factory=dict)

    @property
    def total_errors(self) -> int:
        return len(self.all_errors)

    @property
    def total_warnings(self) -> int:
        return len(self.all_warnings)


def aggregate_validation_results(results: list[ValidationResult]) -> ValidationAggregate:
    """Combine per-record results into totals grouped by field."""
    aggregate = ValidationAggregate()
    for result in results:
        aggregate.all_errors.extend(result.errors)
        aggregate.all_warnings.extend(result.warnings)

    aggregate.errors_by_field = dict(Counter(e.field for e in aggregate.all_errors))
    aggregate.warnings_by_field = dict(Counter(w.field for w in aggregate.all_warnings))

    logger.debug(
        f"Aggregated {aggregate.total_errors} errors and "
        f"{aggregate.total_warnings} warnings across {len(results)} records"
    )
    return aggregate
