"""Data models for the 340B scripts and claims importer."""

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar


class Severity(str, Enum):
    """Severity of a validation finding."""

    ERROR = "error"
    WARNING = "warning"


class ImportStatus(str, Enum):
    """Lifecycle status of an import audit log entry."""

    PROCESSING = "Processing"
    SUCCESS = "Success"
    PARTIAL = "Partial"
    FAILED = "Failed"


class FileType(str, Enum):
    """Kind of uploaded source file."""

    SCRIPTS = "Scripts"
    CLAIMS = "Claims"


class ProgressStatus(str, Enum):
    """Coarse phase tag reported to progress callbacks."""

    READING = "reading"
    PARSING = "parsing"
    VALIDATING = "validating"
    RESOLVING = "resolving"
    INSERTING = "inserting"
    COMPLETE = "complete"
    ERROR = "error"


class EntityType(str, Enum):
    """Reference entity types. Values double as storage table names."""

    COVERED_ENTITY = "covered_entities"
    PHARMACY = "pharmacies"
    PRESCRIBER = "prescribers"
    LOCATION = "locations"
    DRUG = "drugs"
    PATIENT = "patients"
    INSURANCE_PLAN = "insurance_plans"


class RecordKind(str, Enum):
    """Normalized record kinds. Values double as storage table names."""

    PRESCRIPTION = "prescriptions"
    CLAIM = "claims"


@dataclass(frozen=True)
class ValidationError:
    """A single field-level finding for one source row.

    Errors block the row from being imported; warnings are surfaced to the
    operator but never block.
    """

    row: int
    field: str
    value: Any
    message: str
    severity: Severity = Severity.ERROR

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        value = self.value
        if isinstance(value, (date, datetime, Decimal)):
            value = str(value)
        return {
            "row": self.row,
            "field": self.field,
            "value": value,
            "message": self.message,
            "severity": self.severity.value,
        }


@dataclass
class ValidationResult:
    """Outcome of validating one candidate record."""

    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)


@dataclass(frozen=True)
class ImportProgress:
    """Progress notification passed to caller callbacks."""

    current: int = 0
    total: int = 0
    percentage: int = 0
    status: ProgressStatus = ProgressStatus.READING
    message: str = ""


@dataclass(frozen=True)
class RawRecord:
    """One physical source row: column name to raw cell value.

    Attributes:
        row: 1-based ordinal of the data row (the header is not counted).
        values: Read-only mapping of trimmed column name to cell value.
    """

    row: int
    values: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, column: str) -> Any:
        return self.values.get(column)


@dataclass
class ParsedPrescription:
    """Candidate prescription built from one scripts workbook row.

    Dates are ``datetime.date`` when the cell could be read as a date and the
    raw text otherwise; numeric fields likewise keep unreadable text so the
    validator can report it.
    """

    row: int
    prescription_identifier: Any = None
    prescribed_date: Any = None
    patient_first_name: str | None = None
    patient_last_name: str | None = None
    prescriber_last_name: str | None = None
    source_file: str | None = None
    organization_identifier: str | None = None
    encounter_fin: Any = None
    encounter_start_date: Any = None
    encounter_end_date: Any = None
    patient_mrn: str | None = None
    patient_middle_name: str | None = None
    patient_suffix: str | None = None
    patient_dob: Any = None
    prescriber_first_name: str | None = None
    prescriber_middle_name: str | None = None
    prescriber_suffix: str | None = None
    prescriber_npi: str | None = None
    prescriber_dea: str | None = None
    location_identifier: str | None = None
    location_name: str | None = None
    pharmacy_name: str | None = None
    pharmacy_npi: str | None = None
    pharmacy_nabp: str | None = None
    transmission_method: str | None = None
    status: str | None = None
    ndc_code: str | None = None
    medication_name: str | None = None
    dispense_quantity: Any = None
    dispense_quantity_unit: str | None = None
    refills_authorized: Any = None
    days_supply: Any = None
    frequency: str | None = None
    primary_insurance_company: str | None = None
    primary_group: str | None = None
    primary_subscriber_number: str | None = None
    primary_bin: str | None = None
    primary_pcn: str | None = None
    primary_is_medicaid: bool = False
    secondary_insurance_company: str | None = None
    secondary_group: str | None = None
    secondary_subscriber_number: str | None = None
    secondary_bin: str | None = None
    secondary_pcn: str | None = None
    secondary_is_medicaid: bool = False
    dose: str | None = None
    dose_units: str | None = None
    drug_form: str | None = None
    route_of_administration: str | None = None


@dataclass
class ParsedClaim:
    """Candidate claim built from one ClaimReports CSV row."""

    row: int
    prescription_number: Any = None
    date_rx_written: Any = None
    fill_date: Any = None
    refill_number: Any = None
    covered_entity_name: str | None = None
    opaid: str | None = None
    chain_pharmacy: str | None = None
    pharmacy_name: str | None = None
    pharmacy_nabp_npi: str | None = None
    transaction_code: str | None = None
    bin: str | None = None
    pcn: str | None = None
    plan_group: str | None = None
    secondary_bin: str | None = None
    secondary_pcn: str | None = None
    secondary_group: str | None = None
    other_coverage_code: str | None = None
    submission_clarification_code: str | None = None
    claim_date: Any = None
    claim_id: Any = None
    patient_id_external: str | None = None
    gender: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    date_of_birth: Any = None
    prescriber_name: str | None = None
    prescriber_npi_dea: str | None = None
    ndc: str | None = None
    drug_name: str | None = None
    package_size: Any = None
    manufacturer_name: str | None = None
    drug_indicator: str | None = None
    qty_dispensed: Any = None
    days_supply: Any = None
    claim_type: str | None = None
    claim_sub_type: str | None = None
    reason: str | None = None
    sub_reason: str | None = None
    patient_pay: Any = None
    third_party_payment: Any = None
    total_payment: Any = None
    dispensing_fee: Any = None
    ce_receivable: Any = None
    drug_cost_340b: Any = None
    total_claim_cost: Any = None
    profit_or_loss: Any = None
    retail_drug_cost: Any = None
    comments: str | None = None
    medical_record_number: str | None = None
    replenishment_status: str | None = None
    billing_model: str | None = None
    claim_captured_date: Any = None
    trued_up_units: Any = None
    trued_up_cost: Any = None
    trued_up_date: Any = None


# ============ REFERENCE ENTITIES ============


@dataclass(frozen=True)
class ReferenceEntity:
    """Shared lookup row identified by a natural key within its type."""

    entity_type: ClassVar[EntityType]

    natural_key: str

    def attributes(self) -> dict[str, Any]:
        """Return the entity's stored attributes, excluding the natural key."""
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "natural_key"}


@dataclass(frozen=True)
class CoveredEntity(ReferenceEntity):
    entity_type: ClassVar[EntityType] = EntityType.COVERED_ENTITY

    entity_name: str = "Unknown"
    opaid: str | None = None
    organization_identifier: str | None = None


@dataclass(frozen=True)
class Pharmacy(ReferenceEntity):
    entity_type: ClassVar[EntityType] = EntityType.PHARMACY

    pharmacy_name: str = "Unknown"
    npi_number: str | None = None
    nabp_number: str | None = None
    chain_pharmacy: str | None = None


@dataclass(frozen=True)
class Prescriber(ReferenceEntity):
    entity_type: ClassVar[EntityType] = EntityType.PRESCRIBER

    last_name: str = "Unknown"
    first_name: str | None = None
    middle_name: str | None = None
    suffix: str | None = None
    npi: str | None = None
    dea_number: str | None = None


@dataclass(frozen=True)
class Location(ReferenceEntity):
    entity_type: ClassVar[EntityType] = EntityType.LOCATION

    location_name: str = "Unknown"
    location_identifier: str | None = None
    covered_entity_id: str | None = None


@dataclass(frozen=True)
class Drug(ReferenceEntity):
    """Drug reference row keyed by its 11-digit NDC."""

    entity_type: ClassVar[EntityType] = EntityType.DRUG

    ndc_code: str = ""
    drug_name: str | None = None
    manufacturer_name: str | None = None
    package_size: float | None = None
    drug_indicator: str | None = None
    dose: str | None = None
    dose_units: str | None = None
    drug_form: str | None = None
    route_of_administration: str | None = None


@dataclass(frozen=True)
class Patient(ReferenceEntity):
    entity_type: ClassVar[EntityType] = EntityType.PATIENT

    first_name: str = "Unknown"
    last_name: str = "Unknown"
    middle_name: str | None = None
    suffix: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    mrn: str | None = None
    patient_id_external: str | None = None


@dataclass(frozen=True)
class InsurancePlan(ReferenceEntity):
    entity_type: ClassVar[EntityType] = EntityType.INSURANCE_PLAN

    insurance_company: str = "Unknown"
    bin: str | None = None
    pcn: str | None = None
    plan_group: str | None = None
    is_medicaid: bool = False
    is_primary: bool = True


# ============ NORMALIZED RECORDS ============


@dataclass(frozen=True)
class NormalizedRecord:
    """A validated candidate with its references replaced by surrogate ids.

    Attributes:
        kind: Prescription or claim.
        row: Source row ordinal, kept for diagnostics.
        values: Candidate field values (without the row ordinal).
        reference_ids: Surrogate id per reference role, e.g. ``pharmacy_id``.
    """

    kind: RecordKind
    row: int
    values: Mapping[str, Any]
    reference_ids: Mapping[str, str | None]

    @classmethod
    def from_candidate(
        cls,
        kind: RecordKind,
        candidate: ParsedPrescription | ParsedClaim,
        reference_ids: Mapping[str, str | None],
    ) -> "NormalizedRecord":
        values = asdict(candidate)
        row = values.pop("row")
        return cls(
            kind=kind,
            row=row,
            values=MappingProxyType(values),
            reference_ids=MappingProxyType(dict(reference_ids)),
        )

    def as_row(self) -> dict[str, Any]:
        """Flatten into a single column mapping for storage."""
        return {**self.values, **self.reference_ids}


# ============ SUMMARY & AUDIT LOG ============


@dataclass
class ReferenceDataCreated:
    """Count of reference entities created (not reused) during one run."""

    covered_entities: int = 0
    pharmacies: int = 0
    prescribers: int = 0
    locations: int = 0
    drugs: int = 0
    patients: int = 0
    insurance_plans: int = 0

    def increment(self, entity_type: EntityType, by: int = 1) -> None:
        setattr(self, entity_type.value, getattr(self, entity_type.value) + by)

    def total(self) -> int:
        return sum(asdict(self).values())

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class ImportSummary:
    """Result of one import run, returned to the caller.

    ``errors`` holds error-severity validation failures plus resolution and
    persistence failures, each carrying its source row. ``warnings`` are
    tracked for the operator and never affect import/skip classification.
    """

    total_records: int = 0
    records_imported: int = 0
    records_skipped: int = 0
    reference_data_created: ReferenceDataCreated = field(
        default_factory=ReferenceDataCreated
    )
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, object]:
        """Convert to dictionary for display and serialization."""
        return {
            "total_records": self.total_records,
            "records_imported": self.records_imported,
            "records_skipped": self.records_skipped,
            "reference_data_created": self.reference_data_created.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class ImportLog:
    """Audit record of one file-import attempt."""

    file_name: str
    file_type: FileType
    file_size_bytes: int | None = None
    status: ImportStatus = ImportStatus.PROCESSING
    total_records: int = 0
    records_imported: int = 0
    records_skipped: int = 0
    covered_entities_created: int = 0
    pharmacies_created: int = 0
    prescribers_created: int = 0
    patients_created: int = 0
    drugs_created: int = 0
    locations_created: int = 0
    insurance_plans_created: int = 0
    error_message: str | None = None
    errors_json: list[dict[str, Any]] = field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    id: str | None = None
