"""Import orchestration (Silver Layer): validate, resolve references, persist.

Each call processes one parsed file. Rows are validated independently, only
valid rows reach reference resolution, and normalized records are written in
batches. Per-row problems are collected into the ImportSummary; only an
unreachable store aborts the run.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from importer_340b.config import Settings
from importer_340b.errors import DuplicateRecordError, StorageError, StorageUnavailableError
from importer_340b.ingest.loaders import ProgressCallback
from importer_340b.ingest.validators import (
    aggregate_validation_results,
    validate_claim,
    validate_prescription,
)
from importer_340b.models import (
    ImportProgress,
    ImportSummary,
    NormalizedRecord,
    ParsedClaim,
    ParsedPrescription,
    ProgressStatus,
    RecordKind,
    ValidationError,
    ValidationResult,
)
from importer_340b.resolve.references import (
    CLAIM_ROLES,
    PRESCRIPTION_ROLES,
    ReferenceRequest,
    claim_references,
    prescription_references,
)
from importer_340b.resolve.resolver import ReferenceResolver
from importer_340b.store.base import ReferenceStore

logger = logging.getLogger(__name__)

Candidate = ParsedPrescription | ParsedClaim


@dataclass(frozen=True)
class _Pipeline:
    """What differs between the scripts and claims imports."""

    kind: RecordKind
    noun: str
    key_field: str
    key_attribute: str
    roles: tuple[str, ...]
    validate: Callable[[Any, int], ValidationResult]
    references: Callable[[Any], list[ReferenceRequest]]


SCRIPTS_PIPELINE = _Pipeline(
    kind=RecordKind.PRESCRIPTION,
    noun="prescriptions",
    key_field="Prescription Identifier",
    key_attribute="prescription_identifier",
    roles=PRESCRIPTION_ROLES,
    validate=validate_prescription,
    references=prescription_references,
)

CLAIMS_PIPELINE = _Pipeline(
    kind=RecordKind.CLAIM,
    noun="claims",
    key_field="Prescription Number",
    key_attribute="prescription_number",
    roles=CLAIM_ROLES,
    validate=validate_claim,
    references=claim_references,
)


def _notify(
    callback: ProgressCallback | None,
    percentage: int,
    status: ProgressStatus,
    message: str,
    current: int = 0,
    total: int = 0,
) -> None:
    if callback is not None:
        callback(
            ImportProgress(
                current=current,
                total=total,
                percentage=percentage,
                status=status,
                message=message,
            )
        )


def process_scripts_import(
    records: Sequence[ParsedPrescription],
    store: ReferenceStore,
    on_progress: ProgressCallback | None = None,
    settings: Settings | None = None,
) -> ImportSummary:
    """Import parsed prescriptions.

    Args:
        records: Candidates from the scripts parser.
        store: Reference and record storage.
        on_progress: Optional progress callback (0-100% for this phase).
        settings: Batch size and other runtime settings.

    Returns:
        ImportSummary for the run.

    Raises:
        StorageUnavailableError: If the store cannot be reached.
    """
    return _process(SCRIPTS_PIPELINE, records, store, on_progress, settings)


def process_claims_import(
    records: Sequence[ParsedClaim],
    store: ReferenceStore,
    on_progress: ProgressCallback | None = None,
    settings: Settings | None = None,
) -> ImportSummary:
    """Import parsed claims. Same contract as ``process_scripts_import``."""
    return _process(CLAIMS_PIPELINE, records, store, on_progress, settings)


def _process(
    pipeline: _Pipeline,
    records: Sequence[Candidate],
    store: ReferenceStore,
    on_progress: ProgressCallback | None,
    settings: Settings | None,
) -> ImportSummary:
    summary = ImportSummary(total_records=len(records))

    # No records: nothing to validate and the store is never contacted
    if not records:
        logger.info(f"No {pipeline.noun} to import")
        _notify(on_progress, 100, ProgressStatus.COMPLETE, f"No {pipeline.noun} to import")
        return summary

    settings = settings or Settings.from_env()
    total = len(records)

    # Step 1: Validate every record
    _notify(on_progress, 5, ProgressStatus.VALIDATING, f"Validating {total:,} {pipeline.noun}...")
    valid: list[Candidate] = []
    results: list[ValidationResult] = []
    for record in records:
        result = pipeline.validate(record, record.row)
        results.append(result)
        if result.is_valid:
            valid.append(record)

    aggregate = aggregate_validation_results(results)
    summary.errors.extend(aggregate.all_errors)
    summary.warnings.extend(aggregate.all_warnings)
    logger.info(
        f"Validated {total} {pipeline.noun}: {len(valid)} valid, "
        f"{total - len(valid)} with errors, {aggregate.total_warnings} warnings"
    )
    if aggregate.errors_by_field:
        logger.warning(f"Validation errors by field: {aggregate.errors_by_field}")

    # Step 2: Resolve references for valid records only
    _notify(on_progress, 20, ProgressStatus.RESOLVING, "Resolving reference data...")
    resolver = ReferenceResolver(store)
    normalized = _resolve(pipeline, valid, resolver, summary)
    summary.reference_data_created = resolver.created
    logger.info(
        f"Resolved references for {len(normalized)} {pipeline.noun}; "
        f"created {resolver.created.total()} reference entities"
    )

    # Step 3: Persist in batches
    _notify(
        on_progress,
        60,
        ProgressStatus.INSERTING,
        f"Inserting {len(normalized):,} {pipeline.noun}...",
        total=len(normalized),
    )
    summary.records_imported = _persist(
        pipeline, normalized, store, settings.batch_size, summary, on_progress
    )
    summary.records_skipped = summary.total_records - summary.records_imported
    summary.errors.sort(key=lambda e: e.row)

    _notify(
        on_progress,
        100,
        ProgressStatus.COMPLETE,
        f"Imported {summary.records_imported:,} of {total:,} {pipeline.noun}",
        current=summary.records_imported,
        total=total,
    )
    logger.info(
        f"Imported {summary.records_imported} {pipeline.noun}, "
        f"skipped {summary.records_skipped}"
    )
    return summary


def _resolve(
    pipeline: _Pipeline,
    records: list[Candidate],
    resolver: ReferenceResolver,
    summary: ImportSummary,
) -> list[NormalizedRecord]:
    """Resolve every record's references; records with a failed reference are dropped."""
    requests_by_record = [(record, pipeline.references(record)) for record in records]
    outcome = resolver.resolve_all(
        request for _, requests in requests_by_record for request in requests
    )

    normalized = []
    for record, requests in requests_by_record:
        reference_ids: dict[str, str | None] = dict.fromkeys(pipeline.roles)
        failed = False
        for request in requests:
            failure = outcome.failure_for(request.entity)
            if failure is not None:
                failed = True
                summary.errors.append(
                    ValidationError(
                        row=record.row,
                        field=request.field,
                        value=request.entity.natural_key,
                        message=f"Could not resolve {request.field}: {failure}",
                    )
                )
                continue
            reference_ids[request.role] = outcome.id_for(request.entity)

        if not failed:
            normalized.append(NormalizedRecord.from_candidate(pipeline.kind, record, reference_ids))
    return normalized


def _persist(
    pipeline: _Pipeline,
    records: list[NormalizedRecord],
    store: ReferenceStore,
    batch_size: int,
    summary: ImportSummary,
    on_progress: ProgressCallback | None,
) -> int:
    """Insert records in batches, retrying a failed batch row by row.

    Returns:
        Number of records written.
    """
    imported = 0
    total = len(records)

    for start in range(0, total, batch_size):
        batch = records[start : start + batch_size]
        try:
            imported += store.insert_batch(pipeline.kind, [r.as_row() for r in batch])
        except StorageUnavailableError:
            raise
        except StorageError as e:
            logger.warning(
                f"Batch of {len(batch)} {pipeline.noun} at row {batch[0].row} failed ({e}); "
                "retrying row by row"
            )
            imported += _persist_rows(pipeline, batch, store, summary)

        done = min(start + batch_size, total)
        _notify(
            on_progress,
            60 + (done * 35) // max(total, 1),
            ProgressStatus.INSERTING,
            f"Inserted {done:,} of {total:,} {pipeline.noun}",
            current=done,
            total=total,
        )

    return imported


def _persist_rows(
    pipeline: _Pipeline,
    batch: list[NormalizedRecord],
    store: ReferenceStore,
    summary: ImportSummary,
) -> int:
    imported = 0
    for record in batch:
        key = record.values.get(pipeline.key_attribute)
        try:
            imported += store.insert_batch(pipeline.kind, [record.as_row()])
        except StorageUnavailableError:
            raise
        except DuplicateRecordError:
            summary.errors.append(
                ValidationError(
                    row=record.row,
                    field=pipeline.key_field,
                    value=key,
                    message=f"Duplicate record: {pipeline.key_field} {key} already imported",
                )
            )
        except StorageError as e:
            summary.errors.append(
                ValidationError(
                    row=record.row,
                    field=pipeline.key_field,
                    value=key,
                    message=f"Failed to save record: {e}",
                )
            )
    return imported
