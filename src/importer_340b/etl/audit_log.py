"""Import audit log: one entry per file-import attempt.

An entry is written as Processing before parsing starts, so a crashed import
remains visible, and is finalized exactly once by ``complete`` or ``fail``.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone

from importer_340b.errors import ImportLogClosedError, StorageError
from importer_340b.models import FileType, ImportLog, ImportStatus, ImportSummary
from importer_340b.store.base import ReferenceStore

logger = logging.getLogger(__name__)

MAX_LOGGED_ERRORS = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def determine_status(summary: ImportSummary) -> ImportStatus:
    """Failed if nothing imported and errors occurred, Partial if some imported
    with errors, otherwise Success. Warnings never affect the status."""
    if summary.has_errors and summary.records_imported == 0:
        return ImportStatus.FAILED
    if summary.has_errors:
        return ImportStatus.PARTIAL
    return ImportStatus.SUCCESS


def _duration_ms(started_at: datetime, completed_at: datetime) -> int:
    return max(0, int((completed_at - started_at).total_seconds() * 1000))


class ImportAuditLog:
    """Write and finalize import log entries through the store."""

    def __init__(
        self,
        store: ReferenceStore,
        max_errors: int = MAX_LOGGED_ERRORS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._max_errors = max_errors
        self.now = clock

    def start(
        self,
        file_name: str,
        file_type: FileType | str,
        file_size: int | None = None,
        *,
        started_at: datetime | None = None,
    ) -> str:
        """Record a new import as Processing and return its log id."""
        log = ImportLog(
            file_name=file_name,
            file_type=FileType(file_type),
            file_size_bytes=file_size,
            status=ImportStatus.PROCESSING,
            started_at=started_at or self.now(),
        )
        log_id = self._store.create_import_log(log)
        logger.info(f"Started {log.file_type.value} import {log_id} for {file_name}")
        return log_id

    def complete(self, log_id: str, summary: ImportSummary, started_at: datetime) -> ImportStatus:
        """Finalize an entry from a run summary.

        Only the first ``max_errors`` errors are stored.

        Returns:
            The status written to the entry.

        Raises:
            ImportLogClosedError: If the entry was already finalized.
        """
        self._ensure_open(log_id)
        status = determine_status(summary)
        completed_at = self.now()
        created = summary.reference_data_created

        self._store.update_import_log(
            log_id,
            status=status,
            total_records=summary.total_records,
            records_imported=summary.records_imported,
            records_skipped=summary.records_skipped,
            covered_entities_created=created.covered_entities,
            pharmacies_created=created.pharmacies,
            prescribers_created=created.prescribers,
            patients_created=created.patients,
            drugs_created=created.drugs,
            locations_created=created.locations,
            insurance_plans_created=created.insurance_plans,
            errors_json=[e.to_dict() for e in summary.errors[: self._max_errors]],
            completed_at=completed_at,
            duration_ms=_duration_ms(started_at, completed_at),
        )
        logger.info(
            f"Import {log_id} finished {status.value}: "
            f"{summary.records_imported}/{summary.total_records} imported, "
            f"{len(summary.errors)} errors"
        )
        return status

    def fail(self, log_id: str, message: str, started_at: datetime) -> None:
        """Mark an entry Failed with the raw error message.

        Raises:
            ImportLogClosedError: If the entry was already finalized.
        """
        self._ensure_open(log_id)
        completed_at = self.now()
        self._store.update_import_log(
            log_id,
            status=ImportStatus.FAILED,
            error_message=message,
            completed_at=completed_at,
            duration_ms=_duration_ms(started_at, completed_at),
        )
        logger.info(f"Import {log_id} marked Failed: {message}")

    def _ensure_open(self, log_id: str) -> None:
        log = self._store.get_import_log(log_id)
        if log is None:
            raise StorageError(f"Import log {log_id} not found")
        if log.status is not ImportStatus.PROCESSING:
            raise ImportLogClosedError(
                f"Import log {log_id} is already {log.status.value} and cannot be updated"
            )
