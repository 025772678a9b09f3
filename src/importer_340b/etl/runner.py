"""Run one uploaded file through the import pipeline with an audit log entry."""

import logging
from dataclasses import dataclass
from pathlib import Path

from importer_340b.config import Settings
from importer_340b.errors import EmptyFileError, FileFormatError, ImporterError
from importer_340b.etl.audit_log import ImportAuditLog
from importer_340b.etl.processor import process_claims_import, process_scripts_import
from importer_340b.etl.progress import ETL_SEGMENT, PARSE_SEGMENT, scale_progress
from importer_340b.ingest.loaders import (
    FileSource,
    ProgressCallback,
    parse_claims_file,
    parse_scripts_file,
)
from importer_340b.models import FileType, ImportStatus, ImportSummary
from importer_340b.store.base import ReferenceStore

logger = logging.getLogger(__name__)

SCRIPTS_EXTENSIONS = {".xlsx", ".xlsm"}
CLAIMS_EXTENSIONS = {".csv"}


@dataclass(frozen=True)
class ImportResult:
    """What the caller gets back from a completed run."""

    log_id: str
    summary: ImportSummary
    status: ImportStatus


def detect_file_type(file_name: str) -> FileType:
    """Infer scripts vs. claims from the file extension.

    Raises:
        FileFormatError: For any other extension.
    """
    suffix = Path(file_name).suffix.lower()
    if suffix in SCRIPTS_EXTENSIONS:
        return FileType.SCRIPTS
    if suffix in CLAIMS_EXTENSIONS:
        return FileType.CLAIMS
    raise FileFormatError(
        f"Unsupported file type {suffix or '(none)'}: expected .xlsx scripts or .csv claims"
    )


def _file_size(source: FileSource) -> int | None:
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    if isinstance(source, (str, Path)):
        path = Path(source)
        return path.stat().st_size if path.is_file() else None
    size = getattr(source, "size", None)
    return size if isinstance(size, int) else None


def run_import(
    source: FileSource,
    file_name: str,
    file_type: FileType | str,
    store: ReferenceStore,
    on_progress: ProgressCallback | None = None,
    settings: Settings | None = None,
) -> ImportResult:
    """Parse and import one file, recording the attempt in the audit log.

    Parsing reports progress on 0-30%, the import on 30-100%.

    Args:
        source: Path, raw bytes, or binary file object.
        file_name: Original file name, stored on the log and prescriptions.
        file_type: Scripts (Excel) or Claims (CSV).
        store: Reference, record and audit-log storage.
        on_progress: Optional progress callback.
        settings: Runtime settings; read from the environment if omitted.

    Returns:
        ImportResult with the log id, summary and final status.

    Raises:
        EmptyFileError: If the file has no data rows.
        FileFormatError: If the file cannot be read.
        StorageUnavailableError: If the store becomes unreachable.
    """
    settings = settings or Settings.from_env()
    file_type = FileType(file_type)
    audit_log = ImportAuditLog(store, max_errors=settings.max_logged_errors)

    started_at = audit_log.now()
    log_id = audit_log.start(file_name, file_type, _file_size(source), started_at=started_at)

    try:
        parse_progress = scale_progress(on_progress, PARSE_SEGMENT)
        etl_progress = scale_progress(on_progress, ETL_SEGMENT)

        if file_type is FileType.SCRIPTS:
            prescriptions = parse_scripts_file(
                source,
                parse_progress,
                source_file=file_name,
                progress_interval=settings.scripts_progress_interval,
            )
            if not prescriptions:
                raise EmptyFileError(f"{file_name} contains no prescriptions")
            summary = process_scripts_import(prescriptions, store, etl_progress, settings)
        else:
            claims = parse_claims_file(
                source, parse_progress, progress_interval=settings.claims_progress_interval
            )
            if not claims:
                raise EmptyFileError(f"{file_name} contains no claims")
            summary = process_claims_import(claims, store, etl_progress, settings)

        status = audit_log.complete(log_id, summary, started_at)
    except Exception as e:
        logger.exception(f"Import {log_id} of {file_name} failed")
        try:
            audit_log.fail(log_id, str(e), started_at)
        except ImporterError:
            logger.exception(f"Could not mark import {log_id} as Failed")
        raise

    return ImportResult(log_id=log_id, summary=summary, status=status)
