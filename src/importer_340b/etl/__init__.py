"""Import orchestration: processing, audit logging and the per-file runner."""

from importer_340b.etl.audit_log import ImportAuditLog, determine_status
from importer_340b.etl.processor import process_claims_import, process_scripts_import
from importer_340b.etl.progress import ETL_SEGMENT, PARSE_SEGMENT, scale_progress
from importer_340b.etl.runner import ImportResult, detect_file_type, run_import

__all__ = [
    "ImportAuditLog",
    "determine_status",
    "process_claims_import",
    "process_scripts_import",
    "ETL_SEGMENT",
    "PARSE_SEGMENT",
    "scale_progress",
    "ImportResult",
    "detect_file_type",
    "run_import",
]
