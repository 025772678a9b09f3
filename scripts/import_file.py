#!/usr/bin/env python
"""Import one scripts (.xlsx) or claims (.csv) file from the command line."""

import sys
from pathlib import Path

from importer_340b.config import Settings, configure_logging
from importer_340b.errors import ImporterError
from importer_340b.etl.runner import detect_file_type, run_import
from importer_340b.models import ImportProgress, ImportStatus
from importer_340b.store.sql import SqlStore


def _print_progress(progress: ImportProgress) -> None:
    print(f"  [{progress.percentage:3d}%] {progress.status.value}: {progress.message}")


def main(argv: list[str]) -> int:
    if len(argv) != 1:
        print("usage: import_file.py <scripts.xlsx | claims.csv>")
        return 2

    path = Path(argv[0])
    settings = Settings.from_env()
    configure_logging(settings)
    settings.ensure_directories()

    print("=" * 60)
    print(f"Importing {path.name}")
    print("=" * 60)

    try:
        file_type = detect_file_type(path.name)
        store = SqlStore.from_settings(settings)
        result = run_import(path, path.name, file_type, store, _print_progress, settings)
    except ImporterError as e:
        print(f"\n  FAILED: {e}")
        return 1

    summary = result.summary
    created = summary.reference_data_created
    print("-" * 40)
    print(f"  status:   {result.status.value}")
    print(f"  log id:   {result.log_id}")
    print(f"  imported: {summary.records_imported:,} of {summary.total_records:,}")
    print(f"  skipped:  {summary.records_skipped:,}")
    print(f"  created:  {created.total():,} reference records")
    for error in summary.errors[:20]:
        print(f"    row {error.row}: {error.field}: {error.message}")
    if len(summary.errors) > 20:
        print(f"    ... and {len(summary.errors) - 20:,} more")

    return 1 if result.status is ImportStatus.FAILED else 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
