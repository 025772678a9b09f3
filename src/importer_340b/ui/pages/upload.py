"""Data import page for the 340B importer."""

from __future__ import annotations

import logging
from typing import Any

import streamlit as st

from importer_340b.config import Settings
from importer_340b.errors import EmptyFileError, FileFormatError, ImporterError
from importer_340b.etl.runner import ImportResult, run_import
from importer_340b.ingest.loaders import ProgressCallback
from importer_340b.models import FileType, ImportProgress
from importer_340b.store.sql import SqlStore
from importer_340b.ui.components.import_summary import render_import_summary

logger = logging.getLogger(__name__)


@st.cache_resource
def _get_store(database_url: str) -> SqlStore:
    return SqlStore.from_url(database_url)


def render_upload_page(settings: Settings | None = None) -> None:
    """Render the data import page.

    Allows users to upload:
    - Scripts workbook (XLSX), one prescription per row
    - ClaimReports export (CSV), one claim per row
    """
    settings = settings or Settings.from_env()

    st.title("Data Import")
    st.markdown(
        "Upload a scripts workbook or a claims export. Every row is validated; "
        "rows with errors are skipped and listed below."
    )

    _render_file_upload(
        FileType.SCRIPTS,
        "### Scripts File",
        "Excel workbook of prescriptions. "
        "Expected columns include PrescriptionIdentifier and PrescribedDate.",
        ["xlsx"],
        settings,
    )
    st.markdown("---")
    _render_file_upload(
        FileType.CLAIMS,
        "### Claims File",
        "ClaimReports CSV export. "
        "Expected columns include Prescription #, Date Rx Written, Fill Date and Refill #.",
        ["csv"],
        settings,
    )


def _render_file_upload(
    file_type: FileType,
    heading: str,
    caption: str,
    extensions: list[str],
    settings: Settings,
) -> None:
    """Render one upload section and run the import on demand."""
    st.markdown(heading)
    st.caption(caption)

    key = file_type.value.lower()
    uploaded_file = st.file_uploader(
        f"Upload {file_type.value} File",
        type=extensions,
        key=f"{key}_upload",
    )
    if uploaded_file is None:
        return

    if not st.button(f"Import {file_type.value}", type="primary", key=f"{key}_import"):
        return

    progress_bar = st.progress(0, text="Reading file...")

    def on_progress(progress: ImportProgress) -> None:
        progress_bar.progress(progress.percentage, text=progress.message)

    try:
        result = _import_file(uploaded_file, file_type, on_progress, settings)
    except EmptyFileError as e:
        st.error(f"Nothing to import: {e}")
        return
    except FileFormatError as e:
        st.error(f"Could not read file: {e}")
        return
    except ImporterError as e:
        st.error(f"Import failed: {e}")
        logger.exception(f"Import failed for {uploaded_file.name}")
        return

    progress_bar.progress(100, text="Import complete")
    render_import_summary(result)


def _import_file(
    uploaded_file: Any,
    file_type: FileType,
    on_progress: ProgressCallback,
    settings: Settings,
) -> ImportResult:
    return run_import(
        uploaded_file.getvalue(),
        uploaded_file.name,
        file_type,
        _get_store(settings.database_url),
        on_progress=on_progress,
        settings=settings,
    )
