"""Import summary component for the upload page."""

import pandas as pd
import streamlit as st

from importer_340b.etl.runner import ImportResult
from importer_340b.models import ImportStatus, ValidationError

MAX_DISPLAYED_ERRORS = 50

_REFERENCE_LABELS = {
    "covered_entities": "Covered Entities",
    "pharmacies": "Pharmacies",
    "prescribers": "Prescribers",
    "locations": "Locations",
    "drugs": "Drugs",
    "patients": "Patients",
    "insurance_plans": "Insurance Plans",
}


def _findings_frame(findings: list[ValidationError]) -> pd.DataFrame:
    return pd.DataFrame(
        [f.to_dict() for f in findings[:MAX_DISPLAYED_ERRORS]],
        columns=["row", "field", "value", "message", "severity"],
    )


def render_import_summary(result: ImportResult) -> None:
    """Render counts, reference data created and the first errors of a run.

    Args:
        result: Result returned by ``run_import``.
    """
    summary = result.summary

    if result.status is ImportStatus.SUCCESS:
        st.success(f"Imported {summary.records_imported:,} records")
    elif result.status is ImportStatus.PARTIAL:
        st.warning(
            f"Imported {summary.records_imported:,} of {summary.total_records:,} records; "
            f"{summary.records_skipped:,} skipped"
        )
    else:
        st.error(f"No records imported; {summary.records_skipped:,} rows skipped")

    col1, col2, col3 = st.columns(3)
    col1.metric("Total Records", f"{summary.total_records:,}")
    col2.metric("Imported", f"{summary.records_imported:,}")
    col3.metric("Skipped", f"{summary.records_skipped:,}")

    created = summary.reference_data_created.to_dict()
    if any(created.values()):
        st.markdown("**Reference Data Created**")
        st.dataframe(
            pd.DataFrame(
                [
                    {"Type": _REFERENCE_LABELS[name], "Created": count}
                    for name, count in created.items()
                    if count
                ]
            ),
            hide_index=True,
        )

    if summary.errors:
        with st.expander(f"Errors ({len(summary.errors):,})", expanded=True):
            if len(summary.errors) > MAX_DISPLAYED_ERRORS:
                st.caption(f"Showing the first {MAX_DISPLAYED_ERRORS} errors")
            st.dataframe(_findings_frame(summary.errors), hide_index=True)

    if summary.warnings:
        with st.expander(f"Warnings ({len(summary.warnings):,})"):
            if len(summary.warnings) > MAX_DISPLAYED_ERRORS:
                st.caption(f"Showing the first {MAX_DISPLAYED_ERRORS} warnings")
            st.dataframe(_findings_frame(summary.warnings), hide_index=True)

    st.caption(f"Import log: {result.log_id}")
