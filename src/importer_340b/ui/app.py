"""Streamlit entry point: ``streamlit run src/importer_340b/ui/app.py``."""

import streamlit as st

from importer_340b.config import Settings, configure_logging
from importer_340b.ui.pages.upload import render_upload_page


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings)
    settings.ensure_directories()

    st.set_page_config(page_title="340B Data Import", layout="wide")
    render_upload_page(settings)


main()
