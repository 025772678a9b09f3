"""Streamlit operator pages for the importer."""
