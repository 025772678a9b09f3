"""340B scripts and claims importer."""

__version__ = "0.1.0"
