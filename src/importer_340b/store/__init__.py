"""Storage backends for reference data, normalized records and import logs."""

from importer_340b.store.base import RECORD_KEY_COLUMNS, ReferenceStore, record_key
from importer_340b.store.memory import InMemoryStore
from importer_340b.store.sql import SqlStore

__all__ = [
    "RECORD_KEY_COLUMNS",
    "ReferenceStore",
    "record_key",
    "InMemoryStore",
    "SqlStore",
]
