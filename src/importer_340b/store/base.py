"""Storage collaborator protocol used by the import pipeline.

The pipeline never issues queries beyond these primitives. Implementations
raise ``DuplicateRecordError`` for uniqueness violations,
``StorageUnavailableError`` when the backend cannot be reached, and
``StorageError`` for any other single-operation failure.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

from importer_340b.models import EntityType, ImportLog, RecordKind, ReferenceEntity

# Columns that identify a normalized record; a second row with the same
# values is a duplicate
RECORD_KEY_COLUMNS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.PRESCRIPTION: ("prescription_identifier",),
    RecordKind.CLAIM: ("prescription_number", "refill_number"),
}


def record_key(kind: RecordKind, record: Mapping[str, Any]) -> tuple[Any, ...]:
    return tuple(record.get(column) for column in RECORD_KEY_COLUMNS[kind])


class ReferenceStore(Protocol):
    """Reference data, normalized records and import logs."""

    def find_by_natural_key(self, entity_type: EntityType, key: str) -> str | None:
        """Return the surrogate id of the entity with this natural key, if any."""
        ...

    def create(self, entity: ReferenceEntity) -> str:
        """Insert a reference entity and return its new surrogate id."""
        ...

    def insert_batch(self, kind: RecordKind, records: Sequence[Mapping[str, Any]]) -> int:
        """Insert normalized records atomically; return the number written.

        A failure leaves none of the batch written.
        """
        ...

    def create_import_log(self, log: ImportLog) -> str:
        ...

    def get_import_log(self, log_id: str) -> ImportLog | None:
        ...

    def update_import_log(self, log_id: str, **fields: Any) -> None:
        ...
