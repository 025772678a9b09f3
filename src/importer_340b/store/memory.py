"""In-memory store with the same uniqueness rules as the SQL store."""

import copy
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import fields as dataclass_fields, replace
from typing import Any

from importer_340b.errors import DuplicateRecordError, StorageError
from importer_340b.models import EntityType, ImportLog, RecordKind, ReferenceEntity
from importer_340b.store.base import record_key

_LOG_FIELDS = {f.name for f in dataclass_fields(ImportLog)}


class InMemoryStore:
    """Dictionary-backed ReferenceStore.

    Natural keys are unique per entity type and record keys are unique per
    record kind, mirroring the SQL constraints. ``operations`` records every
    call so callers can check whether storage was touched.
    """

    def __init__(self) -> None:
        self.entities: dict[EntityType, dict[str, ReferenceEntity]] = {t: {} for t in EntityType}
        self.records: dict[RecordKind, list[dict[str, Any]]] = {k: [] for k in RecordKind}
        self.import_logs: dict[str, ImportLog] = {}
        self.operations: list[str] = []
        self._ids_by_key: dict[EntityType, dict[str, str]] = {t: {} for t in EntityType}
        self._record_keys: dict[RecordKind, set[tuple[Any, ...]]] = {k: set() for k in RecordKind}

    def find_by_natural_key(self, entity_type: EntityType, key: str) -> str | None:
        self.operations.append("find_by_natural_key")
        return self._ids_by_key[entity_type].get(key)

    def create(self, entity: ReferenceEntity) -> str:
        self.operations.append("create")
        by_key = self._ids_by_key[entity.entity_type]
        if entity.natural_key in by_key:
            raise DuplicateRecordError(
                f"{entity.entity_type.value} with key {entity.natural_key} already exists"
            )
        entity_id = str(uuid.uuid4())
        by_key[entity.natural_key] = entity_id
        self.entities[entity.entity_type][entity_id] = entity
        return entity_id

    def insert_batch(self, kind: RecordKind, records: Sequence[Mapping[str, Any]]) -> int:
        self.operations.append("insert_batch")
        existing = self._record_keys[kind]
        batch_keys = set()
        for record in records:
            key = record_key(kind, record)
            if key in existing or key in batch_keys:
                raise DuplicateRecordError(f"{kind.value} record {key} already exists")
            batch_keys.add(key)

        existing.update(batch_keys)
        self.records[kind].extend(dict(record) for record in records)
        return len(records)

    def create_import_log(self, log: ImportLog) -> str:
        self.operations.append("create_import_log")
        log_id = str(uuid.uuid4())
        self.import_logs[log_id] = replace(copy.deepcopy(log), id=log_id)
        return log_id

    def get_import_log(self, log_id: str) -> ImportLog | None:
        log = self.import_logs.get(log_id)
        return copy.deepcopy(log) if log is not None else None

    def update_import_log(self, log_id: str, **fields: Any) -> None:
        self.operations.append("update_import_log")
        log = self.import_logs.get(log_id)
        if log is None:
            raise StorageError(f"Import log {log_id} not found")
        unknown = set(fields) - _LOG_FIELDS
        if unknown:
            raise StorageError(f"Unknown import log fields: {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            setattr(log, name, value)

    def count(self, entity_type: EntityType) -> int:
        return len(self.entities[entity_type])
