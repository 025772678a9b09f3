"""SQLAlchemy Core store for reference data, normalized records and import logs.

Reference tables share one shape: surrogate id, unique natural key and the
entity's attributes as JSON. The unique constraint on ``natural_key`` is what
makes concurrent imports safe; a lost creation race surfaces as
DuplicateRecordError and the resolver retries it as a lookup.
"""

import logging
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError

from importer_340b.config import Settings
from importer_340b.errors import DuplicateRecordError, StorageError, StorageUnavailableError
from importer_340b.models import (
    EntityType,
    FileType,
    ImportLog,
    ImportStatus,
    RecordKind,
    ReferenceEntity,
)
from importer_340b.store.base import RECORD_KEY_COLUMNS

logger = logging.getLogger(__name__)

metadata = MetaData()


def _reference_table(entity_type: EntityType) -> Table:
    return Table(
        entity_type.value,
        metadata,
        Column("id", String(36), primary_key=True),
        Column("natural_key", String(512), nullable=False, unique=True),
        Column("attributes", JSON, nullable=False),
        Column("created_at", DateTime(timezone=True), nullable=False),
    )


REFERENCE_TABLES: dict[EntityType, Table] = {t: _reference_table(t) for t in EntityType}


def _ref(role: str, entity_type: EntityType) -> Column:
    return Column(role, String(36), ForeignKey(f"{entity_type.value}.id"), nullable=True)


prescriptions = Table(
    RecordKind.PRESCRIPTION.value,
    metadata,
    Column("id", String(36), primary_key=True),
    Column("prescription_identifier", BigInteger, nullable=False),
    _ref("covered_entity_id", EntityType.COVERED_ENTITY),
    _ref("pharmacy_id", EntityType.PHARMACY),
    _ref("prescriber_id", EntityType.PRESCRIBER),
    _ref("location_id", EntityType.LOCATION),
    _ref("drug_id", EntityType.DRUG),
    _ref("patient_id", EntityType.PATIENT),
    _ref("primary_insurance_id", EntityType.INSURANCE_PLAN),
    _ref("secondary_insurance_id", EntityType.INSURANCE_PLAN),
    Column("payload", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint(*RECORD_KEY_COLUMNS[RecordKind.PRESCRIPTION], name="uq_prescriptions_key"),
)

claims = Table(
    RecordKind.CLAIM.value,
    metadata,
    Column("id", String(36), primary_key=True),
    Column("prescription_number", BigInteger, nullable=False),
    Column("refill_number", Integer, nullable=False),
    _ref("covered_entity_id", EntityType.COVERED_ENTITY),
    _ref("pharmacy_id", EntityType.PHARMACY),
    _ref("prescriber_id", EntityType.PRESCRIBER),
    _ref("drug_id", EntityType.DRUG),
    _ref("patient_id", EntityType.PATIENT),
    Column("payload", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint(*RECORD_KEY_COLUMNS[RecordKind.CLAIM], name="uq_claims_key"),
)

RECORD_TABLES: dict[RecordKind, Table] = {
    RecordKind.PRESCRIPTION: prescriptions,
    RecordKind.CLAIM: claims,
}

import_logs = Table(
    "import_logs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("file_name", String(255), nullable=False),
    Column("file_type", String(20), nullable=False),
    Column("file_size_bytes", BigInteger),
    Column("status", String(20), nullable=False),
    Column("total_records", Integer, nullable=False, default=0),
    Column("records_imported", Integer, nullable=False, default=0),
    Column("records_skipped", Integer, nullable=False, default=0),
    Column("covered_entities_created", Integer, nullable=False, default=0),
    Column("pharmacies_created", Integer, nullable=False, default=0),
    Column("prescribers_created", Integer, nullable=False, default=0),
    Column("patients_created", Integer, nullable=False, default=0),
    Column("drugs_created", Integer, nullable=False, default=0),
    Column("locations_created", Integer, nullable=False, default=0),
    Column("insurance_plans_created", Integer, nullable=False, default=0),
    Column("error_message", Text),
    Column("errors_json", JSON),
    Column("started_at", DateTime(timezone=True)),
    Column("completed_at", DateTime(timezone=True)),
    Column("duration_ms", Integer),
)


def json_safe(value: Any) -> Any:
    """Convert dates, Decimals and enums so a value can be stored as JSON."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {k: json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(v) for v in value]
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Translate SQLAlchemy exceptions into the importer's storage errors."""
    try:
        yield
    except IntegrityError as e:
        message = str(e.orig).lower()
        if "unique" in message or "duplicate" in message:
            raise DuplicateRecordError(f"{action}: duplicate key") from e
        raise StorageError(f"{action}: {e.orig}") from e
    except (OperationalError, InterfaceError) as e:
        raise StorageUnavailableError(f"{action}: database unavailable ({e.orig})") from e
    except SQLAlchemyError as e:
        raise StorageError(f"{action}: {e}") from e
    # Raised by the DB-API driver while binding a value it cannot store
    except (OverflowError, ValueError, TypeError) as e:
        raise StorageError(f"{action}: {e}") from e


class SqlStore:
    """ReferenceStore backed by a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str, *, create_schema: bool = True) -> "SqlStore":
        with _storage_errors("Connecting to database"):
            store = cls(create_engine(database_url))
            if create_schema:
                store.create_schema()
        return store

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqlStore":
        return cls.from_url(settings.database_url)

    def create_schema(self) -> None:
        """Create any missing tables."""
        with _storage_errors("Creating schema"):
            metadata.create_all(self.engine)
        logger.info(f"Schema ready on {self.engine.url.render_as_string(hide_password=True)}")

    # ============ REFERENCE DATA ============

    def find_by_natural_key(self, entity_type: EntityType, key: str) -> str | None:
        table = REFERENCE_TABLES[entity_type]
        with _storage_errors(f"Looking up {entity_type.value}"):
            with self.engine.connect() as conn:
                return conn.execute(
                    select(table.c.id).where(table.c.natural_key == key)
                ).scalar_one_or_none()

    def create(self, entity: ReferenceEntity) -> str:
        table = REFERENCE_TABLES[entity.entity_type]
        entity_id = str(uuid.uuid4())
        with _storage_errors(f"Creating {entity.entity_type.value}"):
            with self.engine.begin() as conn:
                conn.execute(
                    table.insert().values(
                        id=entity_id,
                        natural_key=entity.natural_key,
                        attributes=json_safe(entity.attributes()),
                        created_at=_utcnow(),
                    )
                )
        return entity_id

    # ============ NORMALIZED RECORDS ============

    def _record_row(self, table: Table, record: Mapping[str, Any], now: datetime) -> dict[str, Any]:
        row: dict[str, Any] = {"id": str(uuid.uuid4()), "created_at": now}
        payload = {}
        for name, value in record.items():
            if name in table.c and name not in row:
                row[name] = value
            else:
                payload[name] = value
        row["payload"] = json_safe(payload)
        return row

    def insert_batch(self, kind: RecordKind, records: Sequence[Mapping[str, Any]]) -> int:
        if not records:
            return 0
        table = RECORD_TABLES[kind]
        now = _utcnow()
        rows = [self._record_row(table, record, now) for record in records]
        with _storage_errors(f"Inserting {len(rows)} {kind.value}"):
            with self.engine.begin() as conn:
                conn.execute(table.insert(), rows)
        return len(rows)

    def count(self, table_name: str) -> int:
        table = metadata.tables[table_name]
        with self.engine.connect() as conn:
            return len(conn.execute(select(table.c.id)).all())

    # ============ IMPORT LOGS ============

    def create_import_log(self, log: ImportLog) -> str:
        log_id = str(uuid.uuid4())
        values = {name: getattr(log, name) for name in import_logs.c.keys() if name != "id"}
        with _storage_errors("Creating import log"):
            with self.engine.begin() as conn:
                conn.execute(import_logs.insert().values(id=log_id, **_log_values(values)))
        return log_id

    def get_import_log(self, log_id: str) -> ImportLog | None:
        with _storage_errors("Reading import log"):
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(import_logs).where(import_logs.c.id == log_id)
                ).mappings().first()
        if row is None:
            return None
        values = dict(row)
        values["file_type"] = FileType(values["file_type"])
        values["status"] = ImportStatus(values["status"])
        values["errors_json"] = values["errors_json"] or []
        return ImportLog(**values)

    def update_import_log(self, log_id: str, **fields: Any) -> None:
        unknown = set(fields) - set(import_logs.c.keys())
        if unknown:
            raise StorageError(f"Unknown import log fields: {', '.join(sorted(unknown))}")
        with _storage_errors("Updating import log"):
            with self.engine.begin() as conn:
                result = conn.execute(
                    import_logs.update()
                    .where(import_logs.c.id == log_id)
                    .values(**_log_values(fields))
                )
        if result.rowcount == 0:
            raise StorageError(f"Import log {log_id} not found")


def _log_values(values: Mapping[str, Any]) -> dict[str, Any]:
    converted = {}
    for name, value in values.items():
        if isinstance(value, Enum):
            value = value.value
        elif name == "errors_json":
            value = json_safe(value)
        converted[name] = value
    return converted
