"""Tests for the SQLAlchemy store."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from importer_340b.errors import DuplicateRecordError, StorageError, StorageUnavailableError
from importer_340b.models import EntityType, FileType, ImportLog, ImportStatus, Pharmacy, RecordKind
from importer_340b.store.sql import SqlStore, json_safe


def _pharmacy(key: str = "npi:1111111111") -> Pharmacy:
    return Pharmacy(natural_key=key, pharmacy_name="Main Street Pharmacy", npi_number="1111111111")


class TestReferenceData:
    """Tests for find_by_natural_key and create."""

    def test_create_then_find(self, sql_store: SqlStore) -> None:
        entity_id = sql_store.create(_pharmacy())
        assert sql_store.find_by_natural_key(EntityType.PHARMACY, "npi:1111111111") == entity_id

    def test_missing_key(self, sql_store: SqlStore) -> None:
        assert sql_store.find_by_natural_key(EntityType.DRUG, "ndc:00000000000") is None

    def test_natural_key_unique(self, sql_store: SqlStore) -> None:
        """The constraint turns a second creation into DuplicateRecordError."""
        sql_store.create(_pharmacy())
        with pytest.raises(DuplicateRecordError):
            sql_store.create(_pharmacy())

    def test_keys_scoped_per_type(self, sql_store: SqlStore) -> None:
        sql_store.create(_pharmacy("name:main"))
        assert sql_store.find_by_natural_key(EntityType.PRESCRIBER, "name:main") is None


class TestRecords:
    """Tests for insert_batch."""

    def _claim(self, number: int, refill: int) -> dict:
        return {
            "prescription_number": number,
            "refill_number": refill,
            "fill_date": date(2024, 1, 12),
            "drug_cost_340b": Decimal("125.50"),
            "pharmacy_id": None,
        }

    def test_insert_batch(self, sql_store: SqlStore) -> None:
        written = sql_store.insert_batch(RecordKind.CLAIM, [self._claim(1, 0), self._claim(1, 1)])
        assert written == 2
        assert sql_store.count("claims") == 2

    def test_failed_batch_writes_nothing(self, sql_store: SqlStore) -> None:
        """A duplicate inside a batch rolls back the whole batch."""
        with pytest.raises(DuplicateRecordError):
            sql_store.insert_batch(RecordKind.CLAIM, [self._claim(1, 0), self._claim(1, 0)])
        assert sql_store.count("claims") == 0

    def test_unstorable_value_is_storage_error(self, sql_store: SqlStore) -> None:
        """Driver binding errors become a per-row StorageError."""
        with pytest.raises(StorageError) as excinfo:
            sql_store.insert_batch(RecordKind.CLAIM, [self._claim(1, 0), self._claim(2**70, 0)])

        assert not isinstance(excinfo.value, (DuplicateRecordError, StorageUnavailableError))
        assert sql_store.count("claims") == 0

    def test_empty_batch(self, sql_store: SqlStore) -> None:
        assert sql_store.insert_batch(RecordKind.PRESCRIPTION, []) == 0


class TestImportLogs:
    """Tests for the import log primitives."""

    def test_round_trip(self, sql_store: SqlStore) -> None:
        log_id = sql_store.create_import_log(
            ImportLog(file_name="claims.csv", file_type=FileType.CLAIMS, file_size_bytes=10)
        )
        sql_store.update_import_log(
            log_id,
            status=ImportStatus.PARTIAL,
            records_imported=3,
            errors_json=[{"row": 2, "value": Decimal("1.5")}],
        )

        log = sql_store.get_import_log(log_id)
        assert log.id == log_id
        assert log.status is ImportStatus.PARTIAL
        assert log.file_type is FileType.CLAIMS
        assert log.records_imported == 3
        assert log.errors_json == [{"row": 2, "value": "1.5"}]

    def test_unknown_log(self, sql_store: SqlStore) -> None:
        assert sql_store.get_import_log("missing") is None
        with pytest.raises(StorageError):
            sql_store.update_import_log("missing", status=ImportStatus.FAILED)

    def test_unknown_field(self, sql_store: SqlStore) -> None:
        log_id = sql_store.create_import_log(ImportLog(file_name="a.csv", file_type=FileType.CLAIMS))
        with pytest.raises(StorageError, match="bogus"):
            sql_store.update_import_log(log_id, bogus=1)


class TestErrors:
    """Tests for error translation."""

    def test_unreachable_database(self, tmp_path: Path) -> None:
        missing = tmp_path / "no" / "such" / "dir" / "db.sqlite"
        with pytest.raises(StorageUnavailableError):
            SqlStore.from_url(f"sqlite:///{missing}")

    def test_json_safe(self) -> None:
        assert json_safe({"d": date(2024, 1, 2), "n": [Decimal("1.10")], "s": FileType.CLAIMS}) == {
            "d": "2024-01-02",
            "n": ["1.10"],
            "s": "Claims",
        }
