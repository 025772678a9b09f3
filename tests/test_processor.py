"""Tests for the import orchestrator."""

import logging
from datetime import date
from unittest.mock import MagicMock

import pytest

from importer_340b.config import Settings
from importer_340b.errors import StorageError, StorageUnavailableError
from importer_340b.etl.processor import process_claims_import, process_scripts_import
from importer_340b.models import EntityType, ImportProgress, ProgressStatus, RecordKind
from importer_340b.store.memory import InMemoryStore

FUTURE = date(2099, 1, 1)


class TestProcessScriptsImport:
    """Tests for process_scripts_import."""

    def test_ten_rows_with_three_invalid(
        self, make_prescription, store: InMemoryStore, settings: Settings
    ) -> None:
        """2 missing patient last name and 1 future date: 7 imported, 3 skipped."""
        records = [make_prescription(row=i) for i in range(1, 11)]
        records[1] = make_prescription(row=2, patient_last_name=None)
        records[4] = make_prescription(row=5, patient_last_name="  ")
        records[7] = make_prescription(row=8, prescribed_date=FUTURE)

        summary = process_scripts_import(records, store, settings=settings)

        assert summary.total_records == 10
        assert summary.records_imported == 7
        assert summary.records_skipped == 3
        assert sorted(e.field for e in summary.errors) == sorted(
            ["Patient Last Name", "Patient Last Name", "Prescribed Date"]
        )
        assert {e.row for e in summary.errors} == {2, 5, 8}
        assert len(store.records[RecordKind.PRESCRIPTION]) == 7

    def test_errors_logged_by_field(
        self, make_prescription, store: InMemoryStore, settings: Settings, caplog
    ) -> None:
        records = [
            make_prescription(row=1, patient_last_name=None),
            make_prescription(row=2, patient_last_name=None),
            make_prescription(row=3),
        ]
        with caplog.at_level(logging.WARNING, logger="importer_340b.etl.processor"):
            process_scripts_import(records, store, settings=settings)

        assert "{'Patient Last Name': 2}" in caplog.text

    def test_empty_input_does_not_touch_storage(self) -> None:
        store = MagicMock()
        summary = process_scripts_import([], store)

        assert summary.total_records == 0
        assert summary.records_imported == 0
        assert summary.reference_data_created.total() == 0
        assert store.mock_calls == []

    def test_ten_digit_ndc_warns_and_imports(
        self, make_prescription, store: InMemoryStore, settings: Settings
    ) -> None:
        summary = process_scripts_import(
            [make_prescription(ndc_code="1234567890")], store, settings=settings
        )

        assert summary.records_imported == 1
        assert summary.errors == []
        assert [w.message for w in summary.warnings] == [
            "NDC should be 11 digits, got 10 digits"
        ]

    def test_invalid_rows_create_no_reference_data(
        self, make_prescription, store: InMemoryStore, settings: Settings
    ) -> None:
        """Bad rows never create orphaned reference rows."""
        summary = process_scripts_import(
            [make_prescription(patient_first_name=None, pharmacy_npi="9999999999")],
            store,
            settings=settings,
        )

        assert summary.records_imported == 0
        assert summary.reference_data_created.total() == 0
        assert store.count(EntityType.PHARMACY) == 0

    def test_reference_ids_attached(
        self, make_prescription, store: InMemoryStore, settings: Settings
    ) -> None:
        process_scripts_import([make_prescription()], store, settings=settings)
        row = store.records[RecordKind.PRESCRIPTION][0]

        assert row["pharmacy_id"] in store.entities[EntityType.PHARMACY]
        assert row["drug_id"] in store.entities[EntityType.DRUG]
        assert row["secondary_insurance_id"] is None
        location = store.entities[EntityType.LOCATION][row["location_id"]]
        assert location.covered_entity_id == row["covered_entity_id"]

    def test_reference_counts_only_creations(
        self, make_prescription, store: InMemoryStore, settings: Settings
    ) -> None:
        first = process_scripts_import([make_prescription(row=1)], store, settings=settings)
        second = process_scripts_import(
            [make_prescription(row=2, prescription_identifier=2002)], store, settings=settings
        )

        assert first.reference_data_created.pharmacies == 1
        assert first.reference_data_created.covered_entities == 1
        assert second.reference_data_created.pharmacies == 0
        # Each row has its own MRN, so only the patient is new
        assert second.reference_data_created.total() == 1
        assert second.reference_data_created.patients == 1

    def test_duplicate_row_is_per_row_error(
        self, make_prescription, store: InMemoryStore, settings: Settings
    ) -> None:
        """Re-importing an existing prescription is skipped, not fatal."""
        process_scripts_import([make_prescription(row=1)], store, settings=settings)
        summary = process_scripts_import(
            [make_prescription(row=1), make_prescription(row=2)], store, settings=settings
        )

        assert summary.records_imported == 1
        assert summary.records_skipped == 1
        assert len(summary.errors) == 1
        assert summary.errors[0].row == 1
        assert "duplicate" in summary.errors[0].message.lower()

    def test_batches_respect_batch_size(
        self, make_prescription, store: InMemoryStore, tmp_path
    ) -> None:
        settings = Settings(log_level="INFO", data_dir=tmp_path, batch_size=3)
        records = [make_prescription(row=i) for i in range(1, 8)]
        summary = process_scripts_import(records, store, settings=settings)

        assert summary.records_imported == 7
        assert store.operations.count("insert_batch") == 3

    def test_progress_checkpoints(
        self, make_prescription, store: InMemoryStore, settings: Settings
    ) -> None:
        updates: list[ImportProgress] = []
        process_scripts_import(
            [make_prescription()], store, on_progress=updates.append, settings=settings
        )

        statuses = [u.status for u in updates]
        assert statuses[:3] == [
            ProgressStatus.VALIDATING,
            ProgressStatus.RESOLVING,
            ProgressStatus.INSERTING,
        ]
        assert statuses[-1] is ProgressStatus.COMPLETE
        percentages = [u.percentage for u in updates]
        assert percentages == sorted(percentages)
        assert percentages[-1] == 100


class TestProcessClaimsImport:
    """Tests for process_claims_import."""

    def test_shared_pharmacy_created_once(
        self, make_claim, store: InMemoryStore, settings: Settings
    ) -> None:
        """Two claims with the same pharmacy NPI create one pharmacy."""
        claims = [make_claim(row=1), make_claim(row=2)]
        summary = process_claims_import(claims, store, settings=settings)

        assert summary.records_imported == 2
        assert summary.reference_data_created.pharmacies == 1
        assert summary.reference_data_created.insurance_plans == 0
        assert summary.reference_data_created.locations == 0

    def test_imported_plus_skipped_equals_total(
        self, make_claim, store: InMemoryStore, settings: Settings
    ) -> None:
        claims = [
            make_claim(row=1),
            make_claim(row=2, fill_date=None),
            make_claim(row=3, refill_number=120),
            make_claim(row=4, date_rx_written=date(2024, 2, 1), fill_date=date(2024, 1, 1)),
        ]
        summary = process_claims_import(claims, store, settings=settings)

        assert summary.records_imported == 1
        assert summary.records_imported + summary.records_skipped == summary.total_records
        assert [e.row for e in summary.errors] == [2, 3, 4]

    def test_same_prescription_different_refills(
        self, make_claim, store: InMemoryStore, settings: Settings
    ) -> None:
        claims = [
            make_claim(row=1, prescription_number=7000, refill_number=0),
            make_claim(row=2, prescription_number=7000, refill_number=1),
            make_claim(row=3, prescription_number=7000, refill_number=1),
        ]
        summary = process_claims_import(claims, store, settings=settings)

        assert summary.records_imported == 2
        assert [e.row for e in summary.errors] == [3]

    def test_resolution_failure_skips_row(
        self, make_claim, store: InMemoryStore, settings: Settings
    ) -> None:
        """A reference that cannot be stored skips only the rows using it."""
        original_create = store.create

        def create(entity):
            if entity.entity_type is EntityType.DRUG and entity.ndc_code == "99999999999":
                raise StorageError("value too long")
            return original_create(entity)

        store.create = create  # type: ignore[method-assign]
        claims = [make_claim(row=1), make_claim(row=2, ndc="99999999999")]
        summary = process_claims_import(claims, store, settings=settings)

        assert summary.records_imported == 1
        assert len(summary.errors) == 1
        assert summary.errors[0].row == 2
        assert summary.errors[0].field == "NDC"

    def test_unreachable_storage_aborts(self, make_claim, settings: Settings) -> None:
        store = MagicMock()
        store.find_by_natural_key.side_effect = StorageUnavailableError("connection refused")

        with pytest.raises(StorageUnavailableError):
            process_claims_import([make_claim()], store, settings=settings)

    def test_unreachable_storage_during_insert_aborts(
        self, make_claim, store: InMemoryStore, settings: Settings
    ) -> None:
        def insert_batch(kind, records):
            raise StorageUnavailableError("connection lost")

        store.insert_batch = insert_batch  # type: ignore[method-assign]
        with pytest.raises(StorageUnavailableError):
            process_claims_import([make_claim()], store, settings=settings)
