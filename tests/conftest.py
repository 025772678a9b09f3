"""Shared fixtures for importer tests."""

import os
from collections.abc import Callable, Iterator
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest

from importer_340b.config import Settings
from importer_340b.models import ParsedClaim, ParsedPrescription
from importer_340b.store.memory import InMemoryStore
from importer_340b.store.sql import SqlStore

TODAY = date(2024, 6, 1)


@pytest.fixture
def mock_env_vars() -> Iterator[dict[str, str]]:
    """Patch importer environment variables with test values."""
    env = {
        "LOG_LEVEL": "debug",
        "DATA_DIR": "/tmp/test_data",
        "DATABASE_URL": "sqlite:///:memory:",
        "BATCH_SIZE": "50",
        "MAX_LOGGED_ERRORS": "10",
        "SCRIPTS_PROGRESS_INTERVAL": "5",
        "CLAIMS_PROGRESS_INTERVAL": "20",
    }
    with patch.dict(os.environ, env, clear=True):
        yield env


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary directory."""
    return Settings(
        log_level="DEBUG",
        data_dir=tmp_path / "uploads",
        database_url=f"sqlite:///{tmp_path / 'importer.db'}",
        batch_size=500,
        max_logged_errors=100,
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def sql_store(tmp_path: Path) -> SqlStore:
    """SQL store on a fresh SQLite file."""
    return SqlStore.from_url(f"sqlite:///{tmp_path / 'store.db'}")


@pytest.fixture
def make_prescription() -> Callable[..., ParsedPrescription]:
    """Factory for a valid prescription candidate; keyword overrides win."""

    def factory(row: int = 1, **overrides: Any) -> ParsedPrescription:
        values: dict[str, Any] = {
            "prescription_identifier": 1000 + row,
            "prescribed_date": date(2024, 1, 15),
            "patient_first_name": "Jane",
            "patient_last_name": "Doe",
            "patient_dob": date(1980, 5, 1),
            "patient_mrn": f"MRN{row:04d}",
            "prescriber_last_name": "Smith",
            "prescriber_first_name": "John",
            "prescriber_npi": "1234567890",
            "organization_identifier": "CE001",
            "location_identifier": "LOC1",
            "location_name": "Main Clinic",
            "pharmacy_name": "Main Street Pharmacy",
            "pharmacy_npi": "1111111111",
            "ndc_code": "00074433902",
            "medication_name": "HUMIRA PEN",
            "dispense_quantity": 2,
            "refills_authorized": 3,
            "days_supply": 28,
            "primary_insurance_company": "Acme Health Plan",
            "primary_bin": "610014",
            "primary_pcn": "ADV",
            "source_file": "scripts.xlsx",
        }
        values.update(overrides)
        return ParsedPrescription(row=row, **values)

    return factory


@pytest.fixture
def make_claim() -> Callable[..., ParsedClaim]:
    """Factory for a valid claim candidate; keyword overrides win."""

    def factory(row: int = 1, **overrides: Any) -> ParsedClaim:
        values: dict[str, Any] = {
            "prescription_number": 5000 + row,
            "date_rx_written": date(2024, 1, 10),
            "fill_date": date(2024, 1, 12),
            "refill_number": 0,
            "covered_entity_name": "Acme Health",
            "opaid": "CE001",
            "pharmacy_name": "Main Street Pharmacy",
            "pharmacy_nabp_npi": "1111111111",
            "first_name": "Jane",
            "last_name": "Doe",
            "date_of_birth": date(1980, 5, 1),
            "prescriber_name": "Smith, John",
            "prescriber_npi_dea": "1234567890",
            "ndc": "00074433902",
            "drug_name": "HUMIRA PEN",
            "qty_dispensed": 2,
            "days_supply": 28,
            "drug_cost_340b": Decimal("125.50"),
        }
        values.update(overrides)
        return ParsedClaim(row=row, **values)

    return factory
