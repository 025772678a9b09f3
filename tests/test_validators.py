"""Tests for field and record validation."""

from datetime import date
from decimal import Decimal

import pytest

from importer_340b.ingest.validators import (
    aggregate_validation_results,
    validate_claim,
    validate_date,
    validate_date_order,
    validate_ndc,
    validate_npi,
    validate_number,
    validate_prescription,
    validate_required,
)
from importer_340b.models import Severity

TODAY = date(2024, 6, 1)


class TestValidateDate:
    """Tests for validate_date."""

    def test_required_blank_is_error(self) -> None:
        finding = validate_date(None, "Fill Date", 4, required=True)
        assert finding is not None
        assert finding.severity is Severity.ERROR
        assert finding.field == "Fill Date"
        assert finding.message == "Fill Date is required"
        assert finding.row == 4

    def test_optional_blank_passes(self) -> None:
        assert validate_date("", "Claim Date", 1) is None

    def test_unparsable_is_error(self) -> None:
        finding = validate_date("not a date", "Fill Date", 1)
        assert finding is not None
        assert finding.message == "Fill Date is not a valid date"

    def test_future_is_error(self) -> None:
        finding = validate_date(date(2024, 7, 1), "Fill Date", 1, today=TODAY)
        assert finding is not None
        assert finding.is_error
        assert "future" in finding.message

    def test_future_allowed(self) -> None:
        assert validate_date(date(2024, 7, 1), "Fill Date", 1, allow_future=True, today=TODAY) is None

    def test_outside_bounds_is_warning(self) -> None:
        """Date bounds are soft guidance."""
        finding = validate_date(
            date(1990, 1, 1), "Fill Date", 1, min_date=date(2000, 1, 1), today=TODAY
        )
        assert finding is not None
        assert finding.severity is Severity.WARNING


class TestValidateDateOrder:
    """Tests for validate_date_order."""

    def test_later_before_earlier_is_error(self) -> None:
        finding = validate_date_order(
            date(2024, 1, 10), date(2024, 1, 5), "Date Rx Written", "Fill Date", 2
        )
        assert finding is not None
        assert finding.is_error
        assert finding.field == "Fill Date"

    def test_same_day_passes(self) -> None:
        day = date(2024, 1, 10)
        assert validate_date_order(day, day, "Date Rx Written", "Fill Date", 2) is None

    @pytest.mark.parametrize(
        ("earlier", "later"),
        [("garbage", date(2024, 1, 5)), (date(2024, 1, 10), None), (None, "???")],
    )
    def test_unparsable_skipped(self, earlier: object, later: object) -> None:
        """Format problems are reported by validate_date, not twice."""
        assert validate_date_order(earlier, later, "Date Rx Written", "Fill Date", 2) is None


class TestValidateNumber:
    """Tests for validate_number."""

    def test_required_missing(self) -> None:
        finding = validate_number(None, "Refill Number", 1, required=True)
        assert finding is not None
        assert finding.message == "Refill Number is required"

    def test_non_numeric_is_error(self) -> None:
        finding = validate_number("abc", "Qty", 1)
        assert finding is not None
        assert finding.is_error

    def test_zero_disallowed(self) -> None:
        finding = validate_number(0, "Qty", 1, allow_zero=False)
        assert finding is not None
        assert "zero" in finding.message

    def test_negative_disallowed_by_default(self) -> None:
        finding = validate_number(-1, "Qty", 1)
        assert finding is not None
        assert "negative" in finding.message

    def test_below_min_is_error(self) -> None:
        finding = validate_number(0.0001, "Qty", 1, min_value=0.001)
        assert finding is not None
        assert finding.is_error

    def test_above_max_is_warning(self) -> None:
        """The ceiling is soft unless strict_max is set."""
        finding = validate_number(500, "Days Supply", 1, max_value=365)
        assert finding is not None
        assert finding.severity is Severity.WARNING

    def test_above_strict_max_is_error(self) -> None:
        finding = validate_number(100, "Refill Number", 1, max_value=99, strict_max=True)
        assert finding is not None
        assert finding.is_error

    def test_whole_number(self) -> None:
        finding = validate_number(2.5, "Refill Number", 1, whole_number=True)
        assert finding is not None
        assert "whole" in finding.message

    def test_decimal_accepted(self) -> None:
        assert validate_number(Decimal("12.50"), "340B Drug Cost", 1, min_value=0) is None


class TestFormatValidators:
    """Tests for NDC, NPI and required-text checks."""

    def test_ten_digit_ndc_warns(self) -> None:
        finding = validate_ndc("1234567890", 1)
        assert finding is not None
        assert finding.severity is Severity.WARNING
        assert finding.message == "NDC should be 11 digits, got 10 digits"

    def test_hyphenated_eleven_digit_ndc_passes(self) -> None:
        assert validate_ndc("00074-4339-02", 1) is None

    def test_short_npi_warns(self) -> None:
        finding = validate_npi("12345", "Prescriber NPI", 1)
        assert finding is not None
        assert finding.severity is Severity.WARNING

    def test_blank_npi_passes(self) -> None:
        assert validate_npi(None, "Prescriber NPI", 1) is None

    def test_required_whitespace(self) -> None:
        finding = validate_required("   ", "Patient Last Name", 9)
        assert finding is not None
        assert finding.field == "Patient Last Name"
        assert finding.is_error


class TestValidateClaim:
    """Tests for validate_claim."""

    def test_valid_claim(self, make_claim) -> None:
        result = validate_claim(make_claim(), 1, today=TODAY)
        assert result.is_valid is True
        assert result.errors == []

    def test_missing_prescription_number(self, make_claim) -> None:
        result = validate_claim(make_claim(prescription_number=None), 1, today=TODAY)
        assert result.is_valid is False
        assert [e.field for e in result.errors] == ["Prescription Number"]

    def test_prescription_number_beyond_64_bits(self, make_claim) -> None:
        """A number too large for the key column is rejected per row."""
        result = validate_claim(make_claim(prescription_number=2**63), 1, today=TODAY)
        assert result.is_valid is False
        assert [e.field for e in result.errors] == ["Prescription Number"]

        at_limit = validate_claim(make_claim(prescription_number=2**63 - 1), 1, today=TODAY)
        assert at_limit.is_valid is True

    def test_fill_before_written(self, make_claim) -> None:
        claim = make_claim(date_rx_written=date(2024, 2, 1), fill_date=date(2024, 1, 1))
        result = validate_claim(claim, 1, today=TODAY)
        assert [e.field for e in result.errors] == ["Fill Date"]

    @pytest.mark.parametrize("refill", [-1, 100, 150])
    def test_refill_out_of_range_is_error(self, make_claim, refill: int) -> None:
        """Refill numbers outside 0-99 are structural errors."""
        result = validate_claim(make_claim(refill_number=refill), 1, today=TODAY)
        assert [e.field for e in result.errors] == ["Refill Number"]

    def test_days_supply_is_warning_only(self, make_claim) -> None:
        result = validate_claim(make_claim(days_supply=0), 1, today=TODAY)
        assert result.is_valid is True
        assert [w.field for w in result.warnings] == ["Days Supply"]

    def test_negative_drug_cost_is_warning(self, make_claim) -> None:
        result = validate_claim(make_claim(drug_cost_340b=Decimal("-5")), 1, today=TODAY)
        assert result.is_valid is True
        assert [w.field for w in result.warnings] == ["340B Drug Cost"]

    def test_large_quantity_warns(self, make_claim) -> None:
        result = validate_claim(make_claim(qty_dispensed=150000), 1, today=TODAY)
        assert result.is_valid is True
        assert [w.field for w in result.warnings] == ["Quantity Dispensed"]

    def test_dea_number_not_checked_as_npi(self, make_claim) -> None:
        result = validate_claim(make_claim(prescriber_npi_dea="AB1234563"), 1, today=TODAY)
        assert result.warnings == []


class TestValidatePrescription:
    """Tests for validate_prescription."""

    def test_valid_prescription(self, make_prescription) -> None:
        result = validate_prescription(make_prescription(), 1, today=TODAY)
        assert result.is_valid is True
        assert result.errors == []

    def test_identifier_beyond_64_bits(self, make_prescription) -> None:
        prescription = make_prescription(prescription_identifier=10**20)
        result = validate_prescription(prescription, 1, today=TODAY)
        assert [e.field for e in result.errors] == ["Prescription Identifier"]

    @pytest.mark.parametrize(
        ("attribute", "field_name"),
        [
            ("patient_first_name", "Patient First Name"),
            ("patient_last_name", "Patient Last Name"),
            ("prescriber_last_name", "Prescriber Last Name"),
            ("prescribed_date", "Prescribed Date"),
            ("prescription_identifier", "Prescription Identifier"),
        ],
    )
    def test_missing_required_field(
        self, make_prescription, attribute: str, field_name: str
    ) -> None:
        """The finding names the missing field exactly."""
        result = validate_prescription(make_prescription(**{attribute: None}), 1, today=TODAY)
        assert result.is_valid is False
        assert [e.field for e in result.errors] == [field_name]
        assert result.errors[0].severity is Severity.ERROR

    def test_ten_digit_ndc_is_warning(self, make_prescription) -> None:
        result = validate_prescription(
            make_prescription(ndc_code="1234567890"), 1, today=TODAY
        )
        assert result.is_valid is True
        assert result.warnings[0].message == "NDC should be 11 digits, got 10 digits"

    def test_soft_numeric_fields_only_warn(self, make_prescription) -> None:
        prescription = make_prescription(
            dispense_quantity=-1, refills_authorized=120, days_supply="many"
        )
        result = validate_prescription(prescription, 1, today=TODAY)
        assert result.is_valid is True
        assert {w.field for w in result.warnings} == {
            "Dispense Quantity",
            "Refills Authorized",
            "Days Supply",
        }


class TestAggregateValidationResults:
    """Tests for aggregate_validation_results."""

    def test_counts_by_field(self, make_prescription) -> None:
        results = [
            validate_prescription(make_prescription(row=1, patient_last_name=None), 1, today=TODAY),
            validate_prescription(make_prescription(row=2, patient_last_name=None), 2, today=TODAY),
            validate_prescription(make_prescription(row=3, ndc_code="123"), 3, today=TODAY),
        ]
        aggregate = aggregate_validation_results(results)

        assert aggregate.total_errors == 2
        assert aggregate.total_warnings == 1
        assert aggregate.errors_by_field == {"Patient Last Name": 2}
        assert aggregate.warnings_by_field == {"NDC": 1}
