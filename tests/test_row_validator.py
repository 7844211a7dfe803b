"""Tests for row validation."""
from __future__ import annotations

from datetime import date
from decimal import Decimal

from ledgermatch.pydanticModels.uploadModels import IncompleteEntry, ValidEntry
from ledgermatch.upload.row_validator import validate_row


def _row(**overrides):
    row = {
        "row_number": 2,
        "date": "01/09/2026",
        "description": "Aluguel escritorio",
        "amount": "2.000,00",
        "category": None,
        "transaction_type": "Despesa",
    }
    row.update(overrides)
    return row


class TestValidRows:
    def test_company_expense_is_stored_negative(self):
        result = validate_row(_row(), "company")

        assert isinstance(result, ValidEntry)
        assert result.date == date(2026, 9, 1)
        assert result.amount == Decimal("-2000.00")
        assert result.transaction_type == "expense"

    def test_bank_type_inferred_from_sign(self):
        credit = validate_row(_row(amount="150.00", transaction_type=None), "bank")
        debit = validate_row(_row(amount="-150.00", transaction_type=None), "bank")

        assert credit.transaction_type == "credit"
        assert credit.amount == Decimal("150.00")
        assert debit.transaction_type == "debit"
        assert debit.amount == Decimal("-150.00")

    def test_explicit_type_overrides_sign(self):
        result = validate_row(_row(amount="-80,00", transaction_type="Receita"), "company")

        assert result.transaction_type == "income"
        assert result.amount == Decimal("80.00")

    def test_missing_category_gets_a_default(self):
        result = validate_row(_row(category=None), "company")

        assert result.category

    def test_optional_fields_are_trimmed(self):
        result = validate_row(_row(cost_center="  CC-01 ", project=None), "company")

        assert result.cost_center == "CC-01"
        assert result.project is None


class TestIncompleteRows:
    def test_missing_description_is_named(self):
        result = validate_row(_row(row_number=5, description="  "), "company")

        assert isinstance(result, IncompleteEntry)
        assert result.row_number == 5
        assert result.error == "Missing required field(s): description"
        assert result.amount == "2.000,00"

    def test_errors_are_joined(self):
        result = validate_row(_row(date="32/13/2026", amount=None), "company")

        assert isinstance(result, IncompleteEntry)
        assert "Missing required field(s): amount" in result.error
        assert "Invalid date" in result.error
        assert "; " in result.error

    def test_unknown_transaction_type(self):
        result = validate_row(_row(transaction_type="transfer"), "bank")

        assert isinstance(result, IncompleteEntry)
        assert "Invalid transaction_type" in result.error

    def test_unparseable_amount(self):
        result = validate_row(_row(amount="dois mil"), "company")

        assert isinstance(result, IncompleteEntry)
        assert "Invalid amount" in result.error

    def test_amount_beyond_storage_precision(self):
        result = validate_row(_row(amount="1" + "0" * 30), "company")

        assert isinstance(result, IncompleteEntry)
        assert result.row_number == 2
        assert "out of range" in result.error
