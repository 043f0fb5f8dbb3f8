"""Unit tests for batch row validation and contributor resolution."""

from __future__ import annotations

import os
import sys
from decimal import Decimal
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_charity.db")

import pytest

from app.backend.src.core.errors import RowValidationError
from app.backend.src.services.batch_validation import (
    BatchRow,
    build_resolution_table,
    normalize_nickname,
    parse_amount,
    parse_month,
    validate_row,
)


def _row(**overrides: object) -> BatchRow:
    values = {
        "case_number": "C-1",
        "case_title": "Roof repair",
        "contributor_nickname": "Abu Ali",
        "amount": "100",
        "month": "3",
    }
    values.update(overrides)
    return BatchRow(**values)  # type: ignore[arg-type]


def test_validate_row_resolves_contributor_case_insensitively() -> None:
    table = build_resolution_table({"  abu   ALI ": 7})

    intent = validate_row(_row(), table)

    assert intent.donor_id == 7
    assert intent.case_key == "C-1"
    assert intent.amount == Decimal("100")
    assert intent.month == 3
    assert intent.year is None


def test_validate_row_reports_unmapped_contributor() -> None:
    with pytest.raises(RowValidationError) as excinfo:
        validate_row(_row(contributor_nickname="Stranger"), {})

    assert excinfo.value.codes == ["unmapped_contributor"]
    assert "Stranger" in str(excinfo.value)


def test_validate_row_collects_every_issue() -> None:
    row = _row(case_number=" ", case_title="", amount="-5", month="Smarch")

    with pytest.raises(RowValidationError) as excinfo:
        validate_row(row, {"abu ali": 1})

    assert excinfo.value.codes == [
        "missing_field",
        "missing_field",
        "non_positive_amount",
        "invalid_month",
    ]


def test_validate_row_rejects_non_numeric_amount() -> None:
    with pytest.raises(RowValidationError) as excinfo:
        validate_row(_row(amount="n/a"), {"abu ali": 1})

    assert excinfo.value.codes == ["invalid_amount"]


def test_validate_row_uses_year_from_combined_case_number() -> None:
    intent = validate_row(_row(case_number="20240307", month="March"), {"abu ali": 2})

    assert (intent.month, intent.year) == (3, 2024)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("12", (12, None)),
        ("2024-05", (5, 2024)),
        ("05/2024", (5, 2024)),
        ("202405", (5, 2024)),
        ("Sept", None),
        ("sep 2023", (9, 2023)),
        ("January", (1, None)),
        ("13", None),
        ("", None),
    ],
)
def test_parse_month_formats(value: str, expected: tuple[int, int | None] | None) -> None:
    assert parse_month(value) == expected


def test_parse_amount_strips_currency_formatting() -> None:
    assert parse_amount("$1,250.50") == Decimal("1250.50")
    assert parse_amount(" ") is None
    assert parse_amount(25) == Decimal("25")
    assert parse_amount("100 €") == Decimal("100")
    assert parse_amount("-$5") == Decimal("-5")


@pytest.mark.parametrize("value", ["1e5", "12abc34", "1.2.3", "12,34", "1$2", "--5", "-(5)", float("nan")])
def test_parse_amount_rejects_malformed_values(value: object) -> None:
    assert parse_amount(value) is None


def test_parse_amount_reads_parentheses_as_negative() -> None:
    assert parse_amount("(100)") == Decimal("-100")
    assert parse_amount("($1,000.00)") == Decimal("-1000.00")


@pytest.mark.parametrize(("amount", "code"), [("12abc34", "invalid_amount"), ("(100)", "non_positive_amount")])
def test_validate_row_reports_malformed_amounts(amount: str, code: str) -> None:
    with pytest.raises(RowValidationError) as excinfo:
        validate_row(_row(amount=amount), {"abu ali": 1})

    assert excinfo.value.codes == [code]


def test_normalize_nickname_collapses_whitespace_and_case() -> None:
    assert normalize_nickname("  Umm   Khalid ") == "umm khalid"
    assert normalize_nickname(None) == ""


def test_build_resolution_table_skips_cleared_and_blank_entries() -> None:
    table = build_resolution_table({"A": 1, "B": None, "  ": 3})  # type: ignore[dict-item]

    assert table == {"a": 1}
