"""Tests for spreadsheet parsing of batch uploads."""

from __future__ import annotations

import os
import sys
from decimal import Decimal
from io import BytesIO
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_charity.db")

import pandas as pd
import pytest

from app.backend.src.core.errors import UploadValidationError
from app.backend.src.services.batch_parser import generate_summary, parse_upload
from app.backend.src.services.mapping import resolve_column_mapping

CSV_CONTENT = (
    "Case Number,Case Title,Contributor Nickname,Amount,Month\n"
    "C-1,Roof repair,Abu Ali,100,3\n"
    "C-1,Roof repair,Umm Khalid,\"1,250.50\",3\n"
    "C-2,School fees,Abu Ali,$40,4\n"
    ",Missing case,Abu Ali,10,4\n"
    "C-3,Zero amount,Abu Ali,0,4\n"
    ",,,,\n"
).encode("utf-8")


def test_parse_upload_reads_csv_and_skips_unimportable_rows() -> None:
    parsed = parse_upload("donations.csv", CSV_CONTENT)

    assert [row.case_number for row in parsed.rows] == ["C-1", "C-1", "C-2"]
    assert parsed.rows[1].amount == Decimal("1250.50")
    assert parsed.rows[2].amount == Decimal("40")
    assert parsed.skipped == 2
    assert parsed.total_rows == 5


def test_parse_upload_prefers_combined_case_number() -> None:
    content = (
        "CombinedCaseNumber,CaseNumber,CaseTitle,ContributorNickname,Amount,Month\n"
        "20240301,1,Roof repair,Abu Ali,50,3\n"
    ).encode("utf-8")

    parsed = parse_upload("combined.csv", content)

    assert parsed.rows[0].case_key == "20240301"
    assert parsed.rows[0].case_number == "1"


def test_parse_upload_reads_excel() -> None:
    frame = pd.DataFrame(
        {
            "case_number": ["C-9"],
            "case_title": ["Medical bills"],
            "contributor": ["Abu Ali"],
            "amount": ["75"],
            "month": ["2024-06"],
        }
    )
    buffer = BytesIO()
    frame.to_excel(buffer, index=False)

    parsed = parse_upload("donations.xlsx", buffer.getvalue())

    assert len(parsed.rows) == 1
    assert parsed.rows[0].contributor_nickname == "Abu Ali"
    assert parsed.rows[0].month == "2024-06"


def test_parse_upload_rejects_missing_columns() -> None:
    content = b"Case Number,Amount\nC-1,10\n"

    with pytest.raises(UploadValidationError) as excinfo:
        parse_upload("partial.csv", content)

    assert "case_title" in excinfo.value.message
    assert excinfo.value.status_code == 400


@pytest.mark.parametrize(
    ("filename", "content"),
    [
        ("donations.pdf", b"%PDF-1.4"),
        ("empty.csv", b""),
        ("header_only.csv", b"Case Number,Case Title,Contributor Nickname,Amount,Month\n"),
        ("broken.xlsx", b"not a workbook"),
    ],
)
def test_parse_upload_rejects_unusable_files(filename: str, content: bytes) -> None:
    with pytest.raises(UploadValidationError):
        parse_upload(filename, content)


def test_resolve_column_mapping_does_not_confuse_combined_case_number() -> None:
    mapping = resolve_column_mapping(["Combined Case Number", "Case Number", "Contributor"])

    assert mapping == {
        "Combined Case Number": "combined_case_number",
        "Case Number": "case_number",
        "Contributor": "contributor_nickname",
    }


def test_generate_summary_groups_by_case_and_month() -> None:
    parsed = parse_upload("donations.csv", CSV_CONTENT)

    summary = generate_summary(parsed.rows)

    assert summary["total_items"] == 3
    assert summary["unique_cases"] == 2
    assert summary["unique_contributors"] == 2
    assert summary["total_amount"] == pytest.approx(1390.50)
    assert summary["cases_by_month"] == {"3": 1, "4": 1}
    roof = next(case for case in summary["cases"] if case["case_number"] == "C-1")
    assert roof["item_count"] == 2


def test_parse_upload_skips_malformed_and_accounting_negative_amounts() -> None:
    content = (
        "Case Number,Case Title,Contributor Nickname,Amount,Month\n"
        "C-1,Roof repair,Abu Ali,12abc34,3\n"
        "C-1,Roof repair,Abu Ali,(100),3\n"
        "C-1,Roof repair,Abu Ali,1e5,3\n"
        "C-1,Roof repair,Abu Ali,25,3\n"
    ).encode("utf-8")

    parsed = parse_upload("donations.csv", content)

    assert [row.amount for row in parsed.rows] == [Decimal("25")]
    assert parsed.skipped == 3
