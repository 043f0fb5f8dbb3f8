"""Spreadsheet parsing for batch case uploads."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Any
from zipfile import BadZipFile

import pandas as pd
import structlog

from app.backend.src.core.errors import UploadValidationError

from .batch_validation import parse_amount
from .cleaning import clean_dataframe
from .mapping import map_columns, missing_columns, resolve_column_mapping

LOGGER = structlog.get_logger(__name__)

CSV_SUFFIXES = {".csv", ".txt"}
EXCEL_SUFFIXES = {".xlsx"}


@dataclass(frozen=True)
class UploadRow:
    """One data row of an uploaded spreadsheet."""

    row_number: int
    case_number: str
    case_title: str
    contributor_nickname: str
    amount: Decimal | None
    month: str
    combined_case_number: str = ""

    @property
    def case_key(self) -> str:
        """Combined case number when present, otherwise the plain case number."""

        return self.combined_case_number or self.case_number

    @property
    def is_importable(self) -> bool:
        return bool(
            self.case_key
            and self.case_title
            and self.contributor_nickname
            and self.amount is not None
            and self.amount > 0
        )


@dataclass
class ParsedUpload:
    rows: list[UploadRow] = field(default_factory=list)
    skipped: int = 0

    @property
    def total_rows(self) -> int:
        return len(self.rows) + self.skipped


def read_upload_frame(filename: str, content: bytes) -> pd.DataFrame:
    """Load a CSV or Excel upload into a string-typed dataframe."""

    suffix = Path(filename or "").suffix.lower()
    if suffix not in CSV_SUFFIXES | EXCEL_SUFFIXES:
        raise UploadValidationError("Invalid file type. Please upload a CSV or Excel (.xlsx) file")

    try:
        if suffix in EXCEL_SUFFIXES:
            frame = pd.read_excel(BytesIO(content), dtype=str, sheet_name=0)
        else:
            frame = pd.read_csv(
                BytesIO(content),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                encoding="utf-8-sig",
            )
    except (ValueError, OSError, BadZipFile) as exc:
        LOGGER.warning("batch_upload_unreadable", filename=filename, error=str(exc))
        raise UploadValidationError(f"Unable to read uploaded file: {exc}") from exc

    return clean_dataframe(frame)


def _cell(record: dict[str, Any], column: str) -> str:
    return str(record.get(column) or "").strip()


def parse_upload(filename: str, content: bytes) -> ParsedUpload:
    """Parse an upload into rows, skipping rows that cannot become items.

    Rows missing a case number, title or contributor, or with a non-positive
    amount, are counted as skipped.
    """

    frame = read_upload_frame(filename, content)
    if frame.empty:
        raise UploadValidationError("File must have at least a header and one data row")

    mapping = resolve_column_mapping(frame.columns)
    missing = missing_columns(mapping)
    if missing:
        raise UploadValidationError(
            "File must contain columns: CaseNumber, CaseTitle, ContributorNickname, Amount, Month "
            f"(missing: {', '.join(missing)})"
        )

    frame = map_columns(frame[list(mapping)], mapping)
    parsed = ParsedUpload()
    for position, record in enumerate(frame.to_dict(orient="records"), start=1):
        row = UploadRow(
            row_number=position,
            case_number=_cell(record, "case_number"),
            combined_case_number=_cell(record, "combined_case_number"),
            case_title=_cell(record, "case_title"),
            contributor_nickname=_cell(record, "contributor_nickname"),
            amount=parse_amount(_cell(record, "amount")),
            month=_cell(record, "month"),
        )
        if row.is_importable:
            parsed.rows.append(row)
        else:
            parsed.skipped += 1

    LOGGER.info(
        "batch_upload_parsed",
        filename=filename,
        rows=len(parsed.rows),
        skipped=parsed.skipped,
    )
    return parsed


def generate_summary(rows: list[UploadRow]) -> dict[str, Any]:
    """Summarise parsed rows by case, contributor and month."""

    cases: dict[str, dict[str, Any]] = {}
    distinct_cases: set[str] = set()
    contributors: set[str] = set()
    cases_by_month: dict[str, set[str]] = {}
    total_amount = Decimal("0")

    for row in rows:
        amount = row.amount or Decimal("0")
        entry = cases.setdefault(
            row.case_key,
            {"case_number": row.case_key, "case_title": row.case_title, "item_count": 0, "total_amount": Decimal("0")},
        )
        entry["item_count"] += 1
        entry["total_amount"] += amount

        distinct_cases.add(row.combined_case_number or f"{row.month}-{row.case_number}")
        cases_by_month.setdefault(row.month, set()).add(row.case_key)
        contributors.add(row.contributor_nickname)
        total_amount += amount

    return {
        "total_items": len(rows),
        "unique_cases": len(cases),
        "distinct_cases": len(distinct_cases),
        "unique_contributors": len(contributors),
        "total_amount": float(total_amount),
        "cases": [
            {**entry, "total_amount": float(entry["total_amount"])} for entry in cases.values()
        ],
        "cases_by_month": {month: len(keys) for month, keys in cases_by_month.items()},
    }


__all__ = [
    "ParsedUpload",
    "UploadRow",
    "generate_summary",
    "parse_upload",
    "read_upload_frame",
]
