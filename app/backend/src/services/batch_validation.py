"""Row validation and contributor resolution for batch uploads."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from app.backend.src.core.errors import RowValidationError, ValidationIssue

_MONTH_NAMES = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}
_MONTH_ABBREVIATIONS = {name[:3]: number for name, number in _MONTH_NAMES.items()}

_ISO_MONTH = re.compile(r"^(\d{4})[-/](\d{1,2})$")
_SLASH_MONTH = re.compile(r"^(\d{1,2})[-/](\d{4})$")
_COMPACT_MONTH = re.compile(r"^(\d{4})(\d{2})$")
_NAMED_MONTH = re.compile(r"^([a-z]+)\.?(?:[\s,-]+(\d{4}))?$")
_COMBINED_CASE_NUMBER = re.compile(r"^(\d{4})(\d{2})\d{2,}$")
_AMOUNT = re.compile(
    r"^(?P<sign>-)?\s*[$€£¥₹]?\s*"
    r"(?P<number>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?|\.\d+)"
    r"\s*[$€£¥₹]?$"
)


@dataclass(frozen=True)
class BatchRow:
    """The raw fields of one uploaded row as stored on its batch item."""

    case_number: str
    case_title: str
    contributor_nickname: str
    amount: Any
    month: str

    @classmethod
    def from_item(cls, item: Any) -> "BatchRow":
        return cls(
            case_number=item.case_number or "",
            case_title=item.case_title or "",
            contributor_nickname=item.contributor_nickname or "",
            amount=item.amount,
            month=item.month or "",
        )


@dataclass(frozen=True)
class BatchItemIntent:
    """A validated row, ready to become a case contribution."""

    case_key: str
    title: str
    amount: Decimal
    donor_id: int
    month: int
    year: int | None


def normalize_nickname(value: str | None) -> str:
    """Return the lookup key used for contributor nicknames."""

    return " ".join((value or "").split()).casefold()


def build_resolution_table(mappings: Mapping[str, int | None]) -> dict[str, int]:
    """Normalise an operator-supplied nickname mapping for lookups."""

    return {
        normalize_nickname(nickname): int(user_id)
        for nickname, user_id in mappings.items()
        if normalize_nickname(nickname) and user_id is not None
    }


def parse_amount(value: Any) -> Decimal | None:
    """Parse a currency cell into a ``Decimal``.

    Accepts an optional currency symbol, surrounding whitespace and comma
    thousands separators. ``(100)`` is read as the accounting negative -100.
    Anything else, including exponents and embedded letters, is ``None``.
    """

    if value is None:
        return None
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return amount if amount.is_finite() else None

    text = str(value).strip()
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1].strip()

    match = _AMOUNT.match(text)
    if match is None:
        return None
    if match.group("sign"):
        if negative:
            return None
        negative = True
    try:
        amount = Decimal(match.group("number").replace(",", ""))
    except InvalidOperation:
        return None
    return -amount if negative else amount


def parse_month(value: str, case_key: str = "") -> tuple[int, int | None] | None:
    """Return ``(month, year)`` for a month cell or ``None`` if unparseable."""

    text = (value or "").strip().lower()
    if not text:
        return None

    month: int | None = None
    year: int | None = None

    if text.isdigit() and len(text) <= 2:
        month = int(text)
    elif match := _ISO_MONTH.match(text):
        year, month = int(match.group(1)), int(match.group(2))
    elif match := _SLASH_MONTH.match(text):
        month, year = int(match.group(1)), int(match.group(2))
    elif match := _COMPACT_MONTH.match(text):
        year, month = int(match.group(1)), int(match.group(2))
    elif match := _NAMED_MONTH.match(text):
        name = match.group(1)
        month = _MONTH_NAMES.get(name) or _MONTH_ABBREVIATIONS.get(name)
        year = int(match.group(2)) if match.group(2) else None

    if month is None or not 1 <= month <= 12:
        return None

    if year is None:
        combined = _COMBINED_CASE_NUMBER.match(case_key or "")
        if combined and int(combined.group(2)) == month:
            year = int(combined.group(1))
    return month, year


def validate_row(row: BatchRow, resolution_table: Mapping[str, int]) -> BatchItemIntent:
    """Validate ``row`` and resolve its contributor.

    All problems on the row are collected so the operator sees them at once.
    Raises :class:`RowValidationError` when the row cannot be imported.
    """

    issues: list[ValidationIssue] = []
    case_key = (row.case_number or "").strip()
    title = (row.case_title or "").strip()
    nickname = (row.contributor_nickname or "").strip()

    if not case_key:
        issues.append(ValidationIssue("missing_field", "case_number", "Case number is required"))
    if not title:
        issues.append(ValidationIssue("missing_field", "case_title", "Case title is required"))

    donor_id: int | None = None
    if not nickname:
        issues.append(
            ValidationIssue("missing_field", "contributor_nickname", "Contributor nickname is required")
        )
    else:
        donor_id = resolution_table.get(normalize_nickname(nickname))
        if donor_id is None:
            issues.append(
                ValidationIssue(
                    "unmapped_contributor",
                    "contributor_nickname",
                    f"No user mapped for contributor '{nickname}'",
                )
            )

    amount = parse_amount(row.amount)
    if amount is None:
        issues.append(ValidationIssue("invalid_amount", "amount", "Amount is not a number"))
    elif amount <= 0:
        issues.append(ValidationIssue("non_positive_amount", "amount", "Amount must be greater than 0"))

    parsed_month: tuple[int, int | None] | None = None
    if not (row.month or "").strip():
        issues.append(ValidationIssue("missing_field", "month", "Month is required"))
    else:
        parsed_month = parse_month(row.month, case_key)
        if parsed_month is None:
            issues.append(ValidationIssue("invalid_month", "month", f"Unrecognised month '{row.month}'"))

    if issues:
        raise RowValidationError(issues)

    assert donor_id is not None and amount is not None and parsed_month is not None
    return BatchItemIntent(
        case_key=case_key,
        title=title,
        amount=amount,
        donor_id=donor_id,
        month=parsed_month[0],
        year=parsed_month[1],
    )


__all__ = [
    "BatchItemIntent",
    "BatchRow",
    "build_resolution_table",
    "normalize_nickname",
    "parse_amount",
    "parse_month",
    "validate_row",
]
