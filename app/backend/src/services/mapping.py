"""Column mapping service."""

from __future__ import annotations

import re
from collections.abc import Iterable

import pandas as pd

REQUIRED_COLUMNS = ("case_number", "case_title", "contributor_nickname", "amount", "month")
OPTIONAL_COLUMNS = ("combined_case_number",)


def _header_key(header: str) -> str:
    return re.sub(r"[\s_\-]+", "", str(header)).lower()


def _matches(canonical: str, key: str) -> bool:
    if canonical == "combined_case_number":
        return "combinedcasenumber" in key
    if canonical == "case_number":
        return "casenumber" in key and "combined" not in key
    if canonical == "case_title":
        return "casetitle" in key
    if canonical == "contributor_nickname":
        return "contributornickname" in key or "contributor" in key
    return canonical in key


def resolve_column_mapping(columns: Iterable[str]) -> dict[str, str]:
    """Map spreadsheet headers onto canonical batch column names.

    The first header matching each canonical column wins; unmatched headers
    are ignored.
    """

    mapping: dict[str, str] = {}
    claimed: set[str] = set()
    for canonical in (*OPTIONAL_COLUMNS, *REQUIRED_COLUMNS):
        for column in columns:
            if column in mapping or canonical in claimed:
                continue
            if _matches(canonical, _header_key(column)):
                mapping[column] = canonical
                claimed.add(canonical)
    return mapping


def missing_columns(mapping: dict[str, str]) -> list[str]:
    present = set(mapping.values())
    return [column for column in REQUIRED_COLUMNS if column not in present]


def map_columns(df: pd.DataFrame, mapping: dict[str, str]) -> pd.DataFrame:
    """Rename dataframe columns according to mapping."""
    return df.rename(columns=mapping)
