"""Data cleaning service."""

from __future__ import annotations

import pandas as pd


def clean_dataframe(df: pd.DataFrame) -> pd.DataFrame:
    """Strip headers and cells, blank out missing values, drop empty rows."""
    cleaned = df.copy()
    cleaned.columns = [str(column).strip().strip('"') for column in cleaned.columns]
    cleaned = cleaned.fillna("").astype(str)
    if cleaned.empty:
        return cleaned
    cleaned = cleaned.apply(lambda column: column.str.strip())
    non_empty = cleaned.apply(lambda row: any(value for value in row), axis=1)
    return cleaned.loc[non_empty].reset_index(drop=True)
