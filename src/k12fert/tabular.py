"""
Tabular file I/O.

Survey extracts arrive as Stata ``.dta`` files or CSV; both are read into
DataFrames and written back by suffix. Stata value labels are not
converted to categoricals so that numeric codes (province, region) keep
their values.
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from .exceptions import ValidationError

SUPPORTED_SUFFIXES = ('.csv', '.dta')


def _suffix(path) -> str:
    suffix = Path(path).suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ValidationError(
            f"Unsupported table format '{suffix}' for {path}. "
            f"Supported: {list(SUPPORTED_SUFFIXES)}"
        )
    return suffix


def read_table(path, columns: list[str] | None = None) -> pd.DataFrame:
    """
    Read a CSV or Stata file.

    Parameters
    ----------
    path : str or Path
        File to read; the format is taken from the suffix.
    columns : list of str, optional
        Subset of columns to load.
    """
    if _suffix(path) == '.dta':
        return pd.read_stata(path, columns=columns, convert_categoricals=False)
    return pd.read_csv(path, usecols=columns)


def write_table(df: pd.DataFrame, path) -> None:
    """Write ``df`` as CSV or Stata (version 118) by suffix, without the index."""
    if _suffix(path) == '.dta':
        df.to_stata(path, write_index=False, version=118)
    else:
        df.to_csv(path, index=False)
