"""Day arithmetic and null-aware date reductions."""
from typing import List

import pandas as pd


def days_between(later: pd.Series, earlier: pd.Series) -> pd.Series:
    """Signed whole days from `earlier` to `later` (NaN where either is missing).

    Args:
        later: End dates
        earlier: Start dates

    Returns:
        Float Series of day differences
    """
    return (later - earlier).dt.days.astype('float64')


def add_days(dates: pd.Series, days) -> pd.Series:
    """Shift dates by a scalar or per-row number of days (NaT where days is missing)."""
    return dates + pd.to_timedelta(days, unit='D')


def row_min_date(df: pd.DataFrame, columns: List[str]) -> pd.Series:
    """Earliest date across columns per row, ignoring missing values.

    Rows where every column is missing come back as NaT.
    """
    return pd.to_datetime(df[columns].min(axis=1, skipna=True))


def row_max_date(df: pd.DataFrame, columns: List[str]) -> pd.Series:
    """Latest date across columns per row, ignoring missing values."""
    return pd.to_datetime(df[columns].max(axis=1, skipna=True))
