"""
Core helpers for preprocessing.
"""

from __future__ import annotations

import re
import warnings
from typing import Dict, Iterable, List, Optional, Set

import numpy as np
import pandas as pd

from ..errors import SchemaError
from .constants import (
    FEMALE_TOKENS_EXACT,
    MALE_TOKENS_EXACT,
    PARTICIPANT_COL,
)


def _column_key(name: object) -> str:
    return re.sub(r"[\s\-\.]+", "_", str(name).strip().lower())


def normalize_columns(
    df: pd.DataFrame,
    aliases: Dict[str, Set[str]],
    required: Optional[Iterable[str]] = None,
    source: str = "table",
) -> pd.DataFrame:
    """
    Rename columns to canonical names and keep only the mapped ones.

    Parameters
    ----------
    df : pd.DataFrame
        Raw table as read from disk.
    aliases : dict
        Canonical name -> set of accepted spellings (compared case-insensitively).
    required : iterable of str, optional
        Canonical columns that must be present. Defaults to every key in aliases.
    source : str
        Label used in the error message.

    Raises
    ------
    SchemaError
        If a required canonical column has no matching raw column.
    """
    lookup = {}
    for canonical, spellings in aliases.items():
        for spelling in spellings | {canonical}:
            lookup[_column_key(spelling)] = canonical

    rename = {}
    for col in df.columns:
        canonical = lookup.get(_column_key(col))
        if canonical is not None and canonical not in rename.values():
            rename[col] = canonical

    result = df.rename(columns=rename)
    required = list(aliases) if required is None else list(required)
    missing = [col for col in required if col not in result.columns]
    if missing:
        raise SchemaError(f"{source}: missing required column(s) {missing}; found {list(df.columns)}")

    keep = [col for col in aliases if col in result.columns]
    return result[keep].copy()


def coerce_numeric(df: pd.DataFrame, columns: List[str]) -> pd.DataFrame:
    """Coerce columns to float; unparsable entries become NaN."""
    for col in columns:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce").astype(float)
    return df


def ensure_participant_id(df: pd.DataFrame, warn_threshold: float = 0.0) -> pd.DataFrame:
    """
    Harmonise participant ids to stripped strings and drop rows without one.

    A UserWarning reports the dropped rows when their share of the table
    exceeds ``warn_threshold`` percent.
    """
    ids = df[PARTICIPANT_COL]
    missing_count = int(ids.isna().sum())
    missing_pct = missing_count / len(df) * 100 if len(df) > 0 else 0
    if missing_count and missing_pct > warn_threshold:
        warnings.warn(
            f"participant_id column has {missing_pct:.1f}% missing values ({missing_count}/{len(df)} rows). "
            "These rows are dropped.",
            UserWarning,
        )

    as_float = pd.to_numeric(ids, errors="coerce")
    # 1.0 and "1" should meet in the join
    integral = as_float.notna() & np.isclose(as_float.fillna(0) % 1, 0)
    normalized = ids.astype(str).str.strip()
    normalized.loc[integral] = as_float[integral].astype("int64").astype(str)
    normalized.loc[ids.isna()] = np.nan
    df[PARTICIPANT_COL] = normalized
    return df.dropna(subset=[PARTICIPANT_COL])


def normalize_gender_value(value: object) -> Optional[str]:
    """
    Normalize free-text or numeric gender codes to 'male'/'female'.
    Returns None if the value cannot be mapped.
    """
    if value is None or (isinstance(value, float) and np.isnan(value)):
        return None
    token = str(value).strip().lower()
    if token.endswith(".0"):
        token = token[:-2]
    if token in FEMALE_TOKENS_EXACT:
        return "female"
    if token in MALE_TOKENS_EXACT:
        return "male"
    return None


def normalize_gender_series(series: pd.Series) -> pd.Series:
    mapped = series.apply(normalize_gender_value)
    return pd.Series(
        pd.Categorical(mapped, categories=["female", "male"]),
        index=series.index,
    )
