"""
Feature derivation for the multilevel models.

Per participant (ordered by day) this module adds:
- one-day lags of every outcome and of solitude time (missing on day 1)
- grand-mean centring, then a between-person mean (``_pm``) and a
  within-person deviation (``_pmc``) for solitude time, choice and every lag
- quadratic terms built by squaring the between and within components
  separately (centre first, split, then square)
- grand-mean centring of the subject-level motivation score across subjects

Derived columns are always recomputed from the raw columns, so calling
build_features() on its own output gives the same table.

Usage:
    from solitude.preprocessing import build_features
    features = build_features(load_dataset())
"""

from __future__ import annotations

from typing import Iterable, List, Tuple

import numpy as np
import pandas as pd

from ..errors import SchemaError
from .constants import (
    CHOICE_COL,
    DAY_COL,
    GMC_SUFFIX,
    LAG_SUFFIX,
    LAGGED_VARIABLES,
    MOTIVATION_COL,
    PARTICIPANT_COL,
    PM_SUFFIX,
    PMC_SUFFIX,
    QUAD_SUFFIX,
    QUADRATIC_VARIABLES,
    TIME_COL,
)


# =============================================================================
# COLUMN NAMING
# =============================================================================

def lag_name(column: str) -> str:
    return f"{column}{LAG_SUFFIX}"


def between_name(column: str) -> str:
    return f"{column}{PM_SUFFIX}"


def within_name(column: str) -> str:
    return f"{column}{PMC_SUFFIX}"


def quadratic_name(column: str) -> str:
    """Quadratic companion of a linear component, e.g. ltime_pmc -> ltime_pmc2."""
    return f"{column}{QUAD_SUFFIX}"


def centered_variables() -> List[str]:
    """Variables that receive the grand-mean / between / within decomposition."""
    return [TIME_COL, CHOICE_COL] + [lag_name(col) for col in LAGGED_VARIABLES]


# =============================================================================
# LAGS
# =============================================================================

def add_lagged_variables(
    df: pd.DataFrame,
    columns: Iterable[str] = LAGGED_VARIABLES,
    group_col: str = PARTICIPANT_COL,
    day_col: str = DAY_COL,
) -> pd.DataFrame:
    """
    Add ``<col>_lag``: the same participant's value on the previous day.

    The lag of day d is looked up at day d-1 rather than shifted by row, so a
    skipped day yields a missing lag instead of an older value.
    """
    result = df.copy()
    columns = [col for col in columns if col in result.columns]
    if not columns:
        return result

    previous = result[[group_col, day_col] + columns].copy()
    previous[day_col] = previous[day_col] + 1
    previous = previous.rename(columns={col: lag_name(col) for col in columns})

    result = result.drop(columns=[lag_name(col) for col in columns if lag_name(col) in result.columns])
    merged = result.merge(previous, on=[group_col, day_col], how="left", validate="one_to_one")
    merged.index = result.index
    return merged


# =============================================================================
# CENTERING
# =============================================================================

def grand_mean_center(series: pd.Series) -> pd.Series:
    """Subtract the sample mean; NaN entries are ignored and stay NaN."""
    return series - series.mean()


def split_within_between(
    df: pd.DataFrame,
    column: str,
    group_col: str = PARTICIPANT_COL,
) -> Tuple[pd.Series, pd.Series]:
    """
    Decompose a (centred) column into between- and within-person parts.

    Returns
    -------
    (between, within)
        between is the participant mean, constant within participant;
        within is the deviation from it and averages to zero per participant.
    """
    between = df.groupby(group_col)[column].transform("mean")
    within = df[column] - between
    return between, within


def add_centered_components(
    df: pd.DataFrame,
    columns: Iterable[str],
    group_col: str = PARTICIPANT_COL,
) -> pd.DataFrame:
    """Add ``_gmc``, ``_pm`` and ``_pmc`` columns for each variable."""
    result = df.copy()
    for col in columns:
        if col not in result.columns:
            raise SchemaError(f"Cannot centre '{col}': column not present")
        gmc = f"{col}{GMC_SUFFIX}"
        result[gmc] = grand_mean_center(result[col].astype(float))
        between, within = split_within_between(result, gmc, group_col=group_col)
        result[between_name(col)] = between
        result[within_name(col)] = within
    return result


def add_quadratic_components(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Square the already-split between and within components separately."""
    result = df.copy()
    for col in columns:
        for linear in (between_name(col), within_name(col)):
            if linear not in result.columns:
                raise SchemaError(f"Quadratic term needs '{linear}'; centre '{col}' first")
            result[quadratic_name(linear)] = result[linear] ** 2
    return result


def center_subject_level(
    df: pd.DataFrame,
    column: str = MOTIVATION_COL,
    group_col: str = PARTICIPANT_COL,
) -> pd.DataFrame:
    """
    Grand-mean centre a subject-level variable across subjects.

    The mean is taken over one value per subject, so subjects with more diary
    days do not weigh more.
    """
    result = df.copy()
    per_subject = result.groupby(group_col)[column].first()
    result[f"{column}{GMC_SUFFIX}"] = result[column] - per_subject.mean()
    return result


# =============================================================================
# PIPELINE
# =============================================================================

def build_features(df: pd.DataFrame, verbose: bool = False) -> pd.DataFrame:
    """
    Derive every predictor used by the model specifications.

    Args:
        df: Joined observation table from load_dataset()
        verbose: Print the number of derived columns

    Returns:
        Copy of df with lag, centred, between/within and quadratic columns.
    """
    missing = [col for col in [PARTICIPANT_COL, DAY_COL, MOTIVATION_COL] + LAGGED_VARIABLES + [CHOICE_COL]
               if col not in df.columns]
    if missing:
        raise SchemaError(f"Feature building needs column(s) {missing}")

    n_before = df.shape[1]
    result = df.sort_values([PARTICIPANT_COL, DAY_COL]).reset_index(drop=True)
    result = add_lagged_variables(result, LAGGED_VARIABLES)
    result = add_centered_components(result, centered_variables())
    result = add_quadratic_components(result, QUADRATIC_VARIABLES)
    result = center_subject_level(result, MOTIVATION_COL)

    if verbose:
        print(f"[OK] Derived {result.shape[1] - n_before} feature columns")
    return result


def decomposition_residual(df: pd.DataFrame, column: str = TIME_COL) -> float:
    """
    Largest absolute gap in gmc^2 = pm^2 + 2*pm*pmc + pmc^2 for one variable.

    A sanity check on the between/within split of the quadratic term; should
    be at floating-point noise level.
    """
    gmc = df[f"{column}{GMC_SUFFIX}"]
    pm = df[between_name(column)]
    pmc = df[within_name(column)]
    rebuilt = df[quadratic_name(between_name(column))] + 2 * pm * pmc + df[quadratic_name(within_name(column))]
    gap = (gmc ** 2 - rebuilt).abs()
    return float(np.nanmax(gap.to_numpy())) if gap.notna().any() else 0.0
