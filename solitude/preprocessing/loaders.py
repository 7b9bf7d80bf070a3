"""
Dataset loading for the diary study.

Reads the per-day diary table and the per-person baseline table, keeps the
required columns, harmonises types, and joins baseline traits onto every
diary row of the same participant.

Usage:
    from solitude.preprocessing import load_dataset
    df = load_dataset()                                   # data/raw/diary.csv + baseline.csv
    df = load_dataset("diary.csv", "baseline.csv", verbose=False)
"""

from __future__ import annotations

import os
import tempfile
import warnings
from pathlib import Path
from typing import Optional, Union

import pandas as pd
import requests

from ..errors import DataUnavailable, SchemaError
from .constants import (
    BASELINE_COLUMN_ALIASES,
    BASELINE_NUMERIC_COLS,
    DAY_COL,
    DEFAULT_BASELINE_PATH,
    DEFAULT_DIARY_PATH,
    DIARY_COLUMN_ALIASES,
    DIARY_NUMERIC_COLS,
    PARTICIPANT_COL,
    SUPPORTED_SUFFIXES,
)
from .core import (
    coerce_numeric,
    ensure_participant_id,
    normalize_columns,
    normalize_gender_series,
)

PathLike = Union[str, Path]


# =============================================================================
# FILE ACCESS
# =============================================================================

def fetch_if_missing(path: PathLike, url: Optional[str] = None, timeout: float = 60.0) -> Path:
    """
    Make sure ``path`` exists locally, downloading it from ``url`` if needed.

    Idempotent: an existing file is returned untouched and no request is made.
    The download is written to a temporary file in the target directory and
    renamed into place, so a concurrent reader never sees a partial file.

    Raises
    ------
    DataUnavailable
        If the file is absent and no URL is given, or the download fails.
    """
    path = Path(path)
    if path.exists():
        return path
    if not url:
        raise DataUnavailable(f"Input file not found and no download URL given: {path}")

    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise DataUnavailable(f"Could not fetch {url}: {exc}") from exc

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".part")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(response.content)
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)
    return path


def read_table(path: PathLike) -> pd.DataFrame:
    """Read a rectangular table (csv/tsv/txt/parquet) into a DataFrame."""
    path = Path(path)
    if not path.exists():
        raise DataUnavailable(f"Input file not found: {path}")

    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise DataUnavailable(f"Unsupported file type '{suffix}' for {path}")
    if suffix == ".parquet":
        return pd.read_parquet(path)
    if suffix in {".tsv", ".txt"}:
        return pd.read_csv(path, sep="\t", encoding="utf-8-sig")
    return pd.read_csv(path, encoding="utf-8-sig")


# =============================================================================
# TABLE LOADERS
# =============================================================================

def load_diary(path: PathLike = DEFAULT_DIARY_PATH) -> pd.DataFrame:
    """
    Load the per-day diary table.

    Returns
    -------
    pd.DataFrame
        One row per (participant_id, day), numeric outcome/predictor columns.

    Raises
    ------
    SchemaError
        If a required column is missing or a (participant, day) pair repeats.
    """
    raw = read_table(path)
    df = normalize_columns(raw, DIARY_COLUMN_ALIASES, source=f"diary ({Path(path).name})")
    df = ensure_participant_id(df)
    df = coerce_numeric(df, DIARY_NUMERIC_COLS)

    n_bad_day = int(df[DAY_COL].isna().sum())
    if n_bad_day:
        warnings.warn(f"Dropping {n_bad_day} diary rows without a valid day index.", UserWarning)
        df = df.dropna(subset=[DAY_COL])
    df[DAY_COL] = df[DAY_COL].astype(int)

    dupes = df.duplicated(subset=[PARTICIPANT_COL, DAY_COL], keep=False)
    if dupes.any():
        examples = df.loc[dupes, [PARTICIPANT_COL, DAY_COL]].drop_duplicates().head(5)
        raise SchemaError(
            f"diary: {int(dupes.sum())} rows share a (participant_id, day) key, e.g. "
            f"{examples.to_dict('records')}"
        )

    return df.sort_values([PARTICIPANT_COL, DAY_COL]).reset_index(drop=True)


def load_baseline(path: PathLike = DEFAULT_BASELINE_PATH) -> pd.DataFrame:
    """Load the per-participant baseline table (motivation, age, gender)."""
    raw = read_table(path)
    df = normalize_columns(raw, BASELINE_COLUMN_ALIASES, source=f"baseline ({Path(path).name})")
    df = ensure_participant_id(df)
    df = coerce_numeric(df, BASELINE_NUMERIC_COLS)
    df["gender"] = normalize_gender_series(df["gender"])

    n_dupes = int(df.duplicated(subset=[PARTICIPANT_COL]).sum())
    if n_dupes:
        warnings.warn(
            f"baseline: {n_dupes} duplicate participant rows; keeping the last record.",
            UserWarning,
        )
        df = df.drop_duplicates(subset=[PARTICIPANT_COL], keep="last")

    return df.reset_index(drop=True)


def load_dataset(
    diary_path: PathLike = DEFAULT_DIARY_PATH,
    baseline_path: PathLike = DEFAULT_BASELINE_PATH,
    diary_url: Optional[str] = None,
    baseline_url: Optional[str] = None,
    verbose: bool = True,
) -> pd.DataFrame:
    """
    Load and join the diary and baseline tables.

    Args:
        diary_path: Local path of the diary file (fetched from diary_url if absent)
        baseline_path: Local path of the baseline file
        diary_url: Optional download URL for the diary file
        baseline_url: Optional download URL for the baseline file
        verbose: Print a one-line summary

    Returns:
        Observation table keyed by participant_id and day, with baseline
        columns repeated on every row of a participant.
    """
    diary_path = fetch_if_missing(diary_path, diary_url)
    baseline_path = fetch_if_missing(baseline_path, baseline_url)

    diary = load_diary(diary_path)
    baseline = load_baseline(baseline_path)

    unmatched = sorted(set(diary[PARTICIPANT_COL]) - set(baseline[PARTICIPANT_COL]))
    if unmatched:
        warnings.warn(
            f"{len(unmatched)} diary participant(s) have no baseline record and are dropped: "
            f"{unmatched[:5]}{'...' if len(unmatched) > 5 else ''}",
            UserWarning,
        )

    df = diary.merge(baseline, on=PARTICIPANT_COL, how="inner", validate="many_to_one")
    df = df.sort_values([PARTICIPANT_COL, DAY_COL]).reset_index(drop=True)

    if verbose:
        print(
            f"[OK] Loaded {len(df)} diary rows from "
            f"{df[PARTICIPANT_COL].nunique()} participants"
        )
    return df
