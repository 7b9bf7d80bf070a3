"""
Shared test configuration and synthetic diary data.

The synthetic study has 20 participants x 10 diary days. Satisfaction rises
then falls with within-person solitude time, so the RQ1 quadratic is
negative; every other outcome is noise around a participant intercept.
"""

import os
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def simulate_study(n_subjects: int = 20, n_days: int = 10, seed: int = 0):
    """Return (diary, baseline) tables in their raw on-disk layout."""
    rng = np.random.default_rng(seed)
    diary_rows = []
    baseline_rows = []
    for i in range(n_subjects):
        pid = f"P{i + 1:02d}"
        usual_time = rng.uniform(0.2, 0.7)
        intercept = rng.normal(0.0, 0.6)
        baseline_rows.append({
            "participant_id": pid,
            "sdm": rng.normal(3.5, 0.8),
            "age": int(rng.integers(18, 30)),
            "gender": "female" if i % 2 else "male",
        })
        for day in range(1, n_days + 1):
            ltime = float(np.clip(usual_time + rng.normal(0.0, 0.15), 0.0, 1.0))
            dev = ltime - usual_time
            diary_rows.append({
                "participant_id": pid,
                "day": day,
                "satisfaction": 5.0 + intercept + 1.0 * dev - 6.0 * dev ** 2 + rng.normal(0.0, 0.3),
                "lonely": 2.0 + 0.5 * intercept + rng.normal(0.0, 0.5),
                "alonely": 2.5 + 0.4 * intercept + rng.normal(0.0, 0.5),
                "stress": 3.0 - 0.3 * intercept + rng.normal(0.0, 0.5),
                "choice": float(rng.integers(1, 6)),
                "autonomy": 4.0 + 0.5 * intercept + rng.normal(0.0, 0.5),
                "ltime": ltime,
            })
    return pd.DataFrame(diary_rows), pd.DataFrame(baseline_rows)


@pytest.fixture
def study_tables():
    return simulate_study()


@pytest.fixture
def study_files(tmp_path, study_tables):
    diary, baseline = study_tables
    diary_path = tmp_path / "diary.csv"
    baseline_path = tmp_path / "baseline.csv"
    diary.to_csv(diary_path, index=False)
    baseline.to_csv(baseline_path, index=False)
    return diary_path, baseline_path


@pytest.fixture
def observations(study_files):
    from solitude.preprocessing import load_dataset

    diary_path, baseline_path = study_files
    return load_dataset(diary_path, baseline_path, verbose=False)


@pytest.fixture
def features(observations):
    from solitude.preprocessing import build_features

    return build_features(observations)


@pytest.fixture
def fit_cache_dir(tmp_path) -> Path:
    return tmp_path / "fit_cache"


@pytest.fixture
def boundary_features(features):
    """Feature table where every participant reports the same set of stress
    values, so stress has exactly zero between-participant variance."""
    rng = np.random.default_rng(5)
    values = rng.normal(3.0, 0.5, 10)
    out = features.copy()
    out["stress"] = out.groupby("participant_id")["stress"].transform(
        lambda s: rng.permutation(values)[: len(s)]
    )
    return out
