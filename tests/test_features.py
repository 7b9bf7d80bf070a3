import numpy as np
import pandas as pd
import pytest

from solitude.errors import SchemaError
from solitude.preprocessing import (
    LAGGED_VARIABLES,
    add_centered_components,
    add_lagged_variables,
    build_features,
    centered_variables,
    decomposition_residual,
    split_within_between,
)


def test_within_between_worked_example():
    df = pd.DataFrame({
        "participant_id": ["A"] * 3 + ["B"] * 3,
        "ltime": [0.1, 0.3, 0.5, 0.4, 0.4, 0.4],
    })
    out = add_centered_components(df, ["ltime"])

    a = out[out["participant_id"] == "A"]
    b = out[out["participant_id"] == "B"]
    assert a["ltime_pmc"].tolist() == pytest.approx([-0.2, 0.0, 0.2], abs=1e-12)
    assert b["ltime_pmc"].tolist() == pytest.approx([0.0, 0.0, 0.0], abs=1e-12)
    # grand mean is 0.35: A's mean sits 0.05 below it, B's 0.05 above
    assert a["ltime_pm"].tolist() == pytest.approx([-0.05] * 3, abs=1e-12)
    assert b["ltime_pm"].tolist() == pytest.approx([0.05] * 3, abs=1e-12)


def test_split_returns_between_then_within():
    df = pd.DataFrame({"participant_id": ["A", "A", "B"], "x": [1.0, 3.0, 5.0]})
    between, within = split_within_between(df, "x")
    assert between.tolist() == [2.0, 2.0, 5.0]
    assert within.tolist() == [-1.0, 1.0, 0.0]


def test_lag_is_missing_on_first_day(features):
    first_days = features[features["day"] == 1]
    for col in LAGGED_VARIABLES:
        assert first_days[f"{col}_lag"].isna().all()


def test_lag_carries_previous_day_value(features):
    one = features[features["participant_id"] == "P05"].set_index("day")
    for col in LAGGED_VARIABLES:
        assert one.loc[2:, f"{col}_lag"].tolist() == pytest.approx(one.loc[:9, col].tolist())


def test_lag_after_skipped_day_is_missing():
    df = pd.DataFrame({
        "participant_id": ["A"] * 3,
        "day": [1, 2, 4],
        "ltime": [0.1, 0.2, 0.4],
    })
    out = add_lagged_variables(df, ["ltime"])
    assert np.isnan(out["ltime_lag"].iloc[0])
    assert out["ltime_lag"].iloc[1] == 0.1
    assert np.isnan(out["ltime_lag"].iloc[2])


def test_within_components_average_zero_per_subject(features):
    for var in centered_variables():
        means = features.groupby("participant_id")[f"{var}_pmc"].mean()
        assert means.abs().max() == pytest.approx(0.0, abs=1e-10)


def test_between_components_constant_and_equal_subject_mean(features):
    for var in centered_variables():
        grouped = features.groupby("participant_id")
        assert (grouped[f"{var}_pm"].nunique(dropna=True) <= 1).all()
        subject_mean = grouped[f"{var}_gmc"].transform("mean")
        mask = features[f"{var}_pm"].notna()
        assert features.loc[mask, f"{var}_pm"].to_numpy() == pytest.approx(subject_mean[mask].to_numpy())


def test_quadratic_decomposition_identity(features):
    assert decomposition_residual(features, "ltime") < 1e-12
    assert decomposition_residual(features, "ltime_lag") < 1e-12


def test_quadratic_terms_square_split_components(features):
    assert features["ltime_pmc2"].to_numpy() == pytest.approx(features["ltime_pmc"].to_numpy() ** 2)
    assert features["ltime_pm2"].to_numpy() == pytest.approx(features["ltime_pm"].to_numpy() ** 2)
    assert "ltime_lag_pmc2" in features.columns


def test_motivation_centred_over_subjects(features):
    per_subject = features.groupby("participant_id")["sdm_gmc"].first()
    assert per_subject.mean() == pytest.approx(0.0, abs=1e-12)


def test_build_features_is_idempotent(features):
    again = build_features(features)
    pd.testing.assert_frame_equal(again[features.columns], features)


def test_build_features_requires_columns(observations):
    with pytest.raises(SchemaError, match="choice"):
        build_features(observations.drop(columns=["choice"]))
