from dataclasses import replace

import numpy as np
import pandas as pd
import pytest

from solitude.modeling import (
    FitResult,
    build_model_spec,
    moderator_levels,
    predict_curve,
    reference_grid,
    summarize_predictors,
)


def _fit_with_draws(variant, coefficients, n_draws=500, seed=0):
    spec = build_model_spec("Satisfaction", variant)
    terms = ["Intercept"] + list(spec.fixed_terms)
    rng = np.random.default_rng(seed)
    means = np.array([coefficients.get(term, 0.0) for term in terms])
    draws = pd.DataFrame(means + rng.normal(0.0, 0.01, (n_draws, len(terms))), columns=terms)
    summary = pd.DataFrame(
        {"min": -0.5, "max": 0.5, "mean": 0.0, "sd": 0.25},
        index=[spec.outcome] + list(spec.predictors),
    )
    return FitResult(
        spec=spec,
        backend="bayes",
        params=draws.mean(),
        bse=draws.std(),
        pvalues=pd.Series(np.nan, index=terms),
        conf_int=draws.quantile([0.025, 0.975]).T.set_axis(["lower", "upper"], axis=1),
        interval_kind="credible",
        variance_components={"between": 1.0, "residual": 1.0},
        n_obs=100,
        n_groups=10,
        converged=True,
        method="nuts",
        predictor_summary=summary,
        fingerprint="",
        draws=draws,
    )


def test_reference_grid_recomputes_quadratic():
    fit = _fit_with_draws("rq1", {})
    grid = reference_grid(fit)
    assert len(grid) == 101
    assert grid["ltime_pmc"].iloc[0] == pytest.approx(-0.5)
    assert grid["ltime_pmc"].iloc[-1] == pytest.approx(0.5)
    assert grid["ltime_pmc2"].to_numpy() == pytest.approx(grid["ltime_pmc"].to_numpy() ** 2)
    others = [col for col in grid.columns if col not in ("ltime_pmc", "ltime_pmc2")]
    assert (grid[others] == 0).all().all()


def test_reference_grid_repeats_per_moderator_value():
    fit = _fit_with_draws("rq3a", {})
    grid = reference_grid(fit, moderator="choice_pmc", values=[-1.0, 0.0, 1.0])
    assert len(grid) == 303
    assert sorted(grid["moderator_value"].unique()) == [-1.0, 0.0, 1.0]
    assert (grid["choice_pmc"] == grid["moderator_value"]).all()


def test_moderator_levels_are_mean_plus_minus_sd():
    fit = _fit_with_draws("rq3b", {})
    assert moderator_levels(fit, "sdm_gmc") == pytest.approx((-0.25, 0.25))
    with pytest.raises(ValueError):
        moderator_levels(fit, "choice_pmc")


def test_subject_level_moderator_sd_uses_one_value_per_participant():
    spec = build_model_spec("Satisfaction", "rq3b")
    rng = np.random.default_rng(4)
    # P1 keeps 8 diary days, P2 only 2
    frame = pd.DataFrame(rng.normal(size=(10, len(spec.columns))), columns=list(spec.columns))
    frame[spec.group] = ["P1"] * 8 + ["P2"] * 2
    frame["sdm_gmc"] = [1.0] * 8 + [-1.0] * 2

    summary = summarize_predictors(frame, spec)
    assert summary.loc["sdm_gmc", "mean"] == pytest.approx(0.0)
    assert summary.loc["sdm_gmc", "sd"] == pytest.approx(np.sqrt(2.0))
    assert summary.loc["ltime_pmc", "sd"] == pytest.approx(frame["ltime_pmc"].std())

    fit = replace(_fit_with_draws("rq3b", {}), predictor_summary=summary)
    assert moderator_levels(fit, "sdm_gmc") == pytest.approx((-np.sqrt(2.0), np.sqrt(2.0)))


@pytest.mark.parametrize("quadratic, sign", [(-2.0, -1), (2.0, 1)])
def test_curve_shape_follows_quadratic_sign(quadratic, sign):
    fit = _fit_with_draws("rq1", {"Intercept": 5.0, "ltime_pmc": 0.3, "ltime_pmc2": quadratic})
    curve = predict_curve(fit)
    second_diff = np.diff(curve["estimate"].to_numpy(), n=2)
    assert (np.sign(second_diff) == sign).all()
    assert (curve["lower"] <= curve["estimate"]).all()
    assert (curve["estimate"] <= curve["upper"]).all()


def test_moderated_curve_uses_interaction_draws():
    fit = _fit_with_draws("rq3b", {"Intercept": 5.0, "ltime_pmc": 0.0, "ltime_pmc:sdm_gmc": 4.0})
    curve = predict_curve(fit, moderator="sdm_gmc")
    low = curve[curve["moderator_value"] < 0]
    high = curve[curve["moderator_value"] > 0]
    # slope of time is 4 * moderator: negative at -1 SD, positive at +1 SD
    assert low["estimate"].iloc[-1] < low["estimate"].iloc[0]
    assert high["estimate"].iloc[-1] > high["estimate"].iloc[0]


def test_predict_without_draws_raises():
    fit = _fit_with_draws("rq1", {})
    bare = replace(fit, draws=None)
    with pytest.raises(ValueError):
        predict_curve(bare)
