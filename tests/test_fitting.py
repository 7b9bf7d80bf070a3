import warnings

import numpy as np
import pandas as pd
import pytest

from solitude.errors import ConvergenceWarning, FitError, SchemaError
from solitude.modeling import (
    FitCache,
    LmmSettings,
    ModelSpec,
    build_model_spec,
    extract_estimates,
    fit_mixed_model,
    fit_model,
    model_frame,
    sample_fixed_effects,
)
from solitude.modeling.lmm import fit_with_fallback

FAST = LmmSettings(icc_bootstrap=30, seed=7)


def _quiet_fit(*args, **kwargs):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return fit_model(*args, **kwargs)


def test_unconditional_fit_has_icc_interval(features):
    fit = _quiet_fit(build_model_spec("Satisfaction", "unconditional"), features, settings=FAST)
    assert fit.backend == "lmm"
    assert list(fit.params.index) == ["Intercept"]
    assert fit.n_obs == 200
    assert fit.n_groups == 20
    assert 0.0 < fit.icc < 1.0
    lower, upper = fit.icc_interval
    assert 0.0 <= lower <= upper <= 1.0


def test_rq1_recovers_negative_quadratic(features):
    fit = _quiet_fit(build_model_spec("Satisfaction", "rq1"), features, settings=FAST)
    assert list(fit.params.index)[0] == "Intercept"
    assert fit.params["ltime_pmc2"] < 0
    assert fit.icc_interval is None
    assert fit.n_obs == 180  # day 1 has no lag
    assert {"min", "max", "mean", "sd"} <= set(fit.predictor_summary.columns)


def test_model_frame_drops_incomplete_rows(features):
    spec = build_model_spec("Satisfaction", "rq1")
    frame = model_frame(spec, features)
    assert list(frame.columns) == list(spec.columns)
    assert not frame.isna().any().any()


def test_model_frame_missing_column(features):
    spec = build_model_spec("Satisfaction", "rq3b")
    with pytest.raises(SchemaError, match="sdm_gmc"):
        model_frame(spec, features.drop(columns=["sdm_gmc"]))


def test_too_few_rows_is_fit_error(features):
    spec = build_model_spec("Satisfaction", "unconditional")
    with pytest.raises(FitError) as info:
        fit_model(spec, features.head(5), settings=FAST)
    assert info.value.outcome == "satisfaction"
    assert info.value.variant == "unconditional"


def test_cache_returns_identical_tables(features, fit_cache_dir):
    spec = build_model_spec("Lonely", "unconditional")
    with FitCache(fit_cache_dir) as cache:
        first = _quiet_fit(spec, features, cache=cache, settings=FAST)
        second = _quiet_fit(spec, features, cache=cache, settings=FAST)
        assert cache.misses == 1
        assert cache.hits == 1
        assert len(cache) == 1

    direct = _quiet_fit(spec, features, cache=None, settings=FAST)
    pd.testing.assert_frame_equal(extract_estimates(first), extract_estimates(second))
    pd.testing.assert_frame_equal(extract_estimates(second), extract_estimates(direct))
    assert second.icc_interval == direct.icc_interval


def test_cache_key_changes_with_data(features, fit_cache_dir):
    spec = build_model_spec("Lonely", "unconditional")
    shifted = features.assign(lonely=features["lonely"] + 1.0)
    with FitCache(fit_cache_dir) as cache:
        _quiet_fit(spec, features, cache=cache, settings=FAST)
        refit = _quiet_fit(spec, shifted, cache=cache, settings=FAST)
        assert cache.hits == 0
        assert len(cache) == 2
        assert cache.clear() == 2
    assert refit.params["Intercept"] > shifted["lonely"].mean() - 0.5


def test_linear_slope_interval_coverage():
    """outcome = 3 + 0.5 * time + noise; Wald intervals should cover 0.5."""
    spec = ModelSpec(outcome="y", variant="check", fixed_terms=("time",), random_terms=())
    covered = 0
    for seed in range(20):
        rng = np.random.default_rng(1000 + seed)
        time = rng.uniform(0.0, 1.0, 200)
        frame = pd.DataFrame({
            "y": 3.0 + 0.5 * time + rng.normal(0.0, 0.3, 200),
            "participant_id": np.repeat([f"S{i}" for i in range(20)], 10),
            "time": time,
        })
        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            fit = fit_mixed_model(spec, frame, LmmSettings(icc_bootstrap=0))
        lower, upper = fit.conf_int.loc["time", ["lower", "upper"]]
        covered += int(lower <= 0.5 <= upper)
    assert covered >= 19


def test_zero_between_variance_is_flagged_on_boundary(boundary_features):
    spec = build_model_spec("Stress", "unconditional")
    frame = model_frame(spec, boundary_features)
    with pytest.warns(ConvergenceWarning, match="stress:unconditional"):
        fit = fit_mixed_model(spec, frame, LmmSettings(icc_bootstrap=0))
    assert fit.boundary is True
    assert any("boundary" in msg.lower() for msg in fit.warnings)
    assert fit.variance_components["between"] == pytest.approx(0.0, abs=1e-2)
    assert np.isfinite(fit.params["Intercept"])


def test_every_optimiser_failing_raises_fit_error(features):
    spec = build_model_spec("Stress", "unconditional")
    frame = model_frame(spec, features).assign(stress=np.inf)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        with pytest.raises(FitError, match="no optimiser produced estimates") as info:
            fit_with_fallback(spec, frame, LmmSettings(icc_bootstrap=0))
    assert info.value.outcome == "stress"
    assert info.value.variant == "unconditional"


def test_sample_fixed_effects_returns_new_result(features):
    fit = _quiet_fit(build_model_spec("Satisfaction", "rq1"), features, settings=FAST)
    sampled = sample_fixed_effects(fit, n_draws=2000, seed=3)
    assert fit.draws is None
    assert list(sampled.draws.columns) == list(fit.params.index)
    assert len(sampled.draws) == 2000
    assert sampled.draws.mean().to_numpy() == pytest.approx(
        fit.params.to_numpy(), abs=4 * fit.bse.max()
    )
