import numpy as np
import pandas as pd
import pytest

from solitude.modeling import (
    FitResult,
    build_model_spec,
    extract_estimates,
    format_coefficient,
    format_estimate_table,
    format_pvalue,
    intraclass_correlation,
    summarize_fit,
)


def _make_fit(spec, backend="lmm", draws=None, icc_interval=None):
    terms = ["Intercept"] + list(spec.fixed_terms)
    params = pd.Series(np.linspace(1.0, 2.0, len(terms)), index=terms)
    bse = pd.Series(0.1, index=terms)
    conf_int = pd.DataFrame({"lower": params - 0.2, "upper": params + 0.2})
    return FitResult(
        spec=spec,
        backend=backend,
        params=params,
        bse=bse,
        pvalues=pd.Series(0.01 if backend == "lmm" else np.nan, index=terms),
        conf_int=conf_int,
        interval_kind="wald" if backend == "lmm" else "credible",
        variance_components={"between": 1.0, "residual": 3.0},
        n_obs=100,
        n_groups=10,
        converged=True,
        method="lbfgs",
        predictor_summary=pd.DataFrame(),
        fingerprint="abc",
        icc_interval=icc_interval,
        draws=draws,
    )


def test_extract_estimates_wald_interval():
    fit = _make_fit(build_model_spec("Satisfaction", "rq1"))
    table = extract_estimates(fit)
    assert table["term"].tolist() == ["Intercept"] + list(fit.spec.fixed_terms)
    assert list(table.columns) == [
        "outcome", "variant", "backend", "term", "estimate", "se", "ci_lower", "ci_upper", "p",
    ]
    assert table["ci_lower"].to_numpy() == pytest.approx(table["estimate"].to_numpy() - 1.959964 * 0.1, abs=1e-5)
    assert table["ci_upper"].to_numpy() == pytest.approx(table["estimate"].to_numpy() + 1.959964 * 0.1, abs=1e-5)
    assert (table["p"] == 0.01).all()


def test_extract_estimates_bayes_uses_draws_and_nan_p():
    spec = build_model_spec("Satisfaction", "unconditional")
    draws = pd.DataFrame({"Intercept": np.arange(1, 1001, dtype=float)})
    fit = _make_fit(spec, backend="bayes", draws=draws)
    table = extract_estimates(fit)
    assert table["ci_lower"].item() == pytest.approx(np.quantile(draws["Intercept"], 0.025))
    assert table["ci_upper"].item() == pytest.approx(np.quantile(draws["Intercept"], 0.975))
    assert table["p"].isna().all()


def test_icc_row_only_for_covariate_free_specs():
    uncond = _make_fit(build_model_spec("Stress", "unconditional"), icc_interval=(0.1, 0.4))
    icc, interval = intraclass_correlation(uncond)
    assert icc == pytest.approx(0.25)
    assert interval == (0.1, 0.4)

    table = summarize_fit(uncond)
    assert table["term"].tolist() == ["Intercept", "ICC"]
    icc_row = table.iloc[-1]
    assert icc_row["estimate"] == pytest.approx(0.25)
    assert (icc_row["ci_lower"], icc_row["ci_upper"]) == (0.1, 0.4)

    rq1 = _make_fit(build_model_spec("Stress", "rq1"))
    assert "ICC" not in summarize_fit(rq1)["term"].tolist()


def test_formatting_helpers():
    assert format_pvalue(0.0001) == "< 0.001"
    assert format_pvalue(0.0456) == "0.046"
    assert format_pvalue(np.nan) == "NA"
    assert format_coefficient(1.23456) == "1.235"
    assert format_coefficient(np.nan) == "NA"

    fit = _make_fit(build_model_spec("Satisfaction", "unconditional"))
    display = format_estimate_table(extract_estimates(fit), digits=2)
    assert display["estimate"].iloc[0] == "1.00 [0.80, 1.20]"
    assert display["p"].iloc[0] == "0.010"
