"""
Bayesian backend: gaussian multilevel models via bambi (PyMC, NUTS).

The formula is ModelSpec.bambi_formula with bambi's default weakly
informative priors. Fixed-effect posterior draws are kept on the FitResult
(one column per term) so predictions carry posterior uncertainty, and the
ICC of covariate-free models gets a credible interval from its per-draw values.
"""

from __future__ import annotations

import warnings
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from ..errors import ConvergenceWarning, FitError
from .fitting import FitResult, SamplerSettings, summarize_predictors
from .specs import ModelSpec

RHAT_MAX = 1.01
ESS_MIN = 400


def _flat(posterior, name: str) -> np.ndarray:
    return np.asarray(posterior[name].values, dtype=float).reshape(-1)


def _variance_draws(posterior, spec: ModelSpec) -> Dict[str, Optional[np.ndarray]]:
    """Per-draw random-intercept and residual variances."""
    names = set(posterior.data_vars)
    resid_name = next((n for n in ("sigma", f"{spec.outcome}_sigma") if n in names), None)
    group_name = f"1|{spec.group}_sigma"
    return {
        "between": _flat(posterior, group_name) ** 2 if group_name in names else None,
        "residual": _flat(posterior, resid_name) ** 2 if resid_name else None,
    }


def fit_bayesian_model(
    spec: ModelSpec,
    frame: pd.DataFrame,
    settings: Optional[SamplerSettings] = None,
    fingerprint: str = "",
) -> FitResult:
    """
    Sample one specification with bambi and package it as a FitResult.

    Args:
        spec: Model specification
        frame: Complete-case model frame (see fitting.model_frame)
        settings: Sampler options
        fingerprint: Data fingerprint recorded on the result

    Returns:
        FitResult with posterior means, sds, 95% equal-tailed credible
        intervals and fixed-effect draws; p-values are not defined (NaN).

    Raises:
        FitError: model construction or sampling failed
    """
    import arviz as az
    import bambi as bmb

    settings = settings or SamplerSettings()
    try:
        model = bmb.Model(spec.bambi_formula, frame, family="gaussian")
        idata = model.fit(
            draws=settings.draws,
            tune=settings.tune,
            chains=settings.chains,
            cores=settings.cores,
            target_accept=settings.target_accept,
            random_seed=settings.random_seed,
            progressbar=settings.progressbar,
        )
    except Exception as exc:
        raise FitError(
            f"{spec.label}: sampling failed ({type(exc).__name__}: {exc})",
            outcome=spec.outcome,
            variant=spec.variant,
        ) from exc

    posterior = idata.posterior
    terms = ["Intercept"] + list(spec.fixed_terms)
    absent = [term for term in terms if term not in posterior.data_vars]
    if absent:
        raise FitError(
            f"{spec.label}: posterior lacks term(s) {absent}",
            outcome=spec.outcome,
            variant=spec.variant,
        )

    draws = pd.DataFrame({term: _flat(posterior, term) for term in terms})
    if not np.all(np.isfinite(draws.to_numpy())):
        raise FitError(f"{spec.label}: non-finite posterior draws", outcome=spec.outcome, variant=spec.variant)

    params = draws.mean()
    bse = draws.std(ddof=1)
    conf_int = draws.quantile([0.025, 0.975]).T
    conf_int.columns = ["lower", "upper"]

    # =========================================================================
    # Variance components and ICC
    # =========================================================================
    var_draws = _variance_draws(posterior, spec)
    variance = {
        key: float(np.mean(values)) if values is not None else np.nan
        for key, values in var_draws.items()
    }
    icc_interval = None
    if not spec.has_covariates and var_draws["between"] is not None and var_draws["residual"] is not None:
        icc_draws = var_draws["between"] / (var_draws["between"] + var_draws["residual"])
        lower, upper = np.percentile(icc_draws, [2.5, 97.5])
        icc_interval = (float(lower), float(upper))

    # =========================================================================
    # Sampler diagnostics
    # =========================================================================
    summary = az.summary(idata, var_names=terms, hdi_prob=0.95)
    rhat_max = float(summary["r_hat"].max())
    ess_min = float(summary["ess_bulk"].min())
    divergences = int(idata.sample_stats["diverging"].sum()) if "diverging" in idata.sample_stats else 0

    messages: List[str] = []
    if rhat_max > RHAT_MAX:
        messages.append(f"max R-hat {rhat_max:.3f} > {RHAT_MAX}")
    if divergences > 0:
        messages.append(f"{divergences} divergent transition(s)")
    if ess_min < ESS_MIN:
        messages.append(f"min bulk ESS {ess_min:.0f} < {ESS_MIN}")
    for msg in messages:
        warnings.warn(f"{spec.label}: {msg}", ConvergenceWarning, stacklevel=2)

    return FitResult(
        spec=spec,
        backend="bayes",
        params=params,
        bse=bse,
        pvalues=pd.Series(np.nan, index=terms, dtype=float),
        conf_int=conf_int,
        interval_kind="credible",
        variance_components=variance,
        n_obs=int(len(frame)),
        n_groups=int(frame[spec.group].nunique()),
        converged=rhat_max <= RHAT_MAX and divergences == 0,
        method="nuts",
        predictor_summary=summarize_predictors(frame, spec),
        fingerprint=fingerprint,
        warnings=tuple(messages),
        boundary=False,
        icc_interval=icc_interval,
        draws=draws,
        posterior_summary=summary,
        diagnostics={"rhat_max": rhat_max, "ess_bulk_min": ess_min, "divergences": float(divergences)},
    )
