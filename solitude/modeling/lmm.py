"""
Frequentist backend: linear mixed models via statsmodels MixedLM.

Each fit tries the configured optimisers in order (lbfgs, then powell, then
Nelder-Mead) and keeps the first converged solution. Convergence and boundary
warnings raised by statsmodels are recorded on the FitResult and re-emitted as
solitude.errors.ConvergenceWarning; only a fit that yields no finite
estimates at all raises FitError. The boundary flag comes from the fitted
variance components and standard errors, with the fit's own statsmodels
messages as a fallback.

For covariate-free (unconditional) models the ICC also gets a percentile
interval from a seeded subject-cluster bootstrap.
"""

from __future__ import annotations

import threading
import warnings
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from statsmodels.tools.sm_exceptions import ConvergenceWarning as SMConvergenceWarning

from ..errors import ConvergenceWarning, FitError
from .fitting import FitResult, LmmSettings, summarize_predictors
from .specs import ModelSpec

# Random-effect variance at or below this share of the residual variance
# is treated as sitting on the boundary of the parameter space
BOUNDARY_TOL = 1e-8

BOUNDARY_MARKERS = ("boundary", "singular", "not positive definite")

# warnings.catch_warnings swaps process-wide state; held while a fit captures
# warnings and while its labelled warnings are re-emitted
_FIT_LOCK = threading.RLock()


# =============================================================================
# SINGLE FITS
# =============================================================================

def _fit_mixedlm_with_warnings(
    spec: ModelSpec,
    frame: pd.DataFrame,
    method: str,
    reml: bool,
    maxiter: int,
) -> Tuple[object, List[str]]:
    warning_msgs: List[str] = []
    with _FIT_LOCK:
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", SMConvergenceWarning)
            model = smf.mixedlm(
                spec.fixed_formula,
                data=frame,
                groups=frame[spec.group],
                re_formula=spec.re_formula,
            )
            result = model.fit(reml=reml, method=method, maxiter=maxiter)
        for warn in caught:
            # already-labelled warnings belong to a finished fit
            if issubclass(warn.category, ConvergenceWarning):
                warnings.warn(warn.message, warn.category, stacklevel=2)
            elif issubclass(warn.category, SMConvergenceWarning):
                warning_msgs.append(str(warn.message))
            else:
                warnings.warn(warn.message, warn.category, stacklevel=2)
    return result, warning_msgs


def fit_with_fallback(
    spec: ModelSpec,
    frame: pd.DataFrame,
    settings: LmmSettings,
) -> Tuple[object, str, List[str]]:
    """
    Try each optimiser in turn; return (result, method, warning messages).

    The first converged result wins. When none converges the last result with
    finite fixed effects and a positive residual variance is returned with its
    warnings.

    Raises:
        FitError: no optimiser produced usable estimates
    """
    last_error: Optional[str] = None
    last_result = None
    last_method = settings.methods[-1]
    last_msgs: List[str] = []

    for method in settings.methods:
        try:
            result, msgs = _fit_mixedlm_with_warnings(
                spec, frame, method=method, reml=settings.reml, maxiter=settings.maxiter
            )
        except Exception as exc:
            last_error = f"{method}: {type(exc).__name__}: {exc}"
            continue

        if not np.all(np.isfinite(np.asarray(result.fe_params, dtype=float))):
            last_error = f"{method}: non-finite fixed effects"
            continue
        scale = float(result.scale)
        if not np.isfinite(scale) or scale <= 0:
            last_error = f"{method}: degenerate residual variance ({scale})"
            continue

        last_result, last_method, last_msgs = result, method, msgs
        if getattr(result, "converged", False):
            return result, method, msgs

    if last_result is None:
        raise FitError(
            f"{spec.label}: no optimiser produced estimates ({last_error})",
            outcome=spec.outcome,
            variant=spec.variant,
        )
    msgs = list(last_msgs)
    msgs.append(f"did not converge with any of {', '.join(settings.methods)}")
    return last_result, last_method, msgs


def _random_intercept_variance(result) -> float:
    cov_re = np.asarray(result.cov_re, dtype=float)
    return float(cov_re[0, 0]) if cov_re.size else 0.0


def _is_boundary(result, messages: List[str]) -> bool:
    """
    Boundary or singular fit, judged from the result itself first.

    A random-effect variance at (numerically) zero, or variance-parameter
    standard errors that are not finite because the Hessian is not positive
    definite, flags the fit; statsmodels' own messages for this fit are the
    last resort.
    """
    diag = np.diag(np.asarray(result.cov_re, dtype=float))
    scale = max(float(result.scale), 1e-12)
    if np.any(diag <= BOUNDARY_TOL * scale):
        return True
    if not np.all(np.isfinite(np.asarray(result.bse, dtype=float))):
        return True
    return any(marker in msg.lower() for msg in messages for marker in BOUNDARY_MARKERS)


# =============================================================================
# ICC BOOTSTRAP
# =============================================================================

def bootstrap_icc_interval(
    spec: ModelSpec,
    frame: pd.DataFrame,
    n_boot: int,
    seed: int,
    reml: bool = True,
    level: float = 0.95,
) -> Tuple[Optional[Tuple[float, float]], int]:
    """
    Percentile interval for the ICC of a random-intercept model.

    Subjects are resampled with replacement; a subject drawn twice enters the
    resample as two distinct clusters. Replicates whose fit fails are skipped.

    Returns:
        (interval or None, number of successful replicates)
    """
    if n_boot <= 0:
        return None, 0

    rng = np.random.default_rng(seed)
    by_subject = {pid: block for pid, block in frame.groupby(spec.group, sort=True)}
    subjects = np.array(list(by_subject))
    formula = f"{spec.outcome} ~ 1"

    iccs: List[float] = []
    for _ in range(n_boot):
        drawn = rng.choice(subjects, size=len(subjects), replace=True)
        sample = pd.concat(
            [by_subject[pid].assign(**{spec.group: f"{pid}#{k}"}) for k, pid in enumerate(drawn)],
            ignore_index=True,
        )
        try:
            with _FIT_LOCK, warnings.catch_warnings():
                warnings.simplefilter("ignore")
                result = smf.mixedlm(formula, data=sample, groups=sample[spec.group]).fit(
                    reml=reml, method="lbfgs"
                )
        except Exception:
            continue
        between = _random_intercept_variance(result)
        total = between + float(result.scale)
        if np.isfinite(total) and total > 0:
            iccs.append(between / total)

    if len(iccs) < max(2, n_boot // 2):
        return None, len(iccs)
    alpha = (1.0 - level) / 2.0
    lower, upper = np.percentile(iccs, [100 * alpha, 100 * (1 - alpha)])
    return (float(lower), float(upper)), len(iccs)


# =============================================================================
# FIT RESULT
# =============================================================================

def fit_mixed_model(
    spec: ModelSpec,
    frame: pd.DataFrame,
    settings: Optional[LmmSettings] = None,
    fingerprint: str = "",
) -> FitResult:
    """
    Fit one specification with MixedLM and package it as a FitResult.

    Args:
        spec: Model specification
        frame: Complete-case model frame (see fitting.model_frame)
        settings: Optimiser and bootstrap options
        fingerprint: Data fingerprint recorded on the result

    Returns:
        FitResult with Wald intervals and z-based p-values
    """
    settings = settings or LmmSettings()
    result, method, messages = fit_with_fallback(spec, frame, settings)

    fe_names = list(result.fe_params.index)
    params = pd.Series(np.asarray(result.fe_params, dtype=float), index=fe_names)
    bse = pd.Series(np.asarray(result.bse_fe, dtype=float), index=fe_names)
    pvalues = result.pvalues.reindex(fe_names).astype(float)
    conf_int = result.conf_int(alpha=0.05).loc[fe_names]
    conf_int.columns = ["lower", "upper"]
    fe_cov = result.cov_params().loc[fe_names, fe_names].astype(float)

    variance: Dict[str, float] = {
        "between": _random_intercept_variance(result),
        "residual": float(result.scale),
    }
    boundary = _is_boundary(result, messages)
    if boundary and not any("boundary" in msg.lower() for msg in messages):
        messages.append("random-effect variance on the boundary of the parameter space")

    icc_interval = None
    if not spec.has_covariates:
        icc_interval, n_ok = bootstrap_icc_interval(
            spec, frame, n_boot=settings.icc_bootstrap, seed=settings.seed, reml=settings.reml
        )
        if settings.icc_bootstrap > 0 and icc_interval is None:
            messages.append(f"ICC bootstrap: only {n_ok}/{settings.icc_bootstrap} replicates fitted")

    with _FIT_LOCK:
        for msg in messages:
            warnings.warn(f"{spec.label}: {msg}", ConvergenceWarning, stacklevel=2)

    return FitResult(
        spec=spec,
        backend="lmm",
        params=params,
        bse=bse,
        pvalues=pvalues,
        conf_int=conf_int,
        interval_kind="wald",
        variance_components=variance,
        n_obs=int(result.nobs),
        n_groups=int(frame[spec.group].nunique()),
        converged=bool(getattr(result, "converged", False)),
        method=method,
        predictor_summary=summarize_predictors(frame, spec),
        fingerprint=fingerprint,
        warnings=tuple(messages),
        boundary=boundary,
        icc_interval=icc_interval,
        fe_cov=fe_cov,
        diagnostics={
            "llf": float(result.llf),
            "aic": float(result.aic) if np.isfinite(result.aic) else np.nan,
            "bic": float(result.bic) if np.isfinite(result.bic) else np.nan,
        },
    )


def sample_fixed_effects(fit: FitResult, n_draws: int = 4000, seed: int = 0) -> FitResult:
    """
    Attach fixed-effect draws from the Wald sampling distribution.

    Lets the prediction generator run on a frequentist fit. Returns a new
    FitResult; the input is left unchanged.
    """
    if fit.fe_cov is None:
        raise ValueError(f"{fit.spec.label}: no fixed-effect covariance to sample from")
    rng = np.random.default_rng(seed)
    names = list(fit.params.index)
    cov = fit.fe_cov.loc[names, names].to_numpy()
    draws = rng.multivariate_normal(fit.params.to_numpy(), cov, size=n_draws, method="eigh")
    return replace(fit, draws=pd.DataFrame(draws, columns=names))
