"""
Model fitting entry point shared by both backends.

fit_model() selects the columns a specification needs, fingerprints them,
and either returns the cached FitResult for (spec, backend, settings,
fingerprint) or fits one with the requested backend:

    "lmm"    linear mixed model via statsmodels MixedLM (inferential tables)
    "bayes"  Bayesian multilevel model via bambi/PyMC (predictive curves)
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import FitError, SchemaError
from .cache import FitCache, data_fingerprint, make_cache_key
from .specs import ModelSpec

BACKENDS = ("lmm", "bayes")

# Fewer complete rows than this and a multilevel fit is not attempted
MIN_ROWS = 10


# =============================================================================
# BACKEND SETTINGS
# =============================================================================

@dataclass(frozen=True)
class LmmSettings:
    """Frequentist backend options."""
    reml: bool = True
    methods: Tuple[str, ...] = ("lbfgs", "powell", "nm")
    maxiter: int = 500
    icc_bootstrap: int = 200     # subject-cluster resamples for the ICC interval
    seed: int = 42

    def cache_token(self) -> str:
        return repr(sorted(asdict(self).items()))


@dataclass(frozen=True)
class SamplerSettings:
    """Bayesian backend options (NUTS via PyMC)."""
    draws: int = 2000
    tune: int = 1000
    chains: int = 4
    cores: int = 4
    target_accept: float = 0.9
    random_seed: int = 2024
    progressbar: bool = False

    def cache_token(self) -> str:
        # progressbar does not change the draws
        return repr(sorted((k, v) for k, v in asdict(self).items() if k != "progressbar"))


Settings = Union[LmmSettings, SamplerSettings]


def default_settings(backend: str) -> Settings:
    if backend == "lmm":
        return LmmSettings()
    if backend == "bayes":
        return SamplerSettings()
    raise ValueError(f"Unknown backend: {backend}. Valid backends: {BACKENDS}")


# =============================================================================
# FIT RESULT
# =============================================================================

@dataclass(frozen=True, eq=False)
class FitResult:
    """
    Backend-neutral record of one fitted model.

    Fixed-effect estimates are indexed by term name ('Intercept' first, then
    the model's fixed terms). ``conf_int`` has columns lower/upper and holds
    Wald intervals for the LMM and equal-tailed credible intervals for the
    Bayesian fit (see ``interval_kind``). ``draws`` holds posterior (or
    sampled) fixed-effect draws, one column per term, and is what the
    prediction generator consumes.
    """
    spec: ModelSpec
    backend: str
    params: pd.Series
    bse: pd.Series
    pvalues: pd.Series
    conf_int: pd.DataFrame
    interval_kind: str
    variance_components: Dict[str, float]
    n_obs: int
    n_groups: int
    converged: bool
    method: str
    predictor_summary: pd.DataFrame
    fingerprint: str
    warnings: Tuple[str, ...] = ()
    boundary: bool = False
    icc_interval: Optional[Tuple[float, float]] = None
    fe_cov: Optional[pd.DataFrame] = None
    draws: Optional[pd.DataFrame] = None
    posterior_summary: Optional[pd.DataFrame] = None
    diagnostics: Dict[str, float] = field(default_factory=dict)

    @property
    def outcome(self) -> str:
        return self.spec.outcome

    @property
    def variant(self) -> str:
        return self.spec.variant

    @property
    def icc(self) -> float:
        between = self.variance_components.get("between", np.nan)
        residual = self.variance_components.get("residual", np.nan)
        total = between + residual
        return float(between / total) if np.isfinite(total) and total > 0 else np.nan


# =============================================================================
# DATA PREPARATION
# =============================================================================

def model_frame(spec: ModelSpec, features: pd.DataFrame) -> pd.DataFrame:
    """
    Columns referenced by the model, complete rows only.

    Raises:
        SchemaError: a referenced column is missing from the feature table
        FitError: too few complete rows to fit a multilevel model
    """
    missing = [col for col in spec.columns if col not in features.columns]
    if missing:
        raise SchemaError(f"{spec.label}: feature table lacks column(s) {missing}")

    frame = features.loc[:, list(spec.columns)].dropna().reset_index(drop=True)
    if len(frame) < MIN_ROWS or frame[spec.group].nunique() < 2:
        raise FitError(
            f"{spec.label}: only {len(frame)} complete rows from "
            f"{frame[spec.group].nunique()} participants",
            outcome=spec.outcome,
            variant=spec.variant,
        )
    return frame


def summarize_predictors(frame: pd.DataFrame, spec: ModelSpec) -> pd.DataFrame:
    """
    Observed min/max/mean/sd of the outcome and each predictor column.

    A column that never varies within a participant (e.g. sdm_gmc) is
    summarised over one value per participant, so participants with more
    diary days do not weigh more in its mean and SD.
    """
    cols = [spec.outcome] + [col for col in spec.predictors]
    grouped = frame.groupby(spec.group, sort=False)
    per_subject = grouped[cols].nunique().max() <= 1
    stats = {}
    for col in cols:
        values = grouped[col].first() if per_subject[col] else frame[col]
        stats[col] = values.agg(["min", "max", "mean", "std"])
    return pd.DataFrame(stats).T.rename(columns={"std": "sd"})


# =============================================================================
# FITTING
# =============================================================================

def fit_model(
    spec: ModelSpec,
    features: pd.DataFrame,
    backend: str = "lmm",
    cache: Optional[FitCache] = None,
    settings: Optional[Settings] = None,
    verbose: bool = False,
) -> FitResult:
    """
    Fit one model specification, reusing a cached result when available.

    Args:
        spec: ModelSpec from build_model_spec()
        features: Feature table from build_features()
        backend: 'lmm' or 'bayes'
        cache: Open FitCache handle, or None to always refit
        settings: LmmSettings / SamplerSettings (defaults per backend)
        verbose: Print cache hits and fits

    Returns:
        FitResult

    Raises:
        FitError: the backend could not produce estimates
    """
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend}. Valid backends: {BACKENDS}")
    if settings is None:
        settings = default_settings(backend)

    frame = model_frame(spec, features)
    fingerprint = data_fingerprint(frame)
    key = make_cache_key(backend, spec.cache_token(), settings.cache_token(), fingerprint)

    if cache is not None:
        cached = cache.get(key)
        if cached is not None:
            if verbose:
                print(f"  [cache] {spec.label} ({backend})")
            return cached

    if verbose:
        print(f"  [fit] {spec.label} ({backend}, n={len(frame)})")

    if backend == "lmm":
        from .lmm import fit_mixed_model
        fit = fit_mixed_model(spec, frame, settings=settings, fingerprint=fingerprint)
    else:
        from .bayes import fit_bayesian_model
        fit = fit_bayesian_model(spec, frame, settings=settings, fingerprint=fingerprint)

    if cache is not None:
        cache.put(key, fit)
    return fit
