"""
Estimate tables from fitted models.

Every backend is reduced to the same long table

    outcome | variant | backend | term | estimate | se | ci_lower | ci_upper | p

so reporting code never needs to know which backend produced a fit.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .fitting import FitResult

ESTIMATE_COLUMNS = ["outcome", "variant", "backend", "term", "estimate", "se", "ci_lower", "ci_upper", "p"]


def extract_estimates(fit: FitResult, level: float = 0.95) -> pd.DataFrame:
    """
    Fixed-effect estimates of one fit, in term order.

    Frequentist fits get Wald intervals (estimate +/- z * se). Bayesian fits
    get equal-tailed credible intervals from the posterior draws and NaN
    p-values.
    """
    terms = list(fit.params.index)
    estimate = fit.params.reindex(terms).to_numpy(dtype=float)
    se = fit.bse.reindex(terms).to_numpy(dtype=float)

    if fit.backend == "lmm":
        z = stats.norm.ppf(0.5 + level / 2.0)
        lower, upper = estimate - z * se, estimate + z * se
        p = fit.pvalues.reindex(terms).to_numpy(dtype=float)
    else:
        if fit.draws is not None:
            alpha = (1.0 - level) / 2.0
            bounds = fit.draws[terms].quantile([alpha, 1.0 - alpha])
            lower, upper = bounds.iloc[0].to_numpy(), bounds.iloc[1].to_numpy()
        else:
            lower = fit.conf_int["lower"].reindex(terms).to_numpy(dtype=float)
            upper = fit.conf_int["upper"].reindex(terms).to_numpy(dtype=float)
        p = np.full(len(terms), np.nan)

    return pd.DataFrame({
        "outcome": fit.outcome,
        "variant": fit.variant,
        "backend": fit.backend,
        "term": terms,
        "estimate": estimate,
        "se": se,
        "ci_lower": lower,
        "ci_upper": upper,
        "p": p,
    }, columns=ESTIMATE_COLUMNS)


def intraclass_correlation(fit: FitResult) -> Tuple[float, Optional[Tuple[float, float]]]:
    """ICC = between / (between + residual), with its interval when one was computed."""
    return fit.icc, fit.icc_interval


def summarize_fit(fit: FitResult, level: float = 0.95) -> pd.DataFrame:
    """Estimates plus an ICC row for covariate-free specifications."""
    table = extract_estimates(fit, level=level)
    if fit.spec.has_covariates:
        return table

    icc, interval = intraclass_correlation(fit)
    lower, upper = interval if interval is not None else (np.nan, np.nan)
    icc_row = pd.DataFrame([{
        "outcome": fit.outcome,
        "variant": fit.variant,
        "backend": fit.backend,
        "term": "ICC",
        "estimate": icc,
        "se": np.nan,
        "ci_lower": lower,
        "ci_upper": upper,
        "p": np.nan,
    }], columns=ESTIMATE_COLUMNS)
    return pd.concat([table, icc_row], ignore_index=True)


# =============================================================================
# FORMATTING
# =============================================================================

def format_pvalue(p: float, threshold: float = 0.001) -> str:
    """Format p-value for display."""
    if pd.isna(p):
        return "NA"
    if p < threshold:
        return f"< {threshold}"
    return f"{p:.3f}"


def format_coefficient(value: float, decimals: int = 3) -> str:
    """Format coefficient for display."""
    if pd.isna(value):
        return "NA"
    return f"{value:.{decimals}f}"


def format_estimate_table(table: pd.DataFrame, digits: int = 2) -> pd.DataFrame:
    """
    Display copy of an estimate table: 'b [lo, hi]' plus a formatted p column.
    """
    out = table[[col for col in ("outcome", "variant", "backend", "term") if col in table.columns]].copy()
    out["estimate"] = [
        f"{format_coefficient(b, digits)} [{format_coefficient(lo, digits)}, {format_coefficient(hi, digits)}]"
        for b, lo, hi in zip(table["estimate"], table["ci_lower"], table["ci_upper"])
    ]
    out["p"] = table["p"].map(format_pvalue)
    return out
