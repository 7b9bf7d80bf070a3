"""
Population-level prediction curves over solitude time.

One parametrised grid builder serves every research question: the focal
predictor sweeps its observed range, its quadratic companion is recomputed as
the square of each grid point, every other predictor is held at 0 (its mean,
since all predictors are centred) and an optional moderator is set to each of
a few levels. Curves are computed from fixed-effect draws only, so random
effects are marginalised.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from ..preprocessing.features import quadratic_name
from .fitting import FitResult

N_POINTS = 101


def moderator_levels(fit: FitResult, moderator: str, n_sd: float = 1.0) -> Tuple[float, float]:
    """
    (mean - n_sd * sd, mean + n_sd * sd) of the moderator in the model frame.

    Subject-level moderators use their one-value-per-participant summary.
    """
    summary = fit.predictor_summary
    if moderator not in summary.index:
        raise ValueError(f"{fit.spec.label}: '{moderator}' is not a predictor of this model")
    mean, sd = float(summary.loc[moderator, "mean"]), float(summary.loc[moderator, "sd"])
    return mean - n_sd * sd, mean + n_sd * sd


def reference_grid(
    fit: FitResult,
    focal: str = "ltime_pmc",
    moderator: Optional[str] = None,
    values: Optional[Iterable[float]] = None,
    n_points: int = N_POINTS,
) -> pd.DataFrame:
    """
    Evenly spaced focal values over the observed range, other predictors at 0.

    Args:
        fit: Fitted model (its predictor ranges define the grid)
        focal: Predictor swept along the x axis
        moderator: Optional predictor set to each of ``values``
        values: Moderator values (default: mean -/+ 1 SD)
        n_points: Grid points per moderator value

    Returns:
        DataFrame with one column per model predictor (plus 'moderator_value'
        when a moderator is given), n_points rows per moderator value.
    """
    predictors = list(fit.spec.predictors)
    if focal not in predictors:
        raise ValueError(f"{fit.spec.label}: focal '{focal}' is not a predictor of this model")

    lo = float(fit.predictor_summary.loc[focal, "min"])
    hi = float(fit.predictor_summary.loc[focal, "max"])
    base = pd.DataFrame(0.0, index=range(n_points), columns=predictors)
    base[focal] = np.linspace(lo, hi, n_points)
    companion = quadratic_name(focal)
    if companion in base.columns:
        base[companion] = base[focal] ** 2

    if moderator is None:
        return base

    if moderator not in predictors:
        raise ValueError(f"{fit.spec.label}: moderator '{moderator}' is not a predictor of this model")
    levels = list(values) if values is not None else list(moderator_levels(fit, moderator))
    blocks = []
    for level in levels:
        block = base.copy()
        block[moderator] = float(level)
        block["moderator_value"] = float(level)
        blocks.append(block)
    return pd.concat(blocks, ignore_index=True)


def design_matrix(grid: pd.DataFrame, terms: Iterable[str]) -> np.ndarray:
    """Columns for 'Intercept', main effects and 'a:b' interaction terms."""
    columns = []
    for term in terms:
        if term == "Intercept":
            columns.append(np.ones(len(grid)))
        else:
            column = np.ones(len(grid))
            for part in term.split(":"):
                column = column * grid[part].to_numpy(dtype=float)
            columns.append(column)
    return np.column_stack(columns)


def predict_curve(
    fit: FitResult,
    focal: str = "ltime_pmc",
    moderator: Optional[str] = None,
    values: Optional[Iterable[float]] = None,
    n_points: int = N_POINTS,
    level: float = 0.95,
) -> pd.DataFrame:
    """
    Expected outcome along the reference grid, from the fixed-effect draws.

    Returns the grid with 'estimate' (draw mean), 'lower' and 'upper'
    (equal-tailed interval at ``level``).

    Raises:
        ValueError: the fit carries no draws (see lmm.sample_fixed_effects)
    """
    if fit.draws is None:
        raise ValueError(f"{fit.spec.label}: fit has no fixed-effect draws to predict from")

    grid = reference_grid(fit, focal=focal, moderator=moderator, values=values, n_points=n_points)
    terms = list(fit.draws.columns)
    mu = design_matrix(grid, terms) @ fit.draws[terms].to_numpy().T

    alpha = (1.0 - level) / 2.0
    curve = grid.copy()
    curve["estimate"] = mu.mean(axis=1)
    curve["lower"] = np.percentile(mu, 100 * alpha, axis=1)
    curve["upper"] = np.percentile(mu, 100 * (1 - alpha), axis=1)
    curve.insert(0, "outcome", fit.outcome)
    curve.insert(1, "variant", fit.variant)
    return curve
