"""
Report build: fit every (outcome, variant) pair and export the tables.

    load_dataset -> build_features -> run_models (lmm, every pair)
                                   -> run_models (bayes, RQ1/RQ3a/RQ3b)
                                   -> write_report

Every inferential table comes from the linear mixed models; the prediction
curves come from the Bayesian fits of the RQ1/RQ3a/RQ3b pairs. A FitError
for one pair is recorded on the ModelRunReport and the remaining pairs
continue. LMM fits are independent, so they may run through a joblib thread
pool; the Bayesian backend parallelises chains itself.

Outputs (all CSV, utf-8-sig):
    model_status.csv          one row per pair: ok / warning / failed
    estimates.csv             every fixed-effect row (plus ICC rows)
    estimates/<outcome>_<variant>.csv
    time_effects_table.csv    linear and quadratic time terms, RQ1/RQ3a/RQ3b
    predictions/<outcome>_<variant>.csv
    figures/<outcome>_<variant>.png   (optional)
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd
from joblib import Parallel, delayed

from ..errors import FitError
from ..preprocessing.constants import CHOICE_COL, CONDITIONAL_OUTCOMES, GMC_SUFFIX, MOTIVATION_COL, TIME_COL
from ..preprocessing.features import between_name, quadratic_name, within_name
from .cache import FitCache
from .fitting import FitResult, LmmSettings, SamplerSettings, Settings, fit_model
from .specs import TIME_EFFECT_VARIANTS, VARIANTS, build_model_spec, research_plan
from .summaries import summarize_fit

Pair = Tuple[str, str]

SECTIONS = ("Within-person", "Between-person")

# Focal predictor and moderator of each prediction curve
CURVES = {
    "rq1": (within_name(TIME_COL), None),
    "rq3a": (within_name(TIME_COL), within_name(CHOICE_COL)),
    "rq3b": (within_name(TIME_COL), f"{MOTIVATION_COL}{GMC_SUFFIX}"),
}


# =============================================================================
# RUN REPORT
# =============================================================================

@dataclass
class ModelRunReport:
    """
    Outcome of one run_models() call.

    build_report() attaches the Bayesian curve fits of the same build as
    ``bayes`` on the LMM report.
    """
    backend: str
    results: Dict[Pair, FitResult] = field(default_factory=dict)
    failures: Dict[Pair, str] = field(default_factory=dict)
    bayes: Optional["ModelRunReport"] = None

    @property
    def warnings(self) -> Dict[Pair, Tuple[str, ...]]:
        return {pair: fit.warnings for pair, fit in self.results.items() if fit.warnings}

    @property
    def n_ok(self) -> int:
        return len(self.results)

    def status_frame(self) -> pd.DataFrame:
        rows = []
        for (outcome, variant), fit in self.results.items():
            rows.append({
                "outcome": outcome,
                "variant": variant,
                "backend": self.backend,
                "status": "warning" if fit.warnings else "ok",
                "converged": fit.converged,
                "boundary": fit.boundary,
                "method": fit.method,
                "n_obs": fit.n_obs,
                "n_groups": fit.n_groups,
                "message": "; ".join(fit.warnings),
            })
        for (outcome, variant), message in self.failures.items():
            rows.append({
                "outcome": outcome,
                "variant": variant,
                "backend": self.backend,
                "status": "failed",
                "converged": False,
                "boundary": False,
                "method": "",
                "n_obs": 0,
                "n_groups": 0,
                "message": message,
            })
        frame = pd.DataFrame(rows, columns=[
            "outcome", "variant", "backend", "status", "converged", "boundary",
            "method", "n_obs", "n_groups", "message",
        ])
        return _order_pairs(frame)

    def estimates(self) -> pd.DataFrame:
        if not self.results:
            return pd.DataFrame()
        tables = [summarize_fit(fit) for fit in self.results.values()]
        return pd.concat(tables, ignore_index=True)


def _order_pairs(frame: pd.DataFrame) -> pd.DataFrame:
    outcome_rank = {col: i for i, col in enumerate(CONDITIONAL_OUTCOMES)}
    variant_rank = {name: i for i, name in enumerate(VARIANTS)}
    keys = frame["outcome"].map(lambda o: outcome_rank.get(o, len(outcome_rank))) * 100 \
        + frame["variant"].map(lambda v: variant_rank.get(v, len(variant_rank)))
    return frame.assign(_key=keys).sort_values("_key", kind="stable").drop(columns="_key").reset_index(drop=True)


# =============================================================================
# FITTING
# =============================================================================

def _fit_pair(
    outcome: str,
    variant: str,
    features: pd.DataFrame,
    backend: str,
    cache: Optional[FitCache],
    settings: Optional[Settings],
    verbose: bool,
) -> Tuple[Pair, Union[FitResult, str]]:
    try:
        spec = build_model_spec(outcome, variant)
        return (spec.outcome, variant), fit_model(
            spec, features, backend=backend, cache=cache, settings=settings, verbose=verbose
        )
    except FitError as exc:
        return (exc.outcome or outcome, exc.variant or variant), str(exc)


def run_models(
    features: pd.DataFrame,
    plan: Optional[Iterable[Pair]] = None,
    backend: str = "lmm",
    cache: Optional[FitCache] = None,
    settings: Optional[Settings] = None,
    n_jobs: int = 1,
    verbose: bool = True,
) -> ModelRunReport:
    """
    Fit each (outcome, variant) pair independently.

    Args:
        features: Feature table from build_features()
        plan: Pairs to fit (default: research_plan())
        backend: 'lmm' or 'bayes'
        cache: Open FitCache handle, or None
        settings: Backend settings shared by every fit
        n_jobs: Thread-pool size; 1 fits sequentially
        verbose: Print progress

    Returns:
        ModelRunReport
    """
    pairs = list(plan) if plan is not None else list(research_plan())
    if verbose:
        print("\n" + "=" * 70)
        print(f"FITTING {len(pairs)} MODEL(S) [{backend}]")
        print("=" * 70)

    if n_jobs == 1:
        outputs = [_fit_pair(outcome, variant, features, backend, cache, settings, verbose)
                   for outcome, variant in pairs]
    else:
        outputs = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_fit_pair)(outcome, variant, features, backend, cache, settings, verbose)
            for outcome, variant in pairs
        )

    report = ModelRunReport(backend=backend)
    for pair, value in outputs:
        if isinstance(value, FitResult):
            report.results[pair] = value
        else:
            report.failures[pair] = value

    if verbose:
        print(f"[OK] {report.n_ok}/{len(pairs)} model(s) fitted")
        for (outcome, variant), message in report.failures.items():
            print(f"[ERROR] {outcome}:{variant} failed: {message}")
        for (outcome, variant), messages in report.warnings.items():
            print(f"[WARN] {outcome}:{variant}: {'; '.join(messages)}")
    return report


# =============================================================================
# TIME EFFECTS TABLE
# =============================================================================

def term_level(term: str) -> Optional[Tuple[str, str]]:
    """
    Classify a solitude-time term as (section, shape).

    >>> term_level("ltime_pmc2")
    ('Within-person', 'Quadratic')
    """
    table = {
        within_name(TIME_COL): ("Within-person", "Linear"),
        quadratic_name(within_name(TIME_COL)): ("Within-person", "Quadratic"),
        between_name(TIME_COL): ("Between-person", "Linear"),
        quadratic_name(between_name(TIME_COL)): ("Between-person", "Quadratic"),
    }
    return table.get(term)


def build_time_effects_table(report: ModelRunReport) -> pd.DataFrame:
    """
    Linear and quadratic solitude-time coefficients across RQ1, RQ3a and RQ3b.

    Rows are grouped by section (within-person first), then outcome, then
    research question.
    """
    rows = []
    for (outcome, variant), fit in report.results.items():
        if variant not in TIME_EFFECT_VARIANTS:
            continue
        estimates = summarize_fit(fit)
        for row in estimates.itertuples(index=False):
            level = term_level(row.term)
            if level is None:
                continue
            rows.append({
                "section": level[0],
                "outcome": outcome,
                "variant": variant,
                "effect": level[1],
                "term": row.term,
                "estimate": row.estimate,
                "se": row.se,
                "ci_lower": row.ci_lower,
                "ci_upper": row.ci_upper,
                "p": row.p,
            })

    columns = ["section", "outcome", "variant", "effect", "term", "estimate", "se", "ci_lower", "ci_upper", "p"]
    table = pd.DataFrame(rows, columns=columns)
    if table.empty:
        return table
    section_rank = {name: i for i, name in enumerate(SECTIONS)}
    outcome_rank = {col: i for i, col in enumerate(CONDITIONAL_OUTCOMES)}
    variant_rank = {name: i for i, name in enumerate(TIME_EFFECT_VARIANTS)}
    table["_key"] = (
        table["section"].map(section_rank) * 10_000
        + table["outcome"].map(outcome_rank) * 100
        + table["variant"].map(variant_rank) * 10
        + (table["effect"] == "Quadratic").astype(int)
    )
    return table.sort_values("_key", kind="stable").drop(columns="_key").reset_index(drop=True)


# =============================================================================
# PREDICTIONS
# =============================================================================

def curve_plan() -> List[Pair]:
    """The (outcome, variant) pairs that get a prediction curve."""
    return [(outcome, variant) for outcome, variant in research_plan() if variant in CURVES]


def prediction_curves(report: ModelRunReport, n_draws: int = 4000, seed: int = 0) -> Dict[Pair, pd.DataFrame]:
    """
    Prediction curve for every RQ1/RQ3a/RQ3b pair.

    Curves use the posterior draws of ``report.bayes`` when it holds a fit
    for the pair. Without one (Bayesian step disabled, or that fit failed)
    the LMM fit is given sampled fixed-effect draws instead.
    """
    from .lmm import sample_fixed_effects
    from .predictions import predict_curve

    posterior = report.bayes.results if report.bayes is not None else {}
    pairs = [pair for pair in report.results if pair[1] in CURVES]
    pairs += [pair for pair in posterior if pair[1] in CURVES and pair not in pairs]

    curves: Dict[Pair, pd.DataFrame] = {}
    for pair in pairs:
        fit = posterior.get(pair)
        if fit is None:
            fit = report.results[pair]
            if fit.draws is None:
                fit = sample_fixed_effects(fit, n_draws=n_draws, seed=seed)
        focal, moderator = CURVES[fit.variant]
        curves[pair] = predict_curve(fit, focal=focal, moderator=moderator)
    return curves


# =============================================================================
# EXPORT
# =============================================================================

def _write_csv(frame: pd.DataFrame, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=False, encoding="utf-8-sig")
    return path


def write_report(
    report: ModelRunReport,
    output_dir: Union[str, Path],
    figures: bool = False,
    seed: int = 0,
    verbose: bool = True,
) -> List[Path]:
    """Write status, estimate, time-effect and prediction tables; returns the paths."""
    output_dir = Path(output_dir)
    written: List[Path] = []

    status = report.status_frame()
    if report.bayes is not None:
        status = pd.concat([status, report.bayes.status_frame()], ignore_index=True)
    written.append(_write_csv(status, output_dir / "model_status.csv"))
    estimates = report.estimates()
    if not estimates.empty:
        written.append(_write_csv(estimates, output_dir / "estimates.csv"))
        for (outcome, variant), fit in report.results.items():
            written.append(_write_csv(summarize_fit(fit), output_dir / "estimates" / f"{outcome}_{variant}.csv"))
    written.append(_write_csv(build_time_effects_table(report), output_dir / "time_effects_table.csv"))

    curves = prediction_curves(report, seed=seed)
    for (outcome, variant), curve in curves.items():
        written.append(_write_csv(curve, output_dir / "predictions" / f"{outcome}_{variant}.csv"))

    if figures and curves:
        from .figures import plot_prediction_curve
        for (outcome, variant), curve in curves.items():
            written.append(plot_prediction_curve(curve, output_dir / "figures" / f"{outcome}_{variant}.png"))

    if verbose:
        print(f"[OK] Wrote {len(written)} file(s) to {output_dir}")
    return written


def build_report(
    diary_path: Optional[Union[str, Path]] = None,
    baseline_path: Optional[Union[str, Path]] = None,
    output_dir: Optional[Union[str, Path]] = None,
    diary_url: Optional[str] = None,
    baseline_url: Optional[str] = None,
    settings: Optional[LmmSettings] = None,
    sampler: Optional[SamplerSettings] = None,
    bayes: bool = True,
    cache_dir: Optional[Union[str, Path]] = None,
    use_cache: bool = True,
    n_jobs: int = 1,
    figures: bool = False,
    seed: int = 0,
    verbose: bool = True,
) -> ModelRunReport:
    """
    Load, derive features, fit every model and write the outputs.

    Args:
        settings: LMM options for the full research plan
        sampler: Sampler options for the Bayesian curve fits
        bayes: Run the Bayesian curve fits; when False the curves use sampled
            LMM fixed effects
        n_jobs: Thread-pool size for the LMM fits

    Returns:
        The LMM ModelRunReport, with the Bayesian report attached as ``bayes``
    """
    from ..preprocessing import build_features, decomposition_residual, load_dataset
    from ..preprocessing.constants import (
        DEFAULT_BASELINE_PATH,
        DEFAULT_DIARY_PATH,
        FIT_CACHE_DIR,
        QUADRATIC_VARIABLES,
        RESULTS_DIR,
    )

    data = load_dataset(
        diary_path=diary_path or DEFAULT_DIARY_PATH,
        baseline_path=baseline_path or DEFAULT_BASELINE_PATH,
        diary_url=diary_url,
        baseline_url=baseline_url,
        verbose=verbose,
    )
    features = build_features(data, verbose=verbose)
    for column in QUADRATIC_VARIABLES:
        gap = decomposition_residual(features, column)
        if gap > 1e-8:
            warnings.warn(f"{column}: quadratic between/within decomposition off by {gap:.2e}", UserWarning)

    def _fit_all(cache: Optional[FitCache]) -> ModelRunReport:
        report = run_models(features, backend="lmm", cache=cache, settings=settings,
                            n_jobs=n_jobs, verbose=verbose)
        if bayes:
            report.bayes = run_models(features, plan=curve_plan(), backend="bayes", cache=cache,
                                      settings=sampler, verbose=verbose)
        elif verbose:
            print("[INFO] Bayesian curve fits skipped; curves use sampled LMM fixed effects")
        return report

    if use_cache:
        with FitCache(cache_dir or FIT_CACHE_DIR, verbose=verbose) as cache:
            report = _fit_all(cache)
    else:
        report = _fit_all(None)

    write_report(report, output_dir or RESULTS_DIR, figures=figures, seed=seed, verbose=verbose)
    return report
