"""
Report-build CLI.

Usage:
    python -m solitude
    python -m solitude --diary data/raw/diary.csv --baseline data/raw/baseline.csv
    python -m solitude --draws 2000 --tune 1000 --chains 4 --figures
    python -m solitude --no-bayes
"""

import argparse
import sys
from typing import List, Optional

from .errors import DataUnavailable, SchemaError
from .modeling.fitting import LmmSettings, SamplerSettings
from .modeling.pipeline import build_report


if sys.platform.startswith("win") and hasattr(sys.stdout, "reconfigure"):
    sys.stdout.reconfigure(encoding="utf-8")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solitude",
        description="Fit the solitude diary models and export coefficient tables and prediction grids",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m solitude
    python -m solitude --output results/run1 --jobs 4
    python -m solitude --chains 4 --figures
    python -m solitude --no-bayes --jobs 4
    python -m solitude --no-cache
        """,
    )
    parser.add_argument("--diary", help="Diary table (default: data/raw/diary.csv)")
    parser.add_argument("--baseline", help="Baseline table (default: data/raw/baseline.csv)")
    parser.add_argument("--diary-url", help="Download the diary table from this URL if it is missing")
    parser.add_argument("--baseline-url", help="Download the baseline table from this URL if it is missing")
    parser.add_argument("--output", help="Output directory (default: results/)")

    cache = parser.add_mutually_exclusive_group()
    cache.add_argument("--cache-dir", help="Fit cache directory (default: results/fit_cache)")
    cache.add_argument("--no-cache", action="store_true", help="Refit every model, read and write no cache")

    parser.add_argument("--no-bayes", action="store_true",
                        help="Skip the Bayesian curve fits (bambi/PyMC); curves use sampled LMM fixed effects")
    parser.add_argument("--draws", type=int, default=SamplerSettings.draws, help="Posterior draws per chain")
    parser.add_argument("--tune", type=int, default=SamplerSettings.tune, help="Tuning steps per chain")
    parser.add_argument("--chains", type=int, default=SamplerSettings.chains, help="Number of chains")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for sampling and bootstrap")
    parser.add_argument("--jobs", type=int, default=1, help="LMM fits run in parallel (threads)")
    parser.add_argument("--figures", action="store_true", help="Also write PNG prediction curves")
    parser.add_argument("--quiet", action="store_true", help="Suppress verbose output")
    return parser


def lmm_settings_from_args(args: argparse.Namespace) -> LmmSettings:
    return LmmSettings(seed=args.seed)


def sampler_settings_from_args(args: argparse.Namespace) -> SamplerSettings:
    return SamplerSettings(
        draws=args.draws,
        tune=args.tune,
        chains=args.chains,
        cores=min(args.chains, SamplerSettings.cores),
        random_seed=args.seed,
        progressbar=not args.quiet,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    verbose = not args.quiet

    try:
        report = build_report(
            diary_path=args.diary,
            baseline_path=args.baseline,
            output_dir=args.output,
            diary_url=args.diary_url,
            baseline_url=args.baseline_url,
            settings=lmm_settings_from_args(args),
            sampler=sampler_settings_from_args(args),
            bayes=not args.no_bayes,
            cache_dir=args.cache_dir,
            use_cache=not args.no_cache,
            n_jobs=args.jobs,
            figures=args.figures,
            seed=args.seed,
            verbose=verbose,
        )
    except (DataUnavailable, SchemaError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1

    reports = [report] + ([report.bayes] if report.bayes is not None else [])
    failures = [(run.backend, pair, message) for run in reports for pair, message in run.failures.items()]
    if failures:
        print(f"[WARN] {len(failures)} model(s) failed; see model_status.csv")
        for backend, (outcome, variant), message in failures:
            print(f"  - {outcome}:{variant} ({backend}): {message}")
    elif verbose:
        print(f"[OK] All {sum(run.n_ok for run in reports)} model(s) fitted")
    return 0
