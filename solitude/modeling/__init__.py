"""
Modeling Module
===============

Model specifications, the two fitting backends, the fit cache, estimate
tables and prediction curves.

    from solitude.modeling import FitCache, build_model_spec, fit_model
    with FitCache(FIT_CACHE_DIR) as cache:
        fit = fit_model(build_model_spec("Satisfaction", "rq1"), features, cache=cache)
"""

# Specifications
from .specs import (
    VARIANTS,
    VARIANT_LABELS,
    TIME_EFFECT_VARIANTS,
    ModelSpec,
    resolve_outcome,
    build_model_spec,
    research_plan,
)

# Cache
from .cache import (
    FitCache,
    data_fingerprint,
    make_cache_key,
)

# Fitting
from .fitting import (
    BACKENDS,
    LmmSettings,
    SamplerSettings,
    FitResult,
    default_settings,
    model_frame,
    summarize_predictors,
    fit_model,
)
from .lmm import (
    fit_mixed_model,
    bootstrap_icc_interval,
    sample_fixed_effects,
)

# Summaries
from .summaries import (
    extract_estimates,
    intraclass_correlation,
    summarize_fit,
    format_pvalue,
    format_coefficient,
    format_estimate_table,
)

# Predictions
from .predictions import (
    moderator_levels,
    reference_grid,
    predict_curve,
)

# Pipeline
from .pipeline import (
    ModelRunReport,
    run_models,
    term_level,
    build_time_effects_table,
    curve_plan,
    prediction_curves,
    write_report,
    build_report,
)

__all__ = [
    # Specifications
    'VARIANTS',
    'VARIANT_LABELS',
    'TIME_EFFECT_VARIANTS',
    'ModelSpec',
    'resolve_outcome',
    'build_model_spec',
    'research_plan',
    # Cache
    'FitCache',
    'data_fingerprint',
    'make_cache_key',
    # Fitting
    'BACKENDS',
    'LmmSettings',
    'SamplerSettings',
    'FitResult',
    'default_settings',
    'model_frame',
    'summarize_predictors',
    'fit_model',
    'fit_mixed_model',
    'bootstrap_icc_interval',
    'sample_fixed_effects',
    # Summaries
    'extract_estimates',
    'intraclass_correlation',
    'summarize_fit',
    'format_pvalue',
    'format_coefficient',
    'format_estimate_table',
    # Predictions
    'moderator_levels',
    'reference_grid',
    'predict_curve',
    # Pipeline
    'ModelRunReport',
    'run_models',
    'term_level',
    'build_time_effects_table',
    'curve_plan',
    'prediction_curves',
    'write_report',
    'build_report',
]
