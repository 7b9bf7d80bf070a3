"""
Preprocessing Module
====================

Loading, harmonising and feature derivation for the diary study.

    from solitude.preprocessing import load_dataset, build_features
    features = build_features(load_dataset())
"""

# Constants
from .constants import (
    BASE_DIR,
    DATA_DIR,
    RAW_DIR,
    RESULTS_DIR,
    FIT_CACHE_DIR,
    DEFAULT_DIARY_PATH,
    DEFAULT_BASELINE_PATH,
    PARTICIPANT_COL,
    DAY_COL,
    OUTCOMES,
    CONDITIONAL_OUTCOMES,
    LAGGED_VARIABLES,
    QUADRATIC_VARIABLES,
)

# Loaders
from .loaders import (
    fetch_if_missing,
    read_table,
    load_diary,
    load_baseline,
    load_dataset,
)

# Features
from .features import (
    lag_name,
    between_name,
    within_name,
    quadratic_name,
    centered_variables,
    add_lagged_variables,
    grand_mean_center,
    split_within_between,
    add_centered_components,
    add_quadratic_components,
    center_subject_level,
    build_features,
    decomposition_residual,
)

__all__ = [
    # Constants
    'BASE_DIR',
    'DATA_DIR',
    'RAW_DIR',
    'RESULTS_DIR',
    'FIT_CACHE_DIR',
    'DEFAULT_DIARY_PATH',
    'DEFAULT_BASELINE_PATH',
    'PARTICIPANT_COL',
    'DAY_COL',
    'OUTCOMES',
    'CONDITIONAL_OUTCOMES',
    'LAGGED_VARIABLES',
    'QUADRATIC_VARIABLES',
    # Loaders
    'fetch_if_missing',
    'read_table',
    'load_diary',
    'load_baseline',
    'load_dataset',
    # Features
    'lag_name',
    'between_name',
    'within_name',
    'quadratic_name',
    'centered_variables',
    'add_lagged_variables',
    'grand_mean_center',
    'split_within_between',
    'add_centered_components',
    'add_quadratic_components',
    'center_subject_level',
    'build_features',
    'decomposition_residual',
]
