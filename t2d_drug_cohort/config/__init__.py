"""
Cohort Configuration Package
"""

from .cohort_config import (
    # Paths
    MODULE_ROOT,
    CONFIG_DIR,
    DEFAULT_PIPELINE_YAML,

    # Constants
    BIOMARKERS,
    EPISODE_KEYS,
    HORIZONS,
    ResponseWindow,

    # Configs
    RESPONSE_CONFIG,
    COHORT_CONFIG,
    RISK_SCORE_CONFIG,
    EXPORT_CONFIG,
    RunConfig,

    # Helpers
    load_run_config,
    ensure_directories,
)

__all__ = [
    'MODULE_ROOT',
    'CONFIG_DIR',
    'DEFAULT_PIPELINE_YAML',
    'BIOMARKERS',
    'EPISODE_KEYS',
    'HORIZONS',
    'ResponseWindow',
    'RESPONSE_CONFIG',
    'COHORT_CONFIG',
    'RISK_SCORE_CONFIG',
    'EXPORT_CONFIG',
    'RunConfig',
    'load_run_config',
    'ensure_directories',
]
