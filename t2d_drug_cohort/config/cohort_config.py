"""
T2D Drug Response Cohort Configuration
======================================

Central configuration for the first-instance drug episode pipeline.
"""

from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import yaml


# =============================================================================
# PATH CONFIGURATION
# =============================================================================

MODULE_ROOT = Path(__file__).parent.parent
CONFIG_DIR = MODULE_ROOT / "config"
DEFAULT_PIPELINE_YAML = CONFIG_DIR / "pipeline.yaml"

# Relative to the working directory unless overridden in pipeline.yaml
INPUT_DIR = Path("data") / "input"
CACHE_DIR = Path("data") / "cache"
OUTPUT_DIR = Path("data") / "output"


# =============================================================================
# BIOMARKERS
# =============================================================================

# Height is carried as a baseline extra and has no response
BIOMARKERS: List[str] = [
    'weight',
    'bmi',
    'fastingglucose',
    'hdl',
    'triglyceride',
    'creatinine_blood',
    'ldl',
    'alt',
    'ast',
    'totalcholesterol',
    'dbp',
    'sbp',
    'acr',
    'hba1c',
    'egfr',
    'albumin_blood',
    'bilirubin',
    'haematocrit',
    'haemoglobin',
    'pcr',
]

EPISODE_KEYS: List[str] = ['patid', 'dstartdate', 'drugclass']


# =============================================================================
# RESPONSE WINDOWS
# =============================================================================

@dataclass(frozen=True)
class ResponseWindow:
    """Valid observation window for a post-initiation biomarker value (days from drug start)."""

    horizon: str
    min_offset: int       # earliest valid day
    target_offset: int    # value closest to this day is chosen
    ceiling: int          # hard upper bound on the window
    change_grace: int = 91  # days allowed after a regimen change


HORIZONS: Dict[str, ResponseWindow] = {
    '6m': ResponseWindow(horizon='6m', min_offset=91, target_offset=183, ceiling=274),
    '12m': ResponseWindow(horizon='12m', min_offset=274, target_offset=365, ceiling=457),
}


# =============================================================================
# RESPONSE / OUTCOME CONFIGURATION
# =============================================================================

@dataclass
class ResponseConfig:
    """Biomarker-specific censoring and outcome settings."""

    # HbA1c response removed when glucose-lowering meds changed this recently
    hba1c_prevcombo_max_days: int = 61
    prevcombo_masked_biomarkers: List[str] = field(default_factory=lambda: ['hba1c'])

    # Baseline values may be taken up to this many days after drug start
    baseline_post_start_days: int = 7

    # eGFR falling to this fraction of baseline (or lower) is a 40% decline
    decline_biomarker: str = 'egfr'
    egfr_decline_fraction: float = 0.4


RESPONSE_CONFIG = ResponseConfig()


# =============================================================================
# COHORT CONFIGURATION
# =============================================================================

@dataclass
class CohortConfig:
    """Eligibility and covariate settings for the episode table."""

    diabetes_type: str = 'type 2'
    registration_runin_days: int = 91
    days_per_year: float = 365.25

    # Columns dropped from joined feature tables to avoid duplicates
    feature_drop_columns: List[str] = field(default_factory=lambda: ['druginstance'])
    discontinuation_drop_columns: List[str] = field(default_factory=lambda: [
        'druginstance',
        'timeondrug',
        'nextremdrug',
        'timetolastpx',
    ])


COHORT_CONFIG = CohortConfig()


# =============================================================================
# RISK SCORE CONFIGURATION
# =============================================================================

@dataclass
class RiskScoreConfig:
    """Inputs and validity ranges for QDiabetes-HF and QRISK2."""

    ckd45_stages: List[str] = field(default_factory=lambda: ['stage_4', 'stage_5'])
    cvd_conditions: List[str] = field(default_factory=lambda: [
        'predrug_myocardialinfarction',
        'predrug_angina',
        'predrug_stroke',
    ])
    bp_med_classes: List[str] = field(default_factory=lambda: [
        'ace_inhibitors',
        'beta_blockers',
        'calcium_channel_blockers',
        'thiazide_diuretics',
    ])
    bp_med_recency_days: int = 28

    # Duration upper bounds (years); first is inclusive, the rest exclusive
    dm_duration_breaks: List[float] = field(default_factory=lambda: [1, 4, 7, 11])

    # Validity ranges (inclusive). Optional inputs may be missing.
    qdiabeteshf_cholhdl: Tuple[float, float] = (1, 11)
    qdiabeteshf_hba1c: Tuple[float, float] = (40, 150)
    qrisk2_cholhdl: Tuple[float, float] = (1, 12)
    sbp_range: Tuple[float, float] = (70, 210)
    age_range: Tuple[float, float] = (25, 84)
    min_bmi: float = 20

    # Biomarkers whose baseline values feed the scores
    baseline_biomarkers: List[str] = field(default_factory=lambda: [
        'hba1c',
        'totalcholesterol',
        'hdl',
        'sbp',
        'bmi',
    ])


RISK_SCORE_CONFIG = RiskScoreConfig()


def required_baseline_biomarkers(biomarkers: List[str]) -> List[str]:
    """Processed biomarkers plus those whose baseline feeds the scores and the eGFR outcome."""
    needed = list(biomarkers) + RISK_SCORE_CONFIG.baseline_biomarkers + [RESPONSE_CONFIG.decline_biomarker]
    return list(dict.fromkeys(needed))


# =============================================================================
# EXPORT CONFIGURATION
# =============================================================================

@dataclass
class ExportConfig:
    """Output file settings."""

    output_prefix: str = 't2d_1stinstance'
    all_periods_name: str = 't2d_all_drug_periods'
    # Splits output files by numeric patid to bound file size
    shard_threshold: int = 2_000_000_000_000
    shard_suffixes: Tuple[str, str] = ('a', 'b')


EXPORT_CONFIG = ExportConfig()


# =============================================================================
# RUN CONFIGURATION
# =============================================================================

@dataclass
class RunConfig:
    """Per-run settings loaded from pipeline.yaml."""

    input_dir: Path = INPUT_DIR
    cache_dir: Optional[Path] = CACHE_DIR
    output_dir: Path = OUTPUT_DIR
    input_format: str = 'parquet'
    qdiabeteshf_formula: Optional[str] = None
    qrisk2_formula: Optional[str] = None
    n_jobs: int = 1
    shard_threshold: int = EXPORT_CONFIG.shard_threshold
    output_prefix: str = EXPORT_CONFIG.output_prefix


def load_run_config(path: Optional[Path] = None) -> RunConfig:
    """
    Load run settings from YAML.

    Args:
        path: YAML file (default: config/pipeline.yaml)

    Returns:
        RunConfig with YAML values applied over the defaults
    """
    path = Path(path) if path else DEFAULT_PIPELINE_YAML
    with open(path, 'r') as f:
        raw = yaml.safe_load(f) or {}

    unknown = set(raw) - set(RunConfig.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown keys in {path}: {sorted(unknown)}")

    config = RunConfig(**raw)
    config.input_dir = Path(config.input_dir)
    config.output_dir = Path(config.output_dir)
    if config.cache_dir is not None:
        config.cache_dir = Path(config.cache_dir)
    return config


def ensure_directories(config: RunConfig):
    """Create output and cache directories."""
    for dir_path in [config.output_dir, config.cache_dir]:
        if dir_path is not None:
            dir_path.mkdir(parents=True, exist_ok=True)
