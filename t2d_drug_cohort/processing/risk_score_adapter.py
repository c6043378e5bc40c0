"""
Risk Score Adapter
==================

Prepares covariates for the external QDiabetes-HF and QRISK2 formulas, runs
them (QDiabetes-HF 5 year, QRISK2 5 and 10 year), and nulls scores whose
inputs fall outside the range each score is valid for. Rows are never
removed.

Formula interface: formula(**covariates) -> DataFrame with a `score` column
and optionally `lin_predictor`, on the same index as the covariates.
"""

import importlib
import pandas as pd
import numpy as np
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
import logging

from t2d_drug_cohort.config.cohort_config import EPISODE_KEYS, RISK_SCORE_CONFIG, RiskScoreConfig
from t2d_drug_cohort.extractors.schemas import validate_schema
from t2d_drug_cohort.processing.date_utils import days_between, row_max_date, row_min_date

logger = logging.getLogger(__name__)

RiskFormula = Callable[..., pd.DataFrame]

SCORE_COLUMNS: List[str] = [
    'qdiabeteshf_5yr_score',
    'qdiabeteshf_lin_predictor',
    'qrisk2_5yr_score',
    'qrisk2_10yr_score',
    'qrisk2_lin_predictor',
]


@dataclass
class RiskFormulas:
    """External score functions."""

    qdiabeteshf: RiskFormula
    qrisk2: RiskFormula


def load_formula(path: str) -> RiskFormula:
    """Import a formula from a 'package.module:function' string."""
    module_name, _, func_name = path.partition(':')
    if not func_name:
        raise ValueError(f"Formula path must look like 'package.module:function', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, func_name)


def required_columns(config: RiskScoreConfig = RISK_SCORE_CONFIG) -> List[str]:
    """Episode-table columns the adapter reads."""
    bp_cols = [
        f'predrug_{which}_{cls}'
        for which in ('earliest', 'latest')
        for cls in config.bp_med_classes
    ]
    return EPISODE_KEYS + [
        'gender',
        'dstartdate_age',
        'dstartdate_dm_dur_all',
        'ethnicity_qrisk2',
        'qrisk2_smoking_cat',
        'preckdstage',
        'predrug_fh_premature_cvd',
        'predrug_af',
        'predrug_rheumatoidarthritis',
        'tds_2011',
    ] + config.cvd_conditions + bp_cols


# =============================================================================
# COVARIATES
# =============================================================================

def sex_category(gender: pd.Series) -> pd.Series:
    """1 -> 'male', 2 -> 'female', anything else missing."""
    return gender.map({1: 'male', 2: 'female'})


def dm_duration_category(duration: pd.Series, config: RiskScoreConfig = RISK_SCORE_CONFIG) -> pd.Series:
    """
    Diabetes duration bucket 0-4.

    Boundaries are <=1, <4, <7, <11, else 4; missing duration stays missing.
    """
    first, *rest = config.dm_duration_breaks
    conditions = [duration <= first] + [duration < bound for bound in rest]
    categories = np.select(conditions, list(range(len(conditions))), default=len(conditions))
    return pd.Series(categories, index=duration.index).where(duration.notna()).astype('Int64')


def bp_meds_flag(df: pd.DataFrame, config: RiskScoreConfig = RISK_SCORE_CONFIG) -> pd.Series:
    """
    Antihypertensive treatment at drug start.

    1 where the earliest and latest pre-drug prescriptions across the four
    classes differ (at least two issues) and the latest is no more than
    `bp_med_recency_days` before drug start; otherwise 0.
    """
    earliest = row_min_date(df, [f'predrug_earliest_{cls}' for cls in config.bp_med_classes])
    latest = row_max_date(df, [f'predrug_latest_{cls}' for cls in config.bp_med_classes])
    recent = days_between(df['dstartdate'], latest) <= config.bp_med_recency_days
    flag = earliest.notna() & latest.notna() & recent & (earliest != latest)
    return flag.astype(int)


def ckd45_flag(ckd_stage: pd.Series, config: RiskScoreConfig = RISK_SCORE_CONFIG) -> pd.Series:
    """Advanced CKD (stage 4 or 5); missing where stage is unknown."""
    return ckd_stage.isin(config.ckd45_stages).astype('boolean').where(ckd_stage.notna())


def cvd_flag(conditions: pd.DataFrame) -> pd.Series:
    """
    Any prior CVD condition recorded as 1.

    True if any condition is 1; missing if none is 1 and any is missing;
    otherwise False.
    """
    positive = (conditions == 1).any(axis=1)
    unknown = conditions.isna().any(axis=1)
    return positive.astype('boolean').where(positive | ~unknown)


def prepare_covariates(
    episodes: pd.DataFrame,
    baseline_values: pd.DataFrame,
    config: RiskScoreConfig = RISK_SCORE_CONFIG,
) -> pd.DataFrame:
    """
    Build the covariate frame shared by both scores.

    Args:
        episodes: Episode table from episode_builder.build_episodes
        baseline_values: keys + pre{b} columns for config.baseline_biomarkers
        config: Risk score settings

    Returns:
        One row per episode, same order as `episodes`
    """
    validate_schema(episodes, 'episodes', required_columns(config))
    validate_schema(
        baseline_values, 'baseline_values',
        EPISODE_KEYS + [f'pre{b}' for b in config.baseline_biomarkers],
    )

    shared = [c for c in baseline_values.columns if c in episodes.columns and c not in EPISODE_KEYS]
    if shared:
        raise ValueError(f"Baseline values repeat episode columns: {shared}")

    df = episodes.merge(baseline_values, on=EPISODE_KEYS, how='left', validate='many_to_one')
    return pd.DataFrame({
        'patid': df['patid'],
        'dstartdate': df['dstartdate'],
        'drugclass': df['drugclass'],
        'sex': sex_category(df['gender']),
        'age': df['dstartdate_age'],
        'ethrisk': df['ethnicity_qrisk2'],
        'smoking': df['qrisk2_smoking_cat'],
        'duration': dm_duration_category(df['dstartdate_dm_dur_all'], config),
        'bp_med': bp_meds_flag(df, config),
        'type1': 0,
        'type2': 1,
        'cvd': cvd_flag(df[config.cvd_conditions]),
        'renal': ckd45_flag(df['preckdstage'], config),
        'fh_cvd': df['predrug_fh_premature_cvd'],
        'af': df['predrug_af'],
        'rheumatoid_arth': df['predrug_rheumatoidarthritis'],
        'hba1c': df['prehba1c'],
        'cholhdl': df['pretotalcholesterol'] / df['prehdl'],
        'sbp': df['presbp'],
        'bmi': df['prebmi'],
        'town': df['tds_2011'],
    })


# =============================================================================
# VALIDITY MASKS
# =============================================================================

def _optional_within(values: pd.Series, bounds) -> pd.Series:
    low, high = bounds
    return values.isna() | values.between(low, high)


def _common_validity(cov: pd.DataFrame, config: RiskScoreConfig) -> pd.Series:
    return (
        _optional_within(cov['sbp'], config.sbp_range)
        & cov['age'].between(*config.age_range)
        & (cov['bmi'] >= config.min_bmi)
    )


def qdiabeteshf_valid(cov: pd.DataFrame, config: RiskScoreConfig = RISK_SCORE_CONFIG) -> pd.Series:
    """QDiabetes-HF applies: chol/HDL missing or 1-11, HbA1c 40-150, SBP missing or 70-210, age 25-84, BMI >= 20."""
    return (
        _optional_within(cov['cholhdl'], config.qdiabeteshf_cholhdl)
        & cov['hba1c'].between(*config.qdiabeteshf_hba1c)
        & _common_validity(cov, config)
    )


def qrisk2_valid(cov: pd.DataFrame, config: RiskScoreConfig = RISK_SCORE_CONFIG) -> pd.Series:
    """QRISK2 applies: chol/HDL missing or 1-12, SBP missing or 70-210, age 25-84, BMI >= 20."""
    return (
        _optional_within(cov['cholhdl'], config.qrisk2_cholhdl)
        & _common_validity(cov, config)
    )


# =============================================================================
# SCORES
# =============================================================================

QDIABETESHF_ARGS = [
    'sex', 'age', 'ethrisk', 'smoking', 'duration', 'type1', 'cvd', 'renal',
    'af', 'hba1c', 'cholhdl', 'sbp', 'bmi', 'town',
]
QRISK2_ARGS = [
    'sex', 'age', 'ethrisk', 'smoking', 'type1', 'type2', 'fh_cvd', 'renal',
    'af', 'rheumatoid_arth', 'cholhdl', 'sbp', 'bmi', 'bp_med', 'town',
]


def _run_formula(formula: RiskFormula, cov: pd.DataFrame, args: List[str], surv: int) -> pd.DataFrame:
    result = formula(**{name: cov[name] for name in args}, surv=surv)
    if len(result) != len(cov):
        raise ValueError(f"Risk formula returned {len(result)} rows for {len(cov)} inputs")
    return result.set_axis(cov.index)


def _lin_predictor(result: pd.DataFrame) -> pd.Series:
    if 'lin_predictor' in result.columns:
        return result['lin_predictor']
    return pd.Series(np.nan, index=result.index)


def calculate_risk_scores(
    episodes: pd.DataFrame,
    baseline_values: pd.DataFrame,
    formulas: RiskFormulas,
    config: Optional[RiskScoreConfig] = None,
) -> pd.DataFrame:
    """
    Compute and mask QDiabetes-HF and QRISK2 scores for every episode.

    Args:
        episodes: Episode table
        baseline_values: keys + baseline biomarker columns
        formulas: External formula functions
        config: Risk score settings

    Returns:
        keys + SCORE_COLUMNS, one row per episode (scores missing where invalid)
    """
    config = config or RISK_SCORE_CONFIG
    cov = prepare_covariates(episodes, baseline_values, config)

    qdhf = _run_formula(formulas.qdiabeteshf, cov, QDIABETESHF_ARGS, surv=5)
    qrisk_5yr = _run_formula(formulas.qrisk2, cov, QRISK2_ARGS, surv=5)
    qrisk_10yr = _run_formula(formulas.qrisk2, cov, QRISK2_ARGS, surv=10)

    qdhf_ok = qdiabeteshf_valid(cov, config)
    qrisk_ok = qrisk2_valid(cov, config)

    scores = cov[EPISODE_KEYS].copy()
    scores['qdiabeteshf_5yr_score'] = qdhf['score'].where(qdhf_ok)
    scores['qdiabeteshf_lin_predictor'] = _lin_predictor(qdhf).where(qdhf_ok)
    scores['qrisk2_5yr_score'] = qrisk_5yr['score'].where(qrisk_ok)
    scores['qrisk2_10yr_score'] = qrisk_10yr['score'].where(qrisk_ok)
    scores['qrisk2_lin_predictor'] = _lin_predictor(qrisk_10yr).where(qrisk_ok)

    logger.info(
        f"Risk scores: QDiabetes-HF valid for {int(qdhf_ok.sum()):,}, "
        f"QRISK2 valid for {int(qrisk_ok.sum()):,} of {len(cov):,} episodes"
    )
    return scores.reset_index(drop=True)
