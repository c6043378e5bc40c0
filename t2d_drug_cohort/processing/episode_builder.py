"""
Cohort Filter & Episode Builder
===============================

Builds the analysis episode table: first-instance drug periods for type 2
patients with hospital linkage, started more than 91 days after
registration, joined to response, CKD, comorbidity, medication, smoking,
discontinuation and death tables.

Inner joins drop episodes without a partner row; counts are logged after
every step so the drop is visible.
"""

import pandas as pd
import numpy as np
from typing import Dict, Optional
import logging

from t2d_drug_cohort.config.cohort_config import COHORT_CONFIG, EPISODE_KEYS, CohortConfig
from t2d_drug_cohort.extractors.schemas import validate_schema
from t2d_drug_cohort.processing.date_utils import days_between

logger = logging.getLogger(__name__)

# Order of the inner-joined feature tables
FEATURE_JOIN_ORDER = ['ckd_stages', 'comorbidities', 'non_diabetes_meds', 'smoking', 'discontinuation']


def _log_counts(label: str, df: pd.DataFrame):
    logger.info(f"{label}: {len(df):,} rows, {df['patid'].nunique():,} patients")


def select_t2d_cohort(cohort: pd.DataFrame, config: CohortConfig = COHORT_CONFIG) -> pd.DataFrame:
    """
    Type 2 patients with hospital linkage, one row per patient.

    Diagnosis date/age are set missing where diagnosis fell within the
    grace window after registration (dm_diag_flag == 1); the unadjusted
    values stay in dm_diag_date_all / dm_diag_age_all.
    """
    validate_schema(cohort, 't1t2_cohort')
    t2ds = cohort[(cohort['diabetes_type'] == config.diabetes_type) & (cohort['with_hes'] == 1)].copy()

    near_registration = t2ds['dm_diag_flag'] == 1
    t2ds['dm_diag_date'] = t2ds['dm_diag_date_all'].where(~near_registration)
    t2ds['dm_diag_age'] = t2ds['dm_diag_age_all'].where(~near_registration)

    _log_counts("T2D cohort with linkage", t2ds)
    return t2ds


def build_drug_periods(
    t2ds: pd.DataFrame,
    drug_periods: pd.DataFrame,
    combo_timeline: pd.DataFrame,
) -> pd.DataFrame:
    """
    Join cohort patients to their drug periods and combination timeline.

    drugline is missing where diabetes was diagnosed before registration
    (or the diagnosis date is unknown), as the line of therapy cannot be
    observed.
    """
    validate_schema(drug_periods, 'drug_start_stop')
    validate_schema(combo_timeline, 'combo_start_stop')

    periods = t2ds.merge(drug_periods, on='patid', how='inner')
    combo = combo_timeline.rename(columns={'dcstartdate': 'dstartdate'})
    periods = periods.merge(combo, on=['patid', 'dstartdate'], how='inner')

    observable = periods['dm_diag_date_all'] >= periods['regstartdate']
    periods['drugline'] = periods['drugline_all'].where(observable)

    _log_counts("T2D drug periods", periods)
    return periods


def select_first_instance(periods: pd.DataFrame, config: CohortConfig = COHORT_CONFIG) -> pd.DataFrame:
    """First-instance periods starting more than `registration_runin_days` after registration."""
    first = periods[periods['druginstance'] == 1]
    _log_counts("First instance", first)

    runin = days_between(first['dstartdate'], first['regstartdate'])
    first = first[runin > config.registration_runin_days]
    _log_counts("After registration run-in exclusion", first)
    return first.reset_index(drop=True)


def join_episode_features(
    episodes: pd.DataFrame,
    responses: pd.DataFrame,
    features: Dict[str, pd.DataFrame],
    death_causes: pd.DataFrame,
    config: CohortConfig = COHORT_CONFIG,
) -> pd.DataFrame:
    """
    Inner-join response and feature tables, left-join death causes.

    Args:
        episodes: First-instance episodes
        responses: Episode-level response table (keys + extras + eGFR decline)
        features: Table name -> feature table keyed by patid/dstartdate/drugclass
        death_causes: Per-patient death cause table
        config: Cohort settings

    Returns:
        Joined DataFrame
    """
    validate_schema(responses, 'response_episodes', EPISODE_KEYS)
    response_cols = [c for c in responses.columns if c not in episodes.columns or c in EPISODE_KEYS]
    joined = episodes.merge(responses[response_cols], on=EPISODE_KEYS, how='inner')
    _log_counts("Joined responses", joined)

    for name in FEATURE_JOIN_ORDER:
        table = validate_schema(features[name], name)
        drop = config.discontinuation_drop_columns if name == 'discontinuation' else config.feature_drop_columns
        table = table.drop(columns=[c for c in drop if c in table.columns])
        joined = joined.merge(table, on=EPISODE_KEYS, how='inner')
        _log_counts(f"Joined {name}", joined)

    validate_schema(death_causes, 'death_causes')
    joined = joined.merge(death_causes, on='patid', how='left')
    return joined


def recode_hosp_admission(hosp_admission: pd.Series, with_hes: pd.Series) -> pd.Series:
    """
    Hospital admission in previous year as 0/1/missing.

    1 where recorded as 1; 0 where unrecorded and the patient is linked to
    hospital data; missing otherwise (including unlinked patients).
    """
    recoded = pd.Series(np.nan, index=hosp_admission.index)
    recoded[hosp_admission.isna() & (with_hes == 1)] = 0
    recoded[hosp_admission == 1] = 1
    return recoded.astype('Int64')


def derive_covariates(episodes: pd.DataFrame, config: CohortConfig = COHORT_CONFIG) -> pd.DataFrame:
    """Age and diabetes duration at drug start; recoded hospital admission."""
    df = episodes.copy()
    df['dstartdate_age'] = days_between(df['dstartdate'], df['dob']) / config.days_per_year
    df['dstartdate_dm_dur_all'] = days_between(df['dstartdate'], df['dm_diag_date_all']) / config.days_per_year
    df['dstartdate_dm_dur'] = days_between(df['dstartdate'], df['dm_diag_date']) / config.days_per_year
    df['hosp_admission_prev_year'] = recode_hosp_admission(df['hosp_admission_prev_year'], df['with_hes'])
    return df


def build_episodes(
    cohort: pd.DataFrame,
    drug_periods: pd.DataFrame,
    combo_timeline: pd.DataFrame,
    responses: pd.DataFrame,
    features: Dict[str, pd.DataFrame],
    death_causes: pd.DataFrame,
    config: Optional[CohortConfig] = None,
) -> pd.DataFrame:
    """
    Build the analysis-ready first-instance episode table.

    Args:
        cohort: Patient cohort table
        drug_periods: Drug start/stop table
        combo_timeline: Combination start/stop table
        responses: Episode-level response table
        features: Feature tables (ckd_stages, comorbidities, non_diabetes_meds,
            smoking, discontinuation)
        death_causes: Death cause table
        config: Cohort settings

    Returns:
        One row per retained (patid, dstartdate, drugclass)
    """
    config = config or COHORT_CONFIG
    t2ds = select_t2d_cohort(cohort, config)
    periods = build_drug_periods(t2ds, drug_periods, combo_timeline)
    episodes = select_first_instance(periods, config)
    episodes = join_episode_features(episodes, responses, features, death_causes, config)
    episodes = derive_covariates(episodes, config)
    _log_counts("Episode table", episodes)
    return episodes.sort_values(EPISODE_KEYS, kind='mergesort').reset_index(drop=True)


def build_all_drug_periods(cohort: pd.DataFrame, drug_periods: pd.DataFrame) -> pd.DataFrame:
    """Every drug period (any instance) for the linked T2D cohort, for later-initiation analyses."""
    t2ds = select_t2d_cohort(cohort)
    validate_schema(drug_periods, 'drug_start_stop')
    periods = t2ds[['patid']].merge(drug_periods, on='patid', how='inner')
    periods = periods[['patid', 'drugclass', 'dstartdate', 'dstopdate']]
    return periods.sort_values(EPISODE_KEYS, kind='mergesort').reset_index(drop=True)
