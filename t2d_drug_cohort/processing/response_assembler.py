"""
Response Assembler
==================

Joins baseline and resolved post-drug biomarker values into one response
record per (patient, first-instance drug episode, biomarker).

Records are kept long (one row per biomarker) until final export; see
exporters.cohort_exporter.flatten_responses for the wide layout.
"""

import pandas as pd
import numpy as np
from dataclasses import dataclass
from datetime import datetime
from functools import reduce
from typing import Dict, List, Optional
import logging

from t2d_drug_cohort.config.cohort_config import (
    BIOMARKERS,
    EPISODE_KEYS,
    HORIZONS,
    RESPONSE_CONFIG,
    ResponseConfig,
)
from t2d_drug_cohort.extractors.schemas import baseline_columns, validate_schema

logger = logging.getLogger(__name__)

COMBO_COLUMNS: List[str] = ['timetochange', 'timetoaddrem', 'multi_drug_start', 'timeprevcombo']
PRE_COLUMNS: List[str] = ['pre_value', 'pre_date', 'pre_drugdiff']


def post_columns(horizon: str) -> List[str]:
    return [f'post{horizon}_value', f'post{horizon}_date', f'post{horizon}_drugdiff']


@dataclass(frozen=True)
class BiomarkerValue:
    """A single biomarker reading relative to drug start."""

    value: Optional[float]
    date: Optional[datetime]
    offset: Optional[float]


@dataclass(frozen=True)
class ResponseRecord:
    """Baseline, post-drug values and responses for one biomarker of one episode."""

    baseline: BiomarkerValue
    post6m: BiomarkerValue
    post12m: BiomarkerValue
    resp6m: Optional[float]
    resp12m: Optional[float]


def _none_if_missing(value):
    return None if pd.isna(value) else value


def _value_from_row(row: pd.Series, columns: List[str]) -> BiomarkerValue:
    value, date, offset = (_none_if_missing(row[c]) for c in columns)
    return BiomarkerValue(value=value, date=date, offset=offset)


# =============================================================================
# BASELINE RESHAPING
# =============================================================================

def join_combo_timeline(baseline: pd.DataFrame, combo_timeline: pd.DataFrame) -> pd.DataFrame:
    """Left-join combination timing signals by patient and combo start = drug start."""
    validate_schema(combo_timeline, 'combo_start_stop')
    combo = combo_timeline[['patid', 'dcstartdate'] + COMBO_COLUMNS].rename(
        columns={'dcstartdate': 'dstartdate'}
    )
    base = baseline.drop(columns=[c for c in COMBO_COLUMNS if c in baseline.columns])
    return base.merge(combo, on=['patid', 'dstartdate'], how='left')


def baseline_to_long(baseline: pd.DataFrame, biomarkers: List[str]) -> pd.DataFrame:
    """
    Reshape wide baseline columns (pre{b}, pre{b}date, pre{b}drugdiff) to long.

    Args:
        baseline: Wide baseline table, one row per drug episode
        biomarkers: Biomarker names to reshape

    Returns:
        DataFrame: keys, biomarker, pre_value, pre_date, pre_drugdiff
    """
    required = EPISODE_KEYS + [col for b in biomarkers for col in baseline_columns(b)]
    validate_schema(baseline, 'baseline_biomarkers', required)

    parts = []
    for biomarker in biomarkers:
        part = baseline[EPISODE_KEYS + baseline_columns(biomarker)].copy()
        part.columns = EPISODE_KEYS + PRE_COLUMNS
        part.insert(3, 'biomarker', biomarker)
        parts.append(part)

    if not parts:
        return pd.DataFrame(columns=EPISODE_KEYS + ['biomarker'] + PRE_COLUMNS)
    return pd.concat(parts, ignore_index=True)


def baseline_extras(baseline: pd.DataFrame, biomarkers: List[str]) -> List[str]:
    """Non-biomarker baseline columns carried through unchanged (e.g. height).

    Baseline columns of every known biomarker are excluded, processed or not;
    they reach the output only through the response records.
    """
    biomarker_cols = {col for b in set(biomarkers) | set(BIOMARKERS) for col in baseline_columns(b)}
    skip = set(EPISODE_KEYS) | {'druginstance'} | set(COMBO_COLUMNS) | biomarker_cols
    return [col for col in baseline.columns if col not in skip]


def build_response_episodes(
    baseline: pd.DataFrame,
    combo_timeline: pd.DataFrame,
    biomarkers: List[str],
) -> pd.DataFrame:
    """
    One row per first-instance episode with combination signals and baseline extras.

    Args:
        baseline: Wide baseline table
        combo_timeline: Combination start/stop table
        biomarkers: Biomarker names (their columns are excluded)

    Returns:
        DataFrame keyed by patid/dstartdate/drugclass
    """
    validate_schema(baseline, 'baseline_biomarkers')
    first = baseline[baseline['druginstance'] == 1]
    extras = baseline_extras(first, biomarkers)
    episodes = join_combo_timeline(first[EPISODE_KEYS + extras], combo_timeline)
    return episodes[EPISODE_KEYS + COMBO_COLUMNS + extras].reset_index(drop=True)


# =============================================================================
# RESPONSE ASSEMBLY
# =============================================================================

def _join_horizon(records: pd.DataFrame, post_values: pd.DataFrame, horizon: str) -> pd.DataFrame:
    post = post_values[post_values['horizon'] == horizon].drop(columns='horizon')
    value_col, date_col, diff_col = post_columns(horizon)
    post = post.rename(columns={'post_value': value_col, 'post_date': date_col, 'post_drugdiff': diff_col})
    joined = records.merge(post, on=EPISODE_KEYS + ['biomarker'], how='left')
    joined[value_col] = joined[value_col].astype('float64')
    joined[diff_col] = joined[diff_col].astype('float64')
    joined[date_col] = pd.to_datetime(joined[date_col])
    return joined


def mask_recent_regimen_change(
    records: pd.DataFrame,
    timeprevcombo: pd.Series,
    config: ResponseConfig = RESPONSE_CONFIG,
) -> pd.DataFrame:
    """
    Null post values where glucose-lowering therapy changed shortly before initiation.

    Applies only to config.prevcombo_masked_biomarkers (HbA1c).

    Args:
        records: Long response records with post{h}_* columns
        timeprevcombo: Days since previous combination change, aligned to records
        config: Response settings

    Returns:
        Copy of records with masked post values
    """
    records = records.copy()
    recent = (
        records['biomarker'].isin(config.prevcombo_masked_biomarkers)
        & timeprevcombo.notna()
        & (timeprevcombo <= config.hba1c_prevcombo_max_days)
    )
    for horizon in HORIZONS:
        value_col, date_col, diff_col = post_columns(horizon)
        records.loc[recent, [value_col, diff_col]] = np.nan
        records.loc[recent, date_col] = pd.NaT
    return records


def assemble_responses(
    baseline: pd.DataFrame,
    post_values: pd.DataFrame,
    combo_timeline: pd.DataFrame,
    biomarkers: List[str],
    config: ResponseConfig = RESPONSE_CONFIG,
) -> pd.DataFrame:
    """
    Build one response record per (first-instance episode, biomarker).

    Args:
        baseline: Wide baseline biomarker table
        post_values: Output of interval_resolver.resolve_all_biomarkers
        combo_timeline: Combination start/stop table (for timeprevcombo)
        biomarkers: Biomarker names
        config: Response settings

    Returns:
        Long DataFrame: keys, biomarker, pre_*, post6m_*, post12m_*, resp6m, resp12m
    """
    validate_schema(baseline, 'baseline_biomarkers')
    first = baseline[baseline['druginstance'] == 1]
    records = baseline_to_long(first, biomarkers)

    records = reduce(
        lambda acc, horizon: _join_horizon(acc, post_values, horizon),
        HORIZONS,
        records,
    )

    records = join_combo_timeline(records, combo_timeline)
    records = mask_recent_regimen_change(records, records['timeprevcombo'], config)
    records = records.drop(columns=COMBO_COLUMNS)

    records['pre_value'] = records['pre_value'].astype('float64')
    for horizon in HORIZONS:
        post_value = records[f'post{horizon}_value']
        both = records['pre_value'].notna() & post_value.notna()
        records[f'resp{horizon}'] = (post_value - records['pre_value']).where(both)

    logger.info(
        f"Response records: {len(records):,} rows, "
        f"{records[EPISODE_KEYS].drop_duplicates().shape[0]:,} episodes"
    )
    return records.reset_index(drop=True)


def records_for_episode(
    responses: pd.DataFrame,
    patid,
    dstartdate,
    drugclass: str,
) -> Dict[str, ResponseRecord]:
    """
    Response records for one episode keyed by biomarker name.

    Args:
        responses: Output of assemble_responses
        patid: Patient identifier
        dstartdate: Drug start date
        drugclass: Drug class

    Returns:
        Dict mapping biomarker -> ResponseRecord
    """
    mask = (
        (responses['patid'] == patid)
        & (responses['dstartdate'] == pd.Timestamp(dstartdate))
        & (responses['drugclass'] == drugclass)
    )
    result = {}
    for _, row in responses[mask].iterrows():
        result[row['biomarker']] = ResponseRecord(
            baseline=_value_from_row(row, PRE_COLUMNS),
            post6m=_value_from_row(row, post_columns('6m')),
            post12m=_value_from_row(row, post_columns('12m')),
            resp6m=_none_if_missing(row['resp6m']),
            resp12m=_none_if_missing(row['resp12m']),
        )
    return result


def first_instance_baselines(baseline: pd.DataFrame, biomarkers: List[str]) -> pd.DataFrame:
    """
    Baseline values (columns pre{b}) of first-instance episodes.

    Read straight from the wide baseline table, so they do not depend on
    which biomarkers have response records.

    Args:
        baseline: Wide baseline biomarker table
        biomarkers: Biomarkers whose baseline value is needed

    Returns:
        DataFrame: keys + pre{b} per biomarker (float)
    """
    value_cols = [f'pre{b}' for b in biomarkers]
    validate_schema(baseline, 'baseline_biomarkers', EPISODE_KEYS + ['druginstance'] + value_cols)
    first = baseline.loc[baseline['druginstance'] == 1, EPISODE_KEYS + value_cols]
    first = first.astype({col: 'float64' for col in value_cols})
    return first.reset_index(drop=True)
