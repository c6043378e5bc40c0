"""
Interval Resolver
=================

Selects the single post-initiation biomarker value for each first-instance
drug episode and response horizon (6 or 12 months).

Window for an episode starting on day 0:
- earliest valid day: 91 (6m) / 274 (12m)
- latest valid day: min(timetoaddrem, timetochange + 91, 274 (6m) / 457 (12m)),
  where a missing signal counts as the ceiling; no window if this falls
  below the earliest valid day

Selection within the window is a fixed chain: closest to day 183 (6m) /
365 (12m), then lowest value, then earliest date.
"""

import pandas as pd
from concurrent.futures import ProcessPoolExecutor
from typing import Dict, List, Optional
import logging

from tqdm import tqdm

from t2d_drug_cohort.config.cohort_config import EPISODE_KEYS, HORIZONS, ResponseWindow
from t2d_drug_cohort.extractors.schemas import validate_schema
from t2d_drug_cohort.processing.date_utils import add_days, days_between

logger = logging.getLogger(__name__)

POST_COLUMNS: List[str] = ['post_value', 'post_date', 'post_drugdiff']


def valid_max_offset(timetoaddrem: pd.Series, timetochange: pd.Series, window: ResponseWindow) -> pd.Series:
    """Latest valid day of the response window per row.

    Args:
        timetoaddrem: Days from drug start until another class is added/removed
        timetochange: Days from drug start until the regimen changes
        window: Horizon settings

    Returns:
        Float Series; never lower than missing-signal defaults imply
    """
    addrem = timetoaddrem.astype('float64').fillna(window.ceiling)
    change = (timetochange.astype('float64') + window.change_grace).fillna(window.ceiling)
    return pd.concat([addrem, change], axis=1).min(axis=1).clip(upper=window.ceiling)


def resolve_post_values(merge: pd.DataFrame, window: ResponseWindow) -> pd.DataFrame:
    """
    Pick one post-drug value per first-instance episode for a horizon.

    Args:
        merge: Biomarker observations joined to drug periods and timing signals
        window: Horizon settings (HORIZONS['6m'] or HORIZONS['12m'])

    Returns:
        DataFrame keyed by patid/dstartdate/drugclass with post_value,
        post_date, post_drugdiff. Episodes without a valid value are absent.
    """
    validate_schema(merge, 'biomarker_drug_merge')

    data = merge[(merge['druginstance'] == 1) & merge['testvalue'].notna() & merge['date'].notna()].copy()
    if 'drugdatediff' not in data.columns:
        data['drugdatediff'] = days_between(data['date'], data['dstartdate'])

    max_offset = valid_max_offset(data['timetoaddrem'], data['timetochange'], window)
    max_offset = max_offset.where(max_offset >= window.min_offset)

    min_valid_date = add_days(data['dstartdate'], window.min_offset)
    last_valid_date = add_days(data['dstartdate'], max_offset)
    data = data[(data['date'] >= min_valid_date) & (data['date'] <= last_valid_date)].copy()

    data['timediff'] = (window.target_offset - data['drugdatediff']).abs()
    data = data.sort_values(
        EPISODE_KEYS + ['timediff', 'testvalue', 'drugdatediff'],
        kind='mergesort',
    )
    chosen = data.drop_duplicates(subset=EPISODE_KEYS, keep='first')

    result = chosen[EPISODE_KEYS + ['testvalue', 'date', 'drugdatediff']].rename(columns={
        'testvalue': 'post_value',
        'date': 'post_date',
        'drugdatediff': 'post_drugdiff',
    })
    return result.reset_index(drop=True)


def _resolve_one(biomarker: str, horizon: str, merge: pd.DataFrame) -> pd.DataFrame:
    resolved = resolve_post_values(merge, HORIZONS[horizon])
    resolved.insert(3, 'biomarker', biomarker)
    resolved.insert(4, 'horizon', horizon)
    return resolved


def resolve_all_biomarkers(
    merges: Dict[str, pd.DataFrame],
    horizons: Optional[List[str]] = None,
    n_jobs: int = 1,
) -> pd.DataFrame:
    """
    Resolve post values for every biomarker and horizon.

    Args:
        merges: Biomarker name -> observation/drug merge table
        horizons: Horizon names (default: all in HORIZONS)
        n_jobs: Worker processes; 1 runs in-process

    Returns:
        Long DataFrame: keys, biomarker, horizon, post_value, post_date, post_drugdiff
    """
    horizons = horizons or list(HORIZONS)
    tasks = [(b, h) for b in merges for h in horizons]

    if n_jobs > 1:
        with ProcessPoolExecutor(max_workers=n_jobs) as executor:
            futures = [executor.submit(_resolve_one, b, h, merges[b]) for b, h in tasks]
            parts = [f.result() for f in tqdm(futures, desc="  Resolving post values", unit="table")]
    else:
        parts = [
            _resolve_one(b, h, merges[b])
            for b, h in tqdm(tasks, desc="  Resolving post values", unit="table")
        ]

    for (b, h), part in zip(tasks, parts):
        logger.info(f"post{h} {b}: {len(part):,} episodes with a value")

    columns = EPISODE_KEYS + ['biomarker', 'horizon'] + POST_COLUMNS
    if not parts:
        return pd.DataFrame(columns=columns)
    return pd.concat(parts, ignore_index=True)[columns]
