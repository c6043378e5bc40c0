"""40% eGFR decline outcome per first-instance drug episode."""
import logging

import pandas as pd

from t2d_drug_cohort.config.cohort_config import EPISODE_KEYS, RESPONSE_CONFIG, ResponseConfig
from t2d_drug_cohort.extractors.schemas import validate_schema
from t2d_drug_cohort.processing.date_utils import days_between

logger = logging.getLogger(__name__)


def find_egfr_decline(
    baseline_egfr: pd.DataFrame,
    egfr_long: pd.DataFrame,
    config: ResponseConfig = RESPONSE_CONFIG,
) -> pd.DataFrame:
    """Earliest date eGFR falls to 40% of the episode baseline or lower.

    Readings within `baseline_post_start_days` of drug start can themselves be
    baseline values, so only readings strictly after that are considered.
    Episodes with a missing baseline never match.

    Args:
        baseline_egfr: keys + pre_value (baseline eGFR) per episode
        egfr_long: All longitudinal eGFR readings (patid, date, testvalue)
        config: Response settings

    Returns:
        DataFrame: keys + egfr_40_decline_date, only for episodes with a decline
    """
    validate_schema(baseline_egfr, 'baseline_egfr', EPISODE_KEYS + ['pre_value'])
    validate_schema(egfr_long, 'egfr_long')

    episodes = baseline_egfr[EPISODE_KEYS + ['pre_value']].dropna(subset=['pre_value'])
    readings = egfr_long[['patid', 'date', 'testvalue']]

    merged = episodes.merge(readings, on='patid', how='inner')
    after_baseline = days_between(merged['date'], merged['dstartdate']) > config.baseline_post_start_days
    declined = merged['testvalue'] <= config.egfr_decline_fraction * merged['pre_value']
    merged = merged[after_baseline & declined]

    result = (
        merged.groupby(EPISODE_KEYS, as_index=False)['date']
        .min()
        .rename(columns={'date': 'egfr_40_decline_date'})
    )
    logger.info(f"eGFR 40% decline: {len(result):,} of {len(episodes):,} episodes with baseline eGFR")
    return result
