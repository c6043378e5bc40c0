"""
Cohort Exporter
===============

Final assembly of the first-instance episode table and parquet export.

Combines:
- Episode table (cohort, drug period, feature and derived covariates)
- Response records flattened to wide columns per biomarker
- Masked risk scores
"""

import pandas as pd
from functools import reduce
from pathlib import Path
from typing import List, Optional
import logging

from t2d_drug_cohort.config.cohort_config import EPISODE_KEYS, EXPORT_CONFIG, ExportConfig
from t2d_drug_cohort.processing.response_assembler import PRE_COLUMNS, post_columns

logger = logging.getLogger(__name__)


def response_column_names(biomarker: str) -> dict:
    """Long record column -> wide output column for one biomarker."""
    names = dict(zip(PRE_COLUMNS, [f'pre{biomarker}', f'pre{biomarker}date', f'pre{biomarker}drugdiff']))
    for horizon in ('6m', '12m'):
        wide = [f'post{biomarker}{horizon}', f'post{biomarker}{horizon}date', f'post{biomarker}{horizon}drugdiff']
        names.update(dict(zip(post_columns(horizon), wide)))
        names[f'resp{horizon}'] = f'{biomarker}resp{horizon}'
    return names


def flatten_responses(responses: pd.DataFrame, biomarkers: List[str]) -> pd.DataFrame:
    """
    Pivot long response records to one row per episode.

    Args:
        responses: Long records from response_assembler.assemble_responses
        biomarkers: Biomarker order for the output columns

    Returns:
        DataFrame: keys + 11 columns per biomarker
    """
    base = responses[EPISODE_KEYS].drop_duplicates().reset_index(drop=True)

    def add_biomarker(acc: pd.DataFrame, biomarker: str) -> pd.DataFrame:
        names = response_column_names(biomarker)
        part = responses.loc[responses['biomarker'] == biomarker, EPISODE_KEYS + list(names)]
        return acc.merge(part.rename(columns=names), on=EPISODE_KEYS, how='left')

    return reduce(add_biomarker, biomarkers, base)


def assemble_final(
    episodes: pd.DataFrame,
    responses: pd.DataFrame,
    scores: pd.DataFrame,
    biomarkers: List[str],
) -> pd.DataFrame:
    """
    Merge episode, response and risk score tables.

    Args:
        episodes: Episode table (row set of the output)
        responses: Long response records
        scores: Masked risk scores keyed by episode
        biomarkers: Biomarker order

    Returns:
        Wide table sorted by patid, dstartdate, drugclass
    """
    wide = flatten_responses(responses, biomarkers)
    final = episodes.merge(wide, on=EPISODE_KEYS, how='left')
    final = final.merge(scores, on=EPISODE_KEYS, how='left')
    if len(final) != len(episodes):
        raise ValueError(f"Final merge changed row count: {len(episodes)} -> {len(final)}")
    return final.sort_values(EPISODE_KEYS, kind='mergesort').reset_index(drop=True)


def shard_by_patid(df: pd.DataFrame, threshold: int) -> List[pd.DataFrame]:
    """Split on numeric patid: below threshold, then at or above."""
    patid = pd.to_numeric(df['patid'])
    return [df[patid < threshold], df[patid >= threshold]]


def export_cohort(
    final: pd.DataFrame,
    output_dir: Path,
    prefix: Optional[str] = None,
    config: ExportConfig = EXPORT_CONFIG,
    shard_threshold: Optional[int] = None,
) -> List[Path]:
    """
    Write the final table as parquet shards with patid as string.

    Args:
        final: Output of assemble_final
        output_dir: Destination directory
        prefix: File name prefix (default: config.output_prefix)
        config: Export settings
        shard_threshold: Override of config.shard_threshold

    Returns:
        Paths written, shard 'a' then 'b'
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    prefix = prefix or config.output_prefix
    threshold = config.shard_threshold if shard_threshold is None else shard_threshold

    paths = []
    for suffix, shard in zip(config.shard_suffixes, shard_by_patid(final, threshold)):
        shard = shard.copy()
        shard['patid'] = shard['patid'].astype(str)
        path = output_dir / f"{prefix}_{suffix}.parquet"
        shard.reset_index(drop=True).to_parquet(path, index=False)
        logger.info(f"Saved {len(shard):,} rows to {path}")
        paths.append(path)
    return paths


def export_all_periods(periods: pd.DataFrame, output_dir: Path, config: ExportConfig = EXPORT_CONFIG) -> Path:
    """Write the all-drug-periods table with patid as string."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    periods = periods.copy()
    periods['patid'] = periods['patid'].astype(str)
    path = output_dir / f"{config.all_periods_name}.parquet"
    periods.to_parquet(path, index=False)
    logger.info(f"Saved {len(periods):,} drug periods to {path}")
    return path
