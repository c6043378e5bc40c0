"""
Input Table Loader
==================

Loads the pre-computed upstream tables (cohort, drug periods, combination
timeline, biomarker merges, feature tables) from an input directory.
"""

import pandas as pd
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import logging

from t2d_drug_cohort.config.cohort_config import required_baseline_biomarkers
from t2d_drug_cohort.extractors.schemas import (
    baseline_columns,
    is_date_column,
    validate_schema,
)

logger = logging.getLogger(__name__)

FEATURE_TABLES = [
    'ckd_stages',
    'comorbidities',
    'non_diabetes_meds',
    'smoking',
    'discontinuation',
]


@dataclass
class CohortInputs:
    """All upstream tables one pipeline run consumes."""

    cohort: pd.DataFrame
    drug_periods: pd.DataFrame
    combo_timeline: pd.DataFrame
    baseline: pd.DataFrame
    egfr_long: pd.DataFrame
    biomarker_merges: Dict[str, pd.DataFrame]
    features: Dict[str, pd.DataFrame]
    death_causes: pd.DataFrame
    biomarkers: List[str] = field(default_factory=list)


def coerce_dates(df: pd.DataFrame) -> pd.DataFrame:
    """Parse date-named columns to datetime64 (day resolution)."""
    df = df.copy()
    for col in df.columns:
        if is_date_column(col) and not pd.api.types.is_datetime64_any_dtype(df[col]):
            df[col] = pd.to_datetime(df[col], errors='coerce')
        if is_date_column(col):
            df[col] = df[col].dt.normalize()
    return df


class TableLoader:
    """Read named tables from a directory of parquet or csv files."""

    def __init__(self, input_dir: str, file_format: str = 'parquet'):
        """
        Initialize loader.

        Args:
            input_dir: Directory holding one file per table
            file_format: 'parquet' or 'csv'
        """
        if file_format not in ('parquet', 'csv'):
            raise ValueError(f"Unsupported input format: {file_format}")
        self.input_dir = Path(input_dir)
        self.file_format = file_format

    def table_path(self, name: str) -> Path:
        return self.input_dir / f"{name}.{self.file_format}"

    def load(self, name: str, schema: Optional[str] = None, required: Optional[List[str]] = None) -> pd.DataFrame:
        """
        Load one table and validate its columns.

        Args:
            name: Table (file stem) name
            schema: INPUT_SCHEMAS entry to validate against (default: name)
            required: Extra required columns

        Returns:
            DataFrame with date columns parsed
        """
        path = self.table_path(name)
        if not path.exists():
            raise FileNotFoundError(f"Input table not found: {path}")

        if self.file_format == 'parquet':
            df = pd.read_parquet(path)
        else:
            df = pd.read_csv(path, low_memory=False)

        df = coerce_dates(df)
        validate_schema(df, schema or name)
        if required:
            validate_schema(df, name, required)

        logger.info(f"Loaded {name}: {len(df):,} rows")
        return df

    def load_biomarker_merge(self, biomarker: str) -> pd.DataFrame:
        """Load the observation-by-drug-period merge table for one biomarker."""
        return self.load(f"full_{biomarker}_drug_merge", schema='biomarker_drug_merge')

    def load_all(self, biomarkers: List[str]) -> CohortInputs:
        """
        Load every table needed for a full run.

        Args:
            biomarkers: Biomarker names to process

        Returns:
            CohortInputs
        """
        baseline_required = [col for b in required_baseline_biomarkers(biomarkers) for col in baseline_columns(b)]

        return CohortInputs(
            cohort=self.load('t1t2_cohort'),
            drug_periods=self.load('drug_start_stop'),
            combo_timeline=self.load('combo_start_stop'),
            baseline=self.load('baseline_biomarkers', required=baseline_required),
            egfr_long=self.load('egfr_long'),
            biomarker_merges={b: self.load_biomarker_merge(b) for b in biomarkers},
            features={name: self.load(name) for name in FEATURE_TABLES},
            death_causes=self.load('death_causes'),
            biomarkers=list(biomarkers),
        )
