"""Required input columns per table and schema validation."""
from typing import Dict, Iterable, List

import pandas as pd

KEY_COLUMNS: List[str] = ['patid', 'dstartdate', 'drugclass']

# Combination timing signals joined onto every biomarker/episode row
TIMING_COLUMNS: List[str] = ['timetochange', 'timetoaddrem']

INPUT_SCHEMAS: Dict[str, List[str]] = {
    't1t2_cohort': [
        'patid', 'dob', 'gender', 'regstartdate', 'diabetes_type', 'with_hes',
        'dm_diag_date_all', 'dm_diag_age_all', 'dm_diag_flag',
    ],
    'drug_start_stop': [
        'patid', 'drugclass', 'dstartdate', 'dstopdate', 'druginstance', 'drugline_all',
    ],
    'combo_start_stop': [
        'patid', 'dcstartdate', 'timetochange', 'timetoaddrem', 'multi_drug_start',
        'timeprevcombo',
    ],
    'biomarker_drug_merge': [
        'patid', 'date', 'testvalue', 'druginstance', 'dstartdate', 'drugclass',
    ] + TIMING_COLUMNS,
    'baseline_biomarkers': KEY_COLUMNS + ['druginstance'],
    'egfr_long': ['patid', 'date', 'testvalue'],
    'ckd_stages': KEY_COLUMNS + ['preckdstage'],
    'comorbidities': KEY_COLUMNS + ['hosp_admission_prev_year'],
    'non_diabetes_meds': KEY_COLUMNS,
    'smoking': KEY_COLUMNS,
    'discontinuation': KEY_COLUMNS,
    'death_causes': ['patid'],
}

# Columns read as dates regardless of suffix
EXPLICIT_DATE_COLUMNS = {'dob', 'dm_diag_date_all'}
DATE_PREFIXES = ('predrug_earliest_', 'predrug_latest_')


class SchemaMismatchError(ValueError):
    """An input table is missing columns a stage depends on."""

    def __init__(self, table_name: str, missing: List[str]):
        self.table_name = table_name
        self.missing = missing
        super().__init__(f"Table '{table_name}' is missing required columns: {missing}")


def baseline_columns(biomarker: str) -> List[str]:
    """Wide baseline value/date/offset columns for one biomarker."""
    return [f'pre{biomarker}', f'pre{biomarker}date', f'pre{biomarker}drugdiff']


def validate_schema(df: pd.DataFrame, table_name: str, required: Iterable[str] = None) -> pd.DataFrame:
    """Raise SchemaMismatchError if any required column is absent.

    Args:
        df: Input table
        table_name: Name used in the error and for the default schema lookup
        required: Columns to check (default: INPUT_SCHEMAS[table_name])

    Returns:
        The same DataFrame, for chaining
    """
    if required is None:
        required = INPUT_SCHEMAS[table_name]
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise SchemaMismatchError(table_name, missing)
    return df


def is_date_column(name: str) -> bool:
    """Whether a column holds dates by naming convention."""
    return (
        name in EXPLICIT_DATE_COLUMNS
        or name.endswith('date')
        or name.startswith(DATE_PREFIXES)
    )
