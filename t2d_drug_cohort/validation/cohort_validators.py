"""
Cohort Validators
=================

Checks on the final first-instance episode table.

Validation targets:
- One row per (patid, dstartdate, drugclass)
- First-instance episodes only, all past the registration run-in
- Every post-drug value inside its response window
- No placeholder dates (1900-01-01, 2050-01-01) in any date column
"""

import pandas as pd
from typing import List

from t2d_drug_cohort.config.cohort_config import COHORT_CONFIG, EPISODE_KEYS, HORIZONS
from t2d_drug_cohort.processing.date_utils import days_between
from t2d_drug_cohort.processing.interval_resolver import valid_max_offset

SENTINEL_DATES = [pd.Timestamp('1900-01-01'), pd.Timestamp('2050-01-01')]


class SentinelDateError(ValueError):
    """A placeholder date leaked into output."""


class ValidationResult:
    """Container for validation results."""

    def __init__(self, name: str):
        self.name = name
        self.checks = []
        self.passed = 0
        self.failed = 0

    def add_check(self, description: str, passed: bool, details: str = ""):
        self.checks.append({
            'description': description,
            'passed': bool(passed),
            'details': details,
        })
        if passed:
            self.passed += 1
        else:
            self.failed += 1

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def summary(self) -> str:
        status = "PASS" if self.ok else "FAIL"
        return f"{self.name}: {status} ({self.passed}/{self.passed + self.failed} checks)"

    def report(self) -> str:
        lines = [f"\n{'='*60}", f"{self.name}", "="*60]
        for check in self.checks:
            icon = "✓" if check['passed'] else "✗"
            lines.append(f"  {icon} {check['description']}")
            if check['details']:
                lines.append(f"      {check['details']}")
        lines.append(self.summary())
        return "\n".join(lines)


def find_sentinel_dates(df: pd.DataFrame) -> List[str]:
    """Date columns holding a placeholder date."""
    columns = []
    for col in df.columns:
        if pd.api.types.is_datetime64_any_dtype(df[col]) and df[col].isin(SENTINEL_DATES).any():
            columns.append(col)
    return columns


def assert_no_sentinel_dates(df: pd.DataFrame):
    """Raise SentinelDateError if any date column holds a placeholder date."""
    leaked = find_sentinel_dates(df)
    if leaked:
        raise SentinelDateError(f"Placeholder dates found in columns: {leaked}")


def _window_violations(final: pd.DataFrame, biomarkers: List[str]) -> int:
    violations = 0
    for horizon, window in HORIZONS.items():
        max_offset = valid_max_offset(final['timetoaddrem'], final['timetochange'], window)
        for biomarker in biomarkers:
            col = f'post{biomarker}{horizon}drugdiff'
            if col not in final.columns:
                continue
            offset = final[col]
            present = offset.notna()
            inside = (offset >= window.min_offset) & (offset <= max_offset)
            violations += int((present & ~inside).sum())
    return violations


def validate_final_table(final: pd.DataFrame, biomarkers: List[str]) -> ValidationResult:
    """Run all checks on the assembled output table."""
    result = ValidationResult("Final episode table")

    duplicates = int(final.duplicated(subset=EPISODE_KEYS).sum())
    result.add_check("Unique patid/dstartdate/drugclass", duplicates == 0, f"{duplicates:,} duplicates")

    if 'druginstance' in final.columns:
        later = int((final['druginstance'] != 1).sum())
        result.add_check("First-instance episodes only", later == 0, f"{later:,} later instances")

    if 'regstartdate' in final.columns:
        runin = days_between(final['dstartdate'], final['regstartdate'])
        early = int((runin <= COHORT_CONFIG.registration_runin_days).sum())
        result.add_check("Drug start after registration run-in", early == 0, f"{early:,} early starts")

    if {'timetoaddrem', 'timetochange'} <= set(final.columns):
        violations = _window_violations(final, biomarkers)
        result.add_check("Post values inside response windows", violations == 0, f"{violations:,} outside")

    leaked = find_sentinel_dates(final)
    result.add_check("No placeholder dates", not leaked, ", ".join(leaked))

    return result
