# tests/test_validators.py
"""Tests for final table checks."""

import pytest
import pandas as pd
import numpy as np

from t2d_drug_cohort.validation.cohort_validators import (
    SentinelDateError,
    ValidationResult,
    assert_no_sentinel_dates,
    find_sentinel_dates,
    validate_final_table,
)

START = pd.Timestamp('2020-01-01')


def make_final(**overrides):
    df = pd.DataFrame({
        'patid': [1, 2],
        'dstartdate': [START, START],
        'drugclass': ['SGLT2', 'SGLT2'],
        'druginstance': [1, 1],
        'regstartdate': [pd.Timestamp('2015-01-01')] * 2,
        'timetoaddrem': [np.nan, 150.0],
        'timetochange': [np.nan, np.nan],
        'posthba1c6mdrugdiff': [183.0, 140.0],
        'posthba1c12mdrugdiff': [365.0, np.nan],
    })
    for col, values in overrides.items():
        df[col] = values
    return df


class TestSentinelDates:
    """Tests for placeholder date detection."""

    def test_clean_table(self):
        assert find_sentinel_dates(make_final()) == []
        assert_no_sentinel_dates(make_final())

    def test_placeholder_raises(self):
        final = make_final(dm_diag_date=[pd.Timestamp('1900-01-01'), pd.NaT])
        assert find_sentinel_dates(final) == ['dm_diag_date']
        with pytest.raises(SentinelDateError):
            assert_no_sentinel_dates(final)

    def test_upper_placeholder(self):
        final = make_final(posthba1c6mdate=[pd.Timestamp('2050-01-01'), START])
        with pytest.raises(SentinelDateError):
            assert_no_sentinel_dates(final)


class TestValidateFinalTable:
    """Tests for the combined report."""

    def test_valid_table_passes(self):
        result = validate_final_table(make_final(), ['hba1c'])
        assert result.ok
        assert result.failed == 0

    def test_duplicates_fail(self):
        final = make_final(patid=[1, 1])
        assert not validate_final_table(final, ['hba1c']).ok

    def test_later_instance_fails(self):
        assert not validate_final_table(make_final(druginstance=[1, 2]), ['hba1c']).ok

    def test_early_start_fails(self):
        final = make_final(regstartdate=[START - pd.Timedelta(days=91)] * 2)
        assert not validate_final_table(final, ['hba1c']).ok

    def test_value_outside_window_fails(self):
        """Day 160 is past an add/remove at day 150."""
        final = make_final(posthba1c6mdrugdiff=[183.0, 160.0])
        result = validate_final_table(final, ['hba1c'])
        assert not result.ok
        assert '1 outside' in result.report()


class TestValidationResult:
    """Tests for the result container."""

    def test_summary(self):
        result = ValidationResult("checks")
        result.add_check("a", True)
        result.add_check("b", False, "detail")
        assert result.summary() == "checks: FAIL (1/2 checks)"
        assert 'detail' in result.report()
