"""Output validation for the episode table."""

from .cohort_validators import (
    SentinelDateError,
    ValidationResult,
    assert_no_sentinel_dates,
    validate_final_table,
)

__all__ = ['SentinelDateError', 'ValidationResult', 'assert_no_sentinel_dates', 'validate_final_table']
