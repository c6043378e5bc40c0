"""Input table loading and schema checks."""

from .schemas import SchemaMismatchError, validate_schema
from .table_loader import CohortInputs, TableLoader

__all__ = ['SchemaMismatchError', 'validate_schema', 'CohortInputs', 'TableLoader']
