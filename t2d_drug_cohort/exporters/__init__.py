"""
Cohort Exporters
================

- Wide first-instance episode table, sharded parquet
- All drug periods for the linked T2D cohort
"""

from .cohort_exporter import assemble_final, export_all_periods, export_cohort, flatten_responses

__all__ = ['assemble_final', 'export_all_periods', 'export_cohort', 'flatten_responses']
