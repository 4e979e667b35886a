"""Cohort-Sync: local cohort data layer for a clinical-data server.

Downloads cohorts, cohort definitions and their member rosters over REST and
keeps them in a local searchable DuckDB index.
"""

__version__ = "1.0.0"
