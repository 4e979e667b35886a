"""Adapters layer for Cohort-Sync.

This module contains the adapters that interface with external systems: the
local DuckDB index store and the REST client for the clinical-data server.
Adapters implement Port interfaces defined in the domain layer.
"""
