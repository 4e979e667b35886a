"""Storage adapters for Cohort-Sync.

This module contains the storage adapter that implements the IndexedStorePort
interface for keeping downloaded cohort entities searchable on disk.
"""

from cohortsync.adapters.storage.duckdb_index_store import DuckDBIndexStore

__all__ = ["DuckDBIndexStore"]
