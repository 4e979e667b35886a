"""Remote adapters for Cohort-Sync.

This module contains the RemoteFetcherPort implementation for the
clinical-data server's REST API.
"""

from cohortsync.adapters.remote.rest_fetcher import RestFetcher

__all__ = ["RestFetcher"]
