"""Domain Services.

This package contains the services that implement cohort sync and query
logic without infrastructure dependencies.
"""

from cohortsync.domain.services.cohort_service import CohortService
from cohortsync.domain.services.query_engine import QueryEngine
from cohortsync.domain.services.sync_engine import SyncEngine

__all__ = ['CohortService', 'QueryEngine', 'SyncEngine']
