"""Domain layer for Cohort-Sync.

This module contains the cohort entity models, the port contracts and the
Result type. All domain models are pure Python with no external dependencies
beyond Pydantic.
"""

from .models import (
    Cohort,
    CohortData,
    CohortDefinition,
    CohortMember,
    Patient,
)
from .ports import (
    CohortServicePort,
    IndexedStorePort,
    RemoteFetcherPort,
    Result,
)

__all__ = [
    "Cohort",
    "CohortData",
    "CohortDefinition",
    "CohortMember",
    "Patient",
    "CohortServicePort",
    "IndexedStorePort",
    "RemoteFetcherPort",
    "Result",
]
