"""Cohort Service.

The single production implementation of CohortServicePort. It wires the
per-kind repositories, the sync engine and the query engine over one indexed
store and one remote fetcher, and exposes them under the names external
callers use.

Architecture:
    - Constructed once at startup (see cohortsync.main) and passed to callers
    - Holds no state of its own beyond its collaborators
"""

import logging
from typing import Optional

from cohortsync.domain.models import (
    COHORT,
    COHORT_DEFINITION,
    Cohort,
    CohortData,
    CohortDefinition,
    CohortMember,
    Patient,
)
from cohortsync.domain.ports import (
    CohortServicePort,
    IndexedStorePort,
    RemoteFetcherPort,
    Result,
)
from cohortsync.domain.services.query_engine import CohortSearchResult, QueryEngine
from cohortsync.domain.services.repository import (
    CohortDefinitionRepository,
    CohortMemberRepository,
    CohortRepository,
    PatientRepository,
)
from cohortsync.domain.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class CohortService(CohortServicePort):
    """CRUD and sync operations for cohorts, cohort definitions and members.

    Parameters:
        store: Local indexed store
        fetcher: Remote fetcher; omit for local-only use (downloads then fail
            with FetchError)

    Example Usage:
        ```python
        service = CohortService(DuckDBIndexStore(db_path=":memory:"), RestFetcher(server_config))
        result = service.download_cohort_data("c1", dynamic=False)
        if result.is_success():
            print(len(result.value.members))
        ```
    """

    def __init__(self, store: IndexedStorePort, fetcher: Optional[RemoteFetcherPort] = None):
        self.store = store
        self.fetcher = fetcher

        self.cohorts = CohortRepository(store)
        self.definitions = CohortDefinitionRepository(store)
        self.members = CohortMemberRepository(store)
        self.patients = PatientRepository(store)

        self.sync = SyncEngine(
            fetcher,
            repositories={COHORT: self.cohorts, COHORT_DEFINITION: self.definitions},
            members=self.members,
            patients=self.patients,
        )
        self.queries = QueryEngine(self.cohorts, self.definitions, self.members, self.patients)

    # ------------------------------------------------------------------
    # Cohorts
    # ------------------------------------------------------------------

    def download_cohort_by_uuid(self, uuid: str) -> Result[Cohort]:
        return self.sync.download_by_uuid(COHORT, uuid)

    def download_cohorts_by_name(self, name: str) -> Result[list[Cohort]]:
        return self.sync.download_by_name(COHORT, name)

    def save_cohort(self, cohort: Cohort) -> Result[str]:
        return self.cohorts.save(cohort)

    def save_cohorts(self, cohorts: list[Cohort]) -> Result[int]:
        return self.cohorts.save_all(cohorts)

    def update_cohort(self, cohort: Cohort) -> Result[str]:
        return self.cohorts.update(cohort)

    def update_cohorts(self, cohorts: list[Cohort]) -> Result[int]:
        return self.cohorts.update_all(cohorts)

    def get_cohort_by_uuid(self, uuid: str) -> Result[Optional[Cohort]]:
        return self.cohorts.get_by_uuid(uuid)

    def get_cohorts_by_name(self, name: str) -> Result[list[Cohort]]:
        return self.cohorts.get_by_name(name)

    def get_all_cohorts(self) -> Result[list[Cohort]]:
        return self.cohorts.get_all()

    def delete_cohort(self, cohort: Cohort) -> Result[None]:
        return self.cohorts.delete(cohort)

    # ------------------------------------------------------------------
    # Cohort definitions
    # ------------------------------------------------------------------

    def download_cohort_definition_by_uuid(self, uuid: str) -> Result[CohortDefinition]:
        return self.sync.download_by_uuid(COHORT_DEFINITION, uuid)

    def download_cohort_definitions_by_name(self, name: str) -> Result[list[CohortDefinition]]:
        return self.sync.download_by_name(COHORT_DEFINITION, name)

    def save_cohort_definition(self, definition: CohortDefinition) -> Result[str]:
        return self.definitions.save(definition)

    def save_cohort_definitions(self, definitions: list[CohortDefinition]) -> Result[int]:
        return self.definitions.save_all(definitions)

    def update_cohort_definition(self, definition: CohortDefinition) -> Result[str]:
        return self.definitions.update(definition)

    def update_cohort_definitions(self, definitions: list[CohortDefinition]) -> Result[int]:
        return self.definitions.update_all(definitions)

    def get_cohort_definition_by_uuid(self, uuid: str) -> Result[Optional[CohortDefinition]]:
        return self.definitions.get_by_uuid(uuid)

    def get_cohort_definitions_by_name(self, name: str) -> Result[list[CohortDefinition]]:
        return self.definitions.get_by_name(name)

    def get_all_cohort_definitions(self) -> Result[list[CohortDefinition]]:
        return self.definitions.get_all()

    def delete_cohort_definition(self, definition: CohortDefinition) -> Result[None]:
        return self.definitions.delete(definition)

    # ------------------------------------------------------------------
    # Cohort data and members
    # ------------------------------------------------------------------

    def download_cohort_data(self, uuid: str, dynamic: bool) -> Result[CohortData]:
        return self.sync.download_cohort_data(uuid, dynamic)

    def save_cohort_member(self, member: CohortMember) -> Result[str]:
        return self.members.save(member)

    def save_cohort_members(self, members: list[CohortMember]) -> Result[int]:
        return self.members.save_all(members)

    def update_cohort_member(self, member: CohortMember) -> Result[str]:
        return self.members.update(member)

    def update_cohort_members(self, members: list[CohortMember]) -> Result[int]:
        return self.members.update_all(members)

    def get_cohort_members(self, cohort_uuid: str) -> Result[list[CohortMember]]:
        return self.queries.list_members(cohort_uuid)

    def delete_cohort_members(self, cohort_uuid: str) -> Result[int]:
        return self.members.delete_members_for_cohort(cohort_uuid)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search_cohorts(self, name: str) -> Result[list[CohortSearchResult]]:
        return self.queries.search_cohorts(name)

    def get_cohort_patients(self, cohort_uuid: str) -> Result[list[Patient]]:
        return self.queries.list_patients(cohort_uuid)

    def get_member_counts(self) -> Result[dict[str, int]]:
        return self.queries.member_counts()

    def close(self) -> None:
        self.store.close()
