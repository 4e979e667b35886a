"""Query Engine.

Read-only views over the local store that span more than one entity kind.
"""

import logging
from collections import Counter

from cohortsync.domain.models import Patient
from cohortsync.domain.ports import Result
from cohortsync.domain.services.repository import (
    CohortMemberRepository,
    CohortDefinitionRepository,
    CohortRepository,
    PatientRepository,
    RankedEntity,
)

logger = logging.getLogger(__name__)

# A ranked Cohort or CohortDefinition
CohortSearchResult = RankedEntity


class QueryEngine:
    """Stateless cross-kind queries; holds repositories, never caches."""

    def __init__(
        self,
        cohorts: CohortRepository,
        definitions: CohortDefinitionRepository,
        members: CohortMemberRepository,
        patients: PatientRepository,
    ):
        self.cohorts = cohorts
        self.definitions = definitions
        self.members = members
        self.patients = patients

    def search_cohorts(self, partial_name: str) -> Result[list[CohortSearchResult]]:
        """Search cohorts and cohort definitions together.

        Hits from both kinds are merged by score (best first), then by
        insertion order. A QueryError from either search is returned as is.
        """
        merged: list[CohortSearchResult] = []
        for repository in (self.cohorts, self.definitions):
            result = repository.search(partial_name)
            if result.is_failure():
                return result
            merged.extend(result.value)

        merged.sort(key=lambda hit: (-hit.score, hit.seq))
        return Result.success_result(merged)

    def list_members(self, cohort_uuid: str):
        return self.members.get_members_for_cohort(cohort_uuid)

    def list_patients(self, cohort_uuid: str) -> Result[list[Patient]]:
        """Locally stored patients of a cohort, in member order.

        Members whose patient record has not been downloaded are skipped.
        """
        members = self.members.get_members_for_cohort(cohort_uuid)
        if members.is_failure():
            return members

        patients: list[Patient] = []
        for member in members.value:
            result = self.patients.get_by_uuid(member.patient_uuid)
            if result.is_failure():
                return result
            if result.value is None:
                logger.debug(f"Patient {member.patient_uuid} of cohort {cohort_uuid} is not stored locally")
                continue
            patients.append(result.value)
        return Result.success_result(patients)

    def member_counts(self) -> Result[dict[str, int]]:
        """Number of locally stored members per cohort uuid."""
        members = self.members.get_all()
        if members.is_failure():
            return members
        return Result.success_result(dict(Counter(member.cohort_uuid for member in members.value)))
