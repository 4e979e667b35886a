"""Unit tests for the entity repositories."""

import threading
from datetime import date

import pytest

from cohortsync.domain.models import Cohort, CohortDefinition, CohortMember, Patient
from cohortsync.domain.services.repository import (
    CohortDefinitionRepository,
    CohortMemberRepository,
    CohortRepository,
    PatientRepository,
)


@pytest.fixture
def cohorts(store):
    return CohortRepository(store)


@pytest.fixture
def members(store):
    return CohortMemberRepository(store)


class TestCohortRepository:
    """CRUD over the Cohort segment."""

    def test_get_all_on_empty_store(self, cohorts):
        """An empty store yields an empty list, not an error."""
        result = cohorts.get_all()
        assert result.is_success()
        assert result.value == []

    def test_save_then_get_by_uuid(self, cohorts):
        """A saved cohort comes back equal."""
        cohort = Cohort(uuid="c1", name="TB Patients")
        assert cohorts.save(cohort).value == "c1"
        assert cohorts.get_by_uuid("c1").value == cohort

    def test_round_trip_keeps_metadata(self, cohorts):
        cohort = Cohort(uuid="c1", name="TB", description="all TB", metadata={"memberCount": 3, "voided": False})
        cohorts.save(cohort)
        assert cohorts.get_by_uuid("c1").value == cohort

    def test_get_missing_is_none(self, cohorts):
        result = cohorts.get_by_uuid("missing")
        assert result.is_success()
        assert result.value is None

    def test_get_by_name(self, cohorts):
        """Partial names match cohorts sharing the prefix and nothing else."""
        for uuid, name in [("c1", "TB Patients"), ("c2", "TB Screening"), ("c3", "HIV Patients")]:
            cohorts.save(Cohort(uuid=uuid, name=name))
        found = cohorts.get_by_name("TB").value
        assert {cohort.uuid for cohort in found} == {"c1", "c2"}

    def test_empty_filter_matches_get_all(self, cohorts):
        for uuid, name in [("c1", "TB Patients"), ("c2", "HIV Patients"), ("c3", "")]:
            cohorts.save(Cohort(uuid=uuid, name=name))
        by_name = {cohort.uuid for cohort in cohorts.get_by_name("").value}
        all_uuids = {cohort.uuid for cohort in cohorts.get_all().value}
        assert by_name == all_uuids == {"c1", "c2", "c3"}

    def test_get_by_name_passes_query_error_through(self, cohorts):
        result = cohorts.get_by_name('"unterminated')
        assert result.is_failure()
        assert result.error_type == "QueryError"

    def test_save_is_idempotent(self, cohorts, store):
        """Saving the same cohort twice leaves the same observable state as once."""
        cohort = Cohort(uuid="c1", name="TB Patients")
        cohorts.save(cohort)
        before = (cohorts.get_all().value, store.count("Cohort").value)
        cohorts.save(cohort)
        after = (cohorts.get_all().value, store.count("Cohort").value)
        assert before == after

    def test_update_overwrites(self, cohorts):
        cohorts.save(Cohort(uuid="c1", name="Old"))
        cohorts.update(Cohort(uuid="c1", name="New"))
        assert cohorts.get_by_uuid("c1").value.name == "New"
        assert len(cohorts.get_all().value) == 1

    def test_save_all_and_update_all(self, cohorts):
        assert cohorts.save_all([Cohort(uuid="c1", name="A"), Cohort(uuid="c2", name="B")]).value == 2
        assert cohorts.update_all([Cohort(uuid="c1", name="A2")]).value == 1
        assert cohorts.get_by_uuid("c1").value.name == "A2"

    def test_save_all_collapses_duplicate_keys(self, cohorts):
        """The last occurrence of a key in a batch wins."""
        result = cohorts.save_all([Cohort(uuid="c1", name="First"), Cohort(uuid="c1", name="Last")])
        assert result.value == 1
        assert cohorts.get_by_uuid("c1").value.name == "Last"

    def test_save_wrong_type_is_validation_error(self, cohorts):
        result = cohorts.save(CohortDefinition(uuid="d1", name="Definition"))
        assert result.is_failure()
        assert result.error_type == "ValidationError"
        assert cohorts.get_all().value == []

    def test_delete(self, cohorts):
        cohort = Cohort(uuid="c1", name="TB")
        cohorts.save(cohort)
        assert cohorts.delete(cohort).is_success()
        assert cohorts.get_by_uuid("c1").value is None

    def test_delete_absent_is_noop(self, cohorts):
        assert cohorts.delete(Cohort(uuid="nope")).is_success()

    def test_corrupt_document_is_store_error(self, cohorts, store):
        """A stored document that no longer parses surfaces as StoreIOError."""
        store.put("Cohort", "bad", {"uuid": "", "name": "Broken"})
        result = cohorts.get_by_uuid("bad")
        assert result.is_failure()
        assert result.error_type == "StoreIOError"
        assert cohorts.get_all().error_type == "StoreIOError"


class TestOtherEntityRepositories:
    """Definitions and patients share the generic behaviour."""

    def test_definition_round_trip(self, store):
        definitions = CohortDefinitionRepository(store)
        definition = CohortDefinition(uuid="d1", name="Missed visits", parameters=[{"name": "onOrAfter"}])
        definitions.save(definition)
        assert definitions.get_by_uuid("d1").value == definition

    def test_patient_is_searchable_by_name(self, store):
        """Patients are indexed by full name and identifier."""
        patients = PatientRepository(store)
        patients.save(Patient(uuid="p1", given_name="Jane", family_name="Achieng", identifier="100-8"))
        patients.save(Patient(uuid="p2", given_name="John", family_name="Otieno", birthdate=date(1980, 1, 1)))
        assert [p.uuid for p in patients.get_by_name("achieng").value] == ["p1"]
        assert [p.uuid for p in patients.get_by_name("100-8").value] == ["p1"]
        assert patients.get_by_uuid("p2").value.birthdate == date(1980, 1, 1)


class TestCohortMemberRepository:
    """Membership edges and cascading deletes."""

    def test_members_for_cohort(self, members):
        members.save(CohortMember(cohort_uuid="c1", patient_uuid="p1"))
        members.save(CohortMember(cohort_uuid="c1", patient_uuid="p2"))
        members.save(CohortMember(cohort_uuid="c2", patient_uuid="p1"))
        found = members.get_members_for_cohort("c1").value
        assert [member.patient_uuid for member in found] == ["p1", "p2"]

    def test_members_for_unknown_cohort_is_empty(self, members):
        result = members.get_members_for_cohort("none")
        assert result.is_success()
        assert result.value == []

    def test_member_uniqueness(self, members, store):
        """Two members with the same pair collapse to one stored member."""
        members.save(CohortMember(cohort_uuid="c1", patient_uuid="p1"))
        members.save(CohortMember(cohort_uuid="c1", patient_uuid="p1"))
        assert len(members.get_members_for_cohort("c1").value) == 1
        assert store.count("CohortMember").value == 1

    def test_get_by_synthetic_key(self, members):
        member = CohortMember(cohort_uuid="c1", patient_uuid="p1")
        members.save(member)
        assert members.get_by_uuid("c1:p1").value == member

    def test_separator_in_uuid_rejected(self, members, store):
        """Pairs that would share a key, like ("a:b", "c") and ("a", "b:c"), are never written."""
        first = members.save(CohortMember(cohort_uuid="a:b", patient_uuid="c"))
        second = members.save(CohortMember(cohort_uuid="a", patient_uuid="b:c"))

        assert first.error_type == "ValidationError"
        assert first.error_details["field"] == "cohort_uuid"
        assert second.error_type == "ValidationError"
        assert second.error_details["field"] == "patient_uuid"
        assert store.count("CohortMember").value == 0

    def test_distinct_pairs_stay_in_their_cohorts(self, members):
        members.save(CohortMember(cohort_uuid="a", patient_uuid="b"))
        members.save(CohortMember(cohort_uuid="ab", patient_uuid="c"))

        assert members.get_members_for_cohort("a").value == [CohortMember(cohort_uuid="a", patient_uuid="b")]
        assert members.get_members_for_cohort("ab").value == [CohortMember(cohort_uuid="ab", patient_uuid="c")]

    def test_empty_cohort_uuid_rejected(self, members, store):
        """A member without a cohort uuid is never written."""
        result = members.save(CohortMember(cohort_uuid="", patient_uuid="p1"))
        assert result.is_failure()
        assert result.error_type == "ValidationError"
        assert result.error_details["field"] == "cohort_uuid"
        assert store.count("CohortMember").value == 0

    def test_empty_patient_uuid_rejected(self, members):
        result = members.save(CohortMember(cohort_uuid="c1", patient_uuid=" "))
        assert result.error_type == "ValidationError"
        assert result.error_details["field"] == "patient_uuid"

    def test_save_all_is_all_or_nothing(self, members, store):
        """One invalid member rejects the whole batch."""
        result = members.save_all([
            CohortMember(cohort_uuid="c1", patient_uuid="p1"),
            CohortMember(cohort_uuid="", patient_uuid="p2"),
        ])
        assert result.is_failure()
        assert store.count("CohortMember").value == 0

    def test_delete_members_for_cohort(self, members):
        """After a cascading delete the cohort has no members; other cohorts keep theirs."""
        members.save(CohortMember(cohort_uuid="c1", patient_uuid="p1"))
        members.save(CohortMember(cohort_uuid="c1", patient_uuid="p2"))
        members.save(CohortMember(cohort_uuid="c2", patient_uuid="p1"))
        assert members.delete_members_for_cohort("c1").value == 2
        assert members.get_members_for_cohort("c1").value == []
        assert len(members.get_members_for_cohort("c2").value) == 1

    def test_delete_members_of_empty_cohort(self, members):
        assert members.delete_members_for_cohort("c1").value == 0

    def test_delete_single_member(self, members):
        member = CohortMember(cohort_uuid="c1", patient_uuid="p1")
        members.save(member)
        members.delete(member)
        assert members.get_members_for_cohort("c1").value == []

    def test_cohort_lock_is_per_cohort(self, members):
        assert members.cohort_lock("c1") is members.cohort_lock("c1")
        assert members.cohort_lock("c1") is not members.cohort_lock("c2")

    def test_reader_sees_all_or_nothing_during_delete(self, members):
        """Concurrent readers observe either the full roster or the empty one."""
        members.save_all([CohortMember(cohort_uuid="c1", patient_uuid=f"p{i}") for i in range(50)])
        observed = []

        def read():
            for _ in range(20):
                observed.append(len(members.get_members_for_cohort("c1").value))

        reader = threading.Thread(target=read)
        reader.start()
        members.delete_members_for_cohort("c1")
        reader.join()

        assert set(observed) <= {0, 50}
