"""Unit tests for the sync engine, driven through CohortService with a mocked fetcher."""

from unittest.mock import Mock

import pytest

from cohortsync.domain.models import Cohort, CohortDefinition, CohortMember
from cohortsync.domain.ports import FetchError, Result, StoreIOError
from cohortsync.domain.services import CohortService


class TestDownloadByUuid:
    """Single-entity downloads."""

    def test_download_cohort(self, service, fetcher, payloads):
        """The fetched cohort is stored, stamped with the sync time."""
        fetcher.fetch_by_uuid.return_value = payloads["cohort"]("c1", "TB Patients")

        result = service.download_cohort_by_uuid("c1")

        assert result.is_success()
        assert result.value.name == "TB Patients"
        assert result.value.synced_at is not None
        fetcher.fetch_by_uuid.assert_called_once_with("Cohort", "c1")
        assert service.get_cohort_by_uuid("c1").value == result.value

    def test_download_definition(self, service, fetcher, payloads):
        fetcher.fetch_by_uuid.return_value = payloads["cohort"]("d1", "Missed visits")

        result = service.download_cohort_definition_by_uuid("d1")

        assert isinstance(result.value, CohortDefinition)
        fetcher.fetch_by_uuid.assert_called_once_with("CohortDefinition", "d1")
        assert service.get_cohort_definition_by_uuid("d1").value.name == "Missed visits"

    def test_fetch_error_leaves_store_untouched(self, service, fetcher):
        """A failed fetch leaves the previous local copy as it was."""
        local = Cohort(uuid="c1", name="Local copy")
        service.save_cohort(local)
        fetcher.fetch_by_uuid.side_effect = FetchError("connection refused", resource="Cohort")

        result = service.download_cohort_by_uuid("c1")

        assert result.is_failure()
        assert result.error_type == "FetchError"
        assert service.get_cohort_by_uuid("c1").value == local

    def test_deserialize_error_leaves_store_untouched(self, service, fetcher):
        fetcher.fetch_by_uuid.return_value = {"name": "missing uuid"}

        result = service.download_cohort_by_uuid("c1")

        assert result.error_type == "DeserializeError"
        assert service.get_cohort_by_uuid("c1").value is None

    def test_uuid_mismatch_is_deserialize_error(self, service, fetcher, payloads):
        fetcher.fetch_by_uuid.return_value = payloads["cohort"]("other", "Someone else")

        result = service.download_cohort_by_uuid("c1")

        assert result.error_type == "DeserializeError"
        assert service.get_all_cohorts().value == []

    def test_404_is_not_found(self, service, fetcher, payloads):
        fetcher.fetch_by_uuid.side_effect = payloads["not_found"]("Cohort")

        result = service.download_cohort_by_uuid("c1")

        assert result.error_type == "NotFoundError"
        assert result.error_details["uuid"] == "c1"

    def test_last_fetch_wins(self, service, fetcher, payloads):
        """A downloaded copy overwrites a local edit of the same uuid."""
        service.save_cohort(Cohort(uuid="c1", name="Edited locally"))
        fetcher.fetch_by_uuid.return_value = payloads["cohort"]("c1", "From server")

        service.download_cohort_by_uuid("c1")

        assert service.get_cohort_by_uuid("c1").value.name == "From server"

    def test_offline_service_fails_with_fetch_error(self, store):
        result = CohortService(store).download_cohort_by_uuid("c1")
        assert result.error_type == "FetchError"


class TestDownloadByName:
    """Filtered batch downloads."""

    def test_malformed_payloads_are_skipped(self, service, fetcher, payloads):
        """Parsable payloads are stored even when others in the batch are malformed."""
        fetcher.fetch_by_filter.return_value = [
            payloads["cohort"]("c1", "TB Patients"),
            {"name": "no uuid"},
            "not an object",
            payloads["cohort"]("c2", "TB Screening"),
        ]

        result = service.download_cohorts_by_name("TB")

        assert [cohort.uuid for cohort in result.value] == ["c1", "c2"]
        fetcher.fetch_by_filter.assert_called_once_with("Cohort", "TB")
        assert {cohort.uuid for cohort in service.get_all_cohorts().value} == {"c1", "c2"}

    def test_empty_filter(self, service, fetcher):
        fetcher.fetch_by_filter.return_value = []

        result = service.download_cohort_definitions_by_name("")

        assert result.value == []
        fetcher.fetch_by_filter.assert_called_once_with("CohortDefinition", "")

    def test_fetch_failure(self, service, fetcher):
        fetcher.fetch_by_filter.side_effect = FetchError("timed out", resource="Cohort")

        result = service.download_cohorts_by_name("TB")

        assert result.error_type == "FetchError"
        assert service.get_all_cohorts().value == []

    def test_store_failure_is_reported(self, service, fetcher, payloads):
        fetcher.fetch_by_filter.return_value = [payloads["cohort"]("c1", "TB")]
        service.cohorts.save = Mock(return_value=Result.failure_result(StoreIOError("disk full", operation="put")))

        result = service.download_cohorts_by_name("TB")

        assert result.error_type == "StoreIOError"


class TestDownloadCohortData:
    """Cohorts and definitions together with their rosters."""

    def test_static_cohort(self, service, fetcher, payloads):
        """Source, members and patients are all stored."""
        fetcher.fetch_by_uuid.side_effect = payloads["server"]({
            ("Cohort", "c1"): payloads["cohort"]("c1", "TB Patients"),
            ("CohortData-static", "c1"): {"results": [
                {"patient": payloads["patient"]("p1", "Jane", "Achieng")},
                {"patient": payloads["patient"]("p2", "John", "Otieno")},
            ]},
        })

        result = service.download_cohort_data("c1", dynamic=False)

        assert result.is_success()
        data = result.value
        assert data.dynamic is False
        assert isinstance(data.source, Cohort)
        assert [member.patient_uuid for member in data.members] == ["p1", "p2"]
        assert service.get_cohort_by_uuid("c1").value.name == "TB Patients"
        assert service.get_cohort_members("c1").value == data.members
        assert [patient.name for patient in service.get_cohort_patients("c1").value] == ["Jane Achieng", "John Otieno"]

    def test_dynamic_definition(self, service, fetcher, payloads):
        fetcher.fetch_by_uuid.side_effect = payloads["server"]({
            ("CohortDefinition", "cd1"): payloads["cohort"]("cd1", "Missed visits"),
            ("CohortData-dynamic", "cd1"): {"members": [{"uuid": "p1", "display": "Jane"}]},
        })

        result = service.download_cohort_data("cd1", dynamic=True)

        assert result.value.dynamic is True
        assert isinstance(result.value.source, CohortDefinition)
        assert service.get_cohort_definition_by_uuid("cd1").value is not None
        assert service.get_cohort_members("cd1").value == [CohortMember(cohort_uuid="cd1", patient_uuid="p1")]

    def test_reporting_failure_writes_nothing(self, service, fetcher, store, payloads):
        """A failed reporting fetch leaves no trace of the definition or its members."""
        fetcher.fetch_by_uuid.side_effect = payloads["server"]({
            ("CohortDefinition", "cd1"): payloads["cohort"]("cd1", "Missed visits"),
            ("CohortData-dynamic", "cd1"): FetchError("HTTP 500", status=500, resource="CohortData-dynamic"),
        })

        result = service.download_cohort_data("cd1", dynamic=True)

        assert result.error_type == "FetchError"
        assert service.get_cohort_by_uuid("cd1").value is None
        assert service.get_cohort_definition_by_uuid("cd1").value is None
        assert service.get_cohort_members("cd1").value == []
        assert store.count("Patient").value == 0

    def test_falls_back_to_other_kind(self, service, fetcher, payloads):
        """A uuid that is not a definition is resolved as a static cohort."""
        fetcher.fetch_by_uuid.side_effect = payloads["server"]({
            ("Cohort", "c1"): payloads["cohort"]("c1", "TB Patients"),
            ("CohortData-static", "c1"): {"results": []},
        })

        result = service.download_cohort_data("c1", dynamic=True)

        assert result.value.dynamic is False
        assert isinstance(result.value.source, Cohort)

    def test_neither_kind(self, service, fetcher, payloads):
        fetcher.fetch_by_uuid.side_effect = payloads["server"]({})

        result = service.download_cohort_data("x1", dynamic=False)

        assert result.error_type == "NotFoundError"
        assert result.error_details["kinds"] == ["Cohort", "CohortDefinition"]

    def test_malformed_roster_writes_nothing(self, service, fetcher, store, payloads):
        fetcher.fetch_by_uuid.side_effect = payloads["server"]({
            ("Cohort", "c1"): payloads["cohort"]("c1", "TB Patients"),
            ("CohortData-static", "c1"): {"results": [{"patient": {"display": "no uuid"}}]},
        })

        result = service.download_cohort_data("c1", dynamic=False)

        assert result.error_type == "DeserializeError"
        assert service.get_cohort_by_uuid("c1").value is None
        assert store.count("CohortMember").value == 0

    def test_roster_is_replaced(self, service, fetcher, payloads):
        """Members no longer on the server roster are removed."""
        service.save_cohort_members([
            CohortMember(cohort_uuid="c1", patient_uuid="p1"),
            CohortMember(cohort_uuid="c1", patient_uuid="gone"),
        ])
        fetcher.fetch_by_uuid.side_effect = payloads["server"]({
            ("Cohort", "c1"): payloads["cohort"]("c1", "TB Patients"),
            ("CohortData-static", "c1"): {"results": [payloads["patient"]("p1"), payloads["patient"]("p2")]},
        })

        service.download_cohort_data("c1", dynamic=False)

        members = service.get_cohort_members("c1").value
        assert sorted(member.patient_uuid for member in members) == ["p1", "p2"]

    def test_store_failure_rolls_back(self, service, fetcher, payloads):
        """A write failure part-way through leaves nothing behind."""
        fetcher.fetch_by_uuid.side_effect = payloads["server"]({
            ("Cohort", "c1"): payloads["cohort"]("c1", "TB Patients"),
            ("CohortData-static", "c1"): {"results": [payloads["patient"]("p1")]},
        })
        service.members.save_all = Mock(
            return_value=Result.failure_result(StoreIOError("disk full", operation="put_many"))
        )

        result = service.download_cohort_data("c1", dynamic=False)

        assert result.error_type == "StoreIOError"
        assert service.get_cohort_by_uuid("c1").value is None
        assert service.get_cohort_patients("c1").value == []

    @pytest.mark.parametrize("dynamic", [True, False])
    def test_offline(self, store, dynamic):
        result = CohortService(store).download_cohort_data("c1", dynamic)
        assert result.error_type == "FetchError"
