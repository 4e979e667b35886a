"""Shared fixtures: an in-memory index store, a mocked remote fetcher and payload builders."""

from unittest.mock import Mock

import pytest

from cohortsync.adapters.storage import DuckDBIndexStore
from cohortsync.domain.ports import FetchError, RemoteFetcherPort
from cohortsync.domain.services import CohortService


@pytest.fixture
def store():
    """Fresh in-memory DuckDB index store."""
    index_store = DuckDBIndexStore(db_path=":memory:")
    assert index_store.initialize_schema().is_success()
    yield index_store
    index_store.close()


@pytest.fixture
def fetcher():
    """Remote fetcher mock; tests set return values or side effects."""
    return Mock(spec=RemoteFetcherPort)


@pytest.fixture
def service(store, fetcher):
    return CohortService(store, fetcher)


def cohort_payload(uuid, name, description=None, **extra):
    payload = {"uuid": uuid, "name": name, "description": description}
    payload.update(extra)
    return payload


def patient_payload(uuid, given="John", family="Doe", identifier=None):
    return {
        "uuid": uuid,
        "display": f"{identifier or uuid} - {given} {family}",
        "identifiers": [{"identifier": identifier or f"ID-{uuid}"}],
        "person": {
            "gender": "M",
            "birthdate": "1980-01-01T00:00:00.000+0000",
            "preferredName": {"givenName": given, "familyName": family},
        },
    }


def not_found(resource):
    return FetchError(f"{resource} request failed with HTTP 404: Not Found", status=404, resource=resource)


class FakeServer:
    """Routes fetch_by_uuid calls to canned payloads keyed by (resource_kind, uuid).

    Missing keys answer like a server 404; values that are exceptions are raised.
    """

    def __init__(self, routes):
        self.routes = routes

    def __call__(self, resource_kind, uuid):
        key = (resource_kind, uuid)
        if key not in self.routes:
            raise not_found(resource_kind)
        value = self.routes[key]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def payloads():
    """Payload builders, so test modules need not import conftest."""
    return {
        "cohort": cohort_payload,
        "patient": patient_payload,
        "server": FakeServer,
        "not_found": not_found,
    }
