"""REST Remote Fetcher Adapter.

Implements RemoteFetcherPort against an OpenMRS-style REST API using a
requests Session.

Resource mapping (relative to ``<server>/ws/rest/v1``):

    Cohort              cohort/{uuid}                      cohort?q=<filter>
    CohortDefinition    reportingrest/cohortDefinition/{uuid}
                                                           reportingrest/cohortDefinition?q=<filter>
    CohortMember        cohort/{uuid}/member
    CohortData-static   cohort/{uuid}/member
    CohortData-dynamic  reportingrest/cohort/{uuid}

For the templated resources (those bound to one cohort), ``fetch_by_filter``
treats the filter as the cohort uuid.
"""

import logging
from typing import Any, Optional

import requests

from cohortsync.domain.models import (
    COHORT,
    COHORT_DATA_DYNAMIC,
    COHORT_DATA_STATIC,
    COHORT_DEFINITION,
    COHORT_MEMBER,
)
from cohortsync.domain.ports import FetchError, RemoteFetcherPort
from cohortsync.infrastructure.config_manager import ServerConfig

logger = logging.getLogger(__name__)

RESOURCE_PATHS = {
    COHORT: "cohort",
    COHORT_DEFINITION: "reportingrest/cohortDefinition",
    COHORT_MEMBER: "cohort/{uuid}/member",
    COHORT_DATA_STATIC: "cohort/{uuid}/member",
    COHORT_DATA_DYNAMIC: "reportingrest/cohort/{uuid}",
}

# Full representation: members carry their nested patient objects
DEFAULT_PARAMS = {"v": "full"}


class RestFetcher(RemoteFetcherPort):
    """requests-backed fetcher for the clinical-data server.

    Parameters:
        server_config: Server URL, credentials, timeout and TLS settings
        session: Optional pre-configured Session (tests inject a mock)
    """

    def __init__(self, server_config: ServerConfig, session: Optional[requests.Session] = None):
        self.config = server_config
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

        auth = server_config.get_auth()
        if auth:
            self.session.auth = auth

    def _path(self, resource_kind: str, uuid: Optional[str] = None) -> str:
        template = RESOURCE_PATHS.get(resource_kind)
        if template is None:
            raise FetchError(f"Unknown resource kind: {resource_kind}", resource=resource_kind)
        if "{uuid}" in template:
            if not uuid:
                raise FetchError(f"{resource_kind} requires a cohort uuid", resource=resource_kind)
            return template.format(uuid=uuid)
        return f"{template}/{uuid}" if uuid else template

    def _get(self, resource_kind: str, path: str, params: Optional[dict] = None) -> Any:
        """GET a path under the REST root and return the decoded JSON body.

        Raises:
            FetchError: On connection failure, timeout, non-2xx or non-JSON body
        """
        url = f"{self.config.api_root}/{path}"
        query = dict(DEFAULT_PARAMS)
        query.update(params or {})

        try:
            response = self.session.get(
                url,
                params=query,
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
            )
        except requests.exceptions.Timeout:
            raise FetchError(
                f"Request to {url} timed out after {self.config.timeout}s",
                resource=resource_kind
            )
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Request to {url} failed: {str(e)}", resource=resource_kind)

        if not response.ok:
            raise FetchError(
                f"{resource_kind} request failed with HTTP {response.status_code}: {response.reason}",
                status=response.status_code,
                resource=resource_kind
            )

        try:
            body = response.json()
        except ValueError as e:
            raise FetchError(
                f"{resource_kind} response is not JSON: {str(e)}",
                status=response.status_code,
                resource=resource_kind
            )
        logger.debug(f"Fetched {resource_kind} from {url}")
        return body

    def fetch_by_uuid(self, resource_kind: str, uuid: str) -> Any:
        """Fetch one resource (or one cohort's roster for the templated kinds)."""
        return self._get(resource_kind, self._path(resource_kind, uuid))

    def fetch_by_filter(self, resource_kind: str, filter_string: str) -> list:
        """Fetch every resource matching the filter; an empty filter fetches all."""
        if "{uuid}" in RESOURCE_PATHS.get(resource_kind, ""):
            body = self._get(resource_kind, self._path(resource_kind, filter_string))
        else:
            params = {"q": filter_string} if filter_string else {}
            body = self._get(resource_kind, self._path(resource_kind), params=params)

        if isinstance(body, list):
            return body
        if isinstance(body, dict) and isinstance(body.get("results"), list):
            return body["results"]
        return [body]
