"""Sync Engine.

Pulls cohort entities from the remote server and persists them locally.

Security Impact:
    - Rosters carry patient identifiers; only counts and uuids are logged

Architecture:
    - Depends on RemoteFetcherPort and the repositories only
    - Fetch and deserialize always complete before the first write, so a
      failed download never leaves a partial local copy
    - Last-fetch-wins: a downloaded copy overwrites any local edit of the
      same uuid, stamped with ``synced_at``
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Optional

from cohortsync.domain.models import (
    COHORT,
    COHORT_DATA_DYNAMIC,
    COHORT_DATA_STATIC,
    COHORT_DEFINITION,
    CohortData,
    CohortDefinition,
)
from cohortsync.domain.ports import (
    CohortSyncError,
    DeserializeError,
    FetchError,
    NotFoundError,
    RemoteFetcherPort,
    Result,
)
from cohortsync.domain.services.deserializer import deserialize, deserialize_roster
from cohortsync.domain.services.repository import (
    CohortMemberRepository,
    EntityRepository,
    PatientRepository,
)

logger = logging.getLogger(__name__)

# Roster resource for each source kind
_ROSTER_RESOURCE = {
    COHORT: COHORT_DATA_STATIC,
    COHORT_DEFINITION: COHORT_DATA_DYNAMIC,
}


def _synced_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_not_found(error: FetchError) -> bool:
    return error.status == 404


class SyncEngine:
    """Downloads cohorts, cohort definitions and cohort rosters.

    Parameters:
        fetcher: Remote fetcher; None for a local-only engine whose downloads
            fail with FetchError
        repositories: Repository per source kind (Cohort, CohortDefinition)
        members: Cohort member repository
        patients: Patient repository
    """

    def __init__(
        self,
        fetcher: Optional[RemoteFetcherPort],
        repositories: dict[str, EntityRepository],
        members: CohortMemberRepository,
        patients: PatientRepository,
    ):
        self.fetcher = fetcher
        self.repositories = repositories
        self.members = members
        self.patients = patients
        self._kind_locks = {kind: threading.Lock() for kind in repositories}

    def _remote(self) -> RemoteFetcherPort:
        if self.fetcher is None:
            raise FetchError("No remote server configured")
        return self.fetcher

    def _repository(self, kind: str) -> EntityRepository:
        repository = self.repositories.get(kind)
        if repository is None:
            raise ValueError(f"No repository registered for entity kind '{kind}'")
        return repository

    def _fetch_entity(self, kind: str, uuid: str):
        """Fetch and deserialize one source entity, stamped with the fetch time.

        Raises:
            NotFoundError: If the server answers 404
            FetchError: On any other transport failure
            DeserializeError: If the payload is malformed or names another uuid
        """
        try:
            payload = self._remote().fetch_by_uuid(kind, uuid)
        except FetchError as e:
            if _is_not_found(e):
                raise NotFoundError(f"No {kind} with uuid {uuid} on the server", uuid=uuid, kinds=[kind])
            raise

        entity = deserialize(kind, payload)
        if entity.uuid != uuid:
            raise DeserializeError(
                f"Server returned {kind} {entity.uuid} when {uuid} was requested",
                kind=kind
            )
        return entity.model_copy(update={"synced_at": _synced_now()})

    # ------------------------------------------------------------------
    # Single-entity and batch downloads
    # ------------------------------------------------------------------

    def download_by_uuid(self, kind: str, uuid: str) -> Result:
        """Fetch, deserialize and save one Cohort or CohortDefinition.

        Returns:
            Result: The saved entity, or a FetchError / NotFoundError /
            DeserializeError / StoreIOError failure. Nothing is written unless
            fetch and deserialization both succeed.
        """
        repository = self._repository(kind)
        try:
            entity = self._fetch_entity(kind, uuid)
        except CohortSyncError as e:
            logger.warning(f"Download of {kind} {uuid} failed: {e}", extra={"entity_kind": kind, "uuid": uuid})
            return Result.failure_result(e)

        saved = repository.save(entity)
        if saved.is_failure():
            return saved
        logger.info(f"Downloaded {kind} {uuid}", extra={"entity_kind": kind, "uuid": uuid})
        return Result.success_result(entity)

    def download_by_name(self, kind: str, partial_name: str) -> Result:
        """Fetch every remote entity matching the filter and upsert the parsable ones.

        Malformed payloads are skipped and logged; the call only fails when the
        fetch itself fails (or the store does).

        Returns:
            Result[list]: The entities that were parsed and saved, in server order
        """
        repository = self._repository(kind)
        try:
            payloads = self._remote().fetch_by_filter(kind, partial_name or "")
        except FetchError as e:
            logger.warning(f"Download of {kind} matching '{partial_name}' failed: {e}", extra={"entity_kind": kind})
            return Result.failure_result(e)

        synced_at = _synced_now()
        entities = []
        skipped = 0
        for index, payload in enumerate(payloads):
            try:
                entity = deserialize(kind, payload)
            except DeserializeError as e:
                skipped += 1
                logger.warning(f"Skipping malformed {kind} payload #{index}: {e}", extra={"entity_kind": kind})
                continue
            entities.append(entity.model_copy(update={"synced_at": synced_at}))

        with self._kind_locks[kind]:
            for entity in entities:
                saved = repository.save(entity)
                if saved.is_failure():
                    return saved

        logger.info(
            f"Downloaded {len(entities)} {kind} entities matching '{partial_name}' ({skipped} skipped)",
            extra={"entity_kind": kind}
        )
        return Result.success_result(entities)

    # ------------------------------------------------------------------
    # Cohort data
    # ------------------------------------------------------------------

    def _resolve_source(self, uuid: str, dynamic: bool):
        """Fetch the cohort or definition behind a uuid, probing the other kind on 404.

        Raises:
            NotFoundError: If the uuid is neither a cohort nor a definition
        """
        primary, fallback = (COHORT_DEFINITION, COHORT) if dynamic else (COHORT, COHORT_DEFINITION)
        try:
            return self._fetch_entity(primary, uuid)
        except NotFoundError:
            logger.info(f"{uuid} is not a {primary}; probing {fallback}", extra={"uuid": uuid})

        try:
            return self._fetch_entity(fallback, uuid)
        except NotFoundError:
            raise NotFoundError(
                f"{uuid} is neither a {COHORT} nor a {COHORT_DEFINITION}",
                uuid=uuid,
                kinds=[primary, fallback]
            )

    def _fetch_cohort_data(self, uuid: str, dynamic: bool) -> CohortData:
        source = self._resolve_source(uuid, dynamic)
        source_kind = COHORT_DEFINITION if isinstance(source, CohortDefinition) else COHORT
        roster_payload: Any = self._remote().fetch_by_uuid(_ROSTER_RESOURCE[source_kind], uuid)
        members, patients = deserialize_roster(uuid, roster_payload)
        return CohortData(
            source=source,
            dynamic=source_kind == COHORT_DEFINITION,
            members=members,
            patients=patients,
        )

    def _write_cohort_data(self, data: CohortData) -> None:
        """Persist source, patients and roster in one transaction, replacing the old roster.

        Raises:
            CohortSyncError: Any store failure; the transaction is rolled back
        """
        source_kind = COHORT_DEFINITION if data.dynamic else COHORT
        store = self.members.store
        roster_keys = {member.key for member in data.members}

        with self.members.cohort_lock(data.uuid), store.transaction():
            self._repository(source_kind).save(data.source).unwrap()
            self.patients.save_all(data.patients).unwrap()

            stale = [
                member for member in self.members.get_members_for_cohort(data.uuid).unwrap()
                if member.key not in roster_keys
            ]
            for member in stale:
                self.members.delete(member).unwrap()
            self.members.save_all(data.members).unwrap()

        if stale:
            logger.info(f"Removed {len(stale)} members no longer on the roster of {data.uuid}")

    def download_cohort_data(self, uuid: str, dynamic: bool) -> Result[CohortData]:
        """Download a cohort or definition together with its members and patients.

        Parameters:
            uuid: Cohort or cohort definition uuid
            dynamic: True to resolve the uuid as a definition (reporting query)
                first, False to resolve it as a static cohort first

        Returns:
            Result[CohortData]: The aggregate; ``dynamic`` reports the kind the
            uuid actually resolved to. FetchError / NotFoundError /
            DeserializeError / StoreIOError failures leave the store untouched.
        """
        try:
            data = self._fetch_cohort_data(uuid, dynamic)
        except CohortSyncError as e:
            logger.warning(f"Cohort data download for {uuid} failed: {e}", extra={"uuid": uuid})
            return Result.failure_result(e)

        try:
            self._write_cohort_data(data)
        except CohortSyncError as e:
            logger.error(f"Failed to store cohort data for {uuid}: {e}", extra={"uuid": uuid})
            return Result.failure_result(e)

        logger.info(
            f"Downloaded cohort data for {uuid}: {len(data.members)} members "
            f"({'dynamic' if data.dynamic else 'static'})",
            extra={"uuid": uuid}
        )
        return Result.success_result(data)
