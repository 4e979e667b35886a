"""Entity Repositories.

Type-safe CRUD per entity kind, layered over the IndexedStorePort. The store
is upsert-only, so ``update`` is ``save`` under a name that keeps caller
intent readable.

Architecture:
    - Pure domain service; depends only on ports and models
    - Every public method returns a Result; absence is a successful None or
      an empty list, never a failure
"""

import logging
import threading
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from cohortsync.domain.models import (
    COHORT,
    COHORT_DEFINITION,
    COHORT_MEMBER,
    KEY_SEPARATOR,
    PATIENT,
    Cohort,
    CohortDefinition,
    CohortMember,
    Patient,
)
from cohortsync.domain.ports import (
    IndexedStorePort,
    Result,
    SearchHit,
    StoreIOError,
    ValidationError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T', bound=BaseModel)


@dataclass(frozen=True)
class RankedEntity(Generic[T]):
    """An entity returned by a search, with its relevance and insertion order."""
    entity: T
    kind: str
    score: float
    seq: int


class EntityRepository(Generic[T]):
    """CRUD over one index segment.

    Parameters:
        store: The indexed store
        kind: Segment name (entity kind)
        model: Pydantic model the documents deserialize into
    """

    def __init__(self, store: IndexedStorePort, kind: str, model: type[T]):
        self.store = store
        self.kind = kind
        self.model = model

    def key_for(self, entity: T) -> str:
        return entity.uuid

    def validate(self, entity: T) -> None:
        """Check per-kind invariants before a write.

        Raises:
            ValidationError: If the entity must not be written
        """
        if not isinstance(entity, self.model):
            raise ValidationError(
                f"Expected {self.model.__name__}, got {type(entity).__name__}",
                field="type"
            )

    def _to_document(self, entity: T) -> dict:
        return entity.model_dump(mode="json")

    def _from_document(self, document: dict) -> T:
        try:
            return self.model.model_validate(document)
        except PydanticValidationError as e:
            raise StoreIOError(
                f"Stored {self.kind} document is corrupt: {e}",
                operation="read",
                details={"kind": self.kind}
            )

    def _from_documents(self, documents: list[dict]) -> Result[list[T]]:
        try:
            return Result.success_result([self._from_document(document) for document in documents])
        except StoreIOError as e:
            logger.error(str(e))
            return Result.failure_result(e)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, entity: T) -> Result[str]:
        """Serialize and upsert one entity.

        Returns:
            Result[str]: The store key, or a ValidationError / StoreIOError failure
        """
        try:
            self.validate(entity)
        except ValidationError as e:
            logger.warning(f"Rejected {self.kind} write: {e}")
            return Result.failure_result(e)
        return self.store.put(self.kind, self.key_for(entity), self._to_document(entity))

    def save_all(self, entities: list[T]) -> Result[int]:
        """Validate every entity, then upsert them together in one transaction.

        A single invalid entity rejects the whole batch; nothing is written.
        Duplicate keys within the batch collapse to the last occurrence.
        """
        try:
            for entity in entities:
                self.validate(entity)
        except ValidationError as e:
            logger.warning(f"Rejected {self.kind} batch of {len(entities)}: {e}")
            return Result.failure_result(e)

        items: dict[str, dict] = {}
        for entity in entities:
            items[self.key_for(entity)] = self._to_document(entity)
        return self.store.put_many(self.kind, list(items.items()))

    def update(self, entity: T) -> Result[str]:
        return self.save(entity)

    def update_all(self, entities: list[T]) -> Result[int]:
        return self.save_all(entities)

    def delete(self, entity: T) -> Result[None]:
        """Remove an entity by its key; removing an absent entity is a no-op."""
        result = self.store.delete(self.kind, self.key_for(entity))
        if result.is_failure():
            return result
        return Result.success_result(None)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_uuid(self, uuid: str) -> Result[Optional[T]]:
        """Exact lookup; a missing record is a successful None."""
        result = self.store.get(self.kind, uuid)
        if result.is_failure():
            return result
        if result.value is None:
            return Result.success_result(None)
        try:
            return Result.success_result(self._from_document(result.value))
        except StoreIOError as e:
            logger.error(str(e))
            return Result.failure_result(e)

    def search(self, partial_name: str) -> Result[list[RankedEntity[T]]]:
        """Ranked search; QueryError failures are passed through unmodified."""
        result = self.store.search(self.kind, partial_name or "")
        if result.is_failure():
            return result
        hits: list[SearchHit] = result.value
        try:
            ranked = [
                RankedEntity(entity=self._from_document(hit.document), kind=self.kind, score=hit.score, seq=hit.seq)
                for hit in hits
            ]
        except StoreIOError as e:
            logger.error(str(e))
            return Result.failure_result(e)
        return Result.success_result(ranked)

    def get_by_name(self, partial_name: str) -> Result[list[T]]:
        """Entities whose name or description matches the filter, best match first."""
        result = self.search(partial_name)
        if result.is_failure():
            return result
        return Result.success_result([ranked.entity for ranked in result.value])

    def get_all(self) -> Result[list[T]]:
        return self.get_by_name("")


class CohortRepository(EntityRepository[Cohort]):
    def __init__(self, store: IndexedStorePort):
        super().__init__(store, COHORT, Cohort)


class CohortDefinitionRepository(EntityRepository[CohortDefinition]):
    def __init__(self, store: IndexedStorePort):
        super().__init__(store, COHORT_DEFINITION, CohortDefinition)


class PatientRepository(EntityRepository[Patient]):
    def __init__(self, store: IndexedStorePort):
        super().__init__(store, PATIENT, Patient)


class CohortMemberRepository(EntityRepository[CohortMember]):
    """Membership edges, keyed by ``cohort_uuid:patient_uuid``.

    ``get_by_uuid`` looks a member up by that synthetic key. Uuids containing
    the separator are rejected so two different pairs never share a key.

    Reads and cascading deletes of one cohort's members run inside a
    per-cohort exclusive section, so a reader never observes a half-deleted
    roster. Writers that replace a roster take the same section through
    ``cohort_lock``.
    """

    def __init__(self, store: IndexedStorePort):
        super().__init__(store, COHORT_MEMBER, CohortMember)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    def cohort_lock(self, cohort_uuid: str) -> threading.RLock:
        """The exclusive section guarding one cohort's member set."""
        with self._locks_guard:
            lock = self._locks.get(cohort_uuid)
            if lock is None:
                lock = self._locks[cohort_uuid] = threading.RLock()
            return lock

    def key_for(self, entity: CohortMember) -> str:
        return entity.key

    def validate(self, entity: CohortMember) -> None:
        super().validate(entity)
        if not entity.cohort_uuid or not entity.cohort_uuid.strip():
            raise ValidationError("Cohort member has an empty cohort uuid", field="cohort_uuid")
        if not entity.patient_uuid or not entity.patient_uuid.strip():
            raise ValidationError(
                f"Cohort member of {entity.cohort_uuid} has an empty patient uuid",
                field="patient_uuid"
            )
        for field in ("cohort_uuid", "patient_uuid"):
            if KEY_SEPARATOR in getattr(entity, field):
                raise ValidationError(
                    f"Cohort member {field} may not contain '{KEY_SEPARATOR}': {getattr(entity, field)}",
                    field=field
                )

    def get_members_for_cohort(self, cohort_uuid: str) -> Result[list[CohortMember]]:
        """Exact key scan on cohort_uuid, in insertion order; empty list when none."""
        with self.cohort_lock(cohort_uuid):
            result = self.store.find(self.kind, cohort_uuid=cohort_uuid)
        if result.is_failure():
            return result
        return self._from_documents(result.value)

    def delete_members_for_cohort(self, cohort_uuid: str) -> Result[int]:
        """Cascading delete of every member sharing the cohort uuid.

        Returns:
            Result[int]: Number of members removed
        """
        with self.cohort_lock(cohort_uuid):
            result = self.store.delete_where(self.kind, cohort_uuid=cohort_uuid)
        if result.is_success():
            logger.info(f"Deleted {result.value} members of cohort {cohort_uuid}")
        return result
