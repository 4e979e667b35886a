"""Domain Ports - Abstract Contracts for the Cohort Data Layer.

This module defines the Port interfaces (abstract contracts) that Adapters must
implement, the Result type every public operation returns, and the error
taxonomy used across the package. Following Hexagonal Architecture, the Domain
Core defines what it needs, not how it's provided.

Architecture:
    - Pure abstract interfaces with zero infrastructure dependencies
    - IndexedStorePort is implemented by the DuckDB index store
    - RemoteFetcherPort is implemented by the REST fetcher
    - CohortServicePort is the surface external callers (UI, sync schedulers)
      depend on; exactly one implementation is wired at startup
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar, Union

# Type variable for Result generic
T = TypeVar('T')


# ============================================================================
# Result Type for Success/Failure Communication
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Result type for communicating success or failure without exceptions.

    Every operation exposed by the repositories, the sync engine and the
    cohort service returns a Result. "Not found" is a success whose value is
    None (or an empty list); failures carry the error kind in ``error_type``
    (FetchError, DeserializeError, QueryError, ValidationError, StoreIOError,
    NotFoundError).

    Attributes:
        success: True if the operation succeeded, False otherwise
        value: The successful result value (only present if success=True)
        error: Error message (only present if success=False)
        error_type: Name of the error kind
        error_details: Additional error context (uuid, kind, status, etc.)
        exception: The exception the failure was built from, if any

    Example:
        ```python
        result = service.get_cohort_by_uuid("c1")
        if result.is_success():
            cohort = result.value  # None when no such cohort
        elif result.error_type == "StoreIOError":
            alert(result.error)
        ```
    """

    success: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    error_details: Optional[dict] = None
    exception: Optional[BaseException] = field(default=None, compare=False, repr=False)

    @classmethod
    def success_result(cls, value: T) -> 'Result[T]':
        """Create a successful result.

        Parameters:
            value: The successful result value

        Returns:
            Result: Success result with the value
        """
        return cls(
            success=True,
            value=value,
            error=None,
            error_type=None,
            error_details=None
        )

    @classmethod
    def failure_result(
        cls,
        error: Union[str, Exception],
        error_type: Optional[str] = None,
        error_details: Optional[dict] = None
    ) -> 'Result[T]':
        """Create a failure result.

        Parameters:
            error: Error message or exception
            error_type: Type of error; defaults to the exception class name
            error_details: Additional context; defaults to the exception's details

        Returns:
            Result: Failure result with error information
        """
        error_message = str(error) if isinstance(error, Exception) else error
        error_type_name = error_type or (type(error).__name__ if isinstance(error, Exception) else "UnknownError")
        if error_details is None and isinstance(error, CohortSyncError):
            error_details = error.details

        return cls(
            success=False,
            value=None,
            error=error_message,
            error_type=error_type_name,
            error_details=error_details or {},
            exception=error if isinstance(error, Exception) else None
        )

    def is_success(self) -> bool:
        """Check if result is successful."""
        return self.success

    def is_failure(self) -> bool:
        """Check if result is a failure."""
        return not self.success

    def unwrap(self) -> T:
        """Return the value, or raise the error this failure was built from.

        Used inside store transactions, where a failed step must abort (and
        roll back) the whole group of writes.

        Raises:
            CohortSyncError: The original error, or a generic one when the
                failure was built from a plain message
        """
        if self.success:
            return self.value
        if self.exception is not None:
            raise self.exception
        raise CohortSyncError(self.error or "Operation failed", details=self.error_details)


# ============================================================================
# Custom Exception Hierarchy
# ============================================================================

class CohortSyncError(Exception):
    """Base exception for all cohort data layer errors.

    Attributes:
        details: Additional error context, copied into Result.error_details
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


class FetchError(CohortSyncError):
    """Raised when the remote server is unreachable or answers with a non-success status.

    Attributes:
        status: HTTP status code, or None for connection failures and timeouts
        resource: The resource kind that was requested
    """

    def __init__(self, message: str, status: Optional[int] = None, resource: Optional[str] = None):
        super().__init__(message, details={"status": status, "resource": resource})
        self.status = status
        self.resource = resource


class DeserializeError(CohortSyncError):
    """Raised when a payload does not match the shape expected for its entity kind.

    Attributes:
        kind: The entity kind the payload was parsed as
    """

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message, details={"kind": kind})
        self.kind = kind


class QueryError(CohortSyncError):
    """Raised when a search filter cannot be parsed.

    Attributes:
        query: The offending query string
        position: Character offset where parsing failed, if known
    """

    def __init__(self, message: str, query: Optional[str] = None, position: Optional[int] = None):
        super().__init__(message, details={"query": query, "position": position})
        self.query = query
        self.position = position


class ValidationError(CohortSyncError):
    """Raised when an entity fails an invariant and must not be written.

    Attributes:
        field: The field that failed validation
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details={"field": field})
        self.field = field


class StoreIOError(CohortSyncError):
    """Raised when the underlying persistence layer fails.

    Always fatal to the in-flight operation; never retried internally.

    Attributes:
        operation: The store operation that failed
    """

    def __init__(self, message: str, operation: Optional[str] = None, details: Optional[dict] = None):
        merged = {"operation": operation}
        merged.update(details or {})
        super().__init__(message, details=merged)
        self.operation = operation


class NotFoundError(CohortSyncError):
    """Raised when a remote uuid does not resolve to the requested entity kind(s).

    Attributes:
        uuid: The uuid that was looked up
        kinds: The entity kinds that were tried
    """

    def __init__(self, message: str, uuid: Optional[str] = None, kinds: Optional[list] = None):
        super().__init__(message, details={"uuid": uuid, "kinds": kinds or []})
        self.uuid = uuid
        self.kinds = kinds or []


# ============================================================================
# Indexed Store Port
# ============================================================================

@dataclass(frozen=True)
class SearchHit:
    """A document matched by IndexedStorePort.search.

    Attributes:
        kind: Segment the document lives in
        key: Document key (uuid, or synthetic key for members)
        document: The stored document
        score: Relevance score (0 when the query has no positive terms)
        seq: Insertion sequence, used to break ties
    """
    kind: str
    key: str
    document: dict
    score: float
    seq: int


class IndexedStorePort(ABC):
    """Abstract contract for the local indexed document store.

    Documents are partitioned by kind (a named segment such as "Cohort" or
    "CohortMember") and keyed within the segment. The ``name`` and
    ``description`` fields of a document are text-indexed; ``cohort_uuid``
    and ``patient_uuid`` are exact-match key fields.

    Guarantees:
        - Writes are upserts and are visible to the next read immediately
        - A single put either fully completes or is not observed
        - Deletes of absent keys are no-ops
        - Media failures surface as StoreIOError failures
    """

    @abstractmethod
    def initialize_schema(self) -> Result[None]:
        """Create the backing tables and indexes (idempotent)."""
        pass

    @abstractmethod
    def put(self, kind: str, key: str, document: dict) -> Result[str]:
        """Insert or overwrite the document at (kind, key).

        Returns:
            Result[str]: The key that was written
        """
        pass

    @abstractmethod
    def put_many(self, kind: str, items: list[tuple[str, dict]]) -> Result[int]:
        """Upsert several (key, document) pairs atomically.

        Returns:
            Result[int]: Number of documents written
        """
        pass

    @abstractmethod
    def get(self, kind: str, key: str) -> Result[Optional[dict]]:
        """Fetch the document at (kind, key); value is None when absent."""
        pass

    @abstractmethod
    def search(self, kind: str, query: str) -> Result[list[SearchHit]]:
        """Search the text-indexed fields of one segment.

        An empty query matches every document of the kind. Matching is
        case-insensitive substring/prefix; hits are ordered by relevance with
        ties broken by insertion order.

        Returns:
            Result[list[SearchHit]]: Ordered hits, or a QueryError failure when
            the query cannot be parsed
        """
        pass

    @abstractmethod
    def find(self, kind: str, **fields: str) -> Result[list[dict]]:
        """Exact-match scan on key fields, ordered by insertion."""
        pass

    @abstractmethod
    def delete(self, kind: str, key: str) -> Result[int]:
        """Delete the document at (kind, key); returns rows removed (0 or 1)."""
        pass

    @abstractmethod
    def delete_where(self, kind: str, **fields: str) -> Result[int]:
        """Delete every document of the kind whose key fields match, in one transaction."""
        pass

    @abstractmethod
    def count(self, kind: str) -> Result[int]:
        """Number of documents stored in the segment."""
        pass

    @abstractmethod
    def transaction(self) -> AbstractContextManager:
        """Context manager making the enclosed writes atomic across segments.

        Raises:
            StoreIOError: If the transaction cannot be started or committed
        """
        pass

    def close(self) -> None:
        """Release the underlying resources (optional)."""
        return None


# ============================================================================
# Remote Fetcher Port
# ============================================================================

class RemoteFetcherPort(ABC):
    """Abstract contract for fetching raw entity payloads from the clinical-data server.

    Resource kinds: "Cohort", "CohortDefinition", "CohortMember",
    "CohortData-static" and "CohortData-dynamic" (reporting).

    Both methods are blocking and must honour the configured timeout. Any
    transport failure, including a timeout, raises FetchError.
    """

    @abstractmethod
    def fetch_by_uuid(self, resource_kind: str, uuid: str) -> Any:
        """Fetch a single resource.

        Raises:
            FetchError: On connection failure, timeout or non-success status
        """
        pass

    @abstractmethod
    def fetch_by_filter(self, resource_kind: str, filter_string: str) -> list:
        """Fetch every resource matching the filter (empty filter means all).

        Raises:
            FetchError: On connection failure, timeout or non-success status
        """
        pass


# ============================================================================
# Cohort Service Port
# ============================================================================

class CohortServicePort(ABC):
    """The CRUD and sync surface external callers depend on.

    Every method returns a Result. Local lookups that find nothing succeed
    with None or an empty list.
    """

    # Cohorts

    @abstractmethod
    def download_cohort_by_uuid(self, uuid: str) -> Result:
        pass

    @abstractmethod
    def download_cohorts_by_name(self, name: str) -> Result:
        pass

    @abstractmethod
    def save_cohort(self, cohort) -> Result:
        pass

    @abstractmethod
    def save_cohorts(self, cohorts: list) -> Result:
        pass

    @abstractmethod
    def update_cohort(self, cohort) -> Result:
        pass

    @abstractmethod
    def update_cohorts(self, cohorts: list) -> Result:
        pass

    @abstractmethod
    def get_cohort_by_uuid(self, uuid: str) -> Result:
        pass

    @abstractmethod
    def get_cohorts_by_name(self, name: str) -> Result:
        pass

    @abstractmethod
    def get_all_cohorts(self) -> Result:
        pass

    @abstractmethod
    def delete_cohort(self, cohort) -> Result:
        pass

    # Cohort definitions

    @abstractmethod
    def download_cohort_definition_by_uuid(self, uuid: str) -> Result:
        pass

    @abstractmethod
    def download_cohort_definitions_by_name(self, name: str) -> Result:
        pass

    @abstractmethod
    def save_cohort_definition(self, definition) -> Result:
        pass

    @abstractmethod
    def save_cohort_definitions(self, definitions: list) -> Result:
        pass

    @abstractmethod
    def update_cohort_definition(self, definition) -> Result:
        pass

    @abstractmethod
    def update_cohort_definitions(self, definitions: list) -> Result:
        pass

    @abstractmethod
    def get_cohort_definition_by_uuid(self, uuid: str) -> Result:
        pass

    @abstractmethod
    def get_cohort_definitions_by_name(self, name: str) -> Result:
        pass

    @abstractmethod
    def get_all_cohort_definitions(self) -> Result:
        pass

    @abstractmethod
    def delete_cohort_definition(self, definition) -> Result:
        pass

    # Cohort data and members

    @abstractmethod
    def download_cohort_data(self, uuid: str, dynamic: bool) -> Result:
        pass

    @abstractmethod
    def save_cohort_member(self, member) -> Result:
        pass

    @abstractmethod
    def save_cohort_members(self, members: list) -> Result:
        pass

    @abstractmethod
    def update_cohort_member(self, member) -> Result:
        pass

    @abstractmethod
    def update_cohort_members(self, members: list) -> Result:
        pass

    @abstractmethod
    def get_cohort_members(self, cohort_uuid: str) -> Result:
        pass

    @abstractmethod
    def delete_cohort_members(self, cohort_uuid: str) -> Result:
        pass

    # Queries

    @abstractmethod
    def search_cohorts(self, name: str) -> Result:
        pass

    @abstractmethod
    def get_cohort_patients(self, cohort_uuid: str) -> Result:
        pass
