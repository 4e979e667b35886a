"""Cohort Entity Schema Definitions.

This module defines the canonical data models for the cohort entity family:
static cohorts, dynamic cohort definitions, membership edges and the patient
records they reference, plus the transient CohortData aggregate.

Architecture:
    - Pure domain models with zero infrastructure dependencies
    - Type safety enforced at runtime via Pydantic V2
    - Models serialize to plain JSON documents for the indexed store; the
      ``name`` and ``description`` keys of a document are what gets searched
"""

from datetime import date, datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

# Entity kinds (index segments) and remote resource kinds
COHORT = "Cohort"
COHORT_DEFINITION = "CohortDefinition"
COHORT_MEMBER = "CohortMember"
PATIENT = "Patient"
COHORT_DATA_STATIC = "CohortData-static"
COHORT_DATA_DYNAMIC = "CohortData-dynamic"

# Joins cohort and patient uuids in the member store key
KEY_SEPARATOR = ":"


class Cohort(BaseModel):
    """A named, statically enumerated group of patients.

    Parameters:
        uuid: Stable identity; the only key of the entity
        name: Display name (searchable)
        description: Free text (searchable)
        metadata: Any other attributes the server sent, kept opaque
        synced_at: When the local copy was fetched; None for local-only saves
    """

    model_config = ConfigDict(extra="ignore")

    uuid: str = Field(..., min_length=1, description="Cohort uuid")
    name: str = Field(default="", description="Cohort name")
    description: Optional[str] = Field(None, description="Cohort description")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Opaque server attributes")
    synced_at: Optional[datetime] = Field(None, description="Timestamp of the fetch that produced this copy")


class CohortDefinition(BaseModel):
    """A named, dynamically computed group of patients.

    Membership is resolved on demand by a server-side reporting query; the
    definition parameters are opaque to this package.
    """

    model_config = ConfigDict(extra="ignore")

    uuid: str = Field(..., min_length=1, description="Cohort definition uuid")
    name: str = Field(default="", description="Definition name")
    description: Optional[str] = Field(None, description="Definition description")
    parameters: list[Any] = Field(default_factory=list, description="Opaque definition parameters")
    synced_at: Optional[datetime] = Field(None, description="Timestamp of the fetch that produced this copy")


class CohortMember(BaseModel):
    """One membership edge linking a cohort to a patient.

    Both fields default to empty so that an incomplete member can still be
    constructed and then rejected by the member repository.
    """

    model_config = ConfigDict(extra="ignore")

    cohort_uuid: str = Field(default="", description="Owning cohort (or definition) uuid")
    patient_uuid: str = Field(default="", description="Member patient uuid")

    @property
    def key(self) -> str:
        """Synthetic store key; unique per (cohort, patient) pair since neither uuid may contain the separator."""
        return f"{self.cohort_uuid}{KEY_SEPARATOR}{self.patient_uuid}"


class Patient(BaseModel):
    """The slice of a patient record the cohort layer keeps locally."""

    model_config = ConfigDict(extra="ignore")

    uuid: str = Field(..., min_length=1, description="Patient uuid")
    given_name: Optional[str] = Field(None, description="Given name")
    family_name: Optional[str] = Field(None, description="Family name")
    display: Optional[str] = Field(None, description="Server-side display string")
    gender: Optional[str] = Field(None, description="Gender code")
    birthdate: Optional[date] = Field(None, description="Date of birth")
    identifier: Optional[str] = Field(None, description="Preferred identifier")

    @computed_field
    @property
    def name(self) -> str:
        parts = [part for part in (self.given_name, self.family_name) if part]
        if parts:
            return " ".join(parts)
        return self.display or ""

    @computed_field
    @property
    def description(self) -> Optional[str]:
        return self.identifier


class CohortData(BaseModel):
    """Transient aggregate of a cohort-or-definition with its members and patients.

    Built by the sync engine for a single call and never stored as a row; only
    its constituents are persisted.
    """

    source: Union[Cohort, CohortDefinition]
    dynamic: bool = Field(..., description="True when membership came from a reporting query")
    members: list[CohortMember] = Field(default_factory=list)
    patients: list[Patient] = Field(default_factory=list)

    @property
    def uuid(self) -> str:
        return self.source.uuid

