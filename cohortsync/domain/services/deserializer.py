"""Payload Deserialization Service.

Turns raw payloads returned by the remote fetcher (parsed JSON objects, or
JSON text) into typed domain entities. Every structural mismatch, including
invalid JSON, a missing uuid or a wrongly typed field, surfaces as a single
error kind: DeserializeError.

Architecture:
    - Pure domain service; depends only on the models and the path helpers
    - Field locations follow the OpenMRS REST representation, with flat
      camelCase and snake_case fallbacks so locally produced payloads parse too
"""

import json
import logging
from datetime import date
from typing import Any, Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from cohortsync.domain.models import (
    COHORT,
    COHORT_DEFINITION,
    COHORT_MEMBER,
    PATIENT,
    Cohort,
    CohortDefinition,
    CohortMember,
    Patient,
)
from cohortsync.domain.ports import DeserializeError
from cohortsync.domain.utils import read_string

logger = logging.getLogger(__name__)

# Keys of a cohort payload that are mapped to fields or are pure REST noise;
# everything else is kept in Cohort.metadata.
_COHORT_KNOWN_KEYS = {"uuid", "name", "display", "description", "links", "resourceVersion", "metadata"}


def load_payload(payload: Any, kind: str) -> dict:
    """Normalize a raw payload to a dict.

    Raises:
        DeserializeError: If the payload is not a JSON object
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as e:
            raise DeserializeError(f"Invalid JSON for {kind}: {e}", kind=kind)
    if not isinstance(payload, dict):
        raise DeserializeError(
            f"Expected a JSON object for {kind}, got {type(payload).__name__}",
            kind=kind
        )
    return payload


def _build_cohort(data: dict) -> Cohort:
    metadata = dict(data.get("metadata") or {})
    metadata.update({k: v for k, v in data.items() if k not in _COHORT_KNOWN_KEYS})
    return Cohort(
        uuid=read_string(data, "uuid") or "",
        name=read_string(data, "name", "display") or "",
        description=read_string(data, "description"),
        metadata=metadata,
    )


def _build_cohort_definition(data: dict) -> CohortDefinition:
    parameters = data.get("parameters") or []
    if isinstance(parameters, dict):
        parameters = [parameters]
    return CohortDefinition(
        uuid=read_string(data, "uuid") or "",
        name=read_string(data, "name", "display") or "",
        description=read_string(data, "description"),
        parameters=parameters,
    )


def _build_member(data: dict) -> CohortMember:
    return CohortMember(
        cohort_uuid=read_string(data, "cohortUuid", "cohort_uuid", "cohort.uuid") or "",
        patient_uuid=read_string(data, "patientUuid", "patient_uuid", "patient.uuid") or "",
    )


def _to_date(value: Optional[str]) -> Optional[date]:
    if value is None:
        return None
    # OpenMRS sends full timestamps ("1980-01-01T00:00:00.000+0000")
    return date.fromisoformat(value[:10])


def _build_patient(data: dict) -> Patient:
    return Patient(
        uuid=read_string(data, "uuid") or "",
        given_name=read_string(data, "givenName", "given_name", "person.preferredName.givenName"),
        family_name=read_string(data, "familyName", "family_name", "person.preferredName.familyName"),
        display=read_string(data, "display", "person.display"),
        gender=read_string(data, "gender", "person.gender"),
        birthdate=_to_date(read_string(data, "birthdate", "person.birthdate")),
        identifier=read_string(data, "identifier", "identifiers.0.identifier"),
    )


_BUILDERS: dict[str, Callable[[dict], Any]] = {
    COHORT: _build_cohort,
    COHORT_DEFINITION: _build_cohort_definition,
    COHORT_MEMBER: _build_member,
    PATIENT: _build_patient,
}


def deserialize(kind: str, payload: Any):
    """Deserialize one payload as the given entity kind.

    Parameters:
        kind: Entity kind (Cohort, CohortDefinition, CohortMember, Patient)
        payload: Parsed JSON object or JSON text

    Returns:
        The typed entity

    Raises:
        DeserializeError: If the payload does not match the expected shape
    """
    builder = _BUILDERS.get(kind)
    if builder is None:
        raise DeserializeError(f"No deserializer for entity kind '{kind}'", kind=kind)
    data = load_payload(payload, kind)
    try:
        return builder(data)
    except PydanticValidationError as e:
        raise DeserializeError(f"Payload does not match {kind}: {e.error_count()} error(s): {e}", kind=kind)
    except (TypeError, ValueError) as e:
        raise DeserializeError(f"Payload does not match {kind}: {e}", kind=kind)


def deserialize_roster(cohort_uuid: str, payload: Any) -> tuple[list[CohortMember], list[Patient]]:
    """Deserialize a membership roster (static member list or reporting result).

    The roster is an object carrying a ``results`` or ``members`` list. Each
    item is either a member with a nested ``patient`` object or a patient
    object itself. Duplicate patients are collapsed, keeping the first
    occurrence.

    Parameters:
        cohort_uuid: The cohort or definition the roster belongs to
        payload: Parsed JSON object or JSON text

    Returns:
        (members, patients) in roster order

    Raises:
        DeserializeError: If the roster or any of its items is malformed
    """
    kind = "CohortData"
    data = load_payload(payload, kind)
    items = data.get("results")
    if items is None:
        items = data.get("members")
    if not isinstance(items, list):
        raise DeserializeError("Roster payload has no 'results' or 'members' list", kind=kind)

    members: list[CohortMember] = []
    patients: list[Patient] = []
    seen: set[str] = set()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise DeserializeError(f"Roster item {index} is not an object", kind=kind)
        patient_data = item.get("patient") if isinstance(item.get("patient"), dict) else item
        try:
            patient = deserialize(PATIENT, patient_data)
        except DeserializeError as e:
            raise DeserializeError(f"Roster item {index}: {e}", kind=kind)
        if patient.uuid in seen:
            logger.debug(f"Duplicate patient {patient.uuid} in roster for cohort {cohort_uuid}")
            continue
        seen.add(patient.uuid)
        members.append(CohortMember(cohort_uuid=cohort_uuid, patient_uuid=patient.uuid))
        patients.append(patient)
    return members, patients
