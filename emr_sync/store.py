"""Repository protocols for the entities the core reads and writes.

Relational persistence lives outside this package; the in-memory
implementations here back the tests and the development server.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from emr_sync.errors import DuplicateCredential, NotFound
from emr_sync.models import (
    Appointment,
    CredentialRecord,
    Patient,
    PracticeBookingConfig,
    Provider,
    utcnow,
)


class CredentialStore(Protocol):
    async def insert(self, record: CredentialRecord) -> CredentialRecord: ...

    async def get(self, record_id: str) -> CredentialRecord | None: ...

    async def find_by_fingerprint(self, fingerprint: str) -> CredentialRecord | None: ...

    async def query(
        self, owner_id: str | None = None, provider: Provider | None = None
    ) -> list[CredentialRecord]: ...

    async def update(self, record_id: str, **changes: Any) -> CredentialRecord: ...

    async def delete(self, record_id: str) -> None: ...


class PatientStore(Protocol):
    async def get(self, patient_id: str) -> Patient | None: ...

    async def set_external_id_if_absent(
        self, patient_id: str, field: str, value: str
    ) -> str: ...


class AppointmentStore(Protocol):
    async def get(self, appointment_id: str) -> Appointment | None: ...

    async def update(self, appointment_id: str, **changes: Any) -> Appointment: ...


class PracticeConfigStore(Protocol):
    async def get_booking_config(
        self, practice_id: str, provider: Provider
    ) -> PracticeBookingConfig | None: ...


# -- in-memory implementations -------------------------------------------------


class InMemoryCredentialStore:
    """Credential records in a dict, with a unique index on fingerprint."""

    def __init__(self) -> None:
        self._records: dict[str, CredentialRecord] = {}
        self._lock = asyncio.Lock()

    async def insert(self, record: CredentialRecord) -> CredentialRecord:
        async with self._lock:
            if any(r.fingerprint == record.fingerprint for r in self._records.values()):
                raise DuplicateCredential()
            self._records[record.id] = record.model_copy()
            return record.model_copy()

    async def get(self, record_id: str) -> CredentialRecord | None:
        record = self._records.get(record_id)
        return record.model_copy() if record else None

    async def find_by_fingerprint(self, fingerprint: str) -> CredentialRecord | None:
        for record in self._records.values():
            if record.fingerprint == fingerprint:
                return record.model_copy()
        return None

    async def query(
        self, owner_id: str | None = None, provider: Provider | None = None
    ) -> list[CredentialRecord]:
        records = [
            r.model_copy()
            # newest insert first among equal timestamps
            for r in reversed(list(self._records.values()))
            if (owner_id is None or r.owner_id == owner_id)
            and (provider is None or r.provider == provider)
        ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    async def update(self, record_id: str, **changes: Any) -> CredentialRecord:
        async with self._lock:
            current = self._records.get(record_id)
            if current is None:
                raise NotFound("Credential not found")
            new_fp = changes.get("fingerprint")
            if new_fp and new_fp != current.fingerprint:
                if any(
                    r.fingerprint == new_fp and r.id != record_id
                    for r in self._records.values()
                ):
                    raise DuplicateCredential()
            updated = current.model_copy(update={**changes, "updated_at": utcnow()})
            self._records[record_id] = updated
            return updated.model_copy()

    async def delete(self, record_id: str) -> None:
        async with self._lock:
            if self._records.pop(record_id, None) is None:
                raise NotFound("Credential not found")

    def __len__(self) -> int:
        return len(self._records)


class InMemoryPatientStore:
    def __init__(self, patients: list[Patient] | None = None) -> None:
        self._patients: dict[str, Patient] = {p.id: p for p in patients or []}
        self._lock = asyncio.Lock()

    def add(self, patient: Patient) -> Patient:
        self._patients[patient.id] = patient
        return patient

    async def get(self, patient_id: str) -> Patient | None:
        patient = self._patients.get(patient_id)
        return patient.model_copy() if patient else None

    async def set_external_id_if_absent(
        self, patient_id: str, field: str, value: str
    ) -> str:
        """Write ``field`` only when empty; return whatever is stored afterwards."""
        async with self._lock:
            patient = self._patients.get(patient_id)
            if patient is None:
                raise NotFound("Patient not found")
            existing = getattr(patient, field)
            if existing:
                return existing
            self._patients[patient_id] = patient.model_copy(update={field: value})
            return value


class InMemoryAppointmentStore:
    def __init__(self, appointments: list[Appointment] | None = None) -> None:
        self._appointments: dict[str, Appointment] = {
            a.id: a for a in appointments or []
        }

    def add(self, appointment: Appointment) -> Appointment:
        self._appointments[appointment.id] = appointment
        return appointment

    async def get(self, appointment_id: str) -> Appointment | None:
        appointment = self._appointments.get(appointment_id)
        return appointment.model_copy() if appointment else None

    async def update(self, appointment_id: str, **changes: Any) -> Appointment:
        current = self._appointments.get(appointment_id)
        if current is None:
            raise NotFound("Appointment not found")
        updated = current.model_copy(update=changes)
        self._appointments[appointment_id] = updated
        return updated.model_copy()


class InMemoryPracticeConfigStore:
    def __init__(self) -> None:
        self._configs: dict[tuple[str, Provider], PracticeBookingConfig] = {}

    def set(
        self, practice_id: str, provider: Provider, config: PracticeBookingConfig
    ) -> None:
        self._configs[(practice_id, provider)] = config

    async def get_booking_config(
        self, practice_id: str, provider: Provider
    ) -> PracticeBookingConfig | None:
        return self._configs.get((practice_id, provider))
