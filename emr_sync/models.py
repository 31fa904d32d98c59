"""Pydantic models for credentials, local scheduling entities and adapter I/O."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class Provider(str, Enum):
    """Supported EMR platforms."""

    MINDBODY = "MINDBODY"
    NEXTECH = "NEXTECH"
    MODMED = "MODMED"
    PATIENTNOW = "PATIENTNOW"


class OwnerType(str, Enum):
    PRACTICE = "PRACTICE"


# -- credential vault ----------------------------------------------------------


class CredentialRecord(BaseModel):
    """One encrypted credential set owned by a practice."""

    id: str = Field(default_factory=new_id)
    owner_id: str
    owner_type: OwnerType = OwnerType.PRACTICE
    provider: Provider
    label: str | None = None
    encrypted_blob: str
    fingerprint: str
    is_valid: bool = True
    last_validated_at: datetime | None = None
    validation_error: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def public_view(self) -> dict[str, Any]:
        """Serializable view with the ciphertext stripped."""
        return self.model_dump(mode="json", exclude={"encrypted_blob"})


class CredentialPatch(BaseModel):
    """Partial update for a credential record.

    ``credentials`` replaces the whole credential set when given.
    """

    label: str | None = None
    credentials: dict[str, Any] | None = None
    provider: Provider | None = None


class CheckResult(BaseModel):
    ok: bool
    message: str | None = None


# -- local scheduling entities -------------------------------------------------


class Patient(BaseModel):
    id: str = Field(default_factory=new_id)
    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    date_of_birth: date | None = None

    # External links, one slot per provider. Set once, never overwritten.
    mindbody_client_id: str | None = None
    nextech_patient_id: str | None = None
    modmed_patient_id: str | None = None


class Appointment(BaseModel):
    id: str = Field(default_factory=new_id)
    patient_id: str
    practice_id: str
    start_at: datetime
    duration_minutes: int = 30
    notes: str | None = None
    status: str = "booked"
    emr_appointment_id: str | None = None


class PracticeBookingConfig(BaseModel):
    """Stored per-practice booking defaults for one provider."""

    provider_id: str | None = None
    location_id: str | None = None
    appointment_type_id: str | None = None


# -- adapter I/O ---------------------------------------------------------------


class PatientData(BaseModel):
    """Patient fields an adapter needs for lookup/creation."""

    first_name: str = ""
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    date_of_birth: date | None = None

    @classmethod
    def from_patient(cls, patient: Patient) -> PatientData:
        return cls(
            first_name=patient.first_name,
            last_name=patient.last_name,
            email=patient.email,
            phone=patient.phone,
            date_of_birth=patient.date_of_birth,
        )


class BookingParams(BaseModel):
    provider_id: str | None = None
    location_id: str | None = None
    appointment_type_id: str | None = None

    def missing(self) -> list[str]:
        return [
            name
            for name in ("provider_id", "location_id", "appointment_type_id")
            if not getattr(self, name)
        ]

    def merged_with(self, fallback: BookingParams) -> BookingParams:
        """Fill fields left empty here from ``fallback``."""
        return BookingParams(
            provider_id=self.provider_id or fallback.provider_id,
            location_id=self.location_id or fallback.location_id,
            appointment_type_id=self.appointment_type_id
            or fallback.appointment_type_id,
        )


class BookingRequest(BaseModel):
    patient_id: str
    params: BookingParams
    start_at: datetime
    duration_minutes: int = 30
    notes: str | None = None


class BookingResult(BaseModel):
    success: bool
    remote_appointment_id: str | None = None
    error: str | None = None


class CachedToken(BaseModel):
    token: str
    expires_at: datetime


# -- orchestrator outcome ------------------------------------------------------


class SyncStatus(str, Enum):
    SKIPPED = "Skipped"
    BOOKED = "Booked"
    FAILED = "Failed"


class SyncOutcome(BaseModel):
    """Structured result of one booking attempt, returned to the caller."""

    status: SyncStatus
    provider: Provider | None = None
    remote_appointment_id: str | None = None
    remote_patient_id: str | None = None
    error: str | None = None
    error_category: str | None = None
    fatal: bool = False
    warnings: list[str] = Field(default_factory=list)
