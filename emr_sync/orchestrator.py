"""Booking orchestrator: best-effort push of a local appointment to its EMR.

The local appointment is already committed when ``sync_appointment`` runs;
nothing here rolls it back. Each attempt ends in exactly one outcome:

    ResolveCredential -> DecryptCredential -> EnsureRemotePatient
        -> ResolveBookingParams -> Book

and stops at the first definitive result. No retries happen inside the core.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from emr_sync.adapters.base import EMRAdapter
from emr_sync.config_data.loader import SchemaCapabilities, get_provider_table
from emr_sync.errors import (
    AuthenticationFailed,
    DecryptionFailed,
    EMRSyncError,
    NotFound,
)
from emr_sync.models import (
    Appointment,
    BookingParams,
    BookingRequest,
    CredentialRecord,
    Patient,
    PatientData,
    Provider,
    SyncOutcome,
    SyncStatus,
)
from emr_sync.store import AppointmentStore, PatientStore, PracticeConfigStore
from emr_sync.vault import CredentialVault

logger = logging.getLogger(__name__)

APPOINTMENT_LINK_FIELD = "emr_appointment_id"


def _text(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def embedded_booking_defaults(
    provider: Provider, credentials: Mapping[str, Any]
) -> BookingParams:
    """Booking defaults some practices store inside the credential blob."""
    keys = get_provider_table().rules_for(provider).booking_default_keys
    return BookingParams(
        **{field: _text(credentials.get(key)) for field, key in keys.items()}
    )


class BookingOrchestrator:
    def __init__(
        self,
        vault: CredentialVault,
        adapters: Mapping[Provider, EMRAdapter],
        patients: PatientStore,
        appointments: AppointmentStore,
        practices: PracticeConfigStore,
        capabilities: SchemaCapabilities,
    ) -> None:
        self.vault = vault
        self.adapters = adapters
        self.patients = patients
        self.appointments = appointments
        self.practices = practices
        self.capabilities = capabilities

    async def _resolve_credential(
        self, practice_id: str, provider: Provider | None
    ) -> CredentialRecord | None:
        if provider is not None:
            return await self.vault.find_active(practice_id, provider)
        for record in await self.vault.list_by_owner(practice_id):
            if record.is_valid and record.provider in self.adapters:
                return record
        return None

    async def _ensure_remote_patient(
        self,
        adapter: EMRAdapter,
        credentials: dict[str, Any],
        patient: Patient,
        warnings: list[str],
    ) -> str:
        link_field = self.capabilities.link_field(adapter.provider)
        existing = getattr(patient, link_field, None) if link_field else None
        if existing:
            return existing

        remote_id = await adapter.find_or_create_patient(
            credentials, PatientData.from_patient(patient)
        )
        if not link_field:
            logger.info(
                "No %s link field in schema v%s; remote patient id not persisted",
                adapter.provider.value,
                self.capabilities.version,
            )
            return remote_id

        stored = await self.patients.set_external_id_if_absent(
            patient.id, link_field, remote_id
        )
        if stored != remote_id:
            logger.warning(
                "link_conflict",
                extra={
                    "patient_id": patient.id,
                    "provider": adapter.provider.value,
                    "stored_remote_id": stored,
                    "found_remote_id": remote_id,
                },
            )
            warnings.append(
                f"link_conflict: patient already linked to {stored}, remote returned {remote_id}"
            )
        return stored

    async def _resolve_params(
        self,
        adapter: EMRAdapter,
        credentials: dict[str, Any],
        practice_id: str,
    ) -> BookingParams:
        stored = await self.practices.get_booking_config(practice_id, adapter.provider)
        params = BookingParams(**stored.model_dump()) if stored else BookingParams()
        params = params.merged_with(
            embedded_booking_defaults(adapter.provider, credentials)
        )
        if params.missing():
            params = await adapter.resolve_booking_params(credentials, params)
        return params

    async def sync_appointment(
        self, appointment_id: str, provider: Provider | None = None
    ) -> SyncOutcome:
        """Try to book ``appointment_id`` in the practice's EMR."""
        appointment = await self.appointments.get(appointment_id)
        if appointment is None:
            raise NotFound("Appointment not found")

        # ResolveCredential
        record = await self._resolve_credential(appointment.practice_id, provider)
        if record is None:
            logger.info(
                "No active EMR credentials for practice %s; skipping sync",
                appointment.practice_id,
            )
            return SyncOutcome(status=SyncStatus.SKIPPED, provider=provider)

        adapter = self.adapters.get(record.provider)
        if adapter is None:
            logger.info("No booking adapter for %s; skipping sync", record.provider.value)
            return SyncOutcome(
                status=SyncStatus.SKIPPED,
                provider=record.provider,
                error=f"No booking adapter for {record.provider.value}",
            )

        # DecryptCredential
        try:
            credentials = self.vault.reveal(record)
        except DecryptionFailed as exc:
            logger.error(
                "emr_sync_decryption_failed",
                extra={
                    "appointment_id": appointment.id,
                    "credential_id": record.id,
                    "provider": record.provider.value,
                    "error_category": exc.category,
                    "error_msg": exc.message,
                },
            )
            return SyncOutcome(
                status=SyncStatus.FAILED,
                provider=record.provider,
                error=exc.message,
                error_category=exc.category,
                fatal=True,
            )

        return await self._push(adapter, record, credentials, appointment)

    async def _push(
        self,
        adapter: EMRAdapter,
        record: CredentialRecord,
        credentials: dict[str, Any],
        appointment: Appointment,
    ) -> SyncOutcome:
        provider = record.provider
        warnings: list[str] = []
        remote_patient_id: str | None = None
        try:
            patient = await self.patients.get(appointment.patient_id)
            if patient is None:
                raise NotFound(f"Patient {appointment.patient_id} not found")

            # EnsureRemotePatient
            remote_patient_id = await self._ensure_remote_patient(
                adapter, credentials, patient, warnings
            )
            # ResolveBookingParams
            params = await self._resolve_params(
                adapter, credentials, appointment.practice_id
            )
            # Book
            result = await adapter.book_appointment(
                credentials,
                BookingRequest(
                    patient_id=remote_patient_id,
                    params=params,
                    start_at=appointment.start_at,
                    duration_minutes=appointment.duration_minutes,
                    notes=appointment.notes,
                ),
            )
        except AuthenticationFailed as exc:
            logger.error(
                "emr_sync_auth_failed",
                extra={
                    "appointment_id": appointment.id,
                    "credential_id": record.id,
                    "provider": provider.value,
                    "error_category": exc.category,
                    "error_msg": exc.message,
                },
            )
            await self.vault.mark_invalid(record.id, exc.message)
            return SyncOutcome(
                status=SyncStatus.FAILED,
                provider=provider,
                remote_patient_id=remote_patient_id,
                error=exc.message,
                error_category=exc.category,
                fatal=True,
                warnings=warnings,
            )
        except EMRSyncError as exc:
            logger.warning(
                "emr_sync_failed",
                extra={
                    "appointment_id": appointment.id,
                    "provider": provider.value,
                    "error_category": exc.category,
                    "error_msg": exc.message,
                },
            )
            return SyncOutcome(
                status=SyncStatus.FAILED,
                provider=provider,
                remote_patient_id=remote_patient_id,
                error=exc.message,
                error_category=exc.category,
                warnings=warnings,
            )

        if not result.success:
            logger.warning(
                "emr_sync_booking_failed",
                extra={
                    "appointment_id": appointment.id,
                    "provider": provider.value,
                    "error_msg": result.error,
                },
            )
            return SyncOutcome(
                status=SyncStatus.FAILED,
                provider=provider,
                remote_patient_id=remote_patient_id,
                error=result.error,
                error_category="remote_error",
                warnings=warnings,
            )

        if self.capabilities.supports_appointment_field(APPOINTMENT_LINK_FIELD):
            await self.appointments.update(
                appointment.id, **{APPOINTMENT_LINK_FIELD: result.remote_appointment_id}
            )
        else:
            warnings.append(
                f"{APPOINTMENT_LINK_FIELD} not writable in schema v{self.capabilities.version}"
            )

        logger.info(
            "emr_sync_booked",
            extra={
                "appointment_id": appointment.id,
                "provider": provider.value,
                "remote_appointment_id": result.remote_appointment_id,
            },
        )
        return SyncOutcome(
            status=SyncStatus.BOOKED,
            provider=provider,
            remote_appointment_id=result.remote_appointment_id,
            remote_patient_id=remote_patient_id,
            warnings=warnings,
        )
