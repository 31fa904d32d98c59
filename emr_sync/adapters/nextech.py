"""Nextech adapter (OAuth resource-owner password grant, snake_case payloads)."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

import httpx

from emr_sync.adapters.base import (
    APPOINTMENT_TYPES,
    LOCATIONS,
    PROVIDERS,
    Credentials,
    EMRAdapter,
)
from emr_sync.errors import AuthenticationFailed, RemoteBusinessError
from emr_sync.models import BookingRequest, PatientData, Provider
from emr_sync.token_cache import TokenKey

# kind -> (path, collection key, id key)
_LISTS = {
    PROVIDERS: ("/api/v1/providers", "providers", "provider_id"),
    LOCATIONS: ("/api/v1/locations", "locations", "location_id"),
    APPOINTMENT_TYPES: (
        "/api/v1/appointment-types",
        "appointment_types",
        "appointment_type_id",
    ),
}


def normalize_phone(phone: str | None) -> str:
    """Digits only."""
    if not phone:
        return ""
    return re.sub(r"\D", "", phone)


def format_birth_date(value: date | None) -> str | None:
    return value.strftime("%Y-%m-%d") if value else None


def _first_id(record: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return str(value)
    return None


class NextechAdapter(EMRAdapter):
    provider = Provider.NEXTECH
    display_name = "Nextech"

    def base_url(self, credentials: Credentials) -> str:
        return str(credentials.get("baseUrl", "")).rstrip("/")

    def token_key(self, credentials: Credentials) -> TokenKey:
        return (self.base_url(credentials), str(credentials.get("username", "")))

    def _auth_headers(self, credentials: Credentials, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def _issue_token(
        self, client: httpx.AsyncClient, credentials: Credentials
    ) -> tuple[str, datetime]:
        form = {
            "grant_type": "password",
            "username": str(credentials.get("username", "")),
            "password": str(credentials.get("password", "")),
        }
        if credentials.get("practiceId"):
            form["practice_id"] = str(credentials["practiceId"])

        data = await self._send(
            client, "POST", "/oauth/token", auth_request=True, data=form
        )
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationFailed("No access token received from Nextech")
        return token, self._expires_at(data.get("expires_in"))

    async def _probe(self, client: httpx.AsyncClient, credentials: Credentials) -> None:
        await self._authed(client, credentials, "GET", "/api/v1/providers")

    # -- patients --------------------------------------------------------------

    async def _search_patients(
        self, client: httpx.AsyncClient, credentials: Credentials, email: str
    ) -> list[dict[str, Any]]:
        data = await self._authed(
            client, credentials, "GET", "/api/v1/patients", params={"email": email}
        )
        patients = data.get("patients") if isinstance(data, dict) else None
        return patients if isinstance(patients, list) else []

    def _patient_fields(self, record: dict[str, Any]) -> tuple[str | None, str | None]:
        return _first_id(record, "patient_id", "id"), record.get("email")

    async def _create_patient(
        self,
        client: httpx.AsyncClient,
        credentials: Credentials,
        patient: PatientData,
    ) -> str:
        body: dict[str, Any] = {
            "first_name": patient.first_name or "Patient",
            "last_name": patient.last_name or "Unknown",
            "email": patient.email,
            "phone": normalize_phone(patient.phone),
        }
        birth_date = format_birth_date(patient.date_of_birth)
        if birth_date:
            body["date_of_birth"] = birth_date

        data = await self._authed(client, credentials, "POST", "/api/v1/patients", json=body)
        remote_id = _first_id(data, "patient_id", "id") if isinstance(data, dict) else None
        if not remote_id:
            raise RemoteBusinessError("No patient ID returned from Nextech")
        return remote_id

    # -- booking defaults ------------------------------------------------------------

    async def _list(
        self, client: httpx.AsyncClient, credentials: Credentials, kind: str
    ) -> list[dict[str, Any]]:
        path, key, _ = _LISTS[kind]
        data = await self._authed(client, credentials, "GET", path)
        entries = data.get(key) if isinstance(data, dict) else None
        return entries if isinstance(entries, list) else []

    def _entry_id(self, entry: dict[str, Any], kind: str) -> str | None:
        return _first_id(entry, _LISTS[kind][2], "id")

    def _entry_name(self, entry: dict[str, Any]) -> str:
        return str(entry.get("name") or entry.get("description") or "")

    # -- booking -----------------------------------------------------------------

    def _booking_call(
        self, credentials: Credentials, request: BookingRequest
    ) -> tuple[str, dict[str, Any]]:
        params = request.params
        return "/api/v1/appointments", {
            "patient_id": request.patient_id,
            "provider_id": params.provider_id,
            "location_id": params.location_id,
            "appointment_type_id": params.appointment_type_id,
            "start_date_time": request.start_at.isoformat(),
            "notes": request.notes or "",
        }

    def _booked_id(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        return _first_id(payload, "appointment_id", "id")
