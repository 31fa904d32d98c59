"""ModMed adapter (OAuth client-credentials grant, snake_case payloads)."""

from __future__ import annotations

from datetime import datetime
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

# kind -> (path, fallback collection key when not wrapped in "data")
_LISTS = {
    PROVIDERS: ("/providers", "providers"),
    LOCATIONS: ("/locations", "locations"),
    APPOINTMENT_TYPES: ("/appointment-types", "appointmentTypes"),
}


def _unwrap(payload: Any) -> Any:
    """ModMed wraps most bodies in {"data": ...}."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _id_of(record: Any) -> str | None:
    if isinstance(record, dict) and record.get("id") not in (None, ""):
        return str(record["id"])
    return None


class ModMedAdapter(EMRAdapter):
    provider = Provider.MODMED
    display_name = "ModMed"

    def base_url(self, credentials: Credentials) -> str:
        return str(credentials.get("baseUrl", "")).rstrip("/")

    def token_key(self, credentials: Credentials) -> TokenKey:
        # Token scope follows the client identity, not the patient.
        return (self.base_url(credentials), str(credentials.get("clientId", "")))

    def _auth_headers(self, credentials: Credentials, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    async def _issue_token(
        self, client: httpx.AsyncClient, credentials: Credentials
    ) -> tuple[str, datetime]:
        data = await self._send(
            client,
            "POST",
            "/oauth/token",
            auth_request=True,
            json={
                "grant_type": "client_credentials",
                "client_id": str(credentials.get("clientId", "")),
                "client_secret": str(credentials.get("clientSecret", "")),
            },
        )
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationFailed("No access token received from ModMed")
        return token, self._expires_at(data.get("expires_in"))

    async def _probe(self, client: httpx.AsyncClient, credentials: Credentials) -> None:
        await self._authed(client, credentials, "GET", "/providers", params={"limit": 1})

    # -- patients --------------------------------------------------------------

    async def _search_patients(
        self, client: httpx.AsyncClient, credentials: Credentials, email: str
    ) -> list[dict[str, Any]]:
        data = await self._authed(
            client, credentials, "GET", "/patients", params={"email": email}
        )
        patients = _unwrap(data)
        if isinstance(patients, dict):
            patients = patients.get("patients")
        return patients if isinstance(patients, list) else []

    def _patient_fields(self, record: dict[str, Any]) -> tuple[str | None, str | None]:
        return _id_of(record), record.get("email")

    async def _create_patient(
        self,
        client: httpx.AsyncClient,
        credentials: Credentials,
        patient: PatientData,
    ) -> str:
        body: dict[str, Any] = {
            "first_name": patient.first_name,
            "last_name": patient.last_name,
            "email": patient.email,
        }
        if patient.phone:
            body["phone"] = patient.phone
        if patient.date_of_birth:
            body["date_of_birth"] = patient.date_of_birth.isoformat()

        data = await self._authed(client, credentials, "POST", "/patients", json=body)
        remote_id = _id_of(_unwrap(data))
        if not remote_id:
            raise RemoteBusinessError("No patient ID returned from ModMed")
        return remote_id

    # -- booking defaults ------------------------------------------------------------

    async def _list(
        self, client: httpx.AsyncClient, credentials: Credentials, kind: str
    ) -> list[dict[str, Any]]:
        path, key = _LISTS[kind]
        data = await self._authed(client, credentials, "GET", path)
        entries = _unwrap(data)
        if isinstance(entries, dict):
            entries = entries.get(key)
        return entries if isinstance(entries, list) else []

    def _entry_id(self, entry: dict[str, Any], kind: str) -> str | None:
        return _id_of(entry)

    def _entry_name(self, entry: dict[str, Any]) -> str:
        return str(entry.get("name") or "")

    # -- booking -----------------------------------------------------------------

    def _booking_call(
        self, credentials: Credentials, request: BookingRequest
    ) -> tuple[str, dict[str, Any]]:
        params = request.params
        body: dict[str, Any] = {
            "patient_id": request.patient_id,
            "provider_id": params.provider_id,
            "location_id": params.location_id,
            "appointment_type_id": params.appointment_type_id,
            "start_date_time": request.start_at.isoformat(),
            "duration": request.duration_minutes,
            "status": "scheduled",
        }
        if request.notes:
            body["notes"] = request.notes
        return "/appointments", body

    def _booked_id(self, payload: Any) -> str | None:
        return _id_of(_unwrap(payload))
