"""Mindbody Public API v6 adapter (PascalCase payloads, user-token auth)."""

from __future__ import annotations

import re
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

DEFAULT_BASE_URL = "https://api.mindbodyonline.com/public/v6"

# kind -> (path, collection key)
_LISTS = {
    PROVIDERS: ("staff/staff", "StaffMembers"),
    LOCATIONS: ("site/locations", "Locations"),
    APPOINTMENT_TYPES: ("site/sessiontypes", "SessionTypes"),
}


def normalize_phone(phone: str | None) -> str | None:
    """Keep digits and a leading plus."""
    if not phone:
        return None
    cleaned = re.sub(r"[^+\d]", "", phone)
    return cleaned or None


def _numeric(value: str) -> int | str:
    return int(value) if value.isdigit() else value


def _record_id(record: dict[str, Any]) -> str | None:
    value = record.get("Id", record.get("ID"))
    return str(value) if value not in (None, "") else None


class MindbodyAdapter(EMRAdapter):
    provider = Provider.MINDBODY
    display_name = "Mindbody"

    def __init__(
        self,
        *args: Any,
        default_base_url: str = DEFAULT_BASE_URL,
        default_site_id: str = "-99",
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self.default_base_url = default_base_url
        self.default_site_id = default_site_id

    def base_url(self, credentials: Credentials) -> str:
        return str(credentials.get("baseUrl") or self.default_base_url).rstrip("/")

    def _site_id(self, credentials: Credentials) -> str:
        site_id = credentials.get("siteId")
        return str(site_id) if site_id not in (None, "") else self.default_site_id

    def token_key(self, credentials: Credentials) -> TokenKey:
        return (
            self.base_url(credentials),
            f"{self._site_id(credentials)}:{credentials.get('username', '')}",
        )

    def _base_headers(self, credentials: Credentials) -> dict[str, str]:
        return {
            "Api-Key": str(credentials.get("apiKey", "")),
            "SiteId": self._site_id(credentials),
        }

    def _auth_headers(self, credentials: Credentials, token: str) -> dict[str, str]:
        return {**self._base_headers(credentials), "Authorization": f"Bearer {token}"}

    def _error_message(self, payload: Any) -> str | None:
        if isinstance(payload, dict):
            error = payload.get("Error")
            if isinstance(error, dict) and error.get("Message"):
                return str(error["Message"])
            if payload.get("Message"):
                return str(payload["Message"])
        return super()._error_message(payload)

    async def _issue_token(
        self, client: httpx.AsyncClient, credentials: Credentials
    ) -> tuple[str, datetime]:
        data = await self._send(
            client,
            "POST",
            "usertoken/issue",
            auth_request=True,
            headers=self._base_headers(credentials),
            json={
                "Username": str(credentials.get("username", "")),
                "Password": str(credentials.get("password", "")),
            },
        )
        token = data.get("AccessToken") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationFailed(
                "Mindbody authentication failed: No access token received"
            )
        return token, self._expires_at(data.get("ExpiresIn"))

    async def _probe(self, client: httpx.AsyncClient, credentials: Credentials) -> None:
        await self._authed(client, credentials, "GET", "site/sites")

    # -- clients ---------------------------------------------------------------

    async def _search_patients(
        self, client: httpx.AsyncClient, credentials: Credentials, email: str
    ) -> list[dict[str, Any]]:
        data = await self._authed(
            client, credentials, "GET", "client/clients", params={"SearchText": email}
        )
        clients = data.get("Clients") if isinstance(data, dict) else None
        return clients if isinstance(clients, list) else []

    def _patient_fields(self, record: dict[str, Any]) -> tuple[str | None, str | None]:
        return _record_id(record), record.get("Email")

    async def _create_patient(
        self,
        client: httpx.AsyncClient,
        credentials: Credentials,
        patient: PatientData,
    ) -> str:
        body: dict[str, Any] = {
            "FirstName": patient.first_name or "Client",
            "LastName": patient.last_name or "Unknown",
            "Email": patient.email,
            "SendAccountEmails": False,
            "SendScheduleEmails": False,
        }
        phone = normalize_phone(patient.phone)
        if phone:
            body["MobilePhone"] = phone
        if patient.date_of_birth:
            body["BirthDate"] = patient.date_of_birth.isoformat()

        data = await self._authed(client, credentials, "POST", "client/addclient", json=body)
        created = data.get("Client") if isinstance(data, dict) else None
        if created is None and isinstance(data, dict) and data.get("Clients"):
            created = data["Clients"][0]
        remote_id = _record_id(created) if isinstance(created, dict) else None
        if not remote_id:
            raise RemoteBusinessError("Mindbody returned no client ID")
        return remote_id

    # -- booking defaults ----------------------------------------------------------

    async def _list(
        self, client: httpx.AsyncClient, credentials: Credentials, kind: str
    ) -> list[dict[str, Any]]:
        path, key = _LISTS[kind]
        data = await self._authed(client, credentials, "GET", path)
        entries = data.get(key) if isinstance(data, dict) else None
        return entries if isinstance(entries, list) else []

    def _entry_id(self, entry: dict[str, Any], kind: str) -> str | None:
        return _record_id(entry)

    def _entry_name(self, entry: dict[str, Any]) -> str:
        return str(entry.get("Name") or "")

    # -- booking ---------------------------------------------------------------

    def _booking_call(
        self, credentials: Credentials, request: BookingRequest
    ) -> tuple[str, dict[str, Any]]:
        params = request.params
        body: dict[str, Any] = {
            "ClientId": request.patient_id,
            "StaffId": _numeric(str(params.provider_id)),
            "LocationId": _numeric(str(params.location_id)),
            "SessionTypeId": _numeric(str(params.appointment_type_id)),
            "StartDateTime": request.start_at.isoformat(),
        }
        if request.notes:
            body["Notes"] = request.notes
        return "appointment/addappointment", body

    def _booked_id(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        appointment = payload.get("Appointment")
        if appointment is None and payload.get("Appointments"):
            appointment = payload["Appointments"][0]
        if not isinstance(appointment, dict):
            return None
        value = appointment.get("Id", appointment.get("AppointmentId", appointment.get("ID")))
        return str(value) if value not in (None, "") else None
