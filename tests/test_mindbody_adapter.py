"""Tests for MindbodyAdapter against a fake Mindbody Public API v6."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from emr_sync.adapters.mindbody import MindbodyAdapter, normalize_phone
from emr_sync.errors import AuthenticationFailed, RemoteBusinessError
from emr_sync.models import BookingParams, BookingRequest, PatientData
from tests.helpers import MINDBODY_BASE, MINDBODY_CREDS

pytestmark = pytest.mark.unit

PREFIX = "/public/v6"
TOKEN = ("POST", f"{PREFIX}/usertoken/issue")


@pytest.fixture
def adapter(token_cache, remote, clock):
    remote.add(*TOKEN, (200, {"AccessToken": "mb-token", "ExpiresIn": 3600}))
    return MindbodyAdapter(
        token_cache,
        transport=remote.transport,
        clock=clock,
        default_base_url=MINDBODY_BASE,
    )


def _patient(**overrides) -> PatientData:
    base = {
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane.doe@example.com",
        "phone": "+1 (555) 123-4567",
    }
    base.update(overrides)
    return PatientData(**base)


# ---------------------------------------------------------------------------
# authentication and check_credentials()
# ---------------------------------------------------------------------------


class TestCheckCredentials:
    async def test_ok_sends_site_and_api_key(self, adapter, remote):
        remote.add("GET", f"{PREFIX}/site/sites", (200, {"Sites": [{"Id": 12345}]}))

        result = await adapter.check_credentials(MINDBODY_CREDS)

        assert result.ok is True
        token_req = remote.calls(*TOKEN)[0]
        assert token_req.headers["Api-Key"] == "mb-api-key"
        assert token_req.headers["SiteId"] == "12345"
        assert json.loads(token_req.content) == {"Username": "frontdesk", "Password": "mb-pass"}
        sites_req = remote.calls("GET", f"{PREFIX}/site/sites")[0]
        assert sites_req.headers["Authorization"] == "Bearer mb-token"

    async def test_default_site_id(self, adapter, remote):
        remote.add("GET", f"{PREFIX}/site/sites", (200, {"Sites": []}))
        creds = {k: v for k, v in MINDBODY_CREDS.items() if k != "siteId"}

        await adapter.check_credentials(creds)

        assert remote.calls(*TOKEN)[0].headers["SiteId"] == "-99"

    async def test_failing_site_call_fails_check(self, adapter, remote):
        remote.add("GET", f"{PREFIX}/site/sites", (500, {"Error": {"Message": "Site offline"}}))
        result = await adapter.check_credentials(MINDBODY_CREDS)
        assert result.ok is False
        assert result.message == "Site offline"

    async def test_missing_access_token(self, adapter, remote):
        remote.add(*TOKEN, (200, {}))
        result = await adapter.check_credentials(MINDBODY_CREDS)
        assert result.ok is False
        assert "No access token" in result.message

    async def test_bad_password(self, adapter, remote):
        remote.add(*TOKEN, (400, {"Error": {"Message": "Invalid credentials", "Code": "DeniedAccess"}}))
        result = await adapter.check_credentials(MINDBODY_CREDS)
        assert result.ok is False
        assert result.message == "Mindbody authentication failed: Invalid credentials"

    async def test_token_key_includes_site(self, adapter):
        assert adapter.token_key(MINDBODY_CREDS) == (MINDBODY_BASE, "12345:frontdesk")


# ---------------------------------------------------------------------------
# clients
# ---------------------------------------------------------------------------


class TestFindOrCreateClient:
    async def test_found_by_email(self, adapter, remote):
        remote.add("GET", f"{PREFIX}/client/clients", (200, {"Clients": [
            {"Id": "100", "Email": "Jane.Doe@example.com"},
        ]}))

        assert await adapter.find_or_create_patient(MINDBODY_CREDS, _patient()) == "100"
        req = remote.calls("GET", f"{PREFIX}/client/clients")[0]
        assert req.url.params["SearchText"] == "jane.doe@example.com"

    async def test_search_text_partial_match_is_not_a_match(self, adapter, remote):
        remote.add("GET", f"{PREFIX}/client/clients", (200, {"Clients": [
            {"Id": "100", "Email": "jane.doe@example.co"},
        ]}))
        remote.add("POST", f"{PREFIX}/client/addclient", (200, {"Client": {"Id": "200"}}))

        assert await adapter.find_or_create_patient(MINDBODY_CREDS, _patient()) == "200"

    async def test_create_payload(self, adapter, remote):
        remote.add("GET", f"{PREFIX}/client/clients", (200, {"Clients": []}))
        remote.add("POST", f"{PREFIX}/client/addclient", (200, {"Clients": [{"ID": 300}]}))

        remote_id = await adapter.find_or_create_patient(
            MINDBODY_CREDS, _patient(date_of_birth="1990-02-03")
        )

        assert remote_id == "300"
        body = json.loads(remote.calls("POST", f"{PREFIX}/client/addclient")[0].content)
        assert body == {
            "FirstName": "Jane",
            "LastName": "Doe",
            "Email": "jane.doe@example.com",
            "SendAccountEmails": False,
            "SendScheduleEmails": False,
            "MobilePhone": "+15551234567",
            "BirthDate": "1990-02-03",
        }

    async def test_create_without_id(self, adapter, remote):
        remote.add("GET", f"{PREFIX}/client/clients", (200, {"Clients": []}))
        remote.add("POST", f"{PREFIX}/client/addclient", (200, {"Client": {}}))
        with pytest.raises(RemoteBusinessError):
            await adapter.find_or_create_patient(MINDBODY_CREDS, _patient())


# ---------------------------------------------------------------------------
# booking defaults and booking
# ---------------------------------------------------------------------------


class TestBooking:
    async def test_resolve_defaults(self, adapter, remote):
        remote.add("GET", f"{PREFIX}/staff/staff", (200, {"StaffMembers": [{"Id": 7}, {"Id": 8}]}))
        remote.add("GET", f"{PREFIX}/site/locations", (200, {"Locations": [{"Id": 1}]}))
        remote.add("GET", f"{PREFIX}/site/sessiontypes", (200, {"SessionTypes": [
            {"Id": 20, "Name": "Massage"},
            {"Id": 21, "Name": "Botox CONSULT"},
        ]}))

        params = await adapter.resolve_booking_params(MINDBODY_CREDS, BookingParams())

        assert params == BookingParams(provider_id="7", location_id="1", appointment_type_id="21")

    async def test_book_sends_numeric_ids(self, adapter, remote):
        remote.add("POST", f"{PREFIX}/appointment/addappointment", (200, {"Appointment": {"Id": 999}}))

        result = await adapter.book_appointment(
            MINDBODY_CREDS,
            BookingRequest(
                patient_id="100",
                params=BookingParams(provider_id="7", location_id="1", appointment_type_id="21"),
                start_at=datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc),
            ),
        )

        assert result.success is True
        assert result.remote_appointment_id == "999"
        body = json.loads(remote.calls("POST", f"{PREFIX}/appointment/addappointment")[0].content)
        assert body == {
            "ClientId": "100",
            "StaffId": 7,
            "LocationId": 1,
            "SessionTypeId": 21,
            "StartDateTime": "2026-03-01T15:00:00+00:00",
        }

    async def test_book_business_error_message(self, adapter, remote):
        remote.add(
            "POST",
            f"{PREFIX}/appointment/addappointment",
            (400, {"Error": {"Message": "Staff unavailable"}}),
        )
        result = await adapter.book_appointment(
            MINDBODY_CREDS,
            BookingRequest(
                patient_id="100",
                params=BookingParams(provider_id="7", location_id="1", appointment_type_id="21"),
                start_at=datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc),
            ),
        )
        assert result.success is False
        assert result.error == "Mindbody booking failed: Staff unavailable"

    async def test_book_auth_failure_propagates(self, adapter, remote):
        remote.add("POST", f"{PREFIX}/appointment/addappointment", (401, {"Message": "Token expired"}))
        with pytest.raises(AuthenticationFailed):
            await adapter.book_appointment(
                MINDBODY_CREDS,
                BookingRequest(
                    patient_id="100",
                    params=BookingParams(provider_id="7", location_id="1", appointment_type_id="21"),
                    start_at=datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc),
                ),
            )


@pytest.mark.parametrize("raw,expected", [
    ("+1 (555) 123-4567", "+15551234567"),
    ("555.123.4567", "5551234567"),
    ("", None),
    (None, None),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


async def test_unreachable_host_is_reported(token_cache, clock):
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    adapter = MindbodyAdapter(
        token_cache, transport=httpx.MockTransport(refuse), clock=clock, default_base_url=MINDBODY_BASE
    )
    result = await adapter.check_credentials(MINDBODY_CREDS)
    assert result.ok is False
