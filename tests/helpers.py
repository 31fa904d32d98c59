"""Shared test fixtures and helpers."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Callable, Union

import httpx

from emr_sync.models import Appointment, Patient

# -- credential sets -----------------------------------------------------------

MINDBODY_BASE = "https://mb.test/public/v6"
NEXTECH_BASE = "https://nextech.test"
MODMED_BASE = "https://modmed.test"
PATIENTNOW_BASE = "https://patientnow.test"

MINDBODY_CREDS = {
    "apiKey": "mb-api-key",
    "username": "frontdesk",
    "password": "mb-pass",
    "siteId": "12345",
}
NEXTECH_CREDS = {
    "baseUrl": NEXTECH_BASE,
    "username": "nx-user",
    "password": "nx-pass",
}
MODMED_CREDS = {
    "baseUrl": MODMED_BASE,
    "clientId": "mm-client",
    "clientSecret": "mm-secret",
}
PATIENTNOW_CREDS = {
    "baseUrl": PATIENTNOW_BASE,
    "apiKey": "pn-key",
}


# -- reusable data builders ----------------------------------------------------


def make_patient(**overrides: Any) -> Patient:
    """Build a local patient with sensible defaults."""
    base: dict[str, Any] = {
        "id": "patient-1",
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane.doe@example.com",
        "phone": "(555) 123-4567",
        "date_of_birth": date(1985, 4, 12),
    }
    base.update(overrides)
    return Patient(**base)


def make_appointment(**overrides: Any) -> Appointment:
    """Build a local appointment with sensible defaults."""
    base: dict[str, Any] = {
        "id": "appt-1",
        "patient_id": "patient-1",
        "practice_id": "practice-1",
        "start_at": datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc),
        "duration_minutes": 45,
        "notes": "Botox consult",
    }
    base.update(overrides)
    return Appointment(**base)


# -- fake remote EMR -----------------------------------------------------------

Route = Union[
    tuple[int, Any],
    Callable[[httpx.Request], httpx.Response],
    Exception,
]


class FakeRemote:
    """Routes requests by ``(method, path)`` to canned replies and records them.

    A route is ``(status, json_body)``, a callable receiving the request, or an
    exception instance to raise (e.g. ``httpx.ConnectTimeout``). Unrouted
    requests get a 404.
    """

    def __init__(self, routes: dict[tuple[str, str], Route] | None = None) -> None:
        self.routes: dict[tuple[str, str], Route] = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, route: Route) -> None:
        self.routes[(method, path)] = route

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"message": "not routed"})
        if isinstance(route, Exception):
            raise route
        if callable(route):
            return route(request)
        status, body = route
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if (method is None or r.method == method)
            and (path is None or r.url.path == path)
        ]

    def count(self, method: str | None = None, path: str | None = None) -> int:
        return len(self.calls(method, path))
