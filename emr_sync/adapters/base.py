"""Common contract and HTTP plumbing shared by every EMR adapter.

Subclasses supply the provider-specific pieces (token grant, endpoint paths,
payload field names); the base class owns the behaviour that has to be the
same everywhere:

* token reuse through the injected :class:`~emr_sync.token_cache.TokenCache`
* mapping ``httpx`` failures onto the error taxonomy
* email-based find-or-create (never creates when the search itself failed)
* booking-default resolution with the "consult" tie-break
* ``book_appointment`` degrading business/transport failures to a result
  while letting authentication failures propagate
"""

from __future__ import annotations

import abc
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from emr_sync.adapters._logging import logged_call
from emr_sync.errors import (
    AuthenticationFailed,
    EMRSyncError,
    RemoteBusinessError,
    RemoteUnreachable,
    UnresolvableBookingParams,
    ValidationFailed,
)
from emr_sync.models import (
    BookingParams,
    BookingRequest,
    BookingResult,
    CheckResult,
    PatientData,
    Provider,
)
from emr_sync.token_cache import TokenCache, TokenKey

logger = logging.getLogger(__name__)

Credentials = dict[str, Any]

# Booking-default lists, in the order they are resolved.
PROVIDERS = "providers"
LOCATIONS = "locations"
APPOINTMENT_TYPES = "appointment_types"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {}


def pick_appointment_type(
    types: list[dict[str, Any]], name_of: Callable[[dict[str, Any]], str]
) -> dict[str, Any] | None:
    """Earliest type whose name mentions "consult", else the first one."""
    for entry in types:
        if "consult" in (name_of(entry) or "").lower():
            return entry
    return types[0] if types else None


class EMRAdapter(abc.ABC):
    """One EMR platform behind the common booking/credential-check contract."""

    provider: Provider
    display_name: str

    def __init__(
        self,
        token_cache: TokenCache,
        timeout: float = 15.0,
        default_token_ttl: int = 3600,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.token_cache = token_cache
        self.timeout = timeout
        self.default_token_ttl = default_token_ttl
        self._transport = transport
        self._clock = clock

    # -- provider hooks --------------------------------------------------------

    @abc.abstractmethod
    def base_url(self, credentials: Credentials) -> str:
        """Root URL all paths are resolved against."""

    @abc.abstractmethod
    def token_key(self, credentials: Credentials) -> TokenKey:
        """Cache key identifying whose token this is."""

    @abc.abstractmethod
    async def _issue_token(
        self, client: httpx.AsyncClient, credentials: Credentials
    ) -> tuple[str, datetime]:
        """Run the provider's auth flow; return ``(token, expires_at)``."""

    @abc.abstractmethod
    def _auth_headers(self, credentials: Credentials, token: str) -> dict[str, str]:
        """Headers for an authenticated call."""

    @abc.abstractmethod
    async def _probe(self, client: httpx.AsyncClient, credentials: Credentials) -> None:
        """One cheap authenticated read proving the token has access."""

    @abc.abstractmethod
    async def _search_patients(
        self, client: httpx.AsyncClient, credentials: Credentials, email: str
    ) -> list[dict[str, Any]]:
        """Remote patient records the search endpoint returns for ``email``."""

    @abc.abstractmethod
    async def _create_patient(
        self,
        client: httpx.AsyncClient,
        credentials: Credentials,
        patient: PatientData,
    ) -> str:
        """Create a remote patient and return its identifier."""

    @abc.abstractmethod
    def _patient_fields(self, record: dict[str, Any]) -> tuple[str | None, str | None]:
        """``(id, email)`` of a remote patient record."""

    @abc.abstractmethod
    async def _list(
        self, client: httpx.AsyncClient, credentials: Credentials, kind: str
    ) -> list[dict[str, Any]]:
        """Fetch one of the booking-default lists."""

    @abc.abstractmethod
    def _entry_id(self, entry: dict[str, Any], kind: str) -> str | None: ...

    @abc.abstractmethod
    def _entry_name(self, entry: dict[str, Any]) -> str: ...

    @abc.abstractmethod
    def _booking_call(
        self, credentials: Credentials, request: BookingRequest
    ) -> tuple[str, dict[str, Any]]:
        """``(path, json_body)`` of the booking request."""

    @abc.abstractmethod
    def _booked_id(self, payload: Any) -> str | None:
        """Remote appointment id from the booking response."""

    def _error_message(self, payload: Any) -> str | None:
        if not isinstance(payload, dict):
            return None
        for key in ("error_description", "error", "message"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    # -- HTTP plumbing -----------------------------------------------------------

    def _client(self, credentials: Credentials) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url(credentials),
            timeout=self.timeout,
            transport=self._transport,
        )

    def _expires_at(self, expires_in: Any) -> datetime:
        try:
            seconds = int(expires_in)
        except (TypeError, ValueError):
            seconds = self.default_token_ttl
        return self._clock() + timedelta(seconds=seconds)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        path: str,
        *,
        auth_request: bool = False,
        **kwargs: Any,
    ) -> Any:
        """Issue a request and return parsed JSON, raising taxonomy errors.

        With ``auth_request`` every 4xx counts as rejected identity
        (OAuth servers answer bad passwords with 400 ``invalid_grant``).
        """
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise RemoteUnreachable(
                f"{self.display_name} request timed out: {method} {path}"
            ) from exc
        except httpx.RequestError as exc:
            raise RemoteUnreachable(
                f"{self.display_name} network error: {exc}"
            ) from exc

        status = response.status_code
        if status < 400:
            return _safe_json(response)

        payload = _safe_json(response)
        detail = self._error_message(payload) or f"HTTP {status}"
        if status in (401, 403) or (auth_request and status < 500):
            raise AuthenticationFailed(
                f"{self.display_name} authentication failed: {detail}"
            )
        raise RemoteBusinessError(detail, status=status)

    async def access_token(
        self,
        client: httpx.AsyncClient,
        credentials: Credentials,
        fresh: bool = False,
    ) -> str:
        """Cached token for these credentials, authenticating when needed."""
        key = self.token_key(credentials)
        if not fresh:
            cached = self.token_cache.get(key)
            if cached:
                return cached
        token, expires_at = await self._issue_token(client, credentials)
        self.token_cache.put(key, token, expires_at)
        return token

    async def _authed(
        self,
        client: httpx.AsyncClient,
        credentials: Credentials,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> Any:
        token = await self.access_token(client, credentials)
        headers = {**self._auth_headers(credentials, token), **kwargs.pop("headers", {})}
        try:
            return await self._send(client, method, path, headers=headers, **kwargs)
        except AuthenticationFailed:
            self.token_cache.invalidate(self.token_key(credentials))
            raise

    # -- contract ------------------------------------------------------------------

    @logged_call
    async def check_credentials(self, raw: Credentials) -> CheckResult:
        """Authenticate from scratch and perform one low-cost read."""
        try:
            async with self._client(raw) as client:
                await self.access_token(client, raw, fresh=True)
                await self._probe(client, raw)
        except EMRSyncError as exc:
            logger.warning(
                "%s credential check failed: %s", self.display_name, exc.message
            )
            return CheckResult(ok=False, message=exc.message)
        return CheckResult(ok=True)

    @logged_call
    async def find_or_create_patient(
        self, credentials: Credentials, patient: PatientData
    ) -> str:
        """Return the remote id for ``patient.email``, creating it only if absent."""
        email = (patient.email or "").strip()
        if not email:
            raise ValidationFailed(
                "Patient email is required to match remote records", field="email"
            )

        async with self._client(credentials) as client:
            for record in await self._search_patients(client, credentials, email):
                remote_id, remote_email = self._patient_fields(record)
                if remote_id and (remote_email or "").strip().lower() == email.lower():
                    logger.info(
                        "Found existing %s patient %s", self.display_name, remote_id
                    )
                    return str(remote_id)

            remote_id = await self._create_patient(
                client, credentials, patient.model_copy(update={"email": email})
            )
            logger.info("Created %s patient %s", self.display_name, remote_id)
            return remote_id

    @logged_call
    async def resolve_booking_params(
        self, credentials: Credentials, partial: BookingParams
    ) -> BookingParams:
        """Fill missing booking parameters from the remote lists."""
        wanted = {
            PROVIDERS: not partial.provider_id,
            LOCATIONS: not partial.location_id,
            APPOINTMENT_TYPES: not partial.appointment_type_id,
        }
        kinds = [kind for kind, needed in wanted.items() if needed]
        if not kinds:
            return partial

        async with self._client(credentials) as client:
            lists = await asyncio.gather(
                *(self._list(client, credentials, kind) for kind in kinds),
                return_exceptions=True,
            )
        failures = [item for item in lists if isinstance(item, BaseException)]
        # Authentication failures win over any other list error.
        for failure in failures:
            if isinstance(failure, AuthenticationFailed):
                raise failure
        if failures:
            raise failures[0]
        fetched = dict(zip(kinds, lists))

        resolved: dict[str, str | None] = {}
        if PROVIDERS in fetched:
            entries = fetched[PROVIDERS]
            resolved["provider_id"] = (
                self._entry_id(entries[0], PROVIDERS) if entries else None
            )
        if LOCATIONS in fetched:
            entries = fetched[LOCATIONS]
            resolved["location_id"] = (
                self._entry_id(entries[0], LOCATIONS) if entries else None
            )
        if APPOINTMENT_TYPES in fetched:
            chosen = pick_appointment_type(fetched[APPOINTMENT_TYPES], self._entry_name)
            resolved["appointment_type_id"] = (
                self._entry_id(chosen, APPOINTMENT_TYPES) if chosen else None
            )

        result = partial.merged_with(BookingParams(**resolved))
        missing = result.missing()
        if missing:
            raise UnresolvableBookingParams(missing)

        logger.info(
            "Resolved %s booking params: provider=%s location=%s type=%s",
            self.display_name,
            result.provider_id,
            result.location_id,
            result.appointment_type_id,
        )
        return result

    @logged_call
    async def book_appointment(
        self, credentials: Credentials, request: BookingRequest
    ) -> BookingResult:
        """Book remotely; only authentication failures escape as exceptions."""
        missing = request.params.missing()
        if missing:
            return BookingResult(
                success=False,
                error=(
                    f"{self.display_name} booking requires all parameters. "
                    f"Missing: {', '.join(missing)}"
                ),
            )

        path, body = self._booking_call(credentials, request)
        try:
            async with self._client(credentials) as client:
                payload = await self._authed(client, credentials, "POST", path, json=body)
        except (RemoteUnreachable, RemoteBusinessError) as exc:
            return BookingResult(
                success=False, error=f"{self.display_name} booking failed: {exc.message}"
            )

        remote_id = self._booked_id(payload)
        if not remote_id:
            return BookingResult(
                success=False,
                error=f"{self.display_name} booking succeeded but no appointment ID returned",
            )
        return BookingResult(success=True, remote_appointment_id=str(remote_id))
