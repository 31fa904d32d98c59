"""FastAPI server exposing credential CRUD and appointment sync."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pythonjsonlogger.json import JsonFormatter

from emr_sync.config import get_settings
from emr_sync.errors import (
    ConfigurationError,
    DuplicateCredential,
    EMRSyncError,
    Forbidden,
    NotFound,
    ValidationFailed,
)
from emr_sync.models import CredentialPatch, CredentialRecord, Provider
from emr_sync.services import Services, get_services

# -- logging config ------------------------------------------------------------

_json_formatter = JsonFormatter(
    fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
    rename_fields={"asctime": "timestamp", "levelname": "level"},
)

_handler = logging.StreamHandler()
_handler.setFormatter(_json_formatter)

logging.root.handlers.clear()
logging.root.addHandler(_handler)
logging.root.setLevel(get_settings().log_level.upper())

logger = logging.getLogger(__name__)

# -- app -----------------------------------------------------------------------

app = FastAPI(title="EMR Sync", version="0.1.0")

_settings = get_settings()
_cors_origins = [o.strip() for o in _settings.cors_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -- auth middleware -----------------------------------------------------------


@app.middleware("http")
async def check_api_key(request: Request, call_next):
    """Enforce API key auth when API_KEY is configured."""
    # CORS preflight requests never carry custom auth headers.
    if request.method == "OPTIONS":
        return await call_next(request)

    settings = get_settings()
    if settings.api_key and request.url.path not in ("/health",):
        key = request.headers.get("X-API-Key", "")
        if key != settings.api_key:
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})
    return await call_next(request)


# -- error mapping -------------------------------------------------------------

_STATUS_BY_ERROR: list[tuple[type[EMRSyncError], int]] = [
    (Forbidden, 403),
    (NotFound, 404),
    (ValidationFailed, 400),
    (DuplicateCredential, 400),
    (ConfigurationError, 500),
]


@app.exception_handler(EMRSyncError)
async def emr_error_handler(request: Request, exc: EMRSyncError):
    status = next(
        (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 502
    )
    content: dict[str, Any] = {"detail": exc.message, "category": exc.category}
    if isinstance(exc, ValidationFailed) and exc.field:
        content["field"] = exc.field
    if status >= 500:
        logger.error("Request failed: %s", exc.message)
    return JSONResponse(status_code=status, content=content)


# -- requester -----------------------------------------------------------------


class Requester(BaseModel):
    id: str
    role: str = "USER"

    @property
    def is_admin(self) -> bool:
        return self.role.upper() == "ADMIN"


async def get_requester(
    x_user_id: str | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Requester:
    """Identity asserted by the upstream gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id")
    return Requester(id=x_user_id, role=x_user_role or "USER")


def ensure_access(record: CredentialRecord, requester: Requester) -> None:
    if record.owner_id != requester.id and not requester.is_admin:
        raise Forbidden("Not allowed")


# -- request models ------------------------------------------------------------


class CheckCredentialRequest(BaseModel):
    provider: Provider
    credentials: dict[str, Any]


class CreateCredentialRequest(BaseModel):
    provider: Provider
    label: str | None = None
    credentials: dict[str, Any]


# -- endpoints -----------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "ok", "version": "0.1.0"}


@app.post("/api/emr-credentials", status_code=201)
async def create_credential(
    req: CreateCredentialRequest,
    requester: Requester = Depends(get_requester),
    services: Services = Depends(get_services),
):
    record = await services.vault.create(
        owner_id=requester.id,
        provider=req.provider,
        raw_credentials=req.credentials,
        label=req.label,
    )
    return record.public_view()


@app.post("/api/emr-credentials/check")
async def check_credential(
    req: CheckCredentialRequest,
    requester: Requester = Depends(get_requester),
    services: Services = Depends(get_services),
):
    """Validate a credential set without storing it."""
    result = await services.vault.check(req.provider, req.credentials)
    return result.model_dump()


@app.get("/api/emr-credentials")
async def list_credentials(
    requester: Requester = Depends(get_requester),
    services: Services = Depends(get_services),
):
    if not requester.is_admin:
        raise Forbidden("Admins only")
    return [r.public_view() for r in await services.vault.list_all()]


@app.get("/api/emr-credentials/mine")
async def list_my_credentials(
    requester: Requester = Depends(get_requester),
    services: Services = Depends(get_services),
):
    return [r.public_view() for r in await services.vault.list_by_owner(requester.id)]


@app.get("/api/emr-credentials/{credential_id}")
async def get_credential(
    credential_id: str,
    requester: Requester = Depends(get_requester),
    services: Services = Depends(get_services),
):
    record = await services.vault.get(credential_id)
    ensure_access(record, requester)
    return record.public_view()


@app.patch("/api/emr-credentials/{credential_id}")
async def update_credential(
    credential_id: str,
    patch: CredentialPatch,
    requester: Requester = Depends(get_requester),
    services: Services = Depends(get_services),
):
    ensure_access(await services.vault.get(credential_id), requester)
    record = await services.vault.update(credential_id, patch)
    return record.public_view()


@app.delete("/api/emr-credentials/{credential_id}")
async def delete_credential(
    credential_id: str,
    requester: Requester = Depends(get_requester),
    services: Services = Depends(get_services),
):
    ensure_access(await services.vault.get(credential_id), requester)
    await services.vault.delete(credential_id)
    return {"success": True}


@app.post("/api/appointments/{appointment_id}/emr-sync")
async def sync_appointment(
    appointment_id: str,
    provider: Provider | None = None,
    services: Services = Depends(get_services),
):
    outcome = await services.orchestrator.sync_appointment(appointment_id, provider)
    return outcome.model_dump(mode="json")
