"""Credential vault: validated, encrypted, de-duplicated EMR credential records.

The vault never decides who may see a record. ``owner_id`` is exposed on
every record so the HTTP layer can enforce owner-or-admin without ever
decrypting anything.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Protocol

import httpx

from emr_sync.config_data.loader import ProviderRules, get_provider_table
from emr_sync.errors import DuplicateCredential, NotFound, ValidationFailed
from emr_sync.models import (
    CheckResult,
    CredentialPatch,
    CredentialRecord,
    OwnerType,
    Provider,
    utcnow,
)
from emr_sync.secret_codec import SecretCodec, fingerprint
from emr_sync.store import CredentialStore

logger = logging.getLogger(__name__)


class CredentialChecker(Protocol):
    async def check_credentials(self, raw: dict[str, Any]) -> CheckResult: ...


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def require_fields(rules: ProviderRules, raw: Mapping[str, Any]) -> None:
    """Raise on the first required field that is absent or blank."""
    for name in rules.required_fields:
        if _is_blank(raw.get(name)):
            raise ValidationFailed(f"Missing required field: {name}", field=name)


class CredentialVault:
    """CRUD over encrypted credential records."""

    def __init__(
        self,
        store: CredentialStore,
        codec: SecretCodec,
        checkers: Mapping[Provider, CredentialChecker],
        reachability_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.codec = codec
        self.checkers = checkers
        self.reachability_timeout = reachability_timeout
        self._transport = transport
        self._clock = clock

    # -- validation ----------------------------------------------------------

    async def _probe_reachability(self, raw: Mapping[str, Any]) -> CheckResult:
        """GET the base URL; any 2xx-4xx answer counts as reachable."""
        base_url = raw.get("baseUrl")
        if not base_url:
            return CheckResult(ok=True)
        try:
            async with httpx.AsyncClient(
                timeout=self.reachability_timeout, transport=self._transport
            ) as client:
                response = await client.get(str(base_url))
        except httpx.HTTPError as exc:
            return CheckResult(ok=False, message=f"Failed to reach baseUrl: {exc}")
        if 200 <= response.status_code < 500:
            return CheckResult(ok=True)
        return CheckResult(
            ok=False, message=f"Endpoint responded with status {response.status_code}"
        )

    async def validate(self, provider: Provider, raw: Mapping[str, Any]) -> None:
        """Required fields, then a live check. Raises ``ValidationFailed``."""
        rules = get_provider_table().rules_for(provider)
        require_fields(rules, raw)

        checker = self.checkers.get(provider) if rules.has_adapter else None
        if checker is not None:
            result = await checker.check_credentials(dict(raw))
        else:
            result = await self._probe_reachability(raw)

        if not result.ok:
            logger.info("Credential validation failed for %s: %s", provider.value, result.message)
            raise ValidationFailed(
                f"Credential validation failed: {result.message or 'Unknown error'}",
                reason="reachability",
            )

    async def check(self, provider: Provider, raw: Mapping[str, Any]) -> CheckResult:
        """Run ``validate`` without persisting anything."""
        try:
            await self.validate(provider, raw)
        except ValidationFailed as exc:
            return CheckResult(ok=False, message=exc.message)
        return CheckResult(ok=True)

    # -- CRUD ----------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        provider: Provider,
        raw_credentials: dict[str, Any],
        label: str | None = None,
        owner_type: OwnerType = OwnerType.PRACTICE,
    ) -> CredentialRecord:
        await self.validate(provider, raw_credentials)

        fp = fingerprint(provider, raw_credentials)
        if await self.store.find_by_fingerprint(fp) is not None:
            raise DuplicateCredential()

        now = self._clock()
        record = CredentialRecord(
            owner_id=owner_id,
            owner_type=owner_type,
            provider=provider,
            label=label,
            encrypted_blob=self.codec.encrypt(raw_credentials),
            fingerprint=fp,
            is_valid=True,
            last_validated_at=now,
            created_at=now,
            updated_at=now,
        )
        created = await self.store.insert(record)
        logger.info(
            "Stored %s credentials %s for owner %s", provider.value, created.id, owner_id
        )
        return created

    async def get(self, record_id: str) -> CredentialRecord:
        record = await self.store.get(record_id)
        if record is None:
            raise NotFound("Credential not found")
        return record

    async def list_by_owner(self, owner_id: str) -> list[CredentialRecord]:
        return await self.store.query(owner_id=owner_id)

    async def list_all(self) -> list[CredentialRecord]:
        return await self.store.query()

    async def update(self, record_id: str, patch: CredentialPatch) -> CredentialRecord:
        existing = await self.get(record_id)
        changes: dict[str, Any] = {}

        provider = patch.provider or existing.provider
        if patch.provider and patch.provider != existing.provider and patch.credentials is None:
            raise ValidationFailed(
                "Changing provider requires a new credential set", field="credentials"
            )

        if patch.credentials is not None:
            await self.validate(provider, patch.credentials)
            changes.update(
                encrypted_blob=self.codec.encrypt(patch.credentials),
                is_valid=True,
                last_validated_at=self._clock(),
                validation_error=None,
            )
            fp = fingerprint(provider, patch.credentials)
            if fp != existing.fingerprint:
                duplicate = await self.store.find_by_fingerprint(fp)
                if duplicate is not None and duplicate.id != record_id:
                    raise DuplicateCredential()
                changes["fingerprint"] = fp

        if "label" in patch.model_fields_set:
            changes["label"] = patch.label
        if patch.provider:
            changes["provider"] = provider

        if not changes:
            return existing
        return await self.store.update(record_id, **changes)

    async def delete(self, record_id: str) -> None:
        await self.get(record_id)
        await self.store.delete(record_id)
        logger.info("Deleted credentials %s", record_id)

    # -- orchestrator helpers ------------------------------------------------

    async def find_active(
        self, owner_id: str, provider: Provider
    ) -> CredentialRecord | None:
        """Most recently created valid record for ``owner_id`` and ``provider``."""
        for record in await self.store.query(owner_id=owner_id, provider=provider):
            if record.is_valid:
                return record
        return None

    def reveal(self, record: CredentialRecord) -> dict[str, Any]:
        """Decrypt a record's credential set. Raises ``DecryptionFailed``."""
        return self.codec.decrypt(record.encrypted_blob)

    async def mark_invalid(self, record_id: str, message: str) -> CredentialRecord:
        logger.warning("Marking credentials %s invalid: %s", record_id, message)
        return await self.store.update(
            record_id, is_valid=False, validation_error=message
        )
