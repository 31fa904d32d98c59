"""AES-256-GCM sealing of credential blobs and identity fingerprints."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import os
import re
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from emr_sync.config import Settings
from emr_sync.config_data.loader import get_provider_table
from emr_sync.errors import ConfigurationError, DecryptionFailed
from emr_sync.models import Provider

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

# Development-only fallback. Never accepted when environment is production.
INSECURE_DEV_KEY = bytes(KEY_SIZE)

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


def _canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"))


def derive_key(raw: str) -> bytes:
    """Normalize configured key material to 32 bytes.

    64 hex characters are used verbatim, base64 that decodes to exactly 32
    bytes is used verbatim, anything else is hashed with SHA-256.
    """
    if _HEX_KEY.match(raw):
        return bytes.fromhex(raw)
    try:
        decoded = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        decoded = b""
    if len(decoded) == KEY_SIZE:
        return decoded
    return hashlib.sha256(raw.encode("utf-8")).digest()


def resolve_key(settings: Settings) -> bytes:
    """Pick the process key from settings, refusing unsafe fallbacks."""
    raw = settings.encryption_key or settings.app_secret
    if raw:
        return derive_key(raw)
    if settings.is_production:
        raise ConfigurationError(
            "ENCRYPTION_KEY (or APP_SECRET) must be set in production"
        )
    if not settings.allow_insecure_dev_key:
        raise ConfigurationError(
            "No ENCRYPTION_KEY configured. Set one, or set "
            "ALLOW_INSECURE_DEV_KEY=true for local development."
        )
    logger.warning(
        "Using the insecure development encryption key; credentials are NOT protected"
    )
    return INSECURE_DEV_KEY


def fingerprint(provider: Provider, fields: dict[str, Any]) -> str:
    """SHA-256 over the provider's identity fields.

    Only the configured identity subset participates, so rotating a password
    keeps the fingerprint stable while a different account/site changes it.
    """
    identity = get_provider_table().rules_for(provider).fingerprint_fields
    selected = {
        name: str(fields[name])
        for name in identity
        if fields.get(name) is not None
    }
    payload = {"provider": provider.value, "fields": selected}
    return hashlib.sha256(_canonical_json(payload).encode("utf-8")).hexdigest()


class SecretCodec:
    """Encrypts JSON objects to an opaque base64 string and back."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_SIZE:
            raise ConfigurationError(f"Encryption key must be {KEY_SIZE} bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_settings(cls, settings: Settings) -> SecretCodec:
        return cls(resolve_key(settings))

    def encrypt(self, obj: Any) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, _canonical_json(obj).encode("utf-8"), None)
        # cryptography appends the tag; store as nonce || tag || ciphertext.
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, payload: str) -> Any:
        try:
            raw = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError, TypeError) as exc:
            raise DecryptionFailed("Ciphertext is not valid base64") from exc
        if len(raw) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionFailed("Ciphertext is too short")

        nonce = raw[:NONCE_SIZE]
        tag = raw[NONCE_SIZE : NONCE_SIZE + TAG_SIZE]
        ciphertext = raw[NONCE_SIZE + TAG_SIZE :]
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionFailed(
                "Authentication tag mismatch (tampered data or wrong key)"
            ) from exc
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecryptionFailed("Decrypted payload is not valid JSON") from exc
