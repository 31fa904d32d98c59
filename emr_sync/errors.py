"""Error taxonomy for the EMR integration core.

Every error carries a stable ``category`` string. Loggers and sync outcomes
report the category so dashboards can tell configuration/security problems
(decryption, authentication) apart from transient remote conditions.
"""

from __future__ import annotations


class EMRSyncError(Exception):
    """Base class for all integration-core errors."""

    category = "unknown"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(EMRSyncError):
    """Process configuration is unusable (e.g. no encryption key in production)."""

    category = "configuration_error"


class ValidationFailed(EMRSyncError):
    """Missing/malformed input, or a credential set that failed live validation.

    ``reason`` is ``"field"`` for input problems and ``"reachability"`` when
    the provider rejected or could not be reached with the submitted
    credentials.
    """

    category = "validation_error"

    def __init__(
        self, message: str, field: str | None = None, reason: str = "field"
    ) -> None:
        super().__init__(message)
        self.field = field
        self.reason = reason


class DuplicateCredential(EMRSyncError):
    category = "duplicate_credential"

    def __init__(self, message: str = "These EMR credentials already exist.") -> None:
        super().__init__(message)


class DecryptionFailed(EMRSyncError):
    """Ciphertext is malformed, tampered with, or sealed under another key."""

    category = "decryption_error"


DecryptionError = DecryptionFailed


class AuthenticationFailed(EMRSyncError):
    """The remote EMR rejected the credential identity."""

    category = "auth_error"


class RemoteUnreachable(EMRSyncError):
    """Transport failure or timeout talking to the remote EMR."""

    category = "api_timeout"


class RemoteBusinessError(EMRSyncError):
    """The remote accepted the call but declined the operation."""

    category = "remote_error"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class UnresolvableBookingParams(EMRSyncError):
    category = "unresolvable_booking_params"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            "Unable to resolve required booking parameters: " + ", ".join(missing)
        )
        self.missing = list(missing)


class NotFound(EMRSyncError):
    category = "not_found"


class Forbidden(EMRSyncError):
    category = "forbidden"
