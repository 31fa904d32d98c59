"""Structured logging decorator for EMR adapter operations."""

from __future__ import annotations

import logging
import time
import traceback
from functools import wraps
from typing import Any, Callable

import httpx

from emr_sync.errors import EMRSyncError

logger = logging.getLogger("emr_sync.adapters")

# Credential secrets and PHI keys that always get redacted to "[REDACTED]"
_SENSITIVE_KEYS = frozenset({
    "password", "Password", "apiKey", "api_key", "clientSecret",
    "client_secret", "token", "access_token", "AccessToken",
    "first_name", "last_name", "FirstName", "LastName",
    "email", "Email", "phone", "MobilePhone", "date_of_birth", "BirthDate",
})

# Keys that hold whole credential sets or patient records
_NESTED_SENSITIVE_KEYS = frozenset({"credentials", "raw", "patient"})


def _sanitize_dict(data: dict[str, Any], depth: int = 0) -> dict[str, Any]:
    """Sanitize a dict by redacting secret and PHI keys.

    Recurses into nested dicts at depth=0; stops at depth=1.
    """
    result: dict[str, Any] = {}
    for key, value in data.items():
        if key in _SENSITIVE_KEYS:
            result[key] = "[REDACTED]"
        elif key in _NESTED_SENSITIVE_KEYS:
            if isinstance(value, (dict, list)) or hasattr(value, "model_dump"):
                result[key] = "{...}"
            else:
                result[key] = "[REDACTED]"
        elif hasattr(value, "model_dump") and depth < 1:
            result[key] = _sanitize_dict(value.model_dump(mode="json"), depth=depth + 1)
        elif isinstance(value, dict) and depth < 1:
            result[key] = _sanitize_dict(value, depth=depth + 1)
        else:
            result[key] = value
    return result


def _sanitize_output(output: Any) -> str:
    """Sanitize call output for logging, truncated to 200 chars."""
    if hasattr(output, "model_dump"):
        output = output.model_dump(mode="json")
    if isinstance(output, dict):
        return str(_sanitize_dict(output))[:200]
    return str(output)[:200]


def classify_error(exc: Exception) -> str:
    """Map an exception to an error category.

    Categories:
        auth_error        – remote rejected identity / HTTP 401/403
        api_timeout       – transport failure or timeout
        not_found         – HTTP 404
        remote_error      – remote declined the operation
        validation_error  – bad input
        unknown           – everything else
    """
    if isinstance(exc, EMRSyncError):
        return exc.category
    if isinstance(exc, (httpx.TimeoutException, httpx.RequestError)):
        return "api_timeout"
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if code in (401, 403):
            return "auth_error"
        if code == 404:
            return "not_found"
        return "remote_error"
    return "unknown"


def logged_call(func: Callable) -> Callable:
    """Add structured logging around an adapter coroutine method.

    Logs ``emr_call_start`` / ``emr_call_end`` / ``emr_call_error`` with the
    provider name, operation and latency. Exceptions are re-raised untouched.
    """

    @wraps(func)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
        operation = func.__name__
        provider = getattr(getattr(self, "provider", None), "value", "unknown")
        logger.info(
            "emr_call_start",
            extra={
                "provider": provider,
                "operation": operation,
                "input": _sanitize_dict(kwargs),
            },
        )
        start = time.monotonic()
        try:
            result = await func(self, *args, **kwargs)
            latency_ms = round((time.monotonic() - start) * 1000)
            logger.info(
                "emr_call_end",
                extra={
                    "provider": provider,
                    "operation": operation,
                    "latency_ms": latency_ms,
                    "status": "success",
                    "output_summary": _sanitize_output(result),
                },
            )
            return result
        except Exception as e:
            latency_ms = round((time.monotonic() - start) * 1000)
            logger.error(
                "emr_call_error",
                extra={
                    "provider": provider,
                    "operation": operation,
                    "latency_ms": latency_ms,
                    "status": "error",
                    "error_type": type(e).__name__,
                    "error_category": classify_error(e),
                    "error_msg": str(e),
                    "stack_trace": traceback.format_exc(),
                },
            )
            raise

    return wrapper
