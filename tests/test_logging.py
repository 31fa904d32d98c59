"""Tests for emr_sync.adapters._logging — redaction and structured call logging."""

from __future__ import annotations

import logging

import httpx
import pytest

from emr_sync.adapters._logging import (
    _sanitize_dict,
    _sanitize_output,
    classify_error,
    logged_call,
)
from emr_sync.errors import (
    AuthenticationFailed,
    DecryptionFailed,
    RemoteBusinessError,
    RemoteUnreachable,
    ValidationFailed,
)
from emr_sync.models import BookingResult, PatientData, Provider

pytestmark = pytest.mark.unit


# ---------------------------------------------------------------------------
# _sanitize_dict()
# ---------------------------------------------------------------------------


class TestSanitizeDict:
    def test_redacts_secrets_and_phi(self):
        result = _sanitize_dict({
            "password": "hunter2",
            "clientSecret": "s3cret",
            "Email": "jane@example.com",
            "last_name": "Doe",
            "patient_id": "NX-1",
        })
        assert result["password"] == "[REDACTED]"
        assert result["clientSecret"] == "[REDACTED]"
        assert result["Email"] == "[REDACTED]"
        assert result["last_name"] == "[REDACTED]"
        assert result["patient_id"] == "NX-1"

    def test_credential_sets_collapsed(self):
        result = _sanitize_dict({"credentials": {"username": "u", "password": "p"}})
        assert result["credentials"] == "{...}"

    def test_patient_model_collapsed(self):
        result = _sanitize_dict({"patient": PatientData(email="jane@example.com")})
        assert result["patient"] == "{...}"

    def test_nested_scalar_redacted(self):
        assert _sanitize_dict({"raw": "opaque"})["raw"] == "[REDACTED]"

    def test_recurses_into_models_at_depth_0(self):
        result = _sanitize_dict({"data": PatientData(first_name="Jane", email="j@x.com")})
        assert result["data"]["first_name"] == "[REDACTED]"
        assert result["data"]["email"] == "[REDACTED]"

    def test_stops_recursion_at_depth_1(self):
        inner = {"password": "p", "ok": True}
        result = _sanitize_dict({"data": inner}, depth=1)
        assert result["data"] == inner

    def test_empty_dict(self):
        assert _sanitize_dict({}) == {}


# ---------------------------------------------------------------------------
# _sanitize_output()
# ---------------------------------------------------------------------------


class TestSanitizeOutput:
    def test_model_output_sanitized(self):
        result = _sanitize_output(BookingResult(success=True, remote_appointment_id="A-1"))
        assert "A-1" in result
        assert len(result) <= 200

    def test_dict_with_secret_redacted(self):
        result = _sanitize_output({"access_token": "tok-123", "expires_in": 3600})
        assert "tok-123" not in result
        assert "[REDACTED]" in result

    def test_non_dict_truncated(self):
        assert len(_sanitize_output("x" * 300)) == 200


# ---------------------------------------------------------------------------
# classify_error()
# ---------------------------------------------------------------------------


class TestClassifyError:
    @pytest.mark.parametrize("exc,category", [
        (AuthenticationFailed("no"), "auth_error"),
        (RemoteUnreachable("down"), "api_timeout"),
        (RemoteBusinessError("declined", status=409), "remote_error"),
        (ValidationFailed("bad"), "validation_error"),
        (DecryptionFailed("tampered"), "decryption_error"),
    ])
    def test_taxonomy_errors_use_their_category(self, exc, category):
        assert classify_error(exc) == category

    def test_timeout_exception(self):
        assert classify_error(httpx.TimeoutException("timed out")) == "api_timeout"

    def test_http_401(self):
        resp = httpx.Response(401, request=httpx.Request("GET", "/test"))
        exc = httpx.HTTPStatusError("Unauthorized", request=resp.request, response=resp)
        assert classify_error(exc) == "auth_error"

    def test_http_404(self):
        resp = httpx.Response(404, request=httpx.Request("GET", "/test"))
        exc = httpx.HTTPStatusError("Not Found", request=resp.request, response=resp)
        assert classify_error(exc) == "not_found"

    def test_http_500(self):
        resp = httpx.Response(500, request=httpx.Request("GET", "/test"))
        exc = httpx.HTTPStatusError("Server Error", request=resp.request, response=resp)
        assert classify_error(exc) == "remote_error"

    def test_runtime_error_unknown(self):
        assert classify_error(RuntimeError("unexpected")) == "unknown"


# ---------------------------------------------------------------------------
# logged_call()
# ---------------------------------------------------------------------------


class _FakeAdapter:
    provider = Provider.NEXTECH

    @logged_call
    async def book(self, **kwargs):
        return BookingResult(success=True, remote_appointment_id="A-1")

    @logged_call
    async def fail(self, **kwargs):
        raise AuthenticationFailed("Nextech authentication failed: expired")


class TestLoggedCall:
    async def test_success_logs_start_and_end(self, caplog):
        with caplog.at_level(logging.INFO, logger="emr_sync.adapters"):
            result = await _FakeAdapter().book(notes="hi")

        assert result.success is True
        messages = [r.message for r in caplog.records]
        assert "emr_call_start" in messages
        assert "emr_call_end" in messages

        end_record = next(r for r in caplog.records if r.message == "emr_call_end")
        assert end_record.__dict__["provider"] == "NEXTECH"
        assert end_record.__dict__["operation"] == "book"
        assert end_record.__dict__["status"] == "success"
        assert end_record.__dict__["latency_ms"] >= 0

    async def test_error_propagates_and_logs(self, caplog):
        with caplog.at_level(logging.ERROR, logger="emr_sync.adapters"):
            with pytest.raises(AuthenticationFailed):
                await _FakeAdapter().fail()

        error_records = [r for r in caplog.records if r.message == "emr_call_error"]
        assert len(error_records) == 1
        assert error_records[0].__dict__["error_type"] == "AuthenticationFailed"
        assert error_records[0].__dict__["error_category"] == "auth_error"

    async def test_credentials_never_logged(self, caplog):
        with caplog.at_level(logging.INFO, logger="emr_sync.adapters"):
            await _FakeAdapter().book(
                credentials={"username": "u", "password": "SuperSecret"},
                patient=PatientData(email="jane@example.com"),
            )

        start_record = next(r for r in caplog.records if r.message == "emr_call_start")
        logged_input = start_record.__dict__["input"]
        assert logged_input["credentials"] == "{...}"
        assert logged_input["patient"] == "{...}"
        assert "SuperSecret" not in caplog.text
        assert "jane@example.com" not in caplog.text
