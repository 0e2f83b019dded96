"""
Tests for error_handler module

Tests error classification and remediation hints
"""

import json

import jsonschema
import pytest
import requests
from prometheus_client import REGISTRY
from sqlalchemy.exc import IntegrityError, OperationalError

from src.ingestion.error_handler import (
    ErrorCode,
    ErrorHandler,
    InvalidTranscriptError,
    RemediationHint,
    SyncConfigurationError,
    TranscriptFetchError,
)


def wrapped(error: Exception, cause: Exception) -> Exception:
    try:
        raise error from cause
    except Exception as e:
        return e


class TestErrorCode:
    """Test ErrorCode enum"""

    def test_all_error_codes_defined(self):
        expected_codes = [
            'fetch_failed',
            'invalid_payload',
            'timeout',
            'database_error',
            'configuration_error',
            'processing_failure',
        ]

        for code in expected_codes:
            assert ErrorCode(code).value == code


class TestClassifyException:
    """Test exception classification"""

    @pytest.fixture
    def handler(self):
        return ErrorHandler()

    def test_fetch_error(self, handler):
        assert handler.classify_exception(TranscriptFetchError("500")) == ErrorCode.FETCH_FAILED

    def test_network_error(self, handler):
        error = wrapped(TranscriptFetchError("GET failed"), requests.ConnectionError("refused"))
        assert handler.classify_exception(error) == ErrorCode.FETCH_FAILED

    def test_timeout(self, handler):
        error = wrapped(TranscriptFetchError("GET failed"), requests.Timeout("read timed out"))

        assert handler.classify_exception(error) == ErrorCode.TIMEOUT
        assert handler.classify_exception(TimeoutError()) == ErrorCode.TIMEOUT

    def test_malformed_body(self, handler):
        error = wrapped(TranscriptFetchError("Malformed"), jsonschema.ValidationError("bad"))
        assert handler.classify_exception(error) == ErrorCode.INVALID_PAYLOAD

    def test_invalid_payload(self, handler):
        assert handler.classify_exception(InvalidTranscriptError("no id")) == ErrorCode.INVALID_PAYLOAD
        decode_error = json.JSONDecodeError("Expecting value", "{", 1)
        assert handler.classify_exception(decode_error) == ErrorCode.INVALID_PAYLOAD

    def test_database_errors(self, handler):
        assert handler.classify_exception(IntegrityError("INSERT", {}, Exception("dup"))) == ErrorCode.DATABASE_ERROR
        assert handler.classify_exception(OperationalError("SELECT", {}, Exception("locked"))) == ErrorCode.DATABASE_ERROR

    def test_configuration_error(self, handler):
        assert handler.classify_exception(SyncConfigurationError("missing")) == ErrorCode.CONFIGURATION_ERROR

    def test_unknown_error(self, handler):
        assert handler.classify_exception(KeyError("x")) == ErrorCode.PROCESSING_FAILURE


class TestRemediation:
    """Test remediation hints"""

    def test_hints(self):
        handler = ErrorHandler()

        assert handler.get_remediation_hint(ErrorCode.CONFIGURATION_ERROR) == RemediationHint.SET_CREDENTIALS.value
        assert handler.get_remediation_hint(ErrorCode.DATABASE_ERROR) == RemediationHint.CHECK_DATABASE.value
        assert handler.get_remediation_hint(ErrorCode.PROCESSING_FAILURE) == RemediationHint.NEXT_PASS.value

    def test_transient(self):
        handler = ErrorHandler()

        assert handler.is_transient(ErrorCode.TIMEOUT)
        assert not handler.is_transient(ErrorCode.INVALID_PAYLOAD)


class TestHandleError:
    """Test handle_error logging and metrics"""

    def test_counts_failure_by_reason(self, caplog):
        labels = {"reason": "invalid_payload"}
        before = REGISTRY.get_sample_value("transcript_ingest_failures_total", labels) or 0.0

        code = ErrorHandler().handle_error(InvalidTranscriptError("no id"), "tr-9")

        assert code == ErrorCode.INVALID_PAYLOAD
        assert REGISTRY.get_sample_value("transcript_ingest_failures_total", labels) == before + 1
        assert "[tr-9] invalid_payload - no id" in caplog.text
        assert "transient" not in caplog.text

    def test_transient_failures_marked(self, caplog):
        ErrorHandler().handle_error(TranscriptFetchError("503 - unavailable"), "tr-4")
        assert "[tr-4] fetch_failed - 503 - unavailable (transient, retried next pass)" in caplog.text
