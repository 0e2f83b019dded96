"""
Error taxonomy for transcript sync

Standardized error codes, remediation hints and exception classification.
Failures are isolated per transcript and never retried in-pass; the next
sync pass revisits anything that failed.
"""

import json
import logging
import traceback
from enum import Enum
from typing import Optional

import jsonschema
import requests
from sqlalchemy.exc import SQLAlchemyError

from .metrics import IngestionMetrics

logger = logging.getLogger(__name__)


class SyncConfigurationError(Exception):
    """Raised when the sync pass cannot start (missing credentials, bad config)"""


class InvalidTranscriptError(ValueError):
    """Raised when a transcript payload lacks what ingestion needs (ids, JSON body)"""


class TranscriptFetchError(Exception):
    """Raised when listing or fetching transcripts from the platform fails"""

    def __init__(self, message: str, transcript_id: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.transcript_id = transcript_id
        self.status_code = status_code


class ErrorCode(str, Enum):
    """Standardized error codes used in logs and metric labels"""
    # Remote platform
    FETCH_FAILED = "fetch_failed"
    INVALID_PAYLOAD = "invalid_payload"
    TIMEOUT = "timeout"

    # Local store
    DATABASE_ERROR = "database_error"

    # Setup
    CONFIGURATION_ERROR = "configuration_error"

    # Unknown
    PROCESSING_FAILURE = "processing_failure"


class RemediationHint(str, Enum):
    """Remediation hints for common error scenarios"""
    NEXT_PASS = "Transcript will be revisited by the next sync pass; no action needed"
    CHECK_PLATFORM = "Check Voiceflow API status and the API key permissions"
    CHECK_PAYLOAD = "Inspect the raw transcript; the platform returned an unexpected shape"
    CHECK_DATABASE = "Check database connectivity and schema (python -m src.ingestion.init_db init)"
    SET_CREDENTIALS = "Set PROJECT_ID and API_KEY (or their VOICEFLOW_* equivalents)"


class ErrorHandler:
    """Classifies and logs per-transcript failures"""

    def get_remediation_hint(self, error_code: ErrorCode) -> str:
        """
        Get remediation hint for error code

        Args:
            error_code: Standardized error code

        Returns:
            Human-readable remediation hint
        """
        remediation_map = {
            ErrorCode.FETCH_FAILED: RemediationHint.CHECK_PLATFORM,
            ErrorCode.TIMEOUT: RemediationHint.NEXT_PASS,
            ErrorCode.INVALID_PAYLOAD: RemediationHint.CHECK_PAYLOAD,
            ErrorCode.DATABASE_ERROR: RemediationHint.CHECK_DATABASE,
            ErrorCode.CONFIGURATION_ERROR: RemediationHint.SET_CREDENTIALS,
        }
        return remediation_map.get(error_code, RemediationHint.NEXT_PASS).value

    def is_transient(self, error_code: ErrorCode) -> bool:
        """True when the next pass is likely to succeed without intervention"""
        return error_code in {ErrorCode.FETCH_FAILED, ErrorCode.TIMEOUT, ErrorCode.DATABASE_ERROR}

    def classify_exception(self, exception: BaseException) -> ErrorCode:
        """
        Classify exception to standardized error code

        Args:
            exception: Python exception

        Returns:
            Standardized ErrorCode
        """
        cause = exception.__cause__

        if isinstance(exception, SyncConfigurationError):
            return ErrorCode.CONFIGURATION_ERROR

        if isinstance(exception, (requests.Timeout, TimeoutError)) or isinstance(cause, requests.Timeout):
            return ErrorCode.TIMEOUT

        if isinstance(exception, (InvalidTranscriptError, jsonschema.ValidationError, json.JSONDecodeError)):
            return ErrorCode.INVALID_PAYLOAD
        if isinstance(cause, (jsonschema.ValidationError, json.JSONDecodeError)):
            return ErrorCode.INVALID_PAYLOAD

        if isinstance(exception, (TranscriptFetchError, requests.RequestException)):
            return ErrorCode.FETCH_FAILED

        if isinstance(exception, SQLAlchemyError):
            return ErrorCode.DATABASE_ERROR

        exception_str = str(exception).lower()
        if 'timeout' in exception_str or 'timed out' in exception_str:
            return ErrorCode.TIMEOUT
        if 'database' in exception_str:
            return ErrorCode.DATABASE_ERROR

        return ErrorCode.PROCESSING_FAILURE

    def handle_error(self, exception: BaseException, transcript_id: Optional[str] = None) -> ErrorCode:
        """
        Handle error: classify, log and count it

        Args:
            exception: Exception that occurred
            transcript_id: Transcript being processed, if known

        Returns:
            Classified ErrorCode
        """
        error_code = self.classify_exception(exception)

        log_msg = f"{error_code.value} - {exception}"
        if transcript_id:
            log_msg = f"[{transcript_id}] {log_msg}"
        if self.is_transient(error_code):
            log_msg = f"{log_msg} (transient, retried next pass)"
        logger.error(log_msg)
        logger.debug(f"Remediation: {self.get_remediation_hint(error_code)}")
        if exception.__traceback__ is not None:
            logger.debug("Stack trace:\n" + "".join(traceback.format_exception(exception)))

        IngestionMetrics.record_failure(error_code.value)
        return error_code
