"""
Content hashing for raw transcript payloads

Hashes use the same "sha256:<64 hex chars>" format across the pipeline.
"""

import hashlib
import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

CHECKSUM_PATTERN = re.compile(r'^sha256:[a-f0-9]{64}$')


def canonical_json(payload: Any) -> str:
    """Serialize a payload deterministically (sorted keys, no whitespace)"""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def payload_sha256(payload: Any) -> str:
    """
    Calculate the content hash of a raw transcript payload

    Args:
        payload: JSON-compatible transcript payload

    Returns:
        Checksum in format "sha256:<hash>"
    """
    digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    return f"sha256:{digest}"


def validate_checksum_format(checksum: str) -> bool:
    """
    Validate a stored checksum

    Raises:
        ValueError if format is invalid
    """
    if not CHECKSUM_PATTERN.match(checksum):
        raise ValueError(
            f"Invalid checksum format: {checksum}. "
            f"Expected format: sha256:<64 lowercase hex characters>"
        )
    return True


def has_changed(payload: Any, stored_checksum: str) -> bool:
    """True when the payload no longer matches a previously stored checksum"""
    validate_checksum_format(stored_checksum)
    return payload_sha256(payload) != stored_checksum
