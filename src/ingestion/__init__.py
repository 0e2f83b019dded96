"""
Ingestion pipeline for Voiceflow transcripts
Stores raw transcripts, dialogue turns, reconstructed sessions and inferred
events in PostgreSQL (SQLite for local runs)
"""

from .engine import IngestionResult, TranscriptIngestor
from .error_handler import ErrorCode, ErrorHandler, SyncConfigurationError, TranscriptFetchError
from .turns import parse_turns

__all__ = [
    "IngestionResult",
    "TranscriptIngestor",
    "ErrorCode",
    "ErrorHandler",
    "SyncConfigurationError",
    "TranscriptFetchError",
    "parse_turns",
]
