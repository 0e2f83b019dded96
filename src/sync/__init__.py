"""
Transcript sync from the Voiceflow analytics API
Incremental or forced passes with bounded-concurrency fetch and ingestion
"""

from .backfill import ReprocessResult, reprocess_stored_transcripts
from .client import VoiceflowClient
from .orchestrator import SyncOrchestrator, SyncResult, SyncWindow, perform_sync

__all__ = [
    "ReprocessResult",
    "reprocess_stored_transcripts",
    "VoiceflowClient",
    "SyncOrchestrator",
    "SyncResult",
    "SyncWindow",
    "perform_sync",
]
