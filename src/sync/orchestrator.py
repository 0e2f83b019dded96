"""
Sync orchestrator

One pass pulls transcripts from Voiceflow into the local store:

    window -> paginate listing -> fetch bodies -> merge -> ingest -> aggregate

Bodies are fetched and ingested by two independently bounded worker pools.
Blocking work (HTTP, database) runs in threads via asyncio.to_thread.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from src.ingestion.config import SyncConfig
from src.ingestion.database import create_session_factory
from src.ingestion.engine import IngestionResult, TranscriptIngestor
from src.ingestion.error_handler import ErrorHandler, SyncConfigurationError, TranscriptFetchError
from src.ingestion.metrics import IngestionMetrics

from .client import VoiceflowClient
from .schemas import TranscriptSummary, flatten_properties, summaries_from_items

logger = logging.getLogger(__name__)

# Summary fields copied onto the body when the body lacks them
SUMMARY_FIELDS = ("sessionID", "projectID", "environmentID", "createdAt", "updatedAt", "endedAt")

MISSING_CREDENTIALS = "Voiceflow project id and API key must be configured"


@dataclass(frozen=True)
class SyncWindow:
    """Lower time bound of a pass, fixed when the pass starts"""
    since: Optional[datetime] = None

    @property
    def full(self) -> bool:
        return self.since is None

    def includes(self, summary: TranscriptSummary) -> bool:
        """True when the summary was active at or after the watermark"""
        if self.since is None:
            return True
        last_interaction = summary.last_interaction_at
        # Undated summaries are kept; ingestion is idempotent
        return last_interaction is None or last_interaction >= self.since


@dataclass
class SyncResult:
    """Aggregate outcome of one sync pass"""
    synced: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    # Business-rule violations of transcripts that were stored anyway
    warnings: List[str] = field(default_factory=list)


def build_transcript(summary: TranscriptSummary, body: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge a listing summary with its fetched body into ingestion input

    The summary is the source of truth for declared properties, the body for
    the raw log.
    """
    transcript = dict(body)
    for name in SUMMARY_FIELDS:
        if transcript.get(name) is None and summary.raw.get(name) is not None:
            transcript[name] = summary.raw[name]

    transcript["id"] = summary.id
    transcript["properties"] = summary.properties or flatten_properties(body.get("properties"))
    logs = body.get("logs") if isinstance(body.get("logs"), list) else []
    transcript["logs"] = [entry for entry in logs if isinstance(entry, dict)]
    if summary.user_id and not transcript.get("userId"):
        transcript["userId"] = summary.user_id
    return transcript


class SyncOrchestrator:
    """Runs sync passes against one project"""

    def __init__(
        self,
        config: SyncConfig,
        client: VoiceflowClient,
        ingestor: TranscriptIngestor,
        error_handler: Optional[ErrorHandler] = None,
    ):
        self.config = config
        self.client = client
        self.ingestor = ingestor
        self.error_handler = error_handler or ErrorHandler()

    def determine_window(self, force: bool = False) -> SyncWindow:
        """Full window when forced or when nothing has been stored yet"""
        if force:
            logger.info("Forced full sync requested")
            return SyncWindow()

        watermark = self.ingestor.latest_watermark()
        if watermark is None:
            logger.info("No stored transcripts, running full sync")
            return SyncWindow()

        logger.info(f"Incremental sync since {watermark.isoformat()}")
        return SyncWindow(since=watermark)

    def list_summaries(self, window: SyncWindow) -> Tuple[List[TranscriptSummary], List[str]]:
        """
        Page through the transcript listing

        Stops on a short page or at the max_pages cap. A failing page ends
        pagination; summaries already listed are still returned.

        Returns:
            (summaries within the window, listing errors)
        """
        page_size = self.config.page_size
        summaries: Dict[str, TranscriptSummary] = {}
        errors: List[str] = []

        for page in range(self.config.max_pages):
            try:
                items = self.client.list_transcripts(self.config.project_id, skip=page * page_size, take=page_size)
            except TranscriptFetchError as e:
                self.error_handler.handle_error(e)
                errors.append(f"Listing page {page + 1} failed: {e}")
                break

            IngestionMetrics.record_page()
            for summary in summaries_from_items(items):
                if self.config.version_id and summary.environment_id != self.config.version_id:
                    continue
                if not window.includes(summary):
                    continue
                summaries.setdefault(summary.id, summary)

            if len(items) < page_size:
                break
        else:
            logger.warning(f"Stopped listing at the {self.config.max_pages}-page cap")

        logger.info(f"Listed {len(summaries)} transcripts to sync")
        return list(summaries.values()), errors

    async def fetch_bodies(
        self, summaries: List[TranscriptSummary]
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        """
        Fetch full bodies with bounded concurrency

        Returns:
            (merged transcripts ready for ingestion, per-id fetch errors)
        """
        semaphore = asyncio.Semaphore(self.config.fetch_concurrency)

        async def fetch_one(summary: TranscriptSummary):
            async with semaphore:
                try:
                    body = await asyncio.to_thread(self.client.fetch_transcript, summary.id)
                except Exception as e:
                    self.error_handler.handle_error(e, summary.id)
                    return None, f"{summary.id}: {e}"
                return build_transcript(summary, body), None

        results = await asyncio.gather(*(fetch_one(summary) for summary in summaries))

        transcripts = [transcript for transcript, _ in results if transcript is not None]
        errors = [error for _, error in results if error is not None]
        return transcripts, errors

    async def ingest_all(self, transcripts: List[Dict[str, Any]]) -> List[IngestionResult]:
        """Ingest transcripts with bounded concurrency (one transaction each)"""
        semaphore = asyncio.Semaphore(self.config.ingest_concurrency)

        async def ingest_one(transcript: Dict[str, Any]) -> IngestionResult:
            async with semaphore:
                return await asyncio.to_thread(self.ingestor.ingest_transcript, transcript)

        return list(await asyncio.gather(*(ingest_one(transcript) for transcript in transcripts)))

    async def run(self, force: bool = False) -> SyncResult:
        """
        Run one sync pass

        Args:
            force: Ignore the watermark and sync everything

        Returns:
            SyncResult aggregating fetch and ingest outcomes
        """
        if not self.config.has_credentials:
            error = SyncConfigurationError(MISSING_CREDENTIALS)
            self.error_handler.handle_error(error)
            return SyncResult(synced=0, failed=0, errors=[str(error)])

        try:
            window = await asyncio.to_thread(self.determine_window, force)
            IngestionMetrics.record_sync_pass(window.full)

            with IngestionMetrics.time_sync():
                summaries, listing_errors = await asyncio.to_thread(self.list_summaries, window)
                transcripts, fetch_errors = await self.fetch_bodies(summaries)
                results = await self.ingest_all(transcripts)
        except Exception as e:
            # Failures outside the per-transcript boundaries abort the whole pass
            self.error_handler.handle_error(e)
            logger.error(f"Sync pass aborted: {e}")
            return SyncResult(synced=0, failed=0, errors=[str(e)])

        result = SyncResult(errors=listing_errors + fetch_errors, failed=len(fetch_errors))
        for ingestion in results:
            if ingestion.success:
                result.synced += 1
                result.warnings.extend(f"{ingestion.transcript_id}: {message}" for message in ingestion.errors)
            else:
                result.failed += 1
                result.errors.extend(f"{ingestion.transcript_id}: {message}" for message in ingestion.errors)

        logger.info(
            f"Sync pass complete ({'full' if window.full else 'incremental'}): "
            f"{result.synced} synced, {result.failed} failed"
        )
        return result


def perform_sync(
    force: bool = False,
    config: Optional[SyncConfig] = None,
    client: Optional[VoiceflowClient] = None,
    session_factory: Optional[sessionmaker] = None,
    ingestor: Optional[TranscriptIngestor] = None,
) -> SyncResult:
    """
    Run one sync pass to completion

    Args:
        force: Ignore the watermark and sync everything
        config: Sync configuration (defaults to environment / .env)
        client: API client (defaults to one built from config)
        session_factory: Database sessions (defaults to config.database_url)
        ingestor: Ingestion engine (defaults to one over session_factory)

    Returns:
        SyncResult {synced, failed, errors, warnings}
    """
    config = config or SyncConfig()
    if not config.has_credentials:
        logger.error("Missing Voiceflow credentials, aborting sync")
        return SyncResult(errors=[MISSING_CREDENTIALS])

    if ingestor is None:
        ingestor = TranscriptIngestor(session_factory or create_session_factory(config))
    orchestrator = SyncOrchestrator(config, client or VoiceflowClient.from_config(config), ingestor)
    return asyncio.run(orchestrator.run(force=force))
