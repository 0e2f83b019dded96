"""
Reprocess stored transcripts

Re-derives session state from the raw payloads already in vf_transcripts,
without calling the platform. Used after extraction rules change, to fill
sessions that were stored without a rating.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from src.ingestion.engine import upsert_session
from src.ingestion.error_handler import ErrorHandler, InvalidTranscriptError
from src.ingestion.models import SessionRecord, TranscriptRecord
from src.reconstruction.state import reconstruct_state

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 500


@dataclass
class ReprocessResult:
    """Outcome of one reprocessing run"""
    attempted: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


def reprocess_stored_transcripts(
    session_factory: sessionmaker,
    limit: int = DEFAULT_LIMIT,
    clock: Optional[Callable[[], datetime]] = None,
    error_handler: Optional[ErrorHandler] = None,
) -> ReprocessResult:
    """
    Re-derive state for sessions still missing a rating

    Each session is merged in its own transaction with the same COALESCE
    upsert as ingestion, so known fields are never cleared. A stored payload
    that is not valid JSON fails only that session.

    Args:
        session_factory: SQLAlchemy sessionmaker
        limit: Maximum sessions to reprocess
        clock: Source of UTC "now" for updated_at

    Returns:
        ReprocessResult
    """
    clock = clock or (lambda: datetime.now(timezone.utc))
    error_handler = error_handler or ErrorHandler()
    result = ReprocessResult()

    with session_factory() as db:
        rows = db.execute(
            select(SessionRecord.session_id, TranscriptRecord.transcript_id, TranscriptRecord.raw)
            .join(TranscriptRecord, SessionRecord.transcript_row_id == TranscriptRecord.id)
            .where(SessionRecord.rating.is_(None))
            .order_by(SessionRecord.session_id)
            .limit(limit)
        ).all()

    logger.info(f"Reprocessing {len(rows)} sessions without a rating")

    for session_id, transcript_id, raw in rows:
        result.attempted += 1
        db = session_factory()
        try:
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError as e:
                raise InvalidTranscriptError(f"Stored payload is not valid JSON: {e}") from e
            if not isinstance(payload, dict):
                raise InvalidTranscriptError("Stored payload is not a JSON object")

            logs = payload.get("logs")
            state = reconstruct_state(payload, logs if isinstance(logs, list) else [])
            if state.rating is None:
                result.unchanged += 1
                continue

            upsert_session(db, session_id, state, clock())
            db.commit()
            result.updated += 1
            logger.info(f"[{transcript_id}] Backfilled rating {state.rating}/5 for session {session_id}")

        except Exception as e:
            db.rollback()
            error_handler.handle_error(e, transcript_id)
            result.failed += 1
            result.errors.append(f"{session_id}: {e}")
        finally:
            db.close()

    logger.info(
        f"Reprocessing complete: {result.updated} updated, "
        f"{result.unchanged} unchanged, {result.failed} failed"
    )
    return result
