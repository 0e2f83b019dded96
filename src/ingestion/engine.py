"""
Ingestion engine for Voiceflow transcripts

Stores one transcript per database transaction:
    1. upsert the raw transcript (payload + content hash)
    2. upsert its dialogue turns
    3. reconstruct and validate session state
    4. upsert the session, never nulling a known field
    5. insert inferred events, skipping ones already stored

Any exception rolls back the whole transcript; the caller's batch goes on.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import case, delete, func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from src.reconstruction.events import InferredEvent, infer_events
from src.reconstruction.properties import FEEDBACK_MAX_RATING, parse_properties, validate_properties
from src.reconstruction.state import ReconstructedState, reconstruct_state, transcript_bounds, validate_state

from .checksum import CHECKSUM_PATTERN, has_changed, payload_sha256
from .database import as_utc, dialect_insert
from .error_handler import ErrorHandler, InvalidTranscriptError
from .metrics import IngestionMetrics
from .models import DialogueTurn, SessionEvent, SessionRecord, TranscriptRecord
from .turns import ParsedTurn, parse_turns

logger = logging.getLogger(__name__)

SOURCE = "voiceflow"

# Session columns merged one by one with COALESCE on conflict
SESSION_COALESCE_COLUMNS = (
    "user_id",
    "transcript_id",
    "transcript_row_id",
    "started_at",
    "ended_at",
)

# Location columns follow the category they were recorded for
LOCATION_COLUMNS = ("location_type", "location_value")


@dataclass
class IngestionResult:
    """Outcome of ingesting one transcript"""
    transcript_id: str
    session_id: str
    success: bool
    turns_count: int = 0
    events_count: int = 0
    # Failure message, or business-rule violations when success is True
    errors: List[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def transcript_identity(raw: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    """External ids of a raw transcript"""
    return {
        "transcript_id": _text(raw.get("id")) or _text(raw.get("_id")),
        "session_id": _text(raw.get("sessionID")) or _text(raw.get("session_id")),
        "user_id": _text(raw.get("userId")) or _text(raw.get("user_id")),
    }


def upsert_session(
    db: Session,
    session_id: str,
    state: ReconstructedState,
    now: datetime,
    user_id: Optional[str] = None,
    transcript_id: Optional[str] = None,
    transcript_row_id: Optional[str] = None,
) -> None:
    """
    Insert or merge a session row

    On conflict a later pass fills gaps; a known value is only replaced as
    part of a newer consistent group. Plain columns take
    COALESCE(new, existing). The category and its location move together: a
    different category replaces the stored location, the same one only
    fills it in. Feedback follows the rating it belongs to and is cleared
    when a newer rating is above the feedback range.
    """
    values = {
        "id": str(uuid.uuid4()),
        "session_id": session_id,
        "user_id": user_id,
        "transcript_id": transcript_id,
        "transcript_row_id": transcript_row_id,
        "created_at": now,
        "updated_at": now,
        **state.as_row(),
    }

    table = SessionRecord.__table__
    stmt = dialect_insert(db, table).values(**values)
    new, old = stmt.excluded, table.c

    same_category = or_(old.typeuser.is_(None), new.typeuser == old.typeuser)
    category = {
        "typeuser": func.coalesce(new.typeuser, old.typeuser),
        **{
            name: case(
                (new.typeuser.is_(None), old[name]),
                (same_category, func.coalesce(new[name], old[name])),
                else_=new[name],
            )
            for name in LOCATION_COLUMNS
        },
    }
    rating = {
        "rating": func.coalesce(new.rating, old.rating),
        "feedback": case(
            (new.rating.is_(None), old.feedback),
            (new.rating > FEEDBACK_MAX_RATING, None),
            else_=func.coalesce(new.feedback, old.feedback),
        ),
    }

    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.session_id],
        set_={
            **{name: func.coalesce(new[name], old[name]) for name in SESSION_COALESCE_COLUMNS},
            **category,
            **rating,
            "updated_at": new.updated_at,
        },
    )
    db.execute(stmt)


class TranscriptIngestor:
    """
    Persists transcripts and their derived rows

    Each call opens its own database session, so one ingestor can be shared
    by concurrent workers.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[Callable[[], datetime]] = None,
        error_handler: Optional[ErrorHandler] = None,
    ):
        """
        Initialize ingestor

        Args:
            session_factory: SQLAlchemy sessionmaker
            clock: Source of UTC "now" for updated_at and estimated event times
            error_handler: Classifies failures for logs and metrics
        """
        self.session_factory = session_factory
        self.clock = clock or _utcnow
        self.error_handler = error_handler or ErrorHandler()

    def ingest_transcript(self, raw: Mapping[str, Any]) -> IngestionResult:
        """
        Ingest one raw transcript atomically

        Args:
            raw: Transcript payload with "logs" and flattened "properties"

        Returns:
            IngestionResult (never raises)
        """
        ids = transcript_identity(raw) if isinstance(raw, Mapping) else {}
        transcript_id = ids.get("transcript_id") or ids.get("session_id") or ""
        session_id = ids.get("session_id") or transcript_id

        db = self.session_factory()
        try:
            with IngestionMetrics.time_ingestion():
                if not isinstance(raw, Mapping):
                    raise InvalidTranscriptError(f"Transcript payload must be an object, got {type(raw).__name__}")
                if not transcript_id:
                    raise InvalidTranscriptError("Transcript has neither an id nor a session id")

                now = self.clock()
                logs = raw.get("logs")
                logs = logs if isinstance(logs, list) else []

                row_id = self._upsert_transcript(db, transcript_id, session_id, ids.get("user_id"), raw, now)

                turns = parse_turns(logs, self.clock)
                self._upsert_turns(db, row_id, session_id, turns)

                state = reconstruct_state(raw, logs)
                violations = self._validate(raw, state)

                upsert_session(
                    db,
                    session_id,
                    state,
                    now,
                    user_id=ids.get("user_id"),
                    transcript_id=transcript_id,
                    transcript_row_id=row_id,
                )

                events = infer_events(session_id, ids.get("user_id"), state, logs, now=self.clock)
                inserted = self._insert_events(db, events)

                db.commit()

        except Exception as e:
            db.rollback()
            self.error_handler.handle_error(e, transcript_id or None)
            return IngestionResult(
                transcript_id=transcript_id,
                session_id=session_id,
                success=False,
                errors=[str(e)],
            )
        finally:
            db.close()

        if violations:
            logger.warning(f"[{transcript_id}] Validation warnings: {violations}")
            IngestionMetrics.record_validation_warnings(len(violations))
        IngestionMetrics.record_success()
        IngestionMetrics.record_transcript_metrics(len(turns), [event.event_type for event in events])

        logger.info(
            f"[{transcript_id}] Ingested session {session_id}: "
            f"{len(turns)} turns, {len(events)} events ({inserted} new)"
        )

        return IngestionResult(
            transcript_id=transcript_id,
            session_id=session_id,
            success=True,
            turns_count=len(turns),
            events_count=len(events),
            errors=violations,
        )

    def ingest_batch(self, transcripts: Iterable[Mapping[str, Any]]) -> List[IngestionResult]:
        """Ingest transcripts one after another; failures do not stop the batch"""
        results = []
        for raw in transcripts:
            result = self.ingest_transcript(raw)
            if not result.success:
                logger.warning(f"Ingestion failed for transcript {result.transcript_id}: {result.errors}")
            results.append(result)
        return results

    def latest_watermark(self) -> Optional[datetime]:
        """Most recent updated_at across stored transcripts, or None when empty"""
        with self.session_factory() as db:
            latest = db.execute(select(func.max(TranscriptRecord.updated_at))).scalar()
        return as_utc(latest)

    def _upsert_transcript(
        self,
        db: Session,
        transcript_id: str,
        session_id: str,
        user_id: Optional[str],
        raw: Mapping[str, Any],
        now: datetime,
    ) -> str:
        table = TranscriptRecord.__table__
        raw_hash = payload_sha256(raw)

        stored_hash = db.execute(
            select(table.c.raw_hash).where(table.c.transcript_id == transcript_id)
        ).scalar()
        if stored_hash and CHECKSUM_PATTERN.match(stored_hash) and not has_changed(raw, stored_hash):
            logger.debug(f"[{transcript_id}] Content unchanged since last ingestion")

        started_at, ended_at = transcript_bounds(raw)
        stmt = dialect_insert(db, table).values(
            id=str(uuid.uuid4()),
            transcript_id=transcript_id,
            session_id=session_id,
            user_id=user_id,
            source=SOURCE,
            started_at=started_at,
            ended_at=ended_at,
            raw=json.dumps(raw, ensure_ascii=False, default=str),
            raw_hash=raw_hash,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.transcript_id],
            set_={
                "raw": stmt.excluded.raw,
                "raw_hash": stmt.excluded.raw_hash,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        db.execute(stmt)

        return db.execute(select(table.c.id).where(table.c.transcript_id == transcript_id)).scalar_one()

    def _upsert_turns(self, db: Session, row_id: str, session_id: str, turns: Sequence[ParsedTurn]) -> None:
        table = DialogueTurn.__table__

        # Turns past the new end belong to an older version of the log
        db.execute(delete(table).where(table.c.transcript_row_id == row_id, table.c.turn_index >= len(turns)))
        if not turns:
            return

        rows = [
            {
                "id": str(uuid.uuid4()),
                "transcript_row_id": row_id,
                "session_id": session_id,
                "turn_index": turn.turn_index,
                "role": turn.role,
                "text": turn.text,
                "payload": turn.payload,
                "timestamp": turn.timestamp,
                "created_at": self.clock(),
            }
            for turn in turns
        ]
        stmt = dialect_insert(db, table)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.transcript_row_id, table.c.turn_index],
            set_={
                "role": stmt.excluded.role,
                "text": stmt.excluded.text,
                "payload": stmt.excluded.payload,
                "timestamp": stmt.excluded.timestamp,
            },
        )
        db.execute(stmt, rows)

    def _insert_events(self, db: Session, events: Sequence[InferredEvent]) -> int:
        if not events:
            return 0

        table = SessionEvent.__table__
        inserted = 0
        for event in events:
            stmt = dialect_insert(db, table).values(id=str(uuid.uuid4()), created_at=self.clock(), **event.as_row())
            stmt = stmt.on_conflict_do_nothing(
                index_elements=[table.c.session_id, table.c.event_type, table.c.dedupe_key]
            )
            inserted += db.execute(stmt).rowcount or 0
        return inserted

    def _validate(self, raw: Mapping[str, Any], state: ReconstructedState) -> List[str]:
        properties = raw.get("properties")
        parsed = parse_properties(properties if isinstance(properties, Mapping) else None)

        violations: List[str] = []
        for message in validate_properties(parsed) + validate_state(state):
            if message not in violations:
                violations.append(message)
        return violations
