"""
Database models for the transcript sync pipeline
"""

from datetime import datetime, timezone
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptRecord(Base):
    """Raw transcript as delivered by the platform"""
    __tablename__ = "vf_transcripts"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # External transcript id, or the session id when the platform sent none
    transcript_id = Column(String, unique=True, nullable=False, index=True)
    session_id = Column(String, nullable=True, index=True)
    user_id = Column(String, nullable=True)
    source = Column(String, default="voiceflow", nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    # Full payload as JSON text plus its content hash (sha256:<hex>)
    raw = Column(Text, nullable=False)
    raw_hash = Column(String, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    turns = relationship("DialogueTurn", back_populates="transcript", cascade="all, delete-orphan")


class DialogueTurn(Base):
    """One user or assistant utterance"""
    __tablename__ = "vf_turns"
    __table_args__ = (
        UniqueConstraint("transcript_row_id", "turn_index", name="uq_vf_turns_transcript_turn"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    transcript_row_id = Column(String, ForeignKey("vf_transcripts.id"), nullable=False, index=True)
    session_id = Column(String, nullable=True, index=True)

    turn_index = Column(Integer, nullable=False)
    role = Column(String, nullable=False)  # user, assistant, system
    text = Column(Text, nullable=True)
    payload = Column(JSON, default=dict)  # original log entry
    timestamp = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    transcript = relationship("TranscriptRecord", back_populates="turns")


class SessionRecord(Base):
    """Reconstructed, analytics-ready summary of one transcript"""
    __tablename__ = "vf_sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String, unique=True, nullable=False, index=True)
    user_id = Column(String, nullable=True)

    transcript_id = Column(String, nullable=True)
    transcript_row_id = Column(String, nullable=True)

    # Classification
    typeuser = Column(String, nullable=True)  # tenant, investor, owneroccupier
    location_type = Column(String, nullable=True)  # rental, investor, owneroccupier
    location_value = Column(String, nullable=True)

    # Satisfaction
    rating = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=True, index=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SessionEvent(Base):
    """Inferred, append-only fact about a session's progression"""
    __tablename__ = "vf_events"
    __table_args__ = (
        UniqueConstraint("session_id", "event_type", "dedupe_key", name="uq_vf_events_session_type_key"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    session_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=True)

    event_type = Column(String, nullable=False, index=True)
    event_ts = Column(DateTime(timezone=True), nullable=False)
    # True when no trace carried a timestamp and the ingestion clock was used
    ts_estimated = Column(Boolean, default=False, nullable=False)
    dedupe_key = Column(String, nullable=False)

    # Snapshot of the session fields relevant to the event
    typeuser = Column(String, nullable=True)
    location_type = Column(String, nullable=True)
    location_value = Column(String, nullable=True)
    rating = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)
    cta_id = Column(String, nullable=True)
    cta_name = Column(String, nullable=True)

    meta = Column(JSON, default=dict)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
