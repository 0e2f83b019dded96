"""
Shared fixtures: file-backed SQLite store and a controllable clock
"""

from datetime import datetime, timedelta, timezone

import pytest

from src.ingestion.database import create_db_engine, create_session_factory
from src.ingestion.engine import TranscriptIngestor
from src.ingestion.init_db import init_database

T0 = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'transcripts.db'}")
    init_database(engine=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine=engine)


@pytest.fixture
def ingestor(session_factory, clock):
    return TranscriptIngestor(session_factory, clock=clock)


def set_trace(key, value, time=None):
    """Log entry recording a variable assignment"""
    data = {"type": "set", "payload": {"key": key, "value": value}}
    if time is not None:
        data["time"] = time
    return {"type": "trace", "data": data}


def speak_trace(message, created_at=None):
    entry = {"type": "trace", "data": {"type": "text", "payload": {"message": message}}}
    if created_at:
        entry["createdAt"] = created_at
    return entry


def user_action(text, created_at=None):
    entry = {"type": "action", "data": {"type": "text", "payload": text}}
    if created_at:
        entry["createdAt"] = created_at
    return entry


def make_transcript(transcript_id="tr-1", session_id="sess-1", properties=None, logs=None, **extra):
    transcript = {
        "id": transcript_id,
        "sessionID": session_id,
        "createdAt": "2024-05-01T10:00:00Z",
        "updatedAt": "2024-05-01T10:05:00Z",
        "properties": properties or {},
        "logs": logs or [],
    }
    transcript.update(extra)
    return transcript
