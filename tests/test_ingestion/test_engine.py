"""
Tests for the transcript ingestion engine

Runs against a file-backed SQLite store.
"""

import json

import pytest
from sqlalchemy import func, select

from src.ingestion.checksum import payload_sha256, validate_checksum_format
from src.ingestion.database import as_utc
from src.ingestion.engine import TranscriptIngestor
from src.ingestion.models import DialogueTurn, SessionEvent, SessionRecord, TranscriptRecord

from conftest import T0, make_transcript, set_trace, speak_trace, user_action


def tenant_transcript(**kwargs):
    logs = [
        speak_trace("Are you a tenant, an investor or an owner occupier?", "2024-05-01T10:00:10Z"),
        user_action("Tenant", "2024-05-01T10:00:20Z"),
        speak_trace("Which area are you renting in?", "2024-05-01T10:00:30Z"),
        user_action("Woollongong", "2024-05-01T10:00:40Z"),
    ]
    return make_transcript(
        properties={"typeuser": "tenant", "rentallocation": "Woollongong", "rating": "4/5", "userId": "user-1"},
        logs=logs,
        **kwargs,
    )


def count(session_factory, model):
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


def load_session(session_factory, session_id="sess-1"):
    with session_factory() as db:
        return db.execute(select(SessionRecord).where(SessionRecord.session_id == session_id)).scalar_one()


def load_events(session_factory, session_id="sess-1"):
    with session_factory() as db:
        return db.execute(
            select(SessionEvent).where(SessionEvent.session_id == session_id).order_by(SessionEvent.event_ts)
        ).scalars().all()


class TestIngestTranscript:
    """Test the single-transcript write path"""

    def test_persists_all_tables(self, ingestor, session_factory):
        result = ingestor.ingest_transcript(tenant_transcript())

        assert result.success
        assert result.transcript_id == "tr-1"
        assert result.session_id == "sess-1"
        assert result.turns_count == 4
        assert result.events_count == 3
        assert result.errors == []

        with session_factory() as db:
            record = db.execute(select(TranscriptRecord)).scalar_one()
            turns = db.execute(select(DialogueTurn).order_by(DialogueTurn.turn_index)).scalars().all()

        assert record.transcript_id == "tr-1"
        assert record.source == "voiceflow"
        assert json.loads(record.raw)["id"] == "tr-1"
        assert [(t.turn_index, t.role) for t in turns] == [(0, "assistant"), (1, "user"), (2, "assistant"), (3, "user")]
        assert all(t.transcript_row_id == record.id for t in turns)

        session = load_session(session_factory)
        assert session.typeuser == "tenant"
        assert session.location_type == "rental"
        assert session.location_value == "wollongong"
        assert session.rating == 4
        assert session.feedback is None
        assert session.transcript_row_id == record.id

        events = load_events(session_factory)
        assert sorted(e.event_type for e in events) == ["location_selected", "rating_submitted", "typeuser_selected"]

    def test_raw_hash_format(self, ingestor, session_factory):
        transcript = tenant_transcript()
        ingestor.ingest_transcript(transcript)

        with session_factory() as db:
            raw_hash = db.execute(select(TranscriptRecord.raw_hash)).scalar_one()

        assert validate_checksum_format(raw_hash)
        assert raw_hash == payload_sha256(transcript)

    def test_idempotent(self, ingestor, session_factory, clock):
        """Test a second pass changes nothing but updated_at"""
        transcript = tenant_transcript()
        ingestor.ingest_transcript(transcript)
        first_events = [(e.event_type, e.dedupe_key) for e in load_events(session_factory)]

        clock.advance(hours=1)
        result = ingestor.ingest_transcript(transcript)

        assert result.success
        assert count(session_factory, TranscriptRecord) == 1
        assert count(session_factory, DialogueTurn) == 4
        assert count(session_factory, SessionRecord) == 1
        assert [(e.event_type, e.dedupe_key) for e in load_events(session_factory)] == first_events

        with session_factory() as db:
            updated_at = db.execute(select(TranscriptRecord.updated_at)).scalar_one()
        assert as_utc(updated_at) == clock()

    def test_session_fields_never_nulled(self, ingestor, session_factory):
        """Test a later transcript fills gaps without erasing known values"""
        ingestor.ingest_transcript(make_transcript(
            transcript_id="tr-a", properties={"typeuser": "investor", "rating": "2", "feedback": "slow"}
        ))
        ingestor.ingest_transcript(make_transcript(
            transcript_id="tr-b", properties={"investorlocation": "Oran Park"}, logs=[set_trace("typeuser", "investor")]
        ))

        session = load_session(session_factory)
        assert session.typeuser == "investor"
        assert session.rating == 2
        assert session.feedback == "slow"
        assert session.location_value == "oranpark"
        assert session.transcript_id == "tr-b"

    def test_newer_high_rating_clears_feedback(self, ingestor, session_factory):
        """Test feedback is merged together with the rating it belongs to"""
        ingestor.ingest_transcript(make_transcript(transcript_id="tr-a", properties={"rating": "2", "feedback": "slow"}))
        ingestor.ingest_transcript(make_transcript(transcript_id="tr-b", properties={"rating": "5"}))

        session = load_session(session_factory)
        assert session.rating == 5
        assert session.feedback is None

    def test_new_category_replaces_location(self, ingestor, session_factory):
        """Test a location recorded for another category is not kept"""
        ingestor.ingest_transcript(make_transcript(
            transcript_id="tr-a", properties={"typeuser": "tenant", "rentallocation": "nowra"}
        ))
        ingestor.ingest_transcript(make_transcript(transcript_id="tr-b", properties={"typeuser": "investor"}))

        session = load_session(session_factory)
        assert session.typeuser == "investor"
        assert session.location_type is None
        assert session.location_value is None

    def test_same_category_keeps_location(self, ingestor, session_factory):
        ingestor.ingest_transcript(make_transcript(
            transcript_id="tr-a", properties={"typeuser": "tenant", "rentallocation": "nowra"}
        ))
        ingestor.ingest_transcript(make_transcript(transcript_id="tr-b", properties={"typeuser": "tenant"}))

        session = load_session(session_factory)
        assert session.location_type == "rental"
        assert session.location_value == "nowra"

    def test_violations_reported_without_failing(self, ingestor, session_factory):
        result = ingestor.ingest_transcript(make_transcript(
            properties={"typeuser": "investor", "rentallocation": "nowra", "rating": "5", "feedback": "great"}
        ))

        assert result.success
        assert "Investor should not have rental or owner occupier location set" in result.errors
        assert "Feedback should only be provided for ratings 1-3" in result.errors
        assert len(result.errors) == len(set(result.errors))

        session = load_session(session_factory)
        assert session.typeuser == "investor"
        assert session.location_value is None
        assert session.feedback is None

    def test_failure_rolls_back_everything(self, ingestor, session_factory, monkeypatch):
        def boom(db, events):
            raise RuntimeError("event insert failed")

        monkeypatch.setattr(ingestor, "_insert_events", boom)

        result = ingestor.ingest_transcript(tenant_transcript())

        assert not result.success
        assert result.errors == ["event insert failed"]
        assert count(session_factory, TranscriptRecord) == 0
        assert count(session_factory, DialogueTurn) == 0
        assert count(session_factory, SessionRecord) == 0

    def test_missing_ids(self, ingestor, session_factory):
        result = ingestor.ingest_transcript({"properties": {}, "logs": []})

        assert not result.success
        assert "neither an id nor a session id" in result.errors[0]
        assert count(session_factory, TranscriptRecord) == 0

    def test_non_object_payload(self, ingestor):
        result = ingestor.ingest_transcript(["not", "a", "transcript"])

        assert not result.success
        assert "must be an object" in result.errors[0]

    def test_session_id_used_as_transcript_id(self, ingestor, session_factory):
        raw = make_transcript()
        del raw["id"]

        result = ingestor.ingest_transcript(raw)

        assert result.success
        assert result.transcript_id == "sess-1"

    def test_stale_turns_removed(self, ingestor, session_factory):
        ingestor.ingest_transcript(tenant_transcript())

        shorter = tenant_transcript()
        shorter["logs"] = shorter["logs"][:2]
        ingestor.ingest_transcript(shorter)

        with session_factory() as db:
            indexes = db.execute(select(DialogueTurn.turn_index).order_by(DialogueTurn.turn_index)).scalars().all()
        assert indexes == [0, 1]

    def test_estimated_events_not_duplicated(self, ingestor, session_factory, clock):
        transcript = make_transcript(properties={"typeuser": "tenant", "rating": "1", "feedback": "bad"})

        ingestor.ingest_transcript(transcript)
        clock.advance(minutes=30)
        ingestor.ingest_transcript(transcript)

        events = load_events(session_factory)
        assert len(events) == 3
        assert all(e.ts_estimated for e in events)
        assert all(as_utc(e.event_ts) == T0 for e in events)


class TestIngestBatch:
    """Test batch isolation"""

    def test_failure_does_not_stop_batch(self, ingestor):
        results = ingestor.ingest_batch([
            make_transcript(transcript_id="tr-1", session_id="s-1"),
            {"logs": []},
            make_transcript(transcript_id="tr-3", session_id="s-3"),
        ])

        assert [r.success for r in results] == [True, False, True]


class TestWatermark:
    """Test the incremental sync watermark"""

    def test_empty_store(self, ingestor):
        assert ingestor.latest_watermark() is None

    def test_latest_update(self, session_factory, clock):
        ingestor = TranscriptIngestor(session_factory, clock=clock)
        ingestor.ingest_transcript(make_transcript(transcript_id="tr-1", session_id="s-1"))
        later = clock.advance(hours=2)
        ingestor.ingest_transcript(make_transcript(transcript_id="tr-2", session_id="s-2"))

        assert ingestor.latest_watermark() == later


@pytest.mark.parametrize("rating,expected_events", [("4", 2), ("2", 3)])
def test_feedback_event_only_for_low_ratings(ingestor, rating, expected_events):
    result = ingestor.ingest_transcript(make_transcript(
        properties={"typeuser": "tenant", "rating": rating, "feedback": "text"}
    ))
    assert result.events_count == expected_events
