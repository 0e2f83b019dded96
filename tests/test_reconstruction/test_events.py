"""
Tests for event inference
"""

from datetime import datetime, timezone

from src.reconstruction.events import EventType, infer_events
from src.reconstruction.state import reconstruct_state

from conftest import FrozenClock, make_transcript, set_trace

T1 = datetime(2024, 5, 1, 10, 1, tzinfo=timezone.utc)
T2 = datetime(2024, 5, 1, 10, 2, tzinfo=timezone.utc)
T3 = datetime(2024, 5, 1, 10, 3, tzinfo=timezone.utc)


def events_for(transcript, clock=None):
    state = reconstruct_state(transcript)
    return infer_events("sess-1", "user-1", state, transcript["logs"], now=clock or FrozenClock())


def click(label=None, time=None, **payload):
    if label is not None:
        payload["label"] = label
    entry = {"type": "trace", "data": {"type": "click", "payload": payload}}
    if time is not None:
        entry["data"]["time"] = time.isoformat()
    return entry


class TestInferEvents:
    """Test event emission rules"""

    def test_no_feedback_event_for_good_rating(self):
        events = events_for(make_transcript(
            properties={"typeuser": "tenant", "rentallocation": "Woollongong", "rating": "4/5"}
        ))

        assert [e.event_type for e in events] == [
            EventType.TYPEUSER_SELECTED,
            EventType.LOCATION_SELECTED,
            EventType.RATING_SUBMITTED,
        ]
        location = events[1]
        assert location.location_type == "rental"
        assert location.location_value == "wollongong"

    def test_low_rating_emits_feedback(self):
        events = events_for(make_transcript(
            properties={"typeuser": "investor", "rating": "2", "feedback": "too slow"}
        ))
        by_type = {e.event_type: e for e in events}

        assert set(by_type) == {
            EventType.TYPEUSER_SELECTED,
            EventType.RATING_SUBMITTED,
            EventType.FEEDBACK_SUBMITTED,
        }
        assert by_type[EventType.RATING_SUBMITTED].rating == 2
        assert by_type[EventType.FEEDBACK_SUBMITTED].feedback == "too slow"
        assert by_type[EventType.FEEDBACK_SUBMITTED].rating == 2

    def test_trace_timestamps(self):
        """Test events are timestamped when their variable was first set"""
        logs = [
            set_trace("typeuser", "owneroccupier", time=T1.isoformat()),
            set_trace("owneroccupierlocation", "Nowra", time=T2.isoformat()),
        ]

        events = events_for(make_transcript(logs=logs))

        assert [(e.event_type, e.event_ts, e.ts_estimated) for e in events] == [
            (EventType.TYPEUSER_SELECTED, T1, False),
            (EventType.LOCATION_SELECTED, T2, False),
        ]
        assert events[1].location_value == "nowra"

    def test_source_recorded_in_meta(self):
        events = events_for(make_transcript(
            properties={"rating": "4"}, logs=[set_trace("typeuser", "investor", time=T1.isoformat())]
        ))
        by_type = {e.event_type: e for e in events}

        assert by_type[EventType.TYPEUSER_SELECTED].meta["source"] == "trace"
        assert by_type[EventType.RATING_SUBMITTED].meta["source"] == "properties"

    def test_malformed_rating_emits_no_rating_events(self):
        events = events_for(make_transcript(properties={"rating": "N/A", "feedback": "meh"}))
        assert events == []

    def test_estimated_timestamps_use_clock(self):
        clock = FrozenClock(T3)
        events = events_for(make_transcript(properties={"typeuser": "tenant", "rating": "5"}), clock)

        assert all(e.event_ts == T3 and e.ts_estimated for e in events)
        assert all(e.dedupe_key == "estimated" for e in events)

    def test_exact_dedupe_key_is_timestamp(self):
        events = events_for(make_transcript(logs=[set_trace("typeuser", "tenant", time=T1.isoformat())]))
        assert events[0].dedupe_key == T1.isoformat()

    def test_location_timestamp_falls_back_to_generic_variable(self):
        logs = [set_trace("typeuser", "tenant", time=T1.isoformat()), set_trace("location", "nowra", time=T2.isoformat())]

        events = events_for(make_transcript(logs=logs))

        assert events[-1].event_type is EventType.LOCATION_SELECTED
        assert events[-1].event_ts == T2

    def test_sorted_by_timestamp(self):
        logs = [
            set_trace("rating", "4", time=T1.isoformat()),
            set_trace("typeuser", "investor", time=T3.isoformat()),
            click("Book a call", time=T2),
        ]

        events = events_for(make_transcript(logs=logs))

        assert [e.event_type for e in events] == [
            EventType.RATING_SUBMITTED,
            EventType.CTA_CLICKED,
            EventType.TYPEUSER_SELECTED,
        ]
        assert [e.event_ts for e in events] == sorted(e.event_ts for e in events)

    def test_deterministic_with_frozen_clock(self):
        transcript = make_transcript(properties={"typeuser": "tenant", "rating": "2", "feedback": "x"})

        first = [e.as_row() for e in events_for(transcript, FrozenClock(T1))]
        second = [e.as_row() for e in events_for(transcript, FrozenClock(T1))]

        assert first == second


class TestCtaEvents:
    """Test call-to-action extraction"""

    def test_labelled_click(self):
        events = events_for(make_transcript(logs=[click("Book inspection", time=T1, buttonId="btn-7")]))

        assert len(events) == 1
        cta = events[0]
        assert cta.event_type is EventType.CTA_CLICKED
        assert cta.cta_name == "Book inspection"
        assert cta.cta_id == "btn-7"
        assert cta.event_ts == T1
        assert cta.dedupe_key == f"{T1.isoformat()}|btn-7|Book inspection"

    def test_alternate_label_fields(self):
        button = {"type": "trace", "data": {"type": "button", "payload": {"buttonLabel": "Call us", "id": "b1"}}}

        events = events_for(make_transcript(logs=[button]))

        assert events[0].cta_name == "Call us"
        assert events[0].cta_id == "b1"
        assert events[0].ts_estimated

    def test_unlabelled_click_ignored(self):
        assert events_for(make_transcript(logs=[click(buttonId="btn-1")])) == []

    def test_estimated_ctas_keyed_by_identity(self):
        logs = [click("Book"), click("Call")]
        keys = {e.dedupe_key for e in events_for(make_transcript(logs=logs))}
        assert keys == {"estimated||Book", "estimated||Call"}
