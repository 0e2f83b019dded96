"""
Event inference from reconstructed session state

Events mark funnel steps: category chosen, location chosen, rating and
feedback submitted, and call-to-action clicks. Inference is pure; the only
non-determinism is the clock used when no trace timestamps an event, and
callers can pass their own.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from .properties import CATEGORY_LOCATION_VARIABLE, FEEDBACK_MAX_RATING
from .state import CATEGORY_VARIABLES, GENERIC_LOCATION_VARIABLE, RATING_VARIABLES, ReconstructedState
from .traces import entry_timestamp, find_click_traces, find_variable_timestamp

logger = logging.getLogger(__name__)

FEEDBACK_VARIABLES = ("feedback",)
ESTIMATED_KEY = "estimated"


class EventType(str, Enum):
    """Inferred event types"""
    TYPEUSER_SELECTED = "typeuser_selected"
    LOCATION_SELECTED = "location_selected"
    RATING_SUBMITTED = "rating_submitted"
    FEEDBACK_SUBMITTED = "feedback_submitted"
    CTA_CLICKED = "cta_clicked"


@dataclass
class InferredEvent:
    """One timestamped fact about a session"""
    session_id: str
    user_id: Optional[str]
    event_type: EventType
    event_ts: datetime
    ts_estimated: bool = False
    typeuser: Optional[str] = None
    location_type: Optional[str] = None
    location_value: Optional[str] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None
    cta_id: Optional[str] = None
    cta_name: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def dedupe_key(self) -> str:
        """
        Identity of the event within (session_id, event_type)

        Estimated timestamps change on every pass, so they are keyed on the
        event content instead of the time.
        """
        stamp = ESTIMATED_KEY if self.ts_estimated else self.event_ts.isoformat()
        if self.event_type is EventType.CTA_CLICKED:
            return f"{stamp}|{self.cta_id or ''}|{self.cta_name or ''}"
        return stamp

    def as_row(self) -> Dict[str, Any]:
        """Column values for the events table"""
        return {
            "session_id": self.session_id,
            "user_id": self.user_id,
            "event_type": self.event_type.value,
            "event_ts": self.event_ts,
            "ts_estimated": self.ts_estimated,
            "dedupe_key": self.dedupe_key,
            "typeuser": self.typeuser,
            "location_type": self.location_type,
            "location_value": self.location_value,
            "rating": self.rating,
            "feedback": self.feedback,
            "cta_id": self.cta_id,
            "cta_name": self.cta_name,
            "meta": self.meta,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _value(member: Any) -> Optional[str]:
    return getattr(member, "value", member)


def _first_str(payload: Dict[str, Any], keys: Sequence[str]) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value is not None and not isinstance(value, (dict, list)) and str(value).strip():
            return str(value).strip()
    return None


def extract_cta_events(
    session_id: str,
    user_id: Optional[str],
    logs: Optional[Sequence[Any]],
    now: datetime,
) -> List[InferredEvent]:
    """
    Extract call-to-action clicks from click/button traces

    Only traces carrying a human-readable label produce an event.
    """
    events = []
    for entry in find_click_traces(logs):
        payload = entry["data"]["payload"]
        cta_name = _first_str(payload, ("label", "buttonLabel", "name"))
        if not cta_name:
            continue

        timestamp = entry_timestamp(entry)
        events.append(InferredEvent(
            session_id=session_id,
            user_id=user_id,
            event_type=EventType.CTA_CLICKED,
            event_ts=timestamp or now,
            ts_estimated=timestamp is None,
            cta_id=_first_str(payload, ("buttonId", "id")),
            cta_name=cta_name,
            meta={
                "description": f"User clicked CTA: {cta_name}",
                "payload": payload,
            },
        ))
    return events


def infer_events(
    session_id: str,
    user_id: Optional[str],
    state: ReconstructedState,
    logs: Optional[Sequence[Any]] = None,
    now: Optional[Callable[[], datetime]] = None,
) -> List[InferredEvent]:
    """
    Infer funnel events for a session

    Args:
        session_id: External session id
        user_id: External user id, if known
        state: Reconstructed session state
        logs: Raw ordered log used to timestamp events
        now: Clock for the fallback timestamp (defaults to UTC now)

    Returns:
        Events sorted by timestamp, ascending
    """
    logs = logs or []
    fallback_ts = (now or _utcnow)()
    events: List[InferredEvent] = []

    def timestamp_for(names: Sequence[str]):
        found = find_variable_timestamp(logs, names)
        return (found, False) if found is not None else (fallback_ts, True)

    def source_of(field_name: str) -> str:
        return "trace" if field_name in state.traced_fields else "properties"

    typeuser = _value(state.typeuser)
    location_type = _value(state.location_type)

    if state.typeuser:
        ts, estimated = timestamp_for(CATEGORY_VARIABLES)
        events.append(InferredEvent(
            session_id=session_id,
            user_id=user_id,
            event_type=EventType.TYPEUSER_SELECTED,
            event_ts=ts,
            ts_estimated=estimated,
            typeuser=typeuser,
            meta={
                "description": f"User selected {typeuser} as their user type",
                "source": source_of("typeuser"),
            },
        ))

    if state.typeuser and state.location_value and state.location_type:
        variable = CATEGORY_LOCATION_VARIABLE[state.typeuser]
        ts, estimated = timestamp_for((variable,))
        if estimated:
            ts, estimated = timestamp_for((GENERIC_LOCATION_VARIABLE,))
        events.append(InferredEvent(
            session_id=session_id,
            user_id=user_id,
            event_type=EventType.LOCATION_SELECTED,
            event_ts=ts,
            ts_estimated=estimated,
            typeuser=typeuser,
            location_type=location_type,
            location_value=state.location_value,
            meta={
                "description": f"User selected {state.location_value} for {location_type}",
                "source": source_of("location"),
            },
        ))

    if state.rating is not None:
        ts, estimated = timestamp_for(RATING_VARIABLES)
        events.append(InferredEvent(
            session_id=session_id,
            user_id=user_id,
            event_type=EventType.RATING_SUBMITTED,
            event_ts=ts,
            ts_estimated=estimated,
            rating=state.rating,
            meta={
                "description": f"User submitted rating of {state.rating}/5",
                "source": source_of("rating"),
            },
        ))

        if state.rating <= FEEDBACK_MAX_RATING and state.feedback:
            ts, estimated = timestamp_for(FEEDBACK_VARIABLES)
            events.append(InferredEvent(
                session_id=session_id,
                user_id=user_id,
                event_type=EventType.FEEDBACK_SUBMITTED,
                event_ts=ts,
                ts_estimated=estimated,
                rating=state.rating,
                feedback=state.feedback,
                meta={"description": f"User submitted feedback for low rating ({state.rating}/5)"},
            ))

    events.extend(extract_cta_events(session_id, user_id, logs, fallback_ts))

    events.sort(key=lambda event: event.event_ts)
    logger.debug(f"[{session_id}] Inferred {len(events)} events")
    return events
