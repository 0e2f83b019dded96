"""
Session state reconstruction

Hybrid, properties-first: declared properties are authoritative and the raw
log is only scanned for fields the properties leave unknown.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from .properties import (
    CATEGORY_LOCATION_TYPE,
    CATEGORY_LOCATION_VARIABLE,
    FEEDBACK_MAX_RATING,
    LocationType,
    UserCategory,
    extract_rating,
    normalize_location,
    parse_category,
    parse_properties,
)
from .traces import find_assignment, parse_timestamp

logger = logging.getLogger(__name__)

CATEGORY_VARIABLES = ("typeuser",)
GENERIC_LOCATION_VARIABLE = "location"
RATING_VARIABLES = ("rating", "satisfaction", "score", "satisfaction_score")

STARTED_AT_FIELDS = ("createdAt", "created_at", "started_at")
ENDED_AT_FIELDS = ("endedAt", "ended_at", "updatedAt", "updated_at")


@dataclass
class ReconstructedState:
    """Authoritative session state for one transcript"""
    typeuser: Optional[UserCategory] = None
    location_type: Optional[LocationType] = None
    location_value: Optional[str] = None
    rating: Optional[int] = None
    feedback: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    # Which fields came from the trace fallback rather than properties
    traced_fields: List[str] = field(default_factory=list)

    def as_row(self) -> dict:
        """Column values for the sessions table"""
        return {
            "typeuser": getattr(self.typeuser, "value", self.typeuser),
            "location_type": getattr(self.location_type, "value", self.location_type),
            "location_value": self.location_value,
            "rating": self.rating,
            "feedback": self.feedback,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
        }


def _first_timestamp(transcript: Mapping[str, Any], fields: Sequence[str]) -> Optional[datetime]:
    for name in fields:
        parsed = parse_timestamp(transcript.get(name))
        if parsed is not None:
            return parsed
    return None


def transcript_bounds(transcript: Mapping[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """(started_at, ended_at) from transcript-level fields; None when absent"""
    return _first_timestamp(transcript, STARTED_AT_FIELDS), _first_timestamp(transcript, ENDED_AT_FIELDS)


def _traced_location(logs: Sequence[Any], category: UserCategory) -> Optional[str]:
    location_type = CATEGORY_LOCATION_TYPE[category]
    for name in (CATEGORY_LOCATION_VARIABLE[category], GENERIC_LOCATION_VARIABLE):
        assignment = find_assignment(logs, (name,))
        if assignment is None:
            continue
        location = normalize_location(assignment.value, location_type)
        if location is not None:
            return location
    return None


def reconstruct_state(transcript: Mapping[str, Any], logs: Optional[Sequence[Any]] = None) -> ReconstructedState:
    """
    Reconstruct session state from a transcript

    Args:
        transcript: Transcript mapping with "properties" and timestamp fields
        logs: Raw ordered log; defaults to transcript["logs"]

    Returns:
        ReconstructedState
    """
    if logs is None:
        logs = transcript.get("logs") or []
    properties = transcript.get("properties")
    parsed = parse_properties(properties if isinstance(properties, Mapping) else None)
    state = ReconstructedState()

    # 1-2. Category: properties, then the first typeuser assignment in the log
    state.typeuser = parsed.typeuser
    if state.typeuser is None:
        assignment = find_assignment(logs, CATEGORY_VARIABLES)
        if assignment is not None:
            state.typeuser = parse_category(assignment.value)
            if state.typeuser is not None:
                state.traced_fields.append("typeuser")

    # 3. Location scoped to the category
    if state.typeuser is not None:
        location = parsed.location_for(state.typeuser)
        if location is None:
            location = _traced_location(logs, state.typeuser)
            if location is not None:
                state.traced_fields.append("location")
        if location is not None:
            state.location_value = location
            state.location_type = CATEGORY_LOCATION_TYPE[state.typeuser]

    # 4. Rating, and feedback only alongside a low rating
    state.rating = extract_rating(parsed.rating)
    if state.rating is None:
        assignment = find_assignment(logs, RATING_VARIABLES)
        if assignment is not None:
            state.rating = extract_rating(assignment.value)
            if state.rating is not None:
                state.traced_fields.append("rating")

    if state.rating is not None and state.rating <= FEEDBACK_MAX_RATING:
        state.feedback = parsed.feedback
    elif parsed.feedback:
        logger.debug(f"Dropping feedback without a qualifying rating (rating={state.rating})")

    # 5. Timestamps
    state.started_at, state.ended_at = transcript_bounds(transcript)

    return state


def validate_state(state: ReconstructedState) -> List[str]:
    """
    Check cross-field business rules

    Violations are reported, never raised; ingestion proceeds regardless.

    Returns:
        Human-readable violation messages (empty when valid)
    """
    errors: List[str] = []

    if state.feedback and (state.rating is None or state.rating > FEEDBACK_MAX_RATING):
        errors.append("Feedback should only be provided for ratings 1-3")

    if state.location_type is not None and state.typeuser is not None:
        expected = CATEGORY_LOCATION_TYPE[state.typeuser]
        if state.location_type != expected:
            messages = {
                LocationType.RENTAL: "Rental location can only be set for tenants",
                LocationType.INVESTOR: "Investor location can only be set for investors",
                LocationType.OWNER_OCCUPIER: "Owner occupier location can only be set for owner occupiers",
            }
            errors.append(messages[state.location_type])
    elif state.location_type is not None and state.typeuser is None:
        errors.append("Location is set without a user category")

    return errors
