"""
Session reconstruction for chatbot transcripts
Recovers user category, location, rating and feedback from declared
properties and the raw trace log, then infers funnel events
"""

from .events import EventType, InferredEvent, infer_events
from .properties import LocationType, UserCategory, parse_properties, validate_properties
from .state import ReconstructedState, reconstruct_state, validate_state

__all__ = [
    "EventType",
    "InferredEvent",
    "infer_events",
    "LocationType",
    "UserCategory",
    "parse_properties",
    "validate_properties",
    "ReconstructedState",
    "reconstruct_state",
    "validate_state",
]
