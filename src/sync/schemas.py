"""
Voiceflow analytics API payloads

JSON Schemas guard the raw response bodies; TranscriptSummary is the typed
view of one listing item. Only the fields the pipeline reads are
constrained, everything else passes through.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from jsonschema import ValidationError, validate
from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.reconstruction.traces import parse_timestamp

logger = logging.getLogger(__name__)

PROPERTY_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": ["string", "null"]},
        "type": {"type": ["string", "null"]},
    },
    "additionalProperties": True
}

TRANSCRIPT_SUMMARY_SCHEMA = {
    "type": "object",
    "properties": {
        "id": {"type": ["string", "null"]},
        "_id": {"type": ["string", "null"]},
        "sessionID": {"type": ["string", "null"]},
        "environmentID": {"type": ["string", "null"]},
        "properties": {
            "anyOf": [
                {"type": "array", "items": PROPERTY_SCHEMA},
                {"type": "object"},
                {"type": "null"}
            ]
        }
    },
    "additionalProperties": True
}

TRANSCRIPT_LIST_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "description": "Response of POST /v1/transcript/project/{projectID}",
    "properties": {
        "transcripts": {
            "type": ["array", "null"],
            "items": TRANSCRIPT_SUMMARY_SCHEMA
        },
        "isDemo": {"type": ["boolean", "null"]}
    },
    "additionalProperties": True
}

# Non-object log entries are tolerated here and dropped when merging
LOGS_SCHEMA = {
    "type": ["array", "null"],
    "items": {
        "properties": {
            "type": {"type": ["string", "null"]},
            "data": {"type": ["object", "null"]}
        },
        "additionalProperties": True
    }
}

TRANSCRIPT_BODY_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "description": "Response of GET /v1/transcript/{transcriptID} (wrapped or bare)",
    "properties": {
        "transcript": {
            "type": "object",
            "properties": {"logs": LOGS_SCHEMA},
            "additionalProperties": True
        },
        "logs": LOGS_SCHEMA
    },
    "additionalProperties": True
}

USER_ID_PROPERTIES = ("userId", "user_id", "userID", "vf_user_id")


def validate_payload(data: Any, schema: Dict[str, Any]) -> bool:
    """
    Validate a response body against a schema

    Raises:
        jsonschema.ValidationError if invalid
    """
    try:
        validate(instance=data, schema=schema)
        return True
    except ValidationError as e:
        logger.error(f"Response schema validation failed: {e.message}")
        raise


def flatten_properties(properties: Any) -> Dict[str, Any]:
    """
    Flatten [{name, value, type}] properties into a name -> value dict

    Number-typed string values are coerced when they parse; a dict is
    returned as-is.
    """
    if isinstance(properties, dict):
        return dict(properties)
    if not isinstance(properties, list):
        return {}

    flattened: Dict[str, Any] = {}
    for prop in properties:
        if not isinstance(prop, dict) or not prop.get("name"):
            continue
        value = prop.get("value")
        if prop.get("type") == "number" and isinstance(value, str):
            try:
                number = float(value)
                value = int(number) if number.is_integer() else number
            except ValueError:
                pass
        flattened[prop["name"]] = value
    return flattened


class TranscriptSummary(BaseModel):
    """One item of the transcript listing"""
    id: str
    session_id: Optional[str] = Field(None, alias="sessionID")
    project_id: Optional[str] = Field(None, alias="projectID")
    environment_id: Optional[str] = Field(None, alias="environmentID")
    created_at: Optional[str] = Field(None, alias="createdAt")
    updated_at: Optional[str] = Field(None, alias="updatedAt")
    ended_at: Optional[str] = Field(None, alias="endedAt")
    properties: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("properties", mode="before")
    @classmethod
    def flatten(cls, v):
        return flatten_properties(v)

    @field_validator(
        "session_id", "project_id", "environment_id", "created_at", "updated_at", "ended_at",
        mode="before",
    )
    @classmethod
    def stringify(cls, v):
        return None if v is None else str(v)

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> Optional["TranscriptSummary"]:
        """Build a summary from a raw listing item; None when it has no id"""
        transcript_id = item.get("id") or item.get("_id")
        if not transcript_id:
            logger.warning(f"Skipping transcript summary without id (session {item.get('sessionID')})")
            return None
        return cls(**{**item, "id": str(transcript_id), "raw": item})

    @property
    def user_id(self) -> Optional[str]:
        for name in USER_ID_PROPERTIES:
            value = self.properties.get(name)
            if value:
                return str(value)
        return None

    @property
    def last_interaction_at(self) -> Optional[datetime]:
        """updatedAt, then endedAt, then createdAt"""
        for candidate in (self.updated_at, self.ended_at, self.created_at):
            parsed = parse_timestamp(candidate)
            if parsed is not None:
                return parsed
        return None


def body_transcript(data: Dict[str, Any]) -> Dict[str, Any]:
    """Unwrap {"transcript": {...}} bodies; bare bodies are returned as-is"""
    inner = data.get("transcript")
    return inner if isinstance(inner, dict) else data


def summaries_from_items(items: List[Dict[str, Any]]) -> List[TranscriptSummary]:
    """Typed summaries for the listing items that carry an id"""
    summaries = []
    for item in items:
        summary = TranscriptSummary.from_api(item)
        if summary is not None:
            summaries.append(summary)
    return summaries
