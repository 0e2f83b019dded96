"""
Dialogue turn parser

Maps raw transcript log entries to user/assistant turns. Entries that carry
no readable text, and traces that only record bot internals (debug output,
variable sets, flow control), are not dialogue and are skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.reconstruction.traces import parse_timestamp

logger = logging.getLogger(__name__)

NON_DIALOGUE_TRACE_TYPES = frozenset({"debug", "set", "end", "flow", "block", "path"})
TEXT_FIELDS = ("message", "text", "label", "value", "response")


@dataclass
class ParsedTurn:
    """One user or assistant utterance"""
    turn_index: int
    role: str
    text: str
    timestamp: datetime
    payload: Dict[str, Any] = field(default_factory=dict)


def flatten_rich_text(node: Any) -> str:
    """Concatenate the text leaves of a slate/rich-text tree"""
    if not node:
        return ""
    if isinstance(node, str):
        return node
    if isinstance(node, list):
        return "".join(flatten_rich_text(child) for child in node)
    if isinstance(node, dict):
        if isinstance(node.get("text"), str):
            return node["text"]
        if isinstance(node.get("children"), list):
            return flatten_rich_text(node["children"])
        if isinstance(node.get("content"), list):
            return flatten_rich_text(node["content"])
    return ""


def extract_text(payload: Any) -> Optional[str]:
    """
    Extract the readable text of a log payload

    Plain strings and numbers are used as-is; objects are searched for a
    text field, then for rich text under "slate" or "content".
    """
    if payload is None or payload == "" or isinstance(payload, bool):
        return None
    if isinstance(payload, str):
        return payload.strip()
    if isinstance(payload, (int, float)):
        return str(payload)
    if not isinstance(payload, dict):
        return None

    for name in TEXT_FIELDS:
        if isinstance(payload.get(name), str):
            return payload[name]

    for name in ("slate", "content"):
        if payload.get(name):
            flattened = flatten_rich_text(payload[name]).strip()
            if flattened:
                return flattened

    return None


def _role_of(value: Any) -> Optional[str]:
    return value.lower() if isinstance(value, str) else None


def _turn_timestamp(entry: Dict[str, Any], clock: Callable[[], datetime]) -> datetime:
    data = entry.get("data") if isinstance(entry.get("data"), dict) else {}
    for candidate in (entry.get("createdAt"), entry.get("timestamp"), data.get("createdAt")):
        parsed = parse_timestamp(candidate)
        if parsed is not None:
            return parsed
    return clock()


def map_log_entry(entry: Any, turn_index: int, clock: Optional[Callable[[], datetime]] = None) -> Optional[ParsedTurn]:
    """
    Map one log entry to a dialogue turn

    Args:
        entry: Raw log entry
        turn_index: Index to assign when the entry is a turn
        clock: Fallback timestamp source for entries without one

    Returns:
        ParsedTurn, or None when the entry is not dialogue
    """
    if not isinstance(entry, dict):
        return None

    entry_type = entry.get("type")
    role_field = _role_of(entry.get("role"))
    data = entry.get("data") if isinstance(entry.get("data"), dict) else {}
    payload = data.get("payload", entry.get("payload"))
    trace_type = data.get("type") if isinstance(data.get("type"), str) else None

    if entry_type == "action" or role_field == "user":
        role = "user"
    elif entry_type == "trace" or role_field == "assistant":
        if trace_type in NON_DIALOGUE_TRACE_TYPES:
            return None
        role = "assistant"
    else:
        return None

    text = extract_text(payload)
    if not text or not text.strip():
        return None

    return ParsedTurn(
        turn_index=turn_index,
        role=role,
        text=text.strip(),
        timestamp=_turn_timestamp(entry, clock or (lambda: datetime.now(timezone.utc))),
        payload=entry,
    )


def parse_turns(logs: Optional[Sequence[Any]], clock: Optional[Callable[[], datetime]] = None) -> List[ParsedTurn]:
    """
    Parse an ordered log into dialogue turns

    Turn indexes are dense (0..n-1) over the kept turns and preserve log order.
    """
    turns: List[ParsedTurn] = []
    for entry in logs or []:
        turn = map_log_entry(entry, len(turns), clock)
        if turn is not None:
            turns.append(turn)
    return turns
