"""
Trace scanner for raw transcript logs

Fallback extractor used when declared properties are missing. Scans the
ordered log for variable-assignment traces. The first assignment of a
variable wins: later re-assignments in the same conversation are ignored.

Two assignment shapes are recognized:

    {"type": "trace", "data": {"type": "set", "payload": {"key": ..., "value": ...}}}

    {"type": "trace", "data": {"type": "debug", "payload": {
        "ref": {"nodeType": "set-v3"},
        "metadata": {"diff": {"<name>": {"before": ..., "after": ...}}}}}}
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

CLICK_TRACE_TYPES = frozenset({"click", "button"})

# Values above this are epoch milliseconds rather than seconds
_EPOCH_MS_THRESHOLD = 10 ** 11


@dataclass(frozen=True)
class TraceAssignment:
    """First recorded assignment of a variable"""
    name: str
    value: str
    timestamp: Optional[datetime]


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a platform timestamp into an aware UTC datetime

    Accepts datetimes, ISO-8601 strings (with or without "Z") and epoch
    seconds/milliseconds. Returns None for anything else.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) >= _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.isdigit():
            return parse_timestamp(int(text))
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def entry_timestamp(entry: Dict[str, Any]) -> Optional[datetime]:
    """Resolve the timestamp of a log entry: data.time, timestamp, createdAt"""
    data = entry.get("data")
    candidates = []
    if isinstance(data, dict):
        candidates.append(data.get("time"))
    candidates.extend([entry.get("timestamp"), entry.get("createdAt")])

    for candidate in candidates:
        parsed = parse_timestamp(candidate)
        if parsed is not None:
            return parsed
    return None


def _trace_data(entry: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(entry, dict) or entry.get("type") != "trace":
        return None
    data = entry.get("data")
    return data if isinstance(data, dict) else None


def iter_assignments(entry: Any) -> Iterator[Tuple[str, Any]]:
    """Yield (variable, value) pairs assigned by one log entry"""
    data = _trace_data(entry)
    if data is None:
        return

    payload = data.get("payload")
    if not isinstance(payload, dict):
        return

    if data.get("type") == "set":
        key = payload.get("key")
        if isinstance(key, str):
            yield key, payload.get("value")

    elif data.get("type") == "debug":
        ref = payload.get("ref")
        metadata = payload.get("metadata")
        if not isinstance(ref, dict) or ref.get("nodeType") != "set-v3":
            return
        if not isinstance(metadata, dict) or not isinstance(metadata.get("diff"), dict):
            return
        for name, change in metadata["diff"].items():
            if isinstance(change, dict) and "after" in change:
                yield name, change["after"]


def _usable(value: Any) -> bool:
    if value is None or isinstance(value, (dict, list)):
        return False
    return bool(str(value).strip())


def find_assignment(logs: Optional[Sequence[Any]], names: Iterable[str]) -> Optional[TraceAssignment]:
    """
    Find the first assignment to any of the given variable names

    Args:
        logs: Ordered raw log entries
        names: Variable name and its accepted alternates

    Returns:
        TraceAssignment for the first non-empty assignment, or None
    """
    if not logs:
        return None

    wanted = [names] if isinstance(names, str) else list(names)
    for entry in logs:
        for name, value in iter_assignments(entry):
            if name in wanted and _usable(value):
                return TraceAssignment(name=name, value=str(value).strip(), timestamp=entry_timestamp(entry))
    return None


def find_variable(logs: Optional[Sequence[Any]], names: Iterable[str]) -> Optional[str]:
    """Value of the first assignment to any of the names"""
    assignment = find_assignment(logs, names)
    return assignment.value if assignment else None


def find_variable_timestamp(logs: Optional[Sequence[Any]], names: Iterable[str]) -> Optional[datetime]:
    """When the first assignment to any of the names happened"""
    assignment = find_assignment(logs, names)
    return assignment.timestamp if assignment else None


def find_click_traces(logs: Optional[Sequence[Any]]) -> List[Dict[str, Any]]:
    """Log entries recording a click/button interaction"""
    if not logs:
        return []
    clicks = []
    for entry in logs:
        data = _trace_data(entry)
        if data is not None and data.get("type") in CLICK_TRACE_TYPES and isinstance(data.get("payload"), dict):
            clicks.append(entry)
    return clicks
