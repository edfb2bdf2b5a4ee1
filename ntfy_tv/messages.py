"""
ntfy message model and inbound frame parser.

The relay sends one JSON object per frame:

    {"id": "...", "time": 1700000000, "event": "message", "topic": "alerts",
     "message": "...", "title": "...", "priority": 4, "tags": ["warning"]}

Only ``event == "message"`` frames become messages; ``open`` and
``keepalive`` frames are dropped. Parsing is best-effort and never raises.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from typing import Any, Mapping

import structlog

from .errors import ParseError

log = structlog.get_logger()

MESSAGE_EVENT = "message"
DEFAULT_PRIORITY = 3
MIN_PRIORITY = 1
MAX_PRIORITY = 5


@dataclass(frozen=True)
class NtfyMessage:
    """A message received from the relay."""
    id: str
    time: int
    event: str
    topic: str
    message: str | None = None
    title: str | None = None
    priority: int | None = DEFAULT_PRIORITY
    tags: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["tags"] = list(self.tags) if self.tags is not None else None
        return data

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> NtfyMessage:
        """Build a message from a stored row (tags kept as a JSON array string)."""
        tags: tuple[str, ...] | None = None
        raw_tags = row["tags"]
        if raw_tags:
            try:
                tags = tuple(str(t) for t in json.loads(raw_tags))
            except (ValueError, TypeError):
                tags = None
        return cls(
            id=row["id"],
            time=row["time"],
            event=row["event"],
            topic=row["topic"],
            message=row["message"],
            title=row["title"],
            priority=row["priority"],
            tags=tags,
        )


def _opt_string(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _opt_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return int(value)
        if isinstance(value, str):
            return int(float(value.strip()))
    except (ValueError, OverflowError):
        return default
    return default


def clamp_priority(value: int) -> int:
    return max(MIN_PRIORITY, min(MAX_PRIORITY, value))


def _decode(frame: str | bytes | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(frame, Mapping):
        return frame
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8")
    try:
        data = json.loads(frame)
    except (TypeError, ValueError, RecursionError) as exc:
        raise ParseError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError(f"expected a JSON object, got {type(data).__name__}")
    return data


def parse_message(
    frame: str | bytes | Mapping[str, Any],
    now: float | None = None,
) -> NtfyMessage | None:
    """
    Parse one relay frame.

    Returns None for non-message events, frames without an id, and anything
    that fails to decode. ``now`` overrides the clock used when the frame
    carries no ``time``.
    """
    try:
        data = _decode(frame)

        event = _opt_string(data.get("event"))
        if event != MESSAGE_EVENT:
            log.debug("parser.skipped_event", frame_event=event)
            return None

        message_id = _opt_string(data.get("id"))
        if not message_id:
            log.debug("parser.missing_id")
            return None

        fallback_time = int(now if now is not None else time.time())

        tags: tuple[str, ...] | None = None
        raw_tags = data.get("tags")
        if isinstance(raw_tags, list):
            tags = tuple(s for s in (_opt_string(t) for t in raw_tags) if s)

        return NtfyMessage(
            id=message_id,
            time=_opt_int(data.get("time"), fallback_time),
            event=event,
            topic=_opt_string(data.get("topic")),
            message=_opt_string(data.get("message")) or None,
            title=_opt_string(data.get("title")) or None,
            priority=clamp_priority(_opt_int(data.get("priority"), DEFAULT_PRIORITY)),
            tags=tags,
        )
    except (ParseError, UnicodeDecodeError, AttributeError) as exc:
        log.debug("parser.malformed_frame", error=str(exc))
        return None
