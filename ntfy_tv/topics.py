"""
Topic name validation.

A topic is what gets spliced into the relay URL, so anything that could
change the URL shape (slashes, commas, whitespace) is rejected before it
reaches the transport.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

MIN_TOPIC_LENGTH = 1
MAX_TOPIC_LENGTH = 64

_TOPIC_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


@dataclass(frozen=True)
class Valid:
    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Invalid:
    reason: str

    def __bool__(self) -> bool:
        return False


ValidationResult = Union[Valid, Invalid]

VALID = Valid()


def validate(topic: str) -> ValidationResult:
    """Check a topic name. Rules are applied in order; the first failure wins."""
    if not isinstance(topic, str) or not topic.strip():
        return Invalid("Topic cannot be empty")
    if len(topic) < MIN_TOPIC_LENGTH:
        return Invalid("Topic too short")
    if len(topic) > MAX_TOPIC_LENGTH:
        return Invalid(f"Topic too long (max {MAX_TOPIC_LENGTH} characters)")
    if "/" in topic:
        return Invalid("Topic cannot contain slashes (/)")
    if "," in topic:
        return Invalid("Topic cannot contain commas (,)")
    if any(ch.isspace() for ch in topic):
        return Invalid("Topic cannot contain whitespace")
    if not _TOPIC_RE.fullmatch(topic):
        return Invalid("Topic can only contain letters, numbers, underscores, and hyphens")
    return VALID


def is_valid(topic: str) -> bool:
    return isinstance(validate(topic), Valid)
