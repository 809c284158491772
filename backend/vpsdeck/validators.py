"""Input validation for values that end up in remote shell commands."""

from __future__ import annotations

import re
import shlex


class ValidationError(ValueError):
    """Raised when input validation fails."""
    pass


TOPIC_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
MAX_MESSAGE_LENGTH = 4096


def validate_topic(topic: str) -> str:
    """Validate an ntfy topic name.

    ntfy topics are 1-64 characters of letters, digits, ``_`` and ``-``.
    Returns the stripped topic; raises ValidationError otherwise.
    """
    if not topic or not topic.strip():
        raise ValidationError("Topic cannot be empty")

    topic = topic.strip()
    if not TOPIC_PATTERN.match(topic):
        raise ValidationError(
            "Topic must be 1-64 characters of letters, digits, underscores or hyphens"
        )
    return topic


def validate_message(message: str) -> str:
    if not message:
        raise ValidationError("Message cannot be empty")
    if len(message) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message must be {MAX_MESSAGE_LENGTH} characters or less")
    if "\x00" in message:
        raise ValidationError("Message contains null bytes")
    return message


def quote_shell_arg(value: str) -> str:
    """Safely quote a value for use as a shell argument."""
    return shlex.quote(value)
