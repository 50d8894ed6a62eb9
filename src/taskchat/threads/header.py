"""
Sender/timestamp header embedded at the start of message content.

Every message a person sends is stored as ``"<TAG>(<DD>/<MM> <HH>:<MM>): "``
followed by the body, for example ``"ALI(07/03 09:05): looks good"``.
System-generated messages may carry a free-form tag or no header at all.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

HUMAN_TAG_LENGTH = 3
FALLBACK_TAG = "USR"

_TAG_FORBIDDEN_RE = re.compile(r"[\s()]")

_HEADER_RE = re.compile(
    r"^(?P<tag>[^\s()]+)"
    r"\((?P<day>\d{2})/(?P<month>\d{2}) (?P<hour>\d{2}):(?P<minute>\d{2})\): "
)

# Clients that encode a header with no sender leave "(): " behind
_EMPTY_HEADER_RE = re.compile(r"^(?:\(\):\s*)+")


@dataclass(frozen=True)
class HeaderStamp:
    """Day/month and hour/minute as shown in a header; no year."""

    day: int
    month: int
    hour: int
    minute: int

    @classmethod
    def from_datetime(cls, value: datetime) -> "HeaderStamp":
        return cls(value.day, value.month, value.hour, value.minute)

    def __str__(self) -> str:
        return f"{self.day:02d}/{self.month:02d} {self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class MessageHeader:
    """Decoded header plus the remaining body."""

    sender_tag: str
    stamp: HeaderStamp
    body: str


def sender_tag(username: str) -> str:
    """
    Tag used in headers for a human user.

    Whitespace and parentheses are dropped before shortening so the tag
    always encodes; a name with nothing left falls back to FALLBACK_TAG.

    >>> sender_tag("alice")
    'ALI'
    >>> sender_tag("Jo Smith")
    'JOS'
    """
    tag = _TAG_FORBIDDEN_RE.sub("", username or "")[:HUMAN_TAG_LENGTH].upper()
    return tag or FALLBACK_TAG



def encode_header(tag: str, timestamp: datetime) -> str:
    """
    Build the header prefix for a message.

    Args:
        tag: Sender tag, already shortened for human users (see sender_tag)
        timestamp: Time the message was written

    Raises:
        ValueError: If the tag is empty or contains whitespace or parentheses
    """
    if not tag or any(ch.isspace() or ch in "()" for ch in tag):
        raise ValueError(f"Invalid sender tag: {tag!r}")
    return f"{tag}({HeaderStamp.from_datetime(timestamp)}): "


def prefix_content(tag: str, body: str, timestamp: datetime) -> str:
    return encode_header(tag, timestamp) + body


def _drop_empty_headers(content: str) -> str:
    return _EMPTY_HEADER_RE.sub("", content, count=1)


def decode_header(content: str) -> Optional[MessageHeader]:
    """
    Split content into header fields and body.

    Returns:
        MessageHeader, or None when the content does not start with a header
        in the exact grammar (callers treat it as body-only)
    """
    if not isinstance(content, str):
        return None

    match = _HEADER_RE.match(_drop_empty_headers(content))
    if not match:
        return None

    stamp = HeaderStamp(
        day=int(match.group("day")),
        month=int(match.group("month")),
        hour=int(match.group("hour")),
        minute=int(match.group("minute")),
    )
    body = _drop_empty_headers(content)[match.end():]
    return MessageHeader(sender_tag=match.group("tag"), stamp=stamp, body=body)


def strip_header(content: str) -> str:
    """
    Return only the human-authored body of a message.

    Content without a header (system messages) comes back unchanged, apart
    from leading empty-header artifacts.
    """
    header = decode_header(content)
    if header is None:
        return _drop_empty_headers(content)
    return header.body
