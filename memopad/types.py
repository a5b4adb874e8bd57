"""
Memo Data Model — Records, Save Status, Identifiers and Timestamps

A memo is the only persisted object: ``{id, content, createdAt, updatedAt}``.
Identifiers are UUID-v4 strings; timestamps are timezone-aware UTC datetimes
in memory and ISO-8601 strings (millisecond precision, ``Z`` suffix) at rest.

Author: memopad contributors
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Optional, Union

# ---------------------------------------------------------------------------
# Type aliases (Literal unions for validation)
# ---------------------------------------------------------------------------

SaveStatus = Literal["idle", "typing", "saving", "saved", "error"]

VALID_SAVE_STATUSES: set = {"idle", "typing", "saving", "saved", "error"}

# Persisted record keys (camelCase on disk, snake_case on the dataclass)
RECORD_FIELDS = ("id", "content", "createdAt", "updatedAt")

_UUID_V4_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def generate_id() -> str:
    """Generate a fresh UUID-v4 memo identifier."""
    return str(uuid.uuid4())


def is_valid_id(value: Any) -> bool:
    """True if *value* is a string shaped like a UUID-v4."""
    return isinstance(value, str) and _UUID_V4_RE.match(value) is not None


def shorten_id(memo_id: str, length: int = 8) -> str:
    """Leading characters of an id, for display."""
    return memo_id[:length]


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def now_utc() -> datetime:
    """Current UTC time, truncated to the millisecond precision we persist."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def format_timestamp(value: datetime) -> str:
    """Serialize a datetime as ISO-8601 UTC, e.g. ``2024-12-15T14:30:00.000Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def parse_timestamp(text: str) -> datetime:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC.

    Raises:
        ValueError: If *text* is not a string or not a parseable date-time.
    """
    if not isinstance(text, str):
        raise ValueError(f"Timestamp must be a string, got {type(text).__name__}")
    raw = text.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ValueError(f"Unparseable timestamp: {text!r}") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _coerce_timestamp(value: Union[datetime, str]) -> datetime:
    if isinstance(value, str):
        return parse_timestamp(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise ValueError(f"Invalid timestamp: {value!r}")


# ---------------------------------------------------------------------------
# Memo (canonical)
# ---------------------------------------------------------------------------


@dataclass
class Memo:
    """
    A single note.

    Rules:
    - id is a UUID-v4 string and never changes once assigned.
    - content may be empty.
    - updated_at >= created_at.
    """

    id: str = field(default_factory=generate_id)
    content: str = ""
    created_at: datetime = field(default_factory=now_utc)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate id and content; coerce timestamps; check their ordering."""
        if not is_valid_id(self.id):
            raise ValueError(f"Invalid memo id: {self.id!r}")
        if not isinstance(self.content, str):
            raise ValueError(
                f"Memo content must be a string, got {type(self.content).__name__}"
            )
        self.created_at = _coerce_timestamp(self.created_at)
        if self.updated_at is None:
            self.updated_at = self.created_at
        self.updated_at = _coerce_timestamp(self.updated_at)
        if self.updated_at < self.created_at:
            raise ValueError(
                f"Memo {self.id}: updatedAt precedes createdAt "
                f"({format_timestamp(self.updated_at)} < {format_timestamp(self.created_at)})"
            )

    def to_dict(self) -> Dict[str, str]:
        """Serialize to the persisted record shape (JSON-safe)."""
        return {
            "id": self.id,
            "content": self.content,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Memo:
        """Deserialize a persisted record, validating every field.

        Raises:
            ValueError: If *d* is not a mapping, misses a field, or any field
                has the wrong type or shape.
        """
        if not isinstance(d, Mapping):
            raise ValueError(f"Memo record must be an object, got {type(d).__name__}")
        missing = [k for k in RECORD_FIELDS if k not in d]
        if missing:
            raise ValueError(f"Memo record missing field(s): {', '.join(missing)}")
        for key in RECORD_FIELDS:
            if not isinstance(d[key], str):
                raise ValueError(
                    f"Memo field {key!r} must be a string, got {type(d[key]).__name__}"
                )
        return cls(
            id=d["id"],
            content=d["content"],
            created_at=parse_timestamp(d["createdAt"]),
            updated_at=parse_timestamp(d["updatedAt"]),
        )
