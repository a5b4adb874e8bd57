"""
Text helpers for displaying memos: titles, previews, word counts, dates.

All functions are pure and never raise on empty input.

Author: memopad contributors
"""

from __future__ import annotations

import re
from datetime import datetime, timezone, tzinfo
from typing import Optional

DEFAULT_MEMO_TITLE = "New memo"
MEMO_TITLE_MAX_LENGTH = 20
MEMO_PREVIEW_MAX_LENGTH = 50

# Hiragana, katakana, CJK unified ideographs
_CJK_RE = re.compile(r"[\u3040-\u309f\u30a0-\u30ff\u4e00-\u9faf]")
_WS_RE = re.compile(r"\s+")

_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


def first_line(content: str) -> str:
    """First non-blank line of *content*, stripped; empty string if none."""
    for line in (content or "").splitlines():
        if line.strip():
            return line.strip()
    return ""


def extract_title(
    content: str,
    max_length: int = MEMO_TITLE_MAX_LENGTH,
    placeholder: str = DEFAULT_MEMO_TITLE,
) -> str:
    """Sidebar title: the first non-blank line, truncated with '...'."""
    line = first_line(content)
    if not line:
        return placeholder
    if len(line) <= max_length:
        return line
    return line[:max_length] + "..."


def generate_preview(content: str, max_length: int = MEMO_PREVIEW_MAX_LENGTH) -> str:
    """Whitespace-collapsed excerpt of *content*, truncated with '...'."""
    clean = _WS_RE.sub(" ", content or "").strip()
    if len(clean) <= max_length:
        return clean
    return clean[:max_length] + "..."


def count_words(content: str) -> int:
    """Word count; for text containing Japanese, non-space character count."""
    if not content or not content.strip():
        return 0
    if _CJK_RE.search(content):
        return len(_WS_RE.sub("", content))
    return len(content.split())


def format_relative_time(value: datetime, now: Optional[datetime] = None) -> str:
    """Coarse relative age: 'Just now', '3 minutes ago', '2 days ago', ..."""
    now = now or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    seconds = int((now - value).total_seconds())

    if seconds < 60:
        return "Just now"
    for unit, size, limit in (
        ("minute", 60, 3600),
        ("hour", 3600, 86400),
        ("day", 86400, 2592000),
        ("month", 2592000, 31536000),
    ):
        if seconds < limit:
            n = seconds // size
            return f"{n} {unit}{'' if n == 1 else 's'} ago"
    years = seconds // 31536000
    return f"{years} year{'' if years == 1 else 's'} ago"


def format_datetime(value: datetime, tz: Optional[tzinfo] = None) -> str:
    """Human-readable date-time, e.g. 'Dec 15, 2024 at 2:30 PM'.

    Rendered in *tz*, or in the local timezone when *tz* is None.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    local = value.astimezone(tz)
    hour = local.hour % 12 or 12
    meridiem = "AM" if local.hour < 12 else "PM"
    return (
        f"{_MONTHS[local.month - 1]} {local.day}, {local.year} "
        f"at {hour}:{local.minute:02d} {meridiem}"
    )
