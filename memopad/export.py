"""
Export — JSON and Markdown renderings of a memo collection

JSON reproduces the persisted records verbatim (indented). Markdown emits one
section per memo:

    # <first non-blank line, or the placeholder>

    <full content>

    *Updated: Dec 15, 2024 at 2:30 PM*

    ---

Both formats keep the order of the collection they are given.

Author: memopad contributors
"""

from __future__ import annotations

import json
from datetime import tzinfo
from typing import Callable, Dict, Literal, Optional, Sequence

from memopad.text import first_line, format_datetime
from memopad.types import Memo

ExportFormat = Literal["json", "markdown"]

UNTITLED_PLACEHOLDER = "Untitled memo"


def export_json(memos: Sequence[Memo]) -> str:
    """Indented JSON array of persisted records."""
    return json.dumps([m.to_dict() for m in memos], ensure_ascii=False, indent=2)


def export_markdown(
    memos: Sequence[Memo],
    placeholder: str = UNTITLED_PLACEHOLDER,
    tz: Optional[tzinfo] = None,
) -> str:
    """One Markdown section per memo.

    Args:
        memos: Memos in display order.
        placeholder: Heading for memos whose content is blank.
        tz: Timezone for the "Updated" trailer (local time when None).
    """
    sections = []
    for memo in memos:
        heading = first_line(memo.content) or placeholder
        updated = format_datetime(memo.updated_at, tz)
        sections.append(
            f"# {heading}\n\n{memo.content}\n\n*Updated: {updated}*\n\n---\n"
        )
    return "\n".join(sections)


_EXPORTERS: Dict[str, Callable[..., str]] = {
    "json": export_json,
    "markdown": export_markdown,
}


def export_memos(memos: Sequence[Memo], fmt: str, **kwargs) -> str:
    """Render *memos* in *fmt* (``json`` or ``markdown``).

    Raises:
        ValueError: On an unknown format.
    """
    exporter = _EXPORTERS.get(fmt)
    if exporter is None:
        raise ValueError(
            f"Unknown export format: {fmt!r} (expected {' or '.join(sorted(_EXPORTERS))})"
        )
    return exporter(memos, **kwargs)
