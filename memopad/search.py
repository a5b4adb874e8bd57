"""
Memo search: plain case-insensitive substring containment.

No tokenization, no ranking, no fuzzy matching. A blank query matches
everything (vacuous truth), so clearing the search box shows every memo.

Author: memopad contributors
"""

from __future__ import annotations

from typing import Iterable, List

from memopad.types import Memo


def is_blank(text: str) -> bool:
    """True for None, empty or whitespace-only text."""
    return not text or not text.strip()


def matches(text: str, query: str, case_sensitive: bool = False) -> bool:
    """True if *query* occurs in *text*.

    Blank queries match any text. Empty text matches no non-blank query.
    """
    if is_blank(query):
        return True
    if not text:
        return False
    if case_sensitive:
        return query in text
    return query.lower() in text.lower()


def filter_memos(
    memos: Iterable[Memo], query: str, case_sensitive: bool = False,
) -> List[Memo]:
    """Memos whose content matches *query*, in their original order."""
    if is_blank(query):
        return list(memos)
    return [m for m in memos if matches(m.content, query, case_sensitive)]
