"""
Storage Errors — the four failure kinds of the persistence layer.

Callers that only care about "something went wrong" catch ``StorageError``;
callers that react differently (free space vs. reset corrupted data) switch on
``kind`` or catch the subclass.

Author: memopad contributors
"""

from __future__ import annotations

from typing import Literal, Optional

StorageErrorKind = Literal["QuotaExceeded", "ParseError", "NotFound", "Unknown"]

MSG_QUOTA_EXCEEDED = "Storage quota exceeded. Delete old memos to free space."
MSG_PARSE_ERROR = "Failed to read stored memos: data is corrupted."
MSG_NOT_FOUND = "Memo not found."
MSG_SAVE_FAILED = "Failed to save memo."
MSG_DELETE_FAILED = "Failed to delete memo."
MSG_UNKNOWN = "An unexpected storage error occurred."


class StorageError(Exception):
    """Base class for persistence failures."""

    kind: StorageErrorKind = "Unknown"

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.message = message
        self.cause = cause
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, message={self.message!r})"


class QuotaExceededError(StorageError):
    """The serialized collection does not fit in the configured quota."""

    kind: StorageErrorKind = "QuotaExceeded"


class ParseError(StorageError):
    """The stored value is not a valid memo collection."""

    kind: StorageErrorKind = "ParseError"


class NotFoundError(StorageError):
    """No memo with the requested id."""

    kind: StorageErrorKind = "NotFound"


class UnknownStorageError(StorageError):
    """Any other backend or serialization failure."""

    kind: StorageErrorKind = "Unknown"
