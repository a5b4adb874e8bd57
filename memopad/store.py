"""
Memo Store — Validating Persistence over a Key-Value Backend

The whole collection lives under a single key as a UTF-8 JSON array of
``{id, content, createdAt, updatedAt}`` records. Every write replaces the
entire value; that replace is the transaction boundary.

Reads are fail-fast: one invalid record invalidates the whole read, so
corruption is reported instead of silently dropped.

Error mapping:
    missing key                          -> empty collection
    undecodable bytes / malformed JSON   -> ParseError
    not an array / invalid record        -> ParseError
    serialized size > quota              -> QuotaExceededError (nothing written)
    unknown or malformed id              -> NotFoundError (update/remove)
    anything else from the backend       -> UnknownStorageError

Author: memopad contributors
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Sequence

from memopad.backends import KeyValueBackend
from memopad.errors import (
    MSG_DELETE_FAILED,
    MSG_NOT_FOUND,
    MSG_PARSE_ERROR,
    MSG_QUOTA_EXCEEDED,
    MSG_SAVE_FAILED,
    MSG_UNKNOWN,
    NotFoundError,
    ParseError,
    QuotaExceededError,
    StorageError,
    UnknownStorageError,
)
from memopad.types import Memo, generate_id, is_valid_id, now_utc

logger = logging.getLogger(__name__)

STORAGE_KEY = "memo-app-data"
STORAGE_QUOTA_LIMIT = 5 * 1024 * 1024  # 5 MiB

# Patch keys that callers may send but never change
_IMMUTABLE_KEYS = {"id", "createdAt", "created_at", "updatedAt", "updated_at"}


class MemoStore:
    """
    Durable, validated CRUD over a host-provided byte store.

    Not a singleton: construct one per backend and hand it to MemoService.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        key: str = STORAGE_KEY,
        quota_bytes: int = STORAGE_QUOTA_LIMIT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            backend: Byte store holding the serialized collection.
            key: Key under which the collection is stored.
            quota_bytes: Maximum serialized size accepted by persist().
            clock: Returns the current time; defaults to UTC now.
        """
        if quota_bytes <= 0:
            raise ValueError(f"quota_bytes must be positive, got {quota_bytes}")
        self._backend = backend
        self._key = key
        self._quota = quota_bytes
        self._clock = clock or now_utc
        logger.info(
            f"MemoStore initialized: {type(backend).__name__} "
            f"(key={key}, quota={quota_bytes} bytes)"
        )

    @property
    def key(self) -> str:
        return self._key

    @property
    def quota_bytes(self) -> int:
        return self._quota

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def close(self) -> None:
        """Close the underlying backend."""
        self._backend.close()

    # -- Read operations ---------------------------------------------------

    def list_all(self) -> List[Memo]:
        """Every stored memo, most recently updated first.

        Raises:
            ParseError: The stored value is not a valid memo collection.
            UnknownStorageError: The backend failed.
        """
        raw = self._read_raw()
        if raw is None:
            return []
        memos = self._decode(raw)
        # sorted() is stable, so ties keep their stored order
        return sorted(memos, key=lambda m: m.updated_at, reverse=True)

    def get_by_id(self, memo_id: str) -> Optional[Memo]:
        """Return the memo with *memo_id*, or None if absent or malformed."""
        if not is_valid_id(memo_id):
            return None
        for memo in self.list_all():
            if memo.id == memo_id:
                return memo
        return None

    def size_estimate(self) -> int:
        """Byte size of the stored value (0 when nothing is stored)."""
        raw = self._read_raw()
        return len(raw) if raw is not None else 0

    # -- Write operations --------------------------------------------------

    def create(self, content: str = "") -> Memo:
        """Create and persist a new memo; return it."""
        memos = self.list_all()
        taken = {m.id for m in memos}
        memo_id = generate_id()
        while memo_id in taken:
            memo_id = generate_id()
        now = self._clock()
        memo = Memo(id=memo_id, content=content, created_at=now, updated_at=now)
        self.persist(memos + [memo])
        logger.debug(f"created memo {memo.id} ({len(content)} chars)")
        return memo

    def update(self, memo_id: str, patch: Mapping[str, Any]) -> Memo:
        """
        Merge *patch* into an existing memo and persist. Only ``content`` is
        mutable; id and timestamp keys in the patch are ignored.

        Raises:
            NotFoundError: No memo with that id.
        """
        return self.update_many({memo_id: patch})[0]

    def update_many(self, patches: Mapping[str, Mapping[str, Any]]) -> List[Memo]:
        """
        Apply several patches in one write. Either every memo is updated or
        none is.

        Returns:
            The updated memos, in the order of *patches*.

        Raises:
            NotFoundError: Any id is unknown or malformed.
        """
        if not patches:
            return []
        memos = self.list_all() if all(is_valid_id(i) for i in patches) else []
        positions = {m.id: i for i, m in enumerate(memos)}
        updated: List[Memo] = []
        for memo_id, patch in patches.items():
            index = positions.get(memo_id)
            if index is None:
                logger.debug(f"update: memo {memo_id!r} not found")
                raise NotFoundError(MSG_NOT_FOUND)
            existing = memos[index]
            content = existing.content
            for key, val in patch.items():
                if key in _IMMUTABLE_KEYS:
                    continue
                if key == "content":
                    content = val
                else:
                    logger.debug(f"update: ignoring unknown field {key!r}")
            memo = Memo(
                id=existing.id,
                content=content,
                created_at=existing.created_at,
                updated_at=self._next_timestamp(existing.updated_at),
            )
            memos[index] = memo
            updated.append(memo)
        self.persist(memos)
        logger.debug(f"updated {len(updated)} memo(s): {', '.join(patches)}")
        return updated

    def remove(self, memo_id: str) -> None:
        """Delete a memo.

        Raises:
            NotFoundError: No memo with that id.
        """
        memos = self.list_all() if is_valid_id(memo_id) else []
        remaining = [m for m in memos if m.id != memo_id]
        if len(remaining) == len(memos):
            logger.debug(f"remove: memo {memo_id!r} not found")
            raise NotFoundError(MSG_NOT_FOUND)
        self.persist(remaining, failure_message=MSG_DELETE_FAILED)
        logger.debug(f"removed memo {memo_id}")

    def persist(
        self, collection: Sequence[Memo], failure_message: str = MSG_SAVE_FAILED,
    ) -> int:
        """
        Serialize and store the whole collection, replacing the prior value.

        Returns the number of bytes written.

        Raises:
            QuotaExceededError: Serialized size exceeds the quota; nothing is
                written.
            UnknownStorageError: Serialization or backend failure.
        """
        payload = self._encode(collection)
        size = len(payload)
        if size > self._quota:
            logger.warning(
                f"persist rejected: {size} bytes exceeds quota of {self._quota}"
            )
            raise QuotaExceededError(MSG_QUOTA_EXCEEDED)
        try:
            self._backend.set(self._key, payload)
        except StorageError:
            raise
        except Exception as exc:
            logger.error(f"persist failed: {exc}")
            raise UnknownStorageError(failure_message, exc) from exc
        logger.debug(f"persisted {len(collection)} memo(s), {size} bytes")
        return size

    def clear(self) -> None:
        """Remove the stored collection entirely."""
        try:
            self._backend.delete(self._key)
        except Exception as exc:
            raise UnknownStorageError(MSG_UNKNOWN, exc) from exc
        logger.info(f"cleared stored memos ({self._key})")

    # -- Internal helpers --------------------------------------------------

    def _next_timestamp(self, previous: datetime) -> datetime:
        """Current time, never earlier than *previous*."""
        now = self._clock()
        return now if now >= previous else previous

    def _read_raw(self) -> Optional[bytes]:
        try:
            return self._backend.get(self._key)
        except Exception as exc:
            logger.error(f"read failed: {exc}")
            raise UnknownStorageError(MSG_UNKNOWN, exc) from exc

    @staticmethod
    def _encode(collection: Sequence[Memo]) -> bytes:
        try:
            text = json.dumps(
                [m.to_dict() for m in collection],
                ensure_ascii=False, separators=(",", ":"),
            )
            return text.encode("utf-8")
        except (TypeError, ValueError, AttributeError) as exc:
            raise UnknownStorageError(MSG_SAVE_FAILED, exc) from exc

    @staticmethod
    def _decode(raw: bytes) -> List[Memo]:
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error(f"stored memos are not valid JSON: {exc}")
            raise ParseError(MSG_PARSE_ERROR, exc) from exc
        except Exception as exc:
            raise UnknownStorageError(MSG_UNKNOWN, exc) from exc

        if not isinstance(data, list):
            logger.error(f"stored memos: expected array, got {type(data).__name__}")
            raise ParseError(f"{MSG_PARSE_ERROR} (expected an array)")

        memos: List[Memo] = []
        for index, record in enumerate(data):
            try:
                memos.append(Memo.from_dict(record))
            except ValueError as exc:
                logger.error(f"stored memos: invalid record at index {index}: {exc}")
                raise ParseError(f"{MSG_PARSE_ERROR} (record {index}: {exc})", exc) from exc
        return memos
