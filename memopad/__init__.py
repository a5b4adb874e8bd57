"""
memopad — short text notes with debounced autosave and durable local storage.

The whole collection lives under one key of a key-value backend (memory, file
or SQLite) as a JSON array. Edits are applied to an in-memory cache at once
and committed through a debounced, retried scheduler.

Author: memopad contributors
"""

__version__ = "0.1.0"

from memopad.types import Memo, SaveStatus
from memopad.errors import (
    StorageError,
    QuotaExceededError,
    ParseError,
    NotFoundError,
    UnknownStorageError,
)
from memopad.backends import MemoryBackend, FileBackend, SQLiteBackend, open_backend
from memopad.store import MemoStore, STORAGE_KEY, STORAGE_QUOTA_LIMIT
from memopad.timers import AsyncioTimers, ManualTimers
from memopad.autosave import SaveScheduler
from memopad.config import MemopadConfig, load_config
from memopad.service import MemoService

__all__ = [
    "__version__",
    "Memo",
    "SaveStatus",
    "StorageError",
    "QuotaExceededError",
    "ParseError",
    "NotFoundError",
    "UnknownStorageError",
    "MemoryBackend",
    "FileBackend",
    "SQLiteBackend",
    "open_backend",
    "MemoStore",
    "STORAGE_KEY",
    "STORAGE_QUOTA_LIMIT",
    "AsyncioTimers",
    "ManualTimers",
    "SaveScheduler",
    "MemopadConfig",
    "load_config",
    "MemoService",
]
