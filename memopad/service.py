"""
Memo Service — the single entry point for a presentation layer

Holds the in-memory cache, the current selection and the search state, and
drives the autosave scheduler for edits. The cache is authoritative for what
is displayed; the store is authoritative for what is durable. The two are
reconciled only when a commit succeeds.

Every memo edited since its last successful commit is tracked as dirty.
A commit writes all dirty memos in one store write, so an edit whose flush
failed is carried by the next commit even after the selection has moved.

Typical flow:

    service = MemoService(MemoStore(FileBackend(".memopad")))
    service.load()
    memo = service.create_and_select("")
    service.edit_current("Hello")      # optimistic; committed after debounce
    service.filtered_view("hel")       # -> [memo]

Without a running asyncio loop (and no explicit timers) there is nothing to
wait on, so edits commit and search queries apply immediately.

Author: memopad contributors
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from memopad.autosave import SaveScheduler, StatusListener
from memopad.backends import open_backend
from memopad.config import AutosaveConfig, ExportConfig, MemopadConfig, SearchConfig
from memopad.errors import MSG_NOT_FOUND, NotFoundError, StorageError
from memopad.export import export_markdown, export_memos
from memopad.search import filter_memos
from memopad.store import MemoStore
from memopad.timers import AsyncioTimers, TimerHandle, Timers
from memopad.types import Memo, SaveStatus, now_utc

logger = logging.getLogger(__name__)


class MemoService:
    """Cache, selection, search and autosave orchestration over a MemoStore."""

    def __init__(
        self,
        store: MemoStore,
        timers: Optional[Timers] = None,
        autosave: Optional[AutosaveConfig] = None,
        search: Optional[SearchConfig] = None,
        export: Optional[ExportConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            store: Persistence layer (injected, never global).
            timers: Debounce/retry timers; defaults to the running asyncio
                loop, firing at once when there is none.
            autosave: Save debounce and retry settings.
            search: Search debounce and case sensitivity.
            export: Export rendering options.
            clock: Returns the current time; defaults to UTC now.
        """
        autosave = autosave or AutosaveConfig()
        self._store = store
        self._timers = timers or AsyncioTimers()
        self._search_cfg = search or SearchConfig()
        self._export_cfg = export or ExportConfig()
        self._clock = clock or now_utc
        self._owns_store = False

        self._memos: List[Memo] = []
        self._current_id: Optional[str] = None
        self._dirty: Set[str] = set()
        self._edit_seq = 0
        self._is_loading = True
        self._error: Optional[StorageError] = None

        self._search_query = ""
        self._pending_query: Optional[str] = None
        self._search_handle: Optional[TimerHandle] = None

        self._scheduler = SaveScheduler(
            self._commit_edit,
            self._timers,
            debounce=autosave.debounce,
            max_retries=autosave.max_retries,
            base_delay=autosave.base_delay,
            backoff_cap=autosave.backoff_cap,
            clock=self._clock,
        )

    @classmethod
    def from_config(
        cls, config: MemopadConfig, timers: Optional[Timers] = None,
    ) -> MemoService:
        """Open the configured backend, build the store, and load the cache."""
        backend = open_backend(
            config.storage.backend, config.storage.path, config.storage.wal_mode,
        )
        store = MemoStore(
            backend, key=config.storage.key, quota_bytes=config.storage.quota_bytes,
        )
        service = cls(
            store,
            timers=timers,
            autosave=config.autosave,
            search=config.search,
            export=config.export,
        )
        service._owns_store = True
        service.load()
        return service

    # -- Exposed state -----------------------------------------------------

    @property
    def store(self) -> MemoStore:
        return self._store

    @property
    def scheduler(self) -> SaveScheduler:
        return self._scheduler

    @property
    def memos(self) -> List[Memo]:
        return list(self._memos)

    @property
    def current(self) -> Optional[Memo]:
        if self._current_id is None:
            return None
        return self._find(self._current_id)

    @property
    def status(self) -> SaveStatus:
        return self._scheduler.status

    @property
    def last_saved_at(self) -> Optional[datetime]:
        return self._scheduler.last_saved_at

    @property
    def has_unsaved(self) -> bool:
        """True while any edited memo has not been committed."""
        return bool(self._dirty)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def error(self) -> Optional[StorageError]:
        """Global error from startup; None when the last load succeeded."""
        return self._error

    @property
    def search_query(self) -> str:
        """The applied (debounced) search query."""
        return self._search_query

    @property
    def filtered_memos(self) -> List[Memo]:
        return self.filtered_view(self._search_query)

    def add_listener(self, listener: StatusListener) -> None:
        """Be told about every save-status change."""
        self._scheduler.add_listener(listener)

    def size_estimate(self) -> int:
        return self._store.size_estimate()

    # -- Lifecycle ---------------------------------------------------------

    def load(self) -> List[Memo]:
        """Fill the cache from the store. Failures set ``error`` and never raise."""
        self._is_loading = True
        self._dirty.clear()
        try:
            memos = self._store.list_all()
        except StorageError as exc:
            logger.error(f"failed to load memos ({exc.kind}): {exc}")
            self._memos = []
            self._error = exc
        else:
            self._memos = memos
            self._error = None
            logger.info(f"loaded {len(memos)} memo(s)")
        finally:
            self._is_loading = False
        return list(self._memos)

    def before_unload(self) -> bool:
        """Host is about to end the session. Returns True if an edit was unsaved.

        The flush is best effort: an asynchronous commit may not finish
        before teardown.
        """
        unsaved = self.has_unsaved
        if unsaved:
            logger.info(f"session ending with {len(self._dirty)} unsaved memo(s), flushing")
            self._scheduler.flush()
        return unsaved

    def visibility_changed(self, hidden: bool) -> None:
        """Host view was hidden or shown; flush unsaved edits on hide."""
        if hidden and self.has_unsaved:
            logger.debug("view hidden with unsaved edit, flushing")
            self._scheduler.flush()

    def close(self) -> None:
        """Flush an unsaved edit, stop the search timer, close an owned store."""
        self.before_unload()
        self._cancel_search_timer()
        if self._owns_store:
            self._store.close()

    # -- Memo operations ---------------------------------------------------

    def get_by_id(self, memo_id: str) -> Optional[Memo]:
        return self._find(memo_id)

    def filtered_view(self, query: Optional[str]) -> List[Memo]:
        """Cached memos whose content contains *query*, in cache order."""
        return filter_memos(self._memos, query or "", self._search_cfg.case_sensitive)

    def select(self, memo_id: Optional[str]) -> Optional[Memo]:
        """Make *memo_id* the current memo (None clears the selection).

        A pending edit on the previous selection is flushed first.

        Raises:
            NotFoundError: *memo_id* is not in the cache.
        """
        if memo_id == self._current_id:
            return self.current
        memo = None
        if memo_id is not None:
            memo = self._find(memo_id)
            if memo is None:
                logger.debug(f"select: memo {memo_id!r} not in cache")
                raise NotFoundError(MSG_NOT_FOUND)
        self._flush_pending()
        self._current_id = memo_id
        return memo

    def create_and_select(self, content: str = "") -> Memo:
        """Create a memo, put it at the head of the cache, and select it.

        Raises:
            StorageError: From the store (e.g. QuotaExceededError).
        """
        memo = self._store.create(content)
        self._flush_pending()
        # A new memo's updated_at is "now", so it belongs at the head.
        self._memos.insert(0, memo)
        self._current_id = memo.id
        logger.debug(f"created and selected memo {memo.id}")
        return memo

    def edit_current(self, content: str) -> None:
        """Apply *content* to the current memo now and schedule its commit.

        Never writes synchronously and never raises storage errors; commit
        failures only show up in ``status``.
        """
        memo = self.current
        if memo is None:
            logger.debug("edit_current: no memo selected")
            return
        if content == memo.content:
            return
        now = self._clock()
        edited = Memo(
            id=memo.id,
            content=content,
            created_at=memo.created_at,
            updated_at=now if now >= memo.updated_at else memo.updated_at,
        )
        self._replace(edited)
        self._dirty.add(memo.id)
        self._edit_seq += 1
        self._scheduler.observe((memo.id, content, self._edit_seq))

    def save_current(self) -> None:
        """Commit the current memo's pending edit now."""
        if self.current is not None:
            self._scheduler.flush()

    def update_memo(self, memo_id: str, content: str) -> Memo:
        """Synchronously update a memo in the store and the cache.

        A not yet committed edit of the same memo is superseded.

        Raises:
            StorageError: From the store (e.g. NotFoundError).
        """
        stored = self._store.update(memo_id, {"content": content})
        self._dirty.discard(memo_id)
        if self._find(memo_id) is not None:
            self._replace(stored)
        return stored

    def delete(self, memo_id: str) -> None:
        """Remove a memo from the store and the cache.

        Raises:
            StorageError: From the store (e.g. NotFoundError).
        """
        self._store.remove(memo_id)
        self._memos = [m for m in self._memos if m.id != memo_id]
        self._dirty.discard(memo_id)
        if self._current_id == memo_id:
            self._current_id = None
            if not self._dirty:
                self._scheduler.reset()
        logger.debug(f"deleted memo {memo_id}")

    def export(self, fmt: str) -> str:
        """Render the whole cache as ``json`` or ``markdown``."""
        if fmt == "markdown":
            return export_markdown(self._memos, placeholder=self._export_cfg.untitled)
        return export_memos(self._memos, fmt)

    # -- Search ------------------------------------------------------------

    def set_search_query(self, query: str) -> None:
        """Apply *query* once the search debounce window passes quietly."""
        self._cancel_search_timer()
        self._pending_query = query
        if self._search_cfg.debounce <= 0:
            self._apply_search()
            return
        try:
            self._search_handle = self._timers.call_later(
                self._search_cfg.debounce, self._apply_search,
            )
        except RuntimeError as exc:
            logger.debug(f"cannot schedule search debounce ({exc}), applying now")
            self._apply_search()

    def clear_search(self) -> None:
        """Drop any pending query and show every memo immediately."""
        self._cancel_search_timer()
        self._pending_query = None
        self._search_query = ""

    def _apply_search(self) -> None:
        self._search_handle = None
        if self._pending_query is not None:
            self._search_query = self._pending_query
            self._pending_query = None

    def _cancel_search_timer(self) -> None:
        if self._search_handle is not None:
            self._search_handle.cancel()
            self._search_handle = None

    # -- Internal helpers --------------------------------------------------

    def _find(self, memo_id: str) -> Optional[Memo]:
        for memo in self._memos:
            if memo.id == memo_id:
                return memo
        return None

    def _replace(self, memo: Memo) -> None:
        for i, existing in enumerate(self._memos):
            if existing.id == memo.id:
                self._memos[i] = memo
                return

    def _flush_pending(self) -> None:
        if self._dirty or self._scheduler.has_pending:
            self._scheduler.flush()

    def _commit_edit(self, value) -> None:
        """Commit function handed to the scheduler.

        *value* is the last observed (memo_id, content, seq) triple; what gets
        written is the cached content of every dirty memo.
        """
        patches: Dict[str, Dict[str, str]] = {}
        for memo_id in sorted(self._dirty):
            cached = self._find(memo_id)
            if cached is None:
                self._dirty.discard(memo_id)
                continue
            patches[memo_id] = {"content": cached.content}
        if not patches:
            return
        for stored in self._store.update_many(patches):
            cached = self._find(stored.id)
            if cached is not None and cached.content == stored.content:
                self._replace(stored)
                self._dirty.discard(stored.id)
