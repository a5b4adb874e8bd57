"""
Autosave — debounced, retried commits with an observable status

Two layers:

1. A pure state machine. ``transition(state, event, policy)`` returns the next
   ``SchedulerState`` and the side effects to perform. It never touches
   timers or the commit function, so every debounce/retry path can be tested
   by feeding events by hand.

2. ``SaveScheduler``, the driver. It turns observed values into events,
   executes effects on an injected ``Timers`` object and calls the commit
   function.

Status flow:

    idle -> typing -> saving -> saved
                        |  ^      |
                        |  +------+ (retry: saving -> saving)
                        v
                      error      saved/error -> typing on the next edit

Invariants:
    - At most one commit attempt is in flight.
    - Every attempt commits the most recently observed value.
    - A flush/debounce/retry that fires while an attempt is in flight is
      remembered and run as soon as the attempt settles.
    - Retries back off as min(base * 2**(n-1), cap) and stop after
      max_retries; the next edit or flush starts a fresh budget.
    - When the timers cannot schedule (AsyncioTimers with no running loop),
      a debounce or retry fires at once instead of being dropped.

Author: memopad contributors
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, List, Literal, Optional, Tuple

from memopad.timers import TimerHandle, Timers
from memopad.types import SaveStatus, now_utc

logger = logging.getLogger(__name__)

DEBOUNCE_DELAY = 3.0
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0
RETRY_BACKOFF_CAP = 10.0

EventKind = Literal[
    "edit", "flush", "debounce_fired", "retry_fired", "commit_settled", "reset",
]
EffectKind = Literal[
    "arm_debounce", "cancel_debounce", "arm_retry", "cancel_retry",
    "start_commit", "record_saved",
]

CommitFn = Callable[[Any], Any]
StatusListener = Callable[[SaveStatus], None]


# ---------------------------------------------------------------------------
# State machine (pure)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """Timing parameters of the scheduler (seconds)."""

    debounce: float = DEBOUNCE_DELAY
    max_retries: int = MAX_RETRIES
    base_delay: float = RETRY_BASE_DELAY
    backoff_cap: float = RETRY_BACKOFF_CAP

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if self.debounce < 0:
            errors.append(f"debounce: {self.debounce} must be >= 0")
        if self.max_retries < 0:
            errors.append(f"max_retries: {self.max_retries} must be >= 0")
        if self.base_delay < 0:
            errors.append(f"base_delay: {self.base_delay} must be >= 0")
        if self.backoff_cap < self.base_delay:
            errors.append(
                f"backoff_cap: {self.backoff_cap} must be >= base_delay ({self.base_delay})"
            )
        return errors


@dataclass(frozen=True)
class SchedulerState:
    """Snapshot of the scheduler. ``epoch`` changes on every reset()."""

    status: SaveStatus = "idle"
    retry_count: int = 0
    in_flight: bool = False
    debounce_armed: bool = False
    retry_armed: bool = False
    rerun: bool = False
    epoch: int = 0


@dataclass(frozen=True)
class Event:
    kind: EventKind
    ok: bool = True
    epoch: int = 0


@dataclass(frozen=True)
class Effect:
    kind: EffectKind
    delay: float = 0.0


def backoff_delay(retry_count: int, base_delay: float, backoff_cap: float) -> float:
    """Delay before retry number *retry_count* (1-based)."""
    return min(base_delay * (2 ** (retry_count - 1)), backoff_cap)


def _begin_attempt(state: SchedulerState) -> Tuple[SchedulerState, Tuple[Effect, ...]]:
    """Start a commit now, or queue one behind the attempt in flight."""
    cancels: List[Effect] = []
    if state.debounce_armed:
        cancels.append(Effect("cancel_debounce"))
    if state.in_flight:
        return replace(state, debounce_armed=False, rerun=True), tuple(cancels)
    if state.retry_armed:
        cancels.append(Effect("cancel_retry"))
    new = replace(
        state,
        status="saving",
        in_flight=True,
        debounce_armed=False,
        retry_armed=False,
        rerun=False,
    )
    return new, tuple(cancels) + (Effect("start_commit"),)


def _settle(
    state: SchedulerState, ok: bool, policy: RetryPolicy,
) -> Tuple[SchedulerState, Tuple[Effect, ...]]:
    state = replace(state, in_flight=False)

    if ok:
        # An edit still waiting on its debounce keeps the status at typing.
        status: SaveStatus = "typing" if state.debounce_armed else "saved"
        state = replace(state, status=status, retry_count=0)
        effects: Tuple[Effect, ...] = (Effect("record_saved"),)
        if state.rerun:
            state, more = _begin_attempt(state)
            effects += more
        return state, effects

    if state.retry_count < policy.max_retries:
        count = state.retry_count + 1
        delay = backoff_delay(count, policy.base_delay, policy.backoff_cap)
        state = replace(
            state, status="saving", retry_count=count, retry_armed=True, rerun=False,
        )
        return state, (Effect("arm_retry", delay),)

    state = replace(state, status="error", retry_count=0)
    if state.rerun:
        return _begin_attempt(state)
    return state, ()


def transition(
    state: SchedulerState, event: Event, policy: RetryPolicy,
) -> Tuple[SchedulerState, Tuple[Effect, ...]]:
    """Pure transition function of the autosave state machine."""
    kind = event.kind

    if kind == "edit":
        status: SaveStatus = "saving" if state.status == "saving" else "typing"
        effects: Tuple[Effect, ...] = ()
        if state.debounce_armed:
            effects += (Effect("cancel_debounce"),)
        effects += (Effect("arm_debounce", policy.debounce),)
        return replace(state, status=status, debounce_armed=True), effects

    if kind == "flush":
        return _begin_attempt(state)

    if kind == "debounce_fired":
        if not state.debounce_armed:
            return state, ()
        return _begin_attempt(replace(state, debounce_armed=False))

    if kind == "retry_fired":
        if not state.retry_armed:
            return state, ()
        return _begin_attempt(replace(state, retry_armed=False))

    if kind == "commit_settled":
        if event.epoch != state.epoch:
            # Attempt started before a reset(): only release the slot.
            state = replace(state, in_flight=False)
            if state.rerun:
                return _begin_attempt(state)
            return state, ()
        return _settle(state, event.ok, policy)

    if kind == "reset":
        new = SchedulerState(in_flight=state.in_flight, epoch=state.epoch + 1)
        return new, (Effect("cancel_debounce"), Effect("cancel_retry"))

    raise ValueError(f"Unknown scheduler event: {kind!r}")


# ---------------------------------------------------------------------------
# Driver
# ---------------------------------------------------------------------------

_UNSET = object()


class SaveScheduler:
    """
    Rate-limited, retried commit stream for a rapidly changing value.

    The commit function receives the latest observed value. It fails by
    raising, by returning False, or by returning an awaitable that does either
    (awaitables run on the running asyncio loop). Failures never propagate to
    the caller of observe()/flush(); they show up as status ``error`` once
    retries are exhausted.
    """

    def __init__(
        self,
        commit: CommitFn,
        timers: Timers,
        debounce: float = DEBOUNCE_DELAY,
        max_retries: int = MAX_RETRIES,
        base_delay: float = RETRY_BASE_DELAY,
        backoff_cap: float = RETRY_BACKOFF_CAP,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        policy = RetryPolicy(
            debounce=debounce,
            max_retries=max_retries,
            base_delay=base_delay,
            backoff_cap=backoff_cap,
        )
        errors = policy.validate()
        if errors:
            raise ValueError(f"Invalid autosave settings: {'; '.join(errors)}")
        self._commit = commit
        self._timers = timers
        self._policy = policy
        self._clock = clock or now_utc
        self._state = SchedulerState()
        self._latest: Any = _UNSET
        self._last_saved_at: Optional[datetime] = None
        self._debounce_handle: Optional[TimerHandle] = None
        self._retry_handle: Optional[TimerHandle] = None
        self._listeners: List[StatusListener] = []
        self._attempts = 0

    # -- Public state ------------------------------------------------------

    @property
    def status(self) -> SaveStatus:
        return self._state.status

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def last_saved_at(self) -> Optional[datetime]:
        return self._last_saved_at

    @property
    def retry_count(self) -> int:
        return self._state.retry_count

    @property
    def in_flight(self) -> bool:
        return self._state.in_flight

    @property
    def has_pending(self) -> bool:
        """True while a debounce, retry or queued rerun is outstanding."""
        s = self._state
        return s.debounce_armed or s.retry_armed or s.rerun

    @property
    def attempts(self) -> int:
        """Total commit attempts started since construction."""
        return self._attempts

    @property
    def latest_value(self) -> Any:
        return None if self._latest is _UNSET else self._latest

    def add_listener(self, listener: StatusListener) -> None:
        """Call *listener* with the new status on every status change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -- Operations --------------------------------------------------------

    def observe(self, value: Any) -> None:
        """Record a new value and (re)start the debounce window."""
        if self._latest is not _UNSET and value == self._latest:
            return
        self._latest = value
        self._dispatch(Event("edit"))

    def flush(self) -> None:
        """Commit the latest value now, skipping the debounce wait."""
        if self._latest is _UNSET:
            return
        self._dispatch(Event("flush"))

    def reset(self) -> None:
        """Cancel timers and return to idle. An attempt in flight is ignored."""
        self._last_saved_at = None
        self._dispatch(Event("reset"))

    # -- Internals ---------------------------------------------------------

    def _dispatch(self, event: Event) -> None:
        previous = self._state.status
        self._state, effects = transition(self._state, event, self._policy)
        if self._state.status != previous:
            logger.debug(f"autosave: {previous} -> {self._state.status} ({event.kind})")
            if self._state.status == "error":
                logger.error(
                    f"autosave: giving up after {self._policy.max_retries} retries"
                )
            for listener in list(self._listeners):
                listener(self._state.status)
        for effect in effects:
            self._apply(effect)

    def _apply(self, effect: Effect) -> None:
        kind = effect.kind
        if kind == "cancel_debounce":
            self._cancel_debounce()
        elif kind == "arm_debounce":
            self._cancel_debounce()
            self._debounce_handle = self._schedule(effect.delay, self._on_debounce)
        elif kind == "cancel_retry":
            self._cancel_retry()
        elif kind == "arm_retry":
            self._cancel_retry()
            logger.warning(
                f"autosave: retry {self._state.retry_count}/{self._policy.max_retries} "
                f"in {effect.delay:.2f}s"
            )
            self._retry_handle = self._schedule(effect.delay, self._on_retry)
        elif kind == "record_saved":
            self._last_saved_at = self._clock()
        elif kind == "start_commit":
            self._start_commit()

    def _schedule(self, delay: float, callback: Callable[[], None]) -> Optional[TimerHandle]:
        """Arm *callback* after *delay*, or run it now if no loop can hold it."""
        try:
            return self._timers.call_later(delay, callback)
        except RuntimeError as exc:
            logger.debug(f"autosave: cannot schedule timer ({exc}), firing now")
            callback()
            return None

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _cancel_retry(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _on_debounce(self) -> None:
        self._debounce_handle = None
        self._dispatch(Event("debounce_fired"))

    def _on_retry(self) -> None:
        self._retry_handle = None
        self._dispatch(Event("retry_fired"))

    def _start_commit(self) -> None:
        epoch = self._state.epoch
        value = self._latest
        self._attempts += 1
        logger.debug(f"autosave: commit attempt {self._attempts}")
        try:
            result = self._commit(value)
        except Exception as exc:
            logger.warning(f"autosave: commit failed: {exc}")
            self._settle(False, epoch)
            return

        if inspect.isawaitable(result):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError as exc:
                if inspect.iscoroutine(result):
                    result.close()
                logger.warning(f"autosave: async commit without a running loop: {exc}")
                self._settle(False, epoch)
                return
            future = asyncio.ensure_future(result, loop=loop)
            future.add_done_callback(lambda f: self._on_commit_done(f, epoch))
            return

        self._settle(result is not False, epoch)

    def _on_commit_done(self, future: "asyncio.Future[Any]", epoch: int) -> None:
        if future.cancelled():
            logger.warning("autosave: commit cancelled")
            ok = False
        elif future.exception() is not None:
            logger.warning(f"autosave: commit failed: {future.exception()}")
            ok = False
        else:
            ok = future.result() is not False
        self._settle(ok, epoch)

    def _settle(self, ok: bool, epoch: int) -> None:
        self._dispatch(Event("commit_settled", ok=ok, epoch=epoch))
