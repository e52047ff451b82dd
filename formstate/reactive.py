"""Reactive compatibility shim.

FormHandle does not depend on a particular UI reactive library. It talks to
a ReactiveRuntime offering signals, memos, effects and timers. Two runtime
generations implement the contract:

- TrackingRuntime: memos and effects subscribe to every signal they read
  while computing, plus any dependencies passed in explicitly.
- ExplicitRuntime: memos and effects only follow the dependencies passed in.

The engine always passes its dependencies explicitly, so it behaves the same
on both. The generation is chosen by RuntimeConfig, never by global state.

Timers come from a scheduler: ManualScheduler keeps a virtual clock that the
caller advances (deterministic, used in tests and headless code);
AsyncioScheduler uses the running event loop.

Usage:
    >>> runtime = create_runtime(RuntimeConfig(generation="explicit"))
    >>> count = runtime.create_signal(1)
    >>> double = runtime.create_memo(lambda: count.get() * 2, deps=[count])
    >>> count.set(5)
    >>> double.get()
    10
    >>> fired = []
    >>> _ = runtime.set_timeout(100, lambda: fired.append("tick"))
    >>> runtime.scheduler.advance(100)
    1
    >>> fired
    ['tick']
"""

import asyncio
import heapq
import itertools
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar, Union

from typing_extensions import Protocol, runtime_checkable

from formstate.config import RuntimeConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

SubscriptionId = int
"""Opaque identifier returned by subscribe()."""


class TimerHandle:
    """A scheduled callback that can be cancelled until it fires.

    Attributes:
        cancelled: cancel() was called before the timer fired
        fired: The callback has been invoked
    """

    def __init__(self, on_cancel: Optional[Callable[[], None]] = None):
        self._on_cancel = on_cancel
        self.cancelled = False
        self.fired = False

    @property
    def active(self) -> bool:
        return not (self.cancelled or self.fired)

    def cancel(self) -> bool:
        """Cancel the timer. Returns False if it already fired or was cancelled."""
        if not self.active:
            return False
        self.cancelled = True
        if self._on_cancel is not None:
            self._on_cancel()
            self._on_cancel = None
        return True

    def _fire(self, callback: Callable[[], Any]) -> None:
        if not self.active:
            return
        self.fired = True
        self._on_cancel = None
        try:
            callback()
        except Exception:
            logger.exception("Timer callback %r failed", callback)

    def __repr__(self) -> str:
        status = "cancelled" if self.cancelled else "fired" if self.fired else "pending"
        return f"<TimerHandle {status}>"


@runtime_checkable
class Scheduler(Protocol):
    """Source of delayed callbacks."""

    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        ...


class ManualScheduler:
    """Virtual-clock scheduler.

    Nothing runs until advance() moves the clock; due timers then fire in
    due-time order (ties in scheduling order). A cancelled timer drops its
    callback at once, and the queue is compacted once cancelled entries make
    up more than half of it.

    Examples:
        >>> scheduler = ManualScheduler()
        >>> calls = []
        >>> first = scheduler.call_later(300, lambda: calls.append(1))
        >>> _ = first.cancel()
        >>> _ = scheduler.call_later(300, lambda: calls.append(2))
        >>> scheduler.advance(300), calls
        (1, [2])
    """

    def __init__(self) -> None:
        self._now = 0.0
        # entries are [due, seq, handle, callback]; callback is None once cancelled
        self._queue: List[List[Any]] = []
        self._seq = itertools.count()
        self._cancelled = 0

    @property
    def now(self) -> float:
        """Current virtual time in milliseconds."""
        return self._now

    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        if delay_ms < 0:
            raise ValueError(f"delay_ms must be >= 0, got {delay_ms}")
        entry: List[Any] = [self._now + delay_ms, next(self._seq), None, callback]
        handle = TimerHandle(on_cancel=lambda: self._release(entry))
        entry[2] = handle
        heapq.heappush(self._queue, entry)
        return handle

    def _release(self, entry: List[Any]) -> None:
        entry[3] = None
        self._cancelled += 1
        if self._cancelled * 2 > len(self._queue):
            self._queue = [e for e in self._queue if e[3] is not None]
            heapq.heapify(self._queue)
            self._cancelled = 0

    def advance(self, ms: float) -> int:
        """Move the clock forward, firing every timer that becomes due.

        Timers scheduled by callbacks fire too if they fall inside the window.

        Returns:
            Number of callbacks invoked
        """
        if ms < 0:
            raise ValueError(f"Cannot move the clock backwards ({ms} ms)")
        target = self._now + ms
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle, callback = heapq.heappop(self._queue)
            if callback is None:
                self._cancelled -= 1
                continue
            self._now = due
            handle._fire(callback)
            fired += 1
        self._now = target
        return fired

    def run_all(self) -> int:
        """Advance until no timer is pending."""
        fired = 0
        while self.pending_count():
            fired += self.advance(max(0.0, self._queue[0][0] - self._now))
        return fired

    def pending_count(self) -> int:
        return len(self._queue) - self._cancelled

    def queued_count(self) -> int:
        """Entries held in the queue, including cancelled ones not yet compacted."""
        return len(self._queue)


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    Without an explicit loop, timers go on the loop running at call time.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        handle = TimerHandle()
        timer = loop.call_later(delay_ms / 1000.0, handle._fire, callback)
        handle._on_cancel = timer.cancel
        return handle


class Signal(Generic[T]):
    """Observable value cell.

    set() stores the new value at once, then delivers it to subscribers in
    registration order. A set() issued while notifications are running is
    queued and delivered after the current round, so every subscriber sees
    values in the order they were produced and none is skipped.

    Examples:
        >>> sig = Signal(0)
        >>> seen = []
        >>> sid = sig.subscribe(seen.append)
        >>> sig.set(1); sig.update(lambda v: v + 1)
        >>> seen, sig.get()
        ([1, 2], 2)
    """

    def __init__(self, value: T, runtime: Optional["_BaseRuntime"] = None, name: Optional[str] = None):
        self._value = value
        self._runtime = runtime
        self.name = name
        self._subscribers: Dict[SubscriptionId, Callable[[T], Any]] = {}
        self._ids = itertools.count(1)
        self._pending: Deque[T] = deque()
        self._flushing = False

    def get(self) -> T:
        """Current value; recorded as a dependency by a tracking runtime."""
        if self._runtime is not None:
            self._runtime._record_read(self)
        return self._value

    def get_untracked(self) -> T:
        return self._value

    def set(self, value: T) -> None:
        self._value = value
        self._pending.append(value)
        if self._flushing:
            return
        self._flushing = True
        try:
            while self._pending:
                self._deliver(self._pending.popleft())
        finally:
            self._flushing = False

    def update(self, fn: Callable[[T], T]) -> None:
        """Set the result of fn applied to the current value."""
        self.set(fn(self._value))

    def _deliver(self, value: T) -> None:
        for sid, callback in list(self._subscribers.items()):
            # unsubscribed by an earlier callback of this round
            if sid not in self._subscribers:
                continue
            try:
                callback(value)
            except Exception:
                logger.exception("Subscriber %d of signal %s failed", sid, self.name or hex(id(self)))

    def subscribe(self, callback: Callable[[T], Any]) -> SubscriptionId:
        sid = next(self._ids)
        self._subscribers[sid] = callback
        return sid

    def unsubscribe(self, sid: SubscriptionId) -> bool:
        return self._subscribers.pop(sid, None) is not None

    def clear_subscribers(self) -> None:
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def __repr__(self) -> str:
        return f"Signal({self.name or ''}={self._value!r})"


Source = Union[Signal, "Memo"]


def _signal_of(source: Source) -> Signal:
    return source.signal if isinstance(source, Memo) else source


class _Computation:
    """Shared subscription bookkeeping of memos and effects."""

    def __init__(self, runtime: "_BaseRuntime", fn: Callable[[], Any], deps: Iterable[Source]):
        self._runtime = runtime
        self._fn = fn
        self._deps: Tuple[Signal, ...] = tuple(_signal_of(d) for d in deps)
        self._sources: Dict[Signal, SubscriptionId] = {}
        self._active = True

    def _evaluate(self) -> Tuple[Any, List[Signal]]:
        return self._runtime._evaluate(self._fn, self._deps)

    def _resubscribe(self, signals: List[Signal]) -> None:
        wanted = set(signals)
        for signal in list(self._sources):
            if signal not in wanted:
                signal.unsubscribe(self._sources.pop(signal))
        for signal in signals:
            if signal not in self._sources:
                self._sources[signal] = signal.subscribe(self._on_change)

    def _on_change(self, _value: Any) -> None:
        raise NotImplementedError

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def source_count(self) -> int:
        """Number of signals currently followed."""
        return len(self._sources)

    def dispose(self) -> None:
        if not self._active:
            return
        self._active = False
        for signal, sid in self._sources.items():
            signal.unsubscribe(sid)
        self._sources.clear()


class Memo(_Computation, Generic[T]):
    """Cached derived value, recomputed when one of its inputs changes.

    Subscribers of the memo's own signal are only notified when the derived
    value actually changes.
    """

    def __init__(self, runtime: "_BaseRuntime", fn: Callable[[], T], deps: Iterable[Source] = ()):
        super().__init__(runtime, fn, deps)
        value, reads = self._evaluate()
        self.signal: Signal[T] = Signal(value, runtime)
        self._resubscribe(reads)

    def _on_change(self, _value: Any) -> None:
        if not self._active:
            return
        try:
            value, reads = self._evaluate()
        except Exception:
            logger.exception("Memo %r failed to recompute, keeping previous value", self._fn)
            return
        self._resubscribe(reads)
        if value != self.signal.get_untracked():
            self.signal.set(value)

    def get(self) -> T:
        return self.signal.get()

    def get_untracked(self) -> T:
        return self.signal.get_untracked()

    def dispose(self) -> None:
        super().dispose()
        self.signal.clear_subscribers()


class Effect(_Computation):
    """Side effect run once on creation and again on each input change."""

    def __init__(self, runtime: "_BaseRuntime", fn: Callable[[], Any], deps: Iterable[Source] = ()):
        super().__init__(runtime, fn, deps)
        self._running = False
        self._rerun = False
        self.run_count = 0
        self.run()

    def run(self) -> None:
        if not self._active:
            return
        if self._running:
            # triggered by its own side effect; run again once finished
            self._rerun = True
            return
        self._running = True
        try:
            while True:
                self._rerun = False
                self.run_count += 1
                try:
                    _, reads = self._evaluate()
                except Exception:
                    logger.exception("Effect %r failed", self._fn)
                    reads = list(self._sources) or list(self._deps)
                if not self._active:
                    break
                self._resubscribe(reads)
                if not self._rerun:
                    break
        finally:
            self._running = False

    def _on_change(self, _value: Any) -> None:
        self.run()

    def stop(self) -> None:
        self.dispose()


@runtime_checkable
class ReactiveRuntime(Protocol):
    """Contract between FormHandle and a reactive runtime."""

    scheduler: Scheduler

    def create_signal(self, value: Any, name: Optional[str] = None) -> Signal:
        ...

    def create_memo(self, fn: Callable[[], Any], deps: Iterable[Source] = ()) -> Memo:
        ...

    def create_effect(self, fn: Callable[[], Any], deps: Iterable[Source] = ()) -> Effect:
        ...

    def set_timeout(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        ...

    def dispose(self) -> None:
        ...


class _BaseRuntime:
    """Owns the memos, effects and timers it creates; dispose() releases them all."""

    generation = ""
    tracks_reads = False

    def __init__(self, scheduler: Optional[Scheduler] = None) -> None:
        self.scheduler = scheduler if scheduler is not None else ManualScheduler()
        self._collectors: List[Dict[Signal, None]] = []
        self._computations: List[_Computation] = []
        self._timers: List[TimerHandle] = []
        self._disposed = False

    def _record_read(self, signal: Signal) -> None:
        if self.tracks_reads and self._collectors:
            self._collectors[-1][signal] = None

    def _evaluate(self, fn: Callable[[], Any], deps: Tuple[Signal, ...]) -> Tuple[Any, List[Signal]]:
        if not self.tracks_reads:
            return fn(), list(dict.fromkeys(deps))
        collector: Dict[Signal, None] = dict.fromkeys(deps)
        self._collectors.append(collector)
        try:
            value = fn()
        finally:
            self._collectors.pop()
        return value, list(collector)

    def create_signal(self, value: Any, name: Optional[str] = None) -> Signal:
        return Signal(value, self, name)

    def create_memo(self, fn: Callable[[], Any], deps: Iterable[Source] = ()) -> Memo:
        memo = Memo(self, fn, deps)
        self._computations.append(memo)
        return memo

    def create_effect(self, fn: Callable[[], Any], deps: Iterable[Source] = ()) -> Effect:
        effect = Effect(self, fn, deps)
        self._computations.append(effect)
        return effect

    def set_timeout(self, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        handle = self.scheduler.call_later(delay_ms, callback)
        self._timers = [t for t in self._timers if t.active]
        self._timers.append(handle)
        return handle

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Cancel pending timers and stop every memo and effect. Idempotent."""
        if self._disposed:
            return
        self._disposed = True
        for timer in self._timers:
            timer.cancel()
        for computation in self._computations:
            computation.dispose()
        self._timers.clear()
        self._computations.clear()
        logger.debug("%s runtime disposed", self.generation)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} scheduler={type(self.scheduler).__name__}>"


class TrackingRuntime(_BaseRuntime):
    """Runtime whose memos and effects track the signals they read."""

    generation = "tracking"
    tracks_reads = True


class ExplicitRuntime(_BaseRuntime):
    """Runtime whose memos and effects only follow explicit dependencies."""

    generation = "explicit"
    tracks_reads = False


def create_runtime(
    config: Optional[RuntimeConfig] = None,
    scheduler: Optional[Scheduler] = None,
) -> _BaseRuntime:
    """Build the runtime selected by config.

    Args:
        config: Generation and scheduler choice (defaults to tracking/manual)
        scheduler: Scheduler instance overriding config.scheduler
    """
    config = config or RuntimeConfig()
    if scheduler is None:
        scheduler = AsyncioScheduler() if config.scheduler == "asyncio" else ManualScheduler()
    runtime_cls = TrackingRuntime if config.generation == "tracking" else ExplicitRuntime
    return runtime_cls(scheduler)


__all__ = [
    "SubscriptionId",
    "TimerHandle",
    "Scheduler",
    "ManualScheduler",
    "AsyncioScheduler",
    "Signal",
    "Memo",
    "Effect",
    "ReactiveRuntime",
    "TrackingRuntime",
    "ExplicitRuntime",
    "create_runtime",
]
