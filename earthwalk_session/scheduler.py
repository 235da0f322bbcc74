"""
Scheduling and serialisation primitives for session state machines.

The state machines are single-writer: every location sample, timer tick and
collaborator result is applied on one owning context. This module provides
the pieces that make that true:

- EventLoop: bounded queue drained by a single consumer thread
- ThreadScheduler: real-time timers whose callbacks are dispatched onto the
  EventLoop (cancellation is re-checked on the owner thread, so nothing
  fires after cancel() returns on that thread)
- ManualScheduler: virtual clock for replays and tests
- InlineExecutor: runs "background" work synchronously (replays and tests)

Threading Model:
- EventLoop thread (owner): runs every state machine mutation
- Timer threads (ThreadScheduler): only enqueue onto the EventLoop
- Executor threads: run collaborator I/O, results are enqueued back
"""

import heapq
import itertools
import logging
import queue
import threading
import time
from concurrent.futures import Executor, Future
from typing import Any, Callable, List, Optional, Protocol, Set, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]
Dispatch = Callable[[Callback], Any]


class TimerHandle:
    """Cancellation handle for a scheduled callback."""

    def __init__(self, name: str = ""):
        self.name = name
        self._cancelled = threading.Event()
        self._on_cancel: Optional[Callback] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Idempotent. The callback will not run after this returns."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        if self._on_cancel is not None:
            self._on_cancel()

    def __repr__(self) -> str:
        return f"TimerHandle(name={self.name!r}, cancelled={self.cancelled})"


class Scheduler(Protocol):
    """Scheduled-task abstraction used by the sessions."""

    def now(self) -> float:
        """Clock the timers run on; only differences are meaningful."""
        ...

    def wall_time(self) -> float:
        """POSIX time, for timestamps that leave the process."""
        ...

    def call_later(self, delay: float, callback: Callback, name: str = "") -> TimerHandle:
        ...

    def call_every(self, interval: float, callback: Callback, name: str = "") -> TimerHandle:
        ...


class ManualScheduler:
    """
    Deterministic scheduler driven by advance().

    Timers fire in due-time order (ties in scheduling order), with now()
    set to each timer's due time while it runs. The virtual clock is also
    the wall clock, so start it at a POSIX timestamp when replaying.

    Usage:
        scheduler = ManualScheduler(start=0.0)
        handle = scheduler.call_every(1.0, tick)
        scheduler.advance(3.0)   # tick runs at t=1, 2, 3
        handle.cancel()
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._seq = itertools.count()
        self._heap: List[Tuple[float, int, TimerHandle, Callback, Optional[float]]] = []

    def now(self) -> float:
        return self._now

    def wall_time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback, name: str = "") -> TimerHandle:
        handle = TimerHandle(name)
        self._push(self._now + max(0.0, delay), handle, callback, None)
        return handle

    def call_every(self, interval: float, callback: Callback, name: str = "") -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        handle = TimerHandle(name)
        self._push(self._now + interval, handle, callback, interval)
        return handle

    def _push(self, due: float, handle: TimerHandle, callback: Callback,
              interval: Optional[float]) -> None:
        heapq.heappush(self._heap, (due, next(self._seq), handle, callback, interval))

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due timers. Returns fired count."""
        return self.advance_to(self._now + seconds)

    def advance_to(self, target: float) -> int:
        fired = 0
        while self._heap and self._heap[0][0] <= target:
            due, _, handle, callback, interval = heapq.heappop(self._heap)
            if handle.cancelled:
                continue
            self._now = max(self._now, due)
            if interval is not None:
                self._push(due + interval, handle, callback, interval)
            callback()
            fired += 1
        self._now = max(self._now, target)
        return fired

    @property
    def pending_count(self) -> int:
        return sum(1 for entry in self._heap if not entry[2].cancelled)


class ThreadScheduler:
    """
    Wall-clock scheduler backed by daemon threads.

    Callbacks are handed to dispatch (normally EventLoop.submit) instead of
    running on the timer thread. Timers and elapsed times use the monotonic
    clock; persisted timestamps use wall_clock.
    """

    def __init__(
        self,
        dispatch: Optional[Dispatch] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self._dispatch = dispatch or (lambda fn: fn())
        self._clock = clock
        self._wall_clock = wall_clock
        self._handles: Set[TimerHandle] = set()
        self._lock = threading.Lock()

    def now(self) -> float:
        return self._clock()

    def wall_time(self) -> float:
        return self._wall_clock()

    def call_later(self, delay: float, callback: Callback, name: str = "") -> TimerHandle:
        handle = TimerHandle(name)
        timer = threading.Timer(max(0.0, delay), self._fire, args=(handle, callback))
        timer.daemon = True
        handle._on_cancel = timer.cancel
        self._track(handle)
        timer.start()
        return handle

    def call_every(self, interval: float, callback: Callback, name: str = "") -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        handle = TimerHandle(name)

        def run() -> None:
            while not handle._cancelled.wait(interval):
                self._fire(handle, callback)

        thread = threading.Thread(target=run, name=f"timer-{name or 'periodic'}", daemon=True)
        self._track(handle)
        thread.start()
        return handle

    def _track(self, handle: TimerHandle) -> None:
        with self._lock:
            self._handles = {h for h in self._handles if not h.cancelled}
            self._handles.add(handle)

    def _fire(self, handle: TimerHandle, callback: Callback) -> None:
        if handle.cancelled:
            return

        def guarded() -> None:
            if not handle.cancelled:
                callback()

        self._dispatch(guarded)

    def shutdown(self) -> None:
        """Cancel every outstanding timer."""
        with self._lock:
            handles, self._handles = self._handles, set()
        for handle in handles:
            handle.cancel()


class EventLoop:
    """
    Single-consumer event queue (the session's owning context).

    Usage:
        loop = EventLoop.from_config(config)
        loop.start()
        location_source.start_updating(
            on_sample=lambda s: loop.submit(session.handle_location, s),
            on_error=lambda e: loop.submit(session.handle_location_error, e),
        )
        ...
        loop.stop()
    """

    def __init__(self, maxsize: int = 256, name: str = "earthwalk-session"):
        self.name = name
        self._queue: "queue.Queue[Tuple[Callable[..., Any], tuple]]" = queue.Queue(maxsize=maxsize)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    @classmethod
    def from_config(cls, config: Any, name: str = "earthwalk-session") -> "EventLoop":
        """Loop sized by SessionConfig.event_queue_size."""
        return cls(maxsize=config.event_queue_size, name=name)

    def submit(self, fn: Callable[..., Any], *args: Any) -> bool:
        """
        Enqueue fn(*args) for the owner thread.

        Returns:
            False if the queue is full (event dropped)
        """
        try:
            self._queue.put_nowait((fn, args))
            return True
        except queue.Full:
            self._dropped += 1
            logger.warning(
                f"Event queue full ({self._queue.maxsize}), dropped event "
                f"(total dropped: {self._dropped})"
            )
            return False

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info(f"EventLoop '{self.name}' started")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                fn, args = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            self._execute(fn, args)

    def _execute(self, fn: Callable[..., Any], args: tuple) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception(f"Unhandled error in event handler {getattr(fn, '__name__', fn)!r}")
        finally:
            self._queue.task_done()

    def run_pending(self) -> int:
        """Drain the queue on the calling thread. Returns handled count."""
        handled = 0
        while True:
            try:
                fn, args = self._queue.get_nowait()
            except queue.Empty:
                return handled
            self._execute(fn, args)
            handled += 1

    def stop(self, timeout: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info(f"EventLoop '{self.name}' stopped (dropped={self._dropped})")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def dropped_count(self) -> int:
        return self._dropped

    def __len__(self) -> int:
        return self._queue.qsize()


class InlineExecutor(Executor):
    """Executor that runs work immediately on the calling thread."""

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future
