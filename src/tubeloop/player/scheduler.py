"""Single-queue callback scheduler for the playback supervisor.

Every supervisor transition runs on one scheduler: player callbacks,
settings-store notifications and timers are all queued here and executed
one at a time, so transitions never race each other.

Two implementations:

* ThreadedScheduler - a daemon loop thread on the monotonic clock.
* SteppedScheduler  - deterministic virtual clock for tests; time only
  moves when advance() is called.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
from collections import deque
from typing import Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle:
    """A scheduled callback. cancel() is safe to call any number of times."""

    __slots__ = ("when", "callback", "interval", "cancelled")

    def __init__(self, when: float, callback: Callback, interval: float | None = None):
        self.when = when
        self.callback = callback
        self.interval = interval
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def __repr__(self):
        state = "cancelled" if self.cancelled else "armed"
        return f"<TimerHandle when={self.when:.3f} interval={self.interval} {state}>"


class Scheduler:
    """Timer heap and ready queue shared by the concrete schedulers."""

    def __init__(self):
        self._cond = threading.Condition()
        self._timers: list[tuple[float, int, TimerHandle]] = []
        self._ready: deque[Callback] = deque()
        self._seq = itertools.count()

    def now(self) -> float:
        raise NotImplementedError

    def call_soon(self, callback: Callback):
        """Queue a callback to run on the scheduler as soon as possible."""
        with self._cond:
            self._ready.append(callback)
            self._cond.notify()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run callback once after delay seconds."""
        handle = TimerHandle(self.now() + max(0.0, delay), callback)
        self._push(handle)
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        """Run callback every interval seconds until the handle is cancelled."""
        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        handle = TimerHandle(self.now() + interval, callback, interval)
        self._push(handle)
        return handle

    @property
    def pending_timers(self) -> int:
        """Number of timers that are armed and not cancelled."""
        with self._cond:
            return sum(1 for _, _, h in self._timers if not h.cancelled)

    def _push(self, handle: TimerHandle):
        with self._cond:
            heapq.heappush(self._timers, (handle.when, next(self._seq), handle))
            self._cond.notify()

    def _pop_due(self, now: float) -> TimerHandle | None:
        """Pop the earliest live timer due at or before now. Caller holds the lock."""
        while self._timers:
            when, _, handle = self._timers[0]
            if handle.cancelled:
                heapq.heappop(self._timers)
                continue
            if when > now:
                return None
            heapq.heappop(self._timers)
            return handle
        return None

    def _next_deadline(self) -> float | None:
        """Deadline of the earliest live timer. Caller holds the lock."""
        while self._timers and self._timers[0][2].cancelled:
            heapq.heappop(self._timers)
        return self._timers[0][0] if self._timers else None

    def _fire(self, handle: TimerHandle):
        if handle.cancelled:
            return
        if handle.interval is None:
            handle.cancelled = True
        self._run(handle.callback)
        if handle.interval is not None and not handle.cancelled:
            handle.when += handle.interval
            self._push(handle)

    @staticmethod
    def _run(callback: Callback):
        try:
            callback()
        except Exception:
            logger.exception("Scheduled callback failed: %r", callback)


class SteppedScheduler(Scheduler):
    """Deterministic scheduler used by tests and the CLI dry run.

    call_soon() callbacks run immediately (queued if another callback is
    already running). Timers only fire inside advance().
    """

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = start
        self._draining = False

    def now(self) -> float:
        return self._now

    def call_soon(self, callback: Callback):
        super().call_soon(callback)
        self.run_pending()

    def run_pending(self):
        """Run queued call_soon() callbacks."""
        if self._draining:
            return
        self._draining = True
        try:
            while True:
                with self._cond:
                    if not self._ready:
                        break
                    callback = self._ready.popleft()
                self._run(callback)
        finally:
            self._draining = False

    def advance(self, seconds: float) -> float:
        """Move virtual time forward, firing every timer that falls due in order."""
        if seconds < 0:
            raise ValueError("seconds must be non-negative")
        target = self._now + seconds
        while True:
            with self._cond:
                handle = self._pop_due(target)
            if handle is None:
                break
            self._now = max(self._now, handle.when)
            self._fire(handle)
            self.run_pending()
        self._now = target
        return self._now


class ThreadedScheduler(Scheduler):
    """Scheduler backed by a single daemon thread."""

    def __init__(self, name: str = "supervisor-loop"):
        super().__init__()
        self.name = name
        self._thread: threading.Thread | None = None
        self._running = False

    def now(self) -> float:
        return time.monotonic()

    @property
    def is_running(self) -> bool:
        return self._running

    def in_loop_thread(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def start(self):
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._loop, daemon=True, name=self.name)
        self._thread.start()
        logger.info("Scheduler %s started", self.name)

    def stop(self, timeout: float = 5.0):
        """Stop the loop thread. Queued callbacks that have not run are dropped."""
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread and not self.in_loop_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Scheduler %s stopped", self.name)

    def _loop(self):
        while True:
            with self._cond:
                callback = None
                handle = None
                while self._running:
                    if self._ready:
                        callback = self._ready.popleft()
                        break
                    handle = self._pop_due(self.now())
                    if handle is not None:
                        break
                    deadline = self._next_deadline()
                    timeout = None if deadline is None else max(0.0, deadline - self.now())
                    self._cond.wait(timeout=timeout)
                if not self._running:
                    return
            if callback is not None:
                self._run(callback)
            elif handle is not None:
                self._fire(handle)
