"""Named, re-armable timers scoped to one playback session.

Arming a name that is already armed cancels the previous timer first, so a
name never has two live timers. close() cancels everything and refuses to
arm again: nothing from a destroyed session can fire afterwards.
"""

from __future__ import annotations

import logging
from typing import Callable

from tubeloop.player.scheduler import Scheduler, TimerHandle

logger = logging.getLogger(__name__)

# Timer names used by the supervisor
BUFFERING = "buffering"
PAUSE_RETRY = "pause_retry"
NETWORK_RETRY = "network_retry"
DELAYED_ERROR = "delayed_error"
END_TIME = "end_time"
FORCE_ADVANCE = "force_advance"
MAX_LENGTH = "max_length"


class Watchdog:
    """Group of named timers that can be cancelled together."""

    def __init__(
        self,
        scheduler: Scheduler,
        buffering_timeout: float = 30.0,
        initial_buffering_timeout: float = 45.0,
        label: str = "",
    ):
        self._scheduler = scheduler
        self.buffering_timeout = buffering_timeout
        self.initial_buffering_timeout = initial_buffering_timeout
        self.label = label
        self._timers: dict[str, TimerHandle] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def active(self) -> set[str]:
        """Names of timers that are currently armed."""
        return {name for name, h in self._timers.items() if not h.cancelled}

    def is_armed(self, name: str) -> bool:
        handle = self._timers.get(name)
        return handle is not None and not handle.cancelled

    def arm(self, name: str, delay: float, callback: Callable[[], None]) -> TimerHandle | None:
        """Arm a one-shot timer, replacing any timer already armed under name."""
        return self._arm(name, delay, callback, repeat=False)

    def arm_interval(self, name: str, interval: float, callback: Callable[[], None]) -> TimerHandle | None:
        """Arm a repeating timer, replacing any timer already armed under name."""
        return self._arm(name, interval, callback, repeat=True)

    def arm_buffering(self, callback: Callable[[], None], cold_start: bool) -> TimerHandle | None:
        """Arm the buffering watchdog.

        A cold start (nothing has played yet this session) gets the longer
        initial timeout; every later buffering episode gets the short one.
        """
        delay = self.initial_buffering_timeout if cold_start else self.buffering_timeout
        return self.arm(BUFFERING, delay, callback)

    def cancel(self, name: str) -> bool:
        handle = self._timers.pop(name, None)
        if handle is None or handle.cancelled:
            return False
        handle.cancel()
        logger.debug("[%s] cancelled timer %s", self.label, name)
        return True

    def cancel_all(self) -> int:
        """Cancel every armed timer. Returns how many were live."""
        count = 0
        for handle in self._timers.values():
            if not handle.cancelled:
                handle.cancel()
                count += 1
        self._timers.clear()
        if count:
            logger.debug("[%s] cancelled %d timer(s)", self.label, count)
        return count

    def close(self) -> int:
        """Cancel everything and stop accepting new timers."""
        count = self.cancel_all()
        self._closed = True
        return count

    def _arm(self, name, delay, callback, repeat):
        if self._closed:
            logger.debug("[%s] ignoring arm(%s) on closed watchdog", self.label, name)
            return None
        self.cancel(name)

        holder: list[TimerHandle] = []

        def fire():
            handle = holder[0]
            if self._closed or self._timers.get(name) is not handle:
                return
            if not repeat:
                del self._timers[name]
            callback()

        if repeat:
            handle = self._scheduler.call_every(delay, fire)
        else:
            handle = self._scheduler.call_later(delay, fire)
        holder.append(handle)
        self._timers[name] = handle
        logger.debug("[%s] armed %s timer %s (%.1fs)", self.label,
                     "interval" if repeat else "one-shot", name, delay)
        return handle
