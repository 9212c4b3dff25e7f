"""The video surface a player renders into, and its fullscreen toggle.

The toggle never assumes a request worked: is_fullscreen only changes when
the backend reports the actual state through on_fullscreen_change().
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

logger = logging.getLogger(__name__)


class FullscreenBackend(Protocol):
    def set_fullscreen(self, enabled: bool) -> bool: ...


class VideoSurface:
    """Container handed to the player factory.

    Players that can go fullscreen attach() themselves while alive and
    report state changes with on_fullscreen_change().
    """

    def __init__(self, name: str = "main", fullscreen_on_start: bool = False):
        self.name = name
        self.fullscreen_on_start = fullscreen_on_start
        self._backend: FullscreenBackend | None = None
        self._fullscreen = False
        self._listeners: list[Callable[[bool], None]] = []
        self._lock = threading.Lock()

    @property
    def is_fullscreen(self) -> bool:
        return self._fullscreen

    @property
    def attached(self) -> bool:
        return self._backend is not None

    def attach(self, backend: FullscreenBackend):
        with self._lock:
            self._backend = backend
        logger.debug("Surface %s attached to %r", self.name, backend)

    def detach(self, backend: FullscreenBackend):
        """Detach backend if it is still the attached one."""
        with self._lock:
            if self._backend is not backend:
                return
            self._backend = None
        # No backend, nothing on screen to be fullscreen
        self.on_fullscreen_change(False)

    def add_listener(self, listener: Callable[[bool], None]):
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[bool], None]):
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def request_fullscreen(self) -> bool:
        return self._request(True)

    def exit_fullscreen(self) -> bool:
        return self._request(False)

    def toggle_fullscreen(self) -> bool:
        """Ask for the opposite of the current actual state.

        Returns True if the request was handed to a backend. is_fullscreen
        is left alone until the backend confirms.
        """
        return self._request(not self._fullscreen)

    def on_fullscreen_change(self, is_fullscreen: bool):
        """Called by the backend whenever the real fullscreen state changes."""
        is_fullscreen = bool(is_fullscreen)
        if is_fullscreen == self._fullscreen:
            return
        self._fullscreen = is_fullscreen
        logger.info("Surface %s fullscreen: %s", self.name, is_fullscreen)
        for listener in list(self._listeners):
            try:
                listener(is_fullscreen)
            except Exception as e:
                logger.warning("Fullscreen listener failed: %s", e)

    def _request(self, enabled: bool) -> bool:
        with self._lock:
            backend = self._backend
        if backend is None:
            logger.debug("Fullscreen request ignored, no player attached")
            return False
        try:
            return bool(backend.set_fullscreen(enabled))
        except Exception as e:
            logger.warning("Fullscreen request failed: %s", e)
            return False
