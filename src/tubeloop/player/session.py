"""Playback supervisor - drives an embedded player and keeps it playing.

The supervisor watches one settings-store key for the video URL. Each valid
URL gets a PlaybackSession: one player, one Watchdog full of named timers,
and the retry counters. Player callbacks, store notifications and timers all
run on the same scheduler, so the handlers below never race each other.

Recovery policy, in short:

* buffering too long  -> recreate the player (bounded by max_network_retries)
* paused              -> call play() again every pause_recheck_interval,
                         give up after skip_recheck_after pauses in a row
* embedding errors    -> hold for delay_err_msg_after, drop if it plays
* not found / bad id  -> fail immediately
* duration overrun    -> seek to 0 and play (force advance / max length)

Every bound is finite. When one runs out the session lands in ERROR with a
message and stays there until the URL changes or retry() is called.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from tubeloop.config import PlaybackConfig
from tubeloop.player import watchdog as timers
from tubeloop.player.embed import (
    ERROR,
    FAILED,
    READY,
    STATE_CHANGE,
    PlayerFactory,
    PlayerOptions,
    PlayerState,
    supports_content_swap,
)
from tubeloop.player.errors import ErrorClassification, classify
from tubeloop.player.scheduler import Scheduler
from tubeloop.player.source import VideoSource, embed_parameters, load_request, parse
from tubeloop.player.surface import VideoSurface
from tubeloop.player.watchdog import Watchdog

if TYPE_CHECKING:
    from tubeloop.server.events import EventBus
    from tubeloop.server.settings_store import SettingsStore

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_KEY = "youtubeUrl"


class SessionState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    PLAYING = "playing"
    BUFFERING = "buffering"
    PAUSED = "paused"
    ENDED = "ended"
    ERROR_PENDING = "error_pending"
    ERROR = "error"
    DESTROYED = "destroyed"


# User-visible status for each internal state
_STATUS = {
    SessionState.IDLE: "idle",
    SessionState.LOADING: "loading",
    SessionState.BUFFERING: "loading",
    SessionState.ERROR_PENDING: "loading",
    SessionState.PLAYING: "playing",
    SessionState.PAUSED: "playing",
    SessionState.ENDED: "playing",
    SessionState.ERROR: "error",
    SessionState.DESTROYED: "idle",
}

# While a delayed error is pending only these may replace ERROR_PENDING
_LEAVES_PENDING = {
    SessionState.PLAYING,
    SessionState.LOADING,
    SessionState.ERROR,
    SessionState.DESTROYED,
}


class _PlayerBinding:
    """Links player callbacks to whichever session currently owns the player."""

    __slots__ = ("player",)

    def __init__(self):
        self.player = None


@dataclass
class PlaybackSession:
    """Mutable runtime record for one video source."""

    session_id: int
    source: VideoSource
    watchdog: Watchdog
    player: Any = None
    state: SessionState = SessionState.IDLE
    retry_count: int = 0
    stall_count: int = 0
    started: bool = False
    error_message: str = ""
    retryable: bool = False
    pending_error: ErrorClassification | None = None
    binding: _PlayerBinding | None = field(default=None, repr=False)

    @property
    def content_id(self) -> str | None:
        return self.source.content_id

    @property
    def alive(self) -> bool:
        return self.state is not SessionState.DESTROYED

    @property
    def terminal(self) -> bool:
        return self.state is SessionState.ERROR and not self.retryable


@dataclass(frozen=True)
class SupervisorStatus:
    status: str
    state: str
    content_id: str | None = None
    url: str = ""
    error: str = ""
    retryable: bool = False
    checking_availability: bool = False
    retry_count: int = 0
    stall_count: int = 0
    fullscreen: bool = False
    session_id: int | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "state": self.state,
            "video_id": self.content_id,
            "url": self.url,
            "error": self.error,
            "retryable": self.retryable,
            "checking_availability": self.checking_availability,
            "retry_count": self.retry_count,
            "stall_count": self.stall_count,
            "fullscreen": self.fullscreen,
            "session_id": self.session_id,
        }


def _seconds(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class PlaybackSupervisor:
    """Keeps one embedded player alive for the URL in the settings store.

    Usage:
        supervisor = PlaybackSupervisor(store, player_factory, scheduler)
        supervisor.mount()
        supervisor.status().to_dict()
        supervisor.unmount()
    """

    def __init__(
        self,
        store: "SettingsStore",
        player_factory: PlayerFactory,
        scheduler: Scheduler,
        config: PlaybackConfig | None = None,
        surface: VideoSurface | None = None,
        event_bus: "EventBus | None" = None,
        source_key: str = DEFAULT_SOURCE_KEY,
    ):
        self.store = store
        self.player_factory = player_factory
        self.scheduler = scheduler
        self.config = config or PlaybackConfig()
        self.surface = surface or VideoSurface()
        self.event_bus = event_bus
        self.source_key = source_key

        self._session: PlaybackSession | None = None
        self._session_ids = itertools.count(1)
        self._raw_url = ""
        self._source_error = ""
        self._mounted = False

        self.surface.add_listener(self._on_fullscreen_change)

    # --- Public API (safe from any thread) ---

    @property
    def session(self) -> PlaybackSession | None:
        return self._session

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    def mount(self):
        """Subscribe to the source key and start playing whatever it holds."""
        if self._mounted:
            return
        self._mounted = True
        self.store.subscribe(self.source_key, self._on_store_value)
        value = self.store.get(self.source_key)
        self._dispatch(lambda: self._apply_source(value))
        logger.info("Supervisor mounted on key %r", self.source_key)

    def unmount(self):
        """Destroy the session and stop listening. Safe to call twice."""
        if self._mounted:
            self.store.unsubscribe(self.source_key, self._on_store_value)
            self._mounted = False
        self._dispatch(self._teardown, wait=True)

    def set_source(self, raw_url: str | None):
        """Apply a source URL directly, bypassing the store."""
        self._dispatch(lambda: self._apply_source(raw_url))

    def retry(self):
        """Manual retry: clear the error and recreate the player."""
        self._dispatch(self._manual_retry)

    def destroy(self):
        """Destroy the current session, keeping the subscription."""
        self._dispatch(self._destroy_session, wait=True)

    def toggle_fullscreen(self) -> bool:
        return self.surface.toggle_fullscreen()

    def status(self) -> SupervisorStatus:
        session = self._session
        fullscreen = self.surface.is_fullscreen
        if session is None:
            if self._source_error:
                return SupervisorStatus(
                    status="error", state=SessionState.ERROR.value,
                    url=self._raw_url, error=self._source_error, fullscreen=fullscreen,
                )
            return SupervisorStatus(
                status="idle", state=SessionState.IDLE.value,
                url=self._raw_url, fullscreen=fullscreen,
            )
        return SupervisorStatus(
            status=_STATUS[session.state],
            state=session.state.value,
            content_id=session.content_id,
            url=session.source.raw_url,
            error=session.error_message,
            retryable=session.retryable,
            checking_availability=session.pending_error is not None,
            retry_count=session.retry_count,
            stall_count=session.stall_count,
            fullscreen=fullscreen,
            session_id=session.session_id,
        )

    # --- Dispatch ---

    def _dispatch(self, fn, wait: bool = False):
        """Run fn on the scheduler. With wait, block until it has run."""
        in_loop = getattr(self.scheduler, "in_loop_thread", None)
        running = getattr(self.scheduler, "is_running", False)
        if wait and in_loop is not None and running and not in_loop():
            done = threading.Event()

            def run():
                try:
                    fn()
                finally:
                    done.set()

            self.scheduler.call_soon(run)
            if not done.wait(timeout=5.0):
                logger.warning("Timed out waiting for supervisor loop")
            return
        self.scheduler.call_soon(fn)

    def _on_store_value(self, value):
        self._dispatch(lambda: self._apply_source(value))

    def _emit(self, event_type: str, title: str, detail: str = "", content_id: str | None = None):
        if not self.event_bus:
            return
        session = self._session
        self.event_bus.emit(
            event_type, title, detail, content_id,
            session_id=session.session_id if session else None,
            status=self.status().to_dict(),
        )

    # --- Source handling ---

    def _apply_source(self, raw_url):
        raw_url = raw_url if isinstance(raw_url, str) else ""
        raw_url = raw_url.strip()
        if raw_url == self._raw_url and (self._session is not None or self._source_error or not raw_url):
            logger.debug("Source unchanged, ignoring")
            return
        self._raw_url = raw_url

        previous = self._session
        if previous is not None:
            # Old timers go before anything new is armed
            previous.watchdog.cancel_all()

        if not raw_url:
            self._destroy_session()
            self._source_error = ""
            logger.info("No video configured")
            self._emit("playback", "Idle", "No video configured")
            return

        source = parse(raw_url)
        if not source.is_valid:
            self._destroy_session()
            self._source_error = source.error_reason or "Invalid YouTube URL"
            logger.warning("Rejected source %r: %s", raw_url, self._source_error)
            self._emit("failed", "Invalid video URL", self._source_error)
            return

        self._source_error = ""
        logger.info("New source: %s (start=%ds end=%ds)",
                    source.content_id, source.start_offset, source.end_offset)

        if previous is not None and previous.player is not None and supports_content_swap(previous.player):
            session = self._new_session(source)
            session.player = previous.player
            session.binding = previous.binding
            previous.player = None
            previous.binding = None
            self._retire(previous)
            self._session = session
            try:
                self._swap_content(session)
                return
            except Exception as e:
                logger.warning("In-place load failed, recreating player: %s", e)
                self._release_player(session)
                self._create_player(session)
                return

        self._destroy_session()
        session = self._new_session(source)
        self._session = session
        self._create_player(session)

    def _new_session(self, source: VideoSource) -> PlaybackSession:
        session_id = next(self._session_ids)
        watchdog = Watchdog(
            self.scheduler,
            buffering_timeout=self.config.buffering_timeout,
            initial_buffering_timeout=self.config.initial_buffering_timeout,
            label=f"session-{session_id}",
        )
        logger.debug("Session %d created for %s", session_id, source.content_id)
        return PlaybackSession(session_id=session_id, source=source, watchdog=watchdog)

    # --- Player lifecycle ---

    def _create_player(self, session: PlaybackSession):
        self._set_state(session, SessionState.LOADING)
        binding = _PlayerBinding()
        session.binding = binding
        options = PlayerOptions(
            content_id=session.content_id,
            params=embed_parameters(session.source),
            events={
                READY: lambda player: self.scheduler.call_soon(
                    lambda: self._on_ready(binding, player)),
                STATE_CHANGE: lambda state: self.scheduler.call_soon(
                    lambda: self._on_state_change(binding, state)),
                ERROR: lambda code: self.scheduler.call_soon(
                    lambda: self._on_error(binding, code)),
                FAILED: lambda exc: self.scheduler.call_soon(
                    lambda: self._on_player_failed(binding, exc)),
            },
        )
        self._emit("playback", f"Loading: {session.content_id}", session.source.raw_url,
                   session.content_id)
        try:
            player = self.player_factory(self.surface, options)
        except Exception as e:
            session.binding = None
            self._creation_failed(session, e)
            return
        if binding.player is None:
            binding.player = player
        session.player = player

    def _on_player_failed(self, binding: _PlayerBinding, exc):
        """The player was built but could not finish starting up."""
        session = self._current(binding)
        if session is None or session.terminal:
            return
        self._creation_failed(session, exc)

    def _creation_failed(self, session: PlaybackSession, exc):
        logger.error("Player creation failed: %s", exc)
        self._handle_network_error(
            session, "Creation failed", f"Failed to create YouTube player: {exc}",
        )

    def _swap_content(self, session: PlaybackSession):
        """Load new content into the existing player."""
        player = session.player
        self._set_state(session, SessionState.LOADING)
        self._emit("playback", f"Loading: {session.content_id}", session.source.raw_url,
                   session.content_id)
        player.load_content_by_id(load_request(session.source))
        logger.info("Swapped player content to %s", session.content_id)
        # No ready event follows a swap, run the ready sequence now
        self._start_playback(session)

    def _release_player(self, session: PlaybackSession):
        player = session.player
        session.player = None
        if session.binding is not None:
            session.binding.player = None
            session.binding = None
        if player is None:
            return
        try:
            player.destroy()
        except Exception as e:
            logger.warning("Player destroy failed: %s", e)

    def _recreate_player(self, session: PlaybackSession):
        logger.info("Recreating player for %s (retry %d/%d)", session.content_id,
                    session.retry_count, self.config.max_network_retries)
        self._release_player(session)
        self._create_player(session)

    def _retire(self, session: PlaybackSession):
        session.watchdog.close()
        session.pending_error = None
        session.state = SessionState.DESTROYED
        logger.debug("Session %d retired", session.session_id)

    def _destroy_session(self):
        session = self._session
        if session is None:
            return
        self._session = None
        self._retire(session)
        self._release_player(session)
        logger.info("Session %d destroyed", session.session_id)

    def _teardown(self):
        self._destroy_session()
        self._raw_url = ""
        self._source_error = ""

    def _current(self, binding: _PlayerBinding) -> PlaybackSession | None:
        """The live session that owns binding, or None for stale callbacks."""
        session = self._session
        if session is None or session.binding is not binding or not session.alive:
            return None
        return session

    # --- State ---

    def _set_state(self, session: PlaybackSession, state: SessionState):
        if session.state is SessionState.ERROR_PENDING and state not in _LEAVES_PENDING:
            return
        if session.state is not state:
            logger.debug("Session %d: %s -> %s", session.session_id,
                         session.state.value, state.value)
            session.state = state

    # --- Player events ---

    def _on_ready(self, binding: _PlayerBinding, player):
        session = self._current(binding)
        if session is None:
            return
        if binding.player is None:
            binding.player = player
            session.player = player
        logger.info("Player ready for %s", session.content_id)
        self._start_playback(session)

    def _start_playback(self, session: PlaybackSession):
        player = session.player
        # Autoplay only works muted, and volume 0 covers players that ignore mute
        player.mute()
        player.set_volume(0)
        player.play()

        levels = player.get_available_quality_levels() or []
        if levels:
            player.set_playback_quality(levels[0])

        session.watchdog.arm_buffering(
            lambda: self._check_buffering(session), cold_start=not session.started,
        )
        self._arm_playback_timers(session)

    def _arm_playback_timers(self, session: PlaybackSession):
        """Arm end-offset poll, force advance and max length if not already armed."""
        wd = session.watchdog
        player = session.player
        max_length = self.config.max_video_length

        end = session.source.end_offset
        if end > 0 and not wd.is_armed(timers.END_TIME):
            wd.arm_interval(timers.END_TIME, self.config.end_time_check_interval,
                            lambda: self._check_end_time(session))

        duration = _seconds(player.get_duration())
        if duration > 0 and not wd.is_armed(timers.FORCE_ADVANCE):
            delay = min(max_length, duration + self.config.force_advance_delta)
            wd.arm(timers.FORCE_ADVANCE, delay,
                   lambda: self._force_advance(session, "duration exceeded"))

        if not wd.is_armed(timers.MAX_LENGTH):
            wd.arm(timers.MAX_LENGTH, max_length,
                   lambda: self._force_advance(session, "max length exceeded"))

    def _on_state_change(self, binding: _PlayerBinding, raw_state):
        session = self._current(binding)
        if session is None or session.terminal:
            return
        state = PlayerState.coerce(raw_state)
        if state is None:
            logger.debug("Ignoring unknown player state %r", raw_state)
            return
        self._apply_player_state(session, state)

    def _apply_player_state(self, session: PlaybackSession, state: PlayerState):
        if state is PlayerState.PLAYING:
            self._on_playing(session)
        elif state is PlayerState.PAUSED:
            self._on_paused(session)
        elif state is PlayerState.BUFFERING:
            self._on_buffering(session)
        elif state is PlayerState.ENDED:
            # loop=1 restarts it
            logger.info("Video ended: %s", session.content_id)
            self._set_state(session, SessionState.ENDED)
            # The next PLAYING starts a new loop and re-arms from there
            session.watchdog.cancel(timers.FORCE_ADVANCE)
        elif state is PlayerState.CUED:
            logger.debug("Video cued, starting playback")
            session.player.play()
        else:
            logger.debug("Video unstarted: %s", session.content_id)

    def _on_playing(self, session: PlaybackSession):
        wd = session.watchdog
        wd.cancel(timers.BUFFERING)
        wd.cancel(timers.PAUSE_RETRY)
        if session.pending_error is not None:
            logger.info("Discarding delayed error %s, video is playing", session.pending_error.code)
            wd.cancel(timers.DELAYED_ERROR)
            session.pending_error = None

        previous = session.state
        session.error_message = ""
        session.retryable = False
        # Network retries track session health, only the pause streak resets
        session.stall_count = 0
        first = not session.started
        session.started = True
        self._set_state(session, SessionState.PLAYING)

        if first or previous in (SessionState.LOADING, SessionState.ERROR,
                                 SessionState.ERROR_PENDING):
            logger.info("Playing: %s", session.content_id)
            self._emit("playback", f"Playing: {session.content_id}", session.source.raw_url,
                       session.content_id)
        self._arm_playback_timers(session)

    def _on_paused(self, session: PlaybackSession):
        self._set_state(session, SessionState.PAUSED)
        session.stall_count += 1
        limit = self.config.skip_recheck_after
        if session.stall_count >= limit:
            self._fail(session, f"Video playback stalled after {session.stall_count} attempts")
            return
        logger.info("Video paused, retrying in %.0fs (%d/%d)",
                    self.config.pause_recheck_interval, session.stall_count, limit)
        session.watchdog.arm(timers.PAUSE_RETRY, self.config.pause_recheck_interval,
                             lambda: self._resume_after_stall(session))

    def _resume_after_stall(self, session: PlaybackSession):
        if session.player is None:
            return
        logger.info("Retrying playback (attempt %d)", session.stall_count)
        session.player.play()

    def _on_buffering(self, session: PlaybackSession):
        self._set_state(session, SessionState.BUFFERING)
        wd = session.watchdog
        if not session.started and wd.is_armed(timers.BUFFERING):
            # Keep the cold-start deadline, don't push it out
            return
        wd.arm_buffering(lambda: self._check_buffering(session), cold_start=not session.started)

    def _check_buffering(self, session: PlaybackSession):
        player = session.player
        if player is None:
            return
        state = PlayerState.coerce(player.get_player_state())
        if state not in (PlayerState.BUFFERING, PlayerState.UNSTARTED):
            return
        if _seconds(player.get_current_time()) == 0 and _seconds(player.get_duration()) == 0:
            self._handle_network_error(
                session, "Unable to start",
                f"Unable to start playing video ({session.content_id})",
            )
        else:
            self._handle_network_error(
                session, "Buffering timeout",
                f"Video buffering timeout ({session.content_id})",
            )

    def _check_end_time(self, session: PlaybackSession):
        player = session.player
        if player is None:
            return
        end = session.source.end_offset
        if _seconds(player.get_current_time()) >= end:
            logger.info("Video reached end time: %ds", end)
            session.watchdog.cancel(timers.END_TIME)
            self._restart_from_top(session)

    def _force_advance(self, session: PlaybackSession, reason: str):
        if session.player is None:
            return
        logger.info("Force advancing video (%s)", reason)
        self._emit("playback", f"Restarting: {session.content_id}", reason, session.content_id)
        self._restart_from_top(session)

    @staticmethod
    def _restart_from_top(session: PlaybackSession):
        session.player.seek(0, True)
        session.player.play()

    # --- Errors ---

    def _on_error(self, binding: _PlayerBinding, code):
        session = self._current(binding)
        if session is None or session.terminal:
            return
        classification = classify(code)
        logger.warning("Player error %s (%s): %s", classification.code,
                       classification.error_class, classification.message)

        if classification.is_delayable:
            logger.info("Delaying error %s for %.0fs", classification.code,
                        self.config.delay_err_msg_after)
            session.pending_error = classification
            self._set_state(session, SessionState.ERROR_PENDING)
            self._emit("error", "Checking video availability", classification.message,
                       session.content_id)
            session.watchdog.arm(
                timers.DELAYED_ERROR, self.config.delay_err_msg_after,
                lambda: self._surface_delayed_error(session, classification),
            )
            return

        if classification.is_permanent:
            self._fail(session, f"{classification.message}. Video ID: {session.content_id}")
            return

        # Transient: show it, but buffering/network recovery keeps going
        session.error_message = classification.message
        session.retryable = True
        self._set_state(session, SessionState.ERROR)
        self._emit("error", classification.message, f"code {classification.code}",
                   session.content_id)

    def _surface_delayed_error(self, session: PlaybackSession, classification: ErrorClassification):
        if session.pending_error is not classification:
            return
        session.pending_error = None
        player = session.player
        state = PlayerState.coerce(player.get_player_state()) if player is not None else None
        if state is PlayerState.PLAYING:
            self._on_playing(session)
            return
        if session.started or state not in (None, PlayerState.UNSTARTED):
            # Only a video that never loaded is really unavailable
            logger.info("Dropping delayed error %s, video has loaded", classification.code)
            self._set_state(session, SessionState.LOADING)
            if state in (None, PlayerState.UNSTARTED):
                state = PlayerState.BUFFERING
            self._apply_player_state(session, state)
            return
        self._fail(session, f"{classification.message}. Video ID: {session.content_id}")

    def _handle_network_error(self, session: PlaybackSession, kind: str, message: str):
        logger.error("Network error: %s - %s", kind, message)
        limit = self.config.max_network_retries
        if session.retry_count >= limit:
            self._fail(session, message)
            return
        session.retry_count += 1
        session.pending_error = None
        session.watchdog.cancel_all()
        self._set_state(session, SessionState.LOADING)
        logger.info("Retrying in %.0fs (%d/%d)", self.config.network_retry_delay,
                    session.retry_count, limit)
        self._emit("retry", f"Retrying ({session.retry_count}/{limit}): {session.content_id}",
                   message, session.content_id)
        session.watchdog.arm(timers.NETWORK_RETRY, self.config.network_retry_delay,
                             lambda: self._recreate_player(session))

    def _fail(self, session: PlaybackSession, message: str):
        """Terminal error: stop every timer and show message."""
        logger.error("Playback failed: %s", message)
        session.watchdog.cancel_all()
        session.pending_error = None
        session.error_message = message
        session.retryable = False
        self._set_state(session, SessionState.ERROR)
        self._emit("failed", f"Failed: {session.content_id}", message, session.content_id)

    def _manual_retry(self):
        session = self._session
        if session is None:
            logger.info("Retry requested with no active video")
            return
        logger.info("Manual retry for %s", session.content_id)
        session.watchdog.cancel_all()
        session.pending_error = None
        session.error_message = ""
        session.retryable = False
        session.retry_count = 0
        session.stall_count = 0
        self._emit("playback", f"Manual retry: {session.content_id}", "", session.content_id)
        self._recreate_player(session)

    # --- Fullscreen ---

    def _on_fullscreen_change(self, is_fullscreen: bool):
        self._emit("fullscreen", "Fullscreen" if is_fullscreen else "Windowed")
