"""mpv-backed implementation of the embeddable player contract.

Each MpvPlayer owns one mpv process and talks to it over the JSON IPC
socket (https://mpv.io/manual/master/#json-ipc). A poll thread turns mpv
properties into the same ready / state_change / error callbacks a browser
embed would fire, so the supervisor cannot tell the difference.
"""

from __future__ import annotations

import json
import logging
import socket
import subprocess
import threading
import time

from tubeloop.config import ServerConfig
from tubeloop.player.embed import ERROR, FAILED, READY, STATE_CHANGE, PlayerOptions, PlayerState
from tubeloop.player.source import WATCH_BASE_URL, LoadRequest
from tubeloop.player.surface import VideoSurface

logger = logging.getLogger(__name__)


class MpvError(Exception):
    """Error starting or communicating with mpv."""


class MpvConnection:
    """Request/response client for mpv's IPC socket. Failures return None."""

    def __init__(self, socket_path: str):
        self.socket_path = socket_path
        self._sock: socket.socket | None = None
        self._lock = threading.Lock()
        self._request_id = 0
        self._buffer = b""

    @property
    def connected(self) -> bool:
        return self._sock is not None

    def connect(self, timeout: float = 5.0) -> bool:
        with self._lock:
            if self._sock is not None:
                return True
            try:
                sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
                sock.settimeout(timeout)
                sock.connect(self.socket_path)
            except (FileNotFoundError, ConnectionRefusedError):
                return False
            except OSError as e:
                logger.warning("Failed to connect to mpv: %s", e)
                return False
            self._sock = sock
            self._buffer = b""
            logger.debug("Connected to mpv at %s", self.socket_path)
            return True

    def wait_connected(
        self, budget: float = 10.0, step: float = 0.5, cancel: threading.Event | None = None,
    ) -> bool:
        """Retry connect() until the socket appears (the Pi needs a few seconds).

        Gives up early once cancel is set.
        """
        deadline = time.monotonic() + budget
        while True:
            if self.connect():
                return True
            if time.monotonic() >= deadline:
                return False
            if cancel is None:
                time.sleep(step)
            elif cancel.wait(step):
                return False

    def disconnect(self):
        with self._lock:
            if self._sock is not None:
                try:
                    self._sock.close()
                except OSError:
                    pass
            self._sock = None
            self._buffer = b""

    def command(self, *args) -> dict | None:
        return self._request(list(args))

    def get_property(self, name: str, default=None):
        resp = self._request(["get_property", name])
        if resp and resp.get("error") == "success":
            return resp.get("data")
        return default

    def set_property(self, name: str, value) -> bool:
        resp = self._request(["set_property", name, value])
        return resp is not None and resp.get("error") == "success"

    def _request(self, command: list, timeout: float = 2.0) -> dict | None:
        with self._lock:
            if self._sock is None:
                return None
            self._request_id += 1
            request_id = self._request_id
            payload = json.dumps({"command": command, "request_id": request_id}) + "\n"
            try:
                self._sock.sendall(payload.encode("utf-8"))
                return self._read_reply(request_id, timeout)
            except OSError:
                self._close_locked()
                return None

    def _read_reply(self, request_id: int, timeout: float) -> dict | None:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            while b"\n" in self._buffer:
                line, self._buffer = self._buffer.split(b"\n", 1)
                try:
                    msg = json.loads(line)
                except json.JSONDecodeError:
                    continue
                # Async events share the socket with replies
                if msg.get("request_id") == request_id:
                    return msg
            self._sock.settimeout(max(0.1, deadline - time.monotonic()))
            try:
                chunk = self._sock.recv(4096)
            except socket.timeout:
                return None
            if not chunk:
                self._close_locked()
                return None
            self._buffer += chunk
        return None

    def _close_locked(self):
        if self._sock is not None:
            try:
                self._sock.close()
            except OSError:
                pass
        self._sock = None
        self._buffer = b""


def error_code_from_log(log_file: str) -> int:
    """Map the tail of an mpv/yt-dlp log to a provider error code."""
    try:
        with open(log_file, "r", errors="replace") as f:
            lines = f.readlines()
    except OSError:
        return 5
    for line in reversed(lines[-50:]):
        lower = line.lower()
        if "private video" in lower or "video unavailable" in lower or "has been removed" in lower:
            return 100
        if "sign in" in lower or "confirm your age" in lower or "embedding" in lower:
            return 150
        if "incomplete youtube id" in lower or "invalid video id" in lower:
            return 2
    return 5


class MpvPlayer:
    """Embeddable player driving a dedicated mpv process.

    The constructor only launches mpv and raises if it cannot (missing
    binary). Everything that waits runs off the caller's thread: the poll
    thread connects to the IPC socket and emits FAILED if it never
    appears, and destroy() leaves process shutdown to a reaper thread.
    """

    def __init__(
        self,
        surface: VideoSurface,
        options: PlayerOptions,
        socket_path: str = "/tmp/tubeloop-mpv-socket",
        hwdec: str = "auto",
        mpv_binary: str = "mpv",
        ytdl_format: str = "",
        log_file: str = "/tmp/tubeloop-mpv.log",
        poll_interval: float = 0.5,
        connect_timeout: float = 10.0,
    ):
        self.surface = surface
        self.options = options
        self.log_file = log_file
        self.poll_interval = poll_interval
        self.connect_timeout = connect_timeout
        self.ipc = MpvConnection(socket_path)

        self._state = PlayerState.UNSTARTED
        self._started = False
        self._fullscreen = False
        self._last_position = 0.0
        self._destroyed = False
        self._stop = threading.Event()
        # Orders surface attach on the poll thread against destroy()
        self._lifecycle = threading.Lock()

        cmd = self._build_command(mpv_binary, socket_path, hwdec, ytdl_format)
        self._log = open(log_file, "w")
        try:
            self._process = subprocess.Popen(cmd, stdout=self._log, stderr=self._log)
        except OSError:
            self._log.close()
            raise

        self._thread = threading.Thread(target=self._run, daemon=True, name="mpv-poll")
        self._thread.start()
        logger.info("mpv launched for %s (pid %s)", options.content_id, self._process.pid)

    def _build_command(self, mpv_binary, socket_path, hwdec, ytdl_format) -> list[str]:
        params = self.options.params
        cmd = [
            mpv_binary,
            f"--input-ipc-server={socket_path}",
            f"--hwdec={hwdec}",
            "--idle=yes",
            "--force-window=immediate",
            "--osc=no",
            "--no-terminal",
            "--cache=yes",
            "--mute=yes" if params.mute else "--mute=no",
            "--volume=0",
        ]
        if ytdl_format:
            cmd.append(f"--ytdl-format={ytdl_format}")
        if params.loop:
            cmd.append("--loop-file=inf")
        if params.start > 0:
            cmd.append(f"--start={params.start}")
        if params.end > 0:
            cmd.append(f"--end={params.end}")
        if self.surface.fullscreen_on_start:
            cmd.append("--fullscreen")
        return cmd

    # --- Commands ---

    def play(self):
        self.ipc.set_property("pause", False)

    def pause(self):
        self.ipc.set_property("pause", True)

    def seek(self, seconds: float, allow_seek_ahead: bool = True):
        mode = "absolute" if allow_seek_ahead else "absolute+keyframes"
        self.ipc.command("seek", seconds, mode)

    def mute(self):
        self.ipc.set_property("mute", True)

    def unmute(self):
        self.ipc.set_property("mute", False)

    def set_volume(self, volume: int):
        self.ipc.set_property("volume", max(0, min(100, int(volume))))

    def load_content_by_id(self, request: LoadRequest):
        url = WATCH_BASE_URL + request.content_id
        opts = []
        if request.start_seconds > 0:
            opts.append(f"start={request.start_seconds}")
        if request.end_seconds:
            opts.append(f"end={request.end_seconds}")
        self._started = False
        self._state = PlayerState.UNSTARTED
        self._last_position = 0.0
        if opts:
            # Index argument is required by mpv 0.38+ before per-file options
            resp = self.ipc.command("loadfile", url, "replace", 0, ",".join(opts))
        else:
            resp = self.ipc.command("loadfile", url, "replace")
        if not resp or resp.get("error") != "success":
            raise MpvError(f"loadfile failed for {request.content_id}: {resp}")

    def get_current_time(self) -> float:
        return float(self.ipc.get_property("time-pos") or 0)

    def get_duration(self) -> float:
        return float(self.ipc.get_property("duration") or 0)

    def get_player_state(self) -> PlayerState:
        if self._process.poll() is not None:
            return PlayerState.UNSTARTED
        return self._state

    def get_available_quality_levels(self) -> list[str]:
        # Quality is fixed by --ytdl-format
        return []

    def set_playback_quality(self, quality: str):
        logger.debug("Ignoring quality request %s", quality)

    def set_fullscreen(self, enabled: bool) -> bool:
        return self.ipc.set_property("fullscreen", bool(enabled))

    def destroy(self):
        """Stop polling and detach. The process is shut down on a reaper thread."""
        with self._lifecycle:
            if self._destroyed:
                return
            self._destroyed = True
            self._stop.set()
            self.surface.detach(self)
        # Non-daemon, exit waits until mpv is gone
        threading.Thread(target=self._shutdown, name="mpv-reap").start()

    def _shutdown(self):
        if self.ipc.connected:
            self.ipc.command("quit")
        self.ipc.disconnect()
        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
        self._log.close()
        logger.info("mpv stopped for %s", self.options.content_id)

    # --- Polling ---

    def _run(self):
        if self._start_ipc():
            self._poll_loop()

    def _start_ipc(self) -> bool:
        """Connect to mpv and load the video. False if polling should not start."""
        if not self.ipc.wait_connected(self.connect_timeout, cancel=self._stop):
            if self._stop.is_set():
                return False
            if self._process.poll() is not None:
                self._on_exit()
                return False
            error = MpvError(f"mpv IPC socket not available after {self.connect_timeout:.0f}s")
            logger.error("%s", error)
            self.options.emit(FAILED, error)
            return False
        self.ipc.command("loadfile", WATCH_BASE_URL + self.options.content_id, "replace")
        with self._lifecycle:
            if not self._stop.is_set():
                self.surface.attach(self)
                return True
        # Destroyed while connecting, the reaper may already be done
        self.ipc.disconnect()
        return False

    def _read_state(self) -> PlayerState:
        if self.ipc.get_property("idle-active", True):
            return PlayerState.ENDED if self._started else PlayerState.UNSTARTED
        if self.ipc.get_property("paused-for-cache", False) or self.ipc.get_property("seeking", False):
            return PlayerState.BUFFERING
        if self.ipc.get_property("pause", False):
            return PlayerState.PAUSED
        if self.ipc.get_property("eof-reached", False):
            return PlayerState.ENDED
        if self.ipc.get_property("time-pos") is None:
            return PlayerState.BUFFERING
        return PlayerState.PLAYING

    def _poll_loop(self):
        self.options.emit(READY, self)
        while not self._stop.is_set():
            try:
                if self._process.poll() is not None:
                    self._on_exit()
                    return
                self._poll_once()
            except Exception as e:
                logger.warning("mpv poll error: %s", e)
            self._stop.wait(self.poll_interval)

    def _poll_once(self):
        state = self._read_state()
        position = self.ipc.get_property("time-pos")
        if state is not self._state:
            self._state = state
            if state is PlayerState.PLAYING:
                self._started = True
            self.options.emit(STATE_CHANGE, state)
        elif state is PlayerState.PLAYING and self._wrapped(position):
            # --loop-file=inf restarts in place without ever going idle
            logger.info("mpv looped %s at %.1fs", self.options.content_id, self._last_position)
            self.options.emit(STATE_CHANGE, PlayerState.ENDED)
            self.options.emit(STATE_CHANGE, PlayerState.PLAYING)
        if position is not None:
            self._last_position = float(position)

        fullscreen = bool(self.ipc.get_property("fullscreen", False))
        if fullscreen != self._fullscreen:
            self._fullscreen = fullscreen
            self.surface.on_fullscreen_change(fullscreen)

    def _wrapped(self, position) -> bool:
        """True when playback jumped back to the top of the file."""
        return position is not None and float(position) + 1.0 < self._last_position

    def _on_exit(self):
        exit_code = self._process.returncode
        if self._stop.is_set():
            return
        self._state = PlayerState.UNSTARTED
        if not self._started:
            code = error_code_from_log(self.log_file)
            logger.warning("mpv exited (code %s) before playing, error %d", exit_code, code)
            self.options.emit(ERROR, code)
        else:
            logger.warning("mpv exited (code %s) during playback", exit_code)
        # Buffering with nothing behind it trips the watchdog into a recreate
        self.options.emit(STATE_CHANGE, PlayerState.BUFFERING)


def mpv_player_factory(config: ServerConfig):
    """Build a player factory bound to the server's mpv settings."""

    def factory(surface: VideoSurface, options: PlayerOptions) -> MpvPlayer:
        return MpvPlayer(
            surface,
            options,
            socket_path=config.mpv_socket,
            hwdec=config.mpv_hwdec,
            mpv_binary=config.mpv_binary,
            ytdl_format=config.ytdl_format,
            log_file=config.mpv_log_file,
        )

    return factory
