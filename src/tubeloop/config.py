"""Configuration loader for tubeloop."""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # Python 3.10 fallback


@dataclass
class PlaybackConfig:
    """Recovery timings for the playback supervisor. All durations in seconds."""

    # Paused / stalled: retry play() on this interval, give up after N pauses
    pause_recheck_interval: float = 10.0
    skip_recheck_after: int = 6

    # Buffering watchdog. Cold starts get the longer budget.
    buffering_timeout: float = 30.0
    initial_buffering_timeout: float = 45.0

    # Failsafes: restart after duration + delta, and never run past max length
    force_advance_delta: float = 30.0
    max_video_length: float = 43200.0

    # Grace period before trusting an "embedding disabled" error
    delay_err_msg_after: float = 8.0

    # Poll interval for custom end offsets
    end_time_check_interval: float = 1.0

    # Recreate the player after a network-type failure
    network_retry_delay: float = 3.0
    max_network_retries: int = 3


@dataclass
class ServerConfig:
    """Configuration for the tubeloop server."""

    host: str = "0.0.0.0"
    port: int = 5060
    source_key: str = "youtubeUrl"
    mpv_socket: str = "/tmp/tubeloop-mpv-socket"
    mpv_binary: str = "mpv"
    mpv_hwdec: str = "auto"
    mpv_log_file: str = "/tmp/tubeloop-mpv.log"
    ytdl_format: str = "bestvideo[height<=1080][vcodec^=avc]+bestaudio/best[height<=1080]"
    start_fullscreen: bool = True
    db_file: str = ""
    data_dir: str = ""

    def __post_init__(self):
        if not self.data_dir:
            self.data_dir = os.path.expanduser("~/.tubeloop")
        if not self.db_file:
            self.db_file = os.path.join(self.data_dir, "tubeloop.db")


@dataclass
class Config:
    """Top-level tubeloop configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    playback: PlaybackConfig = field(default_factory=PlaybackConfig)


def load_config(path: str | None = None) -> Config:
    """Load configuration from tubeloop.toml.

    Search order:
    1. Explicit path argument
    2. ./tubeloop.toml
    3. ~/.config/tubeloop/tubeloop.toml
    4. Defaults
    """
    search_paths = []
    if path:
        search_paths.append(Path(path))
    search_paths.extend([
        Path("tubeloop.toml"),
        Path.home() / ".config" / "tubeloop" / "tubeloop.toml",
    ])

    for p in search_paths:
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            return _parse_config(data)

    return Config()


def _parse_config(data: dict) -> Config:
    """Parse a TOML dict into Config."""
    config = Config()

    if "server" in data:
        s = data["server"]
        config.server = ServerConfig(
            host=s.get("host", config.server.host),
            port=s.get("port", config.server.port),
            source_key=s.get("source_key", config.server.source_key),
            mpv_socket=s.get("mpv_socket", config.server.mpv_socket),
            mpv_binary=s.get("mpv_binary", config.server.mpv_binary),
            mpv_hwdec=s.get("mpv_hwdec", config.server.mpv_hwdec),
            mpv_log_file=s.get("mpv_log_file", config.server.mpv_log_file),
            ytdl_format=s.get("ytdl_format", config.server.ytdl_format),
            start_fullscreen=s.get("start_fullscreen", config.server.start_fullscreen),
            db_file=s.get("db_file", ""),
            data_dir=s.get("data_dir", ""),
        )

    if "playback" in data:
        p = data["playback"]
        defaults = PlaybackConfig()
        config.playback = PlaybackConfig(**{
            f.name: p.get(f.name, getattr(defaults, f.name))
            for f in fields(PlaybackConfig)
        })

    return config
