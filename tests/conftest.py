"""Shared test fixtures for the tubeloop test suite."""

import pytest

from tubeloop.config import Config, PlaybackConfig, ServerConfig
from tubeloop.player.embed import ERROR, FAILED, READY, STATE_CHANGE, PlayerState
from tubeloop.player.scheduler import SteppedScheduler
from tubeloop.player.session import PlaybackSupervisor
from tubeloop.player.surface import VideoSurface
from tubeloop.server.app import create_app
from tubeloop.server.database import Database
from tubeloop.server.events import EventBus
from tubeloop.server.settings_store import SettingsStore

VIDEO_ID = "dQw4w9WgXcQ"
VIDEO_URL = f"https://www.youtube.com/watch?v={VIDEO_ID}"
OTHER_ID = "9bZkp7q19f0"
OTHER_URL = f"https://youtu.be/{OTHER_ID}"


class FakePlayer:
    """In-memory embed player. Tests drive it with fire_ready/set_state/fire_error."""

    def __init__(self, surface, options, duration=0.0):
        self.surface = surface
        self.options = options
        self.duration = duration
        self.current_time = 0.0
        self.state = PlayerState.UNSTARTED
        self.quality_levels = ["hd1080", "hd720", "large"]
        self.calls = []
        self.loaded = []
        self.fullscreen_requests = []
        self.destroyed = False
        self.fail_load = False
        surface.attach(self)

    # --- EmbedPlayer ---

    def play(self):
        self.calls.append("play")

    def pause(self):
        self.calls.append("pause")

    def seek(self, seconds, allow_seek_ahead=True):
        self.calls.append(("seek", seconds, allow_seek_ahead))

    def mute(self):
        self.calls.append("mute")

    def unmute(self):
        self.calls.append("unmute")

    def set_volume(self, volume):
        self.calls.append(("set_volume", volume))

    def load_content_by_id(self, request):
        if self.fail_load:
            raise RuntimeError("load failed")
        self.loaded.append(request)

    def get_current_time(self):
        return self.current_time

    def get_duration(self):
        return self.duration

    def get_player_state(self):
        return self.state

    def get_available_quality_levels(self):
        return list(self.quality_levels)

    def set_playback_quality(self, quality):
        self.calls.append(("quality", quality))

    def destroy(self):
        self.destroyed = True
        self.surface.detach(self)

    def set_fullscreen(self, enabled):
        self.fullscreen_requests.append(enabled)
        return True

    # --- Test helpers ---

    def fire_ready(self):
        self.options.emit(READY, self)

    def set_state(self, state):
        self.state = state
        self.options.emit(STATE_CHANGE, state)

    def fire_error(self, code):
        self.options.emit(ERROR, code)

    def fire_failure(self, exc):
        self.options.emit(FAILED, exc)

    def seeks(self):
        return [c for c in self.calls if isinstance(c, tuple) and c[0] == "seek"]


class NoSwapPlayer(FakePlayer):
    """A player that can only be recreated, never loaded in place."""

    load_content_by_id = None


class FakePlayerFactory:
    """Records every player it builds. failures > 0 makes the next calls raise."""

    def __init__(self):
        self.players = []
        self.failures = 0
        self.duration = 0.0
        self.swap = True

    def __call__(self, surface, options):
        if self.failures:
            self.failures -= 1
            raise RuntimeError("embed API unavailable")
        cls = FakePlayer if self.swap else NoSwapPlayer
        player = cls(surface, options, duration=self.duration)
        self.players.append(player)
        return player

    @property
    def latest(self):
        return self.players[-1] if self.players else None


@pytest.fixture
def db(tmp_path):
    """Create a fresh test database."""
    return Database(str(tmp_path / "test.db"))


@pytest.fixture
def store(db):
    return SettingsStore(db)


@pytest.fixture
def event_bus(db):
    return EventBus(db)


@pytest.fixture
def scheduler():
    """Virtual-clock scheduler: time only moves on advance()."""
    return SteppedScheduler()


@pytest.fixture
def player_factory():
    return FakePlayerFactory()


@pytest.fixture
def surface():
    return VideoSurface()


@pytest.fixture
def playback_config():
    return PlaybackConfig()


@pytest.fixture
def supervisor(store, player_factory, scheduler, playback_config, surface, event_bus):
    """Unmounted supervisor wired to fakes."""
    sup = PlaybackSupervisor(
        store, player_factory, scheduler,
        config=playback_config, surface=surface, event_bus=event_bus,
    )
    yield sup
    sup.unmount()


@pytest.fixture
def app(tmp_path, player_factory, scheduler):
    """Flask test app running the supervisor on fakes."""
    config = Config(
        server=ServerConfig(
            db_file=str(tmp_path / "app.db"),
            data_dir=str(tmp_path / "data"),
        ),
    )
    app = create_app(config, player_factory=player_factory, scheduler=scheduler)
    app.config["TESTING"] = True
    yield app
    app.supervisor.unmount()


@pytest.fixture
def client(app):
    """Create a Flask test client."""
    return app.test_client()
