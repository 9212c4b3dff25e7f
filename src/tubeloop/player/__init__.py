"""Playback core: source parsing, error classes, timers and the supervisor.

The supervisor never touches a player library directly; it is given a
factory and drives whatever player that returns.
"""

from tubeloop.player.embed import PlayerOptions, PlayerState
from tubeloop.player.errors import ErrorClassification, classify
from tubeloop.player.scheduler import SteppedScheduler, ThreadedScheduler
from tubeloop.player.session import PlaybackSupervisor, SessionState, SupervisorStatus
from tubeloop.player.source import VideoSource, build_embed_url, parse, validate_url
from tubeloop.player.surface import VideoSurface
from tubeloop.player.watchdog import Watchdog

__all__ = [
    "PlayerOptions",
    "PlayerState",
    "ErrorClassification",
    "classify",
    "SteppedScheduler",
    "ThreadedScheduler",
    "PlaybackSupervisor",
    "SessionState",
    "SupervisorStatus",
    "VideoSource",
    "build_embed_url",
    "parse",
    "validate_url",
    "VideoSurface",
    "Watchdog",
]
