"""Contract between the supervisor and an embeddable player.

The supervisor never imports a player library directly. It is handed a
factory ``factory(surface, options) -> player`` and talks to whatever comes
back through the methods of EmbedPlayer. State codes follow the YouTube
IFrame API so a browser bridge and the mpv adapter speak the same language.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from tubeloop.player.source import EmbedParameters, LoadRequest
    from tubeloop.player.surface import VideoSurface


class PlayerState(IntEnum):
    UNSTARTED = -1
    ENDED = 0
    PLAYING = 1
    PAUSED = 2
    BUFFERING = 3
    CUED = 5

    @classmethod
    def coerce(cls, value) -> "PlayerState | None":
        """Map a raw state code to a PlayerState, or None if unknown."""
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            return None


# Event names in PlayerOptions.events
READY = "ready"
STATE_CHANGE = "state_change"
ERROR = "error"
# Built but never came up (e.g. IPC never connected); data is the exception
FAILED = "failed"


@dataclass
class PlayerOptions:
    """Everything a factory needs to build a player.

    events maps READY -> fn(player), STATE_CHANGE -> fn(state),
    ERROR -> fn(code) and FAILED -> fn(exception).
    """

    content_id: str
    params: "EmbedParameters"
    events: dict[str, Callable[[Any], None]] = field(default_factory=dict)

    def emit(self, event: str, data=None):
        handler = self.events.get(event)
        if handler is not None:
            handler(data)


@runtime_checkable
class EmbedPlayer(Protocol):
    def play(self) -> None: ...
    def pause(self) -> None: ...
    def seek(self, seconds: float, allow_seek_ahead: bool = True) -> None: ...
    def mute(self) -> None: ...
    def unmute(self) -> None: ...
    def set_volume(self, volume: int) -> None: ...
    def load_content_by_id(self, request: "LoadRequest") -> None: ...
    def get_current_time(self) -> float: ...
    def get_duration(self) -> float: ...
    def get_player_state(self) -> PlayerState: ...
    def get_available_quality_levels(self) -> list[str]: ...
    def set_playback_quality(self, quality: str) -> None: ...
    def destroy(self) -> None: ...


PlayerFactory = Callable[["VideoSurface", PlayerOptions], EmbedPlayer]


def supports_content_swap(player) -> bool:
    """True if the player can load new content without being recreated."""
    return callable(getattr(player, "load_content_by_id", None))
