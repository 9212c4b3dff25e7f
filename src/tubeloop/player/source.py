"""YouTube source parsing.

Turns the raw URL held in the settings store into a VideoSource: the
11-character video ID, optional start/end offsets and the parameters the
embedded player is created with. Everything here is pure.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from urllib.parse import unquote, urlencode

INVALID_URL = "Invalid URL provided"
NOT_YOUTUBE_URL = "Not a valid YouTube URL"
NO_VIDEO_ID = "Could not extract video ID. Playlists and channels not yet supported."
EMPTY_URL = "Please enter a YouTube URL"

EMBED_BASE_URL = "https://www.youtube.com/embed/"
WATCH_BASE_URL = "https://www.youtube.com/watch?v="

VIDEO_ID_LENGTH = 11

_YOUTUBE_URL_RE = re.compile(r"(https?://)?(www\.)?(youtube\.com|youtu\.be)/", re.IGNORECASE)
# Greedy prefix: the last matching marker wins (e.g. "&v=" after a list= param)
_VIDEO_ID_RE = re.compile(r"^.*(youtu\.be/|v/|u/\w/|embed/|watch\?v=|&v=)([^#&?]*).*")
_CHANNEL_RE = re.compile(r"(https?://)?(www\.)?youtube\.com/(user|channel)/", re.IGNORECASE)
_PLAYLIST_RE = re.compile(r"(https?://)?(www\.)?youtube\.com/.*[?&]list=", re.IGNORECASE)
_START_RE = re.compile(r"[?&](start|t)=(\d+)(s)?")
_END_RE = re.compile(r"[?&]end=(\d+)")


@dataclass(frozen=True)
class VideoSource:
    """A parsed video source. Derived purely from ``raw_url``."""

    raw_url: str
    content_id: str | None = None
    start_offset: int = 0
    end_offset: int = 0
    is_valid: bool = False
    error_reason: str | None = None
    url_type: str = "invalid"

    @property
    def watch_url(self) -> str:
        return f"{WATCH_BASE_URL}{self.content_id}" if self.content_id else ""

    def to_dict(self) -> dict:
        return {
            "url": self.raw_url,
            "video_id": self.content_id,
            "start": self.start_offset,
            "end": self.end_offset,
            "is_valid": self.is_valid,
            "error": self.error_reason,
            "url_type": self.url_type,
            "embed_url": build_embed_url(self.content_id, self.raw_url) if self.content_id else None,
        }


@dataclass(frozen=True)
class EmbedParameters:
    """Player variables passed at creation time."""

    content_id: str
    autoplay: int = 1
    mute: int = 1
    controls: int = 0
    modestbranding: int = 1
    rel: int = 0
    showinfo: int = 0
    iv_load_policy: int = 3
    disablekb: int = 1
    playsinline: int = 1
    enablejsapi: int = 1
    loop: int = 1
    start: int = 0
    end: int = 0

    def to_player_vars(self) -> dict:
        """Player vars in provider naming. start/end only when set."""
        player_vars = {
            "autoplay": self.autoplay,
            "mute": self.mute,
            "controls": self.controls,
            "modestbranding": self.modestbranding,
            "rel": self.rel,
            "showinfo": self.showinfo,
            "iv_load_policy": self.iv_load_policy,
            "disablekb": self.disablekb,
            "playsinline": self.playsinline,
            "enablejsapi": self.enablejsapi,
            "loop": self.loop,
            # Single-video loop only works when the video is its own playlist
            "playlist": self.content_id,
        }
        if self.start > 0:
            player_vars["start"] = self.start
        if self.end > 0:
            player_vars["end"] = self.end
        return player_vars


@dataclass(frozen=True)
class LoadRequest:
    """Arguments for swapping content into an existing player."""

    content_id: str
    start_seconds: int = 0
    end_seconds: int | None = None
    suggested_quality: str = "highres"


def is_youtube_url(url: str) -> bool:
    return bool(_YOUTUBE_URL_RE.search(url))


def extract_video_id(url: str) -> str | None:
    """Extract an 11-character video ID from watch/short/embed URL shapes."""
    match = _VIDEO_ID_RE.match(url)
    if match and len(match.group(2)) == VIDEO_ID_LENGTH:
        return match.group(2)
    return None


def get_url_type(url: str) -> str:
    """Classify a URL as channel, playlist, video or invalid."""
    if _CHANNEL_RE.search(url):
        return "channel"
    if _PLAYLIST_RE.search(url):
        return "playlist"
    if extract_video_id(url):
        return "video"
    return "invalid"


def extract_start(url: str) -> int:
    """Start offset from ``start=`` or ``t=`` (``t=30`` or ``t=30s``). 0 if absent."""
    if not isinstance(url, str):
        return 0
    match = _START_RE.search(url)
    return int(match.group(2)) if match else 0


def extract_end(url: str) -> int:
    """End offset from ``end=``. 0 if absent."""
    if not isinstance(url, str):
        return 0
    match = _END_RE.search(url)
    return int(match.group(1)) if match else 0


def parse(raw_url) -> VideoSource:
    """Validate a raw source URL and derive a VideoSource."""
    if not isinstance(raw_url, str) or not raw_url.strip():
        return VideoSource(
            raw_url=raw_url if isinstance(raw_url, str) else "",
            error_reason=INVALID_URL,
        )

    clean_url = unquote(raw_url.strip())

    if not is_youtube_url(clean_url):
        return VideoSource(raw_url=raw_url, error_reason=NOT_YOUTUBE_URL)

    video_id = extract_video_id(clean_url)
    if not video_id:
        return VideoSource(
            raw_url=raw_url,
            error_reason=NO_VIDEO_ID,
            url_type=get_url_type(clean_url),
        )

    return VideoSource(
        raw_url=raw_url,
        content_id=video_id,
        start_offset=extract_start(raw_url),
        end_offset=extract_end(raw_url),
        is_valid=True,
        url_type="video",
    )


def validate_url(raw_url) -> tuple[bool, str | None]:
    """Validate user input for the settings surface."""
    if not isinstance(raw_url, str) or not raw_url.strip():
        return False, EMPTY_URL
    source = parse(raw_url)
    return source.is_valid, source.error_reason


def build_embed_url(content_id: str, raw_url: str | None = None) -> str:
    """Build the iframe embed URL. Parameter order is fixed."""
    params = [
        ("autoplay", "1"),
        ("mute", "1"),  # required for autoplay in most browsers
        ("controls", "0"),
        ("modestbranding", "1"),
        ("rel", "0"),
        ("showinfo", "0"),
        ("iv_load_policy", "3"),
        ("disablekb", "1"),
        ("playsinline", "1"),
    ]
    if raw_url:
        start = extract_start(raw_url)
        if start > 0:
            params.append(("start", str(start)))
        end = extract_end(raw_url)
        if end > 0:
            params.append(("end", str(end)))
    return f"{EMBED_BASE_URL}{content_id}?{urlencode(params)}"


def embed_parameters(source: VideoSource) -> EmbedParameters:
    if not source.is_valid or not source.content_id:
        raise ValueError(f"Cannot build embed parameters for invalid source: {source.error_reason}")
    return EmbedParameters(
        content_id=source.content_id,
        start=source.start_offset,
        end=source.end_offset,
    )


def load_request(source: VideoSource) -> LoadRequest:
    if not source.is_valid or not source.content_id:
        raise ValueError(f"Cannot load invalid source: {source.error_reason}")
    return LoadRequest(
        content_id=source.content_id,
        start_seconds=source.start_offset,
        end_seconds=source.end_offset if source.end_offset > 0 else None,
    )
