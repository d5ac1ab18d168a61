"""Request-scoped data passed between the dispatch stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, Optional, Tuple, Union


class Protocol(str, Enum):
    HTTP = "http"
    HLS = "hls"
    RTMP = "rtmp"
    PLAYLIST = "playlist"


class Role(str, Enum):
    COMBINED = "combined"
    VIDEO_ONLY = "video_only"
    AUDIO_ONLY = "audio_only"


@dataclass(frozen=True)
class FormatEntry:
    """One downloadable rendition as reported by the extractor."""
    id: str
    url: str
    protocol: Protocol
    bitrate: Optional[float] = None
    is_audio_only: bool = False
    is_video_only: bool = False
    ext: str = "bin"
    http_headers: Dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def role(self) -> Role:
        if self.is_audio_only:
            return Role.AUDIO_ONLY
        if self.is_video_only:
            return Role.VIDEO_ONLY
        return Role.COMBINED

    @property
    def has_video(self) -> bool:
        return not self.is_audio_only

    @property
    def has_audio(self) -> bool:
        return not self.is_video_only


@dataclass(frozen=True)
class MediaInfo:
    """Extractor output for one page.

    Playlists carry ``entries`` instead of formats. Entries that came back
    flat have no formats, only ``webpage_url``, and are resolved on demand.
    """
    title: str
    protocol: Protocol
    formats: Tuple[FormatEntry, ...] = ()
    entries: Optional[Tuple["MediaInfo", ...]] = None
    webpage_url: Optional[str] = None
    id: Optional[str] = None

    def find_format(self, format_id: str) -> Optional[FormatEntry]:
        return next((f for f in self.formats if f.id == format_id), None)


@dataclass(frozen=True)
class StreamSpec:
    url: str
    protocol: Protocol
    role: Role
    ext: str = "bin"
    http_headers: Dict[str, str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_entry(cls, entry: FormatEntry) -> "StreamSpec":
        return cls(
            url=entry.url,
            protocol=entry.protocol,
            role=entry.role,
            ext=entry.ext,
            http_headers=dict(entry.http_headers),
        )


@dataclass(frozen=True)
class Segment:
    """One upstream fetch of a concatenated stream."""
    url: str
    http_headers: Dict[str, str] = field(default_factory=dict, compare=False)
    byte_range: Optional[Tuple[int, int]] = None

    @classmethod
    def from_spec(cls, spec: StreamSpec) -> "Segment":
        return cls(spec.url, dict(spec.http_headers))

    @property
    def range_header(self) -> Optional[str]:
        if self.byte_range is None:
            return None
        return "bytes=%d-%d" % self.byte_range


# Parsed format tokens


@dataclass(frozen=True)
class Single:
    id: str


@dataclass(frozen=True)
class Alias:
    name: str


@dataclass(frozen=True)
class Pair:
    video: Union[Single, Alias]
    audio: Union[Single, Alias]


FormatToken = Union[Single, Alias, Pair]


# Delivery strategies


@dataclass(frozen=True)
class Redirect:
    url: str


@dataclass(frozen=True)
class ProxyStream:
    spec: StreamSpec


@dataclass(frozen=True)
class PlaylistStream:
    # Single-pass: consumed once by the proxy, in order.
    segments: Iterator[Segment] = field(compare=False)
    ext: str = "ts"


@dataclass(frozen=True)
class RemuxStream:
    video: StreamSpec
    audio: StreamSpec
    container: str = "mkv"


DeliveryStrategy = Union[Redirect, ProxyStream, PlaylistStream, RemuxStream]
