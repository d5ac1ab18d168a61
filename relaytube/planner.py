"""DeliveryPlanner: the one place that decides how bytes reach the client."""

from __future__ import annotations

from itertools import chain
from typing import Callable, Iterable, Iterator, Optional, Sequence

from .config import DeliveryConfig
from .errors import (
    EmptyUrlError,
    InvalidFormatCombinationError,
    RemuxDisabledError,
    StreamingRequiredError,
    UpstreamUnavailableError,
)
from .models import (
    DeliveryStrategy,
    PlaylistStream,
    Protocol,
    ProxyStream,
    Redirect,
    RemuxStream,
    Role,
    Segment,
    StreamSpec,
)

SegmentSource = Callable[[StreamSpec], Iterator[Segment]]


def stream_ext(spec: StreamSpec) -> str:
    # segments of an HLS rendition are MPEG-TS whatever the extractor calls the format
    return "ts" if spec.protocol == Protocol.HLS else spec.ext


class DeliveryPlanner:
    """Pure rule table from (specs, protocol, config) to a DeliveryStrategy.

    ``segment_source`` expands an HLS manifest into segments; it is only
    called lazily, when a PlaylistStream is consumed, so planning itself does
    no I/O. The exception is a playlist, which has to resolve its first
    child to know where to redirect or what the concatenation will contain.
    """

    def __init__(self, segment_source: SegmentSource, remux_container: str = "mkv"):
        self.segment_source = segment_source
        self.remux_container = remux_container

    def plan(
        self,
        specs: Sequence[StreamSpec],
        protocol: Protocol,
        config: DeliveryConfig,
        entry_specs: Optional[Iterable[StreamSpec]] = None,
    ) -> DeliveryStrategy:
        if len(specs) == 2:
            if not config.remux_enabled:
                raise RemuxDisabledError()
            if not config.streaming_enabled:
                raise StreamingRequiredError("Merging video and audio requires streaming, which is disabled")
            video, audio = specs
            if video.role != Role.VIDEO_ONLY or audio.role != Role.AUDIO_ONLY:
                raise InvalidFormatCombinationError("Remux needs one video-only and one audio-only stream")
            return RemuxStream(video=video, audio=audio, container=self.remux_container)

        if protocol == Protocol.PLAYLIST:
            children = iter(entry_specs or ())
            first = next(children, None)
            if first is None:
                raise EmptyUrlError("Playlist has no playable entry")
            if config.streaming_enabled:
                return PlaylistStream(segments=self._flatten(chain([first], children)), ext=stream_ext(first))
            return Redirect(first.url)

        if not specs:
            raise EmptyUrlError()
        spec = specs[0]

        if protocol == Protocol.HLS and config.streaming_enabled:
            return PlaylistStream(segments=self.segment_source(spec), ext="ts")
        if not config.streaming_enabled:
            return Redirect(spec.url)
        return ProxyStream(spec)

    def _flatten(self, children: Iterator[StreamSpec]) -> Iterator[Segment]:
        for child in children:
            if child.protocol == Protocol.HLS:
                yield from self.segment_source(child)
            elif child.protocol == Protocol.RTMP:
                raise UpstreamUnavailableError(f"RTMP playlist entries can't be concatenated: {child.url}")
            else:
                yield Segment.from_spec(child)
