"""M3U8 reading on top of the m3u8 library: a manifest in, segments out."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, Optional, Tuple
from urllib.parse import urljoin

import m3u8

from .errors import UpstreamUnavailableError
from .models import Segment, StreamSpec

logger = logging.getLogger(__name__)

FetchText = Callable[[str, Dict[str, str]], str]


def load_playlist(text: str, base_url: str) -> m3u8.M3U8:
    if not text.lstrip().startswith("#EXTM3U"):
        raise UpstreamUnavailableError(f"{base_url} is not an M3U8 playlist")
    return m3u8.loads(text, uri=base_url)


def best_variant(playlist: m3u8.M3U8, base_url: str) -> str:
    # max() keeps the first of equal bandwidths
    variant = max(playlist.playlists, key=lambda v: v.stream_info.bandwidth or 0)
    return urljoin(base_url, variant.uri)


def is_encrypted(playlist: m3u8.M3U8) -> bool:
    return any(key is not None and (key.method or "NONE").upper() != "NONE" for key in playlist.keys)


def parse_byterange(value: str, default_offset: int) -> Tuple[int, int]:
    """Turn ``length[@offset]`` into an inclusive ``(first, last)`` byte pair."""
    length, _, offset = value.partition("@")
    start = int(offset) if offset else default_offset
    return start, start + int(length) - 1


def iter_segments(spec: StreamSpec, fetch_text: FetchText, max_depth: int = 3) -> Iterator[Segment]:
    """Yield the segments of ``spec``'s manifest in playlist order.

    A master playlist is followed down its highest-bandwidth variant. Every
    segment carries the format's request headers, and sub-range segments
    carry the byte range to ask for.
    """
    url = spec.url
    for _ in range(max_depth):
        playlist = load_playlist(fetch_text(url, spec.http_headers), url)
        if not playlist.is_variant:
            break
        url = best_variant(playlist, url)
    else:
        raise UpstreamUnavailableError(f"Too many nested HLS master playlists under {spec.url}")

    if is_encrypted(playlist):
        raise UpstreamUnavailableError(f"Encrypted HLS streams are not supported: {url}")

    headers = dict(spec.http_headers)
    # a byterange without an offset continues where the last one on that URI ended
    next_offset: Dict[str, int] = {}
    current_init: Optional[Tuple[str, Optional[str]]] = None

    def ranged(uri: str, byterange: Optional[str]) -> Segment:
        absolute = urljoin(url, uri)
        if not byterange:
            return Segment(absolute, headers)
        first, last = parse_byterange(byterange, next_offset.get(absolute, 0))
        next_offset[absolute] = last + 1
        return Segment(absolute, headers, (first, last))

    for segment in playlist.segments:
        init = segment.init_section
        if init is not None and init.uri and (init.uri, init.byterange) != current_init:
            current_init = (init.uri, init.byterange)
            yield ranged(init.uri, init.byterange)
        yield ranged(segment.uri, segment.byterange)
    logger.debug("finished HLS playlist %s", url)
