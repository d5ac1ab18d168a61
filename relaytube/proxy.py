"""StreamProxy: relays upstream bytes to the client in bounded chunks."""

from __future__ import annotations

import http.client
import logging
import urllib.error
from typing import Any, Callable, Dict, Iterator, Optional, Union
from urllib.request import Request, urlopen

from .config import DEFAULT_HTTP_HEADERS
from .errors import EmptyUrlError, UpstreamUnavailableError
from .hls import iter_segments
from .models import PlaylistStream, Protocol, ProxyStream, Segment, StreamSpec
from .process import MuxProcess

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 256
FORWARDED_HEADERS = ("Content-Length", "Content-Range", "Accept-Ranges", "Content-Type")


class Body:
    """A one-shot byte stream plus the status/headers to send ahead of it.

    Closing it closes the underlying generator, whose ``finally`` releases
    the upstream socket or child process.
    """

    def __init__(
        self,
        chunks: Iterator[bytes],
        status: int = 200,
        headers: Optional[Dict[str, str]] = None,
        on_close: Optional[Callable[[], None]] = None,
    ):
        self._chunks = chunks
        self._on_close = on_close
        self.status = status
        self.headers = headers or {}
        self.bytes_written = 0

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            self.bytes_written += len(chunk)
            yield chunk

    def close(self) -> None:
        # A generator that never started skips its finally block.
        self._chunks.close()
        if self._on_close is not None:
            self._on_close()

    def write_to(self, sink) -> int:
        try:
            for chunk in self:
                sink.write(chunk)
        finally:
            self.close()
        return self.bytes_written


class StreamProxy:
    def __init__(
        self,
        chunk_size: int = CHUNK_SIZE,
        timeout: float = 30.0,
        opener: Callable[..., Any] = urlopen,
        ffmpeg_path: str = "ffmpeg",
    ):
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.opener = opener
        self.ffmpeg_path = ffmpeg_path

    def _open_url(self, url: str, headers: Optional[Dict[str, str]] = None, range_header: Optional[str] = None):
        request_headers = dict(DEFAULT_HTTP_HEADERS)
        request_headers.update(headers or {})
        if range_header:
            request_headers["Range"] = range_header
        try:
            return self.opener(Request(url, headers=request_headers), timeout=self.timeout)
        except urllib.error.HTTPError as exc:
            logger.warning("upstream %s answered HTTP %s", url, exc.code)
            raise UpstreamUnavailableError(f"Upstream answered HTTP {exc.code} for {url}") from exc
        except (urllib.error.URLError, OSError, http.client.HTTPException) as exc:
            logger.warning("upstream %s unreachable: %s", url, exc)
            raise UpstreamUnavailableError(f"Could not reach {url}: {exc}") from exc

    def _read(self, response, url: str) -> Iterator[bytes]:
        try:
            for chunk in iter(lambda: response.read(self.chunk_size), b""):
                yield chunk
        except (OSError, http.client.HTTPException) as exc:
            logger.warning("upstream %s dropped mid-transfer: %s", url, exc)
            raise UpstreamUnavailableError(f"Upstream {url} failed mid-transfer: {exc}") from exc

    def fetch_text(self, url: str, headers: Optional[Dict[str, str]] = None) -> str:
        response = self._open_url(url, headers)
        try:
            return b"".join(self._read(response, url)).decode("utf-8", "replace")
        finally:
            response.close()

    def segments(self, spec: StreamSpec) -> Iterator[Segment]:
        return iter_segments(spec, self.fetch_text)

    def iter_bytes(self, spec: StreamSpec) -> Iterator[bytes]:
        """Lazily fetch one stream end to end; used as a remux input."""
        if spec.protocol == Protocol.RTMP:
            raise UpstreamUnavailableError(f"RTMP streams can't be used as remux input: {spec.url}")
        segments = self.segments(spec) if spec.protocol == Protocol.HLS else iter([Segment.from_spec(spec)])
        for segment in segments:
            response = self._open_segment(segment)
            try:
                yield from self._read(response, segment.url)
            finally:
                response.close()

    def open(self, strategy: Union[ProxyStream, PlaylistStream], range_header: Optional[str] = None) -> Body:
        """Connect upstream now, so connect errors surface before any byte is sent."""
        if isinstance(strategy, PlaylistStream):
            return self._open_playlist(strategy)
        spec = strategy.spec
        if spec.protocol == Protocol.RTMP:
            return self._open_rtmp(spec)

        response = self._open_url(spec.url, spec.http_headers, range_header)
        headers = {}
        for name in FORWARDED_HEADERS:
            value = response.headers.get(name)
            if value:
                headers[name] = value

        def chunks() -> Iterator[bytes]:
            try:
                yield from self._read(response, spec.url)
            finally:
                response.close()

        return Body(
            chunks(),
            status=getattr(response, "status", 200) or 200,
            headers=headers,
            on_close=response.close,
        )

    def _open_segment(self, segment: Segment):
        response = self._open_url(segment.url, segment.http_headers, segment.range_header)
        if segment.byte_range is not None and getattr(response, "status", 200) != 206:
            # a server that ignores Range would send the whole file for every sub-range
            response.close()
            raise UpstreamUnavailableError(f"{segment.url} ignored the requested byte range")
        return response

    def _open_playlist(self, strategy: PlaylistStream) -> Body:
        segments = iter(strategy.segments)
        first = next(segments, None)
        if first is None:
            raise EmptyUrlError("Playlist produced no playable segment")
        response = self._open_segment(first)

        def chunks() -> Iterator[bytes]:
            current, segment = response, first
            try:
                yield from self._read(current, segment.url)
                for segment in segments:
                    current.close()
                    current = self._open_segment(segment)
                    yield from self._read(current, segment.url)
            finally:
                current.close()

        return Body(chunks(), on_close=response.close)

    def _open_rtmp(self, spec: StreamSpec) -> Body:
        process = MuxProcess(
            [self.ffmpeg_path, "-nostdin", "-loglevel", "error", "-i", spec.url, "-c", "copy", "-f", "flv", "pipe:1"]
        ).start()

        def chunks() -> Iterator[bytes]:
            try:
                yield from process.iter_stdout(self.chunk_size)
                process.check()
            finally:
                process.terminate()

        return Body(chunks(), headers={"Content-Type": "video/x-flv"}, on_close=process.terminate)

    def serve(self, strategy: Union[ProxyStream, PlaylistStream], sink, range_header: Optional[str] = None) -> int:
        return self.open(strategy, range_header).write_to(sink)
