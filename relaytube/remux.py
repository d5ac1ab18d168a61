"""Remuxer: merges a video-only and an audio-only stream with ffmpeg, on the fly."""

from __future__ import annotations

import logging
import os
import threading
from typing import Iterator, List, Optional

from .config import DeliveryConfig
from .errors import DispatchError, RemuxDisabledError, UpstreamUnavailableError
from .models import RemuxStream, StreamSpec
from .process import MuxProcess
from .proxy import CHUNK_SIZE, Body, StreamProxy

logger = logging.getLogger(__name__)

# container -> (ffmpeg muxer, extra output options)
CONTAINERS = {
    "mkv": ("matroska", []),
    # mp4 on a pipe must be fragmented, there is no seeking back to write moov
    "mp4": ("mp4", ["-movflags", "frag_keyframe+empty_moov+default_base_moof"]),
    "webm": ("webm", []),
}


def build_command(ffmpeg_path: str, video_fd: int, audio_fd: int, container: str) -> List[str]:
    muxer, extra = CONTAINERS[container]
    return [
        ffmpeg_path,
        "-nostdin",
        "-loglevel",
        "error",
        "-i",
        f"pipe:{video_fd}",
        "-i",
        f"pipe:{audio_fd}",
        "-map",
        "0:v:0",
        "-map",
        "1:a:0",
        "-c",
        "copy",
        *extra,
        "-f",
        muxer,
        "pipe:1",
    ]


class Remuxer:
    """Runs one ffmpeg per request; each input is fed from its own StreamProxy pipe."""

    def __init__(
        self,
        proxy: StreamProxy,
        ffmpeg_path: str = "ffmpeg",
        chunk_size: int = CHUNK_SIZE,
    ):
        self.proxy = proxy
        self.ffmpeg_path = ffmpeg_path
        self.chunk_size = chunk_size

    def _feed(self, spec: StreamSpec, fd: int, process: MuxProcess, errors: List[DispatchError]) -> None:
        try:
            with os.fdopen(fd, "wb") as pipe:
                for chunk in self.proxy.iter_bytes(spec):
                    pipe.write(chunk)
        except BrokenPipeError:
            # ffmpeg stopped reading; its exit status says why
            return
        except DispatchError as exc:
            errors.append(exc)
            process.kill()
        except OSError as exc:
            errors.append(UpstreamUnavailableError(f"Feeding {spec.url} to ffmpeg failed: {exc}"))
            process.kill()

    def open(self, strategy: RemuxStream, config: Optional[DeliveryConfig] = None) -> Body:
        if config is not None and not config.remux_enabled:
            raise RemuxDisabledError()
        if strategy.container not in CONTAINERS:
            raise ValueError(f"Unsupported remux container: {strategy.container}")

        video_read, video_write = os.pipe()
        audio_read, audio_write = os.pipe()
        process = MuxProcess(
            build_command(self.ffmpeg_path, video_read, audio_read, strategy.container),
            pass_fds=(video_read, audio_read),
        )
        try:
            process.start()
        except DispatchError:
            for fd in (video_read, video_write, audio_read, audio_write):
                os.close(fd)
            raise
        # The child holds its own copies of the read ends now.
        os.close(video_read)
        os.close(audio_read)

        errors: List[DispatchError] = []
        feeders = [
            threading.Thread(target=self._feed, args=(strategy.video, video_write, process, errors), daemon=True),
            threading.Thread(target=self._feed, args=(strategy.audio, audio_write, process, errors), daemon=True),
        ]
        for feeder in feeders:
            feeder.start()
        logger.info("remuxing %s + %s into %s", strategy.video.url, strategy.audio.url, strategy.container)

        def chunks() -> Iterator[bytes]:
            try:
                yield from process.iter_stdout(self.chunk_size)
                for feeder in feeders:
                    feeder.join(timeout=5)
                if errors:
                    raise errors[0]
                process.check()
            finally:
                process.terminate()

        return Body(chunks(), on_close=process.terminate)

    def serve(self, strategy: RemuxStream, sink, config: Optional[DeliveryConfig] = None) -> int:
        return self.open(strategy, config).write_to(sink)
