"""Service configuration, read once from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

STREAM_MODES = ("true", "false", "ask")
REMUX_CONTAINERS = ("mkv", "mp4", "webm")

DEFAULT_HTTP_HEADERS = {"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0 Safari/537.36"}


def _env_bool(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class DeliveryConfig:
    """The two toggles the planner needs for one request."""
    streaming_enabled: bool = False
    remux_enabled: bool = False


@dataclass(frozen=True)
class Settings:
    stream: str = "false"
    remux: bool = False
    remux_container: str = "mkv"
    ffmpeg_path: str = "ffmpeg"
    chunk_size: int = 1024 * 256
    upstream_timeout: float = 30.0
    default_format: str = "best"

    def __post_init__(self):
        if self.stream not in STREAM_MODES:
            raise ValueError(f"STREAM must be one of {', '.join(STREAM_MODES)}, got {self.stream!r}")
        if self.remux_container not in REMUX_CONTAINERS:
            raise ValueError(
                f"REMUX_FORMAT must be one of {', '.join(REMUX_CONTAINERS)}, got {self.remux_container!r}"
            )
        if self.chunk_size < 1:
            raise ValueError("CHUNK_SIZE must be positive")

    @classmethod
    def from_env(cls) -> "Settings":
        stream = (os.getenv("STREAM", "false") or "false").strip().lower()
        if stream in ("1", "yes", "on"):
            stream = "true"
        elif stream in ("0", "no", "off", ""):
            stream = "false"
        return cls(
            stream=stream,
            remux=_env_bool("REMUX"),
            remux_container=(os.getenv("REMUX_FORMAT", "mkv") or "mkv").strip().lower(),
            ffmpeg_path=os.getenv("FFMPEG_PATH", "ffmpeg") or "ffmpeg",
            chunk_size=max(int(os.getenv("CHUNK_SIZE", str(1024 * 256)) or 1024 * 256), 1),
            upstream_timeout=float(os.getenv("UPSTREAM_TIMEOUT", "30") or "30"),
            default_format=os.getenv("DEFAULT_FORMAT", "best") or "best",
        )

    def delivery_config(self, stream_requested: Optional[bool] = None) -> DeliveryConfig:
        """Resolve the per-request toggles.

        With ``STREAM=ask`` streaming happens only when the client asks for it.
        """
        if self.stream == "true":
            streaming = True
        elif self.stream == "ask":
            streaming = bool(stream_requested)
        else:
            streaming = False
        return DeliveryConfig(streaming_enabled=streaming, remux_enabled=self.remux)
