"""DispatchController: url + format token -> redirect or streamed body."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Union

from .config import DeliveryConfig, Settings
from .errors import EmptyUrlError, InvalidFormatCombinationError
from .extractor import MediaInfoClient
from .formats import FormatSelector
from .models import (
    DeliveryStrategy,
    MediaInfo,
    PlaylistStream,
    Protocol,
    ProxyStream,
    Redirect,
    RemuxStream,
    StreamSpec,
)
from .planner import DeliveryPlanner
from .proxy import Body, StreamProxy
from .remux import Remuxer

logger = logging.getLogger(__name__)

MEDIA_TYPES = {
    "mp4": "video/mp4",
    "m4v": "video/mp4",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "flv": "video/x-flv",
    "ts": "video/mp2t",
    "m4a": "audio/mp4",
    "mp3": "audio/mpeg",
    "ogg": "audio/ogg",
    "opus": "audio/ogg",
}


def sanitize_filename(title: str, ext: str) -> str:
    """Create a safe, ASCII filename for Content-Disposition headers."""
    safe_title = (
        re.sub(r'[\\/*?:"<>|]', "", title)
        .replace("\n", " ")
        .replace("\r", " ")
        .strip()
    )
    safe_title = safe_title or "download"
    # Force ASCII to avoid latin-1 header encoding failures
    safe_title_ascii = safe_title.encode("ascii", "ignore").decode("ascii").strip() or "download"
    safe_ext_ascii = ext.encode("ascii", "ignore").decode("ascii") or "bin"
    return f"{safe_title_ascii}.{safe_ext_ascii}"


@dataclass
class Streamed:
    """Bytes ready to be relayed; iterate (or ``write_to``) exactly once."""
    body: Body
    strategy: DeliveryStrategy
    filename: str
    media_type: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return self.body.status

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.body)

    def write_to(self, sink) -> int:
        return self.body.write_to(sink)

    def close(self) -> None:
        self.body.close()


DispatchOutcome = Union[Redirect, Streamed]


class DispatchController:
    """ResolveInfo -> SelectFormat -> Plan -> Execute.

    Every stage failure is a DispatchError raised straight to the caller;
    nothing is retried across stages.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[MediaInfoClient] = None,
        proxy: Optional[StreamProxy] = None,
        remuxer: Optional[Remuxer] = None,
    ):
        self.settings = settings
        self.client = client or MediaInfoClient()
        self.proxy = proxy or StreamProxy(
            chunk_size=settings.chunk_size,
            timeout=settings.upstream_timeout,
            ffmpeg_path=settings.ffmpeg_path,
        )
        self.remuxer = remuxer or Remuxer(self.proxy, settings.ffmpeg_path, settings.chunk_size)
        self.selector = FormatSelector()
        self.planner = DeliveryPlanner(self.proxy.segments, settings.remux_container)

    def _entry_specs(self, info: MediaInfo, token: str, password: Optional[str]) -> Iterator[StreamSpec]:
        """Resolve playlist children one at a time, as the stream reaches them."""
        for entry in info.entries or ():
            child = entry
            if not child.formats:
                if not child.webpage_url:
                    raise EmptyUrlError(f"Playlist entry '{child.title}' has no URL")
                child = self.client.resolve(child.webpage_url, password)
            specs = self.selector.select(child, token)
            if len(specs) != 1:
                raise InvalidFormatCombinationError(
                    f"'{token}' needs merging for '{child.title}'; playlist entries can't be remuxed"
                )
            yield specs[0]

    def plan(
        self,
        info: MediaInfo,
        format_token: str,
        config: DeliveryConfig,
        password: Optional[str] = None,
    ) -> DeliveryStrategy:
        if info.protocol == Protocol.PLAYLIST:
            if not info.entries:
                raise EmptyUrlError("Playlist has no entries")
            return self.planner.plan(
                [], Protocol.PLAYLIST, config, entry_specs=self._entry_specs(info, format_token, password)
            )
        specs = self.selector.select(info, format_token)
        return self.planner.plan(specs, specs[0].protocol, config)

    def execute(
        self,
        strategy: DeliveryStrategy,
        info: MediaInfo,
        config: DeliveryConfig,
        range_header: Optional[str] = None,
    ) -> DispatchOutcome:
        if isinstance(strategy, Redirect):
            return strategy
        if isinstance(strategy, RemuxStream):
            body = self.remuxer.open(strategy, config)
            ext = strategy.container
        elif isinstance(strategy, PlaylistStream):
            body = self.proxy.open(strategy)
            ext = strategy.ext
        else:
            body = self.proxy.open(strategy, range_header)
            ext = "flv" if strategy.spec.protocol == Protocol.RTMP else strategy.spec.ext

        media_type = MEDIA_TYPES.get(ext, "application/octet-stream")
        if isinstance(strategy, ProxyStream):
            media_type = body.headers.get("Content-Type", media_type)
        headers = {k: v for k, v in body.headers.items() if k != "Content-Type"}
        return Streamed(
            body=body,
            strategy=strategy,
            filename=sanitize_filename(info.title, ext),
            media_type=media_type,
            headers=headers,
        )

    def dispatch(
        self,
        url: str,
        format_token: Optional[str] = None,
        password: Optional[str] = None,
        stream: Optional[bool] = None,
        range_header: Optional[str] = None,
    ) -> DispatchOutcome:
        format_token = format_token or self.settings.default_format
        config = self.settings.delivery_config(stream)

        info = self.client.resolve(url, password)
        strategy = self.plan(info, format_token, config, password)
        logger.info("dispatching %s format=%s via %s", url, format_token, type(strategy).__name__)
        return self.execute(strategy, info, config, range_header)
