"""MediaInfoClient: resolves a page URL into MediaInfo using yt-dlp."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import yt_dlp

from .config import DEFAULT_HTTP_HEADERS
from .errors import EmptyUrlError, ExtractionError, PasswordRequiredError
from .models import FormatEntry, MediaInfo, Protocol

logger = logging.getLogger(__name__)

# Formats that need a delivery method this service doesn't speak.
UNSUPPORTED_PROTOCOLS = ("mhtml", "http_dash_segments", "f4m", "ism", "websocket_frag")


def map_protocol(name: Optional[str]) -> Protocol:
    """Collapse yt-dlp's protocol names into the ones delivery cares about."""
    name = (name or "https").split("+", 1)[0].lower()
    if name.startswith("m3u8"):
        return Protocol.HLS
    if name.startswith("rtmp"):
        return Protocol.RTMP
    return Protocol.HTTP


def _bitrate(fmt: Dict[str, Any]) -> Optional[float]:
    if fmt.get("tbr") is not None:
        return float(fmt["tbr"])
    parts = [fmt.get("vbr"), fmt.get("abr")]
    known = [float(p) for p in parts if p is not None]
    return sum(known) if known else None


def parse_format(fmt: Dict[str, Any]) -> Optional[FormatEntry]:
    url = fmt.get("url")
    protocol = (fmt.get("protocol") or "").lower()
    if not url or protocol in UNSUPPORTED_PROTOCOLS:
        return None
    vcodec = fmt.get("vcodec")
    acodec = fmt.get("acodec")
    if vcodec == "none" and acodec == "none":
        # storyboards and similar
        return None
    return FormatEntry(
        id=str(fmt.get("format_id") or "0"),
        url=url,
        protocol=map_protocol(protocol),
        bitrate=_bitrate(fmt),
        is_audio_only=vcodec == "none",
        is_video_only=acodec == "none",
        ext=fmt.get("ext") or "bin",
        http_headers=dict(fmt.get("http_headers") or {}),
    )


def parse_info(info: Dict[str, Any]) -> MediaInfo:
    """Turn a yt-dlp info dict into MediaInfo, recursing into playlist entries."""
    title = info.get("title") or info.get("id") or "download"
    if info.get("_type") == "playlist":
        entries = tuple(parse_info(entry) for entry in (info.get("entries") or []) if entry)
        return MediaInfo(
            title=title,
            protocol=Protocol.PLAYLIST,
            entries=entries,
            webpage_url=info.get("webpage_url"),
            id=info.get("id"),
        )

    webpage_url = info.get("webpage_url")
    if info.get("_type") in ("url", "url_transparent"):
        # Flat playlist entry: "url" points at the child page, not at media.
        return MediaInfo(
            title=title,
            protocol=Protocol.HTTP,
            webpage_url=webpage_url or info.get("url"),
            id=info.get("id"),
        )

    raw_formats: List[Dict[str, Any]] = info.get("formats") or ([info] if info.get("url") else [])
    formats = tuple(f for f in (parse_format(raw) for raw in raw_formats) if f is not None)
    if info.get("protocol"):
        protocol = map_protocol(info.get("protocol"))
    elif formats:
        protocol = formats[-1].protocol
    else:
        protocol = Protocol.HTTP
    return MediaInfo(
        title=title,
        protocol=protocol,
        formats=formats,
        webpage_url=webpage_url,
        id=info.get("id"),
    )


def _is_password_error(message: str) -> bool:
    return "password" in message.lower()


class MediaInfoClient:
    """Black-box wrapper around yt-dlp metadata extraction."""

    def __init__(self, ydl_options: Optional[Dict[str, Any]] = None):
        self.ydl_options = ydl_options or {}

    def build_options(self, password: Optional[str] = None) -> Dict[str, Any]:
        options: Dict[str, Any] = {
            "quiet": True,
            "no_warnings": True,
            "skip_download": True,
            "noplaylist": False,
            "extract_flat": "in_playlist",
            "nocheckcertificate": True,
            "http_headers": DEFAULT_HTTP_HEADERS,
        }
        options.update(self.ydl_options)
        if password:
            options["videopassword"] = password
        return options

    def resolve(self, url: str, password: Optional[str] = None) -> MediaInfo:
        try:
            with yt_dlp.YoutubeDL(self.build_options(password)) as ydl:
                info = ydl.extract_info(url, download=False)
        except yt_dlp.utils.YoutubeDLError as exc:
            message = str(exc)
            if _is_password_error(message):
                logger.info("password required for %s", url)
                raise PasswordRequiredError(message) from exc
            logger.warning("extraction failed for %s: %s", url, message)
            raise ExtractionError(message) from exc

        if not info:
            raise ExtractionError(f"No metadata returned for {url}")

        media = parse_info(info)
        if media.protocol == Protocol.PLAYLIST:
            if not media.entries:
                raise EmptyUrlError(f"Playlist {url} has no entries")
        elif not media.formats:
            raise EmptyUrlError(f"No playable media URL found for {url}")
        return media
