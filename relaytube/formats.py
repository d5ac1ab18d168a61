"""Format token parsing and selection against a MediaInfo."""

from __future__ import annotations

from typing import Callable, List, Optional, Sequence

from .errors import FormatNotFoundError, InvalidFormatCombinationError
from .models import Alias, FormatEntry, FormatToken, MediaInfo, Pair, Single, StreamSpec

ALIASES = ("best", "worst", "bestvideo", "bestaudio", "worstvideo", "worstaudio")


def _parse_part(part: str, token: str):
    if not part or any(ch in part for ch in "/[]() "):
        raise FormatNotFoundError(token)
    if part in ALIASES:
        return Alias(part)
    return Single(part)


def parse_token(token: str) -> FormatToken:
    """Parse ``22``, ``best`` or ``137+140`` into a FormatToken.

    Anything richer than that (yt-dlp filters, ``/`` fallbacks, three-way
    merges) is rejected instead of guessed at.
    """
    token = (token or "").strip()
    if "+" not in token:
        return _parse_part(token, token)
    parts = token.split("+")
    if len(parts) != 2:
        raise FormatNotFoundError(token)
    video, audio = (_parse_part(p.strip(), token) for p in parts)
    if video in (Alias("best"), Alias("worst")) or audio in (Alias("best"), Alias("worst")):
        raise InvalidFormatCombinationError(
            f"'{token}': use bestvideo/bestaudio style aliases inside a merge, not best/worst"
        )
    return Pair(video, audio)


def _rate(entry: FormatEntry) -> float:
    return entry.bitrate or 0.0


def _pick(candidates: Sequence[FormatEntry], highest: bool) -> Optional[FormatEntry]:
    """Highest or lowest bitrate; ties go to the entry listed first."""
    chosen: Optional[FormatEntry] = None
    for entry in candidates:
        if chosen is None:
            chosen = entry
        elif highest and _rate(entry) > _rate(chosen):
            chosen = entry
        elif not highest and _rate(entry) < _rate(chosen):
            chosen = entry
    return chosen


class FormatSelector:
    """Resolves a token to one StreamSpec, or two for a video+audio merge."""

    def select(self, info: MediaInfo, token: str) -> List[StreamSpec]:
        parsed = parse_token(token)
        if isinstance(parsed, Pair):
            video = self._resolve_part(info, parsed.video, token, lambda f: f.is_video_only, "video-only")
            audio = self._resolve_part(info, parsed.audio, token, lambda f: f.is_audio_only, "audio-only")
            return [StreamSpec.from_entry(video), StreamSpec.from_entry(audio)]
        if isinstance(parsed, Alias):
            return [StreamSpec.from_entry(entry) for entry in self._resolve_alias(info, parsed.name, token)]
        entry = info.find_format(parsed.id)
        if entry is None:
            raise FormatNotFoundError(token)
        return [StreamSpec.from_entry(entry)]

    def _resolve_part(
        self,
        info: MediaInfo,
        part,
        token: str,
        accepts: Callable[[FormatEntry], bool],
        kind: str,
    ) -> FormatEntry:
        if isinstance(part, Alias):
            highest = part.name.startswith("best")
            entry = _pick([f for f in info.formats if accepts(f)], highest)
            if entry is None:
                raise InvalidFormatCombinationError(f"'{token}': this video has no {kind} format for '{part.name}'")
            return entry
        entry = info.find_format(part.id)
        if entry is None:
            raise FormatNotFoundError(token, f"Format '{part.id}' from '{token}' is not available for this video")
        if not accepts(entry):
            raise InvalidFormatCombinationError(f"'{token}': format '{part.id}' is not {kind}")
        return entry

    def _resolve_alias(self, info: MediaInfo, name: str, token: str) -> List[FormatEntry]:
        highest = name.startswith("best")
        kind = name[4:] if highest else name[5:]
        if kind == "video":
            pool = [f for f in info.formats if f.is_video_only]
        elif kind == "audio":
            pool = [f for f in info.formats if f.is_audio_only]
        else:
            combined = [f for f in info.formats if not f.is_audio_only and not f.is_video_only]
            if combined:
                pool = combined
            else:
                video = _pick([f for f in info.formats if f.is_video_only], highest)
                audio = _pick([f for f in info.formats if f.is_audio_only], highest)
                if video is not None and audio is not None:
                    return [video, audio]
                pool = list(info.formats)
        entry = _pick(pool, highest)
        if entry is None:
            raise FormatNotFoundError(token)
        return [entry]
