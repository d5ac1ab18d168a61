import io
import sys
from pathlib import Path

import pytest


# Ensure tests can import project packages regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from relaytube.errors import ExtractionError, PasswordRequiredError  # noqa: E402
from relaytube.models import FormatEntry, MediaInfo, Protocol  # noqa: E402


class FakeResponse:
    def __init__(self, body: bytes, status: int = 200, headers=None, fail_after=None):
        self._buf = io.BytesIO(body)
        self.status = status
        self.headers = headers if headers is not None else {"Content-Length": str(len(body))}
        self.fail_after = fail_after
        self.closed = False

    def read(self, size=-1):
        if self.fail_after is not None and self._buf.tell() >= self.fail_after:
            raise ConnectionResetError("connection reset by peer")
        if self.fail_after is not None and size > 0:
            size = min(size, self.fail_after - self._buf.tell())
        return self._buf.read(size)

    def close(self):
        self.closed = True


class FakeFile:
    """A route that answers Range requests with 206 and the requested slice."""

    def __init__(self, body: bytes, honour_range: bool = True):
        self.body = body
        self.honour_range = honour_range

    def respond(self, request):
        value = request.get_header("Range")
        if not value or not self.honour_range:
            return FakeResponse(self.body)
        first, _, last = value[len("bytes="):].partition("-")
        end = int(last) + 1 if last else len(self.body)
        part = self.body[int(first):end]
        return FakeResponse(part, status=206, headers={"Content-Length": str(len(part))})


class FakeOpener:
    """Stands in for urlopen; routes map a URL to bytes, a FakeFile, a FakeResponse factory or an exception."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []
        self.responses = []

    def __call__(self, request, timeout=None):
        url = request.full_url
        self.requests.append(request)
        route = self.routes[url]
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, FakeFile):
            response = route.respond(request)
        elif callable(route):
            response = route()
        else:
            response = FakeResponse(route)
        self.responses.append(response)
        return response

    def urls(self):
        return [r.full_url for r in self.requests]


@pytest.fixture
def make_opener():
    return FakeOpener


def fmt(format_id, url=None, protocol=Protocol.HTTP, bitrate=None, audio_only=False, video_only=False, ext="mp4", headers=None):
    return FormatEntry(
        id=format_id,
        url=url or f"https://media.example/{format_id}.{ext}",
        protocol=protocol,
        bitrate=bitrate,
        is_audio_only=audio_only,
        is_video_only=video_only,
        ext=ext,
        http_headers=headers or {},
    )


@pytest.fixture
def split_info():
    """A video offering combined, video-only and audio-only renditions."""
    return MediaInfo(
        title="Split Video",
        protocol=Protocol.HTTP,
        formats=(
            fmt("18", bitrate=500),
            fmt("22", bitrate=1200),
            fmt("137", bitrate=4000, video_only=True),
            fmt("136", bitrate=2000, video_only=True),
            fmt("140", bitrate=128, audio_only=True, ext="m4a"),
            fmt("139", bitrate=48, audio_only=True, ext="m4a"),
        ),
        webpage_url="https://video.example/watch?v=split",
    )


@pytest.fixture
def combined_only_info():
    return MediaInfo(
        title="Combined Only",
        protocol=Protocol.HTTP,
        formats=(fmt("low", bitrate=300), fmt("high", bitrate=900)),
        webpage_url="https://video.example/combined",
    )


class FakeClient:
    """MediaInfoClient double: pages map URL -> MediaInfo; locked maps URL -> password."""

    def __init__(self, pages, locked=None):
        self.pages = pages
        self.locked = locked or {}
        self.calls = []

    def resolve(self, url, password=None):
        self.calls.append(url)
        if url in self.locked and password != self.locked[url]:
            raise PasswordRequiredError()
        page = self.pages.get(url)
        if page is None:
            raise ExtractionError(f"Unsupported URL: {url}")
        return page
