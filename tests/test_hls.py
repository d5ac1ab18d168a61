import pytest

from relaytube.errors import UpstreamUnavailableError
from relaytube.hls import best_variant, iter_segments, load_playlist, parse_byterange
from relaytube.models import Protocol, Role, Segment, StreamSpec


MEDIA_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:3
#EXT-X-TARGETDURATION:4
#EXTINF:4.0,
seg0.ts
#EXTINF:4.0,
seg1.ts
#EXTINF:2.5,
https://other.example/abs/seg2.ts
#EXT-X-ENDLIST
"""

MASTER_PLAYLIST = """#EXTM3U
#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360
low/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=2176000,RESOLUTION=1280x720,CODECS="avc1.4d401f,mp4a.40.2"
high/index.m3u8
"""

BYTERANGE_PLAYLIST = """#EXTM3U
#EXT-X-VERSION:7
#EXT-X-TARGETDURATION:4
#EXT-X-MAP:URI="main.mp4",BYTERANGE="720@0"
#EXTINF:4.0,
#EXT-X-BYTERANGE:1000@720
main.mp4
#EXTINF:4.0,
#EXT-X-BYTERANGE:800
main.mp4
#EXT-X-ENDLIST
"""


def serve(pages, fetched=None):
    def fetch_text(url, headers):
        if fetched is not None:
            fetched.append((url, headers.get("Referer")))
        return pages[url]

    return fetch_text


def test_media_playlist_resolves_relative_urls():
    spec = StreamSpec("https://cdn.example/vod/index.m3u8", Protocol.HLS, Role.COMBINED)
    segments = list(iter_segments(spec, serve({spec.url: MEDIA_PLAYLIST})))
    assert [s.url for s in segments] == [
        "https://cdn.example/vod/seg0.ts",
        "https://cdn.example/vod/seg1.ts",
        "https://other.example/abs/seg2.ts",
    ]
    assert all(s.byte_range is None for s in segments)


def test_master_playlist_picks_highest_bandwidth():
    playlist = load_playlist(MASTER_PLAYLIST, "https://cdn.example/vod/master.m3u8")
    assert playlist.is_variant
    assert best_variant(playlist, "https://cdn.example/vod/master.m3u8") == "https://cdn.example/vod/high/index.m3u8"


def test_rejects_non_m3u8():
    with pytest.raises(UpstreamUnavailableError):
        load_playlist("<html></html>", "https://cdn.example/page")


def test_follows_master_and_emits_init_segment():
    pages = {
        "https://cdn.example/vod/master.m3u8": MASTER_PLAYLIST,
        "https://cdn.example/vod/high/index.m3u8": '#EXTM3U\n#EXT-X-MAP:URI="init.mp4"\n#EXTINF:4,\na.m4s\n#EXTINF:4,\nb.m4s\n',
    }
    fetched = []
    spec = StreamSpec("https://cdn.example/vod/master.m3u8", Protocol.HLS, Role.COMBINED)
    segments = iter_segments(spec, serve(pages, fetched))
    assert fetched == []
    assert [s.url for s in segments] == [
        "https://cdn.example/vod/high/init.mp4",
        "https://cdn.example/vod/high/a.m4s",
        "https://cdn.example/vod/high/b.m4s",
    ]


def test_format_headers_reach_manifests_and_segments():
    pages = {
        "https://cdn.example/vod/master.m3u8": MASTER_PLAYLIST,
        "https://cdn.example/vod/high/index.m3u8": MEDIA_PLAYLIST,
    }
    fetched = []
    spec = StreamSpec(
        "https://cdn.example/vod/master.m3u8", Protocol.HLS, Role.COMBINED, http_headers={"Referer": "https://site.example/"}
    )
    segments = list(iter_segments(spec, serve(pages, fetched)))
    assert [referer for _, referer in fetched] == ["https://site.example/"] * 2
    assert all(s.http_headers == {"Referer": "https://site.example/"} for s in segments)


def test_byterange_segments_carry_their_ranges():
    spec = StreamSpec("https://cdn.example/fmp4/index.m3u8", Protocol.HLS, Role.COMBINED)
    segments = list(iter_segments(spec, serve({spec.url: BYTERANGE_PLAYLIST})))
    main = "https://cdn.example/fmp4/main.mp4"
    assert segments == [
        Segment(main, byte_range=(0, 719)),
        Segment(main, byte_range=(720, 1719)),
        Segment(main, byte_range=(1720, 2519)),
    ]
    assert segments[1].range_header == "bytes=720-1719"


def test_parse_byterange():
    assert parse_byterange("1000@720", 0) == (720, 1719)
    assert parse_byterange("800", 1720) == (1720, 2519)


def test_encrypted_playlist_is_refused():
    text = '#EXTM3U\n#EXT-X-KEY:METHOD=AES-128,URI="key.bin"\n#EXTINF:4,\nseg0.ts\n'
    spec = StreamSpec("https://cdn.example/enc.m3u8", Protocol.HLS, Role.COMBINED)
    with pytest.raises(UpstreamUnavailableError):
        list(iter_segments(spec, lambda url, headers: text))
