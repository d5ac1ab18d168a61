import pytest

from relaytube.config import DeliveryConfig
from relaytube.errors import EmptyUrlError, InvalidFormatCombinationError, RemuxDisabledError, StreamingRequiredError
from relaytube.models import PlaylistStream, Protocol, ProxyStream, Redirect, RemuxStream, Role, Segment, StreamSpec
from relaytube.planner import DeliveryPlanner


OFF = DeliveryConfig(streaming_enabled=False, remux_enabled=False)
STREAM = DeliveryConfig(streaming_enabled=True, remux_enabled=False)
REMUX_ONLY = DeliveryConfig(streaming_enabled=False, remux_enabled=True)
ALL = DeliveryConfig(streaming_enabled=True, remux_enabled=True)

COMBINED = StreamSpec("https://cdn.example/v.mp4", Protocol.HTTP, Role.COMBINED, "mp4")
VIDEO = StreamSpec("https://cdn.example/v-only.mp4", Protocol.HTTP, Role.VIDEO_ONLY, "mp4")
AUDIO = StreamSpec("https://cdn.example/a-only.m4a", Protocol.HTTP, Role.AUDIO_ONLY, "m4a")
HLS = StreamSpec("https://cdn.example/index.m3u8", Protocol.HLS, Role.COMBINED, "mp4", {"Referer": "https://site.example/"})


def fake_segments(spec):
    yield Segment(spec.url + "#0", spec.http_headers)
    yield Segment(spec.url + "#1", spec.http_headers)


@pytest.fixture
def planner():
    return DeliveryPlanner(fake_segments, remux_container="mkv")


def test_redirect_without_streaming(planner):
    assert planner.plan([COMBINED], Protocol.HTTP, OFF) == Redirect(COMBINED.url)


def test_proxy_with_streaming(planner):
    assert planner.plan([COMBINED], Protocol.HTTP, STREAM) == ProxyStream(COMBINED)


@pytest.mark.parametrize("config", [OFF, STREAM])
def test_pair_without_remux_fails_regardless_of_streaming(planner, config):
    with pytest.raises(RemuxDisabledError):
        planner.plan([VIDEO, AUDIO], Protocol.HTTP, config)


def test_pair_without_streaming(planner):
    with pytest.raises(StreamingRequiredError):
        planner.plan([VIDEO, AUDIO], Protocol.HTTP, REMUX_ONLY)


def test_pair_remuxes(planner):
    assert planner.plan([VIDEO, AUDIO], Protocol.HTTP, ALL) == RemuxStream(VIDEO, AUDIO, "mkv")


def test_hls_streams_segments(planner):
    strategy = planner.plan([HLS], Protocol.HLS, STREAM)
    assert isinstance(strategy, PlaylistStream)
    assert strategy.ext == "ts"
    assert [s.url for s in strategy.segments] == [HLS.url + "#0", HLS.url + "#1"]


def test_hls_redirects_without_streaming(planner):
    assert planner.plan([HLS], Protocol.HLS, OFF) == Redirect(HLS.url)


def test_rtmp_is_proxied_when_streaming(planner):
    rtmp = StreamSpec("rtmp://live.example/app/stream", Protocol.RTMP, Role.COMBINED, "flv")
    assert planner.plan([rtmp], Protocol.RTMP, STREAM) == ProxyStream(rtmp)
    assert planner.plan([rtmp], Protocol.RTMP, OFF) == Redirect(rtmp.url)


def test_playlist_streaming_is_lazy_and_ordered(planner):
    consumed = []

    def children():
        for spec in (COMBINED, HLS, AUDIO):
            consumed.append(spec.url)
            yield spec

    strategy = planner.plan([], Protocol.PLAYLIST, STREAM, entry_specs=children())
    assert isinstance(strategy, PlaylistStream)
    assert consumed == [COMBINED.url]
    assert [s.url for s in strategy.segments] == [COMBINED.url, HLS.url + "#0", HLS.url + "#1", AUDIO.url]


def test_playlist_redirects_to_first_child_without_streaming(planner):
    strategy = planner.plan([], Protocol.PLAYLIST, OFF, entry_specs=iter([AUDIO, COMBINED]))
    assert strategy == Redirect(AUDIO.url)


def test_playlist_without_children(planner):
    with pytest.raises(EmptyUrlError):
        planner.plan([], Protocol.PLAYLIST, OFF, entry_specs=iter([]))


def test_no_specs(planner):
    with pytest.raises(EmptyUrlError):
        planner.plan([], Protocol.HTTP, STREAM)


def test_planning_is_repeatable(planner):
    first = planner.plan([COMBINED], Protocol.HTTP, STREAM)
    second = planner.plan([COMBINED], Protocol.HTTP, STREAM)
    assert first == second


def test_mismatched_roles_are_a_format_error(planner):
    with pytest.raises(InvalidFormatCombinationError):
        planner.plan([AUDIO, VIDEO], Protocol.HTTP, ALL)


def test_playlist_is_named_after_its_first_entry(planner):
    assert planner.plan([], Protocol.PLAYLIST, STREAM, entry_specs=iter([COMBINED, AUDIO])).ext == "mp4"
    assert planner.plan([], Protocol.PLAYLIST, STREAM, entry_specs=iter([HLS, COMBINED])).ext == "ts"


def test_playlist_segments_keep_each_entry_headers(planner):
    referred = StreamSpec("https://cdn.example/r.mp4", Protocol.HTTP, Role.COMBINED, "mp4", {"Referer": "https://r.example/"})
    strategy = planner.plan([], Protocol.PLAYLIST, STREAM, entry_specs=iter([referred, COMBINED, HLS]))
    assert [s.http_headers.get("Referer") for s in strategy.segments] == [
        "https://r.example/",
        None,
        "https://site.example/",
        "https://site.example/",
    ]
