"""
Unit tests for dispatcher helpers: channel validation and manifest URL building.
"""
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from starlette.responses import StreamingResponse

from relay.core.config import Cfg
from relay.core.errors import ValidationError
from relay.models.schemas import PlaybackCredential
from relay.proxy.dispatcher import RelayDispatcher, build_manifest_url, validate_channel, validate_target_url
from relay.services.token_acquirer import TokenAcquirer


@pytest.mark.parametrize("raw,expected", [
    ("examplechannel", "examplechannel"),
    ("Example_Channel_1", "example_channel_1"),
    ("a", "a"),
    ("x" * 25, "x" * 25),
])
def test_valid_channels(raw, expected):
    assert validate_channel(raw) == expected


@pytest.mark.parametrize("raw", ["", None, "x" * 26, "bad-channel", "bad channel", "chan/../x", "ünicode"])
def test_invalid_channels(raw):
    with pytest.raises(ValidationError) as exc_info:
        validate_channel(raw)
    assert exc_info.value.reason == "bad_channel"
    assert exc_info.value.status_code == 400


def test_target_url_validation():
    assert validate_target_url("https://cdn.example/seg.ts") == "https://cdn.example/seg.ts"

    with pytest.raises(ValidationError) as exc_info:
        validate_target_url(None)
    assert exc_info.value.reason == "missing_u"

    with pytest.raises(ValidationError) as exc_info:
        validate_target_url("file:///etc/passwd")
    assert exc_info.value.reason == "bad_url"


def test_build_manifest_url():
    credential = PlaybackCredential(signature="sig", value='{"channel":"examplechannel","expires":1}')
    url = build_manifest_url("https://usher.ttvnw.net/api/channel/hls/", "examplechannel", credential, "client")

    parts = urlsplit(url)
    params = {k: v[0] for k, v in parse_qs(parts.query).items()}

    assert parts.netloc == "usher.ttvnw.net"
    assert parts.path == "/api/channel/hls/examplechannel.m3u8"
    assert params["sig"] == "sig"
    assert params["token"] == '{"channel":"examplechannel","expires":1}'
    assert params["allow_source"] == "true"
    assert params["allow_audio_only"] == "true"
    assert params["player"] == "twitchweb"
    assert params["client_id"] == "client"
    assert 0 <= int(params["p"]) <= 9_999_999


def test_cache_busting_parameter_varies():
    credential = PlaybackCredential(signature="sig", value="val")
    urls = {build_manifest_url("https://usher.example", "chan", credential, "c") for _ in range(20)}
    assert len(urls) > 1


class TrackedStream(httpx.AsyncByteStream):
    def __init__(self):
        self.closed = False

    async def __aiter__(self):
        yield b"segment-bytes"

    async def aclose(self):
        self.closed = True


@pytest.mark.asyncio
async def test_segment_stream_released_without_iteration():
    """Upstream body is closed by the response's background task even if never read."""
    stream = TrackedStream()
    settings = Cfg(TWITCH_CLIENT_ID="test-client", TWITCH_CLIENT_SECRET="")
    http = httpx.AsyncClient(transport=httpx.MockTransport(
        lambda r: httpx.Response(200, headers={"content-type": "video/mp2t"}, stream=stream)))
    dispatcher = RelayDispatcher(http, TokenAcquirer(http, settings), settings)

    response = await dispatcher.fetch("https://video-edge.example.net/v1/segment/abc.ts", "http://relay")

    assert isinstance(response, StreamingResponse)
    assert stream.closed is False

    await response.background()

    assert stream.closed is True
    await http.aclose()
