"""Tests for in-memory sources, decoding and downloads."""

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer as AudioServer
from conftest import MONO_8K, make_wav

from pcmkit.errors import InvalidArgumentError, UnavailableError
from pcmkit.formats import AudioFormat
from pcmkit.sources import (
    PcmSource,
    SampleSource,
    container_format_for,
    decode_bytes,
    decode_file,
    fetch,
    is_url,
    open_source,
)


def test_pcm_source_reads_sequentially():
    source = PcmSource(b"abcdefgh", MONO_8K)
    assert isinstance(source, SampleSource)
    assert source.read(3) == b"abc"
    assert source.position == 3
    assert source.read(100) == b"defgh"
    assert source.at_end
    assert source.read(10) == b""


def test_pcm_source_drops_trailing_partial_frame():
    source = PcmSource(b"abcde", MONO_8K)
    assert source.length_in_bytes == 4


def test_set_position_clamps_and_aligns():
    source = PcmSource(bytes(100), MONO_8K)
    source.set_position(7)
    assert source.position == 6
    source.set_position(-10)
    assert source.position == 0
    source.set_position(1000)
    assert source.position == 100
    assert source.at_end


def test_times():
    source = PcmSource(bytes(32_000), MONO_8K)
    assert source.total_time() == pytest.approx(2.0)
    source.set_position(8000)
    assert source.current_time() == pytest.approx(0.5)
    assert source.bytes_per_second == 16_000


def test_close_releases_samples():
    source = PcmSource(bytes(64), MONO_8K)
    source.read(10)
    source.close()
    source.close()
    assert source.length_in_bytes == 0
    assert source.read(10) == b""


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("clip.wav", "wav"),
        ("CLIP.WAV", "wav"),
        ("/music/take.aif", "aiff"),
        ("take.aiff", "aiff"),
        ("song.mp3", None),
        ("noextension", None),
        ("https://example.com/a/clip.wav?token=abc", "wav"),
        ("http://example.com/stream", None),
    ],
)
def test_container_format_for(name, expected):
    assert container_format_for(name) == expected


def test_is_url():
    assert is_url("https://example.com/clip.wav")
    assert is_url("HTTP://example.com/clip.wav")
    assert not is_url("/tmp/clip.wav")
    assert not is_url("file:///tmp/clip.wav")


def test_decode_bytes_wav():
    wav_bytes, pcm = make_wav(0.5, sample_rate=8000, channels=2)
    source = decode_bytes(wav_bytes, "clip.wav")
    assert source.format == AudioFormat(sample_rate=8000, bit_depth=16, channels=2)
    assert source.total_time() == pytest.approx(0.5)
    assert source.read(len(pcm)) == pcm


def test_decode_bytes_probes_without_name():
    wav_bytes, pcm = make_wav(0.25)
    source = decode_bytes(wav_bytes)
    assert source.length_in_bytes == len(pcm)


def test_decode_bytes_rejects_empty():
    with pytest.raises(InvalidArgumentError):
        decode_bytes(b"")


def test_decode_garbage_is_unavailable():
    with pytest.raises(UnavailableError):
        decode_bytes(b"this is not audio at all" * 10, "clip.wav")


def test_decode_missing_file(tmp_path):
    with pytest.raises(UnavailableError):
        decode_file(tmp_path / "missing.wav")


def test_decode_file(tmp_path):
    wav_bytes, pcm = make_wav(0.5)
    path = tmp_path / "clip.wav"
    path.write_bytes(wav_bytes)
    source = decode_file(path)
    assert source.format == MONO_8K
    assert source.read(len(pcm)) == pcm


async def test_open_source_from_path(tmp_path):
    wav_bytes, pcm = make_wav(0.25)
    path = tmp_path / "clip.wav"
    path.write_bytes(wav_bytes)
    source = await open_source(path)
    assert source.length_in_bytes == len(pcm)


@pytest.fixture
async def audio_server():
    wav_bytes, pcm = make_wav(0.25)

    async def clip(_request: web.Request) -> web.Response:
        return web.Response(body=wav_bytes, content_type="audio/wav")

    app = web.Application()
    app.router.add_get("/clip.wav", clip)
    server = AudioServer(app)
    await server.start_server()
    yield server, wav_bytes, pcm
    await server.close()


async def test_fetch_downloads_body(audio_server):
    server, wav_bytes, _ = audio_server
    assert await fetch(str(server.make_url("/clip.wav"))) == wav_bytes


async def test_fetch_http_error_is_unavailable(audio_server):
    server, _, _ = audio_server
    with pytest.raises(UnavailableError):
        await fetch(str(server.make_url("/missing.wav")))


async def test_fetch_connection_error_is_unavailable(audio_server):
    server, _, _ = audio_server
    url = str(server.make_url("/clip.wav"))
    await server.close()
    with pytest.raises(UnavailableError):
        await fetch(url, timeout=5)


async def test_open_source_from_url(audio_server):
    server, _, pcm = audio_server
    source = await open_source(str(server.make_url("/clip.wav")))
    assert source.format == MONO_8K
    assert source.read(len(pcm)) == pcm
