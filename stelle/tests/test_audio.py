"""Tests for speech synthesis and playback."""
import asyncio
import json

import httpx
import pytest

from audio.audio_player import AudioPlayer, SilentPlayer, create_player
from audio.tts import (
    AudioHandle,
    CloudTTS,
    LocalTTS,
    create_tts,
    normalize_text,
    probe_duration,
)
from conftest import make_mp3, make_wav
from core.config import AppConfig, TTSBackend, TTSConfig
from core.errors import (
    BackendNotImplementedError,
    ConfigurationError,
    ContractViolation,
    TransportError,
)


def make_tts(handler, **overrides):
    config = TTSConfig(service_url="https://tts.test/v1/audio/speech", response_format="wav", **overrides)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return CloudTTS(config, client=client)


class TestNormalizeText:
    def test_newlines_collapsed(self):
        assert normalize_text("Hello\r\nthere\n\nfriend") == "Hello there friend"

    def test_whitespace_runs(self):
        assert normalize_text("  a   b\t\tc  ") == "a b c"

    def test_empty(self):
        assert normalize_text("") == ""


class TestClipDuration:
    def test_wav(self):
        assert probe_duration(make_wav(seconds=1.0, rate=8000), "wav") == pytest.approx(1.0)

    def test_empty(self):
        with pytest.raises(ContractViolation):
            probe_duration(b"", "mp3")

    def test_garbage_wav(self):
        with pytest.raises(ContractViolation):
            probe_duration(b"definitely not audio", "wav")

    def test_wav_without_frames(self):
        with pytest.raises(ContractViolation):
            probe_duration(make_wav(seconds=0.0), "wav")

    def test_mp3(self):
        assert 0.9 < probe_duration(make_mp3(frames=40), "mp3") < 1.2

    def test_garbage_mp3(self):
        with pytest.raises(ContractViolation):
            probe_duration(b"<html>quota exceeded</html>", "mp3")


class TestCloudTTS:
    @pytest.mark.asyncio
    async def test_request_and_handle(self):
        seen = {}
        audio = make_wav(seconds=0.25)

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=audio)

        tts = make_tts(handler, api_key="tts-key", voice="voice-a", speed=1.2, gain=-2.0, sample_rate=24000)
        handle = await tts.synthesize("Hello\n\nworld   again")

        assert isinstance(handle, AudioHandle)
        assert handle.data == audio
        assert handle.format == "wav"
        assert handle.duration == pytest.approx(0.25)
        assert handle.sample_rate == 24000

        assert seen["auth"] == "Bearer tts-key"
        body = seen["body"]
        assert body["input"] == "[S1]Hello world again"
        assert body["model"] == "fnlp/MOSS-TTSD-v0.5"
        assert body["voice"] == "voice-a"
        assert body["response_format"] == "wav"
        assert body["sample_rate"] == 24000
        assert body["stream"] is False
        assert body["speed"] == 1.2
        assert body["gain"] == -2.0
        assert body["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_default_mp3_format(self):
        seen = {}
        audio = make_mp3(frames=40)

        def handler(request):
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, content=audio, headers={"Content-Type": "audio/mpeg"})

        config = TTSConfig(service_url="https://tts.test/v1/audio/speech", api_key="tts-key")
        tts = CloudTTS(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        handle = await tts.synthesize("你好")

        assert seen["body"]["response_format"] == "mp3"
        assert seen["body"]["sample_rate"] == 44100
        assert seen["body"]["voice"] == "fnlp/MOSS-TTSD-v0.5:anna"
        assert handle.format == "mp3"
        assert handle.data == audio
        assert 0.9 < handle.duration < 1.2

    @pytest.mark.asyncio
    async def test_undecodable_mp3(self):
        config = TTSConfig(service_url="https://tts.test/v1/audio/speech")
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"error": "quota"}))
        tts = CloudTTS(config, client=httpx.AsyncClient(transport=transport))
        with pytest.raises(ContractViolation):
            await tts.synthesize("hi")

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, content=make_wav())

        await make_tts(handler).synthesize("hi")
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_http_503(self):
        tts = make_tts(lambda request: httpx.Response(503, text="busy"))
        with pytest.raises(TransportError) as info:
            await tts.synthesize("hi")
        assert info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError):
            await make_tts(handler).synthesize("hi")

    @pytest.mark.asyncio
    async def test_empty_audio(self):
        tts = make_tts(lambda request: httpx.Response(200, content=b""))
        with pytest.raises(ContractViolation):
            await tts.synthesize("hi")

    @pytest.mark.asyncio
    async def test_undecodable_audio(self):
        tts = make_tts(lambda request: httpx.Response(200, content=b"<error>quota</error>"))
        with pytest.raises(ContractViolation):
            await tts.synthesize("hi")

    @pytest.mark.asyncio
    async def test_missing_service_url(self):
        tts = CloudTTS(TTSConfig(service_url=""))
        with pytest.raises(ConfigurationError):
            await tts.synthesize("hi")


class TestLocalTTS:
    @pytest.mark.asyncio
    async def test_reports_not_implemented(self):
        with pytest.raises(BackendNotImplementedError):
            await LocalTTS(TTSConfig()).synthesize("hi")

    def test_factory_selects_backend(self):
        config = AppConfig()
        assert isinstance(create_tts(config), CloudTTS)
        config.tts.backend = TTSBackend.LOCAL
        assert isinstance(create_tts(config), LocalTTS)


class TestPlayers:
    @pytest.mark.asyncio
    async def test_silent_player_waits_for_clip(self):
        handle = AudioHandle(data=b"x", format="wav", duration=0.01)
        await SilentPlayer().play(handle)

    @pytest.mark.asyncio
    async def test_missing_player_command_is_logged(self):
        player = AudioPlayer(["definitely-not-a-player-binary"])
        handle = AudioHandle(data=make_wav(), format="wav", duration=0.5)
        await player.play(handle)
        player.close()

    @pytest.mark.asyncio
    async def test_player_exit_codes_do_not_raise(self):
        handle = AudioHandle(data=make_mp3(), format="mp3", duration=0.5)
        await AudioPlayer(["true"]).play(handle)
        await AudioPlayer(["false"]).play(handle)

    @pytest.mark.asyncio
    async def test_stop_cuts_playback_short(self):
        player = AudioPlayer(["tail", "-f"])
        handle = AudioHandle(data=make_wav(), format="wav", duration=5.0)

        task = asyncio.create_task(player.play(handle))
        await asyncio.sleep(0.3)
        await player.stop()
        await asyncio.wait_for(task, timeout=2.0)

    def test_factory(self):
        assert isinstance(create_player("silent"), SilentPlayer)
        assert isinstance(create_player("speaker", ["paplay"]), AudioPlayer)
