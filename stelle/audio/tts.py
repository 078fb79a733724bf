import io
import re
import time
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from loguru import logger
from mutagen import File as MutagenFile
from mutagen import MutagenError
from mutagen.mp3 import MP3

from core.config import AppConfig, TTSBackend, TTSConfig
from core.errors import (
    BackendNotImplementedError,
    ConfigurationError,
    ContractViolation,
    TransportError,
)


@dataclass(frozen=True)
class AudioHandle:
    """Synthesized speech, ready to play. Never mutated after creation."""

    data: bytes
    format: str
    duration: float
    sample_rate: int = 0


_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse newlines and whitespace runs to single spaces.

    Synthesis backends tend to stall or read out long pauses on raw
    newlines, so the reply is flattened before it is sent.
    """
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def probe_duration(data: bytes, audio_format: str) -> float:
    """Return the playback length of encoded audio in seconds.

    Raises:
        ContractViolation: the bytes cannot be decoded as audio.
    """
    if not data:
        raise ContractViolation("Audio payload is empty.")

    if audio_format.lower() == "wav":
        try:
            with wave.open(io.BytesIO(data), "rb") as wav:
                rate = wav.getframerate()
                frames = wav.getnframes()
        except (wave.Error, EOFError) as e:
            raise ContractViolation(f"Undecodable WAV audio: {e}") from e
        if not rate or not frames:
            raise ContractViolation("WAV audio contains no frames.")
        return frames / float(rate)

    # Bare MPEG frames carry no ID3 tag or file name for File() to sniff
    opener = MP3 if audio_format.lower() == "mp3" else MutagenFile
    try:
        audio = opener(io.BytesIO(data))
    except MutagenError as e:
        raise ContractViolation(f"Undecodable {audio_format} audio: {e}") from e

    if audio is None or audio.info is None or not audio.info.length:
        raise ContractViolation(f"Undecodable {audio_format} audio.")
    return float(audio.info.length)


class BaseTTS(ABC):
    """Abstract base class for speech synthesis backends.

    Implementations decode and hand off; playback belongs to the caller.
    """

    @abstractmethod
    async def synthesize(self, text: str) -> AudioHandle:
        """Synthesize text into a playable AudioHandle.

        Raises:
            ConfigurationError, TransportError, ContractViolation,
            BackendNotImplementedError
        """
        ...

    async def close(self) -> None:
        pass


class CloudTTS(BaseTTS):
    """Remote HTTP synthesis (SiliconFlow-style /v1/audio/speech)."""

    def __init__(self, config: TTSConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client
        self._owns_client = client is None

    def _ensure_client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout)

    def build_request(self, text: str) -> dict:
        cfg = self.config
        return {
            "model": cfg.model or "fnlp/MOSS-TTSD-v0.5",
            "input": f"{cfg.speaker_tag}{text}",
            "max_tokens": cfg.max_tokens,
            "voice": cfg.voice or "fnlp/MOSS-TTSD-v0.5:anna",
            "response_format": cfg.response_format or "mp3",
            "sample_rate": cfg.sample_rate if cfg.sample_rate > 0 else 44100,
            "stream": False,
            "speed": cfg.speed,
            "gain": cfg.gain,
        }

    async def synthesize(self, text: str) -> AudioHandle:
        if not self.config.service_url:
            raise ConfigurationError("TTS service URL is not configured.")

        clean = normalize_text(text)
        if not clean:
            raise ContractViolation("Nothing to synthesize.")

        self._ensure_client()
        body = self.build_request(clean)
        headers = {}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        t0 = time.monotonic()
        try:
            response = await self._client.post(
                self.config.service_url,
                json=body,
                headers=headers,
                timeout=self.config.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"TTS request timed out after {self.config.timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"TTS request failed: {e}") from e

        if not response.is_success:
            logger.error("[TTS] HTTP error {}: {}", response.status_code, response.text[:300])
            raise TransportError(
                f"TTS returned HTTP {response.status_code}", status_code=response.status_code
            )

        audio_format = body["response_format"]
        duration = probe_duration(response.content, audio_format)
        logger.info(
            "[TTS] Synthesized {:.2f}s of {} in {:.1f}s for '{}'",
            duration, audio_format, time.monotonic() - t0, clean[:50],
        )
        return AudioHandle(
            data=response.content,
            format=audio_format,
            duration=duration,
            sample_rate=body["sample_rate"],
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class LocalTTS(BaseTTS):
    """Placeholder for a self-hosted synthesis service (e.g. GPT-SoVITS)."""

    def __init__(self, config: TTSConfig):
        self.config = config

    async def synthesize(self, text: str) -> AudioHandle:
        logger.warning("[TTS] Local synthesis backend is not implemented yet.")
        raise BackendNotImplementedError("Local TTS backend is not implemented.")


def create_tts(config: AppConfig) -> BaseTTS:
    """Select the synthesis backend from config."""
    if config.tts.backend == TTSBackend.LOCAL:
        return LocalTTS(config.tts)
    return CloudTTS(config.tts)
