"""Shared fakes for dialog tests."""
import asyncio
import io
import wave

import pytest

from audio.tts import AudioHandle, BaseTTS
from core.config import ConfigManager
from core.state import CharacterStateMachine, Emotion
from dialog.history import ChatHistory
from llm.base import BaseLLM, Reply


def make_wav(seconds: float = 0.5, rate: int = 8000) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(rate)
        wav.writeframes(b"\x00\x00" * int(seconds * rate))
    return buf.getvalue()


def make_mp3(frames: int = 40) -> bytes:
    """Silent MPEG-1 Layer III stream, 128 kbps, 44.1 kHz, no ID3 tag.

    Each frame is 417 bytes and 1152 samples, so 40 frames last about 1.04s.
    """
    header = b"\xff\xfb\x90\x00"
    return (header + b"\x00" * 413) * frames


class FakeLLM(BaseLLM):
    def __init__(self, reply=None, error=None, delay: float = 0.0):
        self.reply = reply or Reply("Hi!", Emotion.HAPPY)
        self.error = error
        self.delay = delay
        self.prompts = []

    async def complete(self, prompt):
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class FakeTTS(BaseTTS):
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def synthesize(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return AudioHandle(data=make_wav(), format="wav", duration=0.5, sample_rate=8000)


class FakePlayer:
    def __init__(self, character: CharacterStateMachine):
        self.character = character
        self.played = []
        self.states_during_play = []

    async def play(self, handle):
        self.states_during_play.append(self.character.state)
        self.played.append(handle)


class FakeSurface:
    def __init__(self):
        self.replies = []
        self.input_events = []

    def show_reply(self, text):
        self.replies.append(text)

    def set_input_enabled(self, enabled):
        self.input_events.append(enabled)


class Recorder:
    """Collects state machine transitions."""

    def __init__(self):
        self.events = []

    def __call__(self, state, emotion):
        self.events.append((state, emotion))


@pytest.fixture
def config_manager(tmp_path):
    cm = ConfigManager(tmp_path)
    cm.update_nested("llm", base_url="https://llm.test/v1/chat/completions", model="test-model", api_key="sk-test")
    return cm


@pytest.fixture
def history(tmp_path):
    h = ChatHistory(tmp_path / "chat_history.json")
    h.load()
    return h


@pytest.fixture
def character():
    return CharacterStateMachine()


@pytest.fixture
def surface():
    return FakeSurface()
