import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from loguru import logger

from audio.tts import AudioHandle, BaseTTS
from core.config import ConfigManager
from core.errors import (
    BackendNotImplementedError,
    ConfigurationError,
    ContractViolation,
    TransportError,
    TurnInProgressError,
)
from core.state import CharacterStateMachine, Emotion
from dialog.history import ChatHistory
from llm.base import BaseLLM, Reply
from llm.prompts import build_prompt

# Emotion tag stored on the fallback message when the model call fails
ERROR_EMOTION = "error"


class ReplySurface(Protocol):
    """Where reply text goes and who owns the send button."""

    def show_reply(self, text: str) -> None: ...

    def set_input_enabled(self, enabled: bool) -> None: ...


class Player(Protocol):
    async def play(self, handle: AudioHandle) -> None: ...


class TurnStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TurnResult:
    status: TurnStatus
    reply_text: str
    emotion: Emotion = Emotion.NEUTRAL
    spoken: bool = False


class DialogOrchestrator:
    """Runs one user turn end to end.

    user message -> Thinking -> language model -> assistant message ->
    reply text shown -> speech synthesis -> Talking -> playback -> Idle.

    A model failure is recorded as a fixed fallback reply; a synthesis
    failure silently leaves a text-only reply. Either way the log grows by
    exactly one user and one assistant message and the character ends Idle.
    Only one turn runs at a time; a second submission is rejected.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        history: Optional[ChatHistory],
        llm: Optional[BaseLLM],
        tts: Optional[BaseTTS],
        character: CharacterStateMachine,
        player: Player,
        surface: ReplySurface,
    ):
        self.config_manager = config_manager
        self.history = history
        self.llm = llm
        self.tts = tts
        self.character = character
        self.player = player
        self.surface = surface
        self._busy = False

    @property
    def is_busy(self) -> bool:
        return self._busy

    async def handle_user_turn(self, user_text: str) -> TurnResult:
        """Process one user message.

        Raises (before anything is recorded):
            ValueError: the message is blank.
            TurnInProgressError: a previous turn has not reached Idle yet.
            ConfigurationError: history or language model unavailable.
        """
        if user_text is None or not user_text.strip():
            raise ValueError("User message is empty.")
        if self._busy:
            logger.warning("[DIALOG] Turn already in progress, rejecting new input.")
            raise TurnInProgressError("A turn is already in progress.")
        self._check_collaborators()

        self._busy = True
        self.surface.set_input_enabled(False)
        try:
            return await self._run_turn(user_text)
        finally:
            self._busy = False
            self.surface.set_input_enabled(True)

    def _check_collaborators(self) -> None:
        if self.history is None:
            raise ConfigurationError("Conversation history is not available.")
        if self.llm is None:
            raise ConfigurationError("Language model client is not available.")
        self.llm.check_configured()

    async def _run_turn(self, user_text: str) -> TurnResult:
        t_start = time.monotonic()
        persona = self.config_manager.config.persona
        logger.info("[DIALOG] User: {}", user_text)

        prior = self.history.recent(persona.max_history_messages)
        self.history.add_user_message(user_text)
        self.character.on_user_turn_started()

        try:
            prompt = build_prompt(
                persona=persona.prompt,
                language=persona.language,
                history=prior,
                user_text=user_text,
                max_history=persona.max_history_messages,
            )
            reply = await self.llm.complete(prompt)
        except (TransportError, ContractViolation, ConfigurationError) as e:
            logger.error("[DIALOG] Model call failed: {}", e)
            return self._fail_turn(persona.fallback_reply)
        except (Exception, asyncio.CancelledError):
            # Cancellation included: the log must not keep a lone user message
            self._fail_turn(persona.fallback_reply)
            raise

        try:
            spoken = await self._deliver(reply)
        finally:
            self.character.on_turn_finished()

        logger.info("[TIMING] Turn complete: {:.1f}s", time.monotonic() - t_start)
        return TurnResult(TurnStatus.COMPLETED, reply.text, reply.emotion, spoken)

    def _fail_turn(self, fallback: str) -> TurnResult:
        self.history.add_assistant_message(fallback, ERROR_EMOTION)
        self.surface.show_reply(fallback)
        self.character.on_turn_finished()
        return TurnResult(TurnStatus.FAILED, fallback)

    async def _deliver(self, reply: Reply) -> bool:
        """Record and show the reply, then speak it if possible.

        Returns True when audio was played.
        """
        index = self.history.add_assistant_message(reply.text, str(int(reply.emotion)))
        self.surface.show_reply(reply.text)
        logger.info("[DIALOG] Assistant ({}): {}", reply.emotion.name.lower(), reply.text)

        if not self.config_manager.speech_enabled or self.tts is None:
            logger.debug("[DIALOG] Speech disabled, text-only reply.")
            return False

        try:
            audio = await self.tts.synthesize(reply.text)
        except (TransportError, ContractViolation, ConfigurationError, BackendNotImplementedError) as e:
            logger.warning("[DIALOG] Speech synthesis failed, text-only reply: {}", e)
            return False

        self.history.attach_audio(index, audio)
        self.character.on_audio_ready(reply.emotion)
        await self.player.play(audio)
        return True

    def restore_last_reply(self) -> Optional[str]:
        """Show the newest stored assistant reply, e.g. after a restart."""
        if self.history is None:
            return None
        last = self.history.last_assistant_message()
        if last is None:
            return None
        self.surface.show_reply(last.content)
        logger.info("[DIALOG] Restored last assistant reply.")
        return last.content

    def clear_history(self) -> None:
        if self._busy:
            raise TurnInProgressError("Cannot clear history during a turn.")
        if self.history is None:
            raise ConfigurationError("Conversation history is not available.")
        self.history.clear(delete_file=True)
        self.surface.show_reply("")

    def replace_clients(self, llm: Optional[BaseLLM] = None, tts: Optional[BaseTTS] = None) -> None:
        """Swap network clients after a settings change. Refused mid-turn."""
        if self._busy:
            raise TurnInProgressError("Cannot swap clients during a turn.")
        if llm is not None:
            self.llm = llm
        if tts is not None:
            self.tts = tts
