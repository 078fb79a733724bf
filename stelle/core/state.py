from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Callable

from loguru import logger


class CharacterState(str, Enum):
    IDLE = "idle"          # Looking at the user, neutral face
    THINKING = "thinking"  # Waiting for the language model
    TOUCHING = "touching"  # Reacting to a touch (driven outside the dialog)
    TALKING = "talking"    # Reply audio is playing


class Emotion(IntEnum):
    NEUTRAL = 0
    HAPPY = 1
    SAD = 2
    ANGRY = 3
    SURPRISED = 4

    @classmethod
    def from_code(cls, value) -> "Emotion":
        """Map a raw emotion code to an Emotion.

        Only the integers 0-4 are codes; floats, numeric strings, booleans
        and out-of-range values are NEUTRAL.
        """
        if isinstance(value, bool) or not isinstance(value, int):
            return cls.NEUTRAL
        try:
            return cls(value)
        except ValueError:
            return cls.NEUTRAL


StateListener = Callable[[CharacterState, Emotion], None]


class CharacterStateMachine:
    """Presentation state of the character.

    Every transition is commanded from outside; there are no timers and no
    rejected commands. Re-commanding the current state (with the same
    emotion) changes nothing and notifies nobody. Renderers subscribe with
    add_listener and read state/emotion whenever they like.
    """

    def __init__(self):
        self.state = CharacterState.IDLE
        self.emotion = Emotion.NEUTRAL
        self._listeners: list[StateListener] = []

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def on_user_turn_started(self) -> None:
        self._set(CharacterState.THINKING, Emotion.NEUTRAL)

    def on_audio_ready(self, emotion: Emotion) -> None:
        self._set(CharacterState.TALKING, Emotion.from_code(emotion))

    def on_turn_finished(self) -> None:
        self._set(CharacterState.IDLE, Emotion.NEUTRAL)

    def on_touched(self) -> None:
        self._set(CharacterState.TOUCHING, self.emotion)

    def _set(self, state: CharacterState, emotion: Emotion) -> None:
        if state == self.state and emotion == self.emotion:
            return

        previous = self.state
        self.state = state
        self.emotion = emotion
        logger.debug("[CHARACTER] {} -> {} (emotion={})", previous.value, state.value, emotion.name)

        for listener in list(self._listeners):
            try:
                listener(state, emotion)
            except Exception as e:
                logger.error("[CHARACTER] Listener failed: {}", e)

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "emotion": self.emotion.name.lower(),
            "emotion_id": int(self.emotion),
        }


@dataclass
class SharedState:
    """State shared between the dialog loop and the API.

    Doubles as the text surface: the orchestrator pushes reply text and
    the input-enabled flag here, route handlers read them.
    """

    current_reply: str = ""
    input_enabled: bool = True

    def show_reply(self, text: str) -> None:
        self.current_reply = text

    def set_input_enabled(self, enabled: bool) -> None:
        self.input_enabled = enabled
