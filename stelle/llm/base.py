import json
from abc import ABC, abstractmethod
from dataclasses import dataclass

from loguru import logger

from core.config import AppConfig
from core.state import Emotion
from llm.prompts import Prompt


@dataclass(frozen=True)
class Reply:
    """Structured model output: what to say and how to look while saying it."""

    text: str
    emotion: Emotion = Emotion.NEUTRAL


def parse_reply(content: str) -> Reply:
    """Turn the model's message content into a Reply.

    The model is asked for {"reply_text": str, "emotion_id": int}. Models
    do not always honor that, so anything that is not a JSON object with a
    non-blank reply_text is used verbatim as plain text with a neutral
    emotion. Callers must reject blank content before getting here.
    """
    text = content.strip()
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        reply_text = payload.get("reply_text")
        if isinstance(reply_text, str) and reply_text.strip():
            return Reply(reply_text.strip(), Emotion.from_code(payload.get("emotion_id")))

    logger.warning("[LLM] Reply is not the expected JSON, using plain text with neutral emotion.")
    return Reply(text, Emotion.NEUTRAL)


class BaseLLM(ABC):
    """Abstract base class for language-model clients."""

    @abstractmethod
    async def complete(self, prompt: Prompt) -> Reply:
        """Run one completion for a turn.

        Raises:
            ConfigurationError: credential or endpoint missing.
            TransportError: network failure, timeout, non-2xx status.
            ContractViolation: no choices or blank content.
        """
        ...

    def check_configured(self) -> None:
        """Raise ConfigurationError if the client cannot make a call."""

    async def close(self) -> None:
        pass


def create_llm(config: AppConfig) -> BaseLLM:
    """Build the language-model client from config."""
    from llm.providers.chat_completions import ChatCompletionsLLM

    return ChatCompletionsLLM(
        base_url=config.llm.base_url,
        model=config.llm.model,
        api_key=config.llm.api_key,
        temperature=config.persona.temperature,
        timeout=config.llm.timeout,
    )
