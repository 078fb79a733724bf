from dataclasses import dataclass
from typing import Iterable, Sequence

from core.config import Language

LANGUAGE_RULES = {
    Language.ENGLISH: "You must always reply in natural, fluent English.",
    Language.CHINESE: "你必须始终使用简体中文回答用户。",
    Language.AUTO: "Detect the user's language from the latest message and reply in that language.",
}

JSON_OUTPUT_RULE = """You MUST output ONLY a strict JSON object, without any explanation or code fences.
The JSON schema is:
{
  "reply_text": "<your reply to the user>",
  "emotion_id": <integer from 0 to 4>
}

emotion_id mapping:
0 = neutral
1 = happy / excited
2 = sad / disappointed
3 = angry / frustrated
4 = surprised / shocked"""

# Roles from the log that are replayed to the model as prior turns
HISTORY_ROLES = ("user", "assistant")


def build_system_prompt(persona: str, language: Language = Language.AUTO) -> str:
    """Build the system instruction: persona, language rule, JSON output rule."""
    language_rule = LANGUAGE_RULES.get(Language(language), LANGUAGE_RULES[Language.AUTO])

    return f"""{persona.strip()}

Language rule:
{language_rule}

Output rule (VERY IMPORTANT):
{JSON_OUTPUT_RULE}
"""


@dataclass(frozen=True)
class Prompt:
    """Everything sent to the language model for one turn."""

    system: str
    turns: tuple[tuple[str, str], ...]

    def as_messages(self) -> list[dict]:
        messages = [{"role": "system", "content": self.system}]
        messages.extend({"role": role, "content": content} for role, content in self.turns)
        return messages


def select_window(history: Sequence, max_history: int) -> list:
    """Return the most recent max_history entries, oldest first."""
    if max_history <= 0:
        return []
    return list(history[-max_history:])


def build_prompt(
    persona: str,
    language: Language,
    history: Iterable,
    user_text: str,
    max_history: int = 20,
) -> Prompt:
    """Build the prompt for one turn.

    Args:
        persona: Character description.
        language: Reply language policy.
        history: Prior ChatMessage objects, oldest first, NOT including the
                 current user message.
        user_text: The current user message, always placed last.
        max_history: Upper bound on how many prior messages are replayed.

    Returns:
        An immutable Prompt: system, bounded history, current turn.
    """
    prior = [m for m in history if m.role in HISTORY_ROLES]
    window = select_window(prior, max_history)

    turns = tuple((m.role, m.content) for m in window) + (("user", user_text),)
    return Prompt(system=build_system_prompt(persona, language), turns=turns)
