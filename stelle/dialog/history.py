import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from audio.tts import AudioHandle
from core.errors import PersistenceError

Role = Literal["user", "assistant", "system"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    """One entry of the conversation log. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: str = Field(default_factory=lambda: _now().isoformat())
    emotion: str = ""


class ChatSession(BaseModel):
    """The persisted document: {messages: [...], sessionId}."""

    model_config = ConfigDict(populate_by_name=True)

    messages: list[ChatMessage] = Field(default_factory=list)
    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="sessionId")


class ChatHistory:
    """Append-only conversation log backed by one JSON file.

    The whole session is rewritten on every append. A failed write is
    logged and the conversation carries on in memory. Audio clips are
    attached to messages by position in a side table that is never saved.
    """

    def __init__(self, path: Path):
        self.path = path
        self._session = ChatSession()
        self._audio: dict[int, AudioHandle] = {}

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._session.messages)

    @property
    def session_id(self) -> str:
        return self._session.session_id

    def __len__(self) -> int:
        return len(self._session.messages)

    # --- Appending ---

    def add_user_message(self, content: str, emotion: str = "") -> int:
        return self._append("user", content, emotion)

    def add_assistant_message(self, content: str, emotion: str = "") -> int:
        return self._append("assistant", content, emotion)

    def _append(self, role: Role, content: str, emotion: str) -> int:
        msg = ChatMessage(role=role, content=content, timestamp=self._next_timestamp(), emotion=emotion)
        self._session.messages.append(msg)
        logger.debug("[HISTORY] Added {} message, total = {}", role, len(self))
        self._save_safe()
        return len(self) - 1

    def _next_timestamp(self) -> str:
        """Current time, but never earlier than the previous message."""
        now = _now()
        if self._session.messages:
            try:
                last = datetime.fromisoformat(self._session.messages[-1].timestamp)
            except ValueError:
                last = None
            if last is not None and last.tzinfo is not None and last > now:
                now = last
        return now.isoformat()

    # --- Queries ---

    def recent(self, n: int) -> list[ChatMessage]:
        """The n most recent messages, oldest first."""
        if n <= 0:
            return []
        return list(self._session.messages[-n:])

    def last_assistant_message(self) -> Optional[ChatMessage]:
        for msg in reversed(self._session.messages):
            if msg.role == "assistant":
                return msg
        return None

    # --- Audio attachments ---

    def attach_audio(self, index: int, handle: AudioHandle) -> None:
        if not 0 <= index < len(self):
            logger.warning("[HISTORY] No message at index {}, audio not attached.", index)
            return
        self._audio[index] = handle

    def audio_for(self, index: int) -> Optional[AudioHandle]:
        return self._audio.get(index)

    # --- Lifecycle ---

    def clear(self, delete_file: bool = True) -> None:
        """Start a new empty session, optionally removing the file."""
        self._session = ChatSession()
        self._audio.clear()
        logger.info("[HISTORY] Session cleared.")

        if delete_file:
            if self.path.exists():
                try:
                    self.path.unlink()
                    logger.info("[HISTORY] History file deleted: {}", self.path)
                except OSError as e:
                    logger.error("[HISTORY] Could not delete {}: {}", self.path, e)
            else:
                logger.debug("[HISTORY] No history file to delete at {}", self.path)

    def load(self) -> None:
        """Restore the session from disk. Falls back to a new session."""
        self._audio.clear()
        if not self.path.exists():
            self._session = ChatSession()
            logger.info("[HISTORY] No history file found, new session. Path: {}", self.path)
            return

        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            self._session = ChatSession()
            logger.error("[HISTORY] Failed to read history: {}", e)
            return

        if not raw.strip():
            self._session = ChatSession()
            logger.warning("[HISTORY] History file is empty, new session.")
            return

        try:
            self._session = ChatSession.model_validate_json(raw)
            logger.info("[HISTORY] Loaded {} messages from {}", len(self), self.path)
        except ValidationError as e:
            self._session = ChatSession()
            logger.error("[HISTORY] Failed to parse history JSON, new session: {}", e)

    def save(self) -> None:
        """Write the whole session to disk.

        Raises:
            PersistenceError: the file could not be written.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(
                self._session.model_dump_json(by_alias=True, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            raise PersistenceError(f"Could not write {self.path}: {e}") from e
        logger.debug("[HISTORY] Saved {} messages to {}", len(self), self.path)

    def _save_safe(self) -> None:
        try:
            self.save()
        except PersistenceError as e:
            logger.error("[HISTORY] {}. Continuing in memory.", e)
