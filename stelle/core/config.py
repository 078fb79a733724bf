import json
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

DEFAULT_PERSONA = (
    "你是一个名为 Stelle 的虚拟角色，性格温柔、理性，擅长陪用户聊天与提供轻量的建议。"
)
DEFAULT_FALLBACK_REPLY = "抱歉，我这边好像遇到了一点问题，请稍后再试。"


class Language(str, Enum):
    CHINESE = "chinese"
    ENGLISH = "english"
    AUTO = "auto"  # Let the model follow the user's language


class TTSBackend(str, Enum):
    CLOUD = "cloud"  # Remote HTTP synthesis service
    LOCAL = "local"  # Self-hosted service, not implemented yet


class PersonaConfig(BaseModel):
    prompt: str = DEFAULT_PERSONA
    max_history_messages: int = Field(default=20, ge=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    language: Language = Language.CHINESE
    fallback_reply: str = DEFAULT_FALLBACK_REPLY


class LLMConfig(BaseModel):
    base_url: str = ""  # Full chat/completions URL of an OpenAI-compatible API
    model: str = ""
    api_key: str = ""
    timeout: float = Field(default=60.0, gt=0)


class TTSConfig(BaseModel):
    enabled: bool = True
    backend: TTSBackend = TTSBackend.CLOUD
    service_url: str = "https://api.siliconflow.cn/v1/audio/speech"
    api_key: str = ""
    model: str = "fnlp/MOSS-TTSD-v0.5"
    voice: str = "fnlp/MOSS-TTSD-v0.5:anna"
    response_format: str = "mp3"
    sample_rate: int = 44100
    speed: float = 1.0
    gain: float = 0.0
    max_tokens: int = 4096
    speaker_tag: str = "[S1]"  # MOSS-TTSD expects a speaker marker per line
    timeout: float = Field(default=60.0, gt=0)


class HistoryConfig(BaseModel):
    file_name: str = "chat_history.json"


class AudioConfig(BaseModel):
    output: str = "speaker"  # "speaker" or "silent"
    player_command: list[str] = Field(
        default_factory=lambda: ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet"]
    )


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8080


class AppConfig(BaseModel):
    log_level: str = "INFO"
    persona: PersonaConfig = Field(default_factory=PersonaConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    tts: TTSConfig = Field(default_factory=TTSConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


# Credentials may come from the environment instead of config.json.
# They fill empty fields only and are never written back to disk.
ENV_OVERRIDES = {
    "STELLE_LLM_API_KEY": ("llm", "api_key"),
    "STELLE_TTS_API_KEY": ("tts", "api_key"),
}


class ConfigManager:
    """Manages application configuration persisted as JSON."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.config_path = data_dir / "config.json"
        self._config: Optional[AppConfig] = None
        self._env_filled: set[tuple[str, str]] = set()

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = self._apply_env(self._load())
        return self._config

    @property
    def history_path(self) -> Path:
        return self.data_dir / self.config.history.file_name

    def _load(self) -> AppConfig:
        """Load config from disk. Returns defaults if no config exists."""
        if self.config_path.exists():
            try:
                data = json.loads(self.config_path.read_text(encoding="utf-8"))
                logger.info("Configuration loaded from {}", self.config_path)
                return AppConfig(**data)
            except Exception as e:
                logger.error("Failed to load config: {}. Using defaults.", e)
        logger.info("No existing config found. Using defaults.")
        return AppConfig()

    def _apply_env(self, config: AppConfig) -> AppConfig:
        self._env_filled.clear()
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            target = getattr(config, section)
            if value and not getattr(target, key):
                setattr(target, key, value)
                self._env_filled.add((section, key))
                logger.debug("{}.{} taken from ${}", section, key, env_name)
        return config

    def save(self) -> None:
        """Persist current config to disk."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        data = self.config.model_dump(mode="json")
        for section, key in self._env_filled:
            data[section][key] = ""
        self.config_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.debug("Configuration saved to {}", self.config_path)

    def update_nested(self, section: str, **kwargs) -> AppConfig:
        """Apply a partial update to one section, validate it and save.

        Raises:
            KeyError: unknown section.
            pydantic.ValidationError: the new values are invalid; nothing changes.
        """
        current = self.config.model_dump()
        if not isinstance(current.get(section), dict):
            raise KeyError(f"Unknown config section: {section}")
        current[section].update(kwargs)
        updated = AppConfig(**current)

        # Explicitly set credentials are persisted from now on
        self._env_filled.difference_update((section, key) for key in kwargs)
        self._config = updated
        self.save()
        return updated

    @property
    def speech_enabled(self) -> bool:
        return self.config.tts.enabled
