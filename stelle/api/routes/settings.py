from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field

from audio.tts import create_tts
from core.config import Language, TTSBackend
from core.errors import TurnInProgressError
from llm.base import create_llm

router = APIRouter()


class PersonaUpdate(BaseModel):
    prompt: Optional[str] = None
    max_history_messages: Optional[int] = Field(default=None, ge=0)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    language: Optional[Language] = None
    fallback_reply: Optional[str] = None


class SpeechUpdate(BaseModel):
    enabled: Optional[bool] = None
    backend: Optional[TTSBackend] = None
    service_url: Optional[str] = None
    api_key: Optional[str] = None
    voice: Optional[str] = None
    response_format: Optional[str] = None
    sample_rate: Optional[int] = None
    speed: Optional[float] = None
    gain: Optional[float] = None


class LLMUpdate(BaseModel):
    base_url: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    timeout: Optional[float] = Field(default=None, gt=0)


def _mask(value: str) -> str:
    if not value:
        return value
    return value[:4] + "****" + value[-4:] if len(value) > 8 else "****"


def _ensure_no_turn(request: Request) -> None:
    if request.app.state.orchestrator.is_busy:
        raise HTTPException(status_code=409, detail="A turn is in progress, try again shortly.")


async def _rebuild_clients(request: Request) -> None:
    """Recreate network clients so new settings apply from the next turn."""
    orchestrator = request.app.state.orchestrator
    config = request.app.state.config_manager.config
    old_llm, old_tts = orchestrator.llm, orchestrator.tts
    try:
        orchestrator.replace_clients(llm=create_llm(config), tts=create_tts(config))
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    for client in (old_llm, old_tts):
        if client is not None:
            await client.close()
    logger.info("Network clients rebuilt after settings change.")


@router.get("/")
async def get_settings(request: Request):
    """Get all current settings (credentials masked)."""
    data = request.app.state.config_manager.config.model_dump(mode="json")
    data["llm"]["api_key"] = _mask(data["llm"]["api_key"])
    data["tts"]["api_key"] = _mask(data["tts"]["api_key"])
    return data


@router.put("/persona")
async def update_persona(body: PersonaUpdate, request: Request):
    """Update persona text, history window, temperature or language."""
    cm = request.app.state.config_manager
    _ensure_no_turn(request)
    updates = body.model_dump(exclude_none=True)
    if updates:
        cm.update_nested("persona", **updates)
        if "temperature" in updates:
            await _rebuild_clients(request)
    return {"status": "updated", "persona": cm.config.persona.model_dump(mode="json")}


@router.put("/speech")
async def update_speech(body: SpeechUpdate, request: Request):
    """Toggle speech or change the synthesis backend and voice."""
    cm = request.app.state.config_manager
    _ensure_no_turn(request)
    updates = body.model_dump(exclude_none=True)
    if updates:
        cm.update_nested("tts", **updates)
        await _rebuild_clients(request)
    return {"status": "updated", "enabled": cm.speech_enabled}


@router.put("/llm")
async def update_llm(body: LLMUpdate, request: Request):
    """Change the language-model endpoint, model or credential."""
    cm = request.app.state.config_manager
    _ensure_no_turn(request)
    updates = body.model_dump(exclude_none=True)
    if updates:
        cm.update_nested("llm", **updates)
        await _rebuild_clients(request)
    return {"status": "updated", "model": cm.config.llm.model}
