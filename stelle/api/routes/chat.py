from fastapi import APIRouter, HTTPException, Request
from loguru import logger
from pydantic import BaseModel

from core.errors import ConfigurationError, TurnInProgressError

router = APIRouter()


class ChatRequest(BaseModel):
    text: str


@router.post("/")
async def send_message(body: ChatRequest, request: Request):
    """Run one user turn and return the reply once the character is Idle again."""
    orchestrator = request.app.state.orchestrator
    try:
        result = await orchestrator.handle_user_turn(body.text)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConfigurationError as e:
        logger.warning("[API] Turn refused, not configured: {}", e)
        raise HTTPException(status_code=503, detail=str(e))

    return {
        "status": result.status.value,
        "reply_text": result.reply_text,
        "emotion_id": int(result.emotion),
        "spoken": result.spoken,
    }


@router.get("/reply")
async def current_reply(request: Request):
    """What the text surface currently shows."""
    state = request.app.state.shared_state
    return {"reply_text": state.current_reply, "input_enabled": state.input_enabled}
