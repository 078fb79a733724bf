from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from core.errors import TurnInProgressError

router = APIRouter()

MEDIA_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "opus": "audio/opus",
    "pcm": "application/octet-stream",
}


@router.get("/")
async def get_history(request: Request):
    """The whole conversation log, oldest first."""
    history = request.app.state.orchestrator.history
    return {
        "session_id": history.session_id,
        "messages": [
            {**msg.model_dump(), "index": i, "has_audio": history.audio_for(i) is not None}
            for i, msg in enumerate(history.messages)
        ],
    }


@router.get("/{index}/audio")
async def get_audio(index: int, request: Request):
    """Replay the speech attached to a message."""
    audio = request.app.state.orchestrator.history.audio_for(index)
    if audio is None:
        raise HTTPException(status_code=404, detail="No audio for this message.")
    return Response(
        content=audio.data,
        media_type=MEDIA_TYPES.get(audio.format, "application/octet-stream"),
    )


@router.delete("/")
async def clear_history(request: Request):
    """Delete the conversation in memory and on disk."""
    try:
        request.app.state.orchestrator.clear_history()
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "cleared"}
