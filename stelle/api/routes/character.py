from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/")
async def get_character(request: Request):
    """Current presentation state, polled by the renderer."""
    return request.app.state.orchestrator.character.snapshot()


@router.post("/touch")
async def touch(request: Request):
    """The user touched the character."""
    character = request.app.state.orchestrator.character
    character.on_touched()
    return character.snapshot()


@router.post("/release")
async def release(request: Request):
    """Touch ended. Ignored while a turn is running."""
    orchestrator = request.app.state.orchestrator
    if not orchestrator.is_busy:
        orchestrator.character.on_turn_finished()
    return orchestrator.character.snapshot()
