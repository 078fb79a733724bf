from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import ConfigManager
from core.state import SharedState
from dialog.orchestrator import DialogOrchestrator


def create_app(
    config_manager: ConfigManager,
    state: SharedState,
    orchestrator: DialogOrchestrator,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(title="Stelle Companion", version="1.0.0")

    # CORS for a local front-end
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store references for route handlers
    app.state.config_manager = config_manager
    app.state.shared_state = state
    app.state.orchestrator = orchestrator

    from api.routes.chat import router as chat_router
    from api.routes.history import router as history_router
    from api.routes.character import router as character_router
    from api.routes.settings import router as settings_router

    app.include_router(chat_router, prefix="/api/chat", tags=["chat"])
    app.include_router(history_router, prefix="/api/history", tags=["history"])
    app.include_router(character_router, prefix="/api/character", tags=["character"])
    app.include_router(settings_router, prefix="/api/settings", tags=["settings"])

    @app.get("/api/health")
    async def health():
        return {
            "status": "ok",
            "character": orchestrator.character.state.value,
            "busy": orchestrator.is_busy,
            "speech_enabled": config_manager.speech_enabled,
            "messages": len(orchestrator.history) if orchestrator.history is not None else 0,
        }

    return app
