import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from core.config import ConfigManager
from core.state import CharacterStateMachine, SharedState

# Base directory for the stelle source root
BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = Path(os.getenv("STELLE_DATA_DIR", BASE_DIR / "data"))


class Application:
    """Wires the collaborators together and serves the local API."""

    def __init__(self, data_dir: Path = DATA_DIR):
        self.config_manager = ConfigManager(data_dir)
        self.state = SharedState()
        self.character = CharacterStateMachine()

        # Components (created in build)
        self.history = None
        self.orchestrator = None
        self._player = None
        self._server = None

    def build(self):
        """Create history, network clients, player and the dialog orchestrator."""
        from audio.audio_player import create_player
        from audio.tts import create_tts
        from dialog.history import ChatHistory
        from dialog.orchestrator import DialogOrchestrator
        from llm.base import create_llm

        config = self.config_manager.config

        self.history = ChatHistory(self.config_manager.history_path)
        self.history.load()

        self._player = create_player(config.audio.output, config.audio.player_command)
        self.orchestrator = DialogOrchestrator(
            config_manager=self.config_manager,
            history=self.history,
            llm=create_llm(config),
            tts=create_tts(config),
            character=self.character,
            player=self._player,
            surface=self.state,
        )
        self.orchestrator.restore_last_reply()
        logger.info(
            "Components ready. Speech: {}, history: {} messages.",
            "on" if config.tts.enabled else "off", len(self.history),
        )
        return self.orchestrator

    async def start(self):
        """Boot sequence: load config, build components, serve the API."""
        logger.info("=== Stelle companion starting ===")
        self.build()

        from api.server import create_app
        import uvicorn

        app = create_app(self.config_manager, self.state, self.orchestrator)
        server_config = self.config_manager.config.server
        self._server = uvicorn.Server(
            uvicorn.Config(app, host=server_config.host, port=server_config.port, log_level="warning")
        )
        logger.info("API server listening on {}:{}", server_config.host, server_config.port)
        await self._server.serve()

    async def shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down...")
        if self._server is not None:
            self._server.should_exit = True
        if self.orchestrator is not None:
            for client in (self.orchestrator.llm, self.orchestrator.tts):
                if client is not None:
                    await client.close()
        if self._player is not None:
            self._player.close()
        logger.info("Shutdown complete.")


def setup_logging(level: str = "INFO", data_dir: Optional[Path] = DATA_DIR) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level, format="{time:HH:mm:ss} | {level:<7} | {message}")
    if data_dir is not None:
        logger.add(data_dir / "stelle.log", rotation="10 MB", retention="7 days", level="DEBUG")


def main():
    """Entry point."""
    app = Application()
    setup_logging(app.config_manager.config.log_level, app.config_manager.data_dir)

    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(app.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(app.shutdown())
        loop.close()


if __name__ == "__main__":
    main()
