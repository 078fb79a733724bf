import asyncio
import subprocess
import tempfile
from typing import Optional

from loguru import logger

from audio.tts import AudioHandle

DEFAULT_PLAYER_COMMAND = ["ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet"]

# Extra time on top of the clip length before playback is considered hung
PLAYBACK_GRACE_SECONDS = 10.0


class AudioPlayer:
    """Plays synthesized speech through an external command-line player.

    The clip path is appended to the configured command. play() returns
    once the player exits, so awaiting it is the playback-completion
    signal the character waits on before going Idle.
    """

    def __init__(self, command: Optional[list[str]] = None):
        self.command = list(command or DEFAULT_PLAYER_COMMAND)
        self._proc: Optional[subprocess.Popen] = None

    @property
    def name(self) -> str:
        return self.command[0]

    async def play(self, handle: AudioHandle) -> None:
        if not handle.data:
            return
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._play_clip, handle)

    def _play_clip(self, handle: AudioHandle) -> None:
        limit = handle.duration + PLAYBACK_GRACE_SECONDS
        with tempfile.NamedTemporaryFile(suffix=f".{handle.format}") as clip:
            clip.write(handle.data)
            clip.flush()
            try:
                self._proc = subprocess.Popen(
                    [*self.command, clip.name],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                )
            except FileNotFoundError:
                logger.error("[AUDIO] Player '{}' not found. Install it or set audio.output to 'silent'.", self.name)
                return
            except OSError as e:
                logger.error("[AUDIO] Could not start '{}': {}", self.name, e)
                return

            try:
                _, stderr = self._proc.communicate(timeout=limit)
            except subprocess.TimeoutExpired:
                self._kill()
                logger.error("[AUDIO] '{}' still running after {:.0f}s, killed.", self.name, limit)
                return
            finally:
                returncode = self._proc.returncode if self._proc is not None else None
                self._proc = None

        if returncode is not None and returncode < 0:
            logger.debug("[AUDIO] '{}' was stopped.", self.name)
        elif returncode:
            detail = stderr.decode(errors="replace").strip() if stderr else ""
            logger.error("[AUDIO] '{}' exited with {}: {}", self.name, returncode, detail)
        else:
            logger.debug("[AUDIO] Played {:.2f}s of {} with '{}'", handle.duration, handle.format, self.name)

    def _kill(self) -> bool:
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return False
        try:
            proc.kill()
            proc.wait(timeout=1)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("[AUDIO] Could not kill '{}': {}", self.name, e)
        return True

    async def stop(self) -> None:
        """Cut the current clip short."""
        if self._kill():
            logger.info("[AUDIO] Playback stopped.")

    def close(self):
        self._kill()


class SilentPlayer:
    """Stand-in player for headless runs.

    Nothing is played locally (API clients fetch the audio themselves);
    the character still talks for as long as the clip lasts.
    """

    async def play(self, handle: AudioHandle) -> None:
        await asyncio.sleep(max(handle.duration, 0.0))

    async def stop(self) -> None:
        pass

    def close(self):
        pass


def create_player(output: str, command: Optional[list[str]] = None):
    if output == "silent":
        return SilentPlayer()
    return AudioPlayer(command)
