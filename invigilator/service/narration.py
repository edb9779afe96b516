from __future__ import annotations
"""
Narration Channel

Speaks each new interviewer line once, through a single playback slot.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Protocol

from invigilator.cfg import NarrationConfig
from invigilator.utils.logger import get_logger

logger = get_logger(__name__)

Synthesizer = Callable[[str, str], Awaitable[bytes]]


class Playback(Protocol):
    """One playing clip."""

    def stop(self) -> None:
        ...

    def release(self) -> None:
        """Free the decoded audio. Safe to call repeatedly."""
        ...

    async def wait(self) -> None:
        """Return when the clip finishes or is stopped."""
        ...


class AudioPlayer(Protocol):
    async def play(self, audio: bytes) -> Playback:
        ...


def message_key(session_id: str, question_index: int) -> str:
    return f"{session_id}-{question_index}"


class NarrationChannel:
    """
    Single-slot text-to-speech playback.

    Messages are keyed by session and question ordinal, never by text.
    A short settle delay coalesces back-to-back messages so only the
    latest is spoken, and ``replace()`` always stops and releases the
    current clip before the next one starts.

    Example:
        >>> channel = NarrationChannel(client.synthesize_speech, player)
        >>> channel.announce("sess-1", 2, "Describe a project you led.")
        >>> channel.stop()
    """

    def __init__(
        self,
        synthesize: Synthesizer,
        player: AudioPlayer,
        cfg: Optional[NarrationConfig] = None,
    ):
        """
        Initialize narration channel.

        Args:
            synthesize: ``(text, voice) -> audio bytes``
            player: Audio output
            cfg: Narration configuration
        """
        self.synthesize = synthesize
        self.player = player
        self.cfg = cfg or NarrationConfig()

        self.last_played_key: Optional[str] = None
        self.current: Optional[Playback] = None
        self.stopped = False

        self._generation = 0
        self._pending: Optional[asyncio.Task] = None
        self._watcher: Optional[asyncio.Task] = None
        self._playing = 0
        self.max_concurrent = 0

    @property
    def is_playing(self) -> bool:
        return self.current is not None

    def mark_played(self, key: Optional[str]) -> None:
        """Treat a message as already spoken (restored sessions)."""
        self.last_played_key = key

    def announce(self, session_id: str, question_index: int, text: str) -> bool:
        """
        Queue a line for speech after the settle delay.

        Returns:
            False if the line was already spoken, is empty, or the channel is stopped
        """
        if self.stopped or not text:
            return False

        key = message_key(session_id, question_index)
        if key == self.last_played_key:
            return False

        self._generation += 1
        self._cancel_pending()
        self._pending = asyncio.create_task(self._settle_then_play(self._generation, key, text))
        return True

    async def _settle_then_play(self, generation: int, key: str, text: str) -> None:
        await asyncio.sleep(self.cfg.settle_ms / 1000.0)
        if self._superseded(generation) or key == self.last_played_key:
            return

        self.last_played_key = key
        try:
            audio = await self.synthesize(text, self.cfg.voice)
        except Exception as e:
            logger.error(f"❌ TTS failed for {key}: {e}")
            return

        if self._superseded(generation):
            return
        await self.replace(audio)

    def _superseded(self, generation: int) -> bool:
        return self.stopped or generation != self._generation

    async def replace(self, audio: bytes) -> None:
        """Stop and release the current clip, then play ``audio``."""
        if self.stopped:
            return
        self._stop_current()

        try:
            playback = await self.player.play(audio)
        except Exception as e:
            logger.error(f"❌ Audio playback failed: {e}")
            return

        if self.stopped:
            # Torn down while the player was starting
            playback.stop()
            playback.release()
            return

        self.current = playback
        self._playing += 1
        self.max_concurrent = max(self.max_concurrent, self._playing)
        self._watcher = asyncio.create_task(self._release_when_done(playback))

    async def _release_when_done(self, playback: Playback) -> None:
        try:
            await playback.wait()
        finally:
            if self.current is playback:
                self.current = None
                self._playing -= 1
                playback.release()

    def _stop_current(self) -> None:
        playback = self.current
        if playback is None:
            return
        self.current = None
        self._playing -= 1
        if self._watcher is not None and not self._watcher.done():
            self._watcher.cancel()
        self._watcher = None
        try:
            playback.stop()
        finally:
            playback.release()

    def _cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    def stop(self) -> None:
        """Stop everything and refuse further lines. Reentrant."""
        self.stopped = True
        self._cancel_pending()
        try:
            self._stop_current()
        except Exception as e:
            logger.error(f"❌ Failed to stop narration: {e}")
