from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol

from ..audio import AudioClip, PlayableBuffer, decode_for_playback
from ..turns import Role
from .api import TutorApiClient
from .state import ChatMessage

logger = logging.getLogger(__name__)


class Player(Protocol):
    def play(self, buffer: PlayableBuffer, on_end: Callable[[], None]) -> None: ...

    def stop(self) -> None: ...


class PlaybackController:
    """Plays tutor messages one at a time, synthesizing each clip at most once."""

    def __init__(self, api: TutorApiClient, player: Player, voice_name: str) -> None:
        self.api = api
        self.player = player
        self.voice_name = voice_name
        self._playing_id: Optional[str] = None
        self._loading = False

    @property
    def playing_id(self) -> Optional[str]:
        return self._playing_id

    @property
    def loading(self) -> bool:
        return self._loading

    async def clip_for(self, message: ChatMessage) -> AudioClip:
        if message.audio_clip is not None:
            return message.audio_clip
        if message.sender is not Role.TUTOR or message.tutor_response is None:
            raise ValueError("only tutor messages can be spoken")
        text = message.tutor_response.target_text
        if not text:
            raise ValueError("tutor message has no text to speak")
        clip = await self.api.speech(text, self.voice_name)
        message.audio_clip = clip
        return clip

    async def toggle(self, message: ChatMessage) -> bool:
        """Start or stop playback of ``message``; returns True when it starts playing."""
        if self._loading:
            return False
        if self._playing_id == message.id:
            self.stop()
            return False
        self.stop()
        self._loading = True
        try:
            clip = await self.clip_for(message)
            buffer = decode_for_playback(clip)
        finally:
            self._loading = False
        self._playing_id = message.id
        self.player.play(buffer, lambda: self._ended(message.id))
        return True

    def stop(self) -> None:
        if self._playing_id is not None:
            self.player.stop()
            self._playing_id = None

    def _ended(self, message_id: str) -> None:
        if self._playing_id == message_id:
            self._playing_id = None
