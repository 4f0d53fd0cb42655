"""
Client Turn State Machine
=========================

Drives the lifecycle of one exchange on the client:

    IDLE -> SENDING -> AWAITING_RESPONSE -> RENDERED | FAILED

``RENDERED`` and ``FAILED`` fall back to ``IDLE`` on the next user action. The
user's own message is shown optimistically before the network call, and it is
kept (marked as failed) when the exchange fails so the learner can resubmit.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..audio import AudioClip, Recording, encode_for_upload
from ..languages import LanguageConfig, Scenario, resolve_language
from ..turns import Correction, Role, StructuredTurn, TutorResponse
from .api import ClientTimeout, NetworkError, ServerError, TutorApiClient

logger = logging.getLogger(__name__)


class TurnState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    RENDERED = "rendered"
    FAILED = "failed"


class ExchangeInFlight(RuntimeError):
    pass


@dataclass
class ChatMessage:
    id: str
    sender: Role
    text: str
    timestamp: float
    has_audio: bool = False
    correction: Optional[Correction] = None
    tutor_response: Optional[TutorResponse] = None
    failed: bool = False
    # Cached synthesized speech for tutor messages; one clip per message
    audio_clip: Optional[AudioClip] = None


def _message_id() -> str:
    return uuid.uuid4().hex


class ChatController:
    def __init__(self, api: TutorApiClient, language: str, *, session_id: Optional[str] = None) -> None:
        self.api = api
        self.config: LanguageConfig = resolve_language(language)
        self.session_id = session_id or uuid.uuid4().hex
        self.state = TurnState.IDLE
        self.messages: List[ChatMessage] = []
        self.error_message: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.state in (TurnState.SENDING, TurnState.AWAITING_RESPONSE)

    @property
    def greeting(self) -> str:
        """Welcome line shown before a topic is picked."""
        return self.config.greeting

    def _begin(self) -> None:
        if self.busy:
            raise ExchangeInFlight("an exchange is already in flight")
        # Rendered / Failed return to Idle on the next action
        self.state = TurnState.IDLE
        self.error_message = None
        self.state = TurnState.SENDING

    async def start_scenario(self, scenario: Scenario) -> Optional[ChatMessage]:
        """Open a fresh session on ``scenario``; the tutor speaks first."""
        self._begin()
        self.messages = []
        self.state = TurnState.AWAITING_RESPONSE
        try:
            turn = await self.api.chat(self.session_id, self.config.id, scenario=scenario.name)
        except Exception as err:
            self._fail(err)
            return None
        return self._render(turn)

    async def send_message(self, text: Optional[str] = None, recording: Optional[Recording] = None) -> Optional[ChatMessage]:
        text = (text or "").strip()
        if not text and recording is None:
            raise ValueError("nothing to send")
        # Encode before leaving Idle so a bad recording cannot strand the exchange
        upload = encode_for_upload(recording) if recording is not None else None
        self._begin()
        user_msg = ChatMessage(
            id=_message_id(),
            sender=Role.USER,
            text=text,
            timestamp=time.time(),
            has_audio=recording is not None,
        )
        self.messages.append(user_msg)
        self.state = TurnState.AWAITING_RESPONSE
        try:
            turn = await self.api.chat(self.session_id, self.config.id, message=text or None, audio=upload)
        except Exception as err:
            user_msg.failed = True
            self._fail(err)
            return None
        return self._render(turn)

    def reset(self) -> None:
        if self.busy:
            raise ExchangeInFlight("an exchange is already in flight")
        self.session_id = uuid.uuid4().hex
        self.messages = []
        self.error_message = None
        self.state = TurnState.IDLE

    def _render(self, turn: StructuredTurn) -> ChatMessage:
        tutor_msg = ChatMessage(
            id=_message_id(),
            sender=Role.TUTOR,
            text="",
            timestamp=time.time(),
            correction=turn.correction,
            tutor_response=turn.response,
        )
        self.messages.append(tutor_msg)
        self.state = TurnState.RENDERED
        return tutor_msg

    def _fail(self, err: Exception) -> None:
        self.state = TurnState.FAILED
        self.error_message = self.describe_error(err)
        logger.warning("Exchange failed: %s", err)

    def describe_error(self, err: Exception) -> str:
        if isinstance(err, ClientTimeout):
            return str(err)
        if isinstance(err, ServerError):
            return err.error
        if isinstance(err, NetworkError):
            return f"Couldn't connect to {self.config.tutor_name}. Please check your connection."
        return f"{self.config.tutor_name} is having trouble responding right now."
