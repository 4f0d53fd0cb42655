"""
Turn Orchestrator
=================

Runs one tutor exchange end to end:

1. resolve the language persona and optional scenario
2. resolve (or create) the session in the injected store
3. build the new turn: the learner's text/audio, or a synthetic opening
   instruction when a scenario starts
4. call the generation capability with the persona instruction, the prior
   history and the new turn (retried with backoff on transient failures)
5. decode the output with the Turn Codec
6. on success append the user turn (if any) and the tutor turn

Any vendor or decode failure invalidates the session so that the next request
starts from a clean context. Work on one session id is serialised with a
per-session lock; later requests queue behind the one in flight.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from . import codec
from .errors import InvalidInput, SessionNotFound, TutorError, VendorError
from .gemini_client import user_parts
from .languages import GENERAL_CHAT, opening_prompt, resolve_language, resolve_scenario, system_instruction
from .retry import RetryPolicy, retry_async
from .sessions import SessionLocks, SessionStore
from .turns import AudioAttachment, Correction, StructuredTurn, Turn

logger = logging.getLogger(__name__)


class TurnGenerator(Protocol):
    async def generate(
        self,
        system_instruction: str,
        history: Sequence[Turn],
        parts: List[Dict[str, Any]],
        *,
        opening_prompt: Optional[str] = None,
    ) -> str: ...


@dataclass
class TurnRequest:
    session_id: str
    language: str
    scenario: Optional[str] = None
    text: Optional[str] = None
    audio: Optional[AudioAttachment] = None
    privileged: bool = False
    # Reject instead of creating when the session does not exist
    continuation_only: bool = False


class TurnOrchestrator:
    def __init__(
        self,
        generator: TurnGenerator,
        store: SessionStore,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        locks: Optional[SessionLocks] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.generator = generator
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.locks = locks or SessionLocks()
        self._sleep = sleep

    async def run_turn(self, req: TurnRequest) -> StructuredTurn:
        if not req.session_id:
            raise InvalidInput("Session ID required")
        config = resolve_language(req.language)
        scenario = resolve_scenario(req.scenario)
        text = (req.text or "").strip() or None
        user_turn = Turn.user(text, req.audio) if (text or req.audio) else None

        async with self.locks.hold(req.session_id):
            sid = req.session_id
            if req.continuation_only and self.store.get(sid) is None:
                raise SessionNotFound(sid)

            opening: Optional[str] = None
            if scenario is not None:
                # Topic switch: always a fresh session under the same id
                if user_turn is None:
                    opening = opening_prompt(config, scenario.value)
                session = self.store.get_or_create(
                    sid, config.id, scenario.name, privileged=req.privileged, opening_prompt=opening
                )
            else:
                session = self.store.get_or_create(sid, config.id, privileged=req.privileged)
                if user_turn is None:
                    if session.history:
                        raise InvalidInput()
                    opening = opening_prompt(config, GENERAL_CHAT)
                    self.store.set_opening_prompt(sid, opening)
            history = list(session.history)
            stored_opening = session.opening_prompt
            del session

            if user_turn is None:
                parts = [{"text": opening}]
            else:
                parts = user_parts(
                    user_turn.text,
                    user_turn.audio.mime_type if user_turn.audio else None,
                    user_turn.audio.data if user_turn.audio else None,
                )
            logger.info(
                "[%s] Session: %s | %s",
                config.id,
                sid[:8],
                "opening" if user_turn is None else (user_turn.text or "<audio>")[:50],
            )

            instruction = system_instruction(config)
            try:
                raw = await retry_async(
                    lambda: self.generator.generate(instruction, history, parts, opening_prompt=stored_opening),
                    self.retry_policy,
                    sleep=self._sleep,
                    label="generation",
                )
            except TutorError as err:
                logger.error("Generation failed for session %s: %s", sid[:8], err)
                self.store.invalidate(sid)
                raise
            except Exception as err:
                logger.exception("Generation failed for session %s", sid[:8])
                self.store.invalidate(sid)
                raise VendorError(str(err)) from err

            result = codec.decode(raw)
            if not result.ok:
                logger.warning("Undecodable tutor output for session %s: %s", sid[:8], result.error)
                self.store.invalidate(sid)
                raise result.error

            structured = result.turn
            if user_turn is None:
                # Nothing has been said yet, so nothing can be wrong
                structured = structured.model_copy(update={"correction": Correction(has_mistake=False)})
            else:
                self.store.append(sid, user_turn)
            self.store.append(sid, Turn.tutor(structured))
            return structured

    async def reset(self, session_id: str) -> None:
        async with self.locks.hold(session_id):
            self.store.invalidate(session_id)

    def history(self, session_id: str) -> List[Turn]:
        return self.store.history_for(session_id)
