"""
Chat Router
===========

JSON wire contract between the client and the Turn Orchestrator.

API Endpoints:
- POST /api/chat: send a message and/or audio; a ``scenario`` starts a new session
- POST /api/chat/start: open a scenario, returns the session id with the opening turn
- POST /api/chat/message: continue an existing session (404 if unknown)
- POST /api/chat/reset: drop a session
- POST /api/history: read back a session's turns

Errors are returned as ``{"error": str}`` by the app-level handlers.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header
from pydantic import BaseModel, ConfigDict, Field

from ..audio import decode_upload
from ..errors import InvalidInput, SessionNotFound
from ..orchestrator import TurnOrchestrator, TurnRequest
from ..services import get_orchestrator
from ..settings import settings
from ..turns import AudioAttachment, Turn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


# ============================================================================
# REQUEST MODELS
# ============================================================================

class _AudioFields(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	message: Optional[str] = None
	audio_data: Optional[str] = Field(default=None, alias="audioData")
	audio_mime_type: Optional[str] = Field(default=None, alias="audioMimeType")


class ChatRequest(_AudioFields):
	session_id: str = Field(alias="sessionId", min_length=1, max_length=128)
	language: str
	scenario: Optional[str] = None


class StartRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	session_id: Optional[str] = Field(default=None, alias="sessionId", max_length=128)
	language: str
	scenario: str


class MessageRequest(_AudioFields):
	session_id: str = Field(alias="sessionId", min_length=1, max_length=128)


class SessionRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	session_id: str = Field(alias="sessionId", min_length=1, max_length=128)


# ============================================================================
# HELPERS
# ============================================================================

def is_privileged(key: Optional[str]) -> bool:
	return bool(key) and key in settings.privileged_key_set()


def _attachment(req: _AudioFields) -> Optional[AudioAttachment]:
	if not req.audio_data:
		return None
	try:
		decode_upload(req.audio_data, max_bytes=settings.max_audio_bytes)
	except ValueError as err:
		raise InvalidInput(str(err))
	return AudioAttachment(mime_type=req.audio_mime_type or "audio/webm", data=req.audio_data)


async def _run(orchestrator: TurnOrchestrator, turn_req: TurnRequest):
	# Shielded so a client that gives up waiting does not cancel a turn that
	# would otherwise complete and be persisted
	task = asyncio.ensure_future(orchestrator.run_turn(turn_req))
	try:
		return await asyncio.shield(task)
	except asyncio.CancelledError:
		task.add_done_callback(_log_detached_turn)
		raise


def _log_detached_turn(task: asyncio.Future) -> None:
	# Nobody awaits the turn any more; retrieve its outcome here
	if task.cancelled():
		return
	err = task.exception()
	if err is not None:
		logger.warning("Turn failed after the client disconnected: %s", err)
	else:
		logger.info("Turn completed after the client disconnected")


def _public_turn(turn: Turn) -> Dict[str, Any]:
	data = turn.to_dict()
	if turn.audio is not None:
		data["audio"] = {"mimeType": turn.audio.mime_type}
	return data


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/chat")
async def chat(
	req: ChatRequest,
	orchestrator: TurnOrchestrator = Depends(get_orchestrator),
	x_tutor_key: Optional[str] = Header(default=None),
):
	turn = await _run(
		orchestrator,
		TurnRequest(
			session_id=req.session_id,
			language=req.language,
			scenario=req.scenario,
			text=req.message,
			audio=_attachment(req),
			privileged=is_privileged(x_tutor_key),
		),
	)
	return turn.to_wire()


@router.post("/chat/start")
async def start(
	req: StartRequest,
	orchestrator: TurnOrchestrator = Depends(get_orchestrator),
	x_tutor_key: Optional[str] = Header(default=None),
):
	session_id = req.session_id or uuid.uuid4().hex
	turn = await _run(
		orchestrator,
		TurnRequest(
			session_id=session_id,
			language=req.language,
			scenario=req.scenario,
			privileged=is_privileged(x_tutor_key),
		),
	)
	return {"sessionId": session_id, **turn.to_wire()}


@router.post("/chat/message")
async def message(
	req: MessageRequest,
	orchestrator: TurnOrchestrator = Depends(get_orchestrator),
	x_tutor_key: Optional[str] = Header(default=None),
):
	session = orchestrator.store.get(req.session_id)
	if session is None:
		raise SessionNotFound(req.session_id)
	turn = await _run(
		orchestrator,
		TurnRequest(
			session_id=req.session_id,
			language=session.language,
			text=req.message,
			audio=_attachment(req),
			privileged=is_privileged(x_tutor_key),
			continuation_only=True,
		),
	)
	return turn.to_wire()


@router.post("/chat/reset")
async def reset(req: SessionRequest, orchestrator: TurnOrchestrator = Depends(get_orchestrator)):
	await orchestrator.reset(req.session_id)
	return {"ok": True}


@router.post("/history")
async def history(req: SessionRequest, orchestrator: TurnOrchestrator = Depends(get_orchestrator)):
	session = orchestrator.store.get(req.session_id)
	if session is None:
		raise SessionNotFound(req.session_id)
	return {
		"sessionId": session.session_id,
		"language": session.language,
		"scenario": session.scenario,
		"history": [_public_turn(t) for t in session.history],
	}
