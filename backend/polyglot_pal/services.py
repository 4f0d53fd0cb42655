"""Process-wide service singletons, built lazily from settings.

Routers reach these through FastAPI dependencies so tests can swap them with
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from .db import ensure_schema, make_engine, make_session_factory
from .gemini_client import GeminiClient
from .orchestrator import TurnOrchestrator
from .retry import RetryPolicy
from .sessions import HistoryCap, InMemorySessionStore, SessionLocks, SessionStore, SqlSessionStore
from .settings import settings
from .speech_client import SpeechSynthesizer, build_synthesizer

logger = logging.getLogger(__name__)


def retry_policy() -> RetryPolicy:
	return RetryPolicy(
		attempts=settings.retry_attempts,
		base_delay=settings.retry_base_delay,
		factor=settings.retry_factor,
		deadline=settings.retry_deadline_seconds,
	)


def history_cap() -> HistoryCap:
	return HistoryCap(
		hard_cap=settings.history_hard_cap,
		soft_cap=settings.history_soft_cap,
		prune_fraction=settings.history_prune_fraction,
	)


@lru_cache(maxsize=1)
def get_store() -> SessionStore:
	backend = settings.session_backend.lower()
	if backend == "sql":
		engine = make_engine()
		ensure_schema(engine)
		logger.info("Using SQL session store (%s)", engine.url.render_as_string(hide_password=True))
		return SqlSessionStore(make_session_factory(engine), history_cap())
	if backend != "memory":
		raise ValueError(f"Unknown SESSION_BACKEND: {backend}")
	return InMemorySessionStore(history_cap())


@lru_cache(maxsize=1)
def get_locks() -> SessionLocks:
	return SessionLocks()


@lru_cache(maxsize=1)
def get_generator() -> GeminiClient:
	return GeminiClient()


@lru_cache(maxsize=1)
def get_orchestrator() -> TurnOrchestrator:
	return TurnOrchestrator(get_generator(), get_store(), retry_policy=retry_policy(), locks=get_locks())


@lru_cache(maxsize=1)
def get_synthesizer() -> SpeechSynthesizer:
	return build_synthesizer()


async def shutdown() -> None:
	if get_generator.cache_info().currsize:
		await get_generator().aclose()
	if get_synthesizer.cache_info().currsize:
		await get_synthesizer().aclose()
