"""
Session Store
=============

Maps an opaque session id to its ordered turn history and language/scenario
context. Two interchangeable stores are provided:

- ``InMemorySessionStore``: process-local, lost on restart (the default)
- ``SqlSessionStore``: SQLAlchemy tables, survives restarts

Both apply the same rules:

- a lookup miss, a non-empty ``scenario`` or a different language creates a new
  session under the same id; the previous history is discarded, never merged
- history is capped (hard cap for privileged sessions, soft cap otherwise); when
  the cap is exceeded the oldest complete turns are pruned in one step
- ``invalidate`` removes the id entirely
- reusing a session refreshes its idle clock; ``evict_idle`` drops sessions
  idle past the TTL except ids the caller reports as busy

Mutual exclusion is not the store's job; callers serialise work on one id with
``SessionLocks``, which keeps one lock per id so unrelated sessions never wait
on each other.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.orm import sessionmaker

from .errors import SessionNotFound
from .models import ChatSessionRow, ChatTurnRow
from .turns import Session, Turn

logger = logging.getLogger(__name__)


# ============================================================================
# HISTORY CAP
# ============================================================================

@dataclass(frozen=True)
class HistoryCap:
    hard_cap: int = 500
    soft_cap: int = 50
    prune_fraction: float = 0.2

    def limit_for(self, privileged: bool) -> int:
        return self.hard_cap if privileged else min(self.soft_cap, self.hard_cap)

    def overflow(self, length: int, privileged: bool) -> int:
        """Number of oldest turns to drop so that ``length`` fits the cap.

        Nothing is dropped until the cap is exceeded; then at least
        ``prune_fraction`` of the cap goes at once, so pruning stays periodic
        instead of happening on every append.
        """
        limit = self.limit_for(privileged)
        if length <= limit:
            return 0
        step = max(1, math.ceil(limit * self.prune_fraction))
        return min(length, max(step, length - limit))


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[Session]: ...

    def get_or_create(
        self,
        session_id: str,
        language: str,
        scenario: Optional[str] = None,
        *,
        privileged: bool = False,
        opening_prompt: Optional[str] = None,
    ) -> Session: ...

    def append(self, session_id: str, turn: Turn) -> None: ...

    def set_opening_prompt(self, session_id: str, prompt: Optional[str]) -> None: ...

    def invalidate(self, session_id: str) -> None: ...

    def history_for(self, session_id: str) -> List[Turn]: ...

    def evict_idle(
        self,
        max_idle_seconds: float,
        *,
        now: Optional[float] = None,
        skip: Optional[Callable[[str], bool]] = None,
    ) -> int: ...


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemorySessionStore:
    def __init__(self, cap: Optional[HistoryCap] = None) -> None:
        self.cap = cap or HistoryCap()
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_or_create(
        self,
        session_id: str,
        language: str,
        scenario: Optional[str] = None,
        *,
        privileged: bool = False,
        opening_prompt: Optional[str] = None,
    ) -> Session:
        existing = self._sessions.get(session_id)
        if existing is not None and not scenario and existing.language == language:
            if privileged and not existing.privileged:
                existing.privileged = True
            existing.touch()
            return existing
        if existing is not None:
            logger.info("Replacing session %s (scenario=%s, language=%s)", session_id[:8], scenario, language)
        session = Session(
            session_id=session_id,
            language=language,
            scenario=scenario or None,
            privileged=privileged,
            opening_prompt=opening_prompt,
        )
        self._sessions[session_id] = session
        return session

    def append(self, session_id: str, turn: Turn) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        turn.timestamp = session.next_timestamp()
        session.history.append(turn)
        drop = self.cap.overflow(len(session.history), session.privileged)
        if drop:
            del session.history[:drop]
            logger.debug("Pruned %d turns from session %s", drop, session_id[:8])
        session.touch()

    def set_opening_prompt(self, session_id: str, prompt: Optional[str]) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        session.opening_prompt = prompt

    def invalidate(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def history_for(self, session_id: str) -> List[Turn]:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return list(session.history)

    def evict_idle(
        self,
        max_idle_seconds: float,
        *,
        now: Optional[float] = None,
        skip: Optional[Callable[[str], bool]] = None,
    ) -> int:
        threshold = (now if now is not None else time.time()) - max_idle_seconds
        stale = [
            sid
            for sid, s in self._sessions.items()
            if s.updated_at < threshold and not (skip and skip(sid))
        ]
        for sid in stale:
            del self._sessions[sid]
        return len(stale)


# ============================================================================
# SQL STORE
# ============================================================================

def _to_datetime(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc).replace(tzinfo=None)


def _to_epoch(value: Optional[datetime]) -> float:
    if value is None:
        return 0.0
    return value.replace(tzinfo=timezone.utc).timestamp()


class SqlSessionStore:
    """Durable store on the ``chat_sessions``/``chat_turns`` tables."""

    def __init__(self, session_factory: sessionmaker, cap: Optional[HistoryCap] = None) -> None:
        self._session_factory = session_factory
        self.cap = cap or HistoryCap()

    def _load(self, db, row: ChatSessionRow) -> Session:
        turns = db.execute(
            select(ChatTurnRow).where(ChatTurnRow.session_id == row.session_id).order_by(ChatTurnRow.seq)
        ).scalars().all()
        return Session(
            session_id=row.session_id,
            language=row.language,
            scenario=row.scenario,
            privileged=bool(row.privileged),
            opening_prompt=row.opening_prompt,
            history=[Turn.from_dict(json.loads(t.payload)) for t in turns],
            created_at=_to_epoch(row.created_at),
            updated_at=_to_epoch(row.updated_at),
        )

    def get(self, session_id: str) -> Optional[Session]:
        with self._session_factory() as db:
            row = db.get(ChatSessionRow, session_id)
            return self._load(db, row) if row is not None else None

    def get_or_create(
        self,
        session_id: str,
        language: str,
        scenario: Optional[str] = None,
        *,
        privileged: bool = False,
        opening_prompt: Optional[str] = None,
    ) -> Session:
        with self._session_factory() as db:
            row = db.get(ChatSessionRow, session_id)
            if row is not None and not scenario and row.language == language:
                if privileged and not row.privileged:
                    row.privileged = True
                row.updated_at = _to_datetime(time.time())
                db.commit()
                return self._load(db, row)
            if row is not None:
                logger.info("Replacing session %s (scenario=%s, language=%s)", session_id[:8], scenario, language)
                db.execute(delete(ChatTurnRow).where(ChatTurnRow.session_id == session_id))
                db.delete(row)
                db.flush()
            now = time.time()
            db.add(
                ChatSessionRow(
                    session_id=session_id,
                    language=language,
                    scenario=scenario or None,
                    privileged=privileged,
                    opening_prompt=opening_prompt,
                    created_at=_to_datetime(now),
                    updated_at=_to_datetime(now),
                )
            )
            db.commit()
            return Session(
                session_id=session_id,
                language=language,
                scenario=scenario or None,
                privileged=privileged,
                opening_prompt=opening_prompt,
                created_at=now,
                updated_at=now,
            )

    def append(self, session_id: str, turn: Turn) -> None:
        with self._session_factory() as db:
            row = db.get(ChatSessionRow, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            last = db.execute(
                select(ChatTurnRow.seq, ChatTurnRow.timestamp)
                .where(ChatTurnRow.session_id == session_id)
                .order_by(ChatTurnRow.seq.desc())
                .limit(1)
            ).first()
            seq = (last.seq + 1) if last else 0
            ts = time.time()
            if last and ts <= last.timestamp:
                ts = last.timestamp + 1e-6
            turn.timestamp = ts
            db.add(
                ChatTurnRow(
                    session_id=session_id,
                    seq=seq,
                    role=turn.role.value,
                    timestamp=ts,
                    payload=json.dumps(turn.to_dict(), ensure_ascii=False),
                )
            )
            db.flush()
            count = db.execute(
                select(func.count()).select_from(ChatTurnRow).where(ChatTurnRow.session_id == session_id)
            ).scalar_one()
            drop = self.cap.overflow(count, bool(row.privileged))
            if drop:
                oldest = db.execute(
                    select(ChatTurnRow.id)
                    .where(ChatTurnRow.session_id == session_id)
                    .order_by(ChatTurnRow.seq)
                    .limit(drop)
                ).scalars().all()
                db.execute(delete(ChatTurnRow).where(ChatTurnRow.id.in_(oldest)))
            row.updated_at = _to_datetime(ts)
            db.commit()

    def set_opening_prompt(self, session_id: str, prompt: Optional[str]) -> None:
        with self._session_factory() as db:
            row = db.get(ChatSessionRow, session_id)
            if row is None:
                raise SessionNotFound(session_id)
            row.opening_prompt = prompt
            db.commit()

    def invalidate(self, session_id: str) -> None:
        with self._session_factory() as db:
            db.execute(delete(ChatTurnRow).where(ChatTurnRow.session_id == session_id))
            db.execute(delete(ChatSessionRow).where(ChatSessionRow.session_id == session_id))
            db.commit()

    def history_for(self, session_id: str) -> List[Turn]:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session.history

    def evict_idle(
        self,
        max_idle_seconds: float,
        *,
        now: Optional[float] = None,
        skip: Optional[Callable[[str], bool]] = None,
    ) -> int:
        threshold = _to_datetime((now if now is not None else time.time()) - max_idle_seconds)
        with self._session_factory() as db:
            stale = db.execute(
                select(ChatSessionRow.session_id).where(ChatSessionRow.updated_at < threshold)
            ).scalars().all()
            if skip is not None:
                stale = [sid for sid in stale if not skip(sid)]
            if stale:
                db.execute(delete(ChatTurnRow).where(ChatTurnRow.session_id.in_(stale)))
                db.execute(delete(ChatSessionRow).where(ChatSessionRow.session_id.in_(stale)))
            db.commit()
            return len(stale)


# ============================================================================
# PER-SESSION LOCKS
# ============================================================================

class SessionLocks:
    """One ``asyncio.Lock`` per session id, created on demand.

    A lock is discarded once nobody holds or waits for it, so the registry only
    grows with the number of sessions that are busy right now.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_busy(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[session_id] -= 1
            if not self._users[session_id]:
                del self._users[session_id]
                del self._locks[session_id]
