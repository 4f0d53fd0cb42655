from __future__ import annotations
import logging
from typing import Optional

from .sessions import SessionLocks, SessionStore

logger = logging.getLogger(__name__)


def purge_idle_sessions(store: SessionStore, max_idle_seconds: float, locks: Optional[SessionLocks] = None) -> int:
	# Sessions untouched for longer than the idle TTL are dropped with their history.
	# A session with a turn in flight is left for the next sweep.
	removed = store.evict_idle(max_idle_seconds, skip=locks.is_busy if locks is not None else None)
	if removed:
		logger.info("Evicted %d idle sessions", removed)
	return removed
