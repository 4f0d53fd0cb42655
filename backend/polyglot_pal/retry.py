"""Bounded exponential-backoff retry for vendor calls."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from .errors import TransientVendorError, VendorHTTPError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# HTTP statuses worth another attempt (timeouts, rate limits, server side trouble)
TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    base_delay: float = 0.5
    factor: float = 2.0
    max_delay: float = 8.0
    # Total budget in seconds; no new attempt starts once it would be exceeded
    deadline: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (self.factor ** (attempt - 1)))


def is_transient(err: BaseException) -> bool:
    if isinstance(err, httpx.TransportError):
        return True
    if isinstance(err, VendorHTTPError):
        return err.status in TRANSIENT_STATUSES
    return False


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    is_transient: Callable[[BaseException], bool] = is_transient,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    label: str = "vendor call",
) -> T:
    """Run ``fn`` until it succeeds, fails permanently, or attempts or time run out.

    Non-transient errors propagate untouched on first occurrence. After the last
    transient failure a ``TransientVendorError`` is raised, chained from it.
    """
    attempts = max(1, policy.attempts)
    started = clock()
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as err:
            if not is_transient(err):
                raise
            delay = policy.delay_for(attempt)
            out_of_time = policy.deadline is not None and clock() - started + delay >= policy.deadline
            if attempt >= attempts or out_of_time:
                raise TransientVendorError(
                    f"{label} failed after {attempt} attempts: {err}", attempts=attempt
                ) from err
            logger.warning("%s failed (attempt %d/%d): %s; retrying in %.2fs", label, attempt, attempts, err, delay)
            await sleep(delay)
    raise AssertionError("unreachable")
