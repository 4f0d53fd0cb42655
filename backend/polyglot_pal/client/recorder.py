from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, List, Optional

from ..audio import Recording

logger = logging.getLogger(__name__)

MIN_RECORDING_MS = 1000

PREFERRED_MIME_TYPES = ("audio/webm", "audio/mp4", "audio/aac")


def pick_mime_type(supported: Iterable[str]) -> str:
    supported = set(supported)
    for mime in PREFERRED_MIME_TYPES:
        if mime in supported:
            return mime
    return PREFERRED_MIME_TYPES[0]


class AudioRecorder:
    """Collects encoded microphone chunks between ``start`` and ``stop``.

    Recordings shorter than ``min_duration_ms`` are treated as accidental taps
    and discarded, so they never get uploaded.
    """

    def __init__(self, *, min_duration_ms: int = MIN_RECORDING_MS, clock: Callable[[], float] = time.monotonic) -> None:
        self.min_duration_ms = min_duration_ms
        self._clock = clock
        self._chunks: List[bytes] = []
        self._started_at: Optional[float] = None
        self._mime_type = PREFERRED_MIME_TYPES[0]

    @property
    def recording(self) -> bool:
        return self._started_at is not None

    def start(self, mime_type: Optional[str] = None) -> None:
        if self.recording:
            raise RuntimeError("already recording")
        self._chunks = []
        self._mime_type = mime_type or PREFERRED_MIME_TYPES[0]
        self._started_at = self._clock()

    def feed(self, chunk: bytes) -> None:
        if not self.recording:
            raise RuntimeError("not recording")
        if chunk:
            self._chunks.append(chunk)

    def stop(self) -> Optional[Recording]:
        if self._started_at is None:
            return None
        duration_ms = int(round((self._clock() - self._started_at) * 1000))
        chunks, self._chunks = self._chunks, []
        self._started_at = None
        if duration_ms < self.min_duration_ms:
            logger.debug("Discarding %dms recording (minimum %dms)", duration_ms, self.min_duration_ms)
            return None
        data = b"".join(chunks)
        if not data:
            return None
        return Recording(data=data, mime_type=self._mime_type, duration_ms=duration_ms)

    def cancel(self) -> None:
        self._chunks = []
        self._started_at = None
