"""
Audio Pipeline
==============

Encoding of recorded learner audio for upload, and decoding of synthesized
speech for playback.

Synthesized speech arrives in one of two encodings depending on which speech
backend produced it:

- ``pcm``: raw little-endian 16-bit mono samples at 24 kHz (Gemini TTS)
- ``mp3``: compressed audio (Azure TTS)

The format tag that travels with the payload is authoritative; the bytes are
never sniffed.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

import numpy as np
import soundfile as sf

logger = logging.getLogger(__name__)

PCM_SAMPLE_RATE = 24000
PCM_SAMPLE_WIDTH = 2  # bytes, signed 16-bit
PCM_SCALE = 32768.0


class AudioFormat(str, Enum):
    MP3 = "mp3"
    PCM = "pcm"


@dataclass(frozen=True)
class AudioClip:
    format: AudioFormat
    payload: bytes

    @classmethod
    def from_base64(cls, data: str, fmt: str) -> "AudioClip":
        return cls(format=AudioFormat(fmt), payload=base64.b64decode(data))

    def to_base64(self) -> str:
        return base64.b64encode(self.payload).decode("ascii")


@dataclass(frozen=True)
class PlayableBuffer:
    samples: np.ndarray  # float32, mono, in [-1, 1]
    sample_rate: int

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_seconds(self) -> float:
        return len(self) / float(self.sample_rate) if self.sample_rate else 0.0


@dataclass(frozen=True)
class Recording:
    """A finished microphone capture."""

    data: bytes
    mime_type: str
    duration_ms: int


@dataclass(frozen=True)
class UploadAudio:
    audio_data: str  # base64
    audio_mime_type: str

    def to_wire(self) -> Dict[str, str]:
        return {"audioData": self.audio_data, "audioMimeType": self.audio_mime_type}


def encode_for_upload(recording: Recording) -> UploadAudio:
    if not recording.data:
        raise ValueError("recording is empty")
    return UploadAudio(
        audio_data=base64.b64encode(recording.data).decode("ascii"),
        audio_mime_type=recording.mime_type or "audio/webm",
    )


def decode_upload(audio_b64: str, *, max_bytes: Optional[int] = None) -> bytes:
    """Validate an uploaded base64 payload; returns the raw bytes."""
    try:
        raw = base64.b64decode(audio_b64, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"audioData is not valid base64: {err}") from err
    if not raw:
        raise ValueError("audioData is empty")
    if max_bytes is not None and len(raw) > max_bytes:
        raise ValueError(f"audioData exceeds {max_bytes} bytes")
    return raw


def decode_for_playback(clip: AudioClip) -> PlayableBuffer:
    if clip.format is AudioFormat.PCM:
        return _decode_pcm(clip.payload)
    return _decode_compressed(clip.payload)


def _decode_pcm(payload: bytes) -> PlayableBuffer:
    usable = len(payload) - (len(payload) % PCM_SAMPLE_WIDTH)
    if usable != len(payload):
        logger.debug("Dropping trailing odd byte from PCM payload")
    ints = np.frombuffer(payload[:usable], dtype="<i2")
    samples = ints.astype(np.float32) / PCM_SCALE
    return PlayableBuffer(samples=samples, sample_rate=PCM_SAMPLE_RATE)


def _decode_compressed(payload: bytes) -> PlayableBuffer:
    data, sample_rate = sf.read(io.BytesIO(payload), dtype="float32")
    if data.ndim == 2:
        data = data[:, 0]  # mono
    return PlayableBuffer(samples=np.ascontiguousarray(data, dtype=np.float32), sample_rate=int(sample_rate))
