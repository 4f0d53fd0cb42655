from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidInput


class Role(str, Enum):
    USER = "USER"
    TUTOR = "TUTOR"


# ============================================================================
# STRUCTURED TUTOR TURN (wire shape)
# ============================================================================

class Correction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    has_mistake: bool = Field(default=False, alias="hasMistake")
    corrected_text: Optional[str] = Field(default=None, alias="correctedText")
    explanation: Optional[str] = None


class TutorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_text: str = Field(default="", alias="targetText")
    english: str = ""
    chinese: str = ""


class StructuredTurn(BaseModel):
    """The decoded ``{correction, response}`` object every tutor turn carries."""

    model_config = ConfigDict(populate_by_name=True)

    correction: Correction = Field(default_factory=Correction)
    response: TutorResponse = Field(default_factory=TutorResponse)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class AudioAttachment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    mime_type: str = Field(default="audio/webm", alias="mimeType")
    data: str  # base64


# ============================================================================
# HISTORY
# ============================================================================

@dataclass
class Turn:
    role: Role
    timestamp: float = 0.0
    text: Optional[str] = None
    audio: Optional[AudioAttachment] = None
    structured: Optional[StructuredTurn] = None

    @classmethod
    def user(cls, text: Optional[str] = None, audio: Optional[AudioAttachment] = None) -> "Turn":
        text = (text or "").strip() or None
        if text is None and audio is None:
            raise InvalidInput()
        return cls(role=Role.USER, text=text, audio=audio)

    @classmethod
    def tutor(cls, structured: StructuredTurn) -> "Turn":
        return cls(role=Role.TUTOR, structured=structured)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role.value,
            "timestamp": self.timestamp,
            "text": self.text,
            "audio": self.audio.model_dump(by_alias=True) if self.audio else None,
            "structured": self.structured.to_wire() if self.structured else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        audio = data.get("audio")
        structured = data.get("structured")
        return cls(
            role=Role(data["role"]),
            timestamp=float(data.get("timestamp") or 0.0),
            text=data.get("text"),
            audio=AudioAttachment.model_validate(audio) if audio else None,
            structured=StructuredTurn.model_validate(structured) if structured else None,
        )


@dataclass
class Session:
    session_id: str
    language: str
    scenario: Optional[str] = None
    privileged: bool = False
    # Synthetic instruction that produced the opening tutor turn, if any
    opening_prompt: Optional[str] = None
    history: List[Turn] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def next_timestamp(self) -> float:
        ts = time.time()
        if self.history and ts <= self.history[-1].timestamp:
            ts = self.history[-1].timestamp + 1e-6
        return ts

    def touch(self) -> None:
        self.updated_at = time.time()
