"""Error taxonomy shared by the orchestrator, the capabilities and the HTTP layer.

Every error carries an HTTP status and a ``public_message`` that is safe to show
to the learner. The underlying vendor detail stays in ``str(err)`` and in the
server logs.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class TutorError(Exception):
    status_code: int = 500
    public_message: str = "Something went wrong."

    def __init__(self, message: Optional[str] = None, *, public_message: Optional[str] = None) -> None:
        super().__init__(message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class InvalidLanguage(TutorError):
    status_code = 400

    def __init__(self, language: object) -> None:
        msg = f"Invalid language: {language!r}"
        super().__init__(msg, public_message=msg)
        self.language = language


class InvalidScenario(TutorError):
    status_code = 400

    def __init__(self, scenario: object) -> None:
        msg = f"Invalid scenario: {scenario!r}"
        super().__init__(msg, public_message=msg)
        self.scenario = scenario


class InvalidInput(TutorError):
    status_code = 400

    def __init__(self, message: str = "No message or audio provided") -> None:
        super().__init__(message, public_message=message)


class SessionNotFound(TutorError):
    status_code = 404
    public_message = "Session not found or expired"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class DecodeFailure(str, Enum):
    NO_STRUCTURE_FOUND = "no_structure_found"
    INVALID_SHAPE = "invalid_shape"


class DecodeError(TutorError):
    status_code = 502
    public_message = "The tutor had trouble responding. Please try again."

    def __init__(self, reason: DecodeFailure, detail: str = "") -> None:
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)
        self.reason = reason
        self.detail = detail


class VendorError(TutorError):
    """A generation or synthesis call failed in a way retrying will not fix."""

    status_code = 502
    public_message = "The tutor had trouble responding. Please try again."


class VendorHTTPError(VendorError):
    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Vendor returned HTTP {status}: {body[:500]}")
        self.status = status
        self.body = body


class VendorResponseError(VendorError):
    pass


class TransientVendorError(VendorError):
    status_code = 503
    public_message = "Couldn't reach the tutor service. Please check your connection and try again."

    def __init__(self, message: str, *, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class SynthesisError(VendorError):
    public_message = "Text-to-Speech generation failed."
