"""
Turn Codec
==========

Converts between ``StructuredTurn`` and the free-form text returned by the
generation model. The model is asked for strict JSON but does not always comply,
so decoding is done in two tiers:

1. parse the whole text as JSON
2. strip markdown code fences, then parse the slice between the first ``{`` and
   the last ``}``

Decoding never raises; it returns a ``DecodeResult`` that is either ok (with a
turn) or carries a ``DecodeError``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import DecodeError, DecodeFailure
from .turns import Correction, StructuredTurn, TutorResponse


_FENCE_RE = re.compile(r"```(?:json)?\n?", re.IGNORECASE)


@dataclass(frozen=True)
class DecodeResult:
	turn: Optional[StructuredTurn] = None
	error: Optional[DecodeError] = None

	@property
	def ok(self) -> bool:
		return self.turn is not None


def encode(turn: StructuredTurn) -> str:
	return json.dumps(turn.to_wire(), ensure_ascii=False)


def decode(raw_text: str) -> DecodeResult:
	"""Decode raw model output into a structured turn.

	Args:
		raw_text: Text returned by the generation model

	Returns:
		DecodeResult with either ``turn`` or ``error`` set
	"""
	text = raw_text or ""
	try:
		data = json.loads(text)
	except (TypeError, ValueError):
		data = _extract_embedded(text)
		if data is None:
			return DecodeResult(error=DecodeError(DecodeFailure.NO_STRUCTURE_FOUND, text[:200]))
	return _from_data(data)


def unwrap(result: DecodeResult) -> StructuredTurn:
	if result.turn is None:
		raise result.error or DecodeError(DecodeFailure.NO_STRUCTURE_FOUND)
	return result.turn


def _extract_embedded(text: str) -> Optional[Any]:
	cleaned = _FENCE_RE.sub("", text).strip()
	first = cleaned.find("{")
	last = cleaned.rfind("}")
	if first == -1 or last == -1 or last < first:
		return None
	try:
		return json.loads(cleaned[first : last + 1])
	except ValueError:
		return None


def _from_data(data: Any) -> DecodeResult:
	if not isinstance(data, dict):
		return DecodeResult(error=DecodeError(DecodeFailure.INVALID_SHAPE, f"top level is {type(data).__name__}"))
	correction = data.get("correction") or {}
	response = data.get("response") or {}
	if not isinstance(correction, dict) or not isinstance(response, dict):
		return DecodeResult(error=DecodeError(DecodeFailure.INVALID_SHAPE, "correction/response must be objects"))
	return DecodeResult(
		turn=StructuredTurn(
			correction=_correction(correction),
			response=TutorResponse(
				target_text=_text(response.get("targetText")),
				english=_text(response.get("english")),
				chinese=_text(response.get("chinese")),
			),
		)
	)


def _correction(data: Dict[str, Any]) -> Correction:
	has_mistake = _flag(data.get("hasMistake"))
	if not has_mistake:
		return Correction(has_mistake=False)
	# Missing details are tolerated; the UI shows whatever is present
	return Correction(
		has_mistake=True,
		corrected_text=_optional_text(data.get("correctedText")),
		explanation=_optional_text(data.get("explanation")),
	)


def _flag(value: Any) -> bool:
	if isinstance(value, str):
		return value.strip().lower() == "true"
	return bool(value)


def _text(value: Any) -> str:
	if value is None:
		return ""
	return value if isinstance(value, str) else str(value)


def _optional_text(value: Any) -> Optional[str]:
	if value is None:
		return None
	return _text(value)
