from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional, Sequence
from . import codec
from .errors import VendorHTTPError, VendorResponseError
from .settings import settings
from .turns import Role, Turn

logger = logging.getLogger(__name__)

# Stand-in opening for histories that (after pruning) begin with a tutor turn
_EARLIER_CONVERSATION = "(Earlier conversation omitted. Continue the lesson.)"

RESPONSE_SCHEMA: Dict[str, Any] = {
	"type": "OBJECT",
	"properties": {
		"correction": {
			"type": "OBJECT",
			"properties": {
				"hasMistake": {"type": "BOOLEAN"},
				"correctedText": {"type": "STRING", "nullable": True},
				"explanation": {"type": "STRING", "nullable": True},
			},
			"required": ["hasMistake"],
		},
		"response": {
			"type": "OBJECT",
			"properties": {
				"targetText": {"type": "STRING"},
				"english": {"type": "STRING"},
				"chinese": {"type": "STRING"},
			},
			"required": ["targetText", "english", "chinese"],
		},
	},
}


def gemini_base_url(model: str) -> tuple[str, bool]:
	"""Return the generateContent endpoint for ``model`` and whether the key goes in the query."""
	if settings.gemini_provider == "vertex":
		region = settings.vertex_region
		project = settings.vertex_project or "placeholder-project"
		# Vertex AI Generative REST endpoint (API key via header)
		return (
			f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{model}:generateContent",
			False,
		)
	# Google AI Studio (Generative Language API)
	return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent", True


def turn_to_content(turn: Turn) -> Dict[str, Any]:
	if turn.role is Role.TUTOR:
		text = codec.encode(turn.structured) if turn.structured else ""
		return {"role": "model", "parts": [{"text": text}]}
	return {"role": "user", "parts": user_parts(turn.text, turn.audio.mime_type if turn.audio else None, turn.audio.data if turn.audio else None)}


def user_parts(text: Optional[str], mime_type: Optional[str], audio_b64: Optional[str]) -> List[Dict[str, Any]]:
	parts: List[Dict[str, Any]] = []
	if audio_b64:
		parts.append({"inline_data": {"mime_type": mime_type or "audio/webm", "data": audio_b64}})
	if text:
		parts.append({"text": text})
	return parts


def build_contents(history: Sequence[Turn], parts: List[Dict[str, Any]], *, opening_prompt: Optional[str] = None) -> List[Dict[str, Any]]:
	contents = [turn_to_content(t) for t in history]
	if contents and contents[0]["role"] == "model":
		contents.insert(0, {"role": "user", "parts": [{"text": opening_prompt or _EARLIER_CONVERSATION}]})
	contents.append({"role": "user", "parts": parts})
	return contents


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		default_url, self._auth_in_query = gemini_base_url(self.model)
		self.base_url = base_url or default_url
		self._client = httpx.AsyncClient(timeout=timeout or settings.vendor_timeout_seconds, transport=transport)

	async def generate(
		self,
		system_instruction: str,
		history: Sequence[Turn],
		parts: List[Dict[str, Any]],
		*,
		opening_prompt: Optional[str] = None,
	) -> str:
		payload: Dict[str, Any] = {
			"systemInstruction": {"parts": [{"text": system_instruction}]},
			"contents": build_contents(history, parts, opening_prompt=opening_prompt),
			"generationConfig": {
				"responseMimeType": "application/json",
				"responseSchema": RESPONSE_SCHEMA,
			},
		}
		data = await self._post_payload(payload)
		try:
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (KeyError, IndexError, TypeError):
			raise VendorResponseError(f"Unexpected Gemini response: {str(data)[:500]}")

	async def ping(self) -> bool:
		"""Connectivity check run at startup; never raises."""
		try:
			await self._post_payload({"contents": [{"parts": [{"text": "Hi"}]}]})
		except Exception as err:
			logger.error("Gemini connection failed: %s", err)
			return False
		logger.info("Gemini is reachable (%s)", self.model)
		return True

	async def _post_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
		if r.status_code >= 400:
			raise VendorHTTPError(r.status_code, r.text)
		try:
			return r.json()
		except ValueError:
			raise VendorResponseError(f"Gemini returned non-JSON body: {r.text[:500]}")

	async def aclose(self) -> None:
		await self._client.aclose()
