from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..audio import AudioClip, UploadAudio
from ..retry import RetryPolicy, retry_async
from ..turns import StructuredTurn

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0


class ClientError(Exception):
    pass


class ClientTimeout(ClientError):
    def __init__(self, timeout: float) -> None:
        super().__init__(
            f"Request timed out after {timeout:g} seconds. The server might be waking up or busy."
        )
        self.timeout = timeout


class NetworkError(ClientError):
    pass


class ServerError(ClientError):
    def __init__(self, status: int, error: str) -> None:
        super().__init__(error)
        self.status = status
        self.error = error


def _is_connect_error(err: BaseException) -> bool:
    # Timeouts are surfaced as-is; only failures to reach the server are retried
    return isinstance(err, httpx.TransportError) and not isinstance(err, httpx.TimeoutException)


class TutorApiClient:
    """HTTP client for the tutor backend."""

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        tutor_key: Optional[str] = None,
    ) -> None:
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(attempts=2, base_delay=0.5)
        headers = {"X-Tutor-Key": tutor_key} if tutor_key else None
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport, headers=headers
        )

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = await retry_async(
                lambda: self._client.post(path, json=body),
                self.retry_policy,
                is_transient=_is_connect_error,
                label=f"POST {path}",
            )
        except httpx.TimeoutException as err:
            raise ClientTimeout(self.timeout) from err
        except ClientError:
            raise
        except Exception as err:
            raise NetworkError(f"Could not reach the server: {err}") from err
        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code >= 400:
            message = data.get("error") if isinstance(data, dict) else None
            raise ServerError(r.status_code, message or r.reason_phrase or f"HTTP {r.status_code}")
        return data

    async def chat(
        self,
        session_id: str,
        language: str,
        *,
        message: Optional[str] = None,
        audio: Optional[UploadAudio] = None,
        scenario: Optional[str] = None,
    ) -> StructuredTurn:
        body: Dict[str, Any] = {"sessionId": session_id, "language": language}
        if message:
            body["message"] = message
        if audio is not None:
            body.update(audio.to_wire())
        if scenario:
            body["scenario"] = scenario
        return StructuredTurn.model_validate(await self._post("/api/chat", body))

    async def start(self, language: str, scenario: str, session_id: Optional[str] = None) -> tuple[str, StructuredTurn]:
        body: Dict[str, Any] = {"language": language, "scenario": scenario}
        if session_id:
            body["sessionId"] = session_id
        data = await self._post("/api/chat/start", body)
        return data["sessionId"], StructuredTurn.model_validate(data)

    async def speech(self, text: str, voice_name: str) -> AudioClip:
        data = await self._post("/api/tts", {"text": text, "voiceName": voice_name})
        return AudioClip.from_base64(data["audioData"], data.get("format") or "pcm")

    async def history(self, session_id: str) -> Dict[str, Any]:
        return await self._post("/api/history", {"sessionId": session_id})

    async def reset(self, session_id: str) -> None:
        await self._post("/api/chat/reset", {"sessionId": session_id})

    async def aclose(self) -> None:
        await self._client.aclose()
