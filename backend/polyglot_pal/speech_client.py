from __future__ import annotations

import base64
import logging
from typing import Optional, Protocol
from xml.sax.saxutils import escape

import httpx

from .audio import AudioClip, AudioFormat
from .errors import SynthesisError, VendorHTTPError
from .gemini_client import gemini_base_url
from .settings import settings

logger = logging.getLogger(__name__)


class SpeechSynthesizer(Protocol):
    async def synthesize(self, text: str, voice_name: str) -> AudioClip: ...

    async def aclose(self) -> None: ...


class GeminiSpeechClient:
    """Gemini TTS; returns raw 24 kHz 16-bit PCM."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key or settings.gemini_api_key
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY is not configured")
        self.model = model or settings.gemini_tts_model
        self.base_url, self._auth_in_query = gemini_base_url(self.model)
        self._client = httpx.AsyncClient(timeout=timeout or settings.tts_timeout_seconds, transport=transport)

    async def synthesize(self, text: str, voice_name: str) -> AudioClip:
        payload = {
            "contents": [{"parts": [{"text": text}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice_name or "Kore"}}},
            },
        }
        params = {"key": self.api_key} if self._auth_in_query else {}
        headers = {} if self._auth_in_query else {"x-goog-api-key": self.api_key}
        r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
        if r.status_code >= 400:
            raise VendorHTTPError(r.status_code, r.text)
        try:
            data = r.json()["candidates"][0]["content"]["parts"][0]["inlineData"]["data"]
        except (KeyError, IndexError, TypeError, ValueError):
            data = None
        if not data:
            raise SynthesisError("No audio data generated")
        return AudioClip(format=AudioFormat.PCM, payload=base64.b64decode(data))

    async def aclose(self) -> None:
        await self._client.aclose()


class AzureSpeechClient:
    """Azure Cognitive Services TTS over REST; returns MP3."""

    OUTPUT_FORMAT = "audio-24khz-48kbitrate-mono-mp3"

    def __init__(
        self,
        speech_key: Optional[str] = None,
        region: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.speech_key = speech_key or settings.speech_key
        self.region = region or settings.speech_region
        if not self.speech_key or not self.region:
            raise ValueError("SPEECH_KEY and SPEECH_REGION are required for Azure TTS")
        self.url = f"https://{self.region}.tts.speech.microsoft.com/cognitiveservices/v1"
        self._client = httpx.AsyncClient(timeout=timeout or settings.tts_timeout_seconds, transport=transport)

    @staticmethod
    def build_ssml(text: str, voice_name: str) -> str:
        # 'fr-FR-HenriNeural' -> 'fr-FR'
        locale = "-".join(voice_name.split("-")[:2])
        return (
            f"<speak version='1.0' xml:lang='{locale}'>"
            f"<voice xml:lang='{locale}' name='{voice_name}'>{escape(text)}</voice>"
            "</speak>"
        )

    async def synthesize(self, text: str, voice_name: str) -> AudioClip:
        if not voice_name:
            raise SynthesisError("Voice name is required for TTS")
        r = await self._client.post(
            self.url,
            headers={
                "Ocp-Apim-Subscription-Key": self.speech_key,
                "Content-Type": "application/ssml+xml",
                "X-Microsoft-OutputFormat": self.OUTPUT_FORMAT,
                "User-Agent": "PolyglotPal",
            },
            content=self.build_ssml(text, voice_name).encode("utf-8"),
        )
        if r.status_code >= 400:
            raise VendorHTTPError(r.status_code, r.text)
        if not r.content:
            raise SynthesisError("Azure TTS returned an empty payload")
        return AudioClip(format=AudioFormat.MP3, payload=r.content)

    async def aclose(self) -> None:
        await self._client.aclose()


def build_synthesizer(provider: Optional[str] = None) -> SpeechSynthesizer:
    provider = (provider or settings.tts_provider).lower()
    if provider == "azure":
        return AzureSpeechClient()
    if provider == "gemini":
        return GeminiSpeechClient()
    raise ValueError(f"Unknown TTS_PROVIDER: {provider}")
