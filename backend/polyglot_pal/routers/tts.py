from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from ..errors import InvalidInput, SynthesisError, TutorError
from ..languages import LANGUAGE_CONFIGS
from ..retry import retry_async
from ..services import get_synthesizer, retry_policy
from ..settings import settings
from ..speech_client import SpeechSynthesizer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["speech"])


class SpeechRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    voice_name: Optional[str] = Field(default=None, alias="voiceName")


class SpeechResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio_data: str = Field(alias="audioData")
    format: str


def resolve_voice(voice_name: Optional[str]) -> str:
    """Accept a provider voice name, or a language id mapped to its tutor's voice."""
    voice = (voice_name or "").strip()
    config = LANGUAGE_CONFIGS.get(voice)
    azure = settings.tts_provider.lower() == "azure"
    if config is not None:
        return config.azure_voice if azure else config.voice_name
    if not voice and not azure:
        return "Kore"
    return voice


@router.post("/tts", response_model=SpeechResponse, response_model_by_alias=True)
async def tts(req: SpeechRequest, synthesizer: SpeechSynthesizer = Depends(get_synthesizer)):
    text = (req.text or "").strip()
    if not text:
        logger.warning("TTS request with empty text")
        raise InvalidInput("Text is required for TTS")
    text = text[: settings.max_tts_chars]
    voice = resolve_voice(req.voice_name)
    if not voice:
        raise InvalidInput("Voice name is required for TTS")
    logger.info("TTS request: %s - %r", voice, text[:50])
    try:
        clip = await retry_async(
            lambda: synthesizer.synthesize(text, voice),
            retry_policy(),
            label="speech synthesis",
        )
    except TutorError:
        raise
    except Exception as err:
        logger.exception("TTS failed")
        raise SynthesisError(str(err)) from err
    return SpeechResponse(audio_data=clip.to_base64(), format=clip.format.value)
