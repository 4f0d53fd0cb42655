import asyncio
import json
from typing import Any, Dict, List, Optional, Sequence

import pytest

from polyglot_pal.settings import settings
from polyglot_pal.turns import Turn

# Never reach the real vendor from the startup connectivity check
settings.gemini_api_key = None


def tutor_json(target: str = "Bonjour ! Je m'appelle Pierre.", *, has_mistake: bool = False, corrected: Optional[str] = None, explanation: Optional[str] = None) -> str:
    return json.dumps(
        {
            "correction": {"hasMistake": has_mistake, "correctedText": corrected, "explanation": explanation},
            "response": {"targetText": target, "english": "Hello! My name is Pierre.", "chinese": "你好！我叫皮埃尔。"},
        },
        ensure_ascii=False,
    )


class FakeGenerator:
    """Scripted generation capability.

    ``script`` items are returned in order; an exception instance is raised
    instead of returned. When the script runs out the default reply is used.
    """

    def __init__(self, script: Optional[List[Any]] = None, default: Optional[str] = None) -> None:
        self.script = list(script or [])
        self.default = default or tutor_json()
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, system_instruction: str, history: Sequence[Turn], parts: List[Dict[str, Any]], *, opening_prompt: Optional[str] = None) -> str:
        self.calls.append(
            {
                "system_instruction": system_instruction,
                "history": list(history),
                "parts": parts,
                "opening_prompt": opening_prompt,
            }
        )
        item = self.script.pop(0) if self.script else self.default
        if isinstance(item, BaseException):
            raise item
        return item


class GatedGenerator(FakeGenerator):
    """Holds every call at ``gate`` until the test releases it."""

    def __init__(self, script: Optional[List[Any]] = None) -> None:
        super().__init__(script)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self.active = 0
        self.max_active = 0

    async def generate(self, *args, **kwargs):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            await self.gate.wait()
            return await super().generate(*args, **kwargs)
        finally:
            self.active -= 1


async def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()
