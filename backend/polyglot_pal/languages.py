from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from .errors import InvalidLanguage, InvalidScenario


@dataclass(frozen=True)
class LanguageConfig:
    id: str
    name: str
    tutor_name: str
    voice_name: str  # Gemini prebuilt voice
    azure_voice: str
    greeting: str


LANGUAGE_CONFIGS: Dict[str, LanguageConfig] = {
    c.id: c
    for c in (
        LanguageConfig("French", "French", "Pierre", "Fenrir", "fr-FR-HenriNeural", "Bonjour! Ça va?"),
        LanguageConfig("English", "English", "James", "Fenrir", "en-US-GuyNeural", "Hello! How are you?"),
        LanguageConfig("Spanish", "Spanish", "Sofia", "Kore", "es-ES-ElviraNeural", "¡Hola! ¿Cómo estás?"),
        LanguageConfig("German", "German", "Hans", "Fenrir", "de-DE-ConradNeural", "Hallo! Wie geht es dir?"),
        LanguageConfig("Russian", "Russian", "Dimitri", "Fenrir", "ru-RU-DmitryNeural", "Привет! Как дела?"),
        LanguageConfig("Japanese", "Japanese", "Yuki", "Puck", "ja-JP-NanamiNeural", "こんにちは！元気ですか？"),
        LanguageConfig("Cantonese", "Cantonese", "Ka-ming", "Puck", "zh-HK-WanLungNeural", "你好！最近點呀？"),
        LanguageConfig("Chinese", "Chinese", "Li Wei", "Kore", "zh-CN-YunxiNeural", "你好！你好吗？"),
    )
}


class Scenario(str, Enum):
    INTRO = "Introduction & Basics"
    CAFE = "Ordering at a Café"
    TRAVEL = "Asking for Directions"
    HOBBIES = "Discussing Hobbies"


# Used when a learner opens a session without picking a topic
GENERAL_CHAT = "General Chat"


def resolve_language(language: Optional[str]) -> LanguageConfig:
    config = LANGUAGE_CONFIGS.get((language or "").strip())
    if config is None:
        raise InvalidLanguage(language)
    return config


def resolve_scenario(scenario: Optional[str]) -> Optional[Scenario]:
    """Accept either the enum key (``CAFE``) or its label (``Ordering at a Café``)."""
    if scenario is None or not str(scenario).strip():
        return None
    value = str(scenario).strip()
    if value.upper() in Scenario.__members__:
        return Scenario[value.upper()]
    for member in Scenario:
        if member.value.lower() == value.lower():
            return member
    raise InvalidScenario(scenario)


def system_instruction(config: LanguageConfig) -> str:
    name = config.name
    special = ""
    if name == "Cantonese":
        special = (
            "- You MUST use Traditional Chinese characters and colloquial Cantonese grammar/particles "
            "(e.g., 唔, 係, 嘅) instead of standard written Chinese.\n"
        )
    return f"""
You are {config.tutor_name}, a friendly, charming, and patient {name} tutor.
Your goal is to help the user learn {name} through natural conversation.

Interaction Protocol:

1. **Normal Conversation ({name} Input)**:
   - If the user speaks {name}, respond naturally to the roleplay scenario.
   - Keep responses concise (1-2 sentences).
   - Check for grammar mistakes. If there is one, set hasMistake to true and give the corrected sentence and a short explanation.

2. **Language Bridge (Other Language Input)**:
   - If the user speaks a different language (like English or Chinese) asking "How do I say this?", or simply speaks in their native tongue:
   - **DO NOT** answer the content of their question yet.
   - Instead, provide the **{name} translation** of what they wanted to say.
   - Encouragingly ask them to repeat it in {name}.

3. **Resume (After Correction)**:
   - If the user repeats a corrected phrase properly, praise them, then answer their original question or continue the story.

4. **Audio Input**:
   - If the user sends an audio message, listen carefully to what they say (even if it is imperfect) and respond accordingly.

Specific Language Instructions:
{special}
Output Format:
You MUST respond using a valid JSON object with the following schema:
{{
  "correction": {{
    "hasMistake": boolean,
    "correctedText": string | null,
    "explanation": string | null
  }},
  "response": {{
    "targetText": string,
    "english": string,
    "chinese": string
  }}
}}
correctedText and explanation are null unless hasMistake is true.
targetText is your reply in {name}; english and chinese are its translations.
""".strip()


def opening_prompt(config: LanguageConfig, scenario_label: str) -> str:
    return (
        f'The user has entered the session. The current topic is: "{scenario_label}". '
        f"Start the conversation by introducing yourself as {config.tutor_name} "
        f"and asking a relevant question in {config.name}. "
        "There is nothing to correct yet, so hasMistake must be false."
    )
