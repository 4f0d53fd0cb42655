import pytest

from polyglot_pal.cleanup import purge_idle_sessions
from polyglot_pal.errors import InvalidLanguage, InvalidScenario
from polyglot_pal.languages import (
    LANGUAGE_CONFIGS,
    Scenario,
    opening_prompt,
    resolve_language,
    resolve_scenario,
    system_instruction,
)
from polyglot_pal.sessions import InMemorySessionStore


def test_every_language_has_a_persona():
    for config in LANGUAGE_CONFIGS.values():
        assert config.tutor_name
        assert config.voice_name
        assert config.azure_voice.count("-") >= 2


@pytest.mark.parametrize("value", [None, "", "   "])
def test_blank_scenario_means_none(value):
    assert resolve_scenario(value) is None


def test_scenario_by_key_or_label():
    assert resolve_scenario("cafe") is Scenario.CAFE
    assert resolve_scenario("Ordering at a Café") is Scenario.CAFE
    with pytest.raises(InvalidScenario):
        resolve_scenario("Skydiving")


def test_unknown_language():
    with pytest.raises(InvalidLanguage):
        resolve_language("Elvish")
    with pytest.raises(InvalidLanguage):
        resolve_language(None)


def test_system_instruction_mentions_persona_and_schema():
    text = system_instruction(resolve_language("Japanese"))
    assert "Yuki" in text
    assert "hasMistake" in text
    assert "targetText" in text


def test_cantonese_instruction_is_specialised():
    assert "Traditional Chinese" in system_instruction(resolve_language("Cantonese"))
    assert "Traditional Chinese" not in system_instruction(resolve_language("Chinese"))


def test_opening_prompt_forbids_corrections():
    prompt = opening_prompt(resolve_language("French"), Scenario.INTRO.value)
    assert "Pierre" in prompt
    assert "Introduction & Basics" in prompt
    assert "hasMistake must be false" in prompt


def test_purge_idle_sessions():
    store = InMemorySessionStore()
    store.get_or_create("s", "French")
    assert purge_idle_sessions(store, -1) == 1
    assert len(store) == 0
