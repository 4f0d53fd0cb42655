import base64

import httpx
import pytest

from conftest import no_sleep, tutor_json
from polyglot_pal.audio import AudioClip, AudioFormat, Recording, UploadAudio
from polyglot_pal.client import (
    ChatController,
    ClientTimeout,
    ExchangeInFlight,
    NetworkError,
    PlaybackController,
    ServerError,
    TurnState,
    TutorApiClient,
)
from polyglot_pal.languages import Scenario
from polyglot_pal.main import app
from polyglot_pal.orchestrator import TurnOrchestrator
from polyglot_pal.retry import RetryPolicy
from polyglot_pal.services import get_orchestrator, get_synthesizer
from polyglot_pal.sessions import InMemorySessionStore
from polyglot_pal.turns import Role


class FakeSynthesizer:
    def __init__(self):
        self.calls = []

    async def synthesize(self, text, voice_name):
        self.calls.append((text, voice_name))
        return AudioClip(format=AudioFormat.PCM, payload=b"\x00\x00" * 240)

    async def aclose(self):
        pass


class FakePlayer:
    def __init__(self):
        self.played = []
        self.stopped = 0
        self.on_end = None

    def play(self, buffer, on_end):
        self.played.append(buffer)
        self.on_end = on_end

    def stop(self):
        self.stopped += 1


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
async def api(store, generator, synthesizer):
    orchestrator = TurnOrchestrator(generator, store, retry_policy=RetryPolicy(attempts=1), sleep=no_sleep)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_synthesizer] = lambda: synthesizer
    client = TutorApiClient("http://tutor.test", transport=httpx.ASGITransport(app=app))
    yield client
    await client.aclose()
    app.dependency_overrides.clear()


def _api_with(handler, **kwargs):
    return TutorApiClient(
        "http://tutor.test",
        transport=httpx.MockTransport(handler),
        retry_policy=RetryPolicy(attempts=2, base_delay=0.0),
        **kwargs,
    )


# ============================================================================
# API CLIENT
# ============================================================================

@pytest.mark.asyncio
async def test_api_start_and_chat(api, store):
    session_id, opening = await api.start("French", "INTRO")
    assert opening.correction.has_mistake is False
    turn = await api.chat(session_id, "French", message="Je suis allé au magasin hier")
    assert turn.response.target_text
    history = await api.history(session_id)
    assert [t["role"] for t in history["history"]] == ["TUTOR", "USER", "TUTOR"]
    await api.reset(session_id)
    assert store.get(session_id) is None


@pytest.mark.asyncio
async def test_api_surfaces_error_payload(api):
    with pytest.raises(ServerError) as excinfo:
        await api.chat("s", "Klingon", message="hi")
    assert excinfo.value.status == 400
    assert "Invalid language" in excinfo.value.error


@pytest.mark.asyncio
async def test_api_timeout():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    api = _api_with(handler, timeout=20.0)
    with pytest.raises(ClientTimeout) as excinfo:
        await api.chat("s", "French", message="Bonjour")
    assert "20 seconds" in str(excinfo.value)
    assert "waking up or busy" in str(excinfo.value)
    await api.aclose()


@pytest.mark.asyncio
async def test_api_retries_connect_errors_then_reports_network_error():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("refused", request=request)

    api = _api_with(handler)
    with pytest.raises(NetworkError):
        await api.chat("s", "French", message="Bonjour")
    assert len(calls) == 2
    await api.aclose()


@pytest.mark.asyncio
async def test_api_sends_tutor_key_and_audio():
    seen = {}

    def handler(request):
        seen["headers"] = request.headers
        seen["body"] = request.content
        return httpx.Response(200, text=tutor_json())

    api = _api_with(handler, tutor_key="classroom-key")
    await api.chat("s", "French", audio=UploadAudio(audio_data="AAEC", audio_mime_type="audio/mp4"))
    await api.aclose()
    assert seen["headers"]["X-Tutor-Key"] == "classroom-key"
    assert b'"audioData":"AAEC"' in seen["body"].replace(b" ", b"")
    assert b'"message"' not in seen["body"]


# ============================================================================
# TURN STATE MACHINE
# ============================================================================

@pytest.mark.asyncio
async def test_controller_renders_scenario_opening(api):
    controller = ChatController(api, "French")
    message = await controller.start_scenario(Scenario.INTRO)
    assert controller.state is TurnState.RENDERED
    assert message.sender is Role.TUTOR
    assert message.correction.has_mistake is False
    assert controller.messages == [message]


@pytest.mark.asyncio
async def test_controller_full_exchange(api, store):
    controller = ChatController(api, "French")
    await controller.start_scenario(Scenario.INTRO)
    tutor = await controller.send_message("Je suis allé au magasin hier")
    assert controller.state is TurnState.RENDERED
    assert [m.sender for m in controller.messages] == [Role.TUTOR, Role.USER, Role.TUTOR]
    assert controller.messages[1].text == "Je suis allé au magasin hier"
    assert tutor.tutor_response.target_text
    assert len(store.history_for(controller.session_id)) == 3


@pytest.mark.asyncio
async def test_controller_sends_recording(api, generator):
    controller = ChatController(api, "English")
    recording = Recording(data=b"\x1a\x45\xdf\xa3", mime_type="audio/webm", duration_ms=1800)
    await controller.send_message(recording=recording)
    assert controller.messages[0].has_audio is True
    part = generator.calls[0]["parts"][0]
    assert part["inline_data"]["data"] == base64.b64encode(b"\x1a\x45\xdf\xa3").decode()


@pytest.mark.asyncio
async def test_controller_keeps_failed_message_for_resubmit():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    controller = ChatController(_api_with(handler), "Spanish")
    result = await controller.send_message("Hola")
    assert result is None
    assert controller.state is TurnState.FAILED
    assert len(controller.messages) == 1
    assert controller.messages[0].failed is True
    assert "waking up or busy" in controller.error_message

    # Failed falls back to Idle on the next action
    await controller.send_message("Hola otra vez")
    assert controller.state is TurnState.FAILED
    assert len(controller.messages) == 2


@pytest.mark.asyncio
async def test_controller_network_error_names_tutor():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    controller = ChatController(_api_with(handler), "German")
    await controller.send_message("Hallo")
    assert controller.error_message == "Couldn't connect to Hans. Please check your connection."


@pytest.mark.asyncio
async def test_controller_shows_server_error_text():
    controller = ChatController(
        _api_with(lambda request: httpx.Response(503, json={"error": "Couldn't reach the tutor service."})),
        "French",
    )
    await controller.send_message("Bonjour")
    assert controller.error_message == "Couldn't reach the tutor service."


@pytest.mark.asyncio
async def test_controller_rejects_overlapping_exchanges(api):
    controller = ChatController(api, "French")
    controller.state = TurnState.AWAITING_RESPONSE
    with pytest.raises(ExchangeInFlight):
        await controller.send_message("Bonjour")
    with pytest.raises(ExchangeInFlight):
        controller.reset()


@pytest.mark.asyncio
async def test_controller_rejects_empty_input(api):
    controller = ChatController(api, "French")
    with pytest.raises(ValueError):
        await controller.send_message("   ")
    assert controller.state is TurnState.IDLE


@pytest.mark.asyncio
async def test_controller_empty_recording_stays_idle(api):
    controller = ChatController(api, "French")
    with pytest.raises(ValueError):
        await controller.send_message(recording=Recording(data=b"", mime_type="audio/webm", duration_ms=1500))
    assert controller.state is TurnState.IDLE
    assert controller.messages == []

    await controller.send_message("Bonjour")
    assert controller.state is TurnState.RENDERED


@pytest.mark.asyncio
async def test_controller_exposes_greeting(api):
    assert ChatController(api, "French").greeting == "Bonjour! Ça va?"
    assert ChatController(api, "German").greeting == "Hallo! Wie geht es dir?"


@pytest.mark.asyncio
async def test_controller_reset_starts_new_session(api):
    controller = ChatController(api, "French")
    await controller.send_message("Bonjour")
    old = controller.session_id
    controller.reset()
    assert controller.session_id != old
    assert controller.messages == []
    assert controller.state is TurnState.IDLE


# ============================================================================
# PLAYBACK
# ============================================================================

@pytest.mark.asyncio
async def test_playback_synthesizes_once(api, synthesizer):
    controller = ChatController(api, "French")
    message = await controller.start_scenario(Scenario.CAFE)
    player = FakePlayer()
    playback = PlaybackController(api, player, "Fenrir")

    assert await playback.toggle(message) is True
    assert playback.playing_id == message.id
    assert len(player.played[0]) == 240
    assert message.audio_clip is not None

    # Second toggle on the same message stops it
    assert await playback.toggle(message) is False
    assert playback.playing_id is None

    # Replaying reuses the cached clip
    await playback.toggle(message)
    assert len(synthesizer.calls) == 1
    assert synthesizer.calls[0][1] == "Fenrir"


@pytest.mark.asyncio
async def test_playback_switches_messages(api):
    controller = ChatController(api, "French")
    first = await controller.start_scenario(Scenario.INTRO)
    second = await controller.send_message("Bonjour")
    player = FakePlayer()
    playback = PlaybackController(api, player, "Fenrir")

    await playback.toggle(first)
    await playback.toggle(second)
    assert playback.playing_id == second.id
    assert player.stopped == 1

    player.on_end()
    assert playback.playing_id is None


@pytest.mark.asyncio
async def test_playback_rejects_user_messages(api):
    controller = ChatController(api, "French")
    await controller.send_message("Bonjour")
    playback = PlaybackController(api, FakePlayer(), "Fenrir")
    with pytest.raises(ValueError):
        await playback.toggle(controller.messages[0])
    assert playback.loading is False
