"""Python client for the tutor backend: turn state machine, recording and playback."""

from .api import ClientError, ClientTimeout, NetworkError, ServerError, TutorApiClient
from .playback import PlaybackController, Player
from .recorder import AudioRecorder, pick_mime_type
from .state import ChatController, ChatMessage, ExchangeInFlight, TurnState

__all__ = [
    "AudioRecorder",
    "ChatController",
    "ChatMessage",
    "ClientError",
    "ClientTimeout",
    "ExchangeInFlight",
    "NetworkError",
    "PlaybackController",
    "Player",
    "ServerError",
    "TurnState",
    "TutorApiClient",
    "pick_mime_type",
]
