"""Request and response handling, chat session state and audio pipeline logic for a Voxta chat client."""

__version__ = "0.1.0"
__all__ = [
    "audio_input",
    "chunk",
    "client",
    "logger",
    "playback",
    "requests",
    "responses",
    "session",
]