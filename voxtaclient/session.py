"""Chat state shared between the client and its listeners."""

from __future__ import annotations

import enum
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from voxtaclient.responses import AiCharacter, ServiceData, ServiceType


class Event:
    """A list of callbacks that are all called, in order, when the event is emitted."""

    def __init__(self) -> None:
        self._callbacks: list[Callable[..., Any]] = []

    def subscribe(self, callback: Callable[..., Any]) -> Callable[..., Any]:
        """Add a callback; returns it so this can be used as a decorator."""
        self._callbacks.append(callback)
        return callback

    def unsubscribe(self, callback: Callable[..., Any]) -> bool:
        """Remove a callback. Returns False if it was not subscribed."""
        try:
            self._callbacks.remove(callback)
        except ValueError:
            return False
        return True

    def emit(self, *args: Any) -> None:
        """Call every subscribed callback with the given arguments."""
        for callback in list(self._callbacks):
            callback(*args)

    def __len__(self) -> int:
        return len(self._callbacks)


class ClientState(enum.Enum):
    """Stages of the conversation between the client and the server."""

    DISCONNECTED = enum.auto()
    ATTEMPTING_TO_CONNECT = enum.auto()
    AUTHENTICATED = enum.auto()
    IDLE = enum.auto()
    STARTING_CHAT = enum.auto()
    GENERATING_REPLY = enum.auto()
    AUDIO_PLAYBACK = enum.auto()
    WAITING_FOR_USER_RESPONSE = enum.auto()
    TERMINATED = enum.auto()


@dataclass
class ChatMessage:
    """One message in the chat history, built up chunk by chunk."""

    message_id: str
    sender_id: str
    text_content: str = ""
    audio_urls: list[str] = field(default_factory=list)

    def append_content(self, text: str, audio_url: str) -> None:
        """Add text to the message, and the audio url of the chunk if there is one."""
        self.text_content += text
        if audio_url:
            self.audio_urls.append(audio_url)


@dataclass
class ChatSession:
    """An ongoing chat with one or more AI characters."""

    characters: list[AiCharacter]
    chat_id: str
    session_id: str
    services: dict[ServiceType, ServiceData]
    messages: list[ChatMessage] = field(default_factory=list)

    def find_message(self, message_id: str) -> ChatMessage | None:
        """Return the message with this id, or None."""
        return next((m for m in self.messages if m.message_id == message_id), None)

    def remove_message(self, message_id: str) -> ChatMessage:
        """Remove the message with this id from the history and return it.

        Raises KeyError if no such message exists.
        """
        message = self.find_message(message_id)
        if message is None:
            raise KeyError(message_id)
        self.messages.remove(message)
        return message