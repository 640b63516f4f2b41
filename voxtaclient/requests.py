"""Construction of request messages sent to the Voxta server hub."""

from __future__ import annotations

import uuid
from typing import Any

from voxtaclient.responses import AiCharacter

CLIENT_NAME = "UnrealVoxta"
CLIENT_VERSION = "0.1.0-alpha-preview"


def authenticate_request() -> dict[str, Any]:
    """Message that authenticates the client with the server."""
    return {
        "$type": "authenticate",
        "client": CLIENT_NAME,
        "clientVersion": CLIENT_VERSION,
        "scope": ["role:app", "broadcast:write"],
        "capabilities": {
            "audioInput": "WebSocketStream",
            "audioOutput": "Url",
            "acceptedAudioContentTypes": ["audio/x-wav"],
        },
    }


def load_characters_list_request() -> dict[str, Any]:
    """Message that asks for the list of available characters."""
    return {"$type": "loadCharactersList"}


def load_character_request(character_id: str) -> dict[str, Any]:
    """Message that loads one character and marks it active."""
    return {"$type": "loadCharacter", "characterId": character_id}


def start_chat_request(character: AiCharacter, chat_id: str | None = None) -> dict[str, Any]:
    """Message that starts a new chat with a character.

    A fresh chat id is generated when none is given.
    """
    if chat_id is None:
        chat_id = uuid.uuid4().hex.upper()
    return {
        "$type": "startChat",
        "contextKey": "",
        "context": "",
        "chatId": chat_id,
        "characterId": character.id,
        "character": {
            "id": character.id,
            "name": character.name,
            "explicitContent": "True",
        },
    }


def send_user_message_request(session_id: str, text: str) -> dict[str, Any]:
    """Message that adds a user message to the chat and asks for a reply."""
    return {
        "$type": "send",
        "sessionId": session_id,
        "text": text,
        "doReply": "true",
        "doCharacterActionInference": "false",
    }


def notify_audio_playback_complete_request(session_id: str, message_id: str) -> dict[str, Any]:
    """Message telling the server that playback of a message has finished."""
    return {
        "$type": "speechPlaybackComplete",
        "sessionId": session_id,
        "messageId": message_id,
    }