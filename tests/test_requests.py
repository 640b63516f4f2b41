from voxtaclient.requests import (
    authenticate_request,
    load_character_request,
    load_characters_list_request,
    notify_audio_playback_complete_request,
    send_user_message_request,
    start_chat_request,
)
from voxtaclient.responses import AiCharacter


def test_authenticate_request():
    assert authenticate_request() == {
        "$type": "authenticate",
        "client": "UnrealVoxta",
        "clientVersion": "0.1.0-alpha-preview",
        "scope": ["role:app", "broadcast:write"],
        "capabilities": {
            "audioInput": "WebSocketStream",
            "audioOutput": "Url",
            "acceptedAudioContentTypes": ["audio/x-wav"],
        },
    }


def test_load_characters_list_request():
    assert load_characters_list_request() == {"$type": "loadCharactersList"}


def test_load_character_request():
    assert load_character_request("c1") == {"$type": "loadCharacter", "characterId": "c1"}


def test_start_chat_request_with_chat_id():
    character = AiCharacter("c1", "Bob")
    assert start_chat_request(character, "chat-1") == {
        "$type": "startChat",
        "contextKey": "",
        "context": "",
        "chatId": "chat-1",
        "characterId": "c1",
        "character": {"id": "c1", "name": "Bob", "explicitContent": "True"},
    }


def test_start_chat_request_generates_unique_ids():
    character = AiCharacter("c1", "Bob")
    first = start_chat_request(character)["chatId"]
    second = start_chat_request(character)["chatId"]
    assert first != second
    assert len(first) == 32
    assert first == first.upper()
    int(first, 16)


def test_send_user_message_request():
    assert send_user_message_request("s1", "hello") == {
        "$type": "send",
        "sessionId": "s1",
        "text": "hello",
        "doReply": "true",
        "doCharacterActionInference": "false",
    }


def test_notify_audio_playback_complete_request():
    assert notify_audio_playback_complete_request("s1", "m1") == {
        "$type": "speechPlaybackComplete",
        "sessionId": "s1",
        "messageId": "m1",
    }