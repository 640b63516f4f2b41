"""Deserialization of messages received from the Voxta server hub."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

IGNORED_MESSAGE_TYPES: frozenset[str] = frozenset(
    {
        "chatStarting",
        "chatLoadingMessage",
        "chatsSessionsUpdated",
        "contextUpdated",
        "replyGenerating",
        "chatFlow",
        "speechRecognitionStart",
        "recordingRequest",
        "recordingStatus",
        "speechPlaybackComplete",
        "memoryUpdated",
    }
)


class ResponseParseError(ValueError):
    """Raised when a server message cannot be turned into a response object."""


@dataclass(frozen=True)
class UserCharacter:
    """The user taking part in the chat."""

    id: str
    name: str


@dataclass(frozen=True)
class AiCharacter:
    """An AI character known to the server."""

    id: str
    name: str
    creator_notes: str = ""
    explicit_content: bool = False
    favorite: bool = False


class ServiceType(enum.Enum):
    """Kinds of service the server can run for a chat."""

    TEXT_GEN = "textGen"
    SPEECH_TO_TEXT = "speechToText"
    TEXT_TO_SPEECH = "textToSpeech"


@dataclass(frozen=True)
class ServiceData:
    """A service that is active for a chat."""

    service_type: ServiceType
    service_name: str
    service_id: str


class ResponseType(enum.Enum):
    WELCOME = enum.auto()
    CHARACTER_LIST = enum.auto()
    CHARACTER_LOADED = enum.auto()
    CHAT_STARTED = enum.auto()
    CHAT_MESSAGE = enum.auto()
    CHAT_UPDATE = enum.auto()
    SPEECH_TRANSCRIPTION = enum.auto()
    ERROR = enum.auto()


class ChatMessageType(enum.Enum):
    MESSAGE_START = enum.auto()
    MESSAGE_CHUNK = enum.auto()
    MESSAGE_END = enum.auto()
    MESSAGE_CANCELLED = enum.auto()


class TranscriptionState(enum.Enum):
    PARTIAL = enum.auto()
    END = enum.auto()
    CANCELLED = enum.auto()


@dataclass(frozen=True)
class Welcome:
    response_type: ClassVar[ResponseType] = ResponseType.WELCOME
    user: UserCharacter


@dataclass(frozen=True)
class CharacterList:
    response_type: ClassVar[ResponseType] = ResponseType.CHARACTER_LIST
    characters: list[AiCharacter] = field(default_factory=list)


@dataclass(frozen=True)
class CharacterLoaded:
    response_type: ClassVar[ResponseType] = ResponseType.CHARACTER_LOADED
    character_id: str
    enable_thinking_speech: bool


@dataclass(frozen=True)
class ChatStarted:
    response_type: ClassVar[ResponseType] = ResponseType.CHAT_STARTED
    user_id: str
    character_ids: list[str]
    services: dict[ServiceType, ServiceData]
    chat_id: str
    session_id: str


@dataclass(frozen=True)
class ChatMessageStart:
    response_type: ClassVar[ResponseType] = ResponseType.CHAT_MESSAGE
    message_type: ClassVar[ChatMessageType] = ChatMessageType.MESSAGE_START
    message_id: str
    sender_id: str
    session_id: str


@dataclass(frozen=True)
class ChatMessageChunk:
    response_type: ClassVar[ResponseType] = ResponseType.CHAT_MESSAGE
    message_type: ClassVar[ChatMessageType] = ChatMessageType.MESSAGE_CHUNK
    message_id: str
    sender_id: str
    session_id: str
    start_index: int
    end_index: int
    text: str
    audio_url: str


@dataclass(frozen=True)
class ChatMessageEnd:
    response_type: ClassVar[ResponseType] = ResponseType.CHAT_MESSAGE
    message_type: ClassVar[ChatMessageType] = ChatMessageType.MESSAGE_END
    message_id: str
    sender_id: str
    session_id: str


@dataclass(frozen=True)
class ChatMessageCancelled:
    response_type: ClassVar[ResponseType] = ResponseType.CHAT_MESSAGE
    message_type: ClassVar[ChatMessageType] = ChatMessageType.MESSAGE_CANCELLED
    message_id: str
    session_id: str


@dataclass(frozen=True)
class ChatUpdate:
    response_type: ClassVar[ResponseType] = ResponseType.CHAT_UPDATE
    message_id: str
    sender_id: str
    text: str
    session_id: str


@dataclass(frozen=True)
class SpeechTranscription:
    response_type: ClassVar[ResponseType] = ResponseType.SPEECH_TRANSCRIPTION
    text: str
    state: TranscriptionState


@dataclass(frozen=True)
class ErrorResponse:
    response_type: ClassVar[ResponseType] = ResponseType.ERROR
    message: str
    details: str


def is_ignored(message_type: str) -> bool:
    """Return True if messages of this type are safe to ignore."""
    return message_type in IGNORED_MESSAGE_TYPES


def _field(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ResponseParseError(f"missing field {key!r}") from None


def _string(data: Mapping[str, Any], key: str) -> str:
    value = _field(data, key)
    if not isinstance(value, str):
        raise ResponseParseError(f"field {key!r} is not a string")
    return value


def _bool(data: Mapping[str, Any], key: str) -> bool:
    value = _field(data, key)
    if not isinstance(value, bool):
        raise ResponseParseError(f"field {key!r} is not a boolean")
    return value


def _int(data: Mapping[str, Any], key: str) -> int:
    value = _field(data, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ResponseParseError(f"field {key!r} is not a number")
    return int(value)


def _object(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = _field(data, key)
    if not isinstance(value, Mapping):
        raise ResponseParseError(f"field {key!r} is not an object")
    return value


def _array(data: Mapping[str, Any], key: str) -> list[Any]:
    value = _field(data, key)
    if not isinstance(value, (list, tuple)):
        raise ResponseParseError(f"field {key!r} is not an array")
    return list(value)


def _as_object(value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ResponseParseError("array element is not an object")
    return value


def _welcome(data: Mapping[str, Any]) -> Welcome:
    user = _object(data, "user")
    return Welcome(UserCharacter(_string(user, "id"), _string(user, "name")))


def _character_list(data: Mapping[str, Any]) -> CharacterList:
    characters = []
    for element in _array(data, "characters"):
        entry = _as_object(element)
        characters.append(
            AiCharacter(
                id=_string(entry, "id"),
                name=_string(entry, "name"),
                creator_notes=_string(entry, "creatorNotes") if "creatorNotes" in entry else "",
                explicit_content=(
                    _bool(entry, "explicitContent") if "explicitContent" in entry else False
                ),
                favorite=_bool(entry, "favorite") if "favorite" in entry else False,
            )
        )
    return CharacterList(characters)


def _character_loaded(data: Mapping[str, Any]) -> CharacterLoaded:
    character = _object(data, "character")
    return CharacterLoaded(_string(character, "id"), _bool(character, "enableThinkingSpeech"))


def _chat_started(data: Mapping[str, Any]) -> ChatStarted:
    user = _object(data, "user")
    character_ids = [_string(_as_object(e), "id") for e in _array(data, "characters")]
    services_map = _object(data, "services")
    services = {}
    for service_type in ServiceType:
        if service_type.value in services_map:
            entry = _object(services_map, service_type.value)
            services[service_type] = ServiceData(
                service_type, _string(entry, "serviceName"), _string(entry, "serviceId")
            )
    return ChatStarted(
        user_id=_string(user, "id"),
        character_ids=character_ids,
        services=services,
        chat_id=_string(data, "chatId"),
        session_id=_string(data, "sessionId"),
    )


def _reply_start(data: Mapping[str, Any]) -> ChatMessageStart:
    return ChatMessageStart(
        _string(data, "messageId"), _string(data, "senderId"), _string(data, "sessionId")
    )


def _reply_chunk(data: Mapping[str, Any]) -> ChatMessageChunk:
    return ChatMessageChunk(
        message_id=_string(data, "messageId"),
        sender_id=_string(data, "senderId"),
        session_id=_string(data, "sessionId"),
        start_index=_int(data, "startIndex"),
        end_index=_int(data, "endIndex"),
        text=_string(data, "text"),
        audio_url=_string(data, "audioUrl"),
    )


def _reply_end(data: Mapping[str, Any]) -> ChatMessageEnd:
    return ChatMessageEnd(
        _string(data, "messageId"), _string(data, "senderId"), _string(data, "sessionId")
    )


def _reply_cancelled(data: Mapping[str, Any]) -> ChatMessageCancelled:
    return ChatMessageCancelled(_string(data, "messageId"), _string(data, "sessionId"))


def _chat_update(data: Mapping[str, Any]) -> ChatUpdate:
    return ChatUpdate(
        message_id=_string(data, "messageId"),
        sender_id=_string(data, "senderId"),
        text=_string(data, "text"),
        session_id=_string(data, "sessionId"),
    )


def _speech_partial(data: Mapping[str, Any]) -> SpeechTranscription:
    return SpeechTranscription(_string(data, "text"), TranscriptionState.PARTIAL)


def _speech_end(data: Mapping[str, Any]) -> SpeechTranscription:
    if "text" in data:
        return SpeechTranscription(_string(data, "text"), TranscriptionState.END)
    return SpeechTranscription("", TranscriptionState.CANCELLED)


def _error(data: Mapping[str, Any]) -> ErrorResponse:
    return ErrorResponse(_string(data, "message"), _string(data, "details"))


_PARSERS = {
    "welcome": _welcome,
    "charactersListLoaded": _character_list,
    "characterLoaded": _character_loaded,
    "chatStarted": _chat_started,
    "replyStart": _reply_start,
    "replyChunk": _reply_chunk,
    "replyEnd": _reply_end,
    "replyCancelled": _reply_cancelled,
    "update": _chat_update,
    "speechRecognitionPartial": _speech_partial,
    "speechRecognitionEnd": _speech_end,
    "error": _error,
}


def parse_response(data: Mapping[str, Any]):
    """Turn a raw server message into its response object.

    Raises ResponseParseError for unknown types or malformed messages.
    """
    message_type = _string(data, "$type")
    parser = _PARSERS.get(message_type)
    if parser is None:
        raise ResponseParseError(f"unsupported response type: {message_type}")
    return parser(data)