"""Client that drives a chat with the Voxta server over its message hub."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol

from voxtaclient.requests import (
    authenticate_request,
    load_character_request,
    load_characters_list_request,
    notify_audio_playback_complete_request,
    send_user_message_request,
    start_chat_request,
)
from voxtaclient.responses import (
    AiCharacter,
    CharacterList,
    CharacterLoaded,
    ChatMessageCancelled,
    ChatMessageChunk,
    ChatMessageEnd,
    ChatMessageStart,
    ChatStarted,
    ChatUpdate,
    ErrorResponse,
    ResponseParseError,
    ServiceType,
    SpeechTranscription,
    TranscriptionState,
    UserCharacter,
    Welcome,
    is_ignored,
    parse_response,
)
from voxtaclient.session import ChatMessage, ChatSession, ClientState, Event

_log = logging.getLogger("voxtaclient")

RECEIVE_MESSAGE_EVENT_NAME = "ReceiveMessage"
SEND_MESSAGE_EVENT_NAME = "SendMessage"
LOCALHOST = "localhost"
MAX_PORT = 65535


class Hub(Protocol):
    """What the client needs from a hub connection."""

    def on(self, event_name: str, handler: Callable[[Sequence[Any]], Any]) -> None: ...

    def on_connected(self, handler: Callable[[], Any]) -> None: ...

    def on_connection_error(self, handler: Callable[[str], Any]) -> None: ...

    def on_closed(self, handler: Callable[[], Any]) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def invoke(
        self, method: str, message: Mapping[str, Any], on_result: Callable[[str | None], Any]
    ) -> None: ...


HubFactory = Callable[[str], Hub]


def _is_valid_address(address: str) -> bool:
    if address.lower() == LOCALHOST:
        return True
    try:
        ipaddress.IPv4Address(address)
    except ValueError:
        return False
    return True


class VoxtaClient:
    """Keeps track of the conversation with the server and reacts to its messages."""

    def __init__(self, hub_factory: HubFactory) -> None:
        self._hub_factory = hub_factory
        self._hub: Hub | None = None
        self._state = ClientState.DISCONNECTED
        self._address = ""
        self._port = 0
        self._user: UserCharacter | None = None
        self._characters: list[AiCharacter] = []
        self._chat_session: ChatSession | None = None
        self._playback_handlers: dict[str, Any] = {}
        self.a2f_handler: Any = None
        self.voice_input: Any = None

        self.state_changed = Event()
        self.character_registered = Event()
        self.chat_session_started = Event()
        self.char_message_added = Event()
        self.char_message_removed = Event()
        self.speech_transcribed_partial = Event()
        self.speech_transcribed_complete = Event()
        self.audio_playback_registered = Event()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def server_address(self) -> str:
        return self._address

    @property
    def server_port(self) -> int:
        return self._port

    @property
    def user(self) -> UserCharacter | None:
        return self._user

    @property
    def characters(self) -> tuple[AiCharacter, ...]:
        return tuple(self._characters)

    @property
    def chat_session(self) -> ChatSession | None:
        return self._chat_session

    def connect(self, address: str, port: int) -> None:
        """Open the hub connection to the server.

        Raises ValueError for an impossible port or address.
        """
        if self._state is not ClientState.DISCONNECTED:
            _log.warning(
                "VoxtaClient is already in state: %s, ignoring new connection attempt",
                self._state.name)
            return
        if port < 0 or port > MAX_PORT:
            raise ValueError(f"port {port} is an impossible number")
        if not address:
            raise ValueError("the address to connect to is empty")
        if not _is_valid_address(address):
            raise ValueError(f"address {address} is not a valid address")

        self._address = address
        self._port = port
        self._hub = self._hub_factory(f"http://{address}:{port}/hub")
        self._listen_to_server()
        self._hub.start()
        self._set_state(ClientState.ATTEMPTING_TO_CONNECT)
        _log.info("Starting Voxta client")

    def disconnect(self, silent: bool = False) -> None:
        """Stop the hub connection; unless silent, mark the client as terminated."""
        if self._state is ClientState.DISCONNECTED:
            _log.warning("VoxtaClient is currently not connected, ignoring disconnect attempt")
            return
        if not silent:
            self._set_state(ClientState.TERMINATED)
        if self._hub is not None:
            self._hub.stop()

    def start_chat_with_character(self, character_id: str) -> None:
        """Ask the server to load a character so a chat can start with it.

        Raises KeyError if the character is not in the current list.
        """
        if self.get_character(character_id) is None:
            raise KeyError(character_id)
        self._send(load_character_request(character_id))
        self._set_state(ClientState.STARTING_CHAT)

    def send_user_input(self, text: str) -> None:
        """Send what the user said to the chat.

        Raises RuntimeError unless the server is waiting for the user.
        """
        if self._state is not ClientState.WAITING_FOR_USER_RESPONSE or self._chat_session is None:
            raise RuntimeError(
                f"cannot send user input while the client is {self._state.name}")
        self._send(send_user_message_request(self._chat_session.session_id, text))
        self._set_state(ClientState.GENERATING_REPLY)

    def notify_audio_playback_complete(self, message_id: str) -> None:
        """Tell the server that playback of a message has finished.

        Raises RuntimeError if no chat is ongoing.
        """
        if self._chat_session is None:
            raise RuntimeError("no chat is ongoing")
        _log.info("Marking audio playback of message %s complete.", message_id)
        self._send(notify_audio_playback_complete_request(self._chat_session.session_id, message_id))
        self._set_state(ClientState.WAITING_FOR_USER_RESPONSE)

    def register_playback_handler(self, character_id: str, handler: Any) -> bool:
        """Register the audio playback handler of a character; False if refused."""
        if (self._chat_session is not None
                and ServiceType.SPEECH_TO_TEXT not in self._chat_session.services):
            _log.warning(
                "Tried to register an AudioPlayback handler for character %s, but no STT "
                "service is active on the server.", character_id)
            return False
        if character_id in self._playback_handlers:
            _log.warning(
                "An AudioPlayback handler for character %s already exists, skipping "
                "registration.", character_id)
            return False

        self._playback_handlers[character_id] = handler
        _log.info("AudioPlayback handler for character %s registered successfully.", character_id)
        lip_sync_type = getattr(handler, "lip_sync_type", None)
        if getattr(lip_sync_type, "value", None) == "Audio2Face" and self.a2f_handler is not None:
            _log.info("AudioPlayback handler of character %s requires A2F, initializing.",
                      character_id)
            self.a2f_handler.try_initialize()
        self.audio_playback_registered.emit(handler, character_id)
        return True

    def unregister_playback_handler(self, character_id: str) -> None:
        """Forget the playback handler of a character, if any."""
        self._playback_handlers.pop(character_id, None)
        _log.info("AudioPlayback handler for character %s unregistered.", character_id)

    def get_playback_handler(self, character_id: str) -> Any:
        """Return the playback handler registered for a character, or None."""
        return self._playback_handlers.get(character_id)

    def get_character(self, character_id: str) -> AiCharacter | None:
        """Return the character with this id from the current list, or None."""
        return next((c for c in self._characters if c.id == character_id), None)

    def get_chat_message(self, message_id: str) -> ChatMessage | None:
        """Return the message with this id from the ongoing chat, or None."""
        if self._chat_session is None:
            return None
        return self._chat_session.find_message(message_id)

    def on_received_message(self, arguments: Sequence[Any]) -> bool:
        """Handle a message pushed by the hub; True if it was handled."""
        if self._state in (ClientState.DISCONNECTED, ClientState.TERMINATED):
            _log.warning("Tried to process a message with the connection already severed.")
            return False
        if not arguments or not isinstance(arguments[0], Mapping):
            _log.error("Received invalid message from server.")
            return False
        if self.handle_response(arguments[0]):
            _log.info("Server message handled successfully.")
            return True
        _log.warning("Response handler reported a failure. Type: %s",
                     arguments[0].get("$type"))
        return False

    def on_connected(self) -> None:
        _log.info("VoxtaClient connected successfully")
        self._send(authenticate_request())

    def on_connection_error(self, error: str) -> None:
        _log.error("VoxtaClient connection has encountered error: %s.", error)
        self.disconnect()

    def on_closed(self) -> None:
        _log.warning("VoxtaClient connection has been closed.")
        self.disconnect()

    def on_message_sent(self, error: str | None) -> None:
        if error:
            _log.error("Failed to send message due to error: %s.", error)

    def handle_response(self, data: Mapping[str, Any]) -> bool:
        """Apply one server message to the client; True if it was handled."""
        message_type = data.get("$type")
        if isinstance(message_type, str) and is_ignored(message_type):
            _log.info("Ignoring message of type: %s", message_type)
            return True
        try:
            response = parse_response(data)
        except ResponseParseError as exc:
            _log.error("Failed to deserialize message of type %s: %s", message_type, exc)
            return False

        handlers: dict[type, Callable[[Any], bool]] = {
            Welcome: self._handle_welcome,
            CharacterList: self._handle_character_list,
            CharacterLoaded: self._handle_character_loaded,
            ChatStarted: self._handle_chat_started,
            ChatMessageStart: self._handle_chat_message,
            ChatMessageChunk: self._handle_chat_message,
            ChatMessageEnd: self._handle_chat_message,
            ChatMessageCancelled: self._handle_chat_message,
            ChatUpdate: self._handle_chat_update,
            SpeechTranscription: self._handle_speech_transcription,
            ErrorResponse: self._handle_error,
        }
        handler = handlers.get(type(response))
        if handler is None:
            _log.error("No handler available for a message of type: %s", message_type)
            return False
        return handler(response)

    def _listen_to_server(self) -> None:
        assert self._hub is not None
        self._hub.on(RECEIVE_MESSAGE_EVENT_NAME, self.on_received_message)
        self._hub.on_connected(self.on_connected)
        self._hub.on_connection_error(self.on_connection_error)
        self._hub.on_closed(self.on_closed)

    def _send(self, message: Mapping[str, Any]) -> None:
        if self._hub is None:
            raise RuntimeError("the client is not connected")
        self._hub.invoke(SEND_MESSAGE_EVENT_NAME, message, self.on_message_sent)

    def _set_state(self, new_state: ClientState) -> None:
        _log.info("Marking the current VoxtaClient state as: %s", new_state.name)
        self._state = new_state
        self.state_changed.emit(new_state)

    def _handle_welcome(self, response: Welcome) -> bool:
        self._user = response.user
        _log.info("Authenticated with Voxta Server. Welcome %s!", response.user.name)
        self._set_state(ClientState.AUTHENTICATED)
        self._send(load_characters_list_request())
        return True

    def _handle_character_list(self, response: CharacterList) -> bool:
        self._characters = []
        for character in response.characters:
            self._characters.append(character)
            self.character_registered.emit(character)
        self._set_state(ClientState.IDLE)
        return True

    def _handle_character_loaded(self, response: CharacterLoaded) -> bool:
        character = self.get_character(response.character_id)
        if character is None:
            _log.error("Loaded a character with id %s that isn't in the list.",
                       response.character_id)
            return False
        self._send(start_chat_request(character))
        return True

    def _handle_chat_started(self, response: ChatStarted) -> bool:
        chat_characters = [c for c in self._characters if c.id in response.character_ids]
        if ServiceType.SPEECH_TO_TEXT not in response.services:
            _log.info("No valid SpeechToText service is active on the server.")
        if ServiceType.TEXT_TO_SPEECH not in response.services:
            _log.info("No valid TextToSpeech service is active on the server.")
        if ServiceType.TEXT_GEN not in response.services:
            _log.error("No valid TextGen service is active on the server, aborting creation "
                       "of chat session.")
            return False
        self._chat_session = ChatSession(
            chat_characters, response.chat_id, response.session_id, dict(response.services))
        self.chat_session_started.emit(self._chat_session)
        self._set_state(ClientState.GENERATING_REPLY)
        return True

    def _handle_chat_message(self, response: Any) -> bool:
        session = self._chat_session
        if session is None:
            _log.error("Received a chat message, but there's no ongoing chat.")
            return False

        if isinstance(response, ChatMessageStart):
            session.messages.append(ChatMessage(response.message_id, response.sender_id))
            _log.info("Registered start of message with id: %s", response.message_id)
        elif isinstance(response, ChatMessageChunk):
            message = session.find_message(response.message_id)
            if message is None:
                _log.warning("Received a messageChunk without the start of the message. "
                             "messageId: %s", response.message_id)
            else:
                # The server ends a chunk right after the period, so separate chunks by a space.
                text = response.text if not message.text_content else " " + response.text
                message.append_content(text, response.audio_url)
                _log.info("Updated contents of message with id: %s", response.message_id)
        elif isinstance(response, ChatMessageEnd):
            self._handle_message_end(session, response)
        elif isinstance(response, ChatMessageCancelled):
            message = session.find_message(response.message_id)
            if message is None:
                _log.warning("Received a cancellation for unknown message %s.",
                             response.message_id)
                return False
            _log.info("Message with id %s cancelled, removing it from the history.",
                      response.message_id)
            self.char_message_removed.emit(message)
            session.remove_message(response.message_id)
        return True

    def _handle_message_end(self, session: ChatSession, response: ChatMessageEnd) -> None:
        message = session.find_message(response.message_id)
        if message is None:
            _log.warning("Received a messageEnd without the start of the message. "
                         "messageId: %s", response.message_id)
            return
        character = self.get_character(response.sender_id)
        if character is None:
            _log.warning("Received a messageEnd for an unregistered character. "
                         "senderId: %s messageId: %s", response.sender_id, response.message_id)
            return
        _log.info("Message with id %s complete. Speaker: %s Contents: %s",
                  response.message_id, character.name, message.text_content)
        handler = self._playback_handlers.get(character.id)
        if handler is not None:
            self._set_state(ClientState.AUDIO_PLAYBACK)
            handler.playback_message(character, message)
        elif message.audio_urls:
            _log.warning("Audio was generated for character %s but no playback handler was "
                         "found.", character.name)
            self.notify_audio_playback_complete(message.message_id)
        else:
            self._set_state(ClientState.WAITING_FOR_USER_RESPONSE)
        self.char_message_added.emit(character, message)

    def _handle_chat_update(self, response: ChatUpdate) -> bool:
        session = self._chat_session
        if session is None:
            _log.error("Received a chat update, but there's no ongoing chat.")
            return False
        if response.session_id != session.session_id:
            _log.warning("Received chat update for a different session. SessionId: %s",
                         response.session_id)
            return True
        if session.find_message(response.message_id) is not None:
            _log.error("Received a chat update but message %s already exists.",
                       response.message_id)
            return False
        if self._user is None or self._user.id != response.sender_id:
            _log.error("Received chat update for an AI character. Sender: %s",
                       response.sender_id)
            return False
        _log.info("Adding user message %s to history.", response.message_id)
        message = ChatMessage(response.message_id, response.sender_id)
        message.append_content(response.text, "")
        session.messages.append(message)
        self.char_message_added.emit(self._user, message)
        return True

    def _handle_speech_transcription(self, response: SpeechTranscription) -> bool:
        if response.state is TranscriptionState.PARTIAL:
            _log.info("Partial speech transcription: %s", response.text)
            self.speech_transcribed_partial.emit(response.text)
        elif response.state is TranscriptionState.END:
            # The final transcription is sometimes sent more than once; only the first counts.
            if self._state is ClientState.WAITING_FOR_USER_RESPONSE:
                _log.info("Final speech transcription: %s", response.text)
                self.speech_transcribed_complete.emit(response.text)
                self.send_user_input(response.text)
        return True

    def _handle_error(self, response: ErrorResponse) -> bool:
        _log.error("Received error from the server. ErrorMessage: %s, ErrorDetails: %s",
                   response.message, response.details)
        return True