"""Streams microphone input to the server over an audio socket."""

from __future__ import annotations

import enum
import logging
from typing import Any, Protocol

from voxtaclient.responses import ServiceType
from voxtaclient.session import ClientState, Event

_log = logging.getLogger("voxtaclient")

_CLIENT_NOT_READY = (
    ClientState.DISCONNECTED,
    ClientState.ATTEMPTING_TO_CONNECT,
    ClientState.TERMINATED,
)


class MicrophoneState(enum.Enum):
    """Stages of the audio socket and the capture device behind it."""

    NOT_CONNECTED = enum.auto()
    INITIALIZING = enum.auto()
    READY = enum.auto()
    IN_USE = enum.auto()
    CLOSED = enum.auto()


class AudioSocket(Protocol):
    """What the audio input needs from a socket to the server.

    connected_event, connection_error_event and closed_event are events with a
    subscribe method.
    """

    connected_event: Any
    connection_error_event: Any
    closed_event: Any

    def connect(self) -> None: ...

    def close(self) -> None: ...

    def send(self, text: str) -> None: ...


class CaptureDevice(Protocol):
    """What the audio input needs from a microphone capture device."""

    decibels: float
    device_name: str

    def register_socket(self, socket: AudioSocket, buffer_ms: int) -> None: ...

    def try_initialize_voice_capture(self, sample_rate: int, channels: int) -> bool: ...

    def try_start_voice_capture(self) -> bool: ...

    def stop_capture(self) -> None: ...

    def shutdown(self) -> None: ...


def format_header(sample_rate: int, channels: int, buffer_ms: int) -> str:
    """The format description sent to the server before any audio."""
    return (
        '{"contentType":"audio/wav",'
        f'"sampleRate":{sample_rate},"channels":{channels},'
        f'"bitsPerSample": 16,"bufferMilliseconds":{buffer_ms}}}'
    )


class AudioInput:
    """Connects the capture device to the server's audio socket."""

    def __init__(self, client: Any, socket_factory: Any, capture_device: CaptureDevice) -> None:
        self._client = client
        self._socket_factory = socket_factory
        self._capture = capture_device
        self._socket: AudioSocket | None = None
        self._state = MicrophoneState.NOT_CONNECTED
        self._buffer_ms = 0
        self._sample_rate = 0
        self._input_channels = 0
        self.initialized = Event()

    @property
    def state(self) -> MicrophoneState:
        return self._state

    @property
    def is_recording(self) -> bool:
        return self._state is MicrophoneState.IN_USE

    @property
    def input_decibels(self) -> float:
        return self._capture.decibels

    @property
    def input_device_name(self) -> str:
        return self._capture.device_name

    def initialize_socket(self, buffer_ms: int = 200, sample_rate: int = 16000,
                          input_channels: int = 1) -> None:
        """Open the audio socket to the server the client is connected to.

        Raises RuntimeError if the client is not connected yet.
        """
        if self._state is not MicrophoneState.NOT_CONNECTED:
            _log.warning("Audio socket was already initialized, skipping new initialize attempt.")
            return
        if self._client.state in _CLIENT_NOT_READY:
            raise RuntimeError(
                "audio socket cannot be initialized while the client is not ready")

        self._buffer_ms = buffer_ms
        self._sample_rate = sample_rate
        self._input_channels = input_channels
        self._state = MicrophoneState.INITIALIZING
        socket = self._socket_factory(self._client.server_address, self._client.server_port)
        self._socket = socket
        socket.connected_event.subscribe(self.on_socket_connected)
        socket.connection_error_event.subscribe(self.on_socket_connection_error)
        socket.closed_event.subscribe(self.on_socket_closed)
        socket.connect()

    def close_socket(self) -> None:
        """Shut down the capture device and close the socket."""
        _log.warning("Closing socket & shutting down voice capture gracefully.")
        self._capture.shutdown()
        if self._socket is not None:
            self._socket.close()
        self._state = MicrophoneState.CLOSED

    def start_streaming(self) -> None:
        """Start capturing the microphone and streaming it to the server.

        Raises RuntimeError if no chat is ongoing, speech-to-text is not
        active, or the capture device cannot start.
        """
        if self._state is not MicrophoneState.READY:
            _log.warning("Attempting to start streaming audio input, but the socket was not "
                         "ready, aborting attempt.")
            return
        chat = self._client.chat_session
        if chat is None:
            raise RuntimeError("cannot stream audio input, no chat is ongoing")
        if ServiceType.SPEECH_TO_TEXT not in chat.services:
            raise RuntimeError("cannot stream audio input, no speech-to-text service is running")
        if not self._capture.try_start_voice_capture():
            raise RuntimeError("failed to start the audio capture")
        _log.info("Started voice capture via audio input.")
        self._state = MicrophoneState.IN_USE

    def stop_streaming(self) -> None:
        """Stop capturing; the socket stays ready for the next stream."""
        if self._state is MicrophoneState.IN_USE:
            _log.info("Stopping voice capture via audio input.")
        else:
            _log.warning("Attempted to stop streaming audio input, but it is not in use.")
        self._capture.stop_capture()
        self._state = MicrophoneState.READY

    def on_socket_connected(self) -> None:
        _log.info("Successfully connected audio socket (microphone input) to the server.")
        self._initialize_voice_capture()

    def on_socket_connection_error(self, error: str) -> None:
        _log.error("Audio input socket error: %s. Closing socket.", error)
        self.close_socket()

    def on_socket_closed(self, status_code: int, reason: str, was_clean: bool) -> None:
        if was_clean:
            _log.info("Audio input socket was closed. Reason: %s Code: %s", reason, status_code)
        else:
            _log.warning("Audio socket was improperly closed because of reason: %s Code: %s",
                         reason, status_code)
        self._state = MicrophoneState.CLOSED

    def _initialize_voice_capture(self) -> None:
        header = format_header(self._sample_rate, self._input_channels, self._buffer_ms)
        _log.info("Sending audio input format data to the server: %s", header)
        assert self._socket is not None
        self._socket.send(header)
        self._capture.register_socket(self._socket, self._buffer_ms)
        if self._capture.try_initialize_voice_capture(self._sample_rate, self._input_channels):
            _log.info("Voice capture ready & hooked up to the server audio socket.")
            self._state = MicrophoneState.READY
            self.initialized.emit()
        else:
            _log.error("Voice capture failed to initialize. Closing websocket.")
            self.close_socket()