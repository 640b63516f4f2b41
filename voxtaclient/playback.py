"""Plays the audio chunks of a character's chat messages one after another."""

from __future__ import annotations

import enum
import logging
import weakref
from collections.abc import Callable
from typing import Any, Protocol

from voxtaclient.chunk import ChunkState, LipSyncType, MessageChunkAudioContainer
from voxtaclient.session import ChatMessage, Event

_log = logging.getLogger("voxtaclient")

_NOT_ADVANCEABLE = (ChunkState.BUSY, ChunkState.READY_FOR_PLAYBACK, ChunkState.CLEANED_UP)


class PlaybackState(enum.Enum):
    """Whether a playback is waiting for a chunk, playing one, or finished."""

    IDLE = enum.auto()
    PLAYING = enum.auto()
    DONE = enum.auto()


class Player(Protocol):
    """What the playback needs from the component that outputs sound."""

    def set_sound(self, sound: Any) -> None: ...

    def play(self) -> None: ...

    def play_lip_sync(self, lip_sync_data: Any) -> None: ...

    def stop_lip_sync(self) -> None: ...


ChunkFactory = Callable[
    [str, LipSyncType, Any, Callable[[Any], None], int], Any
]


class AudioPlayback:
    """Downloads and plays, in order, the voice lines of one character's messages.

    The player must call on_audio_playback_finished when a sound it was given
    has finished playing.
    """

    def __init__(
        self,
        client: Any,
        character_id: str,
        lip_sync_type: LipSyncType,
        player: Player,
        chunk_factory: ChunkFactory | None = None,
    ) -> None:
        self._client = client
        self._character_id = character_id
        self._lip_sync_type = lip_sync_type
        self._player = player
        self._chunk_factory = chunk_factory or MessageChunkAudioContainer
        self._host = ""
        self._port = 0
        self._chunks: list[Any] = []
        self._current_index = 0
        self._message_id: str | None = None
        self._state = PlaybackState.DONE

        self.playback_finished = Event()
        self.custom_playback_ready = Event()

    @property
    def character_id(self) -> str:
        return self._character_id

    @property
    def lip_sync_type(self) -> LipSyncType:
        return self._lip_sync_type

    @property
    def state(self) -> PlaybackState:
        return self._state

    @property
    def current_message_id(self) -> str | None:
        return self._message_id

    @property
    def current_index(self) -> int:
        return self._current_index

    @property
    def chunks(self) -> tuple[Any, ...]:
        return tuple(self._chunks)

    def initialize(self) -> None:
        """Register with the client and remember where audio is downloaded from.

        Raises RuntimeError if the client refuses the registration.
        """
        if not self._client.register_playback_handler(self._character_id, self):
            raise RuntimeError(
                f"failed to register a playback handler for character {self._character_id}")
        self._host = self._client.server_address
        self._port = self._client.server_port
        _log.info("Initialized audio playback for character %s. Audio will be downloaded "
                  "from: http://%s:%s/", self._character_id, self._host, self._port)

    def playback_message(self, sender: Any, message: ChatMessage) -> None:
        """Start playing the audio of a message, if it was sent by this character."""
        if sender.id != self._character_id:
            return
        self.cleanup()
        self._message_id = message.message_id
        a2f_handler = getattr(self._client, "a2f_handler", None)
        on_change = self._chunk_callback()
        self._chunks = [
            self._chunk_factory(
                f"http://{self._host}:{self._port}{url}",
                self._lip_sync_type,
                a2f_handler,
                on_change,
                index,
            )
            for index, url in enumerate(message.audio_urls)
        ]
        self._state = PlaybackState.IDLE
        if not self._chunks:
            _log.warning("Tried to play audio for the message, but no audio data was found. "
                         "Is the TTS service active?")
            self._complete_current_chunk()
            return
        _log.info("Started playback for message %s of sender %s, %s audio chunks will be "
                  "played in sequence.", self._message_id, self._character_id,
                  len(self._chunks))
        self._chunks[0].advance()

    def mark_custom_playback_complete(self, guid: str) -> None:
        """Report that custom playback of the current chunk has finished.

        Raises RuntimeError if no chunk is being played and ValueError if the
        guid is not the one of the current chunk.
        """
        if self._current_index >= len(self._chunks):
            raise RuntimeError("no audio chunk is currently being played")
        chunk = self._chunks[self._current_index]
        expected = getattr(chunk.lip_sync_data, "guid", None)
        if expected != guid:
            raise ValueError(
                f"audio chunks cannot be completed out of order: expected {expected}, "
                f"received {guid}")
        self._state = PlaybackState.IDLE
        _log.info("Playback of audio chunk with guid %s is marked as complete.", guid)
        self._complete_current_chunk()

    def on_audio_playback_finished(self) -> None:
        """Called by the player when the sound of the current chunk has finished."""
        if self._lip_sync_type is LipSyncType.CUSTOM:
            # Custom playback may not go through the player; it is completed explicitly.
            return
        if not self._chunks:
            _log.warning("Audio playback finished, but no message is being played.")
            return
        _log.info("Automatic playback of audio chunk index %s is complete.",
                  self._current_index)
        self._state = PlaybackState.IDLE
        self._complete_current_chunk()

    def on_chunk_state_change(self, chunk: Any) -> None:
        """React to a chunk finishing one of its preparation steps."""
        if self._state is PlaybackState.DONE:
            _log.error("Audio playback was finished, but a chunk was still underway, "
                       "discarding.")
            return
        if chunk.state is ChunkState.READY_FOR_PLAYBACK and self._state is PlaybackState.IDLE:
            self._play_current_chunk()
        if chunk.state not in _NOT_ADVANCEABLE:
            chunk.advance()
        for following in self._chunks[chunk.index + 1:chunk.index + 2]:
            if following.state not in _NOT_ADVANCEABLE:
                following.advance()

    def cleanup(self) -> None:
        """Drop all chunks and forget the current message."""
        _log.info("Cleaning up audio for message with id: %s.", self._message_id)
        self._message_id = None
        self._current_index = 0
        self._state = PlaybackState.DONE
        for chunk in self._chunks:
            chunk.cleanup()
        self._chunks = []

    def end_play(self) -> None:
        """Unregister from the client and stop any lip-sync that is running."""
        self._client.unregister_playback_handler(self._character_id)
        _log.info("Removed audio playback handler for character: %s", self._character_id)
        if self._lip_sync_type is LipSyncType.AUDIO2FACE:
            self._player.stop_lip_sync()

    def _chunk_callback(self) -> Callable[[Any], None]:
        owner = weakref.ref(self)

        def on_change(chunk: Any) -> None:
            playback = owner()
            if playback is None:
                _log.warning("Received a message chunk status update, but the playback was "
                             "already destroyed.")
                return
            playback.on_chunk_state_change(chunk)

        return on_change

    def _play_current_chunk(self) -> None:
        if self._state is not PlaybackState.IDLE:
            _log.error("Tried to play an audio chunk but playback is currently not idle.")
            return
        chunk = self._chunks[self._current_index]
        if chunk.state is not ChunkState.READY_FOR_PLAYBACK:
            return
        self._state = PlaybackState.PLAYING
        lip_sync_type = chunk.lip_sync_type
        if lip_sync_type is not LipSyncType.CUSTOM:
            _log.info("Starting playback of audio chunk index %s with lipsync type %s.",
                      chunk.index, lip_sync_type.value)

        if lip_sync_type is LipSyncType.NONE:
            self._player.set_sound(chunk.sound_wave)
            self._player.play()
        elif lip_sync_type is LipSyncType.CUSTOM:
            guid = getattr(chunk.lip_sync_data, "guid", None)
            _log.info("Audio chunk with guid %s is ready for custom playback.", guid)
            self.custom_playback_ready.emit(chunk.raw_audio, chunk.sound_wave, guid)
        elif lip_sync_type is LipSyncType.OVR_LIP_SYNC:
            _log.error("OVR lipsync was selected, but it is not available.")
        else:
            self._player.set_sound(chunk.sound_wave)
            self._player.play_lip_sync(chunk.lip_sync_data)

    def _complete_current_chunk(self) -> None:
        if self._chunks:
            self._chunks[self._current_index].cleanup()
        self._current_index += 1
        if self._current_index < len(self._chunks):
            self._play_current_chunk()
            return
        _log.info("Playback of all audio chunks for message %s is finished.", self._message_id)
        self.playback_finished.emit(self._message_id)
        self.cleanup()