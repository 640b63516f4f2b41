"""Preparation of the audio and lip-sync data for one chunk of a chat message."""

from __future__ import annotations

import enum
import io
import json
import logging
import struct
import tempfile
import urllib.error
import urllib.request
import uuid
import wave
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

_log = logging.getLogger("voxtaclient")


class LipSyncType(enum.Enum):
    """Kind of lip-sync data generated for a voice line."""

    NONE = "None"
    CUSTOM = "Custom"
    OVR_LIP_SYNC = "OVRLipSync"
    AUDIO2FACE = "Audio2Face"


class ChunkState(enum.Enum):
    """Where a chunk is in its download, import and lip-sync pipeline."""

    IDLE = enum.auto()
    IDLE_DOWNLOADED = enum.auto()
    IDLE_PROCESSED = enum.auto()
    BUSY = enum.auto()
    READY_FOR_PLAYBACK = enum.auto()
    CLEANED_UP = enum.auto()


def _new_guid() -> str:
    return uuid.uuid4().hex.upper()


@dataclass
class A2FLipSyncData:
    """Blendshape curve weights produced by Audio2Face, one row per frame."""

    curve_weights: list[list[float]]
    fps: int
    guid: str = field(default_factory=_new_guid)


class A2FHandler(Protocol):
    """What the chunk needs from an Audio2Face REST client."""

    def is_busy(self) -> bool: ...

    def is_initializing(self) -> bool: ...

    def get_blendshapes(
        self,
        wav_name: str,
        cache_folder: str,
        json_name: str,
        callback: Callable[[str, bool], None],
    ) -> None: ...


Downloader = Callable[[str, Callable[[bool, "bytes | None"], None]], None]
AudioImporter = Callable[[bytes, Callable[[Any], None]], None]


@dataclass(frozen=True)
class _ImportedWave:
    sample_rate: int
    channels: int
    sample_width: int
    frames: bytes


def _http_download(url: str, done: Callable[[bool, bytes | None], None]) -> None:
    try:
        with urllib.request.urlopen(url) as response:
            content = response.read()
    except (urllib.error.URLError, OSError, ValueError):
        done(False, None)
        return
    done(True, content)


def _import_wave(raw: bytes, done: Callable[[Any], None]) -> None:
    try:
        with wave.open(io.BytesIO(raw), "rb") as reader:
            sound = _ImportedWave(
                sample_rate=reader.getframerate(),
                channels=reader.getnchannels(),
                sample_width=reader.getsampwidth(),
                frames=reader.readframes(reader.getnframes()),
            )
    except (wave.Error, EOFError, struct.error):
        done(None)
        return
    done(sound)


def _wave_data_span(raw: bytes) -> tuple[int, int] | None:
    """Return (offset, size) of the sample data of a RIFF/WAVE buffer, or None."""
    if len(raw) < 12 or raw[0:4] != b"RIFF" or raw[8:12] != b"WAVE":
        return None
    offset = 12
    has_format = False
    while offset + 8 <= len(raw):
        chunk_id = raw[offset:offset + 4]
        (size,) = struct.unpack_from("<I", raw, offset + 4)
        body = offset + 8
        if chunk_id == b"fmt ":
            if size < 16 or body + size > len(raw):
                return None
            has_format = True
        elif chunk_id == b"data":
            if not has_format:
                return None
            return body, min(size, len(raw) - body)
        offset = body + size + (size & 1)
    return None


def _parse_a2f_json(path: Path) -> A2FLipSyncData | None:
    try:
        content = json.loads(path.read_text(encoding="utf-8"))
        fps = int(content.get("exportFps", 0))
        num_frames = content.get("numFrames", 0)
        rows = [[float(value) for value in row] for row in content["weightMat"]]
    except (OSError, ValueError, TypeError, KeyError, AttributeError):
        return None
    _log.info("Successfully generated A2F lipsync data: %s frames of data.", num_frames)
    return A2FLipSyncData(rows, fps)


def generate_a2f_lip_sync_data(
    raw_audio: bytes,
    a2f_handler: A2FHandler,
    cache_folder: str | Path,
    callback: Callable[[A2FLipSyncData | None], None],
) -> None:
    """Cache the audio as a wav file, have Audio2Face build curves, and pass them on.

    The callback receives None when any step fails.
    """
    folder = Path(cache_folder)
    guid = _new_guid()
    wav_name = f"A2FCachedData{guid}.wav"
    json_name = f"A2FCachedData{guid}"
    json_path = folder / f"{json_name}_bsweight.json"

    span = _wave_data_span(raw_audio)
    if span is None:
        _log.error("Invalid wave header detected, cannot generate A2F lipsync data.")
        callback(None)
        return
    data_start, data_size = span
    try:
        folder.mkdir(parents=True, exist_ok=True)
        (folder / wav_name).write_bytes(raw_audio[:data_start + data_size])
    except OSError:
        _log.error("Failed to write wav data to disk for A2F processing.")
        callback(None)
        return

    def on_blendshapes(shapes_file: str, success: bool) -> None:
        if not success:
            _log.error("A2F failed to generate blendshape curves from the audiofile, aborting.")
            callback(None)
            return
        data = _parse_a2f_json(json_path)
        if data is None:
            _log.error("Failed to parse JSON A2F lipsync data.")
        callback(data)

    a2f_handler.get_blendshapes(wav_name, str(folder), json_name, on_blendshapes)


class MessageChunkAudioContainer:
    """Downloads, imports and lip-syncs the audio of one voice line, step by step.

    Each call to advance() starts the next step; on_state_changed is called with
    the container whenever a step finishes.
    """

    def __init__(
        self,
        url: str,
        lip_sync_type: LipSyncType,
        a2f_handler: A2FHandler | None,
        on_state_changed: Callable[[MessageChunkAudioContainer], None],
        index: int,
        downloader: Downloader | None = None,
        audio_importer: AudioImporter | None = None,
        cache_folder: str | Path | None = None,
    ) -> None:
        self._url = url
        self._lip_sync_type = lip_sync_type
        self._a2f_handler = a2f_handler
        self._on_state_changed = on_state_changed
        self._index = index
        self._downloader = downloader or _http_download
        self._audio_importer = audio_importer or _import_wave
        self._cache_folder = (
            Path(cache_folder) if cache_folder is not None
            else Path(tempfile.gettempdir()) / "A2FCache"
        )
        self._state = ChunkState.IDLE
        self._raw_audio = b""
        self._sound_wave: Any = None
        self._lip_sync_data: A2FLipSyncData | None = None
        self._awaiting_a2f = False

    @property
    def index(self) -> int:
        return self._index

    @property
    def lip_sync_type(self) -> LipSyncType:
        return self._lip_sync_type

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ChunkState:
        return self._state

    @property
    def raw_audio(self) -> bytes:
        return self._raw_audio

    @property
    def sound_wave(self) -> Any:
        return self._sound_wave

    @property
    def lip_sync_data(self) -> A2FLipSyncData | None:
        return self._lip_sync_data

    def advance(self) -> None:
        """Start the next preparation step for the current state."""
        if self._state is ChunkState.IDLE:
            self._download()
        elif self._state is ChunkState.IDLE_DOWNLOADED:
            self._process_audio()
        elif self._state is ChunkState.IDLE_PROCESSED:
            if self._lip_sync_type is LipSyncType.NONE:
                self._update_state(ChunkState.READY_FOR_PLAYBACK)
            else:
                self._generate_lip_sync()
        else:
            _log.warning(
                "Cannot continue the MessageChunkAudioContainer, check the current state "
                "before continuing. Current state: %s", self._state.name)

    def cleanup(self) -> None:
        """Drop all data and mark the container as permanently unusable."""
        _log.info("Cleaning up MessageChunkAudioContainer for index: %s", self._index)
        self._sound_wave = None
        self._lip_sync_data = None
        self._raw_audio = b""
        self._awaiting_a2f = False
        self._state = ChunkState.CLEANED_UP

    def retry_pending(self) -> bool:
        """Retry lip-sync generation that waits on Audio2Face initialisation.

        Returns True while the container is still waiting.
        """
        if not self._awaiting_a2f:
            return False
        if self._state is ChunkState.CLEANED_UP:
            self._awaiting_a2f = False
            _log.error("MessageChunkContainer was cleaned up before A2F finished initializing.")
            return False
        if self._a2f_handler.is_initializing():
            return True
        self._awaiting_a2f = False
        self._state = ChunkState.IDLE_PROCESSED
        self._generate_lip_sync()
        return self._awaiting_a2f

    def _download(self) -> None:
        self._update_state(ChunkState.BUSY)

        def on_downloaded(success: bool, content: bytes | None) -> None:
            if not success:
                _log.error("Failed to download audio data from: %s", self._url)
                return
            if self._state is not ChunkState.CLEANED_UP:
                self._raw_audio = content or b""
            _log.info("Successfully downloaded audio data from: %s", self._url)
            self._update_state(ChunkState.IDLE_DOWNLOADED)

        _log.info("Requesting audio data for index %s from url: %s", self._index, self._url)
        self._downloader(self._url, on_downloaded)

    def _process_audio(self) -> None:
        def on_imported(sound: Any) -> None:
            if sound is None:
                _log.error("Failed to process raw audio data into a sound wave.")
                return
            if self._state is not ChunkState.CLEANED_UP:
                self._sound_wave = sound
            _log.info("Processed raw audio data into a sound wave for index %s", self._index)
            self._update_state(ChunkState.IDLE_PROCESSED)

        _log.info("Processing raw audio data for index %s.", self._index)
        self._audio_importer(self._raw_audio, on_imported)

    def _generate_lip_sync(self) -> None:
        self._update_state(ChunkState.BUSY)

        if self._lip_sync_type is LipSyncType.OVR_LIP_SYNC:
            _log.error("OVR lipsync was selected, but it is not available.")
            return
        if self._lip_sync_type is not LipSyncType.AUDIO2FACE:
            _log.error("No built-in support yet for lipsync that isn't OVR or A2F.")
            return

        if self._a2f_handler.is_busy():
            if self._a2f_handler.is_initializing():
                self._awaiting_a2f = True
            else:
                _log.warning(
                    "A2F is still busy, skipping lipsync generation; moving back to "
                    "IDLE_PROCESSED so it can be attempted again.")
                self._state = ChunkState.IDLE_PROCESSED
            return

        def on_generated(data: A2FLipSyncData | None) -> None:
            if data is None:
                _log.error("Failed to generate A2F lipsync data for index %s.", self._index)
                return
            if self._state is not ChunkState.CLEANED_UP:
                self._lip_sync_data = data
            _log.info("Generated A2F lipsync data for index %s", self._index)
            self._update_state(ChunkState.READY_FOR_PLAYBACK)

        _log.info("Starting A2F lipsync generation for index: %s", self._index)
        generate_a2f_lip_sync_data(
            self._raw_audio, self._a2f_handler, self._cache_folder, on_generated)

    def _update_state(self, new_state: ChunkState) -> None:
        if self._state is ChunkState.CLEANED_UP:
            _log.error("A process was still running on the container after it was cleaned up.")
            return
        self._state = new_state
        if new_state is not ChunkState.BUSY:
            self._on_state_changed(self)