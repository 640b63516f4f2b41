import io
import wave

import pytest

from voxtaclient.chunk import A2FLipSyncData, ChunkState, LipSyncType, MessageChunkAudioContainer
from voxtaclient.playback import AudioPlayback, PlaybackState
from voxtaclient.responses import AiCharacter
from voxtaclient.session import ChatMessage

HOST = "127.0.0.1"
PORT = 5384


class FakeClient:
    def __init__(self, accept=True):
        self.server_address = HOST
        self.server_port = PORT
        self.a2f_handler = None
        self.accept = accept
        self.registered = {}
        self.unregistered = []

    def register_playback_handler(self, character_id, handler):
        if not self.accept:
            return False
        self.registered[character_id] = handler
        return True

    def unregister_playback_handler(self, character_id):
        self.unregistered.append(character_id)


class FakePlayer:
    def __init__(self):
        self.calls = []

    def set_sound(self, sound):
        self.calls.append(("set_sound", sound))

    def play(self):
        self.calls.append(("play",))

    def play_lip_sync(self, data):
        self.calls.append(("play_lip_sync", data))

    def stop_lip_sync(self):
        self.calls.append(("stop_lip_sync",))


class FakeChunk:
    def __init__(self, url, lip_sync_type, a2f_handler, on_state_changed, index):
        self.url = url
        self.lip_sync_type = lip_sync_type
        self.on_state_changed = on_state_changed
        self.index = index
        self.state = ChunkState.IDLE
        self.advanced = 0
        self.sound_wave = f"sound-{index}"
        self.raw_audio = b"raw"
        self.lip_sync_data = None

    def advance(self):
        self.advanced += 1

    def cleanup(self):
        self.state = ChunkState.CLEANED_UP

    def become(self, state):
        self.state = state
        self.on_state_changed(self)


def make_playback(lip_sync_type=LipSyncType.NONE, client=None):
    created = []

    def factory(*args):
        chunk = FakeChunk(*args)
        created.append(chunk)
        return chunk

    client = client or FakeClient()
    player = FakePlayer()
    playback = AudioPlayback(client, "char-1", lip_sync_type, player, factory)
    playback.initialize()
    return playback, client, player, created


def message(urls, message_id="msg-1"):
    msg = ChatMessage(message_id, "char-1")
    for url in urls:
        msg.append_content("Hi.", url)
    return msg


SENDER = AiCharacter("char-1", "Alice")


def test_initialize_registers_handler():
    playback, client, _, _ = make_playback()
    assert client.registered == {"char-1": playback}


def test_initialize_refused_raises():
    playback = AudioPlayback(FakeClient(accept=False), "char-1", LipSyncType.NONE, FakePlayer())
    with pytest.raises(RuntimeError):
        playback.initialize()


def test_message_from_other_character_is_ignored():
    playback, _, _, created = make_playback()
    playback.playback_message(AiCharacter("char-2", "Bob"), message(["/a.wav"]))
    assert created == []
    assert playback.state is PlaybackState.DONE


def test_chunks_are_created_with_full_urls():
    playback, _, _, created = make_playback()
    playback.playback_message(SENDER, message(["/a.wav", "/b.wav"]))
    assert [c.url for c in created] == [f"http://{HOST}:{PORT}/a.wav",
                                        f"http://{HOST}:{PORT}/b.wav"]
    assert [c.index for c in created] == [0, 1]
    assert [c.advanced for c in created] == [1, 0]
    assert playback.current_message_id == "msg-1"
    assert playback.state is PlaybackState.IDLE


def test_message_without_audio_finishes_immediately():
    playback, _, _, _ = make_playback()
    finished = []
    playback.playback_finished.subscribe(finished.append)
    playback.playback_message(SENDER, message([]))
    assert finished == ["msg-1"]
    assert playback.state is PlaybackState.DONE
    assert playback.current_message_id is None


def test_ready_chunk_is_played_and_next_is_advanced():
    playback, _, player, created = make_playback()
    playback.playback_message(SENDER, message(["/a.wav", "/b.wav"]))
    created[0].become(ChunkState.READY_FOR_PLAYBACK)
    assert player.calls == [("set_sound", "sound-0"), ("play",)]
    assert playback.state is PlaybackState.PLAYING
    assert created[1].advanced == 1


def test_downloaded_chunk_is_advanced_again():
    playback, _, _, created = make_playback()
    playback.playback_message(SENDER, message(["/a.wav"]))
    created[0].become(ChunkState.IDLE_DOWNLOADED)
    assert created[0].advanced == 2


def test_chunks_play_in_sequence_and_finish():
    playback, _, player, created = make_playback()
    finished = []
    playback.playback_finished.subscribe(finished.append)
    playback.playback_message(SENDER, message(["/a.wav", "/b.wav"]))
    created[0].become(ChunkState.READY_FOR_PLAYBACK)
    created[1].become(ChunkState.READY_FOR_PLAYBACK)
    assert player.calls == [("set_sound", "sound-0"), ("play",)]

    playback.on_audio_playback_finished()
    assert created[0].state is ChunkState.CLEANED_UP
    assert player.calls[-2:] == [("set_sound", "sound-1"), ("play",)]
    assert playback.current_index == 1

    playback.on_audio_playback_finished()
    assert finished == ["msg-1"]
    assert playback.chunks == ()
    assert all(c.state is ChunkState.CLEANED_UP for c in created)


def test_custom_lip_sync_waits_for_explicit_completion():
    playback, _, player, created = make_playback(LipSyncType.CUSTOM)
    ready = []
    finished = []
    playback.custom_playback_ready.subscribe(lambda *args: ready.append(args))
    playback.playback_finished.subscribe(finished.append)
    playback.playback_message(SENDER, message(["/a.wav"]))
    created[0].lip_sync_data = A2FLipSyncData([[0.0]], 30, guid="guid-1")
    created[0].become(ChunkState.READY_FOR_PLAYBACK)
    assert ready == [(b"raw", "sound-0", "guid-1")]
    assert player.calls == []

    playback.on_audio_playback_finished()
    assert playback.state is PlaybackState.PLAYING

    with pytest.raises(ValueError):
        playback.mark_custom_playback_complete("guid-2")
    playback.mark_custom_playback_complete("guid-1")
    assert finished == ["msg-1"]


def test_mark_custom_complete_without_chunks_raises():
    playback, _, _, _ = make_playback(LipSyncType.CUSTOM)
    with pytest.raises(RuntimeError):
        playback.mark_custom_playback_complete("guid-1")


def test_audio2face_chunk_plays_lip_sync():
    playback, _, player, created = make_playback(LipSyncType.AUDIO2FACE)
    playback.playback_message(SENDER, message(["/a.wav"]))
    data = A2FLipSyncData([[0.5]], 30)
    created[0].lip_sync_data = data
    created[0].become(ChunkState.READY_FOR_PLAYBACK)
    assert player.calls == [("set_sound", "sound-0"), ("play_lip_sync", data)]


def test_state_change_after_cleanup_is_ignored():
    playback, _, _, created = make_playback()
    playback.playback_message(SENDER, message(["/a.wav"]))
    chunk = created[0]
    playback.cleanup()
    chunk.state = ChunkState.IDLE_DOWNLOADED
    playback.on_chunk_state_change(chunk)
    assert chunk.advanced == 1


def test_new_message_replaces_previous_chunks():
    playback, _, _, created = make_playback()
    playback.playback_message(SENDER, message(["/a.wav"], "msg-1"))
    playback.playback_message(SENDER, message(["/b.wav"], "msg-2"))
    assert created[0].state is ChunkState.CLEANED_UP
    assert playback.chunks == (created[1],)
    assert playback.current_message_id == "msg-2"


def test_end_play_unregisters_and_stops_lip_sync():
    playback, client, player, _ = make_playback(LipSyncType.AUDIO2FACE)
    playback.end_play()
    assert client.unregistered == ["char-1"]
    assert player.calls == [("stop_lip_sync",)]


def _wav_bytes():
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as writer:
        writer.setnchannels(1)
        writer.setsampwidth(2)
        writer.setframerate(16000)
        writer.writeframes(b"\x00\x00" * 160)
    return buffer.getvalue()


def test_full_pipeline_with_real_chunks():
    urls = []

    def downloader(url, done):
        urls.append(url)
        done(True, _wav_bytes())

    def factory(url, lip_sync_type, a2f, on_change, index):
        return MessageChunkAudioContainer(url, lip_sync_type, a2f, on_change, index,
                                          downloader=downloader)

    player = FakePlayer()
    playback = AudioPlayback(FakeClient(), "char-1", LipSyncType.NONE, player, factory)
    playback.initialize()
    finished = []
    playback.playback_finished.subscribe(finished.append)
    playback.playback_message(SENDER, message(["/a.wav", "/b.wav"]))

    assert urls == [f"http://{HOST}:{PORT}/a.wav", f"http://{HOST}:{PORT}/b.wav"]
    assert player.calls[0][0] == "set_sound"
    assert player.calls[0][1].sample_rate == 16000
    assert player.calls[1] == ("play",)

    playback.on_audio_playback_finished()
    playback.on_audio_playback_finished()
    assert finished == ["msg-1"]
    assert playback.state is PlaybackState.DONE