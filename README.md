# voxtaclient

Client-side logic for a conversation with a Voxta server. The package covers
four jobs:

- it builds the messages that are sent over the server's message hub;
- it parses the messages that the server sends back;
- it tracks the chat session and the client's state;
- it drives the audio pipeline, both for spoken replies and for microphone
  input.

You supply the hub connection, the player, the microphone socket and the
capture device as small objects. The package decides what to send and when.

## Installing

```
pip install voxtaclient
```

To run the tests:

```
pip install "voxtaclient[test]"
pytest
```

## Modules

### `voxtaclient.requests`

Builds the outgoing messages as plain dicts:

- `authenticate_request()`
- `load_characters_list_request()`
- `load_character_request(character_id)`
- `start_chat_request(character, chat_id=None)`. A fresh chat id is generated
  when none is given.
- `send_user_message_request(session_id, text)`
- `notify_audio_playback_complete_request(session_id, message_id)`

### `voxtaclient.responses`

Parses incoming messages. `parse_response(data)` turns a server message (a
mapping with a `"$type"` key) into one of these frozen dataclasses:

- `Welcome`
- `CharacterList`
- `CharacterLoaded`
- `ChatStarted`
- `ChatMessageStart`
- `ChatMessageChunk`
- `ChatMessageEnd`
- `ChatMessageCancelled`
- `ChatUpdate`
- `SpeechTranscription`
- `ErrorResponse`

It raises `ResponseParseError`, a `ValueError`, for unknown message types and
for messages with missing or mistyped fields. `is_ignored(message_type)` tells
you whether a message type, such as `"replyGenerating"` or `"chatFlow"`, may
be dropped without handling.

The module also defines the data and enum types used by the responses:
`UserCharacter`, `AiCharacter`, `ServiceType`, `ServiceData`, `ResponseType`,
`ChatMessageType` and `TranscriptionState`.

### `voxtaclient.session`

- `ChatSession` holds the characters, the chat and session ids, the active
  services and the message history. Use `find_message` and `remove_message`
  to look up or drop a message.
- `ChatMessage` holds one message. `append_content(text, audio_url)` adds a
  chunk of text and, if the url is not empty, that chunk's audio url.
- `ClientState` lists the stages of the conversation.
- `Event` is a list of callbacks with `subscribe`, `unsubscribe` and `emit`.

### `voxtaclient.client`

`VoxtaClient(hub_factory)` is the state machine that runs the conversation.
It does the following:

- connects through the hub, then authenticates;
- loads the character list;
- starts chats;
- assembles streamed replies;
- hands finished replies to a registered playback handler.

`connect(address, port)` accepts an IPv4 address or `localhost`. It raises
`ValueError` for an empty or invalid address and for a port outside 0–65535.

The client exposes these events:

- `state_changed`
- `character_registered`
- `chat_session_started`
- `char_message_added`
- `char_message_removed`
- `speech_transcribed_partial`
- `speech_transcribed_complete`
- `audio_playback_registered`

### `voxtaclient.chunk`

`MessageChunkAudioContainer` prepares one audio chunk of a reply. Each call
to `advance()` starts the next step through `ChunkState`:

1. download the audio;
2. import it as a wave;
3. for Audio2Face, generate the lip-sync data.

The default downloader fetches the url with `urllib.request`. The default
importer reads the bytes with the standard `wave` module. You can pass your
own `downloader` and `audio_importer` instead.

`generate_a2f_lip_sync_data` works in three stages:

1. It writes the wav into a cache folder. The default is `A2FCache` in the
   system temporary directory.
2. It asks the given Audio2Face handler for blendshapes.
3. It reads the resulting `*_bsweight.json` into an `A2FLipSyncData`.

### `voxtaclient.playback`

`AudioPlayback` plays the chunks of a character's reply, in order, through a
player object you supply. The player needs `set_sound`, `play`,
`play_lip_sync` and `stop_lip_sync`, and it must call
`on_audio_playback_finished()` when a sound ends.

With `LipSyncType.CUSTOM`, playback works differently:

- Each ready chunk is emitted on `custom_playback_ready`.
- You finish each chunk with `mark_custom_playback_complete(guid)`.

When the whole reply has been played, `playback_finished` is emitted with the
message id.

### `voxtaclient.audio_input`

`AudioInput` connects a capture device to an audio socket that you supply.
Once the socket connects, it sends the format header (see
`format_header(sample_rate, channels, buffer_ms)`) and sets up the capture
device. `start_streaming` and `stop_streaming` then control the microphone.

### `voxtaclient.logger`

`register_logger(display)` attaches an `OnScreenLogHandler` to the
`voxtaclient` logger. The display callback then receives every warning and
error of the package as text of the form `[Warning]: 2024-01-01 12:00:00 ->
message`, along with:

- a colour, `"orange"` or `"red"`;
- a display time of 10 seconds.

`unregister_logger(handler)` detaches the handler again.

## Example

```python
from voxtaclient.client import VoxtaClient
from voxtaclient.session import ClientState


class PrintingHub:
    def __init__(self, url):
        self.url = url
        self.handlers = {}

    def on(self, event_name, handler):
        self.handlers[event_name] = handler

    def on_connected(self, handler):
        self.handlers["connected"] = handler

    def on_connection_error(self, handler):
        self.handlers["error"] = handler

    def on_closed(self, handler):
        self.handlers["closed"] = handler

    def start(self):
        print("connecting to", self.url)

    def stop(self):
        print("stopped")

    def invoke(self, method, message, on_result):
        print(method, message)
        on_result(None)


client = VoxtaClient(hub_factory=PrintingHub)
client.state_changed.subscribe(lambda state: print("state:", state.name))
client.connect("127.0.0.1", 5384)

# Your hub calls these as the server talks back:
client.on_connected()                      # sends the authenticate message
client.on_received_message([{"$type": "welcome",
                             "user": {"id": "u1", "name": "User"}}])
client.on_received_message([{"$type": "charactersListLoaded",
                             "characters": [{"id": "c1", "name": "Character"}]}])
assert client.state is ClientState.IDLE
client.start_chat_with_character("c1")
```

`send_user_input(text)` only works while the client is in
`WAITING_FOR_USER_RESPONSE`. Otherwise it raises `RuntimeError`.

## What the package does not do

Several pieces are left for you to provide:

- **Hub and sockets.** There is no hub (SignalR) connection and no audio
  websocket. You pass in objects with the methods listed above.
- **Audio devices.** There is no microphone capture device and no audio
  output.
- **Audio2Face.** There is no Audio2Face REST client. Give the client an
  object with `try_initialize`, `is_busy`, `is_initializing` and
  `get_blendshapes`.
- **OVR lip-sync.** `LipSyncType.OVR_LIP_SYNC` is accepted but not supported:
  the package only logs an error.

There is no command-line program.