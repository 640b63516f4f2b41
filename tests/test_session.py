import pytest

from voxtaclient.responses import AiCharacter, ServiceData, ServiceType
from voxtaclient.session import ChatMessage, ChatSession, Event


def _session():
    return ChatSession(
        characters=[AiCharacter("c1", "Alice")],
        chat_id="chat",
        session_id="sess",
        services={
            ServiceType.TEXT_GEN: ServiceData(ServiceType.TEXT_GEN, "gen", "g1"),
        },
    )


def test_event_calls_subscribers_in_order():
    event = Event()
    calls = []
    event.subscribe(lambda x: calls.append(("a", x)))
    event.subscribe(lambda x: calls.append(("b", x)))
    event.emit(5)
    assert calls == [("a", 5), ("b", 5)]


def test_event_subscribe_returns_callback():
    event = Event()

    def handler(*args):
        pass

    assert event.subscribe(handler) is handler
    assert len(event) == 1


def test_event_unsubscribe_stops_calls():
    event = Event()
    calls = []

    def handler(value):
        calls.append(value)

    event.subscribe(handler)
    assert event.unsubscribe(handler) is True
    event.emit(1)
    assert calls == []


def test_event_unsubscribe_unknown_returns_false():
    event = Event()
    assert event.unsubscribe(print) is False


def test_event_unsubscribe_during_emit_is_safe():
    event = Event()
    calls = []
    removed = []

    def first():
        calls.append("first")
        removed.append(event.unsubscribe(second))

    def second():
        calls.append("second")

    event.subscribe(first)
    event.subscribe(second)
    event.emit()
    assert removed == [True]
    assert len(event) == 1
    assert calls == ["first", "second"]
    event.emit()
    assert removed == [True, False]
    assert calls == ["first", "second", "first"]


def test_chat_message_append_content_accumulates():
    message = ChatMessage("m1", "c1")
    message.append_content("Hello.", "/audio/1")
    message.append_content(" World.", "/audio/2")
    assert message.text_content == "Hello. World."
    assert message.audio_urls == ["/audio/1", "/audio/2"]


def test_chat_message_empty_audio_url_not_recorded():
    message = ChatMessage("m1", "user")
    message.append_content("typed text", "")
    assert message.text_content == "typed text"
    assert message.audio_urls == []


def test_find_message():
    session = _session()
    first = ChatMessage("m1", "c1")
    second = ChatMessage("m2", "c1")
    session.messages.extend([first, second])
    assert session.find_message("m2") is second
    assert session.find_message("missing") is None


def test_remove_message_returns_and_removes():
    session = _session()
    first = ChatMessage("m1", "c1")
    second = ChatMessage("m2", "c1")
    session.messages.extend([first, second])
    assert session.remove_message("m1") is first
    assert session.messages == [second]


def test_remove_unknown_message_raises():
    session = _session()
    with pytest.raises(KeyError):
        session.remove_message("nope")


def test_services_membership():
    session = _session()
    assert ServiceType.TEXT_GEN in session.services
    assert ServiceType.SPEECH_TO_TEXT not in session.services