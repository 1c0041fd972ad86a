"""ChatSession 单元测试。"""

from __future__ import annotations

import base64
from types import SimpleNamespace

import pytest

from config.settings import AppConfig
from modules.chat.personas import BUILTIN_PERSONAS
from modules.chat.session import (
    Attachment,
    AttachmentKind,
    ChatSession,
    Message,
    MessagePart,
    SessionState,
    merge_transcription,
)
from modules.errors import ChatError, TranscriptionError


class DummyChat:
    """模拟远端对话：按顺序吐出文本块，可在中途抛错。"""

    def __init__(self, chunks, fail_after=None) -> None:
        self.chunks = chunks
        self.fail_after = fail_after
        self.messages = []

    def send_message_stream(self, message):
        self.messages.append(message)
        return self._stream()

    def _stream(self):
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index == self.fail_after:
                raise RuntimeError("connection reset")
            yield SimpleNamespace(text=chunk)
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise RuntimeError("connection reset")


class DummyClient:
    def __init__(self, chat=None, create_error=None, transcription="hello there", transcribe_error=None) -> None:
        self.chat = chat or DummyChat(["Hel", "lo, ", "world"])
        self.create_error = create_error
        self.created_with = None
        self.transcription = transcription
        self.transcribe_error = transcribe_error
        self.transcribe_calls = 0
        self.chats = SimpleNamespace(create=self._create)
        self.models = SimpleNamespace(generate_content=self._generate_content)

    def _create(self, **kwargs):
        self.created_with = kwargs
        if self.create_error is not None:
            raise self.create_error
        return self.chat

    def _generate_content(self, **kwargs):
        self.transcribe_calls += 1
        if self.transcribe_error is not None:
            raise self.transcribe_error
        return SimpleNamespace(text=self.transcription)


PERSONA = BUILTIN_PERSONAS["Witty"]


def started_session(client: DummyClient) -> ChatSession:
    session = ChatSession(AppConfig(), client)
    session.start(PERSONA)
    return session


def test_start_seeds_welcome_message():
    client = DummyClient()
    session = ChatSession(AppConfig(), client)
    assert session.state is SessionState.UNINITIALIZED

    transcript = session.start(PERSONA)

    assert session.state is SessionState.READY
    assert transcript == (Message.model_text(PERSONA.welcome_message),)
    assert client.created_with["config"].system_instruction == PERSONA.instruction
    assert client.created_with["model"] == AppConfig().chat_model


def test_start_failure_marks_session_failed():
    session = ChatSession(AppConfig(), DummyClient(create_error=RuntimeError("bad key")))

    with pytest.raises(ChatError):
        session.start(PERSONA)

    assert session.state is SessionState.FAILED
    assert session.transcript == ()
    assert list(session.send("hi")) == []


def test_streaming_reassembles_reply():
    session = started_session(DummyClient())

    snapshots = list(session.send("hi"))

    assert snapshots[0][-1].role == "user"
    assert len(snapshots[0]) == 2
    reply_snapshots = snapshots[1:]
    assert [snap[-1].text for snap in reply_snapshots] == ["", "Hel", "Hello, ", "Hello, world"]
    assert {len(snap) for snap in reply_snapshots} == {3}
    assert session.transcript[-1] == Message.model_text("Hello, world")
    assert session.state is SessionState.READY


def test_snapshots_are_not_mutated():
    session = started_session(DummyClient())

    snapshots = list(session.send("hi"))

    assert snapshots[1][-1].text == ""
    assert snapshots[2][-1].text == "Hel"


def test_failure_rolls_back_partial_reply():
    session = started_session(DummyClient(chat=DummyChat(["Hel", "lo"], fail_after=1)))
    seen = []

    with pytest.raises(ChatError, match="connection reset"):
        for snapshot in session.send("hi"):
            seen.append(snapshot)

    assert seen[-1][-1].text == "Hel"
    assert session.transcript[-1].role == "user"
    assert session.transcript[-1].text == "hi"
    assert len(session.transcript) == 2
    assert session.state is SessionState.READY


def test_abandoned_stream_drops_partial_reply():
    session = started_session(DummyClient())

    stream = session.send("hi")
    next(stream)
    next(stream)
    partial = next(stream)
    stream.close()

    assert partial[-1].text == "Hel"
    assert [message.role for message in session.transcript] == ["model", "user"]
    assert session.transcript[-1].text == "hi"
    assert session.state is SessionState.READY
    assert not session.busy


def test_failure_before_stream_keeps_user_message():
    class BrokenChat:
        def send_message_stream(self, message):
            raise RuntimeError("quota exceeded")

    session = started_session(DummyClient(chat=BrokenChat()))

    with pytest.raises(ChatError, match="quota exceeded"):
        list(session.send("hi"))

    assert [message.role for message in session.transcript] == ["model", "user"]


def test_send_is_single_flight():
    client = DummyClient()
    session = started_session(client)

    first = session.send("one")
    next(first)
    assert session.busy

    assert list(session.send("two")) == []
    assert [message.text for message in session.transcript if message.role == "user"] == ["one"]

    list(first)
    assert session.transcript[-1].text == "Hello, world"
    assert len(client.chat.messages) == 1
    assert list(session.send("three"))
    assert len(client.chat.messages) == 2


def test_blank_send_is_ignored():
    session = started_session(DummyClient())

    assert list(session.send("   ")) == []
    assert list(session.send(None, None)) == []
    assert len(session.transcript) == 1


def test_attachment_goes_before_text():
    client = DummyClient()
    session = started_session(client)
    attachment = Attachment(data=b"png-bytes", mime_type="image/png", kind=AttachmentKind.IMAGE)

    list(session.send("what is this?", attachment))

    user_message = session.transcript[1]
    assert user_message.parts[0].inline_data.data == base64.b64encode(b"png-bytes").decode("ascii")
    assert user_message.parts[1].text == "what is this?"
    sent = client.chat.messages[0]
    assert sent[0].inline_data.data == b"png-bytes"
    assert sent[1].text == "what is this?"


def test_attachment_only_message():
    session = started_session(DummyClient())
    attachment = Attachment(data=b"ogg", mime_type="audio/ogg", kind=AttachmentKind.AUDIO)

    list(session.send("", attachment))

    assert len(session.transcript[1].parts) == 1


def test_restart_reseeds_transcript():
    session = started_session(DummyClient())
    list(session.send("hi"))

    session.start(BUILTIN_PERSONAS["Friendly"])

    assert session.transcript == (Message.model_text(BUILTIN_PERSONAS["Friendly"].welcome_message),)


def test_restart_refused_while_streaming():
    session = started_session(DummyClient())
    pending = session.send("hi")
    next(pending)

    with pytest.raises(ChatError):
        session.start(BUILTIN_PERSONAS["Friendly"])
    pending.close()


def test_message_requires_parts():
    with pytest.raises(ValueError):
        Message(role="user", parts=())
    with pytest.raises(ValueError):
        Message(role="system", parts=(MessagePart(text="x"),))


def test_attachment_from_file(tmp_path):
    image = tmp_path / "cat.png"
    image.write_bytes(b"png")
    audio = tmp_path / "note.wav"
    audio.write_bytes(b"wav")
    other = tmp_path / "data.bin"
    other.write_bytes(b"\x00")

    assert Attachment.from_file(image).kind is AttachmentKind.IMAGE
    assert Attachment.from_file(audio).kind is AttachmentKind.AUDIO
    with pytest.raises(ValueError):
        Attachment.from_file(other)


def test_transcribe_audio():
    client = DummyClient(transcription="  turn on the lights ")
    session = ChatSession(AppConfig(), client)
    audio = Attachment(data=b"wav", mime_type="audio/wav", kind=AttachmentKind.AUDIO)

    assert session.transcribe_audio(audio) == "turn on the lights"


def test_transcribe_audio_errors():
    audio = Attachment(data=b"wav", mime_type="audio/wav", kind=AttachmentKind.AUDIO)

    with pytest.raises(TranscriptionError):
        ChatSession(AppConfig(), DummyClient(transcription="")).transcribe_audio(audio)
    with pytest.raises(TranscriptionError):
        ChatSession(AppConfig(), DummyClient(transcribe_error=RuntimeError("boom"))).transcribe_audio(audio)
    with pytest.raises(TranscriptionError):
        image = Attachment(data=b"png", mime_type="image/png", kind=AttachmentKind.IMAGE)
        ChatSession(AppConfig(), DummyClient()).transcribe_audio(image)


def test_transcribe_audio_rejects_concurrent_call():
    client = DummyClient()
    session = ChatSession(AppConfig(), client)
    audio = Attachment(data=b"wav", mime_type="audio/wav", kind=AttachmentKind.AUDIO)

    session._transcribe_lock.acquire()
    try:
        assert session.transcribe_audio(audio) is None
    finally:
        session._transcribe_lock.release()
    assert client.transcribe_calls == 0


def test_merge_transcription():
    assert merge_transcription("", "hello") == "hello"
    assert merge_transcription("note:  ", "hello") == "note: hello"
