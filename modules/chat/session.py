"""Streaming multimodal chat session bound to one persona."""

from __future__ import annotations

import base64
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple, Union

from google.genai import types

from config.settings import AppConfig
from modules.chat.personas import Persona
from modules.errors import ChatError, TranscriptionError
from modules.utils.image_utils import read_media_file

logger = logging.getLogger(__name__)

TRANSCRIBE_INSTRUCTION = (
    "Transcribe this audio recording verbatim. Reply with the transcription only, "
    "without any commentary."
)


@dataclass(frozen=True, slots=True)
class InlineData:
    mime_type: str
    data: str  # base64


@dataclass(frozen=True, slots=True)
class MessagePart:
    """Either a text fragment or an inline media payload."""

    text: Optional[str] = None
    inline_data: Optional[InlineData] = None

    def to_genai(self) -> types.Part:
        if self.inline_data is not None:
            return types.Part.from_bytes(
                data=base64.b64decode(self.inline_data.data),
                mime_type=self.inline_data.mime_type,
            )
        return types.Part.from_text(text=self.text or "")


@dataclass(frozen=True, slots=True)
class Message:
    role: str  # "user" or "model"
    parts: Tuple[MessagePart, ...]

    def __post_init__(self) -> None:
        if self.role not in ("user", "model"):
            raise ValueError(f"unknown role {self.role!r}")
        if not self.parts:
            raise ValueError("a message needs at least one part")

    @property
    def text(self) -> str:
        return "".join(part.text or "" for part in self.parts)

    @classmethod
    def model_text(cls, text: str) -> "Message":
        return cls(role="model", parts=(MessagePart(text=text),))


class AttachmentKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"


@dataclass(frozen=True, slots=True)
class Attachment:
    """One user-selected image or audio file."""

    data: bytes
    mime_type: str
    kind: AttachmentKind

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Attachment":
        data, mime_type = read_media_file(path)
        if mime_type.startswith("image/"):
            kind = AttachmentKind.IMAGE
        elif mime_type.startswith("audio/"):
            kind = AttachmentKind.AUDIO
        else:
            raise ValueError(f"不支持的附件类型：{mime_type}")
        return cls(data=data, mime_type=mime_type, kind=kind)

    def to_part(self) -> MessagePart:
        encoded = base64.b64encode(self.data).decode("ascii")
        return MessagePart(inline_data=InlineData(mime_type=self.mime_type, data=encoded))


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    SENDING = "sending"
    FAILED = "failed"


Transcript = Tuple[Message, ...]


class ChatSession:
    """Own one remote chat and the transcript built on top of it.

    At most one ``send`` runs at a time; a second call made while a reply is
    still streaming yields nothing. The transcript is only ever replaced, never
    mutated in place, so every yielded snapshot stays valid.
    """

    def __init__(self, config: AppConfig, client: Any) -> None:
        self.config = config
        self.client = client
        self.state = SessionState.UNINITIALIZED
        self.persona: Optional[Persona] = None
        self._chat: Any = None
        self._messages: List[Message] = []
        self._send_lock = threading.Lock()
        self._transcribe_lock = threading.Lock()

    @property
    def transcript(self) -> Transcript:
        return tuple(self._messages)

    @property
    def busy(self) -> bool:
        return self.state is SessionState.SENDING

    def start(self, persona: Persona) -> Transcript:
        """(Re)create the remote chat and reseed the transcript with the welcome message."""
        if not self._send_lock.acquire(blocking=False):
            raise ChatError("正在生成回复，请稍后再切换角色。")
        try:
            self.persona = persona
            try:
                self._chat = self.client.chats.create(
                    model=self.config.chat_model,
                    config=types.GenerateContentConfig(system_instruction=persona.instruction),
                )
            except Exception as exc:  # noqa: BLE001
                logger.exception("Chat session creation failed for persona %s", persona.id)
                self._chat = None
                self._messages = []
                self.state = SessionState.FAILED
                raise ChatError("初始化 AI 对话失败，请检查 API Key 后刷新页面。") from exc
            self._messages = [Message.model_text(persona.welcome_message)]
            self.state = SessionState.READY
            return self.transcript
        finally:
            self._send_lock.release()

    def send(
        self,
        text: Optional[str] = None,
        attachment: Optional[Attachment] = None,
    ) -> Iterator[Transcript]:
        """Append the user turn and stream the model reply into the transcript.

        Yields a transcript snapshot after the user message, after the empty
        model message and after every chunk. Raises ChatError if the stream
        fails; the partial model message is removed first.
        """
        text = text if text and text.strip() else None
        if text is None and attachment is None:
            return
        if not self._send_lock.acquire(blocking=False):
            logger.info("Ignoring send while another reply is streaming")
            return
        try:
            if self.state is not SessionState.READY or self._chat is None:
                logger.info("Ignoring send in state %s", self.state.value)
                return
            self.state = SessionState.SENDING

            parts: List[MessagePart] = []
            if attachment is not None:
                parts.append(attachment.to_part())
            if text is not None:
                parts.append(MessagePart(text=text))
            self._messages = [*self._messages, Message(role="user", parts=tuple(parts))]
            yield self.transcript

            yield from self._stream_reply(parts)
        finally:
            if self.state is SessionState.SENDING:
                self.state = SessionState.READY
            self._send_lock.release()

    def _stream_reply(self, parts: List[MessagePart]) -> Iterator[Transcript]:
        reply_started = False
        completed = False
        try:
            stream = self._chat.send_message_stream(message=[part.to_genai() for part in parts])
            self._messages = [*self._messages, Message.model_text("")]
            reply_started = True
            yield self.transcript

            accumulated = ""
            for chunk in stream:
                accumulated += getattr(chunk, "text", None) or ""
                self._messages = [*self._messages[:-1], Message.model_text(accumulated)]
                yield self.transcript
            completed = True
        except Exception as exc:  # noqa: BLE001
            logger.exception("Chat stream failed")
            message = str(exc).strip() or "获取回复时出错。"
            raise ChatError(message) from exc
        finally:
            # stream failed or the reader closed the generator mid-reply
            if reply_started and not completed:
                self._messages = self._messages[:-1]

    def transcribe_audio(self, attachment: Attachment) -> Optional[str]:
        """Transcribe an audio attachment; returns None if one is already running."""
        if attachment.kind is not AttachmentKind.AUDIO:
            raise TranscriptionError("只能转写音频文件。")
        if not self._transcribe_lock.acquire(blocking=False):
            logger.info("Ignoring transcription while another one is running")
            return None
        try:
            try:
                response = self.client.models.generate_content(
                    model=self.config.chat_model,
                    contents=[
                        types.Part.from_bytes(data=attachment.data, mime_type=attachment.mime_type),
                        types.Part.from_text(text=TRANSCRIBE_INSTRUCTION),
                    ],
                )
            except Exception as exc:  # noqa: BLE001
                logger.exception("Audio transcription failed")
                raise TranscriptionError("语音转写失败，请稍后重试。") from exc
            text = (getattr(response, "text", None) or "").strip()
            if not text:
                raise TranscriptionError("未能从音频中识别出文字。")
            return text
        finally:
            self._transcribe_lock.release()


def merge_transcription(existing: Optional[str], transcription: str) -> str:
    """Append transcribed text to whatever the user already typed."""
    existing = (existing or "").rstrip()
    if not existing:
        return transcription
    return f"{existing} {transcription}"
