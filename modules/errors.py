"""Error types surfaced by the media services and the chat session."""

from __future__ import annotations

from typing import Optional


class NexusError(RuntimeError):
    """Base class for failures shown to the user as a status message."""


class GenerationError(NexusError):
    """The remote service produced no usable image or video."""


class GenerationCancelled(GenerationError):
    """Video generation was stopped by the user before completion."""


class EditError(NexusError):
    """Image editing failed.

    ``kind`` is ``"refused"`` when the model answered with text only,
    ``"empty"`` when it returned neither image nor text and ``"transport"``
    when the request itself failed. ``"invalid"`` marks a request rejected
    locally before anything was sent.
    """

    REFUSED = "refused"
    EMPTY = "empty"
    TRANSPORT = "transport"
    INVALID = "invalid"

    def __init__(self, message: str, kind: str, text: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.text = text


class ChatError(NexusError):
    """Chat session creation or a streamed reply failed."""


class TranscriptionError(NexusError):
    """Audio transcription returned nothing or the request failed."""


class PersistenceReadError(NexusError):
    """Stored profile data could not be parsed; callers fall back to defaults."""
