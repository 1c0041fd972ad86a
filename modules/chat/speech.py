"""Spoken playback of chat replies through the Gemini TTS model."""

from __future__ import annotations

import io
import logging
import threading
import wave
from pathlib import Path
from typing import Any, Optional

from google.genai import types

from config.settings import AppConfig
from modules.services.storage_service import StorageService

logger = logging.getLogger(__name__)

SAMPLE_RATE = 24000
SAMPLE_WIDTH = 2
CHANNELS = 1


def pcm_to_wav(pcm: bytes, sample_rate: int = SAMPLE_RATE) -> bytes:
    """Wrap raw 16-bit mono PCM in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(CHANNELS)
        wav.setsampwidth(SAMPLE_WIDTH)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


class SpeechOutput:
    """Speech playback resource with guaranteed cancellation.

    Use it as a context manager around one reply: leaving the block, whether
    normally or through an exception, cancels anything still pending so a
    stale reply is never played after the view moved on.
    """

    def __init__(self, config: AppConfig, client: Any, storage: StorageService) -> None:
        self.config = config
        self.client = client
        self.storage = storage
        self._cancelled = threading.Event()
        self._cancelled.set()

    @property
    def active(self) -> bool:
        return not self._cancelled.is_set()

    def activate(self) -> "SpeechOutput":
        self._cancelled.clear()
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    def __enter__(self) -> "SpeechOutput":
        return self.activate()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()

    def synthesize(self, text: str) -> bytes:
        """Return WAV bytes for ``text``."""
        response = self.client.models.generate_content(
            model=self.config.tts_model,
            contents=text,
            config=types.GenerateContentConfig(
                response_modalities=["AUDIO"],
                speech_config=types.SpeechConfig(
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self.config.tts_voice)
                    )
                ),
            ),
        )
        parts = response.candidates[0].content.parts if response.candidates else []
        for part in parts or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data:
                return pcm_to_wav(inline.data)
        raise ValueError("TTS response carried no audio")

    def speak(self, text: str) -> Optional[Path]:
        """Synthesize ``text`` and return the audio file, or None if cancelled or failed."""
        text = (text or "").strip()
        if not text or not self.active:
            return None
        try:
            audio = self.synthesize(text)
        except Exception as exc:  # noqa: BLE001
            # speech is a side channel; the text reply is already on screen
            logger.warning("Speech synthesis failed: %s", exc)
            return None
        if not self.active:
            logger.info("Dropping speech for a cancelled reply")
            return None
        path = self.storage.save_bytes(audio, suffix=".wav", prefix="speech")
        self.storage.cleanup(max_items=self.config.history_limit, prefix="speech")
        return path
