"""SpeechOutput 单元测试。"""

from __future__ import annotations

import io
import wave
from types import SimpleNamespace

import pytest

from config.settings import AppConfig
from modules.chat import speech as speech_module
from modules.chat.speech import SpeechOutput, pcm_to_wav
from modules.services.storage_service import StorageService


def audio_response(pcm: bytes) -> SimpleNamespace:
    part = SimpleNamespace(inline_data=SimpleNamespace(data=pcm, mime_type="audio/L16;rate=24000"))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


class DummyModels:
    def __init__(self, response=None, error=None, on_call=None) -> None:
        self.response = response if response is not None else audio_response(b"\x00\x01" * 10)
        self.error = error
        self.on_call = on_call
        self.called_with = None

    def generate_content(self, **kwargs):
        self.called_with = kwargs
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        return self.response


def build_output(tmp_path, models: DummyModels) -> SpeechOutput:
    return SpeechOutput(AppConfig(), SimpleNamespace(models=models), StorageService(tmp_path))


def test_pcm_to_wav_header():
    data = pcm_to_wav(b"\x00\x00" * 240)

    with wave.open(io.BytesIO(data)) as wav:
        assert wav.getframerate() == speech_module.SAMPLE_RATE
        assert wav.getnchannels() == 1
        assert wav.getsampwidth() == 2
        assert wav.getnframes() == 240


def test_speak_inside_scope_writes_wav(tmp_path):
    models = DummyModels()
    output = build_output(tmp_path, models)

    with output:
        path = output.speak("Hello there")

    assert path is not None and path.suffix == ".wav"
    assert path.read_bytes().startswith(b"RIFF")
    assert models.called_with["config"].speech_config.voice_config.prebuilt_voice_config.voice_name == "Kore"
    assert output.active is False


def test_speak_outside_scope_is_silent(tmp_path):
    models = DummyModels()
    output = build_output(tmp_path, models)

    assert output.speak("Hello") is None
    assert models.called_with is None


def test_scope_cancels_on_exception(tmp_path):
    output = build_output(tmp_path, DummyModels())

    with pytest.raises(RuntimeError):
        with output:
            assert output.active
            raise RuntimeError("view closed")

    assert output.active is False


def test_cancel_during_synthesis_drops_audio(tmp_path):
    output = build_output(tmp_path, DummyModels())
    output.client.models.on_call = output.cancel

    with output:
        assert output.speak("Hello") is None
    assert list(tmp_path.iterdir()) == []


def test_synthesis_failure_returns_none(tmp_path):
    output = build_output(tmp_path, DummyModels(error=RuntimeError("tts down")))

    with output:
        assert output.speak("Hello") is None


def test_blank_text_is_ignored(tmp_path):
    models = DummyModels()
    output = build_output(tmp_path, models)

    with output:
        assert output.speak("   ") is None
    assert models.called_with is None
