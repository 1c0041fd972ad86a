"""Real Gemini API checks; run with ``pytest -m integration``."""

from __future__ import annotations

import pytest

from config.settings import load_config
from modules.chat.personas import BUILTIN_PERSONAS
from modules.chat.session import ChatSession
from modules.errors import NexusError
from modules.pipelines.text2img import AspectRatio, PromptRequest, Text2ImageService
from modules.services.genai_client import create_client


def _real_config():
    config = load_config(require_api_key=False)
    if not config.api_key:
        pytest.skip("未检测到 GEMINI_API_KEY，跳过真实调用测试。")
    return config


@pytest.mark.integration
def test_chat_streams_real_reply():
    """Stream one short reply from the chat model."""

    config = _real_config()
    session = ChatSession(config, create_client(config))
    session.start(BUILTIN_PERSONAS["Friendly"])

    try:
        snapshots = list(session.send("用一句话介绍你自己。"))
    except NexusError as exc:  # pragma: no cover - integration handling
        if "API key" in str(exc) or "PERMISSION_DENIED" in str(exc):
            pytest.skip(f"Gemini API 认证失败：{exc}")
        raise

    assert snapshots
    assert session.transcript[-1].role == "model"
    assert session.transcript[-1].text.strip()


@pytest.mark.integration
def test_generate_real_image():
    config = _real_config()
    service = Text2ImageService(config, create_client(config))

    try:
        result = service.generate(PromptRequest("一只坐在窗台上的橘猫", AspectRatio.SQUARE))
    except NexusError as exc:  # pragma: no cover - integration handling
        pytest.skip(f"图像生成不可用：{exc}")

    assert result.image_url.startswith("data:image/jpeg;base64,")
