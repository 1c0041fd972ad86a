"""Construction of the shared Gemini API client."""

from __future__ import annotations

from typing import Optional

from google import genai
from google.genai import types

from config.settings import AppConfig, ConfigurationError


def create_client(config: AppConfig, timeout_ms: Optional[int] = None) -> genai.Client:
    """Build the one client instance handed to every service."""
    if not config.api_key:
        raise ConfigurationError("缺少 Gemini API Key，无法创建客户端。")
    kwargs = {"api_key": config.api_key}
    if timeout_ms is not None:
        kwargs["http_options"] = types.HttpOptions(timeout=timeout_ms)
    return genai.Client(**kwargs)
