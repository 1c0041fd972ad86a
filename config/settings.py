"""Configuration helpers for the Nexus Studio project."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


class ConfigurationError(RuntimeError):
    """Raised when the application cannot start with the given settings."""


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    api_key: Optional[str] = None
    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")
    profile_path: Path = Path("data/profile.json")
    media_dir: Path = Path("data/media")
    image_model: str = "imagen-4.0-generate-001"
    edit_model: str = "gemini-2.5-flash-image-preview"
    video_model: str = "veo-2.0-generate-001"
    chat_model: str = "gemini-2.5-flash"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    tts_voice: str = "Kore"
    history_limit: int = 20
    video_poll_interval: float = 10.0
    video_max_wait: float = 600.0
    video_download_timeout: float = 120.0
    default_persona_id: str = "Professional"
    log_level: str = "INFO"
    log_max_bytes: int = 5 * 1024 * 1024
    log_backup_count: int = 3
    metadata: dict[str, Any] = field(default_factory=dict)


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ[key.strip()] = value.strip().strip('"').strip("'")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def load_config(config_path: Optional[str] = None, require_api_key: bool = True) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings.

    Raises ConfigurationError when no API key can be found and
    ``require_api_key`` is set.
    """
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or os.getenv("API_KEY")
    if require_api_key and not api_key:
        raise ConfigurationError(
            "未检测到 GEMINI_API_KEY（或 GOOGLE_API_KEY / API_KEY），请在环境变量或 .env 中配置后重新启动。"
        )

    data_dir = Path(os.getenv("NEXUS_DATA_DIR", "data")).expanduser().resolve()
    log_dir = Path(os.getenv("NEXUS_LOG_DIR", str(data_dir / "logs"))).expanduser().resolve()

    defaults = AppConfig()
    metadata: dict[str, Any] = {"env_file": str(env_path)}

    return AppConfig(
        api_key=api_key,
        data_dir=data_dir,
        log_dir=log_dir,
        profile_path=data_dir / "profile.json",
        media_dir=data_dir / "media",
        image_model=os.getenv("NEXUS_IMAGE_MODEL") or defaults.image_model,
        edit_model=os.getenv("NEXUS_EDIT_MODEL") or defaults.edit_model,
        video_model=os.getenv("NEXUS_VIDEO_MODEL") or defaults.video_model,
        chat_model=os.getenv("NEXUS_CHAT_MODEL") or defaults.chat_model,
        tts_model=os.getenv("NEXUS_TTS_MODEL") or defaults.tts_model,
        video_poll_interval=_float_env("NEXUS_VIDEO_POLL_INTERVAL", defaults.video_poll_interval),
        video_max_wait=_float_env("NEXUS_VIDEO_MAX_WAIT", defaults.video_max_wait),
        log_level=os.getenv("NEXUS_LOG_LEVEL") or defaults.log_level,
        metadata=metadata,
    )
